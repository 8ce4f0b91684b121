"""
Role-Based Access Control (RBAC) Module

Application users (admins, staff, customers), password handling and the single
authorization policy every API route consults before touching a customer,
a booking, a report or another user.
"""

import hashlib
import re
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple, Any

from .audit import AuditEventType, AuditTrail
from .clock import Clock, SystemClock
from .errors import AuthorizationError, NotFoundError, ValidationError
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


EMAIL_PATTERN = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'


class UserRole(Enum):
    """Application roles"""
    ADMIN = "Admin"
    MITARBEITER = "Mitarbeiter"
    KUNDE = "Kunde"


class Action(Enum):
    """Actions guarded by the authorization policy"""
    VIEW_CUSTOMERS = "view_customers"
    VIEW_CUSTOMER = "view_customer"
    CREATE_CUSTOMER = "create_customer"
    UPDATE_CUSTOMER = "update_customer"
    SET_INITIAL_VALUES = "set_initial_values"
    BOOK_TRANSACTION = "book_transaction"
    VIEW_TRANSACTIONS = "view_transactions"
    VIEW_DASHBOARD = "view_dashboard"
    VIEW_REPORTS = "view_reports"
    VIEW_LEADERBOARD = "view_leaderboard"
    MANAGE_USERS = "manage_users"


STAFF_ACTIONS: Set[Action] = {
    Action.VIEW_CUSTOMERS,
    Action.VIEW_CUSTOMER,
    Action.CREATE_CUSTOMER,
    Action.UPDATE_CUSTOMER,
    Action.SET_INITIAL_VALUES,
    Action.BOOK_TRANSACTION,
    Action.VIEW_TRANSACTIONS,
    Action.VIEW_DASHBOARD,
    Action.VIEW_REPORTS,
    Action.VIEW_LEADERBOARD,
}

ROLE_ACTIONS: Dict[UserRole, Set[Action]] = {
    UserRole.ADMIN: set(Action),
    UserRole.MITARBEITER: STAFF_ACTIONS,
    UserRole.KUNDE: {Action.VIEW_LEADERBOARD},
}

# Actions a customer may perform on their own record only
OWN_RECORD_ACTIONS: Set[Action] = {Action.VIEW_CUSTOMER, Action.VIEW_TRANSACTIONS}

INVITABLE_ROLES = (UserRole.ADMIN, UserRole.MITARBEITER)


@dataclass
class User(StorageRecord):
    """Application user"""
    email: str
    first_name: str
    last_name: str
    role: UserRole
    associated_customer_id: Optional[str] = None
    is_active: bool = True
    created_by: str = ""
    last_login: Optional[datetime] = None
    password_hash: Optional[str] = None
    password_salt: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.MITARBEITER)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['role'] = self.role.value
        if self.last_login:
            result['last_login'] = self.last_login.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'User':
        data = dict(data)
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        data['role'] = UserRole(data['role'])
        if data.get('last_login'):
            data['last_login'] = datetime.fromisoformat(data['last_login'])
        return cls(**data)


@dataclass(frozen=True)
class Decision:
    """Outcome of an authorization check"""
    allowed: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed


class AuthorizationPolicy:
    """
    Single place deciding who may do what

    Admins may do everything, staff everything except user management,
    customers may see the leaderboard plus their own record and bookings.
    Inactive users may do nothing.
    """

    def authorize(
        self,
        actor: Optional[User],
        action: Action,
        resource_customer_id: Optional[str] = None
    ) -> Decision:
        if actor is None:
            return Decision(False, "Nicht angemeldet")
        if not actor.is_active:
            return Decision(False, "Benutzerkonto ist deaktiviert")

        if action in ROLE_ACTIONS.get(actor.role, set()):
            return Decision(True)

        if actor.role == UserRole.KUNDE and action in OWN_RECORD_ACTIONS:
            if resource_customer_id and resource_customer_id == actor.associated_customer_id:
                return Decision(True)
            return Decision(False, "Zugriff nur auf das eigene Kundenkonto")

        return Decision(False, f"Rolle {actor.role.value} darf {action.value} nicht ausführen")

    def enforce(
        self,
        actor: Optional[User],
        action: Action,
        resource_customer_id: Optional[str] = None
    ) -> None:
        """Raise AuthorizationError when the action is denied"""
        decision = self.authorize(actor, action, resource_customer_id)
        if not decision:
            raise AuthorizationError(decision.reason)


class UserManager:
    """Application user lifecycle and authentication"""

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        clock: Optional[Clock] = None,
        password_min_length: int = 8
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.clock = clock or SystemClock()
        self.password_min_length = password_min_length
        self.table_name = "users"
        self.logger = get_logger("mantrailing.users")

    def create_user(
        self,
        email: str,
        password: str,
        role: UserRole,
        first_name: str = "",
        last_name: str = "",
        associated_customer_id: Optional[str] = None,
        created_by: str = ""
    ) -> User:
        """
        Create a user with a password

        Raises:
            ValidationError: Invalid email, duplicate email or weak password
        """
        email = self._normalize_email(email)
        self.validate_password(password)

        now = self.clock.now()
        user = User(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            email=email,
            first_name=first_name,
            last_name=last_name,
            role=role,
            associated_customer_id=associated_customer_id,
            created_by=created_by
        )
        self._set_user_password(user, password)

        with self.storage.atomic():
            self._save_user(user)
            self.audit_trail.log_event(
                AuditEventType.USER_INVITED,
                'user',
                user.id,
                {'email': email, 'role': role.value, 'associated_customer_id': associated_customer_id},
                created_by or None
            )
        log_action(
            self.logger, "info", f"User created: {email}",
            user_id=created_by or None, action="create_user", resource=f"user:{user.id}",
            extra={"role": role.value}
        )
        return user

    def invite_user(
        self,
        email: str,
        role: UserRole,
        first_name: str = "",
        last_name: str = "",
        invited_by: Optional[str] = None
    ) -> Tuple[User, str]:
        """
        Invite staff or another admin

        Returns:
            Tuple of (created user, one-time temporary password)

        Raises:
            ValidationError: If the role is not Admin or Mitarbeiter
        """
        if role not in INVITABLE_ROLES:
            raise ValidationError("Eingeladen werden können nur Admins und Mitarbeiter")

        temp_password = self._generate_temp_password()
        user = self.create_user(
            email=email,
            password=temp_password,
            role=role,
            first_name=first_name,
            last_name=last_name,
            created_by=invited_by or ""
        )
        return user, temp_password

    def get_user(self, user_id: str) -> Optional[User]:
        data = self.storage.load(self.table_name, user_id)
        if not data:
            return None
        return User.from_dict(data)

    def get_user_by_email(self, email: str) -> Optional[User]:
        users = self.storage.find(self.table_name, {'email': email.strip().lower()})
        if not users:
            return None
        return User.from_dict(users[0])

    def get_user_for_customer(self, customer_id: str) -> Optional[User]:
        users = self.storage.find(self.table_name, {'associated_customer_id': customer_id})
        if not users:
            return None
        return User.from_dict(users[0])

    def list_users(self, role: Optional[UserRole] = None) -> List[User]:
        """List users, optionally filtered by role, sorted by email"""
        users = [User.from_dict(data) for data in self.storage.load_all(self.table_name)]
        if role:
            users = [u for u in users if u.role == role]
        return sorted(users, key=lambda u: u.email)

    def update_user(
        self,
        user_id: str,
        email: Optional[str] = None,
        role: Optional[UserRole] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        associated_customer_id: Optional[str] = None,
        updated_by: Optional[str] = None
    ) -> User:
        """
        Update a user's profile and role

        For a customer user the first and last name are copied onto the
        linked customer record as well.
        """
        user = self.get_user(user_id)
        if not user:
            raise NotFoundError(f"Benutzer {user_id} nicht gefunden")

        old_data = {
            'email': user.email,
            'role': user.role.value,
            'first_name': user.first_name,
            'last_name': user.last_name,
        }

        if email is not None and email.strip().lower() != user.email:
            user.email = self._normalize_email(email)
        if role is not None:
            user.role = role
        if first_name is not None:
            user.first_name = first_name
        if last_name is not None:
            user.last_name = last_name
        if associated_customer_id is not None:
            user.associated_customer_id = associated_customer_id or None

        user.updated_at = self.clock.now()

        with self.storage.atomic():
            self._save_user(user)

            if user.role == UserRole.KUNDE and user.associated_customer_id \
                    and (first_name is not None or last_name is not None):
                self._sync_customer_names(user)

            self.audit_trail.log_event(
                AuditEventType.USER_UPDATED,
                'user',
                user.id,
                {
                    'old_data': old_data,
                    'new_data': {
                        'email': user.email,
                        'role': user.role.value,
                        'first_name': user.first_name,
                        'last_name': user.last_name,
                    },
                },
                updated_by
            )
        log_action(
            self.logger, "info", f"User updated: {user.email}",
            user_id=updated_by, action="update_user", resource=f"user:{user.id}"
        )
        return user

    def sync_names_from_customer(self, customer_id: str, first_name: str, last_name: str) -> None:
        """Copy a customer's edited name onto its linked user, if any"""
        user = self.get_user_for_customer(customer_id)
        if not user:
            return
        user.first_name = first_name
        user.last_name = last_name
        user.updated_at = self.clock.now()
        self._save_user(user)

    def delete_user(self, user_id: str, deleted_by: Optional[str] = None) -> None:
        """
        Delete a user account

        Raises:
            ValidationError: If an admin tries to delete their own account
            NotFoundError: If the user does not exist
        """
        if deleted_by and deleted_by == user_id:
            raise ValidationError("Das eigene Benutzerkonto kann nicht gelöscht werden")

        user = self.get_user(user_id)
        if not user:
            raise NotFoundError(f"Benutzer {user_id} nicht gefunden")

        with self.storage.atomic():
            self.storage.delete(self.table_name, user_id)
            self.audit_trail.log_event(
                AuditEventType.USER_DELETED,
                'user',
                user_id,
                {'email': user.email, 'role': user.role.value},
                deleted_by
            )
        log_action(
            self.logger, "info", f"User deleted: {user.email}",
            user_id=deleted_by, action="delete_user", resource=f"user:{user_id}"
        )

    def authenticate(self, email: str, password: str) -> User:
        """
        Check credentials

        Raises:
            AuthorizationError: Unknown email, wrong password or inactive account
        """
        user = self.get_user_by_email(email or "")

        if not user or not self._verify_password(user, password):
            self.audit_trail.log_event(
                AuditEventType.LOGIN_FAILED,
                'authentication',
                user.id if user else (email or ""),
                {'reason': 'invalid_credentials'}
            )
            log_action(
                self.logger, "warning", "Login failed",
                action="login", resource=f"user:{email}"
            )
            raise AuthorizationError("Ungültige Anmeldedaten")

        if not user.is_active:
            self.audit_trail.log_event(
                AuditEventType.LOGIN_FAILED,
                'authentication',
                user.id,
                {'reason': 'inactive'}
            )
            raise AuthorizationError("Benutzerkonto ist deaktiviert")

        user.last_login = self.clock.now()
        user.updated_at = user.last_login
        self._save_user(user)

        self.audit_trail.log_event(
            AuditEventType.LOGIN_SUCCESS,
            'authentication',
            user.id,
            {'email': user.email},
            user.id
        )
        return user

    def validate_password(self, password: str) -> None:
        if not password or len(password) < self.password_min_length:
            raise ValidationError(
                f"Passwort muss mindestens {self.password_min_length} Zeichen lang sein"
            )

    def _normalize_email(self, email: str) -> str:
        email = (email or "").strip().lower()
        if not re.match(EMAIL_PATTERN, email):
            raise ValidationError("Ungültige E-Mail-Adresse")
        if self.storage.find(self.table_name, {'email': email}):
            raise ValidationError(f"E-Mail-Adresse {email} ist bereits registriert")
        return email

    def _sync_customer_names(self, user: User) -> None:
        data = self.storage.load('customers', user.associated_customer_id)
        if not data:
            return
        data['first_name'] = user.first_name
        data['last_name'] = user.last_name
        data['updated_at'] = user.updated_at.isoformat()
        self.storage.save('customers', user.associated_customer_id, data)

    def _save_user(self, user: User) -> None:
        self.storage.save(self.table_name, user.id, user.to_dict())

    def _generate_salt(self) -> str:
        """Generate random salt for password hashing"""
        return secrets.token_hex(16)

    def _hash_password(self, password: str, salt: str) -> str:
        """Hash password with salt using scrypt"""
        return hashlib.scrypt(
            password.encode(),
            salt=salt.encode(),
            n=16384, r=8, p=1
        ).hex()

    def _set_user_password(self, user: User, password: str) -> None:
        user.password_salt = self._generate_salt()
        user.password_hash = self._hash_password(password, user.password_salt)

    def _verify_password(self, user: User, password: str) -> bool:
        if not user.password_hash or not user.password_salt or not password:
            return False
        expected = self._hash_password(password, user.password_salt)
        return secrets.compare_digest(expected, user.password_hash)

    def _generate_temp_password(self) -> str:
        """Generate temporary password"""
        return secrets.token_urlsafe(12)
