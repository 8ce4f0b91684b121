"""
Authentication and authorization dependencies
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..storage import StorageInterface, SQLiteStorage
from ..audit import AuditTrail, AuditEventType
from ..clock import Clock, SystemClock
from ..config import CardConfig, get_config
from ..customers import CustomerManager
from ..logging_config import get_logger, log_action
from ..rbac import Action, AuthorizationPolicy, User, UserManager, UserRole
from ..reporting import ReportingEngine
from ..transactions import SessionRule, TransactionProcessor


logger = get_logger("mantrailing.api")

# JWT Security
security = HTTPBearer(auto_error=False)


class CardSystem:
    """Mantrailing card service with all components initialized"""

    def __init__(
        self,
        config: Optional[CardConfig] = None,
        storage: Optional[StorageInterface] = None,
        clock: Optional[Clock] = None
    ):
        self.config = config or get_config()
        self.storage = storage or SQLiteStorage.from_url(self.config.database_url)
        self.clock = clock or SystemClock(self.config.timezone)

        self.audit_trail = AuditTrail(self.storage)
        self.policy = AuthorizationPolicy()
        self.user_manager = UserManager(
            self.storage, self.audit_trail, self.clock,
            password_min_length=self.config.password_min_length
        )
        self.customer_manager = CustomerManager(
            self.storage, self.audit_trail, self.user_manager, self.clock
        )
        self.transaction_processor = TransactionProcessor(
            self.storage,
            self.customer_manager,
            self.audit_trail,
            self.clock,
            session_rule=SessionRule(
                price=self.config.session_price,
                description=self.config.session_description
            ),
            recharge_description=self.config.recharge_default_description
        )
        self.reporting_engine = ReportingEngine(
            self.customer_manager, self.transaction_processor, self.user_manager, self.clock
        )

        self._bootstrap_admin()

    def _bootstrap_admin(self) -> None:
        """Create the first admin from configuration when no user exists yet"""
        email = self.config.bootstrap_admin_email
        password = self.config.bootstrap_admin_password
        if not email or not password or self.user_manager.list_users():
            return
        self.user_manager.create_user(
            email=email,
            password=password,
            role=UserRole.ADMIN,
            first_name="Admin",
            created_by="bootstrap"
        )

    def create_access_token(self, user: User) -> str:
        # PyJWT checks expiry against the wall clock, not the injected clock
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user.id,
            "role": user.role.value,
            "iat": now,
            "exp": now + timedelta(hours=self.config.jwt_expiry_hours),
        }
        return jwt.encode(payload, self.config.jwt_secret, algorithm=self.config.jwt_algorithm)


def get_card_system(request: Request) -> CardSystem:
    """Card system attached to the application, built on first use"""
    system = getattr(request.app.state, "card_system", None)
    if system is None:
        system = CardSystem()
        request.app.state.card_system = system
    return system


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: CardSystem = Depends(get_card_system)
) -> User:
    """Dependency that validates the JWT and returns the acting user"""
    if not system.config.auth_enabled:
        # Auth switched off (local testing): act as an unsaved admin
        now = system.clock.now()
        return User(
            id="system", created_at=now, updated_at=now,
            email="system@localhost", first_name="System", last_name="",
            role=UserRole.ADMIN
        )

    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = jwt.decode(
            credentials.credentials,
            system.config.jwt_secret,
            algorithms=[system.config.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub")
    user = system.user_manager.get_user(user_id) if user_id else None
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user


def require(action: Action):
    """Dependency factory checking the authorization policy

    A ``customer_id`` path parameter is passed to the policy so customers
    can reach their own record.
    """
    def check(
        request: Request,
        user: User = Depends(get_current_user),
        system: CardSystem = Depends(get_card_system)
    ) -> User:
        customer_id = request.path_params.get("customer_id")
        decision = system.policy.authorize(user, action, customer_id)
        if not decision:
            system.audit_trail.log_event(
                AuditEventType.ACCESS_DENIED,
                "authorization",
                customer_id or action.value,
                {"action": action.value, "reason": decision.reason},
                user.id
            )
            log_action(
                logger, "warning", f"Access denied: {action.value}",
                user_id=user.id, action=action.value,
                resource=f"customer:{customer_id}" if customer_id else None
            )
            raise HTTPException(status_code=403, detail=decision.reason)
        return user
    return check


def employee_name(user: User) -> str:
    """Display name stored on bookings made by this user"""
    return user.full_name or user.email
