"""
Customer Management Module

Customer cards: self-registration, creation by staff, profile edits and
lookups. Balance, booking counter and training progress are only changed by
the ledger in transactions.py.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import re
import secrets

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .clock import Clock, SystemClock
from .currency import ZERO, to_decimal
from .errors import NotFoundError, ValidationError
from .logging_config import get_logger, log_action
from .rbac import EMAIL_PATTERN, User, UserManager, UserRole
from .training import (
    TrainingLevel, TrainingSection, initial_progress, progress_from_list,
    progress_to_list, total_trails,
)


REGISTRATION_CREATOR = "Registrierung"
REGISTRATION_LAST_NAME = "(Kunde)"

# Profile fields staff may edit; everything else belongs to the ledger
PROFILE_FIELDS = ("first_name", "last_name", "email", "phone", "dog_name", "chip_number")


@dataclass
class Customer(StorageRecord):
    """
    Customer card with prepaid balance and training progress
    """
    first_name: str
    last_name: str
    email: str = ""
    phone: str = ""
    dog_name: str = ""
    chip_number: str = ""
    balance: Decimal = ZERO
    total_transactions: int = 0
    total_seminars: int = 0
    level: TrainingLevel = TrainingLevel.EINSTEIGER
    training_progress: List[TrainingSection] = field(default_factory=initial_progress)
    created_by: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def avatar_initials(self) -> str:
        first = (self.first_name or "?")[:1]
        last = (self.last_name or "?")[:1]
        return f"{first}{last}".upper()

    @property
    def total_trails(self) -> int:
        return total_trails(self.training_progress)

    def to_dict(self) -> Dict:
        result = super().to_dict()
        result['balance'] = str(self.balance)
        result['level'] = self.level.value
        result['training_progress'] = progress_to_list(self.training_progress)
        return result

    @classmethod
    def from_dict(cls, data: Dict) -> 'Customer':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            first_name=data['first_name'],
            last_name=data['last_name'],
            email=data.get('email', ''),
            phone=data.get('phone', ''),
            dog_name=data.get('dog_name', ''),
            chip_number=data.get('chip_number', ''),
            balance=to_decimal(data.get('balance', '0')),
            total_transactions=int(data.get('total_transactions', 0)),
            total_seminars=int(data.get('total_seminars', 0)),
            level=TrainingLevel(data.get('level', TrainingLevel.EINSTEIGER.value)),
            training_progress=progress_from_list(data.get('training_progress', [])),
            created_by=data.get('created_by', '')
        )


class CustomerManager:
    """
    Manages customer registration, creation and profile maintenance
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        user_manager: Optional[UserManager] = None,
        clock: Optional[Clock] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.user_manager = user_manager
        self.clock = clock or SystemClock()
        self.table_name = "customers"
        self.logger = get_logger("mantrailing.customers")

    def register_customer(self, email: str, password: str) -> Tuple[Customer, User]:
        """
        Self-registration of a customer

        Creates the customer card with a fresh curriculum and a linked
        customer login in one atomic unit. The account number is derived
        from the email address.

        Args:
            email: Login email, also stored on the card
            password: Initial password

        Returns:
            Tuple of (created Customer, linked User)
        """
        if self.user_manager is None:
            raise ValidationError("Registrierung ist nicht verfügbar")

        email = self._validate_email(email, required=True)
        local_part = email.split('@')[0]

        with self.storage.atomic():
            customer = self._new_customer(
                customer_id=self._generate_customer_id(local_part),
                first_name=local_part or "Neuer",
                last_name=REGISTRATION_LAST_NAME,
                email=email,
                created_by=REGISTRATION_CREATOR
            )
            self._save_customer(customer)

            user = self.user_manager.create_user(
                email=email,
                password=password,
                role=UserRole.KUNDE,
                first_name=customer.first_name,
                last_name=customer.last_name,
                associated_customer_id=customer.id,
                created_by=REGISTRATION_CREATOR
            )

            self.audit_trail.log_event(
                event_type=AuditEventType.CUSTOMER_REGISTERED,
                entity_type="customer",
                entity_id=customer.id,
                metadata={"email": email, "user_id": user.id},
                user_id=user.id
            )

        log_action(
            self.logger, "info", f"Customer registered: {customer.id}",
            user_id=user.id, action="register_customer", resource=f"customer:{customer.id}"
        )
        return customer, user

    def create_customer(
        self,
        first_name: str,
        last_name: str,
        email: str = "",
        phone: str = "",
        dog_name: str = "",
        chip_number: str = "",
        created_by: str = ""
    ) -> Customer:
        """
        Create a new customer card on behalf of staff

        Args:
            first_name: Customer's first name
            last_name: Customer's last name
            email: Optional email address
            phone: Optional phone number
            dog_name: Name of the dog
            chip_number: Transponder chip number of the dog
            created_by: Display name of the acting employee

        Returns:
            Created Customer object
        """
        first_name = (first_name or "").strip()
        last_name = (last_name or "").strip()
        if not first_name or not last_name:
            raise ValidationError("Vor- und Nachname sind erforderlich")
        email = self._validate_email(email)

        seed = email.split('@')[0] if email else last_name
        customer = self._new_customer(
            customer_id=self._generate_customer_id(seed),
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone=phone or "",
            dog_name=dog_name or "",
            chip_number=chip_number or "",
            created_by=created_by
        )

        with self.storage.atomic():
            self._save_customer(customer)
            self.audit_trail.log_event(
                event_type=AuditEventType.CUSTOMER_CREATED,
                entity_type="customer",
                entity_id=customer.id,
                metadata={"full_name": customer.full_name, "email": email, "created_by": created_by}
            )

        log_action(
            self.logger, "info", f"Customer created: {customer.id}",
            action="create_customer", resource=f"customer:{customer.id}",
            extra={"created_by": created_by}
        )
        return customer

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        """Get customer by account number"""
        customer_dict = self.storage.load(self.table_name, customer_id)
        if customer_dict:
            return Customer.from_dict(customer_dict)
        return None

    def require_customer(self, customer_id: str) -> Customer:
        customer = self.get_customer(customer_id)
        if not customer:
            raise NotFoundError(f"Kunde {customer_id} nicht gefunden")
        return customer

    def list_customers(self) -> List[Customer]:
        """All customers sorted by last and first name"""
        customers = [Customer.from_dict(data) for data in self.storage.load_all(self.table_name)]
        return sorted(customers, key=lambda c: (c.last_name.lower(), c.first_name.lower()))

    def search_customers(self, query: str) -> List[Customer]:
        """
        Case-insensitive search over name, dog name, email and account number
        """
        query = (query or "").strip().lower()
        customers = self.list_customers()
        if not query:
            return customers

        return [
            c for c in customers
            if query in c.full_name.lower()
            or query in c.dog_name.lower()
            or query in c.email.lower()
            or query in c.id.lower()
        ]

    def update_customer_profile(
        self,
        customer_id: str,
        updated_by: Optional[str] = None,
        **changes: Optional[str]
    ) -> Customer:
        """
        Edit contact and dog fields of a customer

        Balance, booking counter and training progress cannot be changed
        here. A changed first or last name is copied onto the linked
        customer login.

        Raises:
            ValidationError: Unknown field, empty name or invalid email
            NotFoundError: If the customer does not exist
        """
        unknown = set(changes) - set(PROFILE_FIELDS)
        if unknown:
            raise ValidationError(f"Felder nicht änderbar: {', '.join(sorted(unknown))}")

        customer = self.require_customer(customer_id)
        old_data = {name: getattr(customer, name) for name in PROFILE_FIELDS}

        for name, value in changes.items():
            if value is None:
                continue
            value = value.strip()
            if name in ("first_name", "last_name") and not value:
                raise ValidationError("Vor- und Nachname dürfen nicht leer sein")
            if name == "email":
                if value.lower() != customer.email:
                    value = self._validate_email(value)
                else:
                    value = customer.email
            setattr(customer, name, value)

        customer.updated_at = self.clock.now()

        with self.storage.atomic():
            self._save_customer(customer)
            if self.user_manager and (
                customer.first_name != old_data["first_name"]
                or customer.last_name != old_data["last_name"]
            ):
                self.user_manager.sync_names_from_customer(
                    customer.id, customer.first_name, customer.last_name
                )

            self.audit_trail.log_event(
                event_type=AuditEventType.CUSTOMER_UPDATED,
                entity_type="customer",
                entity_id=customer.id,
                metadata={
                    "old_data": old_data,
                    "new_data": {name: getattr(customer, name) for name in PROFILE_FIELDS}
                },
                user_id=updated_by
            )

        log_action(
            self.logger, "info", f"Customer updated: {customer.id}",
            user_id=updated_by, action="update_customer", resource=f"customer:{customer.id}"
        )
        return customer

    def save_customer(self, customer: Customer) -> None:
        """Persist a customer snapshot produced by the ledger"""
        self._save_customer(customer)

    def _new_customer(self, customer_id: str, first_name: str, last_name: str,
                      email: str = "", phone: str = "", dog_name: str = "",
                      chip_number: str = "", created_by: str = "") -> Customer:
        now = self.clock.now()
        return Customer(
            id=customer_id,
            created_at=now,
            updated_at=now,
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone=phone,
            dog_name=dog_name,
            chip_number=chip_number,
            balance=ZERO,
            total_transactions=0,
            level=TrainingLevel.EINSTEIGER,
            training_progress=initial_progress(),
            created_by=created_by
        )

    def _generate_customer_id(self, seed: str) -> str:
        """Account number ``<SEED>-<4 digits>``, unique in storage"""
        prefix = re.sub(r'[^A-Za-z0-9]', '', seed or '')[:4].upper() or "KUNDE"
        while True:
            candidate = f"{prefix}-{1000 + secrets.randbelow(9000)}"
            if not self.storage.exists(self.table_name, candidate):
                return candidate

    def _validate_email(self, email: Optional[str], required: bool = False) -> str:
        email = (email or "").strip().lower()
        if not email:
            if required:
                raise ValidationError("E-Mail-Adresse ist erforderlich")
            return ""
        if not re.match(EMAIL_PATTERN, email):
            raise ValidationError("Ungültige E-Mail-Adresse")
        if self.storage.find(self.table_name, {"email": email}):
            raise ValidationError(f"E-Mail-Adresse {email} ist bereits einem Kunden zugeordnet")
        return email

    def _save_customer(self, customer: Customer) -> None:
        """Save customer to storage"""
        self.storage.save(self.table_name, customer.id, customer.to_dict())
