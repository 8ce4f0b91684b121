"""
Transaction Processing Module

The balance & progression ledger. ``apply_transaction`` is the pure booking
step: it validates a recharge or debit against a customer snapshot and
returns the updated snapshot together with a new immutable transaction
record. ``TransactionProcessor`` persists both in one atomic unit and
writes the audit trail.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .clock import Clock, SystemClock
from .currency import AmountLike, ZERO, format_eur, parse_amount, to_decimal
from .customers import Customer, CustomerManager
from .errors import CardError, InsufficientBalanceError, ValidationError
from .logging_config import get_logger, log_action
from .training import advance_progress, level_of, rebuild_progress


DEFAULT_SESSION_PRICE = Decimal("18.00")
DEFAULT_SESSION_DESCRIPTION = "Trails"
DEFAULT_RECHARGE_DESCRIPTION = "Aufladung"
TAKEOVER_DESCRIPTION = "Bestandsübernahme: {total} Trails"
SEMINAR_DESCRIPTION = "Seminar/Event"
WORKSHOP_DESCRIPTION = "Workshop"
WORKSHOP_TAKEOVER_DESCRIPTION = "Workshop (Bestandsübernahme)"

# Debits that count as a seminar booked at the school
REGULAR_SEMINAR_DESCRIPTIONS = (WORKSHOP_DESCRIPTION, SEMINAR_DESCRIPTION)


class TransactionType(Enum):
    """Signed direction of a booking"""
    RECHARGE = "recharge"  # Increases the balance
    DEBIT = "debit"        # Decreases the balance

    @classmethod
    def parse(cls, value) -> 'TransactionType':
        """Accept the enum, its value, or ``credit`` as an alias for recharge"""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        if text in ("credit", "recharge", "aufladung"):
            return cls.RECHARGE
        if text in ("debit", "abbuchung"):
            return cls.DEBIT
        raise ValidationError(f"Unbekannte Buchungsart: {value!r}")


@dataclass(frozen=True)
class TransactionRequest:
    """
    A requested booking

    ``is_session`` marks a debit as one completed training session. When
    left as None the session is recognised by description and price.
    """
    transaction_type: object
    amount: AmountLike
    description: str = ""
    is_session: Optional[bool] = None


@dataclass(frozen=True)
class SessionRule:
    """Description and price that identify a training session debit"""
    price: Decimal = DEFAULT_SESSION_PRICE
    description: str = DEFAULT_SESSION_DESCRIPTION

    def matches(self, transaction_type: TransactionType, amount: Decimal, description: str) -> bool:
        return (
            transaction_type == TransactionType.DEBIT
            and description == self.description
            and amount == self.price
        )


@dataclass
class Transaction(StorageRecord):
    """
    Immutable booking record; the amount is a magnitude, the type carries the sign
    """
    customer_id: str
    transaction_type: TransactionType
    description: str
    amount: Decimal
    old_balance: Decimal
    new_balance: Decimal
    employee: str = ""
    is_session: bool = False

    def __post_init__(self):
        if self.amount < ZERO:
            raise ValueError("Transaction amount must not be negative")

    @property
    def signed_amount(self) -> Decimal:
        if self.transaction_type == TransactionType.DEBIT:
            return -self.amount
        return self.amount

    def to_dict(self) -> Dict:
        result = super().to_dict()
        result['transaction_type'] = self.transaction_type.value
        return result

    @classmethod
    def from_dict(cls, data: Dict) -> 'Transaction':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            customer_id=data['customer_id'],
            transaction_type=TransactionType(data['transaction_type']),
            description=data.get('description', ''),
            amount=to_decimal(data['amount']),
            old_balance=to_decimal(data['old_balance']),
            new_balance=to_decimal(data['new_balance']),
            employee=data.get('employee', ''),
            is_session=data.get('is_session', False)
        )


def apply_transaction(
    customer: Customer,
    request: TransactionRequest,
    employee: str = "",
    clock: Optional[Clock] = None,
    session_rule: Optional[SessionRule] = None,
    recharge_description: str = DEFAULT_RECHARGE_DESCRIPTION
) -> Tuple[Customer, Transaction]:
    """
    Book a recharge or debit against a customer snapshot

    Nothing is mutated: the input snapshot stays as it was and a new one is
    returned. All validation happens before any value is computed.

    Args:
        customer: Current customer snapshot
        request: Type, amount, description and optional session flag
        employee: Display name of the acting employee
        clock: Source of the booking timestamp
        session_rule: Marker identifying a training session debit
        recharge_description: Description used for recharges without one

    Returns:
        Tuple of (updated customer, new transaction record)

    Raises:
        ValidationError: Invalid amount or type, missing debit description,
            or a session flag on a recharge
        InsufficientBalanceError: Debit larger than the balance
    """
    clock = clock or SystemClock()
    session_rule = session_rule or SessionRule()

    amount = parse_amount(request.amount)
    transaction_type = TransactionType.parse(request.transaction_type)
    description = request.description or ""

    if transaction_type == TransactionType.DEBIT:
        if not description.strip():
            raise ValidationError("Für Abbuchungen ist eine Beschreibung erforderlich")
        if amount > customer.balance:
            raise InsufficientBalanceError(
                f"Guthaben nicht ausreichend: {format_eur(customer.balance)} verfügbar, "
                f"{format_eur(amount)} angefordert",
                balance=customer.balance,
                amount=amount
            )
    else:
        if request.is_session:
            raise ValidationError("Nur Abbuchungen können als Trainingseinheit gebucht werden")
        if not description.strip():
            description = recharge_description

    if request.is_session is None:
        is_session = session_rule.matches(transaction_type, amount, description)
    else:
        is_session = bool(request.is_session)

    old_balance = customer.balance
    if transaction_type == TransactionType.RECHARGE:
        new_balance = old_balance + amount
    else:
        new_balance = old_balance - amount

    progress = list(customer.training_progress)
    level = customer.level
    if is_session:
        progress, unlocked = advance_progress(progress)
        if unlocked is not None:
            level = unlocked

    total_seminars = customer.total_seminars
    if transaction_type == TransactionType.DEBIT and description in REGULAR_SEMINAR_DESCRIPTIONS:
        total_seminars += 1

    now = clock.now()
    updated = replace(
        customer,
        balance=new_balance,
        total_transactions=customer.total_transactions + 1,
        total_seminars=total_seminars,
        training_progress=progress,
        level=level,
        updated_at=now
    )

    transaction = Transaction(
        id=str(uuid.uuid4()),
        created_at=now,
        updated_at=now,
        customer_id=customer.id,
        transaction_type=transaction_type,
        description=description,
        amount=amount,
        old_balance=old_balance,
        new_balance=new_balance,
        employee=employee,
        is_session=is_session
    )
    return updated, transaction


class TransactionProcessor:
    """
    Persists ledger bookings atomically and keeps the audit trail
    """

    def __init__(
        self,
        storage: StorageInterface,
        customer_manager: CustomerManager,
        audit_trail: AuditTrail,
        clock: Optional[Clock] = None,
        session_rule: Optional[SessionRule] = None,
        recharge_description: str = DEFAULT_RECHARGE_DESCRIPTION
    ):
        self.storage = storage
        self.customer_manager = customer_manager
        self.audit_trail = audit_trail
        self.clock = clock or SystemClock()
        self.session_rule = session_rule or SessionRule()
        self.recharge_description = recharge_description
        self.table_name = "transactions"
        self.logger = get_logger("mantrailing.transactions")

    def book_transaction(
        self,
        customer_id: str,
        request: TransactionRequest,
        employee: str = "",
        actor_id: Optional[str] = None
    ) -> Tuple[Customer, Transaction]:
        """
        Validate and persist one booking

        Customer snapshot and transaction record are written together or
        not at all.

        Args:
            customer_id: Account number of the customer
            request: The requested booking
            employee: Display name of the acting employee
            actor_id: User ID of the acting employee, for the audit trail

        Returns:
            Tuple of (updated Customer, created Transaction)
        """
        try:
            with self.storage.atomic():
                customer = self.customer_manager.require_customer(customer_id)
                updated, transaction = apply_transaction(
                    customer,
                    request,
                    employee=employee,
                    clock=self.clock,
                    session_rule=self.session_rule,
                    recharge_description=self.recharge_description
                )

                self.customer_manager.save_customer(updated)
                self._save_transaction(transaction)

                self.audit_trail.log_event(
                    event_type=AuditEventType.TRANSACTION_BOOKED,
                    entity_type="transaction",
                    entity_id=transaction.id,
                    metadata={
                        "customer_id": customer_id,
                        "transaction_type": transaction.transaction_type.value,
                        "amount": transaction.amount,
                        "old_balance": transaction.old_balance,
                        "new_balance": transaction.new_balance,
                        "is_session": transaction.is_session,
                        "employee": employee
                    },
                    user_id=actor_id
                )

                if updated.level != customer.level:
                    self.audit_trail.log_event(
                        event_type=AuditEventType.LEVEL_COMPLETED,
                        entity_type="customer",
                        entity_id=customer_id,
                        metadata={"completed": customer.level, "current": updated.level},
                        user_id=actor_id
                    )
        except CardError as e:
            log_action(
                self.logger, "warning", f"Booking rejected: {e}",
                user_id=actor_id, action="book_transaction", resource=f"customer:{customer_id}",
                extra={"error": type(e).__name__}
            )
            raise

        log_action(
            self.logger, "info", f"Transaction booked: {transaction.transaction_type.value}",
            user_id=actor_id, action="book_transaction", resource=f"transaction:{transaction.id}",
            extra={
                "customer_id": customer_id,
                "amount": str(transaction.amount),
                "new_balance": str(transaction.new_balance),
                "is_session": transaction.is_session
            }
        )
        return updated, transaction

    def recharge(self, customer_id: str, amount: AmountLike, description: str = "",
                 employee: str = "", actor_id: Optional[str] = None) -> Tuple[Customer, Transaction]:
        """Top up a customer's balance"""
        request = TransactionRequest(TransactionType.RECHARGE, amount, description)
        return self.book_transaction(customer_id, request, employee, actor_id)

    def debit(self, customer_id: str, amount: AmountLike, description: str,
              employee: str = "", actor_id: Optional[str] = None,
              is_session: Optional[bool] = None) -> Tuple[Customer, Transaction]:
        """Charge a customer's balance"""
        request = TransactionRequest(TransactionType.DEBIT, amount, description, is_session)
        return self.book_transaction(customer_id, request, employee, actor_id)

    def book_session(self, customer_id: str, employee: str = "",
                     actor_id: Optional[str] = None) -> Tuple[Customer, Transaction]:
        """Charge one training session at the configured price"""
        return self.debit(
            customer_id,
            self.session_rule.price,
            self.session_rule.description,
            employee=employee,
            actor_id=actor_id,
            is_session=True
        )

    def book_seminar(self, customer_id: str, amount: AmountLike, employee: str = "",
                     actor_id: Optional[str] = None) -> Tuple[Customer, Transaction]:
        """Charge a seminar or event at an individual price"""
        return self.debit(
            customer_id,
            amount,
            SEMINAR_DESCRIPTION,
            employee=employee,
            actor_id=actor_id,
            is_session=False
        )

    def set_initial_values(
        self,
        customer_id: str,
        total: int,
        employee: str = "",
        actor_id: Optional[str] = None,
        total_seminars: Optional[int] = None
    ) -> Tuple[Customer, Transaction]:
        """
        Take over an existing customer with a known number of trails

        Rebuilds the training progress from the absolute count and records a
        zero-amount debit documenting the takeover. The balance is unchanged.

        When ``total_seminars`` is given, zero-amount workshop takeover
        records are added or removed so that regular and taken-over seminars
        add up to it.

        Raises:
            ValidationError: If total is not a non-negative integer, or
                total_seminars is below the seminars already booked
        """
        if isinstance(total, bool) or not isinstance(total, int):
            raise ValidationError("Anzahl der Trails muss eine ganze Zahl sein")
        if total_seminars is not None:
            if isinstance(total_seminars, bool) or not isinstance(total_seminars, int) or total_seminars < 0:
                raise ValidationError("Anzahl der Seminare muss eine nicht-negative ganze Zahl sein")
        progress = rebuild_progress(total)

        with self.storage.atomic():
            customer = self.customer_manager.require_customer(customer_id)
            now = self.clock.now()

            seminar_change = 0
            if total_seminars is not None:
                seminar_change = self._take_over_seminars(customer, total_seminars, employee, now)
            else:
                total_seminars = customer.total_seminars

            updated = replace(
                customer,
                training_progress=progress,
                level=level_of(progress),
                total_transactions=customer.total_transactions + seminar_change + 1,
                total_seminars=total_seminars,
                updated_at=now
            )
            transaction = Transaction(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                customer_id=customer_id,
                transaction_type=TransactionType.DEBIT,
                description=TAKEOVER_DESCRIPTION.format(total=total),
                amount=ZERO,
                old_balance=customer.balance,
                new_balance=customer.balance,
                employee=employee
            )

            self.customer_manager.save_customer(updated)
            self._save_transaction(transaction)

            self.audit_trail.log_event(
                event_type=AuditEventType.PROGRESS_IMPORTED,
                entity_type="customer",
                entity_id=customer_id,
                metadata={
                    "total_trails": total,
                    "total_seminars": total_seminars,
                    "seminar_records_changed": seminar_change,
                    "level": updated.level,
                    "transaction_id": transaction.id,
                    "employee": employee
                },
                user_id=actor_id
            )

        log_action(
            self.logger, "info", f"Progress taken over: {total} trails",
            user_id=actor_id, action="set_initial_values", resource=f"customer:{customer_id}",
            extra={"level": updated.level.value, "total_seminars": updated.total_seminars}
        )
        return updated, transaction

    def _take_over_seminars(self, customer: Customer, total_seminars: int,
                            employee: str, now: datetime) -> int:
        """Match the taken-over workshop records to a seminar total; returns the record delta"""
        records = [
            Transaction.from_dict(data)
            for data in self.storage.find(self.table_name, {"customer_id": customer.id})
        ]
        regular = [
            t for t in records
            if t.transaction_type == TransactionType.DEBIT and t.description in REGULAR_SEMINAR_DESCRIPTIONS
        ]
        taken_over = sorted(
            (t for t in records if t.description == WORKSHOP_TAKEOVER_DESCRIPTION),
            key=lambda t: t.created_at
        )

        if total_seminars < len(regular):
            raise ValidationError(
                f"Korrektur nicht möglich: {len(regular)} Seminare wurden bereits regulär gebucht"
            )

        change = (total_seminars - len(regular)) - len(taken_over)
        # Takeover records are the only bookings ever removed; the oldest go first
        for transaction in taken_over[:max(-change, 0)]:
            self.storage.delete(self.table_name, transaction.id)
        for _ in range(max(change, 0)):
            self._save_transaction(Transaction(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                customer_id=customer.id,
                transaction_type=TransactionType.DEBIT,
                description=WORKSHOP_TAKEOVER_DESCRIPTION,
                amount=ZERO,
                old_balance=customer.balance,
                new_balance=customer.balance,
                employee=employee
            ))
        return change

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        """Get transaction by ID"""
        data = self.storage.load(self.table_name, transaction_id)
        if data:
            return Transaction.from_dict(data)
        return None

    def get_customer_transactions(self, customer_id: str) -> List[Transaction]:
        """All bookings of a customer, newest first"""
        self.customer_manager.require_customer(customer_id)
        records = self.storage.find(self.table_name, {"customer_id": customer_id})
        return _newest_first([Transaction.from_dict(data) for data in records])

    def list_transactions(self) -> List[Transaction]:
        """All bookings, newest first"""
        records = self.storage.load_all(self.table_name)
        return _newest_first([Transaction.from_dict(data) for data in records])

    def _save_transaction(self, transaction: Transaction) -> None:
        """Save transaction to storage"""
        self.storage.save(self.table_name, transaction.id, transaction.to_dict())


def _newest_first(transactions: List[Transaction]) -> List[Transaction]:
    # Equal timestamps keep reverse insertion order
    return sorted(reversed(transactions), key=lambda t: t.created_at, reverse=True)

