"""
Reporting Engine Module

Dashboard figures, monthly/yearly transaction reports with employee and type
filters, and the trail leaderboard. "Today", "this month" and the offered
report periods all come from the injected clock.
"""

from datetime import datetime
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Union, Tuple
from enum import Enum
import csv
import io
import json

from .clock import Clock, SystemClock
from .currency import ZERO
from .customers import CustomerManager
from .errors import ValidationError
from .rbac import UserManager
from .training import training_info
from .transactions import Transaction, TransactionProcessor, TransactionType


GERMAN_MONTHS = [
    "Januar", "Februar", "März", "April", "Mai", "Juni",
    "Juli", "August", "September", "Oktober", "November", "Dezember",
]

ALL_PERIODS = "Gesamt"
ALL_EMPLOYEES = "Alle Mitarbeiter"


class ReportType(Enum):
    """Report granularity"""
    MONTHLY = "Monatlich"
    YEARLY = "Jährlich"
    CUSTOM = "Benutzerdefiniert"


class TransactionFilter(Enum):
    """Transaction type filter of the transaction report"""
    ALL = "Alle Transaktionen"
    RECHARGES = "Einnahmen (Aufladungen)"
    DEBITS = "Ausgaben (Abbuchungen)"


class ReportFormat(Enum):
    """Export formats"""
    DICT = "dict"
    JSON = "json"
    CSV = "csv"


@dataclass
class ReportResult:
    """Result of a report execution"""
    report_id: str
    generated_at: datetime
    period_start: Optional[datetime]
    period_end: Optional[datetime]
    data: List[Dict[str, Any]] = field(default_factory=list)
    totals: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.metadata:
            self.metadata = {
                'row_count': len(self.data),
                'currency': 'EUR'
            }


def month_label(moment: datetime) -> str:
    return f"{GERMAN_MONTHS[moment.month - 1]} {moment.year}"


def _previous_month(year: int, month: int) -> Tuple[int, int]:
    if month == 1:
        return year - 1, 12
    return year, month - 1


def _next_month(year: int, month: int) -> Tuple[int, int]:
    if month == 12:
        return year + 1, 1
    return year, month + 1


class ReportingEngine:
    """
    Reporting over customers and bookings
    """

    def __init__(
        self,
        customer_manager: CustomerManager,
        transaction_processor: TransactionProcessor,
        user_manager: Optional[UserManager] = None,
        clock: Optional[Clock] = None
    ):
        self.customer_manager = customer_manager
        self.transaction_processor = transaction_processor
        self.user_manager = user_manager
        self.clock = clock or SystemClock()

    def dashboard_stats(self) -> Dict[str, Any]:
        """
        Key figures for the staff dashboard

        Returns:
            Total customers, total balance, bookings today and this month,
            the five newest customers and the five latest bookings
        """
        now = self.clock.now()
        customers = self.customer_manager.list_customers()
        transactions = self.transaction_processor.list_transactions()

        local = [(t, t.created_at.astimezone(now.tzinfo)) for t in transactions]
        today = [t for t, at in local if at.date() == now.date()]
        this_month = [t for t, at in local if (at.year, at.month) == (now.year, now.month)]

        newest_customers = sorted(customers, key=lambda c: c.created_at, reverse=True)[:5]

        return {
            'total_customers': len(customers),
            'total_balance': sum((c.balance for c in customers), ZERO),
            'transactions_today': len(today),
            'transactions_this_month': len(this_month),
            'newest_customers': newest_customers,
            'latest_transactions': transactions[:5],
            'generated_at': now,
        }

    def report_periods(self, report_type: Union[ReportType, str]) -> List[str]:
        """
        Selectable periods for a report type

        Monthly: current and previous month, e.g. ``Dezember 2025``.
        Yearly: current and previous year. Custom: ``Gesamt``.
        """
        report_type = self._parse_report_type(report_type)
        now = self.clock.now()

        if report_type == ReportType.MONTHLY:
            year, month = _previous_month(now.year, now.month)
            return [month_label(now), f"{GERMAN_MONTHS[month - 1]} {year}"]
        if report_type == ReportType.YEARLY:
            return [str(now.year), str(now.year - 1)]
        return [ALL_PERIODS]

    def employee_options(self) -> List[str]:
        """``Alle Mitarbeiter`` followed by the names of admins and staff"""
        names = []
        if self.user_manager:
            names = sorted(
                u.full_name for u in self.user_manager.list_users()
                if u.is_staff and u.full_name
            )
        return [ALL_EMPLOYEES] + names

    def transaction_report(
        self,
        report_type: Union[ReportType, str] = ReportType.MONTHLY,
        period: Optional[str] = None,
        employee: str = ALL_EMPLOYEES,
        type_filter: Union[TransactionFilter, str] = TransactionFilter.ALL
    ) -> ReportResult:
        """
        Bookings of a period, filtered by employee and type

        Args:
            report_type: Monthly, yearly or custom
            period: One of ``report_periods(report_type)``; defaults to the first
            employee: Employee display name or ``Alle Mitarbeiter``
            type_filter: All, recharges only or debits only

        Returns:
            ReportResult with rows newest first and totals for recharges,
            debits, net, count and distinct customers
        """
        report_type = self._parse_report_type(report_type)
        type_filter = self._parse_type_filter(type_filter)
        now = self.clock.now()
        period = period or self.report_periods(report_type)[0]
        start, end = self._period_bounds(report_type, period, now)

        customer_names = {c.id: c.full_name for c in self.customer_manager.list_customers()}

        rows: List[Transaction] = []
        for transaction in self.transaction_processor.list_transactions():
            at = transaction.created_at.astimezone(now.tzinfo)
            if start is not None and not (start <= at < end):
                continue
            if employee and employee != ALL_EMPLOYEES and transaction.employee != employee:
                continue
            if type_filter == TransactionFilter.RECHARGES \
                    and transaction.transaction_type != TransactionType.RECHARGE:
                continue
            if type_filter == TransactionFilter.DEBITS \
                    and transaction.transaction_type != TransactionType.DEBIT:
                continue
            rows.append(transaction)

        recharges = sum(
            (t.amount for t in rows if t.transaction_type == TransactionType.RECHARGE), ZERO
        )
        debits = sum(
            (t.amount for t in rows if t.transaction_type == TransactionType.DEBIT), ZERO
        )

        data = [
            {
                'id': t.id,
                'created_at': t.created_at.isoformat(),
                'customer_id': t.customer_id,
                'customer_name': customer_names.get(t.customer_id, ''),
                'transaction_type': t.transaction_type.value,
                'description': t.description,
                'amount': t.amount,
                'employee': t.employee,
            }
            for t in rows
        ]

        return ReportResult(
            report_id="transaction_report",
            generated_at=now,
            period_start=start,
            period_end=end,
            data=data,
            totals={
                'recharges': recharges,
                'debits': debits,
                'net': recharges - debits,
                'transaction_count': len(rows),
                'active_customers': len({t.customer_id for t in rows}),
            },
            metadata={
                'row_count': len(data),
                'currency': 'EUR',
                'report_type': report_type.value,
                'period': period,
                'employee': employee,
                'type_filter': type_filter.value,
            }
        )

    def leaderboard(self) -> List[Dict[str, Any]]:
        """Customers ranked by total trails, most first"""
        customers = sorted(
            self.customer_manager.list_customers(),
            key=lambda c: c.total_trails,
            reverse=True
        )
        board = []
        for rank, customer in enumerate(customers, start=1):
            info = training_info(customer.total_trails)
            board.append({
                'rank': rank,
                'customer_id': customer.id,
                'name': customer.full_name,
                'dog_name': customer.dog_name,
                'avatar_initials': customer.avatar_initials,
                'total_trails': customer.total_trails,
                'level': customer.level.value,
                'level_display': info.level_display,
            })
        return board

    def export_report(self, result: ReportResult, format: ReportFormat) -> Union[Dict, str]:
        """
        Export report result in specified format
        """
        if format == ReportFormat.DICT:
            return {
                'report_id': result.report_id,
                'generated_at': result.generated_at.isoformat(),
                'period_start': result.period_start.isoformat() if result.period_start else None,
                'period_end': result.period_end.isoformat() if result.period_end else None,
                'data': result.data,
                'totals': result.totals,
                'metadata': result.metadata
            }

        elif format == ReportFormat.JSON:
            export_dict = self.export_report(result, ReportFormat.DICT)
            return json.dumps(export_dict, indent=2, default=str)

        elif format == ReportFormat.CSV:
            output = io.StringIO()

            if result.data:
                headers = list(result.data[0].keys())
                writer = csv.DictWriter(output, fieldnames=headers)
                writer.writeheader()
                for row in result.data:
                    writer.writerow(row)

            csv_content = output.getvalue()
            output.close()
            return csv_content

        else:
            raise ValidationError(f"Unsupported export format: {format}")

    def _period_bounds(
        self,
        report_type: ReportType,
        period: str,
        now: datetime
    ) -> Tuple[Optional[datetime], Optional[datetime]]:
        """[start, end) of a period label in the clock's timezone; None for Gesamt"""
        if period == ALL_PERIODS:
            return None, None

        tz = now.tzinfo
        if report_type == ReportType.YEARLY:
            if not (period.isdigit() and len(period) == 4):
                raise ValidationError(f"Ungültiger Zeitraum: {period}")
            year = int(period)
            try:
                return datetime(year, 1, 1, tzinfo=tz), datetime(year + 1, 1, 1, tzinfo=tz)
            except (ValueError, OverflowError):
                raise ValidationError(f"Ungültiger Zeitraum: {period}")

        if report_type == ReportType.MONTHLY:
            parts = period.split()
            if len(parts) != 2 or parts[0] not in GERMAN_MONTHS or not parts[1].isdigit():
                raise ValidationError(f"Ungültiger Zeitraum: {period}")
            year, month = int(parts[1]), GERMAN_MONTHS.index(parts[0]) + 1
            next_year, next_month = _next_month(year, month)
            try:
                return (
                    datetime(year, month, 1, tzinfo=tz),
                    datetime(next_year, next_month, 1, tzinfo=tz),
                )
            except (ValueError, OverflowError):
                raise ValidationError(f"Ungültiger Zeitraum: {period}")

        raise ValidationError(f"Ungültiger Zeitraum: {period}")

    def _parse_report_type(self, value: Union[ReportType, str]) -> ReportType:
        if isinstance(value, ReportType):
            return value
        try:
            return ReportType(value)
        except ValueError:
            raise ValidationError(f"Unbekannter Berichtstyp: {value}")

    def _parse_type_filter(self, value: Union[TransactionFilter, str]) -> TransactionFilter:
        if isinstance(value, TransactionFilter):
            return value
        try:
            return TransactionFilter(value)
        except ValueError:
            raise ValidationError(f"Unbekannter Transaktionsfilter: {value}")
