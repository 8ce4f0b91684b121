"""
Test suite for reporting module

Dashboard figures, period selection, transaction report filters and the
leaderboard, all driven by a fixed clock.
"""

import json

import pytest
from decimal import Decimal
from datetime import datetime, timezone

from mantrailing_card.storage import InMemoryStorage
from mantrailing_card.audit import AuditTrail
from mantrailing_card.clock import FixedClock
from mantrailing_card.customers import CustomerManager
from mantrailing_card.errors import ValidationError
from mantrailing_card.rbac import UserManager, UserRole
from mantrailing_card.reporting import (
    ALL_EMPLOYEES, ReportFormat, ReportType, ReportingEngine, TransactionFilter,
)
from mantrailing_card.transactions import TransactionProcessor


class TestReportingEngine:
    """Test reporting functionality"""

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.clock = FixedClock(datetime(2025, 11, 20, 9, 0, tzinfo=timezone.utc), "Europe/Berlin")
        self.user_manager = UserManager(self.storage, self.audit_trail, clock=self.clock)
        self.customer_manager = CustomerManager(
            self.storage, self.audit_trail, self.user_manager, clock=self.clock
        )
        self.processor = TransactionProcessor(
            self.storage, self.customer_manager, self.audit_trail, clock=self.clock
        )
        self.engine = ReportingEngine(
            self.customer_manager, self.processor, self.user_manager, clock=self.clock
        )

        self.user_manager.create_user("eva@example.com", "geheim123", UserRole.MITARBEITER, "Eva", "Trainer")
        self.user_manager.create_user("chef@example.com", "geheim123", UserRole.ADMIN, "Max", "Chef")
        self.customer_manager.register_customer("kunde@example.com", "geheim123")

        self.anna = self.customer_manager.create_customer("Anna", "Schmidt", dog_name="Bello")
        self.ben = self.customer_manager.create_customer("Ben", "Meier", dog_name="Luna")

        # November 2025
        self.processor.recharge(self.anna.id, "100.00", employee="Eva Trainer")
        self.processor.book_session(self.anna.id, employee="Eva Trainer")
        self.processor.recharge(self.ben.id, "50.00", employee="Max Chef")

        # December 2025
        self.clock.advance(days=15)
        self.processor.book_session(self.anna.id, employee="Max Chef")
        self.processor.book_session(self.ben.id, employee="Eva Trainer")

    def test_dashboard_stats(self):
        stats = self.engine.dashboard_stats()

        assert stats['total_customers'] == 3
        assert stats['total_balance'] == Decimal("96.00")
        assert stats['transactions_today'] == 2
        assert stats['transactions_this_month'] == 2
        assert len(stats['latest_transactions']) == 5
        assert stats['latest_transactions'][0].created_at >= stats['latest_transactions'][-1].created_at
        assert stats['generated_at'] == self.clock.now()

    def test_dashboard_newest_customers(self):
        self.clock.advance(minutes=1)
        clara = self.customer_manager.create_customer("Clara", "Wolf")

        stats = self.engine.dashboard_stats()

        assert stats['newest_customers'][0].id == clara.id

    def test_today_uses_clock_timezone(self):
        """A booking at 23:30 UTC is already the next day in Berlin"""
        self.clock = FixedClock(datetime(2025, 12, 5, 23, 30, tzinfo=timezone.utc), "Europe/Berlin")
        self.processor.clock = self.clock
        self.engine.clock = self.clock
        self.processor.book_session(self.anna.id)

        self.clock.advance(hours=1)
        stats = self.engine.dashboard_stats()

        assert stats['transactions_today'] == 1

    def test_report_periods(self):
        assert self.engine.report_periods(ReportType.MONTHLY) == ["Dezember 2025", "November 2025"]
        assert self.engine.report_periods("Jährlich") == ["2025", "2024"]
        assert self.engine.report_periods(ReportType.CUSTOM) == ["Gesamt"]

    def test_report_periods_year_boundary(self):
        self.clock.advance(days=30)

        assert self.engine.report_periods(ReportType.MONTHLY) == ["Januar 2026", "Dezember 2025"]

    def test_unknown_report_type(self):
        with pytest.raises(ValidationError):
            self.engine.report_periods("Wöchentlich")

    def test_employee_options(self):
        assert self.engine.employee_options() == [ALL_EMPLOYEES, "Eva Trainer", "Max Chef"]

    def test_monthly_report_defaults_to_current_month(self):
        result = self.engine.transaction_report(ReportType.MONTHLY)

        assert result.metadata['period'] == "Dezember 2025"
        assert result.totals['transaction_count'] == 2
        assert result.totals['debits'] == Decimal("36.00")
        assert result.totals['recharges'] == Decimal("0")
        assert result.totals['active_customers'] == 2

    def test_previous_month(self):
        result = self.engine.transaction_report(ReportType.MONTHLY, "November 2025")

        assert result.totals['transaction_count'] == 3
        assert result.totals['recharges'] == Decimal("150.00")
        assert result.totals['debits'] == Decimal("18.00")
        assert result.totals['net'] == Decimal("132.00")
        assert result.data[0]['customer_name'] == "Ben Meier"

    def test_yearly_and_total(self):
        yearly = self.engine.transaction_report(ReportType.YEARLY, "2025")
        total = self.engine.transaction_report(ReportType.CUSTOM, "Gesamt")
        empty = self.engine.transaction_report(ReportType.YEARLY, "2024")

        assert yearly.totals['transaction_count'] == 5
        assert total.totals['transaction_count'] == 5
        assert total.period_start is None
        assert empty.data == []

    def test_employee_filter(self):
        result = self.engine.transaction_report(ReportType.CUSTOM, "Gesamt", employee="Eva Trainer")

        assert result.totals['transaction_count'] == 3
        assert {row['employee'] for row in result.data} == {"Eva Trainer"}

    def test_type_filter(self):
        recharges = self.engine.transaction_report(
            ReportType.CUSTOM, "Gesamt", type_filter=TransactionFilter.RECHARGES
        )
        debits = self.engine.transaction_report(
            ReportType.CUSTOM, "Gesamt", type_filter="Ausgaben (Abbuchungen)"
        )

        assert recharges.totals['transaction_count'] == 2
        assert debits.totals['transaction_count'] == 3
        assert all(row['transaction_type'] == "debit" for row in debits.data)

    @pytest.mark.parametrize("report_type,period", [
        (ReportType.MONTHLY, "Dezember"),
        (ReportType.MONTHLY, "Foo 2025"),
        (ReportType.YEARLY, "25"),
        (ReportType.CUSTOM, "2025"),
    ])
    def test_invalid_period(self, report_type, period):
        with pytest.raises(ValidationError):
            self.engine.transaction_report(report_type, period)

    @pytest.mark.parametrize("report_type,period", [
        (ReportType.YEARLY, "0000"),
        (ReportType.YEARLY, "9999"),
        (ReportType.MONTHLY, "Dezember 9999"),
        (ReportType.MONTHLY, "Januar 0"),
    ])
    def test_out_of_range_period(self, report_type, period):
        with pytest.raises(ValidationError, match="Ungültiger Zeitraum"):
            self.engine.transaction_report(report_type, period)

    def test_unknown_type_filter(self):
        with pytest.raises(ValidationError):
            self.engine.transaction_report(type_filter="Stornos")

    def test_leaderboard(self):
        board = self.engine.leaderboard()

        assert [row['name'] for row in board][:2] == ["Anna Schmidt", "Ben Meier"]
        assert board[0]['rank'] == 1
        assert board[0]['total_trails'] == 2
        assert board[0]['level'] == "Einsteiger"
        assert board[0]['level_display'] == "0+"
        assert board[0]['avatar_initials'] == "AS"
        assert board[-1]['total_trails'] == 0

    def test_export_formats(self):
        result = self.engine.transaction_report(ReportType.CUSTOM, "Gesamt")

        exported = self.engine.export_report(result, ReportFormat.DICT)
        assert exported['report_id'] == "transaction_report"
        assert exported['period_start'] is None

        as_json = json.loads(self.engine.export_report(result, ReportFormat.JSON))
        assert as_json['totals']['transaction_count'] == 5

        as_csv = self.engine.export_report(result, ReportFormat.CSV)
        lines = as_csv.strip().splitlines()
        assert lines[0].startswith("id,created_at,customer_id")
        assert len(lines) == 6
