"""
Test suite for audit module

Tests the hash-chained audit trail, tamper detection and integrity
verification.
"""

import pytest
import threading
from datetime import datetime, timezone
from decimal import Decimal

from mantrailing_card.storage import InMemoryStorage
from mantrailing_card.audit import AuditTrail, AuditEvent, AuditEventType
from mantrailing_card.training import TrainingLevel


class CountingStorage(InMemoryStorage):
    """In-memory storage that counts full reads of the audit table"""

    def __init__(self):
        super().__init__()
        self.audit_loads = 0

    def load_all(self, table):
        if table == "audit_events":
            self.audit_loads += 1
        return super().load_all(table)


class TestAuditEvent:
    """Test AuditEvent functionality"""

    def test_metadata_serialization(self):
        """Decimals, datetimes and enums become JSON-friendly values"""
        now = datetime.now(timezone.utc)

        event = AuditEvent(
            id="AUDIT001",
            created_at=now,
            updated_at=now,
            event_type=AuditEventType.TRANSACTION_BOOKED,
            entity_type="transaction",
            entity_id="TXN001",
            previous_hash="",
            current_hash="",
            metadata={
                "amount": Decimal("18.00"),
                "booked_at": now,
                "level": TrainingLevel.GRUNDLAGEN,
                "nested": {"balance": Decimal("82.00")},
                "values": [Decimal("1.00")],
            }
        )

        assert event.metadata["amount"] == "18.00"
        assert event.metadata["booked_at"] == now.isoformat()
        assert event.metadata["level"] == "Grundlagen"
        assert event.metadata["nested"] == {"balance": "82.00"}
        assert event.metadata["values"] == ["1.00"]

    def test_hash_verification(self):
        now = datetime.now(timezone.utc)
        event = AuditEvent(
            id="AUDIT001", created_at=now, updated_at=now,
            event_type=AuditEventType.CUSTOMER_CREATED, entity_type="customer",
            entity_id="ANNA-1234", previous_hash="", current_hash="", metadata={}
        )
        event.current_hash = event.calculate_hash()

        assert event.verify_hash()
        event.entity_id = "BEN-5678"
        assert not event.verify_hash()


class TestAuditTrail:
    """Test AuditTrail functionality"""

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)

    def test_log_first_event(self):
        event = self.audit_trail.log_event(
            event_type=AuditEventType.CUSTOMER_CREATED,
            entity_type="customer",
            entity_id="ANNA-1234",
            metadata={"full_name": "Anna Schmidt"},
            user_id="admin-1"
        )

        assert event.previous_hash == ""
        assert len(event.current_hash) == 64
        assert event.user_id == "admin-1"
        assert self.audit_trail.count_events() == 1

    def test_log_multiple_events_chain(self):
        first = self.audit_trail.log_event(AuditEventType.CUSTOMER_CREATED, "customer", "ANNA-1234")
        second = self.audit_trail.log_event(AuditEventType.TRANSACTION_BOOKED, "transaction", "t1")
        third = self.audit_trail.log_event(AuditEventType.LEVEL_COMPLETED, "customer", "ANNA-1234")

        assert second.previous_hash == first.current_hash
        assert third.previous_hash == second.current_hash
        assert [e.id for e in self.audit_trail.get_all_events()] == [first.id, second.id, third.id]
        assert [e.id for e in self.audit_trail.get_all_events(limit=2)] == [second.id, third.id]

    def test_chain_continues_after_reload(self):
        first = self.audit_trail.log_event(AuditEventType.CUSTOMER_CREATED, "customer", "ANNA-1234")

        reloaded = AuditTrail(self.storage)
        second = reloaded.log_event(AuditEventType.CUSTOMER_UPDATED, "customer", "ANNA-1234")

        assert second.previous_hash == first.current_hash
        assert reloaded.verify_integrity()["valid"]

    def test_get_events_for_entity(self):
        self.audit_trail.log_event(AuditEventType.CUSTOMER_CREATED, "customer", "ANNA-1234")
        self.audit_trail.log_event(AuditEventType.CUSTOMER_CREATED, "customer", "BEN-5678")
        self.audit_trail.log_event(AuditEventType.CUSTOMER_UPDATED, "customer", "ANNA-1234")

        events = self.audit_trail.get_events_for_entity("customer", "ANNA-1234")

        assert [e.event_type for e in events] == [
            AuditEventType.CUSTOMER_CREATED, AuditEventType.CUSTOMER_UPDATED
        ]

    def test_verify_integrity_valid_chain(self):
        for i in range(5):
            self.audit_trail.log_event(AuditEventType.TRANSACTION_BOOKED, "transaction", f"t{i}")

        result = self.audit_trail.verify_integrity()

        assert result["valid"]
        assert result["total_events"] == 5
        assert result["hash_errors"] == []
        assert result["chain_breaks"] == []

    def test_verify_integrity_detects_metadata_tampering(self):
        event = self.audit_trail.log_event(
            AuditEventType.TRANSACTION_BOOKED, "transaction", "t1", {"amount": Decimal("18.00")}
        )

        data = self.storage.load(self.audit_trail.table_name, event.id)
        data["metadata"]["amount"] = "1.00"
        self.storage.save(self.audit_trail.table_name, event.id, data)

        result = self.audit_trail.verify_integrity()

        assert not result["valid"]
        assert result["hash_errors"][0]["event_id"] == event.id

    def test_verify_integrity_detects_chain_break(self):
        self.audit_trail.log_event(AuditEventType.CUSTOMER_CREATED, "customer", "ANNA-1234")
        second = self.audit_trail.log_event(AuditEventType.CUSTOMER_UPDATED, "customer", "ANNA-1234")

        data = self.storage.load(self.audit_trail.table_name, second.id)
        data["previous_hash"] = "broken_chain_hash"
        self.storage.save(self.audit_trail.table_name, second.id, data)

        result = self.audit_trail.verify_integrity()

        assert not result["valid"]
        assert result["chain_breaks"][0]["event_id"] == second.id
        assert result["chain_breaks"][0]["actual_previous_hash"] == "broken_chain_hash"

    def test_verify_integrity_empty_trail(self):
        result = self.audit_trail.verify_integrity()

        assert result["valid"]
        assert result["total_events"] == 0

    def test_rolled_back_event_leaves_valid_chain(self):
        self.audit_trail.log_event(AuditEventType.CUSTOMER_CREATED, "customer", "ANNA-1234")

        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.audit_trail.log_event(AuditEventType.TRANSACTION_BOOKED, "transaction", "t1")
                raise RuntimeError("booking failed")

        self.audit_trail.log_event(AuditEventType.TRANSACTION_BOOKED, "transaction", "t2")

        assert self.audit_trail.count_events() == 2
        assert self.audit_trail.verify_integrity()["valid"]

    def test_logging_does_not_reload_the_whole_trail(self):
        storage = CountingStorage()
        audit_trail = AuditTrail(storage)
        for i in range(5):
            audit_trail.log_event(AuditEventType.TRANSACTION_BOOKED, "transaction", f"t{i}")

        loads_before = storage.audit_loads
        audit_trail.log_event(AuditEventType.TRANSACTION_BOOKED, "transaction", "t5")

        assert storage.audit_loads == loads_before
        assert audit_trail.verify_integrity()["valid"]

    def test_rolled_back_first_event_restarts_chain(self):
        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.audit_trail.log_event(AuditEventType.CUSTOMER_CREATED, "customer", "ANNA-1234")
                raise RuntimeError("registration failed")

        event = self.audit_trail.log_event(AuditEventType.CUSTOMER_CREATED, "customer", "BEN-5678")

        assert event.previous_hash == ""
        assert self.audit_trail.verify_integrity()["valid"]

    def test_concurrent_event_logging(self):
        def log_events(prefix):
            for i in range(10):
                self.audit_trail.log_event(AuditEventType.TRANSACTION_BOOKED, "transaction", f"{prefix}{i}")

        threads = [threading.Thread(target=log_events, args=(f"w{n}-",)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        result = self.audit_trail.verify_integrity()
        assert result["total_events"] == 40
        assert result["valid"]
