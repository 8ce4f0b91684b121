"""
Test suite for RBAC module

Tests the authorization policy for the three roles, user administration
and password authentication.
"""

import pytest
from datetime import datetime, timezone

from mantrailing_card.storage import InMemoryStorage
from mantrailing_card.audit import AuditTrail, AuditEventType
from mantrailing_card.clock import FixedClock
from mantrailing_card.errors import AuthorizationError, NotFoundError, ValidationError
from mantrailing_card.rbac import (
    Action, AuthorizationPolicy, User, UserManager, UserRole,
)


NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def storage():
    """Create in-memory storage for tests"""
    return InMemoryStorage()


@pytest.fixture
def audit(storage):
    """Create audit trail for tests"""
    return AuditTrail(storage)


@pytest.fixture
def user_manager(storage, audit):
    """Create user manager for tests"""
    return UserManager(storage, audit, clock=FixedClock(NOW))


def make_user(role, customer_id=None, active=True):
    return User(
        id=f"{role.value.lower()}-1",
        created_at=NOW,
        updated_at=NOW,
        email=f"{role.value.lower()}@example.com",
        first_name="Test",
        last_name=role.value,
        role=role,
        associated_customer_id=customer_id,
        is_active=active
    )


class TestAuthorizationPolicy:
    """Test who may do what"""

    def setup_method(self):
        self.policy = AuthorizationPolicy()
        self.admin = make_user(UserRole.ADMIN)
        self.staff = make_user(UserRole.MITARBEITER)
        self.customer = make_user(UserRole.KUNDE, customer_id="ANNA-1234")

    def test_admin_may_do_everything(self):
        for action in Action:
            assert self.policy.authorize(self.admin, action, "ANNA-1234")

    def test_staff_may_do_everything_but_user_management(self):
        for action in Action:
            decision = self.policy.authorize(self.staff, action, "ANNA-1234")
            assert decision.allowed == (action != Action.MANAGE_USERS)

    def test_customer_sees_own_record(self):
        assert self.policy.authorize(self.customer, Action.VIEW_CUSTOMER, "ANNA-1234")
        assert self.policy.authorize(self.customer, Action.VIEW_TRANSACTIONS, "ANNA-1234")

    def test_customer_denied_foreign_record(self):
        decision = self.policy.authorize(self.customer, Action.VIEW_CUSTOMER, "BEN-5678")

        assert not decision
        assert decision.reason == "Zugriff nur auf das eigene Kundenkonto"

    def test_customer_without_linked_record(self):
        orphan = make_user(UserRole.KUNDE)

        assert not self.policy.authorize(orphan, Action.VIEW_CUSTOMER, None)

    def test_customer_only_reads(self):
        assert self.policy.authorize(self.customer, Action.VIEW_LEADERBOARD)
        for action in (Action.VIEW_CUSTOMERS, Action.BOOK_TRANSACTION, Action.UPDATE_CUSTOMER,
                       Action.SET_INITIAL_VALUES, Action.VIEW_REPORTS, Action.VIEW_DASHBOARD,
                       Action.MANAGE_USERS):
            assert not self.policy.authorize(self.customer, action, "ANNA-1234")

    def test_anonymous_denied(self):
        decision = self.policy.authorize(None, Action.VIEW_LEADERBOARD)

        assert not decision
        assert decision.reason == "Nicht angemeldet"

    def test_inactive_user_denied(self):
        inactive = make_user(UserRole.ADMIN, active=False)

        assert not self.policy.authorize(inactive, Action.VIEW_CUSTOMERS)

    def test_enforce_raises(self):
        with pytest.raises(AuthorizationError):
            self.policy.enforce(self.staff, Action.MANAGE_USERS)

        self.policy.enforce(self.admin, Action.MANAGE_USERS)


class TestUserManagement:
    """Test user creation, invitation, update and deletion"""

    def test_create_user(self, user_manager):
        user = user_manager.create_user(
            email="Eva@Example.com",
            password="geheim123",
            role=UserRole.MITARBEITER,
            first_name="Eva",
            last_name="Trainer"
        )

        assert user.email == "eva@example.com"
        assert user.full_name == "Eva Trainer"
        assert user.is_staff
        assert user.password_hash and user.password_hash != "geheim123"
        assert user_manager.get_user(user.id) == user
        assert user_manager.get_user_by_email("EVA@example.com").id == user.id

    def test_create_user_duplicate_email(self, user_manager):
        user_manager.create_user("eva@example.com", "geheim123", UserRole.MITARBEITER)

        with pytest.raises(ValidationError):
            user_manager.create_user("eva@example.com", "anderes123", UserRole.ADMIN)

    def test_create_user_invalid_email(self, user_manager):
        with pytest.raises(ValidationError):
            user_manager.create_user("eva", "geheim123", UserRole.MITARBEITER)

    def test_password_min_length(self, user_manager):
        with pytest.raises(ValidationError):
            user_manager.create_user("eva@example.com", "kurz", UserRole.MITARBEITER)

    def test_invite_user(self, user_manager, audit):
        user, temp_password = user_manager.invite_user(
            "eva@example.com", UserRole.MITARBEITER, "Eva", "Trainer", invited_by="admin-1"
        )

        assert len(temp_password) >= 12
        assert user.created_by == "admin-1"
        assert user_manager.authenticate("eva@example.com", temp_password).id == user.id

        events = audit.get_events_for_entity("user", user.id)
        assert events[0].event_type == AuditEventType.USER_INVITED
        assert events[0].user_id == "admin-1"

    def test_invite_customer_role_rejected(self, user_manager):
        with pytest.raises(ValidationError):
            user_manager.invite_user("kunde@example.com", UserRole.KUNDE)

    def test_list_users_by_role(self, user_manager):
        user_manager.create_user("zoe@example.com", "geheim123", UserRole.MITARBEITER)
        user_manager.create_user("adam@example.com", "geheim123", UserRole.MITARBEITER)
        user_manager.create_user("chef@example.com", "geheim123", UserRole.ADMIN)

        staff = user_manager.list_users(UserRole.MITARBEITER)

        assert [u.email for u in staff] == ["adam@example.com", "zoe@example.com"]
        assert len(user_manager.list_users()) == 3

    def test_update_user(self, user_manager):
        user = user_manager.create_user("eva@example.com", "geheim123", UserRole.MITARBEITER)

        updated = user_manager.update_user(
            user.id, email="eva.t@example.com", role=UserRole.ADMIN, updated_by="admin-1"
        )

        assert updated.email == "eva.t@example.com"
        assert updated.role == UserRole.ADMIN
        assert user_manager.get_user_by_email("eva@example.com") is None

    def test_update_unknown_user(self, user_manager):
        with pytest.raises(NotFoundError):
            user_manager.update_user("missing", first_name="X")

    def test_delete_user(self, user_manager, audit):
        user = user_manager.create_user("eva@example.com", "geheim123", UserRole.MITARBEITER)

        user_manager.delete_user(user.id, deleted_by="admin-1")

        assert user_manager.get_user(user.id) is None
        assert audit.get_events_for_entity("user", user.id)[-1].event_type == AuditEventType.USER_DELETED

    def test_admin_cannot_delete_self(self, user_manager):
        admin = user_manager.create_user("chef@example.com", "geheim123", UserRole.ADMIN)

        with pytest.raises(ValidationError):
            user_manager.delete_user(admin.id, deleted_by=admin.id)

        assert user_manager.get_user(admin.id) is not None

    def test_delete_unknown_user(self, user_manager):
        with pytest.raises(NotFoundError):
            user_manager.delete_user("missing", deleted_by="admin-1")

    def test_failed_update_leaves_user_and_customer_unchanged(self, user_manager, audit, storage, monkeypatch):
        storage.save("customers", "ANNA-1234", {
            "id": "ANNA-1234", "first_name": "anna", "last_name": "(Kunde)", "updated_at": NOW.isoformat()
        })
        user = user_manager.create_user(
            "anna@example.com", "geheim123", UserRole.KUNDE,
            first_name="anna", last_name="(Kunde)", associated_customer_id="ANNA-1234"
        )

        def failing_log_event(*args, **kwargs):
            raise RuntimeError("audit store unavailable")

        monkeypatch.setattr(audit, "log_event", failing_log_event)
        with pytest.raises(RuntimeError):
            user_manager.update_user(user.id, first_name="Anna", last_name="Schmidt")

        assert user_manager.get_user(user.id).last_name == "(Kunde)"
        assert storage.load("customers", "ANNA-1234")["last_name"] == "(Kunde)"

    def test_failed_delete_keeps_user(self, user_manager, audit, monkeypatch):
        user = user_manager.create_user("eva@example.com", "geheim123", UserRole.MITARBEITER)

        def failing_log_event(*args, **kwargs):
            raise RuntimeError("audit store unavailable")

        monkeypatch.setattr(audit, "log_event", failing_log_event)
        with pytest.raises(RuntimeError):
            user_manager.delete_user(user.id, deleted_by="admin-1")

        assert user_manager.get_user(user.id) is not None

    def test_failed_create_leaves_no_user(self, user_manager, audit, monkeypatch):
        def failing_log_event(*args, **kwargs):
            raise RuntimeError("audit store unavailable")

        monkeypatch.setattr(audit, "log_event", failing_log_event)
        with pytest.raises(RuntimeError):
            user_manager.create_user("eva@example.com", "geheim123", UserRole.MITARBEITER)

        assert user_manager.get_user_by_email("eva@example.com") is None


class TestAuthentication:
    """Test password authentication"""

    def test_successful_authentication(self, user_manager, audit):
        created = user_manager.create_user("eva@example.com", "geheim123", UserRole.MITARBEITER)

        user = user_manager.authenticate(" EVA@example.com ", "geheim123")

        assert user.id == created.id
        assert user.last_login == NOW
        assert user_manager.get_user(user.id).last_login == NOW
        assert audit.get_events_for_entity("authentication", user.id)[-1].event_type == \
            AuditEventType.LOGIN_SUCCESS

    def test_wrong_password(self, user_manager, audit):
        user = user_manager.create_user("eva@example.com", "geheim123", UserRole.MITARBEITER)

        with pytest.raises(AuthorizationError) as exc_info:
            user_manager.authenticate("eva@example.com", "falsch123")

        assert str(exc_info.value) == "Ungültige Anmeldedaten"
        assert audit.get_events_for_entity("authentication", user.id)[-1].event_type == \
            AuditEventType.LOGIN_FAILED

    def test_unknown_email(self, user_manager):
        with pytest.raises(AuthorizationError):
            user_manager.authenticate("niemand@example.com", "geheim123")

    def test_inactive_user(self, user_manager, storage):
        user = user_manager.create_user("eva@example.com", "geheim123", UserRole.MITARBEITER)
        data = storage.load("users", user.id)
        data["is_active"] = False
        storage.save("users", user.id, data)

        with pytest.raises(AuthorizationError):
            user_manager.authenticate("eva@example.com", "geheim123")
