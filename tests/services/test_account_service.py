"""Tests for AccountService: notification preferences and the blacklist."""

import pytest

from tip_kernel.domain.amount import Amount
from tip_kernel.domain.notification import NotificationPreference
from tip_kernel.exceptions import AccountBlacklistedError
from tip_kernel.services.account_service import AccountService


@pytest.fixture
def accounts(session):
    return AccountService(session)


class TestNotificationPreference:
    def test_unset_by_default(self, accounts):
        assert accounts.get_notification_preference("alice") is None

    def test_set_and_read(self, accounts):
        info = accounts.set_notification_preference("alice", NotificationPreference.DM_ONLY)
        assert info.notification_preference is NotificationPreference.DM_ONLY
        assert accounts.get_notification_preference("alice") is NotificationPreference.DM_ONLY

    def test_accepts_stored_string(self, accounts):
        accounts.set_notification_preference("alice", "off")
        assert accounts.get_notification_preference("alice") is NotificationPreference.OFF

    def test_reset_to_unset(self, accounts):
        accounts.set_notification_preference("alice", NotificationPreference.ALL)
        accounts.set_notification_preference("alice", None)
        assert accounts.get_notification_preference("alice") is None

    def test_unknown_value_rejected(self, accounts):
        with pytest.raises(ValueError):
            accounts.set_notification_preference("alice", "loud")

    def test_bulk_lookup_does_not_create_accounts(self, session, accounts):
        accounts.set_notification_preference("alice", NotificationPreference.ALL)
        prefs = accounts.get_notification_preferences(["alice", "ghost", "alice"])
        assert prefs == {"alice": NotificationPreference.ALL, "ghost": None}
        from tip_kernel.selectors.ledger_selector import LedgerSelector

        assert LedgerSelector(session).balance_of("ghost") is None

    def test_bulk_lookup_empty(self, accounts):
        assert accounts.get_notification_preferences([]) == {}


class TestBlacklist:
    def test_not_blacklisted_by_default(self, accounts):
        assert accounts.is_blacklisted("alice") is False
        accounts.require_not_blacklisted("alice")

    def test_blacklist_and_lift(self, accounts):
        assert accounts.set_blacklisted("alice").blacklisted is True
        assert accounts.is_blacklisted("alice") is True
        accounts.set_blacklisted("alice", False)
        assert accounts.is_blacklisted("alice") is False

    def test_require_raises(self, accounts):
        accounts.set_blacklisted("alice")
        with pytest.raises(AccountBlacklistedError) as exc_info:
            accounts.require_not_blacklisted("alice")
        assert exc_info.value.account_id == "alice"

    def test_blacklist_change_logged_as_warning(self, accounts, captured_logs):
        accounts.set_blacklisted("alice")
        logs = [r for r in captured_logs() if r["message"] == "account_blacklist_changed"]
        assert logs[0]["level"] == "WARNING"

    def test_get_account_snapshot(self, session, accounts):
        from tip_kernel.services.balance_store import BalanceStore

        BalanceStore(session).deposit("alice", Amount(5))
        info = accounts.get_account("alice")
        assert info.account_id == "alice"
        assert info.balance == Amount(5)
        assert info.blacklisted is False
