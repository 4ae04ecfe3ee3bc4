"""
AccountService -- per-account settings outside the balance itself.

Responsibility:
    Notification preference and blacklist flag.  Both live on the account
    row; reading either for an unknown id creates the account, the same
    lazy-creation rule the balance store follows.

Architecture position:
    Kernel > Services -- imperative shell.
    Used by the tipping command flows and the notification dispatcher's
    preference lookup.
"""

from collections.abc import Iterable

from sqlalchemy import select

from tip_kernel.domain.notification import NotificationPreference
from tip_kernel.domain.records import AccountInfo
from tip_kernel.exceptions import AccountBlacklistedError
from tip_kernel.logging_config import get_logger
from tip_kernel.models.account import Account
from tip_kernel.services.balance_store import BalanceStore
from tip_kernel.services.base import BaseService

logger = get_logger("services.account")


class AccountService(BaseService):
    """Account settings.  Flushes only; the caller commits."""

    def __init__(self, session, balance_store: BalanceStore | None = None):
        super().__init__(session)
        self._balances = balance_store or BalanceStore(session)

    def get_account(self, account_id: str) -> AccountInfo:
        return self._balances.ensure_account(account_id).to_dto()

    def set_notification_preference(
        self,
        account_id: str,
        preference: NotificationPreference | None,
    ) -> AccountInfo:
        """Store a preference; ``None`` resets it to unset."""
        if preference is not None:
            preference = NotificationPreference(preference)
        account = self._balances.ensure_account(account_id)
        account.notification_preference = preference.value if preference else None
        self.session.flush()
        logger.info(
            "notification_preference_set",
            extra={
                "account_id": account_id,
                "preference": preference.value if preference else None,
            },
        )
        return account.to_dto()

    def get_notification_preference(self, account_id: str) -> NotificationPreference | None:
        return self.get_account(account_id).notification_preference

    def get_notification_preferences(
        self,
        account_ids: Iterable[str],
    ) -> dict[str, NotificationPreference | None]:
        """
        Preferences for many accounts in one query.

        Unknown ids map to ``None`` and are NOT created; this is a read used
        after a settlement, where every recipient already exists.
        """
        wanted = list(dict.fromkeys(account_ids))
        result: dict[str, NotificationPreference | None] = dict.fromkeys(wanted)
        if not wanted:
            return result
        rows = self.session.execute(
            select(Account.account_id, Account.notification_preference)
            .where(Account.account_id.in_(wanted))
        ).all()
        for account_id, preference in rows:
            result[account_id] = (
                NotificationPreference(preference) if preference is not None else None
            )
        return result

    def set_blacklisted(self, account_id: str, blacklisted: bool = True) -> AccountInfo:
        account = self._balances.ensure_account(account_id)
        account.blacklisted = blacklisted
        self.session.flush()
        logger.warning(
            "account_blacklist_changed",
            extra={"account_id": account_id, "blacklisted": blacklisted},
        )
        return account.to_dto()

    def is_blacklisted(self, account_id: str) -> bool:
        account = self.session.execute(
            select(Account.blacklisted).where(Account.account_id == account_id)
        ).scalar_one_or_none()
        return bool(account)

    def require_not_blacklisted(self, account_id: str) -> None:
        """
        Raises:
            AccountBlacklistedError: If the account is blacklisted.
        """
        if self.is_blacklisted(account_id):
            logger.info("blacklisted_account_rejected", extra={"account_id": account_id})
            raise AccountBlacklistedError(account_id)
