"""
External collaborator ports.

Contract:
    The ledger talks to the chat platform and the wallet node only through
    these protocols.  Implementations live outside this package (the bot
    process wires real ones; tests use in-memory fakes).

Architecture: tip_services.  No DB or kernel service imports.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from tip_kernel.domain.amount import Amount


@runtime_checkable
class MessagingPlatform(Protocol):
    """Async chat platform operations the ledger needs.

    Channel and message references are opaque strings, valid long after the
    command session that produced them has expired.
    """

    async def send_public_message(self, channel_ref: str, text: str) -> str:
        """Post to a channel; returns the new message's reference."""
        ...

    async def send_direct_message(self, account_id: str, text: str) -> None:
        ...

    async def resolve_role_members(self, role_id: str) -> list[str]:
        ...

    async def collect_reaction_participants(
        self,
        channel_ref: str,
        message_ref: str,
        trigger_token: str,
    ) -> list[str]:
        """Every account that reacted with ``trigger_token``, possibly with duplicates."""
        ...

    async def validate_trigger_token(self, channel_ref: str, trigger_token: str) -> bool:
        """True if the token is a usable reaction in that channel."""
        ...

    async def add_reaction(self, channel_ref: str, message_ref: str, trigger_token: str) -> None:
        ...

    def mention(self, account_id: str) -> str:
        """Inline markup that pings the account."""
        ...

    async def display_name(self, account_id: str) -> str:
        """Plain, non-pinging name for the account."""
        ...


@dataclass(frozen=True)
class SupplyFigures:
    """What the wallet node reports.  Display only; never moves value."""

    wallet_balance: Amount
    block_height: int | None = None
    staking_supply: Amount | None = None


@runtime_checkable
class ChainClient(Protocol):
    """Async read access to the wallet node."""

    async def get_balance_source(self) -> SupplyFigures:
        ...
