"""
Supply report -- the wallet's figures next to the ledger's liabilities.

Display only.  The ledger's balances are authoritative for spending; the
wallet balance is what actually backs them.  A wallet balance below the
custodial total means the custodian is short and an operator should look.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session, sessionmaker

from tip_kernel.db.units import run_in_executor
from tip_kernel.domain.amount import DEFAULT_TICKER, Amount
from tip_kernel.domain.clock import Clock, SystemClock
from tip_kernel.logging_config import get_logger
from tip_kernel.selectors.ledger_selector import LedgerSelector

from tip_services.ports import ChainClient, SupplyFigures

logger = get_logger("services.supply_report")


@dataclass(frozen=True)
class SupplyReport:
    generated_at: datetime
    wallet: SupplyFigures
    custodial_total: Amount
    account_count: int

    @property
    def is_covered(self) -> bool:
        return self.wallet.wallet_balance >= self.custodial_total

    @property
    def surplus(self) -> Amount:
        """Wallet balance above the custodial total; zero when short."""
        if not self.is_covered:
            return Amount.zero()
        return self.wallet.wallet_balance - self.custodial_total

    @property
    def shortfall(self) -> Amount:
        if self.is_covered:
            return Amount.zero()
        return self.custodial_total - self.wallet.wallet_balance

    def render(self, ticker: str = DEFAULT_TICKER) -> str:
        lines = [
            f"Wallet balance: {self.wallet.wallet_balance.format(ticker)}",
            f"Held for {self.account_count} accounts: {self.custodial_total.format(ticker)}",
        ]
        if self.wallet.block_height is not None:
            lines.append(f"Block height: {self.wallet.block_height}")
        if self.wallet.staking_supply is not None:
            lines.append(f"Staking supply: {self.wallet.staking_supply.format(ticker)}")
        if self.is_covered:
            lines.append(f"Surplus: {self.surplus.format(ticker)}")
        else:
            lines.append(f"SHORTFALL: {self.shortfall.format(ticker)}")
        return "\n".join(lines)


async def build_supply_report(
    session_factory: sessionmaker[Session],
    chain: ChainClient,
    clock: Clock | None = None,
) -> SupplyReport:
    """
    Query the wallet and the ledger and put the figures side by side.

    Raises:
        PersistenceFailureError: If the ledger cannot be read.
        Whatever the chain client raises; there is no fallback figure.
    """
    clock = clock or SystemClock()
    wallet = await chain.get_balance_source()

    def _ledger_figures(session: Session) -> tuple[Amount, int]:
        selector = LedgerSelector(session)
        return selector.custodial_total(), selector.account_count()

    custodial_total, account_count = await run_in_executor(
        session_factory, "supply_report", _ledger_figures
    )

    report = SupplyReport(
        generated_at=clock.now(),
        wallet=wallet,
        custodial_total=custodial_total,
        account_count=account_count,
    )
    if not report.is_covered:
        logger.warning(
            "custodial_shortfall",
            extra={
                "wallet_balance": wallet.wallet_balance.sats,
                "custodial_total": custodial_total.sats,
                "shortfall": report.shortfall.sats,
            },
        )
    return report
