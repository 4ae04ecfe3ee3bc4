#!/usr/bin/env python3
"""
Operator tooling for the tip ledger.

Reads the active configuration (TIPLEDGER_CONFIG / TIPLEDGER_DATABASE_URL),
connects to its database, and runs one command in one transaction.

Usage:
    python3 scripts/ledger_admin.py init-db
    python3 scripts/ledger_admin.py balance 1234567890
    python3 scripts/ledger_admin.py deposit 1234567890 12.5
    python3 scripts/ledger_admin.py history 1234567890 --limit 20
    python3 scripts/ledger_admin.py blacklist 1234567890 [--remove]
    python3 scripts/ledger_admin.py reactdrops --status failed
    python3 scripts/ledger_admin.py stalled
"""

import argparse
import sys
from pathlib import Path

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _connect(args):
    from tip_config import get_active_config
    from tip_kernel.db.engine import init_engine_from_url
    from tip_kernel.db.immutability import register_immutability_listeners
    from tip_kernel.logging_config import configure_logging

    config = get_active_config(args.config)
    configure_logging(level=args.log_level or config.logging.level)
    db = config.database
    init_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        sqlite_busy_timeout_ms=db.sqlite_busy_timeout_ms,
    )
    register_immutability_listeners()
    return config


def cmd_init_db(args, config) -> int:
    from tip_kernel.db.engine import create_tables

    create_tables()
    print(f"Tables created ({config.database.url.split('://', 1)[0]})")
    return 0


def cmd_balance(args, config) -> int:
    from tip_kernel.db.engine import session_scope
    from tip_kernel.services.balance_store import BalanceStore

    with session_scope() as session:
        view = BalanceStore(session).balance_view(args.account)
    ticker = config.ledger.ticker
    print(f"Account:   {view.account_id}")
    print(f"Balance:   {view.balance.format(ticker)}")
    print(f"Held:      {view.held.format(ticker)}")
    print(f"Available: {view.available.format(ticker)}")
    return 0


def cmd_deposit(args, config) -> int:
    from tip_kernel.db.engine import session_scope
    from tip_kernel.domain.amount import Amount
    from tip_kernel.services.balance_store import BalanceStore

    amount = Amount.from_coins(args.coins)
    with session_scope() as session:
        balance = BalanceStore(session).deposit(args.account, amount)
    print(f"Deposited {amount.format(config.ledger.ticker)}; "
          f"balance now {balance.format(config.ledger.ticker)}")
    return 0


def cmd_history(args, config) -> int:
    from tip_kernel.db.engine import session_scope
    from tip_kernel.selectors.ledger_selector import LedgerSelector

    ticker = config.ledger.ticker
    with session_scope() as session:
        selector = LedgerSelector(session)
        entries = selector.account_history(args.account, limit=args.limit)
        flow = selector.account_flow(args.account)

    for e in entries:
        direction = "OUT" if e.source == args.account else "IN "
        other = e.destination if e.source == args.account else e.source
        print(f"{e.recorded_at:%Y-%m-%d %H:%M:%S}  {direction}  {e.kind.value:<9}  "
              f"{e.amount.format(ticker):>24}  {other}  {e.event_id}")
    print(f"Sent {flow.sent.format(ticker)}, received {flow.received.format(ticker)} "
          f"over {flow.entry_count} entries")
    return 0


def cmd_blacklist(args, config) -> int:
    from tip_kernel.db.engine import session_scope
    from tip_kernel.services.account_service import AccountService

    with session_scope() as session:
        info = AccountService(session).set_blacklisted(args.account, not args.remove)
    print(f"{info.account_id}: blacklisted={info.blacklisted}")
    return 0


def _print_reactdrops(reactdrops, ticker) -> None:
    if not reactdrops:
        print("(none)")
        return
    for r in reactdrops:
        extra = f"  reason={r.failure_reason}" if r.failure_reason else ""
        print(f"{r.reactdrop_id}  {r.status.value:<8}  {r.initiator}  "
              f"{r.amount.format(ticker)}  deadline={r.deadline:%Y-%m-%d %H:%M}{extra}")


def cmd_reactdrops(args, config) -> int:
    from tip_kernel.db.engine import session_scope
    from tip_kernel.domain.reactdrop import ReactdropStatus
    from tip_kernel.selectors.ledger_selector import LedgerSelector

    with session_scope() as session:
        reactdrops = LedgerSelector(session).reactdrops_by_status(
            ReactdropStatus(args.status), limit=args.limit
        )
    _print_reactdrops(reactdrops, config.ledger.ticker)
    return 0


def cmd_stalled(args, config) -> int:
    from tip_batch.services.reactdrop_repository import ReactdropRepository
    from tip_kernel.db.engine import session_scope
    from tip_kernel.domain.clock import SystemClock

    with session_scope() as session:
        stalled = ReactdropRepository(session).find_stalled(
            SystemClock().now(), config.scheduler.stalled_after_seconds
        )
    _print_reactdrops(stalled, config.ledger.ticker)
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Tip ledger operator tooling")
    parser.add_argument("--config", help="Configuration file (default: TIPLEDGER_CONFIG or bundled)")
    parser.add_argument("--log-level", help="Override the configured log level")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create tables").set_defaults(func=cmd_init_db)

    p = sub.add_parser("balance", help="Show balance, holds, and available amount")
    p.add_argument("account")
    p.set_defaults(func=cmd_balance)

    p = sub.add_parser("deposit", help="Credit coins arriving from the wallet")
    p.add_argument("account")
    p.add_argument("coins", help="Amount in coins, e.g. 12.5")
    p.set_defaults(func=cmd_deposit)

    p = sub.add_parser("history", help="Ledger entries sent or received by an account")
    p.add_argument("account")
    p.add_argument("--limit", type=int, default=50)
    p.set_defaults(func=cmd_history)

    p = sub.add_parser("blacklist", help="Block an account from initiating transfers")
    p.add_argument("account")
    p.add_argument("--remove", action="store_true", help="Lift the blacklist instead")
    p.set_defaults(func=cmd_blacklist)

    p = sub.add_parser("reactdrops", help="List reactdrops by status")
    p.add_argument(
        "--status",
        default="pending",
        choices=["pending", "settling", "settled", "expired", "failed"],
    )
    p.add_argument("--limit", type=int, default=50)
    p.set_defaults(func=cmd_reactdrops)

    sub.add_parser(
        "stalled", help="Reactdrops stuck in settling past the stall threshold"
    ).set_defaults(func=cmd_stalled)

    args = parser.parse_args()

    from tip_kernel.exceptions import TipKernelError

    config = _connect(args)
    try:
        return args.func(args, config)
    except TipKernelError as e:
        print(f"ERROR [{e.code}]: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
