"""
Module: tip_kernel.db.units
Responsibility: Run one database unit of work in its own transaction, either
    directly or from async code on the default executor.
Architecture position: Kernel > DB.  Used by the async surfaces (tip_batch
    scheduler, tip_services) so no persistence call blocks the event loop.

Invariants enforced:
    - One session and one transaction per unit of work (session_scope).
    - Any SQLAlchemyError escaping the unit is re-raised as
      PersistenceFailureError with the original chained.  Domain errors
      (TipKernelError subclasses) pass through unchanged.
    - LogContext fields travel into the executor thread.
"""

import asyncio
import contextvars
import functools
from typing import Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from tip_kernel.db.engine import session_scope
from tip_kernel.exceptions import PersistenceFailureError
from tip_kernel.logging_config import get_logger

logger = get_logger("db.units")

T = TypeVar("T")


def run_unit_of_work(
    session_factory: sessionmaker[Session],
    operation: str,
    work: Callable[[Session], T],
) -> T:
    """
    Run ``work(session)`` and commit, or roll back on any exception.

    Raises:
        PersistenceFailureError: On any SQLAlchemyError.
    """
    try:
        with session_scope(session_factory) as session:
            return work(session)
    except SQLAlchemyError as e:
        logger.error(
            "unit_of_work_failed",
            extra={"operation": operation, "error": type(e).__name__},
        )
        raise PersistenceFailureError(operation=operation, reason=str(e)) from e


async def run_in_executor(
    session_factory: sessionmaker[Session],
    operation: str,
    work: Callable[[Session], T],
) -> T:
    """Async form of run_unit_of_work on the loop's default executor."""
    loop = asyncio.get_running_loop()
    ctx = contextvars.copy_context()
    return await loop.run_in_executor(
        None,
        functools.partial(ctx.run, run_unit_of_work, session_factory, operation, work),
    )
