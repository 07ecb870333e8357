"""
Ticket Locks
============

Single-writer locks for SLA recalculation.

``TicketLockRegistry`` serializes writers inside one process. On PostgreSQL
``advisory_ticket_lock`` additionally takes a transaction-scoped advisory
lock, so several engine processes sharing a database never recompute the
same ticket at once.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator
from weakref import WeakValueDictionary

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from deskwatch.core import ConcurrencyConflictException
from deskwatch.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class TicketLockRegistry:
    """
    Per-ticket asyncio locks.

    Locks are held in a weak-value map so idle tickets do not accumulate.
    """

    def __init__(self, timeout_seconds: float = 2.0):
        self._timeout = timeout_seconds
        self._locks: "WeakValueDictionary[str, asyncio.Lock]" = WeakValueDictionary()

    def _lock_for(self, ticket_id: str) -> asyncio.Lock:
        lock = self._locks.get(ticket_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[ticket_id] = lock
        return lock

    def is_locked(self, ticket_id: str) -> bool:
        lock = self._locks.get(ticket_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, ticket_id: str) -> AsyncIterator[None]:
        """
        Hold the ticket lock for the duration of the block.

        Raises:
            ConcurrencyConflictException: lock not acquired within the timeout
        """
        lock = self._lock_for(ticket_id)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self._timeout)
        except asyncio.TimeoutError:
            raise ConcurrencyConflictException(ticket_id)

        try:
            yield
        finally:
            lock.release()


async def try_advisory_lock(session: AsyncSession, ticket_id: str) -> bool:
    """Transaction-scoped PostgreSQL advisory lock keyed by ticket ID."""
    result = await session.execute(
        text("SELECT pg_try_advisory_xact_lock(hashtext(:key))"),
        {"key": f"sla:{ticket_id}"}
    )
    return bool(result.scalar())


@asynccontextmanager
async def advisory_ticket_lock(
    session: AsyncSession,
    registry: TicketLockRegistry,
    ticket_id: str
) -> AsyncIterator[None]:
    """
    In-process lock plus, on PostgreSQL, a cross-process advisory lock.

    The advisory lock is released by the database when the unit of work's
    transaction ends.
    """
    async with registry.hold(ticket_id):
        if session.bind is not None and session.bind.dialect.name == "postgresql":
            if not await try_advisory_lock(session, ticket_id):
                logger.debug("Advisory lock busy", extra={"ticket_id": ticket_id})
                raise ConcurrencyConflictException(ticket_id)
        yield
