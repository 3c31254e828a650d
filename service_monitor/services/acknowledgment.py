"""Acknowledgment wait.

A waiter for an (alert, user) pair races three things: an in-process
acknowledgment signal, a periodic poll of the store, and its deadline.
The signal makes acknowledgment visible immediately when it is written
by this process (or relayed from another one); the poll is the fallback
that also covers waiters resumed after a restart.
"""

import asyncio
import uuid
from collections import defaultdict
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

from service_monitor.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 1.0

WaitKey = tuple[uuid.UUID, uuid.UUID]


class AcknowledgmentSignals:
    """Registry of in-process waiters keyed by (alert, user)."""

    def __init__(self) -> None:
        self._waiters: dict[WaitKey, set[asyncio.Event]] = defaultdict(set)

    @contextmanager
    def subscribe(
        self,
        alert_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> Iterator[asyncio.Event]:
        """Register a waiter event for the duration of the block."""
        key = (alert_id, user_id)
        event = asyncio.Event()
        self._waiters[key].add(event)
        try:
            yield event
        finally:
            waiters = self._waiters.get(key)
            if waiters is not None:
                waiters.discard(event)
                if not waiters:
                    del self._waiters[key]

    def notify_acknowledged(self, alert_id: uuid.UUID, user_id: uuid.UUID) -> int:
        """Wake every waiter for the pair.

        Returns:
            Number of waiters woken.
        """
        waiters = self._waiters.get((alert_id, user_id), set())
        for event in waiters:
            event.set()
        return len(waiters)

    def waiter_count(self, alert_id: uuid.UUID, user_id: uuid.UUID) -> int:
        return len(self._waiters.get((alert_id, user_id), ()))


async def _wait_any(events: list[asyncio.Event], timeout: float) -> None:
    """Sleep until one of the events is set or the timeout passes."""
    waiters = [asyncio.ensure_future(event.wait()) for event in events]
    try:
        await asyncio.wait(
            waiters,
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        for waiter in waiters:
            waiter.cancel()


async def wait_for_acknowledgment(
    store,
    signals: AcknowledgmentSignals,
    alert_id: uuid.UUID,
    user_id: uuid.UUID,
    timeout: float,
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    cancelled: asyncio.Event | None = None,
) -> bool:
    """Wait for a user to acknowledge an alert.

    Args:
        store: Escalation store (has_acknowledged, is_resolved).
        signals: In-process acknowledgment signal registry.
        alert_id: Alert being escalated.
        user_id: User who was notified.
        timeout: Seconds to wait before giving up.
        poll_interval: Seconds between store polls.
        cancelled: Set by the engine when the run must stop. Also set
            here when a poll observes that the alert was resolved.

    Returns:
        True as soon as acknowledgment is observed. False when the
        timeout elapses or the run is cancelled first.
    """
    if cancelled is None:
        cancelled = asyncio.Event()

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    with signals.subscribe(alert_id, user_id) as acknowledged:
        while True:
            if acknowledged.is_set():
                return True
            if cancelled.is_set():
                return False

            try:
                if await store.has_acknowledged(alert_id, user_id):
                    return True
                if await store.is_resolved(alert_id):
                    cancelled.set()
                    return False
            except (SQLAlchemyError, OSError) as e:
                # Treated as "not yet acknowledged"; retried on the next tick
                logger.warning(
                    "Acknowledgment poll failed",
                    alert_id=str(alert_id),
                    user_id=str(user_id),
                    error=str(e),
                )

            remaining = deadline - loop.time()
            if remaining <= 0:
                return False

            await _wait_any([acknowledged, cancelled], min(poll_interval, remaining))
