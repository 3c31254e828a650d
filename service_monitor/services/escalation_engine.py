"""Alert escalation engine.

Drives one escalation run per alert: walks the service's on-call chain
in ascending level order, pages each user by SMS and then by voice, and
waits a bounded window after each page for an acknowledgment. A run ends
when someone acknowledges, the alert is resolved, or the chain is
exhausted. Exhaustion is terminal: there is no fallback page and no
second pass over the chain.

Runs are supervised asyncio tasks keyed by alert ID. Each run persists
its position on the alert row before every send so that a restarted
process can resume it.

A run only pages while its process holds the alert's ownership lease.
The lease is claimed atomically at run start, renewed by a heartbeat and
by every position write, and released when the run ends. Another process
may take over once the heartbeat is older than the lease.
"""

import asyncio
import uuid
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from service_monitor.logging_config import bind_correlation_id, get_logger
from service_monitor.models.alert import (
    OPEN_ESCALATION_STATES,
    AlertStatus,
    EscalationState,
)
from service_monitor.models.alert_notification import NotificationChannel
from service_monitor.services.acknowledgment import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    AcknowledgmentSignals,
    wait_for_acknowledgment,
)
from service_monitor.services.escalation_chain import ChainMember
from service_monitor.services.escalation_store import AlertSnapshot
from service_monitor.services.notification_channel import (
    BaseNotificationChannel,
    NotificationError,
    build_alert_message,
)

logger = get_logger(__name__)

DEFAULT_RESPONSE_TIMEOUT_SECONDS = 300.0
DEFAULT_LEASE_SECONDS = 60.0

# Channels tried at every level, in order
ESCALATION_CHANNELS = (NotificationChannel.SMS, NotificationChannel.VOICE)

# Persistence errors that must not kill a run
_STORE_ERRORS = (SQLAlchemyError, OSError)


@dataclass(frozen=True)
class EscalationStep:
    """One page: a chain member on a channel."""

    member: ChainMember
    channel: NotificationChannel

    @property
    def level(self) -> int:
        return self.member.level


@dataclass
class EscalationAttempt:
    """Record of a page issued during a run."""

    level: int
    user_id: uuid.UUID
    channel: NotificationChannel
    recorded: bool
    sent: bool


@dataclass
class EscalationResult:
    """Terminal outcome of an escalation run."""

    alert_id: uuid.UUID
    outcome: EscalationState
    attempts: list[EscalationAttempt] = field(default_factory=list)
    level: int | None = None
    channel: NotificationChannel | None = None


def build_escalation_steps(chain: list[ChainMember]) -> list[EscalationStep]:
    """Expand a chain into its ordered pages (SMS then voice per level)."""
    ordered = sorted(chain, key=lambda member: member.level)
    return [
        EscalationStep(member=member, channel=channel)
        for member in ordered
        for channel in ESCALATION_CHANNELS
    ]


def find_resume_point(
    steps: list[EscalationStep],
    alert: AlertSnapshot,
) -> tuple[int, bool]:
    """Locate where an interrupted run continues.

    The stored position names the last page that was issued. If that page
    is still part of the chain, the run re-enters its wait window instead
    of paging again. Otherwise it continues with the first page above the
    stored level.

    Returns:
        (index of the first step to process, whether that step's page was
        already issued)
    """
    if alert.escalation_level is None or alert.escalation_channel is None:
        return 0, False

    for index, step in enumerate(steps):
        if (
            step.level == alert.escalation_level
            and step.channel.value == alert.escalation_channel
        ):
            return index, True

    for index, step in enumerate(steps):
        if step.level > alert.escalation_level:
            return index, False

    return len(steps), False


class EscalationEngine:
    """Owns the escalation runs of every alert in this process.

    Args:
        store: Escalation persistence (see SqlEscalationStore).
        chain_resolver: Object with ``resolve(service_id)`` returning the
            ordered chain members.
        channel: Notification transport.
        signals: In-process acknowledgment signal registry.
        response_timeout: Seconds to wait for acknowledgment after a page.
        poll_interval: Seconds between acknowledgment polls.
        owner_id: Identity written to the alert row while a run is owned
            by this engine. Defaults to a random ID per engine.
        lease_seconds: Age after which an unrenewed lease may be taken
            over. The heartbeat renews it three times per lease.
    """

    def __init__(
        self,
        store,
        chain_resolver,
        channel: BaseNotificationChannel,
        signals: AcknowledgmentSignals | None = None,
        response_timeout: float = DEFAULT_RESPONSE_TIMEOUT_SECONDS,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        owner_id: str | None = None,
        lease_seconds: float = DEFAULT_LEASE_SECONDS,
    ) -> None:
        self._store = store
        self._chain_resolver = chain_resolver
        self._channel = channel
        self.signals = signals or AcknowledgmentSignals()
        self.response_timeout = response_timeout
        self.poll_interval = poll_interval
        self.owner_id = owner_id or uuid.uuid4().hex
        self.lease_seconds = lease_seconds
        self._relay = None
        self._runs: dict[uuid.UUID, asyncio.Task] = {}
        self._cancel_events: dict[uuid.UUID, asyncio.Event] = {}

    def attach_relay(self, relay) -> None:
        """Publish acknowledgments and resolutions to other processes."""
        self._relay = relay

    # ── Run supervision ──

    def start(self, alert_id: uuid.UUID) -> asyncio.Task:
        """Start the escalation run for an alert in the background.

        Returns immediately. Starting an alert whose run is still live
        returns the existing task.
        """
        existing = self._runs.get(alert_id)
        if existing is not None and not existing.done():
            logger.debug("Escalation already running", alert_id=str(alert_id))
            return existing

        cancelled = asyncio.Event()
        task = asyncio.create_task(
            self.run(alert_id, cancelled),
            name=f"escalation-{alert_id}",
        )
        self._runs[alert_id] = task
        self._cancel_events[alert_id] = cancelled
        task.add_done_callback(lambda t: self._on_run_done(alert_id, t))
        return task

    def _on_run_done(self, alert_id: uuid.UUID, task: asyncio.Task) -> None:
        if self._runs.get(alert_id) is task:
            del self._runs[alert_id]
            self._cancel_events.pop(alert_id, None)

        if task.cancelled():
            logger.info("Escalation task cancelled", alert_id=str(alert_id))
            return

        error = task.exception()
        if error is not None:
            logger.error(
                "Escalation run crashed",
                alert_id=str(alert_id),
                error=repr(error),
            )

    def is_running(self, alert_id: uuid.UUID) -> bool:
        task = self._runs.get(alert_id)
        return task is not None and not task.done()

    @property
    def active_runs(self) -> int:
        return sum(1 for task in self._runs.values() if not task.done())

    def cancel(self, alert_id: uuid.UUID) -> bool:
        """Ask a live run to stop at its next checkpoint.

        Returns:
            True if a live run was signalled.
        """
        cancelled = self._cancel_events.get(alert_id)
        if cancelled is None or not self.is_running(alert_id):
            return False
        cancelled.set()
        logger.info("Escalation cancellation requested", alert_id=str(alert_id))
        return True

    async def notify_acknowledged(
        self,
        alert_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> None:
        """Wake waiters after an acknowledgment was committed."""
        self.signals.notify_acknowledged(alert_id, user_id)
        if self._relay is not None:
            await self._relay.publish_acknowledged(alert_id, user_id)

    async def notify_resolved(self, alert_id: uuid.UUID) -> None:
        """Stop the alert's run after a resolution was committed."""
        self.cancel(alert_id)
        if self._relay is not None:
            await self._relay.publish_resolved(alert_id)

    async def resume_open_escalations(self) -> int:
        """Restart runs for active alerts whose escalation never finished.

        Only alerts this engine manages to claim are started; a run whose
        lease is held and renewed by another process is left alone.

        Returns:
            Number of runs started.
        """
        alerts = await self._store.list_open_escalations()
        started = 0
        for alert in alerts:
            if self.is_running(alert.id):
                continue
            try:
                claimed = await self._store.claim(
                    alert.id, self.owner_id, self.lease_seconds
                )
            except _STORE_ERRORS as e:
                logger.warning(
                    "Failed to claim escalation for resume",
                    alert_id=str(alert.id),
                    error=str(e),
                )
                continue
            if not claimed:
                logger.debug(
                    "Escalation owned by another process",
                    alert_id=str(alert.id),
                )
                continue
            logger.info(
                "Resuming escalation",
                alert_id=str(alert.id),
                level=alert.escalation_level,
                channel=alert.escalation_channel,
            )
            self.start(alert.id)
            started += 1
        return started

    async def shutdown(self) -> None:
        """Cancel every live run and wait for them to finish."""
        tasks = [task for task in self._runs.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Escalation engine stopped", cancelled_runs=len(tasks))

    # ── The run itself ──

    async def run(
        self,
        alert_id: uuid.UUID,
        cancelled: asyncio.Event | None = None,
    ) -> EscalationResult:
        """Drive one alert's escalation to a terminal outcome."""
        if cancelled is None:
            cancelled = asyncio.Event()

        with bind_correlation_id(str(alert_id)):
            return await self._run(alert_id, cancelled)

    async def _run(
        self,
        alert_id: uuid.UUID,
        cancelled: asyncio.Event,
    ) -> EscalationResult:
        try:
            alert = await self._store.get_alert(alert_id)
        except _STORE_ERRORS:
            logger.exception("Failed to load alert for escalation")
            return EscalationResult(alert_id, EscalationState.FAILED)

        if alert is None:
            logger.error("Alert not found for escalation", alert_id=str(alert_id))
            return EscalationResult(alert_id, EscalationState.FAILED)

        if alert.escalation_state not in OPEN_ESCALATION_STATES:
            logger.info(
                "Escalation already finished",
                outcome=alert.escalation_state.value,
            )
            return EscalationResult(alert_id, alert.escalation_state)

        try:
            claimed = await self._store.claim(
                alert_id, self.owner_id, self.lease_seconds
            )
        except _STORE_ERRORS:
            logger.exception("Failed to claim escalation")
            return EscalationResult(alert_id, EscalationState.FAILED)

        if not claimed:
            logger.info(
                "Escalation owned by another process",
                state=alert.escalation_state.value,
            )
            return EscalationResult(alert_id, alert.escalation_state)

        heartbeat = asyncio.create_task(
            self._keep_lease(alert_id, cancelled),
            name=f"escalation-lease-{alert_id}",
        )
        try:
            # The position may have moved while another process held the run
            try:
                alert = await self._store.get_alert(alert_id)
            except _STORE_ERRORS:
                logger.exception("Failed to reload alert after claim")
                return EscalationResult(alert_id, EscalationState.FAILED)
            if alert is None:
                return EscalationResult(alert_id, EscalationState.FAILED)
            return await self._escalate(alert, cancelled)
        finally:
            heartbeat.cancel()
            await asyncio.gather(heartbeat, return_exceptions=True)
            await self._release(alert_id)

    async def _escalate(
        self,
        alert: AlertSnapshot,
        cancelled: asyncio.Event,
    ) -> EscalationResult:
        alert_id = alert.id
        if alert.status == AlertStatus.RESOLVED or cancelled.is_set():
            return await self._finish(alert_id, EscalationState.CANCELLED, [])

        try:
            chain = await self._chain_resolver.resolve(alert.service_id)
        except Exception:
            logger.exception(
                "Failed to resolve escalation chain",
                service_id=str(alert.service_id),
            )
            return await self._finish(alert_id, EscalationState.FAILED, [])

        if not chain:
            logger.warning(
                "No escalation chain configured; nobody to notify",
                service_id=str(alert.service_id),
            )
            return await self._finish(alert_id, EscalationState.NO_CHAIN, [])

        steps = build_escalation_steps(chain)
        start_index, already_paged = find_resume_point(steps, alert)
        message = build_alert_message(alert.service_name, alert.service_id)
        attempts: list[EscalationAttempt] = []

        await self._save_position(alert_id, EscalationState.RUNNING)
        logger.info(
            "Escalation started",
            service_id=str(alert.service_id),
            chain_length=len(chain),
            start_step=start_index,
        )

        for index in range(start_index, len(steps)):
            step = steps[index]

            if already_paged and index == start_index:
                logger.info(
                    "Re-entering wait for previously issued page",
                    level=step.level,
                    channel=step.channel.value,
                )
            else:
                if await self._should_stop(alert_id, cancelled):
                    return await self._finish(
                        alert_id, EscalationState.CANCELLED, attempts
                    )
                attempts.append(
                    await self._page(alert_id, step, message, cancelled)
                )
                if cancelled.is_set():
                    return await self._finish(
                        alert_id, EscalationState.CANCELLED, attempts, step
                    )

            acknowledged = await wait_for_acknowledgment(
                self._store,
                self.signals,
                alert_id,
                step.member.user_id,
                timeout=self.response_timeout,
                poll_interval=self.poll_interval,
                cancelled=cancelled,
            )
            if acknowledged:
                logger.info(
                    "Escalation acknowledged",
                    level=step.level,
                    channel=step.channel.value,
                    user_id=str(step.member.user_id),
                    attempts=len(attempts),
                )
                return await self._finish(
                    alert_id, EscalationState.ACKNOWLEDGED, attempts, step
                )

            if cancelled.is_set():
                return await self._finish(
                    alert_id, EscalationState.CANCELLED, attempts, step
                )

            logger.info(
                "No acknowledgment within response window",
                level=step.level,
                channel=step.channel.value,
                timeout_seconds=self.response_timeout,
            )

        logger.warning(
            "Escalation chain exhausted without acknowledgment",
            service_id=str(alert.service_id),
            attempts=len(attempts),
        )
        last_step = steps[-1] if steps else None
        return await self._finish(
            alert_id, EscalationState.EXHAUSTED, attempts, last_step
        )

    async def _page(
        self,
        alert_id: uuid.UUID,
        step: EscalationStep,
        message: str,
        cancelled: asyncio.Event,
    ) -> EscalationAttempt:
        """Record and send one page. Never raises for transport or store errors.

        The position is persisted between the notification row and the
        send, so a crash after the send never leads to a second page.
        """
        attempt = EscalationAttempt(
            level=step.level,
            user_id=step.member.user_id,
            channel=step.channel,
            recorded=False,
            sent=False,
        )

        try:
            await self._store.record_notification(
                alert_id, step.member.user_id, step.channel
            )
            attempt.recorded = True
        except _STORE_ERRORS as e:
            # Skip the send; the wait window still runs so the run keeps moving
            logger.error(
                "Failed to record notification; skipping send",
                level=step.level,
                channel=step.channel.value,
                error=str(e),
            )

        if attempt.recorded:
            owned = await self._save_position(
                alert_id, EscalationState.RUNNING, step.level, step.channel
            )
            if not owned:
                cancelled.set()
                return attempt

            try:
                attempt.sent = await self._channel.send(
                    step.channel, step.member.phone, message
                )
            except NotificationError as e:
                logger.warning(
                    "Notification send failed",
                    level=step.level,
                    channel=step.channel.value,
                    user_id=str(step.member.user_id),
                    error=str(e),
                )
            except Exception:
                logger.exception(
                    "Unexpected error sending notification",
                    level=step.level,
                    channel=step.channel.value,
                )

        logger.info(
            "Escalation page issued",
            level=step.level,
            channel=step.channel.value,
            user_id=str(step.member.user_id),
            sent=attempt.sent,
        )
        return attempt

    async def _should_stop(
        self,
        alert_id: uuid.UUID,
        cancelled: asyncio.Event,
    ) -> bool:
        """Step-boundary checkpoint against cancellation and live status."""
        if cancelled.is_set():
            return True
        try:
            resolved = await self._store.is_resolved(alert_id)
        except _STORE_ERRORS as e:
            logger.warning("Failed to check alert status", error=str(e))
            return False
        if resolved:
            cancelled.set()
        return resolved

    async def _save_position(
        self,
        alert_id: uuid.UUID,
        state: EscalationState,
        level: int | None = None,
        channel: NotificationChannel | None = None,
    ) -> bool:
        """Persist the position while still owning the run.

        Returns False only when another process has taken the lease; a
        failed write is logged and the run carries on.
        """
        try:
            saved = await self._store.save_position(
                alert_id, state, level, channel, owner=self.owner_id
            )
        except _STORE_ERRORS as e:
            logger.warning(
                "Failed to persist escalation position",
                state=state.value,
                error=str(e),
            )
            return True
        if not saved:
            logger.warning("Escalation lease lost", state=state.value)
        return saved

    async def _keep_lease(
        self,
        alert_id: uuid.UUID,
        cancelled: asyncio.Event,
    ) -> None:
        """Renew the lease until the run ends; stop the run if it is lost."""
        interval = self.lease_seconds / 3
        while not cancelled.is_set():
            await asyncio.sleep(interval)
            try:
                renewed = await self._store.renew_lease(alert_id, self.owner_id)
            except _STORE_ERRORS as e:
                logger.warning("Failed to renew escalation lease", error=str(e))
                continue
            if not renewed:
                logger.warning("Escalation lease lost to another process")
                cancelled.set()
                return

    async def _release(self, alert_id: uuid.UUID) -> None:
        try:
            await self._store.release(alert_id, self.owner_id)
        except _STORE_ERRORS as e:
            logger.warning("Failed to release escalation lease", error=str(e))

    async def _finish(
        self,
        alert_id: uuid.UUID,
        outcome: EscalationState,
        attempts: list[EscalationAttempt],
        step: EscalationStep | None = None,
    ) -> EscalationResult:
        if outcome == EscalationState.CANCELLED:
            logger.info("Escalation stopped", attempts=len(attempts))

        await self._save_position(alert_id, outcome)
        return EscalationResult(
            alert_id=alert_id,
            outcome=outcome,
            attempts=attempts,
            level=step.level if step else None,
            channel=step.channel if step else None,
        )
