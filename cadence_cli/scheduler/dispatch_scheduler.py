"""Dispatch scheduler.

The DispatchScheduler keeps one pending occurrence alive for every
active (message, recipient) pair and delivers occurrences once they are
due. APScheduler drives a fixed-cadence tick; each tick runs a coverage
pass followed by a due-processing pass.

Delivery timing is only as precise as the tick interval: an occurrence
is picked up by the first tick at or after its due time.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.events import (
    EVENT_JOB_EXECUTED,
    EVENT_JOB_ERROR,
    EVENT_JOB_MISSED,
)

from cadence_cli.activity import ActivityLog
from cadence_cli.scheduler.dispatch import DispatchInvoker
from cadence_cli.scheduler.jitter import next_due_time
from cadence_cli.storage.base import (
    AUTO_SEND_ENABLED,
    DEFAULT_SETTINGS,
    INTERVAL_MINUTES,
    INTERVAL_VARIATION_MINUTES,
    MAX_INTERVAL_MINUTES,
    Occurrence,
    RecordStore,
    cutoff_for_days,
    utcnow,
)

logger = logging.getLogger(__name__)

TICK_JOB_ID = "dispatch-tick"
HOUSEKEEPING_JOB_ID = "housekeeping"


@dataclass
class ProcessingResult:
    """Outcome counts of one due-processing pass.

    Attributes:
        sent: Occurrences delivered successfully (and re-armed)
        failed: Occurrences whose delivery failed
        dropped: Occurrences completed without delivery (stale pair)
        skipped: True if the pass did not run (gated or overlapping)
    """

    sent: int = 0
    failed: int = 0
    dropped: int = 0
    skipped: bool = False

    @property
    def processed(self) -> int:
        return self.sent + self.failed + self.dropped


class DispatchScheduler:
    """Recurring, jittered dispatch engine.

    Each (message, recipient) pair cycles independently through
    pending, due and completed. A completed pair gets a fresh pending
    occurrence right away when its delivery succeeded, or on the next
    coverage pass otherwise, as long as both sides are still active.

    Example:
        engine = DispatchScheduler(store, invoker, activity, tick_interval=60)
        await engine.start()
        ...
        await engine.stop()
    """

    def __init__(
        self,
        store: RecordStore,
        invoker: DispatchInvoker,
        activity: ActivityLog,
        tick_interval: int = 60,
        misfire_grace_time: int = 30,
        retention_days: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
    ) -> None:
        """Initialize the dispatch scheduler.

        Args:
            store: Record store holding messages, recipients and occurrences
            invoker: Dispatch invoker used for deliveries
            activity: Activity log sink
            tick_interval: Seconds between ticks
            misfire_grace_time: Seconds a late tick may still run
            retention_days: Prune history older than this once a day (None disables)
            clock: Returns the current naive UTC time
            rng: Random source for jitter
        """
        self._store = store
        self._invoker = invoker
        self._activity = activity
        self._tick_interval = tick_interval
        self._misfire_grace_time = misfire_grace_time
        self._retention_days = retention_days
        self._clock = clock
        self._rng = rng or random.Random()

        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self._tick_lock = asyncio.Lock()
        self._processing_lock = asyncio.Lock()
        self._last_tick: Optional[datetime] = None
        self._skipped_ticks = 0

    @property
    def is_running(self) -> bool:
        """Check if the tick timer is armed."""
        return self._running

    @property
    def store(self) -> RecordStore:
        return self._store

    # Lifecycle

    async def start(self) -> None:
        """Arm the tick timer and run an initial coverage pass.

        Calling this on a running scheduler does nothing.
        """
        if self._running:
            logger.debug("Dispatch scheduler already running")
            return

        logger.info(f"Starting dispatch scheduler (tick every {self._tick_interval}s)...")

        self._scheduler = self._create_scheduler()
        self._setup_listeners()
        self._scheduler.start()

        self._scheduler.add_job(
            self._run_tick,
            trigger=IntervalTrigger(seconds=self._tick_interval),
            id=TICK_JOB_ID,
            name="Dispatch tick",
            replace_existing=True,
        )
        if self._retention_days:
            self._scheduler.add_job(
                self._run_housekeeping,
                trigger=IntervalTrigger(days=1),
                id=HOUSEKEEPING_JOB_ID,
                name="History pruning",
                replace_existing=True,
            )

        self._running = True
        self._activity.info("Scheduler started successfully")

        try:
            self.schedule_next_batch()
        except Exception as e:
            logger.error(f"Initial coverage pass failed: {e}")
            self._activity.error(f"Coverage pass failed: {e}")

    async def stop(self) -> None:
        """Disarm the tick timer.

        A tick already in flight runs to completion; no further ticks fire.
        Calling this on a stopped scheduler does nothing.
        """
        if not self._running:
            return

        logger.info("Stopping dispatch scheduler...")

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._running = False
        self._activity.info("Scheduler stopped")

    def _create_scheduler(self) -> AsyncIOScheduler:
        """Create and configure the APScheduler instance."""
        jobstores = {"default": MemoryJobStore()}

        executors = {"default": AsyncIOExecutor()}

        job_defaults = {
            "coalesce": True,  # Combine missed runs
            "max_instances": 1,  # Never overlap a tick with itself
            "misfire_grace_time": self._misfire_grace_time,
        }

        return AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone="UTC",
        )

    def _setup_listeners(self) -> None:
        """Set up APScheduler event listeners."""
        if not self._scheduler:
            return

        def on_job_executed(event: Any) -> None:
            logger.debug(f"Job {event.job_id} executed")

        def on_job_error(event: Any) -> None:
            exception = getattr(event, "exception", "Unknown error")
            logger.error(f"Job {event.job_id} failed: {exception}")

        def on_job_missed(event: Any) -> None:
            logger.warning(f"Job {event.job_id} missed scheduled run")

        self._scheduler.add_listener(on_job_executed, EVENT_JOB_EXECUTED)
        self._scheduler.add_listener(on_job_error, EVENT_JOB_ERROR)
        self._scheduler.add_listener(on_job_missed, EVENT_JOB_MISSED)

    async def _run_tick(self) -> None:
        # Shutdown cancels pending executor futures; the tick itself must finish.
        await asyncio.shield(self.tick())

    async def _run_housekeeping(self) -> None:
        await asyncio.shield(self.prune_history())

    # Tick

    async def tick(self) -> bool:
        """Run one coverage pass and one due-processing pass.

        A tick that starts while another is still in flight is skipped.
        No exception escapes a tick.

        Returns:
            True if the tick ran, False if it was skipped
        """
        if self._tick_lock.locked():
            self._skipped_ticks += 1
            logger.warning("Previous tick still in progress, skipping this one")
            return False

        async with self._tick_lock:
            try:
                self.schedule_next_batch()
            except Exception as e:
                logger.error(f"Coverage pass failed: {e}")
                self._activity.error(f"Coverage pass failed: {e}")

            try:
                await self.process_pending_schedules()
            except Exception as e:
                logger.error(f"Due-processing pass failed: {e}")
                self._activity.error(f"Processing pending schedules failed: {e}")

            self._last_tick = self._clock()
        return True

    # Settings

    def _read_int_setting(self, key: str, minimum: int) -> int:
        default = int(DEFAULT_SETTINGS[key])
        setting = self._store.get_setting(key)
        if setting is None:
            return default
        try:
            value = int(setting.value.strip())
        except ValueError:
            logger.warning(f"Setting {key}={setting.value!r} is not an integer, using {default}")
            return default
        if value < minimum:
            logger.warning(f"Setting {key}={value} is below {minimum}, using {default}")
            return default
        if value > MAX_INTERVAL_MINUTES:
            logger.warning(f"Setting {key}={value} is above {MAX_INTERVAL_MINUTES}, using {default}")
            return default
        return value

    def interval_settings(self) -> Tuple[int, int]:
        """Current (base, variation) interval in minutes.

        Out-of-range values fall back to the defaults with a warning.
        """
        base = self._read_int_setting(INTERVAL_MINUTES, minimum=1)
        variation = self._read_int_setting(INTERVAL_VARIATION_MINUTES, minimum=0)
        if base + variation > MAX_INTERVAL_MINUTES:
            logger.warning(
                f"Interval {base} + variation {variation} exceeds {MAX_INTERVAL_MINUTES} minutes, "
                "using defaults"
            )
            return (
                int(DEFAULT_SETTINGS[INTERVAL_MINUTES]),
                int(DEFAULT_SETTINGS[INTERVAL_VARIATION_MINUTES]),
            )
        return base, variation

    def auto_send_enabled(self) -> bool:
        setting = self._store.get_setting(AUTO_SEND_ENABLED)
        return setting is not None and setting.value.strip().lower() == "true"

    # Passes

    def schedule_next_message(self, message_id: int, recipient_id: int) -> Optional[Occurrence]:
        """Arm a jittered occurrence for one pair.

        Returns:
            The new occurrence, or None if the pair already has a pending one
        """
        base, variation = self.interval_settings()
        now = self._clock()
        due_time = next_due_time(base, variation, now, self._rng)

        occurrence = self._store.create_occurrence_if_absent(message_id, recipient_id, due_time)
        if occurrence is None:
            logger.debug(f"Pair ({message_id}, {recipient_id}) already has a pending occurrence")
            return None

        minutes = int((due_time - now).total_seconds() // 60)
        self._activity.info(
            f"Scheduled next message for {minutes} minutes from now",
            message_id,
            recipient_id,
        )
        return occurrence

    def schedule_next_batch(self) -> List[Occurrence]:
        """Coverage pass: give every uncovered active pair a pending occurrence.

        Safe to call repeatedly; pairs that already have a pending
        occurrence are left alone.

        Returns:
            Occurrences created by this pass
        """
        messages = [m for m in self._store.list_messages() if m.active]
        recipients = [r for r in self._store.list_recipients() if r.active]

        created: List[Occurrence] = []
        for message in messages:
            for recipient in recipients:
                if self._store.has_live_pending(message.id, recipient.id):
                    continue
                occurrence = self.schedule_next_message(message.id, recipient.id)
                if occurrence is not None:
                    created.append(occurrence)

        if created:
            logger.info(f"Coverage pass armed {len(created)} occurrence(s)")
        return created

    async def process_pending_schedules(self) -> ProcessingResult:
        """Due-processing pass: deliver every occurrence whose time has come.

        Does nothing while ``auto_send_enabled`` is not ``"true"``. Each
        due occurrence is completed exactly once; only a successful
        delivery re-arms its pair.
        """
        result = ProcessingResult()

        if self._processing_lock.locked():
            logger.warning("Due-processing pass already in progress, skipping")
            result.skipped = True
            return result

        async with self._processing_lock:
            if not self.auto_send_enabled():
                logger.debug("Auto-send disabled, leaving due occurrences pending")
                result.skipped = True
                return result

            pending = self._store.list_pending_occurrences(self._clock())
            if pending:
                logger.info(f"Processing {len(pending)} due occurrence(s)")

            for occurrence in pending:
                if not self.auto_send_enabled():
                    logger.info("Auto-send disabled mid-pass, leaving remaining occurrences pending")
                    break
                try:
                    await self._process_occurrence(occurrence, result)
                except Exception as e:
                    logger.error(f"Failed to process occurrence {occurrence.id}: {e}")
                    self._activity.error(
                        f"Failed to process scheduled message: {e}",
                        occurrence.message_id,
                        occurrence.recipient_id,
                    )

        if result.processed:
            logger.info(
                f"Due-processing pass: {result.sent} sent, {result.failed} failed, "
                f"{result.dropped} dropped"
            )
        return result

    async def _process_occurrence(self, occurrence: Occurrence, result: ProcessingResult) -> None:
        message = self._store.get_message(occurrence.message_id)
        recipient = self._store.get_recipient(occurrence.recipient_id)

        if message is None or recipient is None or not message.active or not recipient.active:
            self._store.mark_completed(occurrence.id)
            result.dropped += 1
            self._activity.info(
                "Skipped scheduled message: message or recipient is inactive or removed",
                occurrence.message_id,
                occurrence.recipient_id,
            )
            return

        delivered = await self._invoker.send(
            recipient.destination,
            message.body,
            message.id,
            recipient.id,
        )

        # A failure here leaves the occurrence pending, so it is sent again next tick
        self._store.mark_completed(occurrence.id)

        if delivered:
            result.sent += 1
            self.schedule_next_message(message.id, recipient.id)
        else:
            result.failed += 1

    async def prune_history(self) -> int:
        """Delete activity entries and completed occurrences past retention."""
        if not self._retention_days:
            return 0
        try:
            deleted = self._activity.prune(self._retention_days)
            deleted += self._store.prune_completed_occurrences(
                cutoff_for_days(self._retention_days, self._clock())
            )
        except Exception as e:
            logger.error(f"History pruning failed: {e}")
            return 0
        return deleted

    # Queries

    def get_next_scheduled_time(self) -> Optional[datetime]:
        """Earliest due time over all pending occurrences, or None."""
        return self._store.next_due_time()

    def get_status(self) -> Dict[str, Any]:
        """Get scheduler status.

        Returns:
            Dictionary with scheduler status information
        """
        aps_jobs: List[Dict[str, Any]] = []
        if self._scheduler:
            for job in self._scheduler.get_jobs():
                aps_jobs.append(
                    {
                        "id": job.id,
                        "name": job.name,
                        "next_run": (
                            job.next_run_time.isoformat() if job.next_run_time else None
                        ),
                    }
                )

        next_scheduled = self.get_next_scheduled_time()
        base, variation = self.interval_settings()
        return {
            "running": self._running,
            "tick_interval": self._tick_interval,
            "last_tick": self._last_tick.isoformat() if self._last_tick else None,
            "skipped_ticks": self._skipped_ticks,
            "auto_send_enabled": self.auto_send_enabled(),
            "interval_minutes": base,
            "interval_variation_minutes": variation,
            "next_scheduled": next_scheduled.isoformat() if next_scheduled else None,
            "transport_ready": self._invoker.is_ready(),
            "jobs": aps_jobs,
        }
