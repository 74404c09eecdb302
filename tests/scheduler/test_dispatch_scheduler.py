"""Tests for the dispatch scheduler engine."""

import asyncio
import random
from datetime import timedelta

import pytest

from cadence_cli.scheduler.dispatch_scheduler import (
    HOUSEKEEPING_JOB_ID,
    TICK_JOB_ID,
    DispatchScheduler,
    ProcessingResult,
)
from cadence_cli.storage.base import (
    AUTO_SEND_ENABLED,
    INTERVAL_MINUTES,
    INTERVAL_VARIATION_MINUTES,
    LogKind,
)
from cadence_cli.storage.memory import MemoryRecordStore


def _entries(store, kind):
    return [e for e in store.list_logs(1000) if e.kind == kind]


def _pending(store, message_id, recipient_id):
    return [
        o for o in store.list_occurrences()
        if o.message_id == message_id and o.recipient_id == recipient_id and not o.completed
    ]


@pytest.fixture
def pair(store):
    message = store.create_message("Promo", "<b>50% off</b>")
    recipient = store.create_recipient("Deals", "-1001")
    return message, recipient


class TestProcessingResult:
    """Tests for ProcessingResult."""

    def test_processed_counts_all_outcomes(self):
        """Test processed adds sent, failed and dropped."""
        result = ProcessingResult(sent=2, failed=1, dropped=3)
        assert result.processed == 6
        assert result.skipped is False


class TestCoverage:
    """Tests for the coverage pass."""

    @pytest.mark.asyncio
    async def test_start_arms_one_occurrence_within_jitter(self, engine, store, clock, pair):
        """Test start creates exactly one occurrence due in [now+50m, now+70m]."""
        message, recipient = pair
        now = clock()

        await engine.start()
        try:
            occurrences = store.list_occurrences()
            assert len(occurrences) == 1
            occurrence = occurrences[0]
            assert (occurrence.message_id, occurrence.recipient_id) == (message.id, recipient.id)
            assert not occurrence.completed
            assert now + timedelta(minutes=50) <= occurrence.due_time <= now + timedelta(minutes=70)
        finally:
            await engine.stop()

    def test_batch_is_idempotent(self, engine, store, pair):
        """Test repeated coverage passes never add a second pending occurrence."""
        first = engine.schedule_next_batch()
        second = engine.schedule_next_batch()
        third = engine.schedule_next_batch()

        assert len(first) == 1
        assert second == []
        assert third == []
        assert len(store.list_occurrences()) == 1

    def test_batch_covers_cartesian_product(self, engine, store):
        """Test every active message is armed for every active recipient."""
        for i in range(3):
            store.create_message(f"M{i}", f"body {i}")
        for i in range(2):
            store.create_recipient(f"R{i}", f"-100{i}")

        created = engine.schedule_next_batch()

        assert len(created) == 6
        pairs = {(o.message_id, o.recipient_id) for o in store.list_occurrences()}
        assert len(pairs) == 6

    def test_batch_skips_inactive(self, engine, store):
        """Test inactive messages and recipients get no occurrences."""
        active = store.create_message("On", "on")
        store.create_message("Off", "off", active=False)
        recipient = store.create_recipient("R", "-1001")
        store.create_recipient("Muted", "-1002", active=False)

        created = engine.schedule_next_batch()

        assert [(o.message_id, o.recipient_id) for o in created] == [(active.id, recipient.id)]

    def test_batch_with_nothing_active(self, engine, store):
        """Test an empty store is a no-op."""
        assert engine.schedule_next_batch() == []
        assert store.list_occurrences() == []

    def test_schedule_next_message_refuses_second_pending(self, engine, store, pair):
        """Test a pair with a pending occurrence is not armed again."""
        message, recipient = pair
        assert engine.schedule_next_message(message.id, recipient.id) is not None
        assert engine.schedule_next_message(message.id, recipient.id) is None
        assert len(_pending(store, message.id, recipient.id)) == 1

    def test_schedule_next_message_logs_offset(self, engine, store, clock, pair):
        """Test arming writes an info entry with the offset in minutes."""
        message, recipient = pair
        occurrence = engine.schedule_next_message(message.id, recipient.id)

        minutes = int((occurrence.due_time - clock()).total_seconds() // 60)
        infos = _entries(store, LogKind.INFO)
        assert infos[0].text == f"Scheduled next message for {minutes} minutes from now"
        assert infos[0].message_id == message.id
        assert infos[0].recipient_id == recipient.id

    def test_settings_reread_per_arming(self, engine, store, clock, pair):
        """Test a changed interval applies to the next occurrence armed."""
        message, recipient = pair
        store.set_setting(INTERVAL_MINUTES, "5")
        store.set_setting(INTERVAL_VARIATION_MINUTES, "0")

        occurrence = engine.schedule_next_message(message.id, recipient.id)

        assert occurrence.due_time == clock() + timedelta(minutes=5)


class TestSettings:
    """Tests for setting parsing."""

    def test_defaults(self, engine):
        """Test seeded defaults are read as integers."""
        assert engine.interval_settings() == (60, 10)
        assert engine.auto_send_enabled() is True

    @pytest.mark.parametrize("value", ["abc", "", "0", "-3", "1.5"])
    def test_invalid_base_falls_back(self, engine, store, value):
        """Test an unusable base interval falls back to the default."""
        store.set_setting(INTERVAL_MINUTES, value)
        assert engine.interval_settings()[0] == 60

    @pytest.mark.parametrize("value", ["many", "-1"])
    def test_invalid_variation_falls_back(self, engine, store, value):
        """Test an unusable variation falls back to the default."""
        store.set_setting(INTERVAL_VARIATION_MINUTES, value)
        assert engine.interval_settings()[1] == 10

    def test_zero_variation_is_valid(self, engine, store):
        """Test zero variation is honoured."""
        store.set_setting(INTERVAL_VARIATION_MINUTES, "0")
        assert engine.interval_settings() == (60, 0)

    def test_whitespace_tolerated(self, engine, store):
        """Test surrounding whitespace is ignored."""
        store.set_setting(INTERVAL_MINUTES, " 90 ")
        assert engine.interval_settings()[0] == 90

    @pytest.mark.parametrize("key,value", [
        ("interval_minutes", "9999999999"),
        ("interval_variation_minutes", "525601"),
    ])
    def test_interval_above_maximum_falls_back(self, engine, store, key, value):
        """Test an interval too large to add to a datetime falls back to the default."""
        store.set_setting(key, value)
        assert engine.interval_settings() == (60, 10)

    def test_interval_total_above_maximum_falls_back(self, engine, store):
        """Test base plus variation past one year falls back to both defaults."""
        store.set_setting(INTERVAL_MINUTES, "525000")
        store.set_setting(INTERVAL_VARIATION_MINUTES, "1000")
        assert engine.interval_settings() == (60, 10)

    def test_huge_interval_still_schedules(self, engine, store, clock, pair):
        """Test a coverage pass with an oversized interval arms at the default."""
        message, recipient = pair
        store.set_setting(INTERVAL_MINUTES, "9999999999")

        created = engine.schedule_next_batch()

        assert len(created) == 1
        assert created[0].due_time <= clock() + timedelta(minutes=70)

    @pytest.mark.parametrize("value,expected", [
        ("true", True),
        ("TRUE", True),
        (" True ", True),
        ("false", False),
        ("yes", False),
        ("", False),
    ])
    def test_auto_send_values(self, engine, store, value, expected):
        """Test only 'true' (any case) enables auto-send."""
        store.set_setting(AUTO_SEND_ENABLED, value)
        assert engine.auto_send_enabled() is expected

    def test_missing_auto_send_is_disabled(self, clock, invoker, activity):
        """Test a store without the setting does not send."""
        bare = MemoryRecordStore(seed_defaults=False, clock=clock)
        engine = DispatchScheduler(bare, invoker, activity, clock=clock)
        assert engine.auto_send_enabled() is False
        assert engine.interval_settings() == (60, 10)


class TestDueProcessing:
    """Tests for the due-processing pass."""

    @pytest.mark.asyncio
    async def test_successful_delivery_rearms(self, engine, store, transport, clock, pair):
        """Test a delivered occurrence is completed and exactly one new one is armed."""
        message, recipient = pair
        engine.schedule_next_batch()
        first = store.list_occurrences()[0]

        clock.advance(minutes=71)
        result = await engine.process_pending_schedules()

        assert result.sent == 1
        assert result.failed == 0
        assert transport.sent == [(recipient.destination, message.body)]

        completed = [o for o in store.list_occurrences() if o.completed]
        assert [o.id for o in completed] == [first.id]

        pending = _pending(store, message.id, recipient.id)
        assert len(pending) == 1
        now = clock()
        assert now + timedelta(minutes=50) <= pending[0].due_time <= now + timedelta(minutes=70)

        successes = _entries(store, LogKind.SUCCESS)
        assert len(successes) == 1
        assert successes[0].message_id == message.id
        assert successes[0].recipient_id == recipient.id
        assert successes[0].text == f"Message sent successfully to chat {recipient.destination}"

    @pytest.mark.asyncio
    async def test_failed_delivery_is_terminal_until_coverage(
        self, engine, store, transport, clock, pair
    ):
        """Test a failed delivery completes the occurrence without re-arming."""
        message, recipient = pair
        transport.succeed = False
        engine.schedule_next_batch()

        clock.advance(minutes=71)
        result = await engine.process_pending_schedules()

        assert result.failed == 1
        assert result.sent == 0
        assert _pending(store, message.id, recipient.id) == []
        assert all(o.completed for o in store.list_occurrences())

        errors = _entries(store, LogKind.ERROR)
        assert len(errors) == 1
        assert errors[0].message_id == message.id
        assert errors[0].recipient_id == recipient.id

        created = engine.schedule_next_batch()
        assert len(created) == 1
        assert len(_pending(store, message.id, recipient.id)) == 1

    @pytest.mark.asyncio
    async def test_transport_exception_counts_as_failure(
        self, engine, store, transport, clock, pair, send_error
    ):
        """Test a raising transport is recorded as a failed delivery."""
        transport.fail_with = send_error
        engine.schedule_next_batch()
        clock.advance(minutes=71)

        result = await engine.process_pending_schedules()

        assert result.failed == 1
        errors = _entries(store, LogKind.ERROR)
        assert "bot was kicked" in errors[0].text

    @pytest.mark.asyncio
    async def test_deactivated_message_is_dropped(self, engine, store, transport, clock, pair):
        """Test a stale pair's due occurrence completes without a delivery."""
        message, recipient = pair
        engine.schedule_next_batch()
        store.update_message(message.id, active=False)

        clock.advance(minutes=71)
        result = await engine.process_pending_schedules()

        assert result.dropped == 1
        assert transport.sent == []
        assert _pending(store, message.id, recipient.id) == []
        infos = _entries(store, LogKind.INFO)
        assert infos[0].text == "Skipped scheduled message: message or recipient is inactive or removed"

        assert engine.schedule_next_batch() == []

        store.update_message(message.id, active=True)
        assert len(engine.schedule_next_batch()) == 1

    @pytest.mark.asyncio
    async def test_deleted_recipient_is_dropped(self, engine, store, transport, clock, pair):
        """Test an occurrence whose recipient was removed is dropped."""
        _, recipient = pair
        engine.schedule_next_batch()
        store.delete_recipient(recipient.id)

        clock.advance(minutes=71)
        result = await engine.process_pending_schedules()

        assert result.dropped == 1
        assert transport.sent == []
        assert all(o.completed for o in store.list_occurrences())

    @pytest.mark.asyncio
    async def test_not_yet_due_is_untouched(self, engine, store, transport, clock, pair):
        """Test occurrences in the future are left pending."""
        engine.schedule_next_batch()

        clock.advance(minutes=10)
        result = await engine.process_pending_schedules()

        assert result.processed == 0
        assert transport.sent == []
        assert not store.list_occurrences()[0].completed

    @pytest.mark.asyncio
    async def test_auto_send_disabled_leaves_due_pending(
        self, engine, store, transport, clock, pair
    ):
        """Test nothing is sent while auto-send is off, and sending resumes after."""
        store.set_setting(AUTO_SEND_ENABLED, "false")
        engine.schedule_next_batch()
        clock.advance(minutes=71)

        for _ in range(3):
            result = await engine.process_pending_schedules()
            assert result.skipped is True

        assert transport.sent == []
        assert not store.list_occurrences()[0].completed

        store.set_setting(AUTO_SEND_ENABLED, "true")
        result = await engine.process_pending_schedules()
        assert result.sent == 1

    @pytest.mark.asyncio
    async def test_auto_send_rechecked_mid_pass(
        self, engine, store, transport, clock, monkeypatch
    ):
        """Test switching auto-send off mid-pass stops the remaining deliveries."""
        store.create_message("M", "body")
        store.create_recipient("A", "-1001")
        store.create_recipient("B", "-1002")
        engine.schedule_next_batch()
        clock.advance(minutes=71)

        original_send = transport.send

        async def send_then_disable(destination, payload):
            store.set_setting(AUTO_SEND_ENABLED, "false")
            return await original_send(destination, payload)

        monkeypatch.setattr(transport, "send", send_then_disable)

        result = await engine.process_pending_schedules()

        assert result.sent == 1
        assert len(transport.sent) == 1
        assert len(store.list_pending_occurrences(clock())) == 1

    @pytest.mark.asyncio
    async def test_due_order_is_by_due_time(self, engine, store, transport, clock):
        """Test due occurrences are delivered earliest first."""
        message = store.create_message("M", "body")
        late = store.create_recipient("Late", "-1002")
        early = store.create_recipient("Early", "-1001")
        now = clock()
        store.create_occurrence(message.id, late.id, now + timedelta(minutes=5))
        store.create_occurrence(message.id, early.id, now + timedelta(minutes=1))

        clock.advance(minutes=10)
        await engine.process_pending_schedules()

        assert [d for d, _ in transport.sent] == ["-1001", "-1002"]

    @pytest.mark.asyncio
    async def test_one_bad_occurrence_does_not_stop_the_pass(
        self, engine, store, transport, clock, monkeypatch
    ):
        """Test an error on one occurrence is logged and the pass continues."""
        message = store.create_message("M", "body")
        first = store.create_recipient("A", "-1001")
        second = store.create_recipient("B", "-1002")
        now = clock()
        store.create_occurrence(message.id, first.id, now)
        store.create_occurrence(message.id, second.id, now + timedelta(minutes=1))
        clock.advance(minutes=2)

        original_get = store.get_recipient

        def flaky_get(recipient_id):
            if recipient_id == first.id:
                raise RuntimeError("disk on fire")
            return original_get(recipient_id)

        monkeypatch.setattr(store, "get_recipient", flaky_get)

        result = await engine.process_pending_schedules()

        assert result.sent == 1
        assert transport.sent == [("-1002", "body")]
        errors = _entries(store, LogKind.ERROR)
        assert any("disk on fire" in e.text for e in errors)

    @pytest.mark.asyncio
    async def test_completion_failure_after_send_is_resent(
        self, engine, store, transport, clock, monkeypatch, pair
    ):
        """Test an occurrence whose completion fails stays pending and goes out again."""
        message, recipient = pair
        engine.schedule_next_batch()
        clock.advance(minutes=71)

        def locked(occurrence_id):
            raise RuntimeError("database is locked")

        with monkeypatch.context() as m:
            m.setattr(store, "mark_completed", locked)
            await engine.process_pending_schedules()

        assert len(transport.sent) == 1
        assert len(_pending(store, message.id, recipient.id)) == 1
        assert any("database is locked" in e.text for e in _entries(store, LogKind.ERROR))

        result = await engine.process_pending_schedules()

        assert result.sent == 1
        assert len(transport.sent) == 2
        assert len(_pending(store, message.id, recipient.id)) == 1

    @pytest.mark.asyncio
    async def test_overlapping_pass_is_skipped(self, engine, pair):
        """Test a pass started while another holds the lock does nothing."""
        async with engine._processing_lock:
            result = await engine.process_pending_schedules()
        assert result.skipped is True


class TestTick:
    """Tests for tick orchestration."""

    @pytest.mark.asyncio
    async def test_tick_covers_then_processes(self, engine, store, clock, pair):
        """Test a tick arms new pairs and records its time."""
        assert await engine.tick() is True
        assert len(store.list_occurrences()) == 1
        assert engine.get_status()["last_tick"] == clock().isoformat()

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self, engine, store, pair):
        """Test a tick that starts while another is in flight is dropped."""
        async with engine._tick_lock:
            assert await engine.tick() is False

        assert store.list_occurrences() == []
        assert engine.get_status()["skipped_ticks"] == 1

    @pytest.mark.asyncio
    async def test_no_exception_escapes(self, engine, store, monkeypatch, pair):
        """Test store failures inside a tick are logged, not raised."""
        def broken():
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(store, "list_messages", broken)
        monkeypatch.setattr(store, "list_pending_occurrences", lambda as_of: broken())

        assert await engine.tick() is True

        texts = [e.text for e in _entries(store, LogKind.ERROR)]
        assert "Coverage pass failed: store unavailable" in texts
        assert "Processing pending schedules failed: store unavailable" in texts

    @pytest.mark.asyncio
    async def test_liveness_over_many_ticks(self, engine, store, transport, clock):
        """Test every pair keeps getting delivered and never holds two pending."""
        messages = [store.create_message(f"M{i}", f"body {i}") for i in range(2)]
        recipients = [store.create_recipient(f"R{i}", f"-100{i}") for i in range(2)]

        for _ in range(300):
            await engine.tick()
            for message in messages:
                for recipient in recipients:
                    assert len(_pending(store, message.id, recipient.id)) <= 1
            clock.advance(minutes=1)

        per_pair = {}
        for entry in _entries(store, LogKind.SUCCESS):
            key = (entry.message_id, entry.recipient_id)
            per_pair[key] = per_pair.get(key, 0) + 1

        assert len(per_pair) == 4
        assert all(count >= 4 for count in per_pair.values())
        assert len(transport.sent) == sum(per_pair.values())

    @pytest.mark.asyncio
    async def test_failed_pair_recovers_next_tick(self, engine, store, transport, clock, pair):
        """Test the coverage pass of the following tick re-arms a failed pair."""
        message, recipient = pair
        transport.succeed = False
        await engine.tick()
        clock.advance(minutes=71)
        await engine.tick()
        assert _pending(store, message.id, recipient.id) == []

        transport.succeed = True
        clock.advance(minutes=1)
        await engine.tick()
        assert len(_pending(store, message.id, recipient.id)) == 1

class TestConcurrency:
    """Tests for passes running while a delivery is still in flight."""

    @pytest.mark.asyncio
    async def test_overlap_during_inflight_delivery(
        self, engine, store, transport, clock, monkeypatch, pair
    ):
        """Test a coverage pass and a second tick during a blocked send deliver once."""
        message, recipient = pair
        engine.schedule_next_batch()
        clock.advance(minutes=71)

        started = asyncio.Event()
        release = asyncio.Event()
        original_send = transport.send

        async def blocking_send(destination, payload):
            started.set()
            await release.wait()
            return await original_send(destination, payload)

        monkeypatch.setattr(transport, "send", blocking_send)

        first_tick = asyncio.create_task(engine.tick())
        await asyncio.wait_for(started.wait(), timeout=5)

        late = store.create_recipient("Late", "-1002")
        created = engine.schedule_next_batch()
        second_tick = await engine.tick()

        release.set()
        assert await asyncio.wait_for(first_tick, timeout=5) is True

        assert second_tick is False
        assert engine.get_status()["skipped_ticks"] == 1
        assert [(o.message_id, o.recipient_id) for o in created] == [(message.id, late.id)]
        assert transport.sent == [("-1001", "<b>50% off</b>")]
        assert len(_pending(store, message.id, recipient.id)) == 1
        assert len(_pending(store, message.id, late.id)) == 1



class TestLifecycle:
    """Tests for start/stop."""

    @pytest.mark.asyncio
    async def test_start_and_stop_are_idempotent(self, engine, store):
        """Test repeated start/stop calls leave one entry each."""
        await engine.start()
        await engine.start()
        assert engine.is_running

        await engine.stop()
        await engine.stop()
        assert not engine.is_running

        texts = [e.text for e in _entries(store, LogKind.INFO)]
        assert texts.count("Scheduler started successfully") == 1
        assert texts.count("Scheduler stopped") == 1

    @pytest.mark.asyncio
    async def test_stop_without_start(self, engine, store):
        """Test stopping a never-started engine is a no-op."""
        await engine.stop()
        assert store.list_logs() == []

    @pytest.mark.asyncio
    async def test_jobs_registered(self, store, invoker, activity, clock):
        """Test the tick job is always added and housekeeping only with retention."""
        engine = DispatchScheduler(
            store, invoker, activity, tick_interval=5, retention_days=30,
            clock=clock, rng=random.Random(1),
        )
        await engine.start()
        try:
            job_ids = {job["id"] for job in engine.get_status()["jobs"]}
            assert job_ids == {TICK_JOB_ID, HOUSEKEEPING_JOB_ID}
        finally:
            await engine.stop()

        assert engine.get_status()["jobs"] == []

    @pytest.mark.asyncio
    async def test_no_housekeeping_without_retention(self, engine):
        """Test housekeeping is not scheduled when retention is disabled."""
        await engine.start()
        try:
            job_ids = {job["id"] for job in engine.get_status()["jobs"]}
            assert job_ids == {TICK_JOB_ID}
        finally:
            await engine.stop()

    @pytest.mark.asyncio
    async def test_restart_after_stop(self, engine):
        """Test an engine can be started again after stopping."""
        await engine.start()
        await engine.stop()
        await engine.start()
        try:
            assert engine.is_running
        finally:
            await engine.stop()


class TestQueries:
    """Tests for status and housekeeping helpers."""

    def test_next_scheduled_time(self, engine, store, pair):
        """Test the earliest pending due time is reported."""
        assert engine.get_next_scheduled_time() is None
        created = engine.schedule_next_batch()
        assert engine.get_next_scheduled_time() == created[0].due_time

    def test_status_shape(self, engine, store, transport, pair):
        """Test status reports settings and readiness."""
        store.set_setting(INTERVAL_MINUTES, "90")
        status = engine.get_status()

        assert status["running"] is False
        assert status["tick_interval"] == 60
        assert status["interval_minutes"] == 90
        assert status["interval_variation_minutes"] == 10
        assert status["auto_send_enabled"] is True
        assert status["transport_ready"] is True
        assert status["next_scheduled"] is None
        assert status["last_tick"] is None
        assert status["skipped_ticks"] == 0

    @pytest.mark.asyncio
    async def test_prune_history(self, store, invoker, activity, clock, pair):
        """Test old log entries and completed occurrences are pruned."""
        message, recipient = pair
        engine = DispatchScheduler(
            store, invoker, activity, retention_days=30, clock=clock,
        )
        activity.info("old entry")
        old = store.create_occurrence(message.id, recipient.id, clock())
        store.mark_completed(old.id)

        clock.advance(minutes=31 * 24 * 60)
        activity.info("fresh entry")

        deleted = await engine.prune_history()

        assert deleted == 2
        assert [e.text for e in store.list_logs()] == ["fresh entry"]
        assert store.list_occurrences() == []

    @pytest.mark.asyncio
    async def test_prune_disabled(self, engine, activity):
        """Test pruning without a retention window deletes nothing."""
        activity.info("entry")
        assert await engine.prune_history() == 0
