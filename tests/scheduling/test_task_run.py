"""Tests for TaskScheduler.run_task: lock, record, execute, finalise."""

import asyncio
from datetime import timedelta

import pytest

from taskward.core.errors import TaskErrorCode, TaskSchedulerError
from taskward.core.scheduling import (
    TaskDefinition,
    TaskOutcome,
    TaskRunStatus,
    derive_lock_id,
)


class TestHandlers:
    """Sync and async handlers are both supported."""

    @pytest.mark.asyncio
    async def test_async_handler(self, store, make_task, make_scheduler):
        async def handler(ctx):
            await asyncio.sleep(0)
            return f"hello from {ctx.task_name}"

        scheduler = make_scheduler({"greet": make_task(handler)})
        await scheduler.run()

        (run,) = store.all_runs()
        assert run.status == TaskRunStatus.COMPLETED
        assert run.result_message == "hello from greet"
        assert run.error_code is None

    @pytest.mark.asyncio
    async def test_sync_handler_runs_off_loop(self, store, make_task, make_scheduler):
        import threading

        loop_thread = threading.get_ident()
        seen = {}

        def handler(ctx):
            seen["thread"] = threading.get_ident()
            return "done"

        scheduler = make_scheduler({"blocking": make_task(handler)})
        await scheduler.run()

        assert seen["thread"] != loop_thread
        assert store.all_runs()[0].result_message == "done"

    @pytest.mark.asyncio
    async def test_non_string_result_is_stringified(self, store, make_task, make_scheduler):
        scheduler = make_scheduler({"count": make_task(lambda ctx: 42), "none": make_task(lambda ctx: None)})
        await scheduler.run()

        assert store.runs_for_task("count")[0].result_message == "42"
        assert store.runs_for_task("none")[0].result_message == ""

    @pytest.mark.asyncio
    async def test_exception_without_message(self, store, make_task, make_scheduler):
        def handler(ctx):
            raise ValueError()

        scheduler = make_scheduler({"bare": make_task(handler)})
        await scheduler.run()

        assert store.all_runs()[0].error_message == "ValueError"

    @pytest.mark.asyncio
    async def test_context_carries_run_identity(self, store, make_task, make_scheduler):
        captured = []

        async def handler(ctx):
            ctx.set_attributes(rows=3)
            captured.append(ctx)
            return "ok"

        scheduler = make_scheduler({"ctx": make_task(handler, timeout=4)})
        await scheduler.run()

        (ctx,) = captured
        (run,) = store.all_runs()
        assert ctx.run_id == run.id
        assert ctx.timeout_minutes == 4
        assert ctx.attempt == 1
        assert not ctx.is_retry
        assert ctx.attributes == {"rows": 3}


class TestDuration:
    @pytest.mark.asyncio
    async def test_duration_follows_store_clock(self, store, make_task, make_scheduler, t0):
        def handler(ctx):
            store.advance(milliseconds=5000)
            return "slow"

        scheduler = make_scheduler({"slow": make_task(handler)})
        await scheduler.run()

        (run,) = store.all_runs()
        assert run.duration_ms == 5000
        assert run.started_at == t0
        assert run.completed_at == t0 + timedelta(seconds=5)

    @pytest.mark.asyncio
    async def test_failed_run_has_duration(self, store, make_task, make_scheduler):
        def handler(ctx):
            store.advance(seconds=2)
            raise RuntimeError("late failure")

        scheduler = make_scheduler({"fail": make_task(handler)})
        await scheduler.run()

        assert store.all_runs()[0].duration_ms == 2000


class TestTimeout:
    """Timed-out handlers fail the run and are left running."""

    @pytest.fixture
    def fast_timeouts(self, monkeypatch):
        monkeypatch.setattr(TaskDefinition, "timeout_seconds", property(lambda self: 0.05))

    @pytest.mark.asyncio
    async def test_timeout_marks_run_failed(self, store, make_task, make_scheduler, fast_timeouts):
        finished = asyncio.Event()

        async def handler(ctx):
            await asyncio.sleep(0.2)
            finished.set()
            return "too late"

        scheduler = make_scheduler({"slow": make_task(handler, timeout=3)})
        report = await scheduler.run()

        assert report.failed == ["slow"]
        (run,) = store.all_runs()
        assert run.status == TaskRunStatus.FAILED
        assert run.error_code == TaskErrorCode.TASK_FAILED.value
        assert run.error_message == "Task slow timed out after 3 minutes"
        assert not store.is_lock_held(derive_lock_id("slow"))

        # Abandoned, not cancelled: the handler still completes.
        assert scheduler.abandoned_count == 1
        await asyncio.wait_for(finished.wait(), timeout=2)
        await asyncio.sleep(0.05)
        assert scheduler.abandoned_count == 0
        assert store.all_runs()[0].status == TaskRunStatus.FAILED

    @pytest.mark.asyncio
    async def test_timeout_with_retry_policy(self, store, make_task, make_scheduler, fast_timeouts):
        async def handler(ctx):
            await asyncio.sleep(0.2)

        scheduler = make_scheduler({"slow": make_task(handler, retry_policy="retry-on-fail")})
        await scheduler.run()

        (run,) = store.all_runs()
        assert run.error_code == TaskErrorCode.RETRY_SCHEDULED.value
        assert run.error_message == "Task slow timed out after 1 minutes - will retry in next run"
        await asyncio.sleep(0.3)


class TestLocking:
    """The advisory lock gates every execution."""

    @pytest.mark.asyncio
    async def test_lock_held_elsewhere_skips_task(self, store, make_task, make_scheduler):
        calls = []
        scheduler = make_scheduler({"sync": make_task(lambda ctx: calls.append(1))})
        await store.acquire_task_lock(derive_lock_id("sync"))

        report = await scheduler.run()

        assert report.eligible == ["sync"]
        assert report.skipped_locked == ["sync"]
        assert store.all_runs() == []
        assert calls == []
        # Someone else's lock is left alone.
        assert store.is_lock_held(derive_lock_id("sync"))

    @pytest.mark.asyncio
    async def test_lock_released_after_success_and_failure(self, store, make_task, make_scheduler, flaky):
        scheduler = make_scheduler({"good": make_task(), "bad": make_task(flaky(always=True))})

        await scheduler.run()

        assert not store.is_lock_held(derive_lock_id("good"))
        assert not store.is_lock_held(derive_lock_id("bad"))

    @pytest.mark.asyncio
    async def test_run_records_lock_id(self, store, make_task, make_scheduler):
        scheduler = make_scheduler({"audit": make_task()})
        await scheduler.run()

        assert store.all_runs()[0].advisory_lock_id == derive_lock_id("audit")

    @pytest.mark.asyncio
    async def test_concurrent_passes_run_task_once(self, store, make_task, make_scheduler):
        async def handler(ctx):
            await asyncio.sleep(0.05)
            return "ok"

        tasks = {"sync": make_task(handler)}
        first, second = make_scheduler(tasks), make_scheduler(tasks)

        await asyncio.gather(first.run(), second.run())

        assert len(store.all_runs()) == 1

    @pytest.mark.asyncio
    async def test_concurrent_run_task_calls_contend_for_lock(self, store, make_task, make_scheduler):
        async def handler(ctx):
            await asyncio.sleep(0.05)
            return "ok"

        scheduler = make_scheduler({"sync": make_task(handler)})

        outcomes = await asyncio.gather(scheduler.run_task("sync"), scheduler.run_task("sync"))

        assert sorted(outcomes) == sorted([TaskOutcome.COMPLETED, TaskOutcome.SKIPPED_LOCKED])
        assert len(store.all_runs()) == 1


class TestStoreFailures:
    """Store errors never escape the pass."""

    @pytest.mark.asyncio
    async def test_create_failure_records_nothing_and_releases_lock(self, store, make_task, make_scheduler):
        calls = []
        scheduler = make_scheduler({"sync": make_task(lambda ctx: calls.append(1))})
        store.fail_next("create_task_run")

        report = await scheduler.run()

        assert report.failed == ["sync"]
        assert store.all_runs() == []
        assert calls == []
        assert not store.is_lock_held(derive_lock_id("sync"))

    @pytest.mark.asyncio
    async def test_completion_update_failure_marks_run_failed(self, store, make_task, make_scheduler):
        scheduler = make_scheduler({"sync": make_task()})
        store.fail_next("update_task_run")

        report = await scheduler.run()

        assert report.failed == ["sync"]
        (run,) = store.all_runs()
        assert run.status == TaskRunStatus.FAILED
        assert run.error_message.startswith("Database error during update_task_run")
        assert not store.is_lock_held(derive_lock_id("sync"))

    @pytest.mark.asyncio
    async def test_release_failure_is_swallowed(self, store, make_task, make_scheduler):
        scheduler = make_scheduler({"sync": make_task()})
        store.fail_next("release_task_lock")

        report = await scheduler.run()

        assert report.completed == ["sync"]

    @pytest.mark.asyncio
    async def test_acquire_failure_is_reported(self, store, make_task, make_scheduler):
        scheduler = make_scheduler({"sync": make_task()})
        store.fail_next("acquire_task_lock")

        outcome = await scheduler.run_task("sync")

        assert outcome == TaskOutcome.ERROR
        assert store.all_runs() == []


class TestTrigger:
    @pytest.mark.asyncio
    async def test_trigger_ignores_schedule(self, store, make_task, make_scheduler):
        scheduler = make_scheduler({"sync": make_task()})
        await scheduler.run()

        outcome = await scheduler.trigger("sync")

        assert outcome == TaskOutcome.COMPLETED
        assert len(store.all_runs()) == 2

    @pytest.mark.asyncio
    async def test_trigger_unknown_task(self, make_task, make_scheduler):
        scheduler = make_scheduler({"sync": make_task()})

        with pytest.raises(TaskSchedulerError) as exc_info:
            await scheduler.trigger("nope")

        assert exc_info.value.code == TaskErrorCode.TASK_NOT_FOUND


class TestStats:
    @pytest.mark.asyncio
    async def test_counters(self, store, make_task, make_scheduler, flaky):
        scheduler = make_scheduler({"good": make_task(), "bad": make_task(flaky(always=True))})

        await scheduler.run()

        stats = scheduler.get_stats()
        assert stats.pass_count == 1
        assert stats.tasks_completed == 1
        assert stats.tasks_failed == 1
        assert stats.last_error == "boom"

        scheduler.reset_stats()
        assert scheduler.get_stats().pass_count == 0
