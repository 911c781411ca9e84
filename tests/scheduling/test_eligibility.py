"""Tests for TaskScheduler eligibility rules."""

import pytest

from taskward.core.scheduling import TaskRunStatus, derive_lock_id


class TestEnabledFlags:
    @pytest.mark.asyncio
    async def test_disabled_task_is_skipped(self, store, make_task, make_scheduler):
        scheduler = make_scheduler({"off": make_task(enabled=False), "on": make_task()})

        report = await scheduler.run()

        assert report.eligible == ["on"]
        assert store.runs_for_task("off") == []

    @pytest.mark.asyncio
    async def test_operator_disable_list(self, store, make_task, make_scheduler):
        scheduler = make_scheduler(
            {"billing": make_task(), "cleanup": make_task()},
            disabled_tasks=["billing"],
        )

        report = await scheduler.run()

        assert report.eligible == ["cleanup"]

    @pytest.mark.asyncio
    async def test_always_enabled_ignores_operator_disable_list(self, store, make_task, make_scheduler):
        scheduler = make_scheduler(
            {"heartbeat": make_task(always_enabled=True)},
            disabled_tasks=["heartbeat"],
        )

        report = await scheduler.run()

        assert report.eligible == ["heartbeat"]

    def test_is_task_enabled(self, make_task, make_scheduler):
        scheduler = make_scheduler(
            {"a": make_task(), "b": make_task(always_enabled=True)},
            disabled_tasks=["a", "b"],
        )

        assert scheduler.is_task_enabled("a", scheduler.registry["a"]) is False
        assert scheduler.is_task_enabled("b", scheduler.registry["b"]) is True


class TestAlreadyRunning:
    @pytest.mark.asyncio
    async def test_running_record_blocks_new_attempt(self, store, make_task, make_scheduler):
        store.mark_running("sync")
        scheduler = make_scheduler({"sync": make_task()})

        report = await scheduler.run()

        assert report.eligible == []
        assert len(store.runs_for_task("sync")) == 1

    @pytest.mark.asyncio
    async def test_orphan_blocks_even_retries(self, store, make_task, make_scheduler, flaky):
        scheduler = make_scheduler({"sync": make_task(flaky(always=True), retry_policy="retry-on-fail")})
        await scheduler.run()
        store.mark_running("sync", lock_id=derive_lock_id("sync"))

        store.advance(minutes=5)
        report = await scheduler.run()

        assert report.eligible == []
        assert [r.status for r in store.all_runs()] == [TaskRunStatus.FAILED, TaskRunStatus.RUNNING]


class TestEvaluationErrors:
    @pytest.mark.asyncio
    async def test_store_error_makes_only_that_task_ineligible(self, store, make_task, make_scheduler):
        scheduler = make_scheduler({"first": make_task(), "second": make_task()})
        store.fail_next("find_running_task")

        report = await scheduler.run()

        assert report.eligible == ["second"]
        assert report.completed == ["second"]

    @pytest.mark.asyncio
    async def test_history_error_skips_task(self, store, make_task, make_scheduler):
        scheduler = make_scheduler({"only": make_task()})
        store.fail_next("get_recent_task_runs")

        report = await scheduler.run()

        assert report.eligible == []
