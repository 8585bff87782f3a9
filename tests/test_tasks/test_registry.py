"""
Tests for Task Registry Module

Tests for storyweaver/tasks/registry.py
"""

import asyncio
import itertools

import pytest

from storyweaver.core.constants import (
    CANCELLED_ERROR,
    INTERRUPTED_ERROR,
    TaskStatus,
    TaskType,
)
from storyweaver.core.exceptions import RegistryNotInitializedError
from storyweaver.models.task import BackgroundTask
from storyweaver.storage.record_store import InMemoryRecordStore, JsonRecordStore, TASKS
from storyweaver.tasks.job import FunctionJob
from storyweaver.tasks.registry import TaskRegistry


def stored_task(task_id: str, status: TaskStatus, created_at: int = 1) -> dict:
    return BackgroundTask(
        id=task_id,
        type=TaskType.IMAGE,
        title=f"Task {task_id}",
        status=status,
        created_at=created_at,
    ).to_dict()


class TestLifecycle:
    """pending -> running -> completed | failed"""

    @pytest.mark.asyncio
    async def test_enqueue_requires_init(self, stores):
        registry = TaskRegistry(stores.tasks)

        async def job(progress):
            return None

        with pytest.raises(RegistryNotInitializedError):
            await registry.enqueue(TaskType.IMAGE, "Too early", job)
        with pytest.raises(RegistryNotInitializedError):
            await registry.cancel("anything")
        assert await registry.list_tasks() == []

    @pytest.mark.asyncio
    async def test_enqueue_persists_pending_task(self, registry):
        async def job(progress):
            return "done"

        task_id = await registry.enqueue(
            TaskType.VIDEO, "Clip", job, related_id="sb-1", description="queued"
        )

        task = await registry.get_task(task_id)
        assert task.status is TaskStatus.PENDING
        assert task.type is TaskType.VIDEO
        assert task.related_id == "sb-1"
        assert task.description == "queued"
        assert task.created_at > 0

        await registry.wait(task_id)

    @pytest.mark.asyncio
    async def test_successful_job_completes(self, registry):
        async def job(progress):
            await progress(40, "Halfway")
            return {"frames": 3}

        task_id = await registry.enqueue(TaskType.IMAGE, "Frames", job)
        task = await registry.wait(task_id)

        assert task.status is TaskStatus.COMPLETED
        assert task.progress == 100
        assert task.result == {"frames": 3}
        assert task.description == "Halfway"
        assert task.error is None
        assert task.started_at is not None
        assert task.completed_at >= task.started_at

    @pytest.mark.asyncio
    async def test_failing_job_fails_task(self, registry):
        async def job(progress):
            raise ValueError("model refused the prompt")

        task = await registry.wait(await registry.enqueue(TaskType.IMAGE, "Bad", job))

        assert task.status is TaskStatus.FAILED
        assert task.error == "model refused the prompt"
        assert task.result is None

    @pytest.mark.asyncio
    async def test_empty_error_message_falls_back(self, registry):
        async def job(progress):
            raise RuntimeError()

        task = await registry.wait(await registry.enqueue(TaskType.IMAGE, "Bad", job))

        assert task.error == "Unknown error"

    @pytest.mark.asyncio
    async def test_job_objects_are_accepted(self, registry):
        async def produce(progress):
            return "ok"

        task = await registry.wait(
            await registry.enqueue(TaskType.SCRIPT, "Script", FunctionJob(produce))
        )

        assert task.result == "ok"

    @pytest.mark.asyncio
    async def test_unserialisable_result_fails_task(self, temp_dir):
        registry = TaskRegistry(JsonRecordStore(temp_dir, TASKS))
        await registry.init()

        async def job(progress):
            return {"payload": object()}

        task = await registry.wait(await registry.enqueue(TaskType.IMAGE, "Odd", job))
        await registry.dispose()

        assert task.status is TaskStatus.FAILED
        assert task.error.startswith("Could not store task result")


class TestAtMostOneExecution:

    @pytest.mark.asyncio
    async def test_concurrent_execute_runs_job_once(self, stores, registry):
        await stores.tasks.put(stored_task("t1", TaskStatus.PENDING))
        runs = []

        async def job(progress):
            runs.append(registry.is_executing("t1"))
            await asyncio.sleep(0)
            return "ok"

        await asyncio.gather(registry.execute("t1", job), registry.execute("t1", job))

        assert runs == [True]
        assert (await registry.get_task("t1")).status is TaskStatus.COMPLETED
        assert not registry.is_executing("t1")

    @pytest.mark.asyncio
    async def test_execute_skips_non_pending_task(self, stores, registry):
        await stores.tasks.put(stored_task("done", TaskStatus.COMPLETED))
        runs = []

        async def job(progress):
            runs.append(1)

        await registry.execute("done", job)
        await registry.execute("missing", job)

        assert runs == []


class TestProgress:

    @pytest.mark.asyncio
    async def test_progress_is_clamped_and_ends_at_100(self, registry):
        seen = []
        registry.subscribe(lambda tasks: seen.extend(t.progress for t in tasks))

        async def job(progress):
            await progress(-20, "below")
            await progress(55.6, "middle")
            await progress(250, "above")
            return None

        task = await registry.wait(await registry.enqueue(TaskType.AUDIO, "Voice", job))

        assert all(0 <= value <= 100 for value in seen)
        assert 56 in seen
        assert task.progress == 100

    @pytest.mark.asyncio
    async def test_description_kept_when_not_reported(self, registry):
        async def job(progress):
            await progress(10, "Rendering")
            await progress(20)
            task = await registry.get_task(task_id)
            return task.description

        task_id = await registry.enqueue(TaskType.IMAGE, "Frames", job)
        task = await registry.wait(task_id)

        assert task.result == "Rendering"


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancel_pending_task_never_runs(self, registry):
        """A task cancelled before its execution starts is skipped."""
        runs = []

        async def job(progress):
            runs.append(1)

        task_id = await registry.enqueue(TaskType.STORYBOARD, "Produce", job)
        assert await registry.cancel(task_id) is True

        task = await registry.wait(task_id)

        assert runs == []
        assert task.status is TaskStatus.FAILED
        assert task.error == CANCELLED_ERROR
        assert task.completed_at is not None

    @pytest.mark.asyncio
    async def test_cancel_running_task_is_absorbing(self, registry):
        started = asyncio.Event()
        release = asyncio.Event()
        observed = {}

        async def job(progress):
            started.set()
            await release.wait()
            observed["cancelled"] = progress.cancelled
            await progress(80, "still going")
            return "finished anyway"

        task_id = await registry.enqueue(TaskType.VIDEO, "Clip", job)
        await started.wait()

        assert (await registry.get_task(task_id)).status is TaskStatus.RUNNING
        assert await registry.cancel(task_id) is True

        release.set()
        task = await registry.wait(task_id)

        assert observed["cancelled"] is True
        assert task.status is TaskStatus.FAILED
        assert task.error == CANCELLED_ERROR
        assert task.result is None
        assert task.progress != 80

    @pytest.mark.asyncio
    async def test_cancel_finished_or_missing_task(self, stores, registry):
        await stores.tasks.put(stored_task("old", TaskStatus.COMPLETED))

        assert await registry.cancel("old") is False
        assert await registry.cancel("nope") is False
        assert (await registry.get_task("old")).status is TaskStatus.COMPLETED


class TestStartupReconciliation:

    @pytest.mark.asyncio
    async def test_running_tasks_fail_on_init(self):
        store = InMemoryRecordStore(TASKS)
        await store.put(stored_task("orphan", TaskStatus.RUNNING))
        await store.put(stored_task("queued", TaskStatus.PENDING))

        registry = TaskRegistry(store)
        notified = []
        registry.subscribe(lambda tasks: notified.append({t.id: t.status for t in tasks}))
        await registry.init()

        orphan = await registry.get_task("orphan")
        assert orphan.status is TaskStatus.FAILED
        assert orphan.error == INTERRUPTED_ERROR
        assert orphan.completed_at is not None
        assert not registry.is_executing("orphan")
        assert (await registry.get_task("queued")).status is TaskStatus.PENDING
        assert notified == [{"orphan": TaskStatus.FAILED, "queued": TaskStatus.PENDING}]

    @pytest.mark.asyncio
    async def test_init_without_reconcile_keeps_running_tasks(self):
        store = InMemoryRecordStore(TASKS)
        await store.put(stored_task("elsewhere", TaskStatus.RUNNING))
        await store.put(stored_task("done", TaskStatus.COMPLETED))

        registry = TaskRegistry(store)
        await registry.init(reconcile=False)

        assert (await registry.get_task("elsewhere")).status is TaskStatus.RUNNING
        assert await registry.clear_completed() == 1
        assert [t.id for t in await registry.list_tasks()] == ["elsewhere"]

    @pytest.mark.asyncio
    async def test_dispose_leaves_running_for_next_init(self):
        store = InMemoryRecordStore(TASKS)
        first = TaskRegistry(store)
        await first.init()
        started = asyncio.Event()

        async def job(progress):
            started.set()
            await asyncio.Event().wait()

        task_id = await first.enqueue(TaskType.VIDEO, "Forever", job)
        await started.wait()
        await first.dispose()

        assert (await first.get_task(task_id)).status is TaskStatus.RUNNING

        second = TaskRegistry(store)
        await second.init()
        task = await second.get_task(task_id)

        assert task.status is TaskStatus.FAILED
        assert task.error == INTERRUPTED_ERROR


class TestQueries:

    @pytest.mark.asyncio
    async def test_clear_completed_keeps_active(self, stores, registry):
        statuses = (
            [TaskStatus.PENDING] * 2
            + [TaskStatus.RUNNING]
            + [TaskStatus.COMPLETED] * 3
            + [TaskStatus.FAILED] * 2
        )
        for i, status in enumerate(statuses):
            await stores.tasks.put(stored_task(f"t{i}", status, created_at=i))

        removed = await registry.clear_completed()
        remaining = await registry.list_tasks()

        assert removed == 5
        assert sorted(t.status.value for t in remaining) == ["pending", "pending", "running"]

    @pytest.mark.asyncio
    async def test_list_newest_first_and_active(self, stores):
        clock = itertools.count(100)
        registry = TaskRegistry(stores.tasks, clock=lambda: next(clock))
        await registry.init()
        await stores.tasks.put(stored_task("old", TaskStatus.COMPLETED, created_at=1))

        async def job(progress):
            await asyncio.Event().wait()

        newer = await registry.enqueue(TaskType.IMAGE, "Newer", job)

        assert [t.id for t in await registry.list_tasks()] == [newer, "old"]
        assert [t.id for t in await registry.active_tasks()] == [newer]
        assert await registry.get_task("missing") is None

        await registry.dispose()

    @pytest.mark.asyncio
    async def test_custom_id_factory(self, stores):
        ids = iter(["first", "second"])
        registry = TaskRegistry(stores.tasks, id_factory=lambda: next(ids))
        await registry.init()

        async def job(progress):
            return None

        assert await registry.enqueue(TaskType.IMAGE, "One", job) == "first"
        await registry.wait_all()
        await registry.dispose()


class TestObservers:

    @pytest.mark.asyncio
    async def test_observer_sees_full_lifecycle(self, registry):
        statuses = []
        unsubscribe = registry.subscribe(
            lambda tasks: statuses.append(tasks[0].status if tasks else None)
        )

        async def job(progress):
            return None

        await registry.wait(await registry.enqueue(TaskType.IMAGE, "Frame", job))
        unsubscribe()
        await registry.clear_completed()

        assert statuses[0] is TaskStatus.PENDING
        assert TaskStatus.RUNNING in statuses
        assert statuses[-1] is TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_observer_errors_do_not_break_execution(self, registry):
        def broken(tasks):
            raise RuntimeError("ui went away")

        registry.subscribe(broken)

        async def job(progress):
            await progress(50)
            return "ok"

        task = await registry.wait(await registry.enqueue(TaskType.IMAGE, "Frame", job))

        assert task.status is TaskStatus.COMPLETED
