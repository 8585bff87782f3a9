"""
Storyweaver Task Registry

Owns the lifecycle of background tasks:

    pending -> running -> completed | failed

Features:
- Persisted task records, visible to observers as soon as they are enqueued
- At most one execution in flight per task id
- Progress reports that re-read the stored record before writing
- Advisory cancellation (stored status + cooperative token)
- Startup reconciliation of tasks orphaned by a previous shutdown
"""

import asyncio
import uuid
from functools import partial
from typing import Callable, Dict, List, Optional, Set, Union

from storyweaver.core.constants import (
    CANCELLED_ERROR,
    INTERRUPTED_ERROR,
    UNKNOWN_ERROR,
    TaskStatus,
    TaskType,
)
from storyweaver.core.exceptions import RegistryNotInitializedError, StorageError
from storyweaver.core.logging_config import get_logger
from storyweaver.models.task import BackgroundTask, now_ms
from storyweaver.storage.record_store import RecordStore
from storyweaver.tasks.job import (
    CancellationToken,
    Job,
    JobFunction,
    ProgressReporter,
    as_job,
)

logger = get_logger("tasks.registry")

TaskObserver = Callable[[List[BackgroundTask]], None]


class TaskRegistry:
    """
    Task registry and executor.

    Usage:
        registry = TaskRegistry(stores.tasks)
        await registry.init()
        task_id = await registry.enqueue(TaskType.STORYBOARD, "Produce: Pilot", job)
        ...
        await registry.dispose()
    """

    def __init__(
        self,
        store: RecordStore,
        id_factory: Callable[[], str] = None,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Initialize the registry.

        Args:
            store: Record store for the tasks collection
            id_factory: Produces new task ids (uuid4 strings by default)
            clock: Epoch-millisecond clock used for lifecycle stamps
        """
        self.store = store
        self._new_id = id_factory or (lambda: str(uuid.uuid4()))
        self._clock = clock

        self._executing: Set[str] = set()
        self._runners: Dict[str, asyncio.Task] = {}
        self._tokens: Dict[str, CancellationToken] = {}
        self._observers: List[TaskObserver] = []
        self._initialized = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def init(self, reconcile: bool = True) -> None:
        """
        Go live, first failing every task a previous session left running.

        Args:
            reconcile: Only the process that owns the task store (the API
                server) should reconcile. Short-lived clients sharing the
                store pass False so they never fail another process's tasks.
        """
        interrupted = 0
        records = await self.store.get_all() if reconcile else []
        for record in records:
            task = BackgroundTask.from_dict(record)
            if task.status is TaskStatus.RUNNING:
                await self._save(
                    task.evolve(
                        status=TaskStatus.FAILED,
                        error=INTERRUPTED_ERROR,
                        completed_at=self._clock(),
                    ),
                    notify=False,
                )
                interrupted += 1

        self._initialized = True
        if interrupted:
            logger.warning(f"Marked {interrupted} interrupted task(s) as failed")
        logger.info("Task registry initialized")
        await self._notify()

    async def dispose(self) -> None:
        """
        Stop in-flight executions.

        Their records stay "running" and are reconciled by the next init().
        """
        runners = list(self._runners.values())
        for runner in runners:
            runner.cancel()
        if runners:
            await asyncio.gather(*runners, return_exceptions=True)
            logger.info(f"Stopped {len(runners)} in-flight task(s)")

        self._runners.clear()
        self._tokens.clear()
        self._observers.clear()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise RegistryNotInitializedError()

    # =========================================================================
    # EXECUTION
    # =========================================================================

    async def enqueue(
        self,
        task_type: Union[TaskType, str],
        title: str,
        job: Union[Job, JobFunction],
        related_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> str:
        """
        Persist a pending task and start executing it in the background.

        Job failures never surface here; they end up in the task's error.

        Returns:
            The new task id
        """
        self._require_initialized()
        job = as_job(job)

        task = BackgroundTask(
            id=self._new_id(),
            type=TaskType(task_type),
            title=title,
            description=description,
            related_id=related_id,
            created_at=self._clock(),
        )
        await self._save(task)
        logger.info(f"Enqueued {task.type.value} task {task.id}: {title}")

        runner = asyncio.create_task(self.execute(task.id, job), name=f"task-{task.id}")
        self._runners[task.id] = runner
        runner.add_done_callback(partial(self._forget_runner, task.id))
        return task.id

    def _forget_runner(self, task_id: str, runner: asyncio.Task) -> None:
        if self._runners.get(task_id) is runner:
            del self._runners[task_id]

    async def execute(self, task_id: str, job: Union[Job, JobFunction]) -> None:
        """
        Run a pending task's job once.

        Duplicate calls while an execution for the same id is in flight, and
        calls for tasks that are no longer pending, do nothing.
        """
        if task_id in self._executing:
            logger.debug(f"Task {task_id} already executing; ignoring duplicate")
            return
        self._executing.add(task_id)
        token = self._tokens.setdefault(task_id, CancellationToken())

        try:
            task = await self.get_task(task_id)
            if task is None or task.status is not TaskStatus.PENDING:
                state = task.status.value if task else "missing"
                logger.info(f"Skipping task {task_id}: status is {state}")
                return

            await self._save(task.evolve(status=TaskStatus.RUNNING, started_at=self._clock()))
            logger.info(f"Task {task_id} running")

            progress = ProgressReporter(partial(self._report_progress, task_id), token)
            try:
                result = await as_job(job).run(progress)
            except Exception as e:
                logger.error(f"Task {task_id} failed: {e}")
                await self._settle(task_id, TaskStatus.FAILED, error=str(e) or UNKNOWN_ERROR)
            else:
                await self._settle(task_id, TaskStatus.COMPLETED, result=result)

        except StorageError as e:
            logger.error(f"Task {task_id} could not be persisted: {e}")
        finally:
            self._executing.discard(task_id)
            self._tokens.pop(task_id, None)

    async def _report_progress(
        self,
        task_id: str,
        percent: int,
        description: Optional[str] = None
    ) -> None:
        current = await self.get_task(task_id)
        if current is None or current.is_terminal:
            return

        updated = current.evolve(
            progress=max(0, min(100, percent)),
            description=description or current.description,
        )
        await self._save(updated)
        logger.debug(f"Task {task_id} progress {updated.progress}%: {updated.description or ''}")

    async def _settle(
        self,
        task_id: str,
        status: TaskStatus,
        result=None,
        error: Optional[str] = None,
    ) -> None:
        """Write the executor's resolution unless the task was already settled."""
        current = await self.get_task(task_id)
        if current is None:
            logger.warning(f"Task {task_id} vanished before it settled")
            return
        if current.is_terminal:
            logger.warning(
                f"Task {task_id} is already {current.status.value}; "
                f"discarding {status.value} resolution"
            )
            return

        if status is TaskStatus.COMPLETED:
            settled = current.evolve(
                status=TaskStatus.COMPLETED,
                progress=100,
                result=result,
                completed_at=self._clock(),
            )
        else:
            settled = current.evolve(
                status=TaskStatus.FAILED,
                error=error or UNKNOWN_ERROR,
                completed_at=self._clock(),
            )

        try:
            await self._save(settled)
        except StorageError as e:
            await self._save(current.evolve(
                status=TaskStatus.FAILED,
                error=f"Could not store task result: {e}",
                completed_at=self._clock(),
            ))
            return

        logger.info(f"Task {task_id} {settled.status.value}")

    async def wait(self, task_id: str) -> Optional[BackgroundTask]:
        """Wait for a background execution started by enqueue() to finish."""
        runner = self._runners.get(task_id)
        if runner is not None:
            await asyncio.shield(runner)
        return await self.get_task(task_id)

    async def wait_all(self) -> None:
        """Wait until no background execution is in flight."""
        while True:
            pending = [runner for runner in self._runners.values() if not runner.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # =========================================================================
    # CONTROL
    # =========================================================================

    async def cancel(self, task_id: str) -> bool:
        """
        Force a pending or running task to failed.

        Advisory only: in-flight collaborator calls are not interrupted, but
        the job's CancellationToken is set so it can stop between steps.

        Returns:
            True if the task was cancelled
        """
        self._require_initialized()
        task = await self.get_task(task_id)
        if task is None or not task.is_active:
            return False

        await self._save(task.evolve(
            status=TaskStatus.FAILED,
            error=CANCELLED_ERROR,
            completed_at=self._clock(),
        ))
        token = self._tokens.get(task_id)
        if token:
            token.cancel()

        logger.info(f"Task {task_id} cancelled")
        return True

    async def clear_completed(self) -> int:
        """Delete every completed or failed task. Returns the number removed."""
        self._require_initialized()
        removed = 0
        for task in await self.list_tasks():
            if task.is_terminal:
                await self.store.delete(task.id)
                removed += 1

        if removed:
            logger.info(f"Cleared {removed} finished task(s)")
            await self._notify()
        return removed

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def list_tasks(self) -> List[BackgroundTask]:
        """All tasks, newest first."""
        tasks = [BackgroundTask.from_dict(record) for record in await self.store.get_all()]
        tasks.sort(key=lambda t: t.created_at, reverse=True)
        return tasks

    async def active_tasks(self) -> List[BackgroundTask]:
        return [task for task in await self.list_tasks() if task.is_active]

    async def get_task(self, task_id: str) -> Optional[BackgroundTask]:
        record = await self.store.get(task_id)
        return BackgroundTask.from_dict(record) if record else None

    def is_executing(self, task_id: str) -> bool:
        return task_id in self._executing

    # =========================================================================
    # OBSERVERS
    # =========================================================================

    def subscribe(self, observer: TaskObserver) -> Callable[[], None]:
        """
        Register a callback receiving the full task list after every change.

        Returns:
            A function that removes the observer
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    async def _notify(self) -> None:
        if not self._observers:
            return

        tasks = await self.list_tasks()
        for observer in list(self._observers):
            try:
                observer(tasks)
            except Exception as e:
                logger.error(f"Task observer {observer!r} raised: {e}")

    async def _save(self, task: BackgroundTask, notify: bool = True) -> None:
        await self.store.put(task.to_dict())
        if notify:
            await self._notify()
