"""Background task endpoints.

Lists, cancels and clears tasks, and streams the task list over SSE so a
client can render a live task panel.
"""

import asyncio
import json
from typing import Any, AsyncGenerator, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from storyweaver.api.deps import get_registry
from storyweaver.core.logging_config import get_logger
from storyweaver.models.task import BackgroundTask
from storyweaver.tasks.registry import TaskRegistry

logger = get_logger("api.tasks")

router = APIRouter()

KEEPALIVE_SECONDS = 30.0


def _serialize(tasks: List[BackgroundTask]) -> List[Dict[str, Any]]:
    return [task.to_dict() for task in tasks]


def format_event(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


async def task_event_generator(
    registry: TaskRegistry,
    request: Request,
    keepalive: float = KEEPALIVE_SECONDS,
) -> AsyncGenerator[str, None]:
    """Yield the full task list now and after every change."""
    queue: asyncio.Queue = asyncio.Queue()
    unsubscribe = registry.subscribe(lambda tasks: queue.put_nowait(_serialize(tasks)))

    try:
        yield format_event("tasks", _serialize(await registry.list_tasks()))

        while True:
            if await request.is_disconnected():
                logger.info("SSE client disconnected from task stream")
                break

            try:
                tasks = await asyncio.wait_for(queue.get(), timeout=keepalive)
                yield format_event("tasks", tasks)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"

    except asyncio.CancelledError:
        logger.info("Task stream cancelled")
    finally:
        unsubscribe()


@router.get("")
async def list_tasks(registry: TaskRegistry = Depends(get_registry)):
    """All tasks, newest first."""
    return _serialize(await registry.list_tasks())


@router.get("/active")
async def list_active_tasks(registry: TaskRegistry = Depends(get_registry)):
    return _serialize(await registry.active_tasks())


@router.get("/stream")
async def stream_tasks(request: Request, registry: TaskRegistry = Depends(get_registry)):
    """Stream the task list as SSE "tasks" events."""
    return StreamingResponse(
        task_event_generator(registry, request),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        }
    )


@router.delete("/completed")
async def clear_completed_tasks(registry: TaskRegistry = Depends(get_registry)):
    """Remove every completed and failed task."""
    return {"removed": await registry.clear_completed()}


@router.get("/{task_id}")
async def get_task(task_id: str, registry: TaskRegistry = Depends(get_registry)):
    task = await registry.get_task(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail=f"Task not found: {task_id}")
    return task.to_dict()


@router.post("/{task_id}/cancel")
async def cancel_task(task_id: str, registry: TaskRegistry = Depends(get_registry)):
    """Cancel a pending or running task; finished tasks are left alone."""
    if await registry.get_task(task_id) is None:
        raise HTTPException(status_code=404, detail=f"Task not found: {task_id}")
    return {"taskId": task_id, "cancelled": await registry.cancel(task_id)}
