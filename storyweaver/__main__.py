"""
Storyweaver Main Entry Point

    python -m storyweaver serve [--host HOST] [--port PORT]
    python -m storyweaver produce STORYBOARD_ID [--camera-motion "Zoom In"]
    python -m storyweaver tasks [--clear]
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from storyweaver.core.config import StoryweaverConfig, load_config
from storyweaver.core.constants import CameraMotion
from storyweaver.core.exceptions import StoryweaverError
from storyweaver.core.logging_config import LogLevel, get_logger, parse_level, setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="storyweaver",
        description="Storyweaver - background tasks and storyboard production"
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        help="Path to configuration file"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", type=str, help="Bind address (default from config)")
    serve.add_argument("--port", type=int, help="Port (default from config)")

    produce = commands.add_parser("produce", help="Produce one storyboard and print the report")
    produce.add_argument("storyboard_id", help="Storyboard to produce")
    produce.add_argument(
        "--camera-motion",
        choices=[motion.value for motion in CameraMotion],
        help="Camera directive for transition clips"
    )

    tasks = commands.add_parser("tasks", help="List background tasks")
    tasks.add_argument(
        "--clear",
        action="store_true",
        help="Remove completed and failed tasks first"
    )

    return parser


async def run_produce(config: StoryweaverConfig, storyboard_id: str, camera_motion: str = None) -> dict:
    """Run one production through a registry so the task record is kept."""
    from storyweaver.core.constants import TaskType
    from storyweaver.generation.gemini import create_gemini_generators
    from storyweaver.pipelines.storyboard_production import (
        StoryboardProductionJob,
        StoryboardProductionPipeline,
    )
    from storyweaver.storage.record_store import RecordStores
    from storyweaver.tasks.registry import TaskRegistry

    stores = RecordStores.on_disk(config.storage.data_dir)
    client, image, narration, video = create_gemini_generators(config.gemini)
    registry = TaskRegistry(stores.tasks)
    # The data dir may be shared with a running server
    await registry.init(reconcile=False)

    try:
        pipeline = StoryboardProductionPipeline(
            stores.storyboards, stores.characters, image, narration, video, config
        )
        registry.subscribe(_print_progress(storyboard_id))
        task_id = await registry.enqueue(
            TaskType.STORYBOARD,
            f"Produce: {storyboard_id}",
            StoryboardProductionJob(pipeline, storyboard_id, camera_motion),
            related_id=storyboard_id,
        )
        task = await registry.wait(task_id)
        return task.to_dict()
    finally:
        await registry.dispose()
        await client.aclose()


def _print_progress(storyboard_id: str):
    last = {}

    def observer(tasks):
        for task in tasks:
            if task.related_id != storyboard_id or not task.is_active:
                continue
            line = f"[{task.progress:3d}%] {task.description or task.status.value}"
            if last.get(task.id) != line:
                last[task.id] = line
                print(line)

    return observer


async def run_tasks(config: StoryweaverConfig, clear: bool = False) -> None:
    from storyweaver.storage.record_store import RecordStores
    from storyweaver.tasks.registry import TaskRegistry

    registry = TaskRegistry(RecordStores.on_disk(config.storage.data_dir).tasks)
    try:
        if clear:
            await registry.init(reconcile=False)
            removed = await registry.clear_completed()
            print(f"Removed {removed} finished task(s)")

        tasks = await registry.list_tasks()
        if not tasks:
            print("No tasks")
        for task in tasks:
            status = task.status.value
            if task.error:
                status = f"{status}: {task.error}"
            print(f"{task.id}  {task.type.value:<10} {task.progress:3d}%  {task.title}  ({status})")
    finally:
        await registry.dispose()


def main(argv=None) -> int:
    """Main entry point for Storyweaver."""
    args = build_parser().parse_args(argv)

    config_path = Path(args.config) if args.config else None
    try:
        config = load_config(config_path)
    except StoryweaverError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1

    level = LogLevel.DEBUG if args.debug else parse_level(config.log_level)
    setup_logging(level=level, log_file=config.log_file, verbose=args.debug)
    logger = get_logger("main")

    try:
        if args.command == "serve":
            from storyweaver.api import start_server
            logger.info("Starting Storyweaver API")
            start_server(config, host=args.host, port=args.port)

        elif args.command == "produce":
            task = asyncio.run(run_produce(config, args.storyboard_id, args.camera_motion))
            # Media is inlined as data URIs; keep the printout readable
            (task.get("result") or {}).pop("storyboard", None)
            print(json.dumps(task, indent=2))
            return 0 if task.get("status") == "completed" else 1

        elif args.command == "tasks":
            asyncio.run(run_tasks(config, clear=args.clear))

    except StoryweaverError as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
