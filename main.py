"""
Main entry point for the jobsync console viewer.

This script loads the configuration, sets up logging, builds the sync engine,
and logs a summary of the download queue every time it changes.
"""

import sys
import signal
import logging
import asyncio
from types import TracebackType
from typing import Mapping, Type

from jobsync.config import ConfigManager
from jobsync.constants import CONFIG_FILE
from jobsync.engine import JobSyncEngine
from jobsync.exceptions import SnapshotError
from jobsync.jobs import Job
from jobsync.logging_config import setup_logging
from jobsync.presentation import describe_job, jobs_in_order, queue_stats

def handle_exception(exc_type: Type[BaseException], exc_value: BaseException, exc_traceback: TracebackType):
    """Logs unhandled exceptions from synchronous code."""
    logger = logging.getLogger()
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return
    logger.critical("Unhandled exception:", exc_info=(exc_type, exc_value, exc_traceback))

def handle_async_exception(loop, context):
    """Logs unhandled exceptions from asyncio tasks."""
    logger = logging.getLogger()
    msg = context.get("exception", context["message"])
    logger.critical(f"Caught exception from asyncio task: {msg}")


class ConsoleView:
    """Logs the queue whenever the store changes."""

    def __init__(self):
        self.logger = logging.getLogger("jobsync.console")

    def __call__(self, jobs: Mapping[str, Job]):
        stats = queue_stats(jobs.values())
        self.logger.info(
            f"Queue: {stats['total']} job(s) - {stats['processing']} downloading, "
            f"{stats['queued']} queued, {stats['complete']} complete, {stats['failed']} failed"
        )
        for job in jobs_in_order(jobs.values()):
            self.logger.info(f"  {describe_job(job)}")


async def run(engine: JobSyncEngine):
    """Runs the engine until SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()
    loop.set_exception_handler(handle_async_exception)
    stop_event = asyncio.Event()

    if sys.platform != 'win32':
        loop.add_signal_handler(signal.SIGINT, stop_event.set)
        loop.add_signal_handler(signal.SIGTERM, stop_event.set)
        loop.add_signal_handler(signal.SIGCONT, _resumed, engine)

    engine.store.subscribe(ConsoleView())
    try:
        await engine.activate()
    except SnapshotError as e:
        logging.error(f"Failed to load job queue: {e}")
        await engine.deactivate()
        return 1

    try:
        await stop_event.wait()
    finally:
        await engine.deactivate()
    return 0


def _resumed(engine: JobSyncEngine):
    """A process resumed after suspension behaves like a page shown again."""
    engine.on_visibility_change(False)
    engine.on_visibility_change(True)


if __name__ == "__main__":
    # 1. Load configuration before setting up logging
    config_manager = ConfigManager(CONFIG_FILE)
    config = config_manager.load()

    # 2. Use the configured log level
    setup_logging(config.log_level)

    # 3. Set up global exception handlers
    sys.excepthook = handle_exception

    # 4. Create the engine and run it until interrupted
    engine = JobSyncEngine(config)
    try:
        sys.exit(asyncio.run(run(engine)))
    except KeyboardInterrupt:
        logging.info("Viewer interrupted by user.")
