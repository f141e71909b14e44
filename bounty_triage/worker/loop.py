"""
Bounty Triage sync worker - runs sync passes on a fixed interval.

Flow:
1. Optional initial pass at start
2. Sync: one pass over every configured repository
3. Wait: sleep for the interval, waking early on stop
4. Repeat until stopped

A pass that is still running when the next one is due is not overlapped;
the due pass is skipped.
"""
from __future__ import annotations

import signal
import threading
import uuid
from typing import Optional

import structlog

from ..config import Settings, get_settings
from ..db.base import Database
from ..github.client import GitHubIssueSource
from ..logging_config import configure_logging
from ..sync import SyncEngine, SyncResult

logger = structlog.get_logger(__name__)


class SyncWorker:
    """Periodic sync loop around a SyncEngine."""

    def __init__(
        self,
        engine: SyncEngine,
        interval: Optional[float] = None,
        sync_on_start: bool = True,
    ):
        """Initialize the worker.

        Args:
            engine: Engine whose ``sync_all`` is called every cycle
            interval: Seconds between pass starts (default from config)
            sync_on_start: Run a pass immediately instead of waiting
        """
        self.engine = engine
        self.interval = interval or get_settings().sync_interval_seconds
        self.sync_on_start = sync_on_start
        self.worker_id = f"sync-{uuid.uuid4().hex[:8]}"
        self.passes = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

        logger.info(
            "Sync worker initialized",
            worker_id=self.worker_id,
            interval=self.interval,
            repositories=engine.repositories,
        )

    @property
    def running(self) -> bool:
        return not self._stop.is_set()

    def run_once(self) -> Optional[SyncResult]:
        """Run one scheduled pass, unless a pass is already running."""
        try:
            result = self.engine.sync_all(skip_if_running=True)
        except Exception as e:
            logger.exception("Error in sync pass", worker_id=self.worker_id, error=str(e))
            return None
        if result is not None:
            self.passes += 1
        return result

    def start(self) -> None:
        """Run until stopped."""
        self._stop.clear()
        logger.info("Sync worker starting", worker_id=self.worker_id)

        try:
            if self.sync_on_start:
                self.run_once()
            while not self._stop.wait(self.interval):
                self.run_once()
        finally:
            logger.info("Sync worker stopped", worker_id=self.worker_id, passes=self.passes)

    def stop(self) -> None:
        """Stop the loop; a pass in progress completes first."""
        logger.info("Sync worker stopping", worker_id=self.worker_id)
        self._stop.set()

    def start_in_thread(self) -> threading.Thread:
        """Run the loop on a daemon thread, for use inside the API process."""
        thread = threading.Thread(target=self.start, name=self.worker_id, daemon=True)
        thread.start()
        self._thread = thread
        return thread

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the loop thread to exit after ``stop()``.

        Returns:
            True if the thread has exited (or was never started)
        """
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _signal_handler(self, signum, frame) -> None:
        """Handle shutdown signals."""
        logger.info("Received signal, shutting down", signal=signum)
        self.stop()

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)


def build_engine(settings: Settings, database: Database) -> SyncEngine:
    """Wire a SyncEngine to the GitHub source described by ``settings``."""
    source = GitHubIssueSource(
        token=settings.github_token,
        base_url=settings.github_api_url,
        per_page=settings.github_per_page,
        request_timeout=settings.github_request_timeout_seconds,
    )
    return SyncEngine.from_settings(database, source, settings)


def run_worker(
    interval: Optional[float] = None,
    sync_on_start: Optional[bool] = None,
    once: bool = False,
) -> Optional[SyncResult]:
    """Run the sync worker in the foreground.

    Args:
        interval: Seconds between passes
        sync_on_start: Run a pass at start (default from config)
        once: Run a single pass and return its result
    """
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)

    database = Database.from_url(settings.database_url)
    database.create_all()
    engine = build_engine(settings, database)

    try:
        if once:
            return engine.sync_all()

        if sync_on_start is None:
            sync_on_start = settings.sync_on_startup
        worker = SyncWorker(engine, interval=interval, sync_on_start=sync_on_start)
        worker.install_signal_handlers()
        worker.start()
        return None
    finally:
        engine.source.close()
        database.dispose()
