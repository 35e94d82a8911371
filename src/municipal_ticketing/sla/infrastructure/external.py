"""
SLA External Service Integrations
==================================

External services for the SLA clock:
- YAML config file loader with watchdog hot-reload
- APScheduler for the background sweep
"""

import threading
from pathlib import Path
from typing import Awaitable, Callable, Optional

import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError as PydanticValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from municipal_ticketing.core import ExternalDependencyError
from municipal_ticketing.shared.infrastructure.logging import get_logger
from municipal_ticketing.sla.application.services import ISLAConfigProvider
from municipal_ticketing.sla.domain.entities import SweepReport
from municipal_ticketing.sla.domain.value_objects import SLAConfig

logger = get_logger(__name__)


class ConfigFileHandler(FileSystemEventHandler):
    """
    Reloads the SLA config when its file changes.

    Creations and moves onto the watched path count as changes, which
    covers editors that save through a temp file and rename.
    """

    def __init__(self, config_manager: "SLAConfigManager", config_path: Path):
        super().__init__()
        self.config_manager = config_manager
        self.config_path = config_path.resolve()

    def on_modified(self, event):
        self._maybe_reload(event, event.src_path)

    def on_created(self, event):
        self._maybe_reload(event, event.src_path)

    def on_moved(self, event):
        self._maybe_reload(event, event.dest_path)

    def _maybe_reload(self, event, path) -> None:
        if event.is_directory or Path(path).resolve() != self.config_path:
            return
        logger.info(
            "SLA config file changed",
            extra={"path": str(path), "event_type": event.event_type}
        )
        self.config_manager.reload()


class SLAConfigManager(ISLAConfigProvider):
    """
    Thread-safe SLA configuration manager with hot-reload support.

    Uses watchdog to monitor file changes and reload configuration
    without restarting the service. A reload that fails keeps the last
    good configuration.
    """

    def __init__(self):
        self._config: Optional[SLAConfig] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> SLAConfig:
        """
        Initial configuration load.

        Raises:
            ExternalDependencyError: File unreadable or invalid
        """
        self._path = Path(path)
        config = self._load_from_file(self._path)
        with self._lock:
            self._config = config
        return config

    def _load_from_file(self, path: Path) -> SLAConfig:
        """Load and parse YAML config file."""
        if not path.exists():
            logger.warning("SLA config file not found, using defaults", extra={"path": str(path)})
            return SLAConfig()

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
            return SLAConfig(**data)
        except (OSError, yaml.YAMLError, PydanticValidationError, TypeError) as e:
            raise ExternalDependencyError(
                "sla_config",
                f"cannot load {path}",
                details={"error": str(e)}
            ) from e

    def reload(self) -> bool:
        """Reload configuration from file."""
        if self._path is None:
            return False

        try:
            new_config = self._load_from_file(self._path)
        except ExternalDependencyError as e:
            logger.error(
                "Failed to reload SLA config, keeping previous version",
                extra={"path": str(self._path), "error": e.details.get("error")}
            )
            return False

        with self._lock:
            self._config = new_config
        logger.info("SLA configuration reloaded successfully", extra={"path": str(self._path)})
        return True

    def start_watching(self) -> None:
        """
        Start watching configuration file for changes.

        Skips watching if the file doesn't exist or inotify is unavailable.
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                "SLA config file doesn't exist, skipping file watch",
                extra={"path": str(self._path)}
            )
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent), recursive=False)
            self._observer.start()
            logger.info("Started watching SLA config file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static config", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching configuration file (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def get_config(self) -> SLAConfig:
        """
        Get current configuration.

        Raises:
            ExternalDependencyError: Nothing has been loaded
        """
        with self._lock:
            config = self._config
        if config is None:
            raise ExternalDependencyError("sla_config", "configuration not loaded")
        return config

    @property
    def config(self) -> SLAConfig:
        return self.get_config()


class SLAScheduler:
    """
    Runs the SLA sweep on an APScheduler interval job.

    At most one sweep runs at a time; a missed run is coalesced into the
    next one rather than queued.
    """

    JOB_ID = "sla_sweep"

    def __init__(self, interval_seconds: int = 60):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._sweep: Optional[Callable[[], Awaitable[SweepReport]]] = None

    async def start(self, sweep: Callable[[], Awaitable[SweepReport]]) -> None:
        if self.is_running:
            logger.warning("SLA scheduler already running")
            return

        self._sweep = sweep
        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._scheduler.add_job(
            self._run,
            "interval",
            seconds=self.interval_seconds,
            id=self.JOB_ID,
            name="SLA sweep",
            misfire_grace_time=self.interval_seconds,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        self._scheduler.start()
        logger.info("SLA scheduler started", extra={"interval_seconds": self.interval_seconds})

    async def _run(self) -> None:
        try:
            report = await self._sweep()
        except Exception:
            # Next tick retries
            logger.exception("Scheduled SLA sweep failed")
            return

        if report.failed:
            logger.warning(
                "Scheduled SLA sweep finished with failures",
                extra={"scanned": report.scanned, "failed": len(report.failed)}
            )

    async def stop(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running
