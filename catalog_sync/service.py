from dataclasses import dataclass
from fnmatch import fnmatchcase
import logging

from catalog_sync.config import Settings
from catalog_sync.errors import InvalidSchedule, SyncError
from catalog_sync.pipeline import SyncOrchestrator
from catalog_sync.remote import RemoteRetrievalAdapter, SftpRetrievalAdapter
from catalog_sync.scheduler import ScheduleDriver
from catalog_sync.schemas import (
    RemoteFileDescriptor,
    RunOutcome,
    RunRecord,
    ScheduleConfig,
    StatusReport,
    TriggerSource,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleChange:
    ok: bool
    config: ScheduleConfig | None
    error: str | None = None


@dataclass(frozen=True)
class ScheduleState:
    active: bool
    config: ScheduleConfig | None
    next_run_at: str | None


@dataclass(frozen=True)
class RemoteCheck:
    ok: bool
    files: tuple[RemoteFileDescriptor, ...] = ()
    latest: RemoteFileDescriptor | None = None
    error: str | None = None


class SyncService:
    """Entry points used by request handlers and the command line."""

    def __init__(
        self,
        settings: Settings,
        *,
        adapter: RemoteRetrievalAdapter | None = None,
        orchestrator: SyncOrchestrator | None = None,
        driver: ScheduleDriver | None = None,
    ) -> None:
        self.settings = settings
        if orchestrator is None:
            if adapter is None:
                adapter = SftpRetrievalAdapter(settings)
            orchestrator = SyncOrchestrator(settings, adapter)
        self.orchestrator = orchestrator
        self.adapter = orchestrator.adapter if adapter is None else adapter
        self.driver = driver if driver is not None else ScheduleDriver(orchestrator, timezone=settings.timezone)

    def trigger_sync(self) -> RunOutcome:
        return self.orchestrator.submit(TriggerSource.MANUAL)

    def run_sync(self) -> RunOutcome:
        return self.orchestrator.run(TriggerSource.MANUAL)

    def get_status(self) -> StatusReport:
        return self.orchestrator.get_status(next_run_at=self.driver.next_run_time())

    def get_history(self, limit: int = 50, offset: int = 0) -> list[RunRecord]:
        return self.orchestrator.get_history(limit=limit, offset=offset)

    def start_schedule(self, expression: str | None = None) -> ScheduleChange:
        if expression is None:
            expression = self.driver.config.expression if self.driver.config else self.settings.sync_cron_schedule
        try:
            config = self.driver.start(expression, self.settings.timezone)
        except InvalidSchedule as exc:
            logger.warning("schedule start rejected", extra={"schedule": expression})
            return ScheduleChange(ok=False, config=self.driver.config, error=str(exc))
        return ScheduleChange(ok=True, config=config)

    def stop_schedule(self) -> ScheduleChange:
        self.driver.stop()
        return ScheduleChange(ok=True, config=self.driver.config)

    def reschedule(self, expression: str) -> ScheduleChange:
        if not expression or not expression.strip():
            return ScheduleChange(ok=False, config=self.driver.config, error="a cron expression is required")
        try:
            config = self.driver.reschedule(expression.strip())
        except SyncError as exc:
            logger.warning("reschedule rejected", extra={"schedule": expression})
            return ScheduleChange(ok=False, config=self.driver.config, error=str(exc))
        return ScheduleChange(ok=True, config=config)

    def schedule_status(self) -> ScheduleState:
        next_run = self.driver.next_run_time()
        return ScheduleState(
            active=self.driver.active,
            config=self.driver.config,
            next_run_at=next_run.isoformat() if next_run else None,
        )

    def shutdown(self) -> None:
        self.driver.shutdown()

    def test_connection(self) -> RemoteCheck:
        """Open and close a remote session without touching any file."""
        try:
            session = self.adapter.connect()
        except SyncError as exc:
            logger.warning("remote connection check failed", extra={"host": self.settings.sftp_host})
            return RemoteCheck(ok=False, error=str(exc))
        self._close(session)
        logger.info("remote connection check passed", extra={"host": self.settings.sftp_host})
        return RemoteCheck(ok=True)

    def list_remote_files(self) -> RemoteCheck:
        """List the export files on the remote host and report which one a run would pick."""
        settings = self.settings
        try:
            session = self.adapter.connect()
        except SyncError as exc:
            logger.warning("remote listing failed", extra={"host": settings.sftp_host})
            return RemoteCheck(ok=False, error=str(exc))
        try:
            descriptors = self.adapter.list(session, settings.sftp_remote_path)
        except SyncError as exc:
            logger.warning("remote listing failed", extra={"remote_path": settings.sftp_remote_path})
            return RemoteCheck(ok=False, error=str(exc))
        finally:
            self._close(session)

        files = tuple(
            sorted(
                (
                    descriptor
                    for descriptor in descriptors
                    if descriptor.is_regular_file and fnmatchcase(descriptor.name, settings.sftp_file_pattern)
                ),
                key=lambda descriptor: (descriptor.modified_at, descriptor.name),
                reverse=True,
            )
        )
        # Same ordering as select_latest_file, so the first entry is what a run would fetch.
        latest = files[0] if files else None
        logger.info(
            "remote files listed",
            extra={"remote_path": settings.sftp_remote_path, "file_count": len(files)},
        )
        return RemoteCheck(ok=True, files=files, latest=latest)

    def _close(self, session: object) -> None:
        try:
            self.adapter.disconnect(session)
        except Exception:
            logger.warning("remote disconnect failed", exc_info=True)
