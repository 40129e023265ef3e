from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime
import logging
from pathlib import Path
import threading
import time

from catalog_sync.config import Settings
from catalog_sync.record_parser import parse_records
from catalog_sync.remote import RemoteRetrievalAdapter, select_latest_file
from catalog_sync.run_store import RunHistoryStore, utc_now
from catalog_sync.schemas import (
    ParseResult,
    RemoteFileDescriptor,
    RunOutcome,
    RunRecord,
    RunStatus,
    StatusReport,
    SyncState,
    TriggerSource,
)
from catalog_sync.staging import purge_stale_files, read_payload, staging_path, write_catalog, write_json


logger = logging.getLogger(__name__)


@dataclass
class _RunProgress:
    started_at: datetime
    started_clock: float
    source_file: str | None = None
    payload_size_bytes: int = 0
    records_processed: int = 0
    records_rejected: int = 0

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_clock) * 1000)


class SyncOrchestrator:
    """Single-flight: a trigger during an active run gets ``already_running``."""

    def __init__(
        self,
        settings: Settings,
        adapter: RemoteRetrievalAdapter,
        *,
        history: RunHistoryStore | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.adapter = adapter
        self.history = history if history is not None else RunHistoryStore(settings.history_capacity)
        self._sleep = sleep
        self._guard = threading.Lock()
        self._status = RunStatus()

    @property
    def status(self) -> RunStatus:
        return self._status

    def run(self, trigger: TriggerSource = TriggerSource.MANUAL) -> RunOutcome:
        if not self._guard.acquire(blocking=False):
            return self._rejected(trigger)
        try:
            return self._execute(trigger)
        finally:
            self._guard.release()

    def submit(self, trigger: TriggerSource = TriggerSource.MANUAL) -> RunOutcome:
        if not self._guard.acquire(blocking=False):
            return self._rejected(trigger)

        def target() -> None:
            try:
                self._execute(trigger)
            finally:
                self._guard.release()

        try:
            worker = threading.Thread(target=target, name=f"sync-{trigger.value}", daemon=True)
            worker.start()
        except RuntimeError:
            self._guard.release()
            raise
        return RunOutcome(
            status="started",
            trigger=trigger,
            current_state=self._status.state,
            message="sync started",
        )

    def get_status(self, *, next_run_at: datetime | None = None, recent: int | None = None) -> StatusReport:
        limit = self.settings.status_history_size if recent is None else recent
        return StatusReport(
            status=self._status,
            recent_runs=self.history.recent(limit),
            total_runs=self.history.total_runs,
            next_run_at=next_run_at,
        )

    def get_history(self, *, limit: int = 50, offset: int = 0) -> list[RunRecord]:
        return self.history.page(limit=limit, offset=offset)

    def _rejected(self, trigger: TriggerSource) -> RunOutcome:
        current = self._status
        logger.warning(
            "sync already running, trigger rejected",
            extra={"trigger": trigger.value, "state": current.state.value},
        )
        return RunOutcome(
            status="already_running",
            trigger=trigger,
            current_state=current.state,
            message=f"sync already running (state: {current.state.value})",
        )

    def _execute(self, trigger: TriggerSource) -> RunOutcome:
        progress = _RunProgress(started_at=utc_now(), started_clock=time.monotonic())
        self._status = replace(self._status, current_run_started_at=progress.started_at, last_error=None)
        logger.info("sync run started", extra={"trigger": trigger.value})

        try:
            staged_path = self._retrieve(progress)

            self._transition(SyncState.PARSING, f"parsing {progress.source_file}")
            parsed = self._parse(staged_path)
            progress.records_processed = parsed.stats.accepted
            progress.records_rejected = parsed.stats.rejected

            self._transition(SyncState.FINALIZING, f"publishing {parsed.stats.accepted} catalog entries")
            self._finalize(staged_path, parsed, progress)
        except Exception as exc:
            logger.exception("sync run failed", extra={"trigger": trigger.value, "state": self._status.state.value})
            return self._fail(trigger, progress, str(exc) or exc.__class__.__name__)

        return self._complete(trigger, progress)

    def _retrieve(self, progress: _RunProgress) -> Path:
        settings = self.settings
        self._transition(SyncState.CONNECTING, f"connecting to {settings.sftp_host}")
        session = self.adapter.connect()
        try:
            self._transition(SyncState.DOWNLOADING, f"listing {settings.sftp_remote_path}")
            descriptors = self.adapter.list(session, settings.sftp_remote_path)
            selected = select_latest_file(descriptors, settings.sftp_file_pattern)
            self._log_selection(selected)
            progress.source_file = selected.name

            self._transition(SyncState.DOWNLOADING, f"downloading {selected.name}")
            local_path = staging_path(Path(settings.staging_dir), selected.name)
            progress.payload_size_bytes = self.adapter.fetch(session, selected.name, local_path)
        finally:
            self._disconnect(session)
        return local_path

    def _disconnect(self, session: object) -> None:
        try:
            self.adapter.disconnect(session)
        except Exception:
            # A failed close must not mask the outcome of the run.
            logger.warning("remote disconnect failed", exc_info=True)

    def _log_selection(self, selected: RemoteFileDescriptor) -> None:
        logger.info(
            "latest remote file selected",
            extra={
                "file_name": selected.name,
                "size_bytes": selected.size_bytes,
                "modified_at": selected.modified_at.isoformat(),
            },
        )

    def _parse(self, staged_path: Path) -> ParseResult:
        text = read_payload(staged_path, self.settings.payload_encoding)
        parsed = parse_records(
            text,
            clean_names=self.settings.clean_names,
            validate=self.settings.validate_records,
        )
        logger.info(
            "export parsed",
            extra={
                "total_lines": parsed.stats.total_lines,
                "accepted": parsed.stats.accepted,
                "rejected": parsed.stats.rejected,
            },
        )
        return parsed

    def _finalize(self, staged_path: Path, parsed: ParseResult, progress: _RunProgress) -> None:
        settings = self.settings
        output_root = Path(settings.output_dir)
        export_name = staged_path.stem
        written = write_catalog(output_root, export_name, parsed.records, output_format=settings.output_format)
        report_path = output_root / "reports" / f"{export_name}.json"
        write_json(
            report_path,
            {
                "source_file": progress.source_file,
                "payload_size_bytes": progress.payload_size_bytes,
                "total_lines": parsed.stats.total_lines,
                "blank_lines": parsed.stats.blank_lines,
                "accepted": parsed.stats.accepted,
                "rejected": parsed.stats.rejected,
                "catalog_outputs": [str(path) for path in written],
                "started_at": progress.started_at.isoformat(),
            },
        )

        self._purge(Path(settings.staging_dir), settings.staging_retention_hours, keep={staged_path})
        self._purge(output_root / "catalog", settings.output_retention_hours, keep=set(written))
        self._purge(output_root / "reports", settings.output_retention_hours, keep={report_path})

    def _purge(self, directory: Path, older_than_hours: float, keep: set[Path]) -> None:
        try:
            purge_stale_files(directory, older_than_hours=older_than_hours, keep=keep)
        except OSError:
            logger.error("cleanup of stale files failed", exc_info=True, extra={"directory": str(directory)})

    def _complete(self, trigger: TriggerSource, progress: _RunProgress) -> RunOutcome:
        record = RunRecord(
            succeeded=True,
            trigger=trigger,
            started_at=progress.started_at,
            duration_ms=progress.elapsed_ms(),
            records_processed=progress.records_processed,
            records_rejected=progress.records_rejected,
            payload_size_bytes=progress.payload_size_bytes,
            source_file=progress.source_file,
        )
        self.history.append(record)
        message = f"sync completed: {record.records_processed} records processed"
        self._status = replace(self._status, last_completed_at=utc_now())
        self._transition(SyncState.COMPLETED, message)
        logger.info("sync run completed", extra=record.to_dict())

        self._sleep(self.settings.completed_grace_seconds)
        self._transition(SyncState.IDLE, "waiting for next sync", run_finished=True)
        return RunOutcome(status="succeeded", trigger=trigger, current_state=SyncState.COMPLETED, message=message, record=record)

    def _fail(self, trigger: TriggerSource, progress: _RunProgress, detail: str) -> RunOutcome:
        record = RunRecord(
            succeeded=False,
            trigger=trigger,
            started_at=progress.started_at,
            duration_ms=progress.elapsed_ms(),
            records_processed=progress.records_processed,
            records_rejected=progress.records_rejected,
            payload_size_bytes=progress.payload_size_bytes,
            source_file=progress.source_file,
            error_detail=detail,
        )
        self.history.append(record)
        self._status = replace(self._status, last_error=detail)
        self._transition(SyncState.ERROR, f"sync failed: {detail}")

        self._sleep(self.settings.error_grace_seconds)
        self._transition(SyncState.IDLE, f"last sync failed: {detail}", run_finished=True)
        return RunOutcome(status="failed", trigger=trigger, current_state=SyncState.ERROR, message=detail, record=record)

    def _transition(self, state: SyncState, message: str, *, run_finished: bool = False) -> None:
        status = replace(self._status, state=state, message=message)
        if run_finished:
            status = replace(status, current_run_started_at=None)
        self._status = status
        logger.info("sync state changed", extra={"state": state.value, "status_message": message})
