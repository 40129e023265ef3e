from collections.abc import Generator
from datetime import UTC, datetime
from pathlib import Path
import threading

import pytest

from catalog_sync.config import Settings
from catalog_sync.pipeline import SyncOrchestrator
from catalog_sync.schemas import RemoteFileDescriptor


SAMPLE_EXPORT = "\n".join(
    [
        "1001  Widget Pro***   5   19.99   7",
        "1002  Gadget Max        0   8.50   3",
        "not a product line",
        "",
        "1003  X   2   1.00   4",
        "1004\tCable USB-C**********\t12\t3.25\t9",
    ]
)


class FakeRemoteAdapter:
    """In-memory stand-in for the SFTP adapter."""

    def __init__(self, files: dict[str, tuple[str, datetime]] | None = None) -> None:
        self.files = files or {}
        self.directories: list[str] = []
        self.connect_error: Exception | None = None
        self.list_error: Exception | None = None
        self.fetch_error: Exception | None = None
        self.fetch_started = threading.Event()
        self.release_fetch: threading.Event | None = None
        self.calls: list[str] = []

    def connect(self) -> object:
        self.calls.append("connect")
        if self.connect_error:
            raise self.connect_error
        return object()

    def list(self, session: object, path: str) -> list[RemoteFileDescriptor]:
        self.calls.append("list")
        if self.list_error:
            raise self.list_error
        descriptors = [
            RemoteFileDescriptor(
                name=name,
                size_bytes=len(content.encode("utf-8")),
                modified_at=modified_at,
                is_regular_file=True,
            )
            for name, (content, modified_at) in self.files.items()
        ]
        descriptors.extend(
            RemoteFileDescriptor(name=name, size_bytes=0, modified_at=datetime.now(UTC), is_regular_file=False)
            for name in self.directories
        )
        return descriptors

    def fetch(self, session: object, remote_name: str, local_path: Path) -> int:
        self.calls.append(f"fetch:{remote_name}")
        self.fetch_started.set()
        if self.release_fetch is not None:
            self.release_fetch.wait(timeout=10)
        if self.fetch_error:
            raise self.fetch_error
        data = self.files[remote_name][0].encode("utf-8")
        local_path.parent.mkdir(parents=True, exist_ok=True)
        local_path.write_bytes(data)
        return len(data)

    def disconnect(self, session: object) -> None:
        self.calls.append("disconnect")


@pytest.fixture()
def temp_workspace(tmp_path: Path) -> Path:
    (tmp_path / "temp").mkdir(parents=True, exist_ok=True)
    (tmp_path / "outputs").mkdir(parents=True, exist_ok=True)
    return tmp_path


@pytest.fixture()
def test_settings(temp_workspace: Path) -> Settings:
    return Settings(
        app_name="catalog-sync",
        log_level="INFO",
        log_file="",
        log_max_bytes=1024,
        log_backup_count=1,
        sftp_host="sftp.example.test",
        sftp_port=22,
        sftp_user="demo",
        sftp_password="secret",
        sftp_remote_path="/exports",
        sftp_file_pattern="*.asc",
        sftp_timeout_seconds=5,
        sftp_known_hosts="",
        sftp_strict_host_keys=False,
        staging_dir=str(temp_workspace / "temp"),
        output_dir=str(temp_workspace / "outputs"),
        staging_retention_hours=2,
        output_retention_hours=24,
        output_format="both",
        payload_encoding="utf-8",
        clean_names=True,
        validate_records=True,
        sync_cron_schedule="0 3 * * *",
        timezone="UTC",
        completed_grace_seconds=0,
        error_grace_seconds=0,
        history_capacity=100,
        status_history_size=5,
    )


@pytest.fixture()
def remote() -> FakeRemoteAdapter:
    return FakeRemoteAdapter(
        {
            "db_data_2026-10-16.asc": (SAMPLE_EXPORT, datetime(2026, 10, 16, 3, 0, tzinfo=UTC)),
            "db_data_2026-10-15.asc": ("1 Old Item   1   1   1", datetime(2026, 10, 15, 3, 0, tzinfo=UTC)),
            "notes.txt": ("ignore me", datetime(2026, 10, 17, 3, 0, tzinfo=UTC)),
        }
    )


@pytest.fixture()
def orchestrator(test_settings: Settings, remote: FakeRemoteAdapter) -> Generator[SyncOrchestrator, None, None]:
    yield SyncOrchestrator(test_settings, remote)
