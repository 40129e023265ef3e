from datetime import UTC, datetime, timedelta
from pathlib import Path
import stat

import paramiko
import pytest

from catalog_sync.config import Settings
from catalog_sync.errors import ConnectionFailure, FetchFailure, NoMatchingFile
from catalog_sync.remote import SftpRetrievalAdapter, describe_attributes, select_latest_file
from catalog_sync.schemas import RemoteFileDescriptor


def descriptor(name: str, modified_at: datetime, *, regular: bool = True) -> RemoteFileDescriptor:
    return RemoteFileDescriptor(name=name, size_bytes=10, modified_at=modified_at, is_regular_file=regular)


def test_latest_file_ties_break_on_lexicographically_last_name() -> None:
    t = datetime(2026, 10, 16, 3, 0, tzinfo=UTC)
    listing = [
        descriptor("b.sql", t),
        descriptor("a.sql", t),
        descriptor("c.sql", t - timedelta(seconds=1)),
    ]

    assert select_latest_file(listing, "*.sql").name == "b.sql"
    assert select_latest_file(list(reversed(listing)), "*.sql").name == "b.sql"


def test_latest_file_skips_directories_and_unmatched_names() -> None:
    t = datetime(2026, 10, 16, 3, 0, tzinfo=UTC)
    listing = [
        descriptor("archive.asc", t + timedelta(hours=2), regular=False),
        descriptor("readme.txt", t + timedelta(hours=1)),
        descriptor("db_data.asc", t),
    ]

    assert select_latest_file(listing, "*.asc").name == "db_data.asc"


def test_no_matching_file_raises() -> None:
    listing = [descriptor("readme.txt", datetime(2026, 10, 16, tzinfo=UTC))]

    with pytest.raises(NoMatchingFile):
        select_latest_file(listing, "*.asc")
    with pytest.raises(NoMatchingFile):
        select_latest_file([], "*.asc")


def test_describe_attributes_maps_sftp_listing() -> None:
    attributes = paramiko.SFTPAttributes()
    attributes.filename = "db_data.asc"
    attributes.st_size = 2048
    attributes.st_mtime = 1_760_000_000
    attributes.st_mode = stat.S_IFREG | 0o644

    folder = paramiko.SFTPAttributes()
    folder.filename = "old"
    folder.st_size = 0
    folder.st_mtime = 1_760_000_000
    folder.st_mode = stat.S_IFDIR | 0o755

    described = describe_attributes(attributes)
    assert described.name == "db_data.asc"
    assert described.size_bytes == 2048
    assert described.modified_at == datetime.fromtimestamp(1_760_000_000, UTC)
    assert described.is_regular_file is True
    assert describe_attributes(folder).is_regular_file is False


class FakeSftpClient:
    def __init__(self, entries: list[paramiko.SFTPAttributes], payload: bytes = b"") -> None:
        self.entries = entries
        self.payload = payload
        self.closed = False
        self.downloads: list[str] = []

    def listdir_attr(self, path: str) -> list[paramiko.SFTPAttributes]:
        return self.entries

    def get(self, remote_path: str, local_path: str) -> None:
        self.downloads.append(remote_path)
        if not self.payload:
            raise OSError("no such file")
        Path(local_path).write_bytes(self.payload)

    def close(self) -> None:
        self.closed = True


class FakeSSHClient:
    connect_error: Exception | None = None
    sftp: FakeSftpClient = FakeSftpClient([])

    def __init__(self) -> None:
        self.closed = False
        self.connect_kwargs: dict[str, object] = {}

    def load_system_host_keys(self) -> None:
        pass

    def load_host_keys(self, path: str) -> None:
        pass

    def set_missing_host_key_policy(self, policy: object) -> None:
        self.policy = policy

    def connect(self, hostname: str, **kwargs: object) -> None:
        self.connect_kwargs = {"hostname": hostname, **kwargs}
        if self.connect_error:
            raise self.connect_error

    def open_sftp(self) -> "FakeOpenedSftp":
        return FakeOpenedSftp(self.sftp)

    def close(self) -> None:
        self.closed = True


class FakeChannel:
    def settimeout(self, timeout: float) -> None:
        self.timeout = timeout


class FakeOpenedSftp:
    def __init__(self, inner: FakeSftpClient) -> None:
        self.inner = inner

    def get_channel(self) -> FakeChannel:
        return FakeChannel()

    def __getattr__(self, name: str) -> object:
        return getattr(self.inner, name)


@pytest.fixture()
def fake_ssh(monkeypatch: pytest.MonkeyPatch) -> type[FakeSSHClient]:
    FakeSSHClient.connect_error = None
    FakeSSHClient.sftp = FakeSftpClient([])
    monkeypatch.setattr(paramiko, "SSHClient", FakeSSHClient)
    return FakeSSHClient


def test_sftp_adapter_lists_and_fetches(fake_ssh, test_settings: Settings, tmp_path: Path) -> None:
    entry = paramiko.SFTPAttributes()
    entry.filename = "db_data.asc"
    entry.st_size = 5
    entry.st_mtime = 1_760_000_000
    entry.st_mode = stat.S_IFREG | 0o644
    fake_ssh.sftp = FakeSftpClient([entry], payload=b"hello")

    adapter = SftpRetrievalAdapter(test_settings)
    session = adapter.connect()
    listing = adapter.list(session, test_settings.sftp_remote_path)
    size = adapter.fetch(session, "db_data.asc", tmp_path / "staged" / "db_data.asc")
    adapter.disconnect(session)

    assert [item.name for item in listing] == ["db_data.asc"]
    assert size == 5
    assert fake_ssh.sftp.downloads == ["/exports/db_data.asc"]
    assert session.client.connect_kwargs["timeout"] == test_settings.sftp_timeout_seconds
    assert session.client.closed is True


def test_sftp_adapter_wraps_connection_errors(fake_ssh, test_settings: Settings) -> None:
    fake_ssh.connect_error = TimeoutError("timed out")

    with pytest.raises(ConnectionFailure, match="timed out"):
        SftpRetrievalAdapter(test_settings).connect()


def test_sftp_adapter_wraps_download_errors(fake_ssh, test_settings: Settings, tmp_path: Path) -> None:
    adapter = SftpRetrievalAdapter(test_settings)
    session = adapter.connect()

    with pytest.raises(FetchFailure, match="db_data.asc"):
        adapter.fetch(session, "db_data.asc", tmp_path / "db_data.asc")
