from dataclasses import dataclass
from datetime import UTC, datetime
from fnmatch import fnmatchcase
import logging
from pathlib import Path, PurePosixPath
import stat
from typing import Protocol

import paramiko

from catalog_sync.config import Settings
from catalog_sync.errors import ConnectionFailure, FetchFailure, NoMatchingFile
from catalog_sync.schemas import RemoteFileDescriptor


logger = logging.getLogger(__name__)


class RemoteRetrievalAdapter(Protocol):
    def connect(self) -> object: ...

    def list(self, session: object, path: str) -> list[RemoteFileDescriptor]: ...

    def fetch(self, session: object, remote_name: str, local_path: Path) -> int: ...

    def disconnect(self, session: object) -> None: ...


def select_latest_file(descriptors: list[RemoteFileDescriptor], pattern: str) -> RemoteFileDescriptor:
    """Return the newest regular file matching ``pattern``.

    Files sharing the newest modification time are ordered by name and the
    lexicographically last one wins, so the choice never depends on the
    order the server listed them in.
    """
    candidates = [
        descriptor
        for descriptor in descriptors
        if descriptor.is_regular_file and fnmatchcase(descriptor.name, pattern)
    ]
    if not candidates:
        raise NoMatchingFile(f"no remote file matches pattern {pattern!r}")

    candidates.sort(key=lambda descriptor: (descriptor.modified_at, descriptor.name), reverse=True)
    return candidates[0]


@dataclass
class SftpSession:
    client: paramiko.SSHClient
    sftp: paramiko.SFTPClient


def describe_attributes(attributes: paramiko.SFTPAttributes) -> RemoteFileDescriptor:
    mode = attributes.st_mode or 0
    return RemoteFileDescriptor(
        name=attributes.filename,
        size_bytes=attributes.st_size or 0,
        modified_at=datetime.fromtimestamp(attributes.st_mtime or 0, UTC),
        is_regular_file=stat.S_ISREG(mode),
    )


class SftpRetrievalAdapter:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def connect(self) -> SftpSession:
        settings = self.settings
        client = paramiko.SSHClient()
        client.load_system_host_keys()
        if settings.sftp_known_hosts:
            client.load_host_keys(settings.sftp_known_hosts)
        if settings.sftp_strict_host_keys:
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
        else:
            client.set_missing_host_key_policy(paramiko.WarningPolicy())

        logger.info("connecting to sftp host", extra={"host": settings.sftp_host, "port": settings.sftp_port})
        try:
            client.connect(
                settings.sftp_host,
                port=settings.sftp_port,
                username=settings.sftp_user,
                password=settings.sftp_password or None,
                timeout=settings.sftp_timeout_seconds,
                banner_timeout=settings.sftp_timeout_seconds,
                auth_timeout=settings.sftp_timeout_seconds,
                allow_agent=False,
                look_for_keys=False,
            )
            sftp = client.open_sftp()
            sftp.get_channel().settimeout(settings.sftp_timeout_seconds)
        except (paramiko.SSHException, OSError) as exc:
            client.close()
            raise ConnectionFailure(f"could not connect to {settings.sftp_host}:{settings.sftp_port}: {exc}") from exc

        return SftpSession(client=client, sftp=sftp)

    def list(self, session: SftpSession, path: str) -> list[RemoteFileDescriptor]:
        try:
            entries = session.sftp.listdir_attr(path)
        except (paramiko.SSHException, OSError) as exc:
            raise FetchFailure(f"could not list remote directory {path!r}: {exc}") from exc

        logger.info("listed remote directory", extra={"remote_path": path, "entries": len(entries)})
        return [describe_attributes(entry) for entry in entries]

    def fetch(self, session: SftpSession, remote_name: str, local_path: Path) -> int:
        remote_path = str(PurePosixPath(self.settings.sftp_remote_path) / remote_name)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            session.sftp.get(remote_path, str(local_path))
        except (paramiko.SSHException, OSError) as exc:
            raise FetchFailure(f"could not download {remote_path!r}: {exc}") from exc

        size = local_path.stat().st_size
        logger.info("downloaded remote file", extra={"remote_path": remote_path, "bytes": size})
        return size

    def disconnect(self, session: SftpSession) -> None:
        session.sftp.close()
        session.client.close()
        logger.info("sftp session closed", extra={"host": self.settings.sftp_host})
