from dataclasses import dataclass
import os

from dotenv import load_dotenv


load_dotenv()

OUTPUT_FORMATS = ("json", "csv", "both")


@dataclass(frozen=True)
class Settings:
    app_name: str
    log_level: str
    log_file: str
    log_max_bytes: int
    log_backup_count: int
    sftp_host: str
    sftp_port: int
    sftp_user: str
    sftp_password: str
    sftp_remote_path: str
    sftp_file_pattern: str
    sftp_timeout_seconds: float
    sftp_known_hosts: str
    sftp_strict_host_keys: bool
    staging_dir: str
    output_dir: str
    staging_retention_hours: float
    output_retention_hours: float
    output_format: str
    payload_encoding: str
    clean_names: bool
    validate_records: bool
    sync_cron_schedule: str
    timezone: str
    completed_grace_seconds: float
    error_grace_seconds: float
    history_capacity: int
    status_history_size: int


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def get_settings() -> Settings:
    output_format = os.getenv("OUTPUT_FORMAT", "json").lower()
    if output_format not in OUTPUT_FORMATS:
        raise ValueError(f"OUTPUT_FORMAT must be one of {', '.join(OUTPUT_FORMATS)}, got {output_format!r}")

    return Settings(
        app_name=os.getenv("APP_NAME", "catalog-sync"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_file=os.getenv("LOG_FILE", ""),
        log_max_bytes=int(os.getenv("LOG_MAX_BYTES", str(10 * 1024 * 1024))),
        log_backup_count=int(os.getenv("LOG_BACKUP_COUNT", "5")),
        sftp_host=os.getenv("SFTP_HOST", "localhost"),
        sftp_port=int(os.getenv("SFTP_PORT", "22")),
        sftp_user=os.getenv("SFTP_USER", ""),
        sftp_password=os.getenv("SFTP_PASSWORD", ""),
        sftp_remote_path=os.getenv("SFTP_REMOTE_PATH", "/"),
        sftp_file_pattern=os.getenv("SFTP_FILE_PATTERN", "*.asc"),
        sftp_timeout_seconds=float(os.getenv("SFTP_TIMEOUT_SECONDS", "30")),
        sftp_known_hosts=os.getenv("SFTP_KNOWN_HOSTS", ""),
        sftp_strict_host_keys=_env_bool("SFTP_STRICT_HOST_KEYS", "false"),
        staging_dir=os.getenv("STAGING_DIR", "./temp"),
        output_dir=os.getenv("OUTPUT_DIR", "./outputs"),
        staging_retention_hours=float(os.getenv("STAGING_RETENTION_HOURS", "2")),
        output_retention_hours=float(os.getenv("OUTPUT_RETENTION_HOURS", "24")),
        output_format=output_format,
        payload_encoding=os.getenv("PAYLOAD_ENCODING", "utf-8"),
        clean_names=_env_bool("CLEAN_NAMES", "true"),
        validate_records=_env_bool("VALIDATE_RECORDS", "true"),
        sync_cron_schedule=os.getenv("SYNC_CRON_SCHEDULE", "0 3 * * *"),
        timezone=os.getenv("TZ", "UTC"),
        completed_grace_seconds=float(os.getenv("COMPLETED_GRACE_SECONDS", "5")),
        error_grace_seconds=float(os.getenv("ERROR_GRACE_SECONDS", "30")),
        history_capacity=int(os.getenv("HISTORY_CAPACITY", "100")),
        status_history_size=int(os.getenv("STATUS_HISTORY_SIZE", "5")),
    )
