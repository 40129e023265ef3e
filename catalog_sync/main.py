import argparse
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
import threading

from catalog_sync.config import OUTPUT_FORMATS, Settings, get_settings
from catalog_sync.errors import InvalidSchedule
from catalog_sync.record_parser import parse_records
from catalog_sync.scheduler import build_trigger, next_fire_times
from catalog_sync.service import SyncService
from catalog_sync.staging import read_payload, write_catalog


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Synchronize the legacy product export into catalog files")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run", help="run one sync now and wait for it to finish")

    schedule_parser = subparsers.add_parser("schedule", help="run syncs on a cron schedule until interrupted")
    schedule_parser.add_argument("--expression", help="cron expression overriding SYNC_CRON_SCHEDULE")
    schedule_parser.add_argument("--run-now", action="store_true", help="also run once immediately")

    parse_parser = subparsers.add_parser("parse", help="parse a local export file")
    parse_parser.add_argument("path", help="path to the .asc export")
    parse_parser.add_argument("--output-dir", help="write catalog files into this directory")
    parse_parser.add_argument("--format", choices=OUTPUT_FORMATS, default=None, help="catalog output format")
    parse_parser.add_argument("--no-clean", action="store_true", help="keep product names as they appear")
    parse_parser.add_argument("--no-validate", action="store_true", help="skip the validation gate")

    check_parser = subparsers.add_parser("check-schedule", help="validate a cron expression")
    check_parser.add_argument("expression", help="5-field cron expression")
    check_parser.add_argument("--timezone", help="timezone name, defaults to TZ")
    check_parser.add_argument("--count", type=int, default=3, help="number of upcoming fire times to show")

    remote_parser = subparsers.add_parser("check-remote", help="check the SFTP connection without running a sync")
    remote_parser.add_argument("--list", action="store_true", help="also list matching export files")

    return parser.parse_args(argv)


def configure_logging(settings: Settings) -> None:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    if settings.log_file:
        Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            settings.log_file,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)


def _run(settings: Settings) -> int:
    service = SyncService(settings)
    outcome = service.run_sync()
    record = outcome.record
    print(
        "status={status} trigger={trigger} source={source} records={records} rejected={rejected} bytes={size} duration_ms={duration} error={error}".format(
            status=outcome.status,
            trigger=outcome.trigger.value,
            source=record.source_file if record else None,
            records=record.records_processed if record else 0,
            rejected=record.records_rejected if record else 0,
            size=record.payload_size_bytes if record else 0,
            duration=record.duration_ms if record else 0,
            error=record.error_detail if record else outcome.message,
        )
    )
    return 0 if outcome.status == "succeeded" else 1


def _schedule(settings: Settings, args: argparse.Namespace) -> int:
    service = SyncService(settings)
    change = service.start_schedule(args.expression)
    if not change.ok:
        print(f"error={change.error}")
        return 2

    if args.run_now:
        service.run_sync()

    stopped = threading.Event()
    try:
        while not stopped.wait(timeout=60):
            logger.debug("scheduler heartbeat", extra={"next_run_at": service.schedule_status().next_run_at})
    except KeyboardInterrupt:
        logger.info("interrupted, stopping scheduler")
    finally:
        service.shutdown()
    return 0


def _parse(settings: Settings, args: argparse.Namespace) -> int:
    path = Path(args.path)
    text = read_payload(path, settings.payload_encoding)
    result = parse_records(text, clean_names=not args.no_clean, validate=not args.no_validate)
    stats = result.stats
    print(
        f"total={stats.total_lines} blank={stats.blank_lines} accepted={stats.accepted} rejected={stats.rejected}"
    )
    if args.output_dir:
        written = write_catalog(
            Path(args.output_dir),
            path.stem,
            result.records,
            output_format=args.format or settings.output_format,
        )
        for output in written:
            print(f"output={output}")
    return 0


def _check_remote(settings: Settings, args: argparse.Namespace) -> int:
    service = SyncService(settings)
    check = service.list_remote_files() if args.list else service.test_connection()
    print(f"ok={check.ok} host={settings.sftp_host}:{settings.sftp_port} error={check.error}")
    for descriptor in check.files:
        print(f"file={descriptor.name} size={descriptor.size_bytes} modified={descriptor.modified_at.isoformat()}")
    if check.latest is not None:
        print(f"latest={check.latest.name}")
    return 0 if check.ok else 1


def _check_schedule(settings: Settings, args: argparse.Namespace) -> int:
    try:
        trigger = build_trigger(args.expression, args.timezone or settings.timezone)
    except InvalidSchedule as exc:
        print(f"invalid: {exc}")
        return 2
    print(f"valid: {args.expression}")
    for fire_time in next_fire_times(trigger, args.count):
        print(f"next={fire_time.isoformat()}")
    return 0


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    settings = get_settings()
    configure_logging(settings)

    if args.command == "run":
        code = _run(settings)
    elif args.command == "schedule":
        code = _schedule(settings, args)
    elif args.command == "parse":
        code = _parse(settings, args)
    elif args.command == "check-remote":
        code = _check_remote(settings, args)
    else:
        code = _check_schedule(settings, args)

    if code:
        raise SystemExit(code)


if __name__ == "__main__":
    main()
