import csv
import json
import logging
from pathlib import Path
import time

from catalog_sync.schemas import StructuredRecord


logger = logging.getLogger(__name__)

CATALOG_COLUMNS = [
    "SKU",
    "Name",
    "Regular price",
    "Stock",
    "Categories",
    "Type",
    "Published",
    "Meta: _manage_stock",
    "Meta: _stock_status",
]


def staging_path(staging_dir: Path, remote_name: str) -> Path:
    # One staged copy per source file; re-fetching the same file overwrites it.
    return staging_dir / Path(remote_name).name


def read_payload(path: Path, encoding: str) -> str:
    if not path.exists():
        raise FileNotFoundError(f"staged file not found: {path}")
    return path.read_text(encoding=encoding, errors="replace")


def write_json(path: Path, payload: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as outfile:
        json.dump(payload, outfile, indent=2, sort_keys=True)
        outfile.write("\n")


def write_csv(path: Path, rows: list[dict[str, str]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as outfile:
        writer = csv.DictWriter(outfile, fieldnames=CATALOG_COLUMNS)
        writer.writeheader()
        writer.writerows(rows)


def write_catalog(
    output_dir: Path,
    export_name: str,
    records: list[StructuredRecord],
    *,
    output_format: str,
) -> list[Path]:
    entries = [record.to_catalog_entry() for record in records]
    catalog_dir = output_dir / "catalog"
    written: list[Path] = []

    if output_format in ("json", "both"):
        json_path = catalog_dir / f"{export_name}.json"
        write_json(json_path, entries)
        written.append(json_path)
    if output_format in ("csv", "both"):
        csv_path = catalog_dir / f"{export_name}.csv"
        write_csv(csv_path, entries)
        written.append(csv_path)
    return written


def purge_stale_files(directory: Path, *, older_than_hours: float, keep: set[Path] | None = None) -> int:
    """Delete regular files in ``directory`` whose mtime is past the cutoff."""
    if not directory.exists():
        return 0

    keep = {path.resolve() for path in keep or set()}
    cutoff = time.time() - older_than_hours * 3600
    deleted = 0
    for path in directory.iterdir():
        if not path.is_file() or path.resolve() in keep:
            continue
        if path.stat().st_mtime < cutoff:
            path.unlink()
            deleted += 1
            logger.info("stale file removed", extra={"path": str(path)})
    return deleted
