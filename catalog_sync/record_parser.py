"""Parsing of the legacy ``.asc`` product export.

Each export line looks roughly like::

    1001  Widget Pro***   5   19.99   7

a numeric SKU, a free-text name padded with spaces or asterisks, then a run
of numeric columns read positionally as stock, price, ... and category (the
last column). Lines that do not fit are counted and skipped.
"""

import logging
import re

from catalog_sync.schemas import ParseResult, ParseStats, StructuredRecord


logger = logging.getLogger(__name__)

# SKU, then the shortest name that is followed by 2+ spaces, a tab or a digit.
LINE_PATTERN = re.compile(r"^(\d+)\s+(.*?)(?=\s{2,}|\t|\d)")
NUMBER_PATTERN = re.compile(r"\d+(?:\.\d+)?")
MIN_NAME_LENGTH = 2


def normalize_name(name: str) -> str:
    name = re.sub(r"\*+$", "", name.rstrip())
    name = re.sub(r"\*{3,}", " ", name)
    return re.sub(r"\s+", " ", name).strip()


def parse_line(line: str, *, clean_names: bool = True) -> StructuredRecord | None:
    match = LINE_PATTERN.match(line)
    if match is None:
        return None

    numbers = NUMBER_PATTERN.findall(line[match.end() :])
    if len(numbers) < 2:
        return None

    name = match.group(2).rstrip()
    if clean_names:
        name = normalize_name(name)
    if len(name.strip()) < MIN_NAME_LENGTH:
        return None

    return StructuredRecord(
        sku=match.group(1),
        name=name,
        stock_quantity=numbers[0],
        price=numbers[1],
        category=numbers[-1],
    )


def is_valid_record(record: StructuredRecord) -> bool:
    if not record.sku.isdigit():
        return False
    if len(record.name) < MIN_NAME_LENGTH:
        return False
    try:
        float(record.price)
        float(record.stock_quantity)
    except ValueError:
        return False
    return True


def parse_records(text: str, *, clean_names: bool = True, validate: bool = True) -> ParseResult:
    records: list[StructuredRecord] = []
    total = 0
    blank = 0
    rejected = 0

    for line in text.splitlines():
        total += 1
        if not line.strip():
            blank += 1
            continue

        record = parse_line(line, clean_names=clean_names)
        if record is None or (validate and not is_valid_record(record)):
            rejected += 1
            continue
        records.append(record)

    stats = ParseStats(total_lines=total, blank_lines=blank, accepted=len(records), rejected=rejected)
    logger.debug(
        "parsed export payload",
        extra={"total_lines": stats.total_lines, "accepted": stats.accepted, "rejected": stats.rejected},
    )
    return ParseResult(records=records, stats=stats)
