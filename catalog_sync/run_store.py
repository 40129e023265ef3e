from datetime import UTC, datetime

from catalog_sync.schemas import RunRecord


def utc_now() -> datetime:
    return datetime.now(UTC)


class RunHistoryStore:
    # Appends are serialized by the orchestrator guard; reads see a tuple snapshot.

    def __init__(self, capacity: int = 100) -> None:
        if capacity < 1:
            raise ValueError("history capacity must be at least 1")
        self.capacity = capacity
        self._records: tuple[RunRecord, ...] = ()
        self._total = 0

    def append(self, record: RunRecord) -> None:
        self._records = (self._records + (record,))[-self.capacity :]
        self._total += 1

    def recent(self, limit: int) -> list[RunRecord]:
        return self.page(limit=limit, offset=0)

    def page(self, *, limit: int, offset: int = 0) -> list[RunRecord]:
        if limit < 0 or offset < 0:
            raise ValueError("limit and offset must be non-negative")
        newest_first = self._records[::-1]
        return list(newest_first[offset : offset + limit])

    def latest(self) -> RunRecord | None:
        records = self._records
        return records[-1] if records else None

    @property
    def total_runs(self) -> int:
        return self._total

    def __len__(self) -> int:
        return len(self._records)
