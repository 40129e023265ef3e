from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum


class SyncState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    DOWNLOADING = "downloading"
    PARSING = "parsing"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    ERROR = "error"


class TriggerSource(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"


@dataclass(frozen=True)
class RunStatus:
    state: SyncState = SyncState.IDLE
    message: str = "waiting for first sync"
    last_completed_at: datetime | None = None
    current_run_started_at: datetime | None = None
    last_error: str | None = None


@dataclass(frozen=True)
class RunRecord:
    succeeded: bool
    trigger: TriggerSource
    started_at: datetime
    duration_ms: int
    records_processed: int
    records_rejected: int
    payload_size_bytes: int
    source_file: str | None = None
    error_detail: str | None = None

    def to_dict(self) -> dict[str, object]:
        payload = asdict(self)
        payload["trigger"] = self.trigger.value
        payload["started_at"] = self.started_at.isoformat()
        return payload


@dataclass(frozen=True)
class RunOutcome:
    status: str
    trigger: TriggerSource
    current_state: SyncState
    message: str
    record: RunRecord | None = None

    @property
    def accepted(self) -> bool:
        return self.status != "already_running"


@dataclass(frozen=True)
class RemoteFileDescriptor:
    name: str
    size_bytes: int
    modified_at: datetime
    is_regular_file: bool


@dataclass(frozen=True)
class StructuredRecord:
    sku: str
    name: str
    price: str
    stock_quantity: str
    category: str

    def to_catalog_entry(self) -> dict[str, str]:
        # Column names follow the WooCommerce product CSV importer.
        in_stock = float(self.stock_quantity) > 0 if _is_number(self.stock_quantity) else False
        return {
            "SKU": self.sku,
            "Name": self.name,
            "Regular price": self.price,
            "Stock": self.stock_quantity,
            "Categories": self.category,
            "Type": "simple",
            "Published": "1",
            "Meta: _manage_stock": "yes",
            "Meta: _stock_status": "instock" if in_stock else "outofstock",
        }


@dataclass(frozen=True)
class ParseStats:
    total_lines: int
    blank_lines: int
    accepted: int
    rejected: int


@dataclass(frozen=True)
class ParseResult:
    records: list[StructuredRecord] = field(default_factory=list)
    stats: ParseStats = field(default_factory=lambda: ParseStats(0, 0, 0, 0))


@dataclass(frozen=True)
class ScheduleConfig:
    expression: str
    timezone: str


@dataclass(frozen=True)
class StatusReport:
    status: RunStatus
    recent_runs: list[RunRecord]
    total_runs: int
    next_run_at: datetime | None = None


def _is_number(value: str) -> bool:
    try:
        float(value)
    except ValueError:
        return False
    return True
