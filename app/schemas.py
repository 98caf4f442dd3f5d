from dataclasses import dataclass, field
from enum import StrEnum


FIELD_NAMES = ("name", "branch", "city", "state", "zip", "phone", "email", "ip")


class RecordStatus(StrEnum):
    VALID = "valid"
    INVALID = "invalid"


class PipelineState(StrEnum):
    IDLE = "idle"
    READING = "reading"
    DISPATCHING = "dispatching"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class ParsedRecord:
    name: str
    branch: str
    city: str
    state: str
    zip: str
    phone: str
    email: str
    ip: str

    def fields(self) -> tuple[str, ...]:
        return tuple(getattr(self, field_name) for field_name in FIELD_NAMES)


@dataclass(frozen=True)
class MalformedRecord:
    raw_line: str


@dataclass(frozen=True)
class ClassifiedRecord:
    record: ParsedRecord
    status: RecordStatus
    reason: str | None = None


@dataclass(frozen=True)
class UnitResult:
    name: str
    processed: int
    failed: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.failed == 0 and self.error is None


@dataclass(frozen=True)
class ExportReport:
    file_prefix: str
    records_written: int
    files_written: tuple[str, ...] = ()
    failed_batches: tuple[int, ...] = ()


@dataclass(frozen=True)
class PipelineResult:
    status: PipelineState
    total_lines: int
    valid_records: int
    invalid_records: int
    malformed_records: int
    units: tuple[UnitResult, ...] = field(default_factory=tuple)
    already_completed: bool = False

    @property
    def failed_units(self) -> tuple[UnitResult, ...]:
        return tuple(unit for unit in self.units if not unit.succeeded)
