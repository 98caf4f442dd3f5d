from collections.abc import Callable, Iterator, Sequence
import logging
from pathlib import Path
import time
from typing import TypeVar

from app.schemas import ExportReport, MalformedRecord, ParsedRecord
from app.step_logic import FIELD_DELIMITER


logger = logging.getLogger(__name__)
T = TypeVar("T")

BATCH_SIZE = 100_000


def format_customer_line(record: ParsedRecord) -> str:
    return FIELD_DELIMITER.join(record.fields())


def format_malformed_line(record: MalformedRecord) -> str:
    return record.raw_line


def iter_batches(records: Sequence[T], batch_size: int) -> Iterator[Sequence[T]]:
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    for start in range(0, len(records), batch_size):
        yield records[start : start + batch_size]


def batch_path(output_dir: Path, file_prefix: str, batch_number: int) -> Path:
    return output_dir / f"{file_prefix}_batch_{batch_number}.txt"


def export_batches(
    records: Sequence[T],
    output_dir: Path,
    file_prefix: str,
    line_formatter: Callable[[T], str],
    batch_size: int = BATCH_SIZE,
) -> ExportReport:
    started = time.perf_counter()
    files_written: list[str] = []
    failed_batches: list[int] = []
    records_written = 0

    for batch_number, batch in enumerate(iter_batches(records, batch_size), start=1):
        path = batch_path(output_dir, file_prefix, batch_number)
        try:
            with path.open("w", encoding="utf-8") as outfile:
                for record in batch:
                    outfile.write(line_formatter(record))
                    outfile.write("\n")
        except OSError:
            failed_batches.append(batch_number)
            logger.exception("batch export failed", extra={"path": str(path), "batch": batch_number})
            continue
        files_written.append(str(path))
        records_written += len(batch)

    logger.info(
        "export finished",
        extra={
            "file_prefix": file_prefix,
            "files": len(files_written),
            "failed_batches": len(failed_batches),
            "duration_ms": (time.perf_counter() - started) * 1000,
        },
    )
    return ExportReport(
        file_prefix=file_prefix,
        records_written=records_written,
        files_written=tuple(files_written),
        failed_batches=tuple(failed_batches),
    )
