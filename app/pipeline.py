from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import replace
import logging
from pathlib import Path
import threading
import time
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from app.config import Settings
from app.customer_store import upsert_batch
from app.db_models import INVALID_COLLECTION, MALFORMED_COLLECTION, VALID_COLLECTION
from app.exporter import export_batches, format_customer_line, format_malformed_line
from app.schemas import MalformedRecord, ParsedRecord, PipelineResult, PipelineState, UnitResult
from app.step_logic import classify_records, open_line_source, parse_lines, split_by_status


logger = logging.getLogger(__name__)

WORKER_POOL_SIZE = 4


class PipelineFailedError(RuntimeError):
    pass


class PipelineRunner:
    """Runs the read, classify and dispatch cycle once per instance.

    The worker pool is created with the runner and reused; call ``shutdown``
    when the process is done with it.
    """

    def __init__(self, settings: Settings, session_factory: sessionmaker[Session]) -> None:
        self.settings = settings
        self.session_factory = session_factory
        self.output_dir = Path(settings.output_dir)
        self._executor = ThreadPoolExecutor(max_workers=WORKER_POOL_SIZE, thread_name_prefix="dispatch")
        self._lock = threading.Lock()
        self._state = PipelineState.IDLE
        self._result: PipelineResult | None = None

    @property
    def state(self) -> PipelineState:
        return self._state

    def run(self, source: Iterable[str] | None = None) -> PipelineResult:
        with self._lock:
            if self._state is PipelineState.COMPLETED and self._result is not None:
                logger.info("pipeline already completed, skipping")
                return replace(self._result, already_completed=True)

            if self._state is PipelineState.FAILED:
                logger.info("retrying previously failed pipeline")

            self._state = PipelineState.READING
            futures: list[tuple[str, Future[UnitResult]]] = []
            try:
                lines = source if source is not None else open_line_source(Path(self.settings.input_path))
                parsed, malformed = parse_lines(lines)
            except Exception as exc:
                self._state = PipelineState.FAILED
                logger.exception("pipeline reading failed")
                raise PipelineFailedError(f"reading input failed: {exc}") from exc

            malformed_snapshot = tuple(malformed)
            try:
                futures.append(self._submit_persist(malformed_snapshot, MALFORMED_COLLECTION))

                classified = classify_records(parsed)
                valid, invalid = split_by_status(classified)
                valid_snapshot = tuple(valid)
                invalid_snapshot = tuple(invalid)
                logger.info(
                    "classification finished",
                    extra={
                        "total_lines": len(parsed) + len(malformed),
                        "valid": len(valid),
                        "invalid": len(invalid),
                        "malformed": len(malformed),
                    },
                )

                self._state = PipelineState.DISPATCHING
                futures.append(self._submit_persist(valid_snapshot, VALID_COLLECTION))
                futures.append(self._submit_persist(invalid_snapshot, INVALID_COLLECTION))
                futures.append(self._submit_export(valid_snapshot, VALID_COLLECTION, format_customer_line))
                futures.append(self._submit_export(invalid_snapshot, INVALID_COLLECTION, format_customer_line))
                if self.settings.export_malformed:
                    futures.append(
                        self._submit_export(malformed_snapshot, MALFORMED_COLLECTION, format_malformed_line)
                    )
            except Exception as exc:
                # Units already queued still run to completion before failing.
                wait([future for _, future in futures])
                self._state = PipelineState.FAILED
                logger.exception("pipeline dispatch failed")
                raise PipelineFailedError(f"dispatching work failed: {exc}") from exc

            wait([future for _, future in futures])
            units = tuple(self._collect(name, future) for name, future in futures)

            self._state = PipelineState.COMPLETED
            self._result = PipelineResult(
                status=PipelineState.COMPLETED,
                total_lines=len(parsed) + len(malformed),
                valid_records=len(valid),
                invalid_records=len(invalid),
                malformed_records=len(malformed),
                units=units,
            )
            failed_units = [unit.name for unit in self._result.failed_units]
            if failed_units:
                logger.warning("pipeline completed with failed units", extra={"failed_units": failed_units})
            else:
                logger.info("pipeline completed")
            return self._result

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    def _submit_persist(
        self,
        records: tuple[ParsedRecord, ...] | tuple[MalformedRecord, ...],
        collection_name: str,
    ) -> tuple[str, Future[UnitResult]]:
        name = f"persist:{collection_name}"
        future = self._executor.submit(
            self._timed,
            name,
            lambda: upsert_batch(
                self.session_factory,
                records,
                collection_name,
                max_retries=self.settings.max_upsert_retries,
                backoff_seconds=self.settings.retry_backoff_seconds,
            ),
        )
        return name, future

    def _submit_export(
        self,
        records: tuple[ParsedRecord, ...] | tuple[MalformedRecord, ...],
        file_prefix: str,
        formatter: Callable[[Any], str],
    ) -> tuple[str, Future[UnitResult]]:
        name = f"export:{file_prefix}"

        def export() -> UnitResult:
            report = export_batches(
                records,
                self.output_dir,
                file_prefix,
                formatter,
                batch_size=self.settings.export_batch_size,
            )
            return UnitResult(name=name, processed=report.records_written, failed=len(report.failed_batches))

        return name, self._executor.submit(self._timed, name, export)

    def _timed(self, name: str, fn: Callable[[], UnitResult]) -> UnitResult:
        started = time.perf_counter()
        try:
            return fn()
        finally:
            logger.info(
                "dispatch unit finished",
                extra={"unit": name, "duration_ms": (time.perf_counter() - started) * 1000},
            )

    def _collect(self, name: str, future: Future[UnitResult]) -> UnitResult:
        exc = future.exception()
        if exc is None:
            return future.result()
        # Unit failures are reported but do not fail the pipeline.
        logger.error("dispatch unit failed", exc_info=exc, extra={"unit": name})
        return UnitResult(name=name, processed=0, error=str(exc))
