"""Background processing orchestration for meter CSV uploads."""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional, Sequence
from uuid import uuid4

from fastapi import BackgroundTasks, UploadFile

from app.schemas import (
    FlowReadingOut,
    PersistenceStatus,
    ProcessingError,
    ProcessingResult,
    ProcessingStatus,
    ThresholdSummaryOut,
)
from datastore.readings_sink import LoggingReadingsSink, ReadingsSink
from datastore.result_table import ResultTable, build_default_table
from models.records import FlowReading
from services.csv_filter import CsvFilter, HourWindow
from services.errors import EmptyResultError, TokenizeError
from services.pipeline import Analysis, analyze_csv
from services.threshold import ThresholdCalculator
from settings import get_settings
from storage.upload_store import UploadStore, build_default_store

logger = logging.getLogger(__name__)


def read_upload(file: UploadFile) -> bytes:
    file.file.seek(0)
    contents = file.file.read()
    if isinstance(contents, str):
        contents = contents.encode("utf-8")
    if not contents:
        raise ValueError("Uploaded file is empty.")
    return contents


class ProcessorService:
    """Coordinates upload storage, background analysis and result retrieval."""

    def __init__(
        self,
        store: UploadStore,
        table: ResultTable,
        sink: Optional[ReadingsSink] = None,
        csv_filter: Optional[CsvFilter] = None,
        calculator: Optional[ThresholdCalculator] = None,
        workers: int = 4,
    ) -> None:
        self.store = store
        self.table = table
        self.sink = sink or LoggingReadingsSink()
        self.csv_filter = csv_filter or CsvFilter()
        self.calculator = calculator or ThresholdCalculator()
        self.executor = ThreadPoolExecutor(max_workers=workers)
        self.save_executor = ThreadPoolExecutor(max_workers=1)
        self._futures: Dict[str, Future[None]] = {}
        self._save_futures: Dict[str, Future[None]] = {}
        self._futures_lock = Lock()

    def enqueue_file(self, background_tasks: BackgroundTasks, file: UploadFile) -> str:
        """Store the upload and schedule its analysis on the worker pool."""
        file_id = str(uuid4())
        filename = Path(file.filename or "upload.csv").name
        key = f"{file_id}/{filename}"

        contents = read_upload(file)
        self.store.put_object(key, contents)

        uploaded_at = datetime.now(timezone.utc)
        self.table.put_item(
            ProcessingResult(
                file_id=file_id,
                status=ProcessingStatus.uploaded,
                uploaded_at=uploaded_at,
            )
        )
        logger.info(
            "Upload accepted",
            extra={"file_id": file_id, "object_key": key, "status": ProcessingStatus.uploaded.value},
        )

        future = self.executor.submit(
            self._process_file, file_id=file_id, key=key, uploaded_at=uploaded_at
        )
        self._track(self._futures, file_id, future)

        background_tasks.add_task(file.close)
        return file_id

    def analyze(self, contents: bytes) -> Analysis:
        """Run the pipeline synchronously with this service's filter and calculator."""
        return analyze_csv(contents, csv_filter=self.csv_filter, calculator=self.calculator)

    def fetch_result(self, file_id: str) -> ProcessingResult:
        result = self.table.get_item(file_id)
        if result is None:
            raise KeyError(f"Processing result for file {file_id!r} not found.")
        return result

    def shutdown(self) -> None:
        """Clean up executor resources during application shutdown.

        Queued analyses are cancelled. Running ones finish first so their
        readings reach the save queue, which is drained so no record is left
        with ``persistence=pending``.
        """
        self.executor.shutdown(wait=True, cancel_futures=True)
        self.save_executor.shutdown(wait=True)

    def _track(self, registry: Dict[str, Future[None]], file_id: str, future: Future[None]) -> None:
        with self._futures_lock:
            registry[file_id] = future
        future.add_done_callback(lambda _f: self._forget(registry, file_id))

    def _forget(self, registry: Dict[str, Future[None]], file_id: str) -> None:
        with self._futures_lock:
            registry.pop(file_id, None)

    def _process_file(self, file_id: str, key: str, uploaded_at: datetime) -> None:
        start_time = time.perf_counter()
        log_context = {"file_id": file_id, "object_key": key}
        self.table.put_item(
            ProcessingResult(
                file_id=file_id,
                status=ProcessingStatus.processing,
                uploaded_at=uploaded_at,
            )
        )

        errors: List[ProcessingError] = []
        readings: Sequence[FlowReading] = ()
        analysis: Optional[Analysis] = None

        try:
            analysis = analyze_csv(
                self.store.get_object(key),
                csv_filter=self.csv_filter,
                calculator=self.calculator,
            )
        except TokenizeError as exc:
            logger.warning("Rejecting unparseable CSV: %s", exc, extra=log_context)
            errors.append(ProcessingError(row_number=exc.line_number or 1, reason=str(exc)))
        except EmptyResultError as exc:
            logger.warning("%s", exc, extra={**log_context, "row_count": 0})
            errors.append(ProcessingError(row_number=1, reason=str(exc)))
        except Exception as exc:
            logger.exception("Processing failed", extra=log_context)
            errors.append(ProcessingError(row_number=1, reason=str(exc)))

        if analysis is None:
            status = ProcessingStatus.failed
            summary = None
            excluded_count = 0
        else:
            for issue in analysis.report.skipped:
                logger.warning(
                    "Skipping row %s: %s",
                    issue.row_number,
                    issue.reason,
                    extra={
                        **log_context,
                        "row_number": issue.row_number,
                        "reason": issue.reason,
                        "invalid_value": issue.value,
                    },
                )
                errors.append(ProcessingError.from_issue(issue))
            readings = analysis.report.readings
            summary = ThresholdSummaryOut.from_record(analysis.summary)
            excluded_count = analysis.report.excluded_count
            status = ProcessingStatus.partial if errors else ProcessingStatus.processed

        processing_ms = int((time.perf_counter() - start_time) * 1000)
        self.table.put_item(
            ProcessingResult(
                file_id=file_id,
                status=status,
                uploaded_at=uploaded_at,
                processed_at=datetime.now(timezone.utc),
                processing_ms=processing_ms,
                readings=[FlowReadingOut.from_record(reading) for reading in readings],
                summary=summary,
                excluded_count=excluded_count,
                errors=errors,
                persistence=PersistenceStatus.pending if readings else PersistenceStatus.not_started,
            )
        )
        logger.info(
            "Processing finished",
            extra={
                **log_context,
                "status": status.value,
                "row_count": len(readings),
                "excluded_count": excluded_count,
                "daily_count": len(summary.daily_minimums) if summary else None,
                "error_count": len(errors),
                "processing_ms": processing_ms,
            },
        )

        if readings:
            future = self.save_executor.submit(self._save_readings, file_id, list(readings))
            self._track(self._save_futures, file_id, future)

    def _save_readings(self, file_id: str, readings: List[FlowReading]) -> None:
        """Hand readings to the sink and record the outcome on the result."""
        try:
            self.sink.save(readings)
        except Exception as exc:
            logger.exception(
                "Saving readings failed",
                extra={"file_id": file_id, "persistence": PersistenceStatus.failed.value},
            )
            self.table.update_item(
                file_id,
                persistence=PersistenceStatus.failed,
                persistence_error=str(exc) or exc.__class__.__name__,
            )
            return
        self.table.update_item(file_id, persistence=PersistenceStatus.saved)


@lru_cache
def build_default_processor(
    workers: Optional[int] = None,
) -> ProcessorService:
    """Factory that wires the processor from settings."""
    settings = get_settings()
    window = HourWindow(settings.window_start_hour, settings.window_end_hour)
    return ProcessorService(
        store=build_default_store(),
        table=build_default_table(),
        sink=LoggingReadingsSink(),
        csv_filter=CsvFilter(window),
        workers=workers or settings.processor_workers,
    )
