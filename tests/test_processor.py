import asyncio
import io
import logging
import threading
import time

from fastapi import BackgroundTasks, UploadFile

from app.schemas import PersistenceStatus, ProcessingStatus
from datastore.result_table import ResultTable
from services.processor import ProcessorService
from services.threshold import ThresholdCalculator
from storage.upload_store import UploadStore

SAMPLE_CSV = """DateTime,Unused,C2Flow
02/01/2024 02:15,x,10.0
02/01/2024 03:00,x,5.0
02/01/2024 06:00,x,1.0
03/01/2024 01:30,x,20.0
"""


class RecordingSink:
    def __init__(self) -> None:
        self.saved = []

    def save(self, readings) -> None:
        self.saved.append(list(readings))


class FailingSink:
    def save(self, readings) -> None:
        raise RuntimeError("database unavailable")


def _create_upload_file(content: str, filename: str = "data.csv") -> UploadFile:
    return UploadFile(filename=filename, file=io.BytesIO(content.encode("utf-8")))


def _drain_background_tasks(tasks: BackgroundTasks) -> None:
    asyncio.run(tasks())


def _await_result(processor: ProcessorService, file_id: str) -> None:
    with processor._futures_lock:
        future = processor._futures.get(file_id)
    if future is not None:
        future.result(timeout=5)
    with processor._futures_lock:
        save_future = processor._save_futures.get(file_id)
    if save_future is not None:
        save_future.result(timeout=5)


def _build_processor(tmp_path, sink=None, **kwargs) -> ProcessorService:
    store = UploadStore(name="test", root_path=tmp_path / "uploads")
    table = ResultTable(name="test", persistence_path=tmp_path / "results.json")
    return ProcessorService(store=store, table=table, sink=sink or RecordingSink(), workers=1, **kwargs)


def _run(processor: ProcessorService, content: str, filename: str = "data.csv") -> str:
    tasks = BackgroundTasks()
    file_id = processor.enqueue_file(tasks, _create_upload_file(content, filename=filename))
    _drain_background_tasks(tasks)
    _await_result(processor, file_id)
    return file_id


def test_processor_successful_processing(tmp_path) -> None:
    sink = RecordingSink()
    processor = _build_processor(tmp_path, sink=sink)

    file_id = _run(processor, SAMPLE_CSV)

    result = processor.fetch_result(file_id)
    assert result.status == ProcessingStatus.processed
    assert [reading.timestamp for reading in result.readings] == [
        "02/01/2024 02:15",
        "02/01/2024 03:00",
        "03/01/2024 01:30",
    ]
    assert result.excluded_count == 1
    assert result.summary is not None
    assert result.summary.mean_of_daily_minimums == 12.5
    assert result.summary.threshold == 16.25
    assert [(entry.date, entry.min_flow) for entry in result.summary.daily_minimums] == [
        ("02/01/2024", 5.0),
        ("03/01/2024", 20.0),
    ]
    assert not result.errors
    assert result.persistence == PersistenceStatus.saved
    assert len(sink.saved) == 1 and len(sink.saved[0]) == 3

    processor.shutdown()


def test_processor_stores_the_raw_upload(tmp_path) -> None:
    processor = _build_processor(tmp_path)

    file_id = _run(processor, SAMPLE_CSV, filename="meter.csv")

    assert processor.store.get_object(f"{file_id}/meter.csv") == SAMPLE_CSV.encode("utf-8")
    processor.shutdown()


def test_processor_partial_processing(tmp_path) -> None:
    processor = _build_processor(tmp_path)

    file_id = _run(processor, SAMPLE_CSV + "04/01/2024 02:00,x,not-a-number\n", filename="invalid.csv")

    result = processor.fetch_result(file_id)
    assert result.status == ProcessingStatus.partial
    assert result.summary is not None
    assert len(result.readings) == 3
    assert len(result.errors) == 1
    assert result.errors[0].row_number == 6
    assert result.errors[0].reason == "invalid flow value"
    assert result.errors[0].value == "not-a-number"

    processor.shutdown()


def test_processor_fails_when_no_rows_in_window(tmp_path) -> None:
    sink = RecordingSink()
    processor = _build_processor(tmp_path, sink=sink)

    file_id = _run(processor, "DateTime,Unused,C2Flow\n02/01/2024 12:00,x,1.0\n")

    result = processor.fetch_result(file_id)
    assert result.status == ProcessingStatus.failed
    assert result.summary is None
    assert result.readings == []
    assert result.errors[0].reason == "No data found between 1 AM and 4 AM in the CSV file"
    assert result.persistence == PersistenceStatus.not_started
    assert sink.saved == []

    processor.shutdown()


def test_processor_fails_on_unparseable_csv(tmp_path) -> None:
    processor = _build_processor(tmp_path)

    file_id = _run(processor, 'DateTime,Unused,C2Flow\n"02/01/2024 02:00"x,x,1\n')

    result = processor.fetch_result(file_id)
    assert result.status == ProcessingStatus.failed
    assert result.summary is None
    assert result.errors[0].row_number == 2
    assert "CSV could not be parsed" in result.errors[0].reason

    processor.shutdown()


def test_processor_records_save_failure(tmp_path) -> None:
    processor = _build_processor(tmp_path, sink=FailingSink())

    file_id = _run(processor, SAMPLE_CSV)

    result = processor.fetch_result(file_id)
    assert result.status == ProcessingStatus.processed
    assert result.summary is not None
    assert result.summary.threshold == 16.25
    assert result.persistence == PersistenceStatus.failed
    assert result.persistence_error == "database unavailable"

    processor.shutdown()


def test_processor_logs_skipped_rows(tmp_path, caplog) -> None:
    processor = _build_processor(tmp_path)

    with caplog.at_level(logging.WARNING):
        file_id = _run(processor, SAMPLE_CSV + "04/01/2024 02:00,x,oops\n", filename="invalid.csv")

    records = [record for record in caplog.records if record.name == "services.processor"]
    assert records, "Expected row skip warnings to be logged."

    messages = [record.getMessage() for record in records]
    assert any("Skipping row" in message and "invalid flow value" in message for message in messages)

    assert any(getattr(record, "file_id", None) == file_id for record in records)
    assert any(getattr(record, "object_key", "").endswith("invalid.csv") for record in records)
    assert any(getattr(record, "invalid_value", None) == "oops" for record in records)

    processor.shutdown()


def test_processor_handles_parallel_jobs(tmp_path) -> None:
    barrier = threading.Barrier(2)
    sleep_seconds = 0.1

    class CoordinatedCalculator(ThresholdCalculator):
        def compute(self, readings):
            items = list(readings)
            try:
                barrier.wait(timeout=1.0)
            except threading.BrokenBarrierError as exc:
                raise AssertionError("Calculations did not run concurrently") from exc
            time.sleep(sleep_seconds)
            return super().compute(items)

    store = UploadStore(name="test", root_path=tmp_path / "uploads")
    table = ResultTable(name="test", persistence_path=tmp_path / "results.json")
    processor = ProcessorService(
        store=store,
        table=table,
        sink=RecordingSink(),
        calculator=CoordinatedCalculator(),
        workers=2,
    )

    tasks_one = BackgroundTasks()
    tasks_two = BackgroundTasks()

    start = time.perf_counter()
    file_id_one = processor.enqueue_file(tasks_one, _create_upload_file(SAMPLE_CSV, "parallel-one.csv"))
    file_id_two = processor.enqueue_file(tasks_two, _create_upload_file(SAMPLE_CSV, "parallel-two.csv"))

    _drain_background_tasks(tasks_one)
    _drain_background_tasks(tasks_two)

    _await_result(processor, file_id_one)
    _await_result(processor, file_id_two)
    elapsed = time.perf_counter() - start

    result_one = processor.fetch_result(file_id_one)
    result_two = processor.fetch_result(file_id_two)

    assert result_one.status == ProcessingStatus.processed
    assert result_two.status == ProcessingStatus.processed
    assert result_one.summary is not None and result_two.summary is not None
    assert result_one.summary.threshold == result_two.summary.threshold == 16.25
    assert elapsed < sleep_seconds * 2.5

    processor.shutdown()


class SlowSink(RecordingSink):
    def save(self, readings) -> None:
        time.sleep(0.2)
        super().save(readings)


def test_shutdown_drains_queued_saves(tmp_path) -> None:
    sink = SlowSink()
    processor = _build_processor(tmp_path, sink=sink)

    file_ids = []
    for index in range(2):
        tasks = BackgroundTasks()
        file_ids.append(processor.enqueue_file(tasks, _create_upload_file(SAMPLE_CSV, f"f{index}.csv")))
        _drain_background_tasks(tasks)
    for file_id in file_ids:
        with processor._futures_lock:
            future = processor._futures.get(file_id)
        if future is not None:
            future.result(timeout=5)

    processor.shutdown()

    assert [processor.fetch_result(file_id).persistence for file_id in file_ids] == [
        PersistenceStatus.saved,
        PersistenceStatus.saved,
    ]
    assert len(sink.saved) == 2
