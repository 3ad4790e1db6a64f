"""Parse meter exports and keep the readings taken in the overnight window."""

from __future__ import annotations

import csv
import io
import logging
import math
import re
from dataclasses import dataclass, field
from typing import List, NamedTuple, Optional, Sequence, Tuple

from models.records import FlowReading
from services.errors import TokenizeError

logger = logging.getLogger(__name__)

TIMESTAMP_COLUMN = 0
FLOW_COLUMN = 2
MIN_COLUMNS = 3
DECIMAL_PATTERN = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?", re.ASCII)


@dataclass(frozen=True)
class HourWindow:
    """Inclusive range of hours; ``HourWindow(1, 4)`` keeps 01:00 through 04:59."""

    start: int = 1
    end: int = 4

    def __post_init__(self) -> None:
        if not (0 <= self.start <= self.end <= 23):
            raise ValueError(
                f"Invalid hour window {self.start}-{self.end}; expected 0 <= start <= end <= 23."
            )

    def contains(self, hour: int) -> bool:
        return self.start <= hour <= self.end


OVERNIGHT_WINDOW = HourWindow(1, 4)


class ParsedTimestamp(NamedTuple):
    day: int
    month: int
    year: int
    hour: int
    minute: int


@dataclass(frozen=True)
class RowIssue:
    """A data row dropped because it was malformed."""

    row_number: int
    reason: str
    value: Optional[str] = None


@dataclass
class FilterReport:
    readings: List[FlowReading] = field(default_factory=list)
    skipped: List[RowIssue] = field(default_factory=list)
    excluded_count: int = 0
    rows_seen: int = 0


def _numeric(token: str) -> int:
    if not (token.isascii() and token.isdigit()):
        raise ValueError(f"Non-numeric timestamp component {token!r}")
    return int(token)


def _in_range(value: int, low: int, high: int, label: str) -> int:
    if not low <= value <= high:
        raise ValueError(f"{label} {value} outside {low}-{high}")
    return value


def parse_timestamp(value: str) -> ParsedTimestamp:
    """Parse ``DD/MM/YYYY HH:mm``.

    Components may be unpadded and a trailing ``:ss`` is tolerated. Each
    component is range checked on its own; impossible dates such as
    ``31/02/2024`` are accepted.
    """
    parts = value.split()
    if len(parts) != 2:
        raise ValueError(f"Expected 'DD/MM/YYYY HH:mm', got {value!r}")
    date_part, time_part = parts

    date_fields = date_part.split("/")
    time_fields = time_part.split(":")
    if len(date_fields) != 3 or len(time_fields) not in (2, 3):
        raise ValueError(f"Expected 'DD/MM/YYYY HH:mm', got {value!r}")

    day, month, year = (_numeric(token) for token in date_fields)
    hour, minute, *seconds = (_numeric(token) for token in time_fields)
    if seconds:
        _in_range(seconds[0], 0, 59, "second")

    return ParsedTimestamp(
        day=_in_range(day, 1, 31, "day"),
        month=_in_range(month, 1, 12, "month"),
        year=year,
        hour=_in_range(hour, 0, 23, "hour"),
        minute=_in_range(minute, 0, 59, "minute"),
    )


def parse_flow(value: str) -> float:
    if not DECIMAL_PATTERN.fullmatch(value.strip()):
        raise ValueError(f"Flow value {value!r} is not a decimal number")
    flow = float(value)
    if not math.isfinite(flow):
        raise ValueError(f"Flow value {value!r} is not finite")
    return flow


def field_at(row: Sequence[str], index: int) -> Optional[str]:
    """Return the stripped field at ``index``, or ``None`` when absent or blank."""
    if index >= len(row):
        return None
    candidate = row[index].strip()
    return candidate or None


def _decode(raw: bytes | str) -> str:
    if isinstance(raw, str):
        return raw
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise TokenizeError(f"input is not valid UTF-8 ({exc.reason})") from exc


def tokenize(raw: bytes | str) -> List[Tuple[int, List[str]]]:
    """Split the input into ``(line_number, fields)`` pairs, dropping blank lines."""
    text = _decode(raw)
    reader = csv.reader(io.StringIO(text, newline=""), strict=True)
    rows: List[Tuple[int, List[str]]] = []
    try:
        for fields in reader:
            if not fields:
                continue
            rows.append((reader.line_num, fields))
    except csv.Error as exc:
        raise TokenizeError(str(exc), line_number=reader.line_num) from exc
    return rows


class CsvFilter:
    """Turns a meter export into the ordered readings of the overnight window."""

    def __init__(self, window: HourWindow = OVERNIGHT_WINDOW) -> None:
        self.window = window

    def filter(self, raw: bytes | str) -> List[FlowReading]:
        return self.scan(raw).readings

    def scan(self, raw: bytes | str) -> FilterReport:
        """Filter ``raw`` and account for every data row.

        Raises ``TokenizeError`` when the input is not CSV at all. Malformed
        rows are listed in ``skipped``; rows outside the window only bump
        ``excluded_count``.
        """
        report = FilterReport()
        rows = tokenize(raw)

        # First non-blank row is the header.
        for row_number, fields in rows[1:]:
            report.rows_seen += 1
            issue, reading = self._classify(row_number, fields)
            if issue is not None:
                logger.debug(
                    "Dropping malformed row",
                    extra={"row_number": row_number, "reason": issue.reason},
                )
                report.skipped.append(issue)
            elif reading is None:
                report.excluded_count += 1
            else:
                report.readings.append(reading)

        return report

    def _classify(
        self, row_number: int, fields: Sequence[str]
    ) -> Tuple[Optional[RowIssue], Optional[FlowReading]]:
        if len(fields) < MIN_COLUMNS:
            return RowIssue(row_number, "missing columns"), None

        timestamp_raw = field_at(fields, TIMESTAMP_COLUMN)
        if timestamp_raw is None:
            return RowIssue(row_number, "missing timestamp"), None

        flow_raw = field_at(fields, FLOW_COLUMN)
        if flow_raw is None:
            return RowIssue(row_number, "missing flow value"), None

        try:
            timestamp = parse_timestamp(timestamp_raw)
        except ValueError:
            return RowIssue(row_number, "invalid timestamp", timestamp_raw), None

        if not self.window.contains(timestamp.hour):
            return None, None

        try:
            flow = parse_flow(flow_raw)
        except ValueError:
            return RowIssue(row_number, "invalid flow value", flow_raw), None

        return None, FlowReading(timestamp=fields[TIMESTAMP_COLUMN], flow=flow)


def filter_csv(raw: bytes | str, window: HourWindow = OVERNIGHT_WINDOW) -> List[FlowReading]:
    """Return the readings of ``raw`` whose hour lies in ``window``, in file order."""
    return CsvFilter(window).filter(raw)
