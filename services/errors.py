"""Failures raised by the CSV pipeline."""

from __future__ import annotations

from typing import Optional


class TokenizeError(ValueError):
    """The upload could not be segmented into CSV rows and fields."""

    def __init__(self, detail: str, line_number: Optional[int] = None) -> None:
        self.detail = detail
        self.line_number = line_number
        if line_number is None:
            message = f"CSV could not be parsed: {detail}"
        else:
            message = f"CSV could not be parsed at line {line_number}: {detail}"
        super().__init__(message)


class EmptyResultError(ValueError):
    """No reading fell inside the overnight window."""

    def __init__(self, start_hour: int, end_hour: int, rows_seen: int = 0) -> None:
        self.start_hour = start_hour
        self.end_hour = end_hour
        self.rows_seen = rows_seen
        super().__init__(
            f"No data found between {_format_hour(start_hour)} and "
            f"{_format_hour(end_hour)} in the CSV file"
        )


def _format_hour(hour: int) -> str:
    suffix = "AM" if hour < 12 else "PM"
    display = hour % 12 or 12
    return f"{display} {suffix}"
