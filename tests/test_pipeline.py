from __future__ import annotations

import pytest

from models.records import DailyMinimum
from services.csv_filter import CsvFilter, HourWindow
from services.errors import EmptyResultError, TokenizeError
from services.pipeline import analyze_csv

SAMPLE = (
    "DateTime,Unused,C2Flow\n"
    "02/01/2024 02:15,x,10.0\n"
    "02/01/2024 03:00,x,5.0\n"
    "02/01/2024 06:00,x,1.0\n"
    "03/01/2024 01:30,x,20.0\n"
)


def test_analyze_end_to_end() -> None:
    analysis = analyze_csv(SAMPLE.encode("utf-8"))

    assert len(analysis.report.readings) == 3
    assert analysis.report.excluded_count == 1
    assert analysis.summary.daily_minimums == (
        DailyMinimum(date="02/01/2024", min_flow=5.0),
        DailyMinimum(date="03/01/2024", min_flow=20.0),
    )
    assert analysis.summary.mean_of_daily_minimums == 12.5
    assert analysis.summary.threshold == 16.25


def test_analyze_raises_when_window_is_empty() -> None:
    raw = "DateTime,Unused,C2Flow\n02/01/2024 12:00,x,1.0\n"

    with pytest.raises(EmptyResultError) as exc_info:
        analyze_csv(raw)

    assert str(exc_info.value) == "No data found between 1 AM and 4 AM in the CSV file"
    assert exc_info.value.rows_seen == 1


def test_empty_result_message_follows_window() -> None:
    raw = "DateTime,Unused,C2Flow\n02/01/2024 02:00,x,1.0\n"

    with pytest.raises(EmptyResultError, match="between 1 PM and 11 PM"):
        analyze_csv(raw, csv_filter=CsvFilter(HourWindow(13, 23)))


def test_analyze_propagates_tokenize_error() -> None:
    with pytest.raises(TokenizeError):
        analyze_csv('DateTime,Unused,C2Flow\n"02/01/2024 02:00"x,x,1\n')
