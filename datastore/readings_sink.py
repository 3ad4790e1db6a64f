"""Destination for filtered readings once a threshold has been computed."""

from __future__ import annotations

import logging
from typing import Protocol, Sequence

from models.records import FlowReading

logger = logging.getLogger(__name__)


class ReadingsSink(Protocol):
    def save(self, readings: Sequence[FlowReading]) -> None:
        ...


class LoggingReadingsSink:
    """Placeholder sink: records what would be saved and stores nothing."""

    def save(self, readings: Sequence[FlowReading]) -> None:
        logger.info("Saving filtered readings", extra={"row_count": len(readings)})
