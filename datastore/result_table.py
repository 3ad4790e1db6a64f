from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional

from app.schemas import ProcessingResult
from settings import get_settings

logger = logging.getLogger(__name__)


class ResultTable:
    """Processing records keyed by file id; callers only ever see copies."""

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self.persistence_path = persistence_path
        self._items: Dict[str, ProcessingResult] = {}
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def put_item(self, item: ProcessingResult) -> None:
        with self._lock:
            self._items[item.file_id] = item.model_copy(deep=True)
            self._persist()

    def get_item(self, file_id: str) -> Optional[ProcessingResult]:
        with self._lock:
            item = self._items.get(file_id)
            return None if item is None else item.model_copy(deep=True)

    def update_item(self, file_id: str, **changes: Any) -> ProcessingResult:
        """Apply ``changes`` to the stored record atomically and return a copy."""
        with self._lock:
            item = self._items.get(file_id)
            if item is None:
                raise KeyError(f"Processing result for file {file_id!r} not found.")
            updated = item.model_copy(update=changes, deep=True)
            self._items[file_id] = updated
            self._persist()
            return updated.model_copy(deep=True)

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = {
            file_id: item.model_dump(mode="json") for file_id, item in self._items.items()
        }
        self.persistence_path.write_text(json.dumps(payload, indent=2, sort_keys=True))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            data = json.loads(self.persistence_path.read_text() or "{}")
        except (OSError, json.JSONDecodeError):
            logger.warning(
                "Ignoring unreadable results file %s", self.persistence_path
            )
            data = {}

        for file_id, payload in data.items():
            self._items[file_id] = ProcessingResult.model_validate(payload)


@lru_cache
def build_default_table(
    name: Optional[str] = None,
    path: Optional[str] = None,
) -> ResultTable:
    settings = get_settings()
    table_name = settings.table_name if name is None else name
    table_path = settings.table_persistence_path if path is None else path
    return ResultTable(name=table_name, persistence_path=Path(table_path) if table_path else None)
