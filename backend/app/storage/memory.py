"""
In-memory stores (default backend, tests, single-process demos).

All methods run on the event loop without awaiting between the version
check and the write, so compare-and-set is atomic with respect to other
coroutines.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Dict, List, Optional, TypeVar

from backend.app.core.errors import ValidationError
from backend.app.spatial.radius_utils import DegreeBox
from backend.app.storage.base import AlertStore, LocationStore, RecordStore

R = TypeVar("R")


class _MemoryStore(RecordStore[R]):

    def __init__(self) -> None:
        self._records: Dict[str, R] = {}

    async def add(self, record: R) -> R:
        if record.id in self._records:
            raise ValidationError(f"Record {record.id} already exists", field="id")
        stored = replace(record, version=1)
        self._records[stored.id] = stored
        return stored

    async def get(self, record_id: str) -> Optional[R]:
        return self._records.get(record_id)

    async def list_all(self) -> List[R]:
        return list(self._records.values())

    async def find_in_box(self, box: DegreeBox) -> List[R]:
        return [
            r for r in self._records.values()
            if box.contains(r.latitude, r.longitude)
        ]

    async def compare_and_set(self, record: R, expected_version: int) -> Optional[R]:
        current = self._records.get(record.id)
        if current is None or current.version != expected_version:
            return None
        stored = replace(record, version=expected_version + 1)
        self._records[stored.id] = stored
        return stored

    def __len__(self) -> int:
        return len(self._records)


class MemoryLocationStore(_MemoryStore, LocationStore):

    async def find_by_name(self, name: str):
        for record in self._records.values():
            if record.name == name:
                return record
        return None


class MemoryAlertStore(_MemoryStore, AlertStore):
    pass
