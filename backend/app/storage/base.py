"""
Storage interface — async record stores with atomic compare-and-set writes.

Records (CrowdLocation, EmergencyAlert) are immutable values carrying an
``id`` and a ``version``. A store never mutates a record in place: writers
read the current value, compute the next one with a pure transition, and
ask the store to swap it in only if nobody else wrote in between.

    read(id) ──► v₀ ──► mutate(v₀) ──► compare_and_set(v₁, expected=v₀.version)
                                              │
                               ┌──────────────┴──────────────┐
                           stored (v+1)                 lost the race
                                                       retry from read
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Generic, List, Optional, TypeVar

from backend.app.core.errors import ConcurrencyConflict, NotFoundError
from backend.app.spatial.radius_utils import DegreeBox

logger = logging.getLogger(__name__)

R = TypeVar("R")


class RecordStore(ABC, Generic[R]):
    """Async document store keyed by record id."""

    @abstractmethod
    async def add(self, record: R) -> R:
        """Insert a new record; returns it with version 1."""

    @abstractmethod
    async def get(self, record_id: str) -> Optional[R]:
        ...

    @abstractmethod
    async def list_all(self) -> List[R]:
        ...

    @abstractmethod
    async def find_in_box(self, box: DegreeBox) -> List[R]:
        """Records whose coordinates fall inside the box (inclusive)."""

    @abstractmethod
    async def compare_and_set(self, record: R, expected_version: int) -> Optional[R]:
        """
        Replace the stored record only if its version still equals
        ``expected_version``.

        Returns the stored value (version bumped) or None when the stored
        version moved on or the record no longer exists.
        """

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class LocationStore(RecordStore[R]):
    """Crowd-location store; adds a name lookup for idempotent seeding."""

    @abstractmethod
    async def find_by_name(self, name: str) -> Optional[R]:
        ...


class AlertStore(RecordStore[R]):
    """Emergency-alert store."""


async def read_modify_write(
    store: RecordStore[R],
    record_id: str,
    mutate: Callable[[R], R],
    *,
    resource: str,
    max_attempts: int = 5,
) -> R:
    """
    Optimistic retry loop around ``compare_and_set``.

    ``mutate`` must be a pure function of the record it is given; it is
    re-run against a fresh read after every lost race. When ``mutate``
    returns the very object it received, nothing is written.

    Raises
    ------
    NotFoundError
        The record does not exist.
    ConcurrencyConflict
        Every attempt lost the race.
    """
    for attempt in range(1, max_attempts + 1):
        current = await store.get(record_id)
        if current is None:
            raise NotFoundError(resource, id=record_id)

        updated = mutate(current)
        if updated is current:
            return current

        stored = await store.compare_and_set(updated, current.version)
        if stored is not None:
            return stored

        logger.debug(
            "Write conflict on %s %s (attempt %d/%d)",
            resource, record_id, attempt, max_attempts,
        )

    logger.warning(
        "Giving up on %s %s after %d conflicting writes",
        resource, record_id, max_attempts,
    )
    raise ConcurrencyConflict(resource, record_id, max_attempts)
