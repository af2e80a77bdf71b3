"""
SQLAlchemy stores (``STORAGE_BACKEND=sql``).

Each record is one row: indexed columns for the fields queried directly
(coordinates, name, alert type/active flag) plus the full record as a JSON
document. Compare-and-set is a single conditional UPDATE:

    UPDATE ... SET version = :v + 1, ...
     WHERE id = :id AND version = :v

which is atomic on both PostgreSQL and SQLite.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Type

from sqlalchemy import JSON, Boolean, Float, Index, Integer, String, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.database import Base
from backend.app.core.errors import ValidationError
from backend.app.crowd.models import CrowdLocation
from backend.app.emergency.models import EmergencyAlert
from backend.app.spatial.radius_utils import DegreeBox
from backend.app.storage.base import AlertStore, LocationStore, RecordStore

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Tables
# ═══════════════════════════════════════════════════════════════════════════

class CrowdLocationRow(Base):
    __tablename__ = "crowd_locations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(255), index=True)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    document: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)

    __table_args__ = (
        Index("ix_crowd_locations_lat_lon", "latitude", "longitude"),
    )

    @staticmethod
    def columns_for(record: CrowdLocation) -> Dict[str, Any]:
        return {
            "name": record.name,
            "latitude": record.latitude,
            "longitude": record.longitude,
        }


class EmergencyAlertRow(Base):
    __tablename__ = "emergency_alerts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    alert_type: Mapped[str] = mapped_column(String(32), index=True)
    active: Mapped[bool] = mapped_column(Boolean, index=True)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    document: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)

    __table_args__ = (
        Index("ix_emergency_alerts_lat_lon", "latitude", "longitude"),
    )

    @staticmethod
    def columns_for(record: EmergencyAlert) -> Dict[str, Any]:
        return {
            "alert_type": record.alert_type.value,
            "active": record.active,
            "latitude": record.latitude,
            "longitude": record.longitude,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Stores
# ═══════════════════════════════════════════════════════════════════════════

class _SQLStore(RecordStore):
    row_type: Type[Base]
    record_type: Type

    def __init__(self, sessions: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = sessions

    def _to_record(self, row) -> Any:
        return self.record_type.from_document(row.document, version=row.version)

    async def add(self, record):
        stored = replace(record, version=1)
        row = self.row_type(
            id=stored.id,
            version=1,
            document=stored.to_document(),
            **self.row_type.columns_for(stored),
        )
        try:
            async with self._sessions() as session:
                async with session.begin():
                    session.add(row)
        except IntegrityError:
            raise ValidationError(f"Record {record.id} already exists", field="id")
        return stored

    async def get(self, record_id: str):
        async with self._sessions() as session:
            row = await session.get(self.row_type, record_id)
            return self._to_record(row) if row is not None else None

    async def list_all(self) -> List:
        async with self._sessions() as session:
            rows = (await session.execute(select(self.row_type))).scalars().all()
            return [self._to_record(r) for r in rows]

    async def find_in_box(self, box: DegreeBox) -> List:
        row = self.row_type
        stmt = select(row).where(
            row.latitude >= box.min_lat,
            row.latitude <= box.max_lat,
            row.longitude >= box.min_lon,
            row.longitude <= box.max_lon,
        )
        async with self._sessions() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [self._to_record(r) for r in rows]

    async def compare_and_set(self, record, expected_version: int):
        row = self.row_type
        stored = replace(record, version=expected_version + 1)
        stmt = (
            update(row)
            .where(row.id == record.id, row.version == expected_version)
            .values(
                version=expected_version + 1,
                document=stored.to_document(),
                **row.columns_for(stored),
            )
        )
        async with self._sessions() as session:
            async with session.begin():
                result = await session.execute(stmt)
        if result.rowcount != 1:
            return None
        return stored

    async def ping(self) -> bool:
        async with self._sessions() as session:
            await session.execute(text("SELECT 1"))
        return True


class SQLLocationStore(_SQLStore, LocationStore):
    row_type = CrowdLocationRow
    record_type = CrowdLocation

    async def find_by_name(self, name: str) -> Optional[CrowdLocation]:
        stmt = select(CrowdLocationRow).where(CrowdLocationRow.name == name).limit(1)
        async with self._sessions() as session:
            row = (await session.execute(stmt)).scalars().first()
            return self._to_record(row) if row is not None else None


class SQLAlertStore(_SQLStore, AlertStore):
    row_type = EmergencyAlertRow
    record_type = EmergencyAlert
