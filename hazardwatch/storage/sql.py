"""
SQL-backed stores (PostgreSQL in production, SQLite in tests).

Tables:

    observations   one row per (latitude, longitude, timestamp); re-recording
                   the same reading is a no-op
    predictions    append-only, one row per analysed location per run

Every SQLAlchemy failure surfaces as StorageError so callers can apply the
degrade-not-crash policy without knowing the backend.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, UniqueConstraint, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from hazardwatch.core.database import Base
from hazardwatch.core.errors import StorageError
from hazardwatch.ml.models import HazardType, Observation, Severity
from hazardwatch.prediction.models import Prediction, PredictionMethod, RunTrigger
from hazardwatch.storage.base import BOX_QUERY_LIMIT, BoundingBox

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ── ORM models ──

class ObservationRecord(Base):
    __tablename__ = "observations"
    __table_args__ = (
        UniqueConstraint("latitude", "longitude", "timestamp", name="uq_observation_point_time"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    location_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True, index=True)
    latitude: Mapped[float] = mapped_column(Float, index=True)
    longitude: Mapped[float] = mapped_column(Float, index=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    wave_height: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    wind_speed: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    wind_direction: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    current_speed: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    sea_surface_temp: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    pressure: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    tsunami_warning_active: Mapped[bool] = mapped_column(Boolean, default=False)
    cyclone_active: Mapped[bool] = mapped_column(Boolean, default=False)

    @classmethod
    def from_observation(cls, obs: Observation) -> "ObservationRecord":
        return cls(
            location_id=obs.location_id,
            latitude=obs.latitude,
            longitude=obs.longitude,
            timestamp=_as_utc(obs.timestamp),
            wave_height=obs.wave_height,
            wind_speed=obs.wind_speed,
            wind_direction=obs.wind_direction,
            current_speed=obs.current_speed,
            sea_surface_temp=obs.sea_surface_temp,
            pressure=obs.pressure,
            tsunami_warning_active=obs.tsunami_warning_active,
            cyclone_active=obs.cyclone_active,
        )

    def to_observation(self) -> Observation:
        return Observation(
            latitude=self.latitude,
            longitude=self.longitude,
            timestamp=_as_utc(self.timestamp),
            location_id=self.location_id,
            wave_height=self.wave_height,
            wind_speed=self.wind_speed,
            wind_direction=self.wind_direction,
            current_speed=self.current_speed,
            sea_surface_temp=self.sea_surface_temp,
            pressure=self.pressure,
            tsunami_warning_active=bool(self.tsunami_warning_active),
            cyclone_active=bool(self.cyclone_active),
        )


class PredictionRecord(Base):
    __tablename__ = "predictions"

    prediction_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    location: Mapped[str] = mapped_column(String(120), index=True)
    latitude: Mapped[float] = mapped_column(Float)
    longitude: Mapped[float] = mapped_column(Float)
    hazard_type: Mapped[str] = mapped_column(String(32))
    severity: Mapped[str] = mapped_column(String(16))
    confidence: Mapped[float] = mapped_column(Float)
    method: Mapped[str] = mapped_column(String(32))
    early_warning: Mapped[bool] = mapped_column(Boolean, default=False)
    estimated_time_to_hazard_hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    indicators: Mapped[List[str]] = mapped_column(JSON, default=list)
    conditions: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    trigger: Mapped[str] = mapped_column(String(16))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    @classmethod
    def from_prediction(cls, p: Prediction) -> "PredictionRecord":
        return cls(
            prediction_id=p.prediction_id,
            location=p.location,
            latitude=p.latitude,
            longitude=p.longitude,
            hazard_type=p.hazard_type.value,
            severity=p.severity.value,
            confidence=p.confidence,
            method=p.method.value,
            early_warning=p.early_warning,
            estimated_time_to_hazard_hours=p.estimated_time_to_hazard_hours,
            indicators=list(p.indicators),
            conditions=dict(p.conditions),
            trigger=p.trigger.value,
            created_at=_as_utc(p.created_at),
        )

    def to_prediction(self) -> Prediction:
        return Prediction(
            prediction_id=self.prediction_id,
            location=self.location,
            latitude=self.latitude,
            longitude=self.longitude,
            hazard_type=HazardType(self.hazard_type),
            severity=Severity(self.severity),
            confidence=self.confidence,
            method=PredictionMethod(self.method),
            early_warning=bool(self.early_warning),
            estimated_time_to_hazard_hours=self.estimated_time_to_hazard_hours,
            indicators=list(self.indicators or []),
            conditions=dict(self.conditions or {}),
            trigger=RunTrigger(self.trigger),
            created_at=_as_utc(self.created_at),
        )


# ── Stores ──

class SqlObservationStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def query_observations(
        self,
        box: Optional[BoundingBox],
        since: datetime,
        until: Optional[datetime] = None,
        limit: int = BOX_QUERY_LIMIT,
    ) -> List[Observation]:
        stmt = select(ObservationRecord).where(ObservationRecord.timestamp >= _as_utc(since))
        if until is not None:
            stmt = stmt.where(ObservationRecord.timestamp <= _as_utc(until))
        if box is not None:
            stmt = stmt.where(
                ObservationRecord.latitude.between(box.lat_min, box.lat_max),
                ObservationRecord.longitude.between(box.lon_min, box.lon_max),
            )
        stmt = stmt.order_by(ObservationRecord.timestamp.desc()).limit(limit)

        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except (SQLAlchemyError, OSError) as e:
            raise StorageError("query_observations", str(e)) from e
        return [row.to_observation() for row in rows]

    async def append_observation(self, observation: Observation) -> bool:
        try:
            async with self._session_factory() as session:
                session.add(ObservationRecord.from_observation(observation))
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    logger.debug(
                        "Duplicate observation ignored: %.4f,%.4f @ %s",
                        observation.latitude, observation.longitude,
                        observation.timestamp.isoformat(),
                    )
                    return False
        except (SQLAlchemyError, OSError) as e:
            raise StorageError("append_observation", str(e)) from e
        return True


class SqlPredictionStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def append_prediction(self, prediction: Prediction) -> None:
        try:
            async with self._session_factory() as session:
                session.add(PredictionRecord.from_prediction(prediction))
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            raise StorageError("append_prediction", str(e), location=prediction.location) from e

    async def recent_predictions(
        self, location: Optional[str] = None, limit: int = 50,
    ) -> List[Prediction]:
        stmt = select(PredictionRecord)
        if location is not None:
            stmt = stmt.where(PredictionRecord.location == location)
        stmt = stmt.order_by(PredictionRecord.created_at.desc()).limit(limit)

        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except (SQLAlchemyError, OSError) as e:
            raise StorageError("recent_predictions", str(e)) from e
        return [row.to_prediction() for row in rows]
