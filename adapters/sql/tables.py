"""
SQLAlchemy schema for sessions, readings and alerts.

Ownership is a strict tree: a session owns its readings and alerts, and an
alert also depends on its source reading. Both links cascade on delete at the
database level.
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator[datetime]):
    """Stores naive UTC, returns aware UTC, so comparisons work on every backend."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value.replace(tzinfo=None)

    def process_result_value(self, value: Any, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        return value.replace(tzinfo=UTC)


class Base(DeclarativeBase):
    pass


class SessionRow(Base):
    __tablename__ = "monitoring_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    sensor_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    patient_id: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    readings: Mapped[list["ReadingRow"]] = relationship(
        back_populates="session", cascade="all, delete-orphan", passive_deletes=True
    )
    alerts: Mapped[list["AlertRow"]] = relationship(
        back_populates="session", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        # At most one open session per sensor
        Index(
            "uq_open_session_per_sensor",
            "sensor_id",
            unique=True,
            sqlite_where=text("end_time IS NULL"),
            postgresql_where=text("end_time IS NULL"),
        ),
    )

    def __repr__(self) -> str:
        is_open = self.end_time is None
        return f"<SessionRow(id={self.id}, sensor_id={self.sensor_id}, open={is_open})>"


class ReadingRow(Base):
    __tablename__ = "pressure_readings"

    # Autoincrement id doubles as insertion order for timestamp ties
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(
        ForeignKey("monitoring_sessions.id", ondelete="CASCADE"), nullable=False
    )
    sensor_id: Mapped[str] = mapped_column(String(50), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    matrix: Mapped[list[list[float]]] = mapped_column(JSON, nullable=False)
    peak_pressure: Mapped[float] = mapped_column(Float, nullable=False)
    contact_area_percentage: Mapped[float] = mapped_column(Float, nullable=False)
    peak_pressure_index: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    saturation_percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    alert_status: Mapped[str] = mapped_column(String(20), nullable=False, default="none")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    session: Mapped[SessionRow] = relationship(back_populates="readings")
    alerts: Mapped[list["AlertRow"]] = relationship(
        back_populates="reading", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        Index("ix_readings_sensor_time", "sensor_id", "timestamp"),
        Index("ix_readings_session_time", "session_id", "timestamp"),
    )


class AlertRow(Base):
    __tablename__ = "pressure_alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(
        ForeignKey("monitoring_sessions.id", ondelete="CASCADE"), nullable=False
    )
    reading_id: Mapped[int] = mapped_column(
        ForeignKey("pressure_readings.id", ondelete="CASCADE"), nullable=False
    )
    alert_type: Mapped[str] = mapped_column(String(50), nullable=False)
    threshold_value: Mapped[float] = mapped_column(Float, nullable=False)
    actual_value: Mapped[float] = mapped_column(Float, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    acknowledged_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    acknowledged_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    session: Mapped[SessionRow] = relationship(back_populates="alerts")
    reading: Mapped[ReadingRow] = relationship(back_populates="alerts")

    __table_args__ = (
        Index("ix_alerts_dedup", "session_id", "alert_type", "acknowledged", "timestamp"),
        Index("ix_alerts_session_time", "session_id", "timestamp"),
    )
