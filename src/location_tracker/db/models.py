"""SQLite 表结构。"""

from __future__ import annotations

from sqlalchemy import Boolean, Float, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class VisitRecord(Base):
    """到访记录表，时间以 Unix 秒存储。"""

    __tablename__ = "visits"
    __table_args__ = (Index("ix_visits_open", "departed_at", "latitude", "longitude"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    arrived_at: Mapped[float] = mapped_column(Float, nullable=False, index=True)
    departed_at: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    geocoding_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class LocationPointRecord(Base):
    """连续追踪定位点表。"""

    __tablename__ = "location_points"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    timestamp: Mapped[float] = mapped_column(Float, nullable=False, index=True)
    altitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    speed: Mapped[float | None] = mapped_column(Float, nullable=True)
    horizontal_accuracy: Mapped[float] = mapped_column(Float, nullable=False)


class PreferenceRecord(Base):
    """持久化偏好（键值，值为 JSON 文本）。"""

    __tablename__ = "preferences"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
