from __future__ import annotations
from datetime import datetime, date
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, DateTime, JSON, Date
from typing import Optional, List

from .user import Base, utcnow


class Device(Base):
    __tablename__ = 'devices'
    WARRANTY_UNKNOWN = 'unknown'
    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    brand: Mapped[str] = mapped_column(String(80), nullable=False)
    model: Mapped[str] = mapped_column(String(80), nullable=False)
    serial_number: Mapped[str] = mapped_column(String(80), nullable=False, default='', index=True)
    year_production: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    owner_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    warranty_status: Mapped[str] = mapped_column(String(32), nullable=False, default=WARRANTY_UNKNOWN)
    warranty_expire_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    asset_tag: Mapped[str] = mapped_column(String(64), nullable=False, default='')
    photos: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

# Repair history is not stored here: it is the set of tickets whose device_id points at this row.
