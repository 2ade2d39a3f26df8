from __future__ import annotations
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Index, Integer, String, JSON, DateTime, func

from .user import Base


class AuditLog(Base):
    """One mutating request: who did it, to which ticket/device/user, and what changed."""
    __tablename__ = 'audit_logs'
    __table_args__ = (Index('ix_audit_logs_entity', 'entity', 'entity_id'),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    actor_user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    entity: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    entity_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    role_snapshot: Mapped[dict] = mapped_column(JSON, default=dict)
    # before/after diffs land under meta['changes']
    meta: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
