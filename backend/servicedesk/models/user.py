from __future__ import annotations
from datetime import datetime, timezone
from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import String, Boolean, DateTime, Integer
from typing import Optional

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = 'users'
    ROLE_CLIENT = 'client'
    ROLE_WORKER = 'worker'
    ROLE_TECHNICIAN = 'technician'
    ROLE_MANAGER = 'manager'
    ALL_ROLES = (ROLE_CLIENT, ROLE_WORKER, ROLE_TECHNICIAN, ROLE_MANAGER)
    # uid from the identity provider, or a generated profile id for clients without an account
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(128), index=True, nullable=False, default='')
    full_name: Mapped[str] = mapped_column(String(128), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default=ROLE_CLIENT, index=True)
    phone: Mapped[str] = mapped_column(String(32), nullable=False, default='')
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    has_account: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # bumped with every assignment to this technician; auto-assignment claims it conditionally
    assignment_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def set_password(self, raw: str):
        from werkzeug.security import generate_password_hash
        self.password_hash = generate_password_hash(raw)
        self.has_account = True

    def verify_password(self, raw: str) -> bool:
        from werkzeug.security import check_password_hash
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, raw)
