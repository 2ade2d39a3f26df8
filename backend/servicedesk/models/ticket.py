from __future__ import annotations
from datetime import datetime, date
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, DateTime, Date, Float, JSON, ForeignKey
from typing import Optional, Dict, Any, List

from .user import Base, utcnow


class Ticket(Base):
    __tablename__ = 'tickets'
    # Lifecycle status constants (ordered)
    STATUS_REGISTERED = 'Registered'
    STATUS_RECEIVED = 'Received'
    STATUS_DIAGNOSED = 'Diagnosed'
    STATUS_WAITING_FOR_PARTS = 'Waiting for Parts'
    STATUS_REPAIRING = 'Repairing'
    STATUS_READY = 'Ready'
    STATUS_CLOSED = 'Closed'
    ALL_STATUSES = (
        STATUS_REGISTERED,
        STATUS_RECEIVED,
        STATUS_DIAGNOSED,
        STATUS_WAITING_FOR_PARTS,
        STATUS_REPAIRING,
        STATUS_READY,
        STATUS_CLOSED,
    )
    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    ticket_number: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)
    client_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    device_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True, index=True)
    technician_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    preferred_delivery_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_REGISTERED, index=True)
    # Snapshot {brand, model, serial_number, year} taken at creation, independent of the Device row
    device: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    assigned_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    status_history: Mapped[List['StatusChange']] = relationship('StatusChange', order_by='StatusChange.id', cascade='all, delete-orphan')
    reassignment_history: Mapped[List['Reassignment']] = relationship('Reassignment', order_by='Reassignment.id', cascade='all, delete-orphan')
    notes: Mapped[List['TicketNote']] = relationship('TicketNote', order_by='TicketNote.id', cascade='all, delete-orphan')
    parts: Mapped[List['TicketPart']] = relationship('TicketPart', order_by='TicketPart.id', cascade='all, delete-orphan')
    images: Mapped[List['TicketImage']] = relationship('TicketImage', order_by='TicketImage.id', cascade='all, delete-orphan')

    __mapper_args__ = {'version_id_col': version}


class StatusChange(Base):
    __tablename__ = 'ticket_status_history'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_id: Mapped[str] = mapped_column(ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    changed_by: Mapped[str] = mapped_column(String(64), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class Reassignment(Base):
    __tablename__ = 'ticket_reassignments'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_id: Mapped[str] = mapped_column(ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False, index=True)
    old_technician_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    new_technician_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reassigned_by: Mapped[str] = mapped_column(String(64), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class TicketNote(Base):
    __tablename__ = 'ticket_notes'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_id: Mapped[str] = mapped_column(ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False, index=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    author: Mapped[str] = mapped_column(String(128), nullable=False)
    author_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class TicketPart(Base):
    __tablename__ = 'ticket_parts'
    TYPE_INSTALLED = 'installed'
    TYPE_REMOVED = 'removed'
    TYPE_ORDERED = 'ordered'
    ALL_TYPES = (TYPE_INSTALLED, TYPE_REMOVED, TYPE_ORDERED)
    STATUS_ORDERED = 'ordered'
    STATUS_DELIVERED = 'delivered'
    STATUS_INSTALLED = 'installed'
    ALL_STATUSES = (STATUS_ORDERED, STATUS_DELIVERED, STATUS_INSTALLED)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_id: Mapped[str] = mapped_column(ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str] = mapped_column(String(64), nullable=False, default='')
    manufacturer: Mapped[str] = mapped_column(String(80), nullable=False, default='')
    unit_price: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_ORDERED)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class TicketImage(Base):
    __tablename__ = 'ticket_images'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_id: Mapped[str] = mapped_column(ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False, index=True)
    url: Mapped[str] = mapped_column(String(512), nullable=False)
    path: Mapped[str] = mapped_column(String(255), nullable=False)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
