"""Delivery Note model."""
from sqlalchemy import Column, String, Text, Date, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from gestock.database import Base, generate_id, enum_values
import enum


class DeliveryNoteType(enum.Enum):
    """Local or export sale."""
    LOCAL = "local"
    EXPORT = "export"


class DeliveryNoteStatus(enum.Enum):
    """Delivery note status enum."""
    ACTIVE = "active"
    CANCELLED = "cancelled"


class DeliveryNote(Base):
    """Delivery Note (bon de livraison)."""

    __tablename__ = 'delivery_note'

    id = Column(String(32), primary_key=True, default=generate_id)
    note_number = Column(String(50), nullable=False, unique=True)
    note_type = Column(
        Enum(DeliveryNoteType, name='note_type', values_callable=enum_values),
        nullable=False,
        default=DeliveryNoteType.LOCAL
    )
    client_id = Column(String(32), ForeignKey('partner.id'), nullable=False)
    note_date = Column(Date, nullable=False)
    status = Column(
        Enum(DeliveryNoteStatus, name='delivery_note_status', values_callable=enum_values),
        nullable=False,
        default=DeliveryNoteStatus.ACTIVE
    )
    currency = Column(String(3), nullable=False, default='DZD')
    destination_country = Column(String(100), nullable=True)
    delivery_location = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    client = relationship('Partner')
    items = relationship('DeliveryNoteItem', back_populates='delivery_note', cascade='all, delete-orphan')

    def __repr__(self):
        return f"<DeliveryNote(id={self.id}, note_number='{self.note_number}', status={self.status.value})>"
