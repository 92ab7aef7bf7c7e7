"""Delivery Note Cancellation model."""
from sqlalchemy import Column, String, Text, Date, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from gestock.database import Base, generate_id


class DeliveryNoteCancellation(Base):
    """
    Cancellation (bon d'annulation) of delivered goods.

    ``is_full`` marks the record derived from switching a whole delivery note
    to cancelled; partial cancellations are created by hand and may cover
    items from several delivery notes of the same client.
    """

    __tablename__ = 'delivery_note_cancellation'

    id = Column(String(32), primary_key=True, default=generate_id)
    cancellation_number = Column(String(50), nullable=False, unique=True)
    original_delivery_note_id = Column(String(32), ForeignKey('delivery_note.id'), nullable=True)
    client_id = Column(String(32), ForeignKey('partner.id'), nullable=False)
    cancellation_date = Column(Date, nullable=False)
    reason = Column(Text, nullable=True)
    is_full = Column(Boolean, nullable=False, default=False)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    original_delivery_note = relationship('DeliveryNote')
    client = relationship('Partner')
    items = relationship(
        'DeliveryNoteCancellationItem',
        back_populates='cancellation',
        cascade='all, delete-orphan'
    )

    def __repr__(self):
        return (
            f"<DeliveryNoteCancellation(id={self.id}, "
            f"cancellation_number='{self.cancellation_number}', is_full={self.is_full})>"
        )
