"""Delivery Note Cancellation Item model."""
from sqlalchemy import Column, String, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from gestock.database import Base, generate_id


class DeliveryNoteCancellationItem(Base):
    """Quantity cancelled from one delivery note line."""

    __tablename__ = 'delivery_note_cancellation_item'

    id = Column(String(32), primary_key=True, default=generate_id)
    cancellation_id = Column(String(32), ForeignKey('delivery_note_cancellation.id'), nullable=False)
    delivery_note_item_id = Column(String(32), ForeignKey('delivery_note_item.id'), nullable=False)
    product_id = Column(String(32), ForeignKey('product.id'), nullable=False)
    quantity = Column(Numeric(15, 3), nullable=False)
    unit_price = Column(Numeric(15, 2), nullable=False)
    discount_percent = Column(Numeric(5, 2), nullable=False, default=0)
    line_total = Column(Numeric(15, 2), nullable=False)

    # Relationships
    cancellation = relationship('DeliveryNoteCancellation', back_populates='items')
    delivery_note_item = relationship('DeliveryNoteItem')
    product = relationship('Product')

    def __repr__(self):
        return (
            f"<DeliveryNoteCancellationItem(id={self.id}, "
            f"delivery_note_item_id={self.delivery_note_item_id}, quantity={self.quantity})>"
        )
