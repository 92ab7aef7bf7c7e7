"""Delivery Note Item model."""
from sqlalchemy import Column, String, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from gestock.database import Base, generate_id


class DeliveryNoteItem(Base):
    """Line of a delivery note."""

    __tablename__ = 'delivery_note_item'

    id = Column(String(32), primary_key=True, default=generate_id)
    delivery_note_id = Column(String(32), ForeignKey('delivery_note.id'), nullable=False)
    product_id = Column(String(32), ForeignKey('product.id'), nullable=False)
    quantity = Column(Numeric(15, 3), nullable=False)
    unit_price = Column(Numeric(15, 2), nullable=False)
    discount_percent = Column(Numeric(5, 2), nullable=False, default=0)
    line_total = Column(Numeric(15, 2), nullable=False)

    # Relationships
    delivery_note = relationship('DeliveryNote', back_populates='items')
    product = relationship('Product')

    def __repr__(self):
        return f"<DeliveryNoteItem(id={self.id}, product_id={self.product_id}, quantity={self.quantity})>"
