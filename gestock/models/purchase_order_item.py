"""Purchase Order Item model."""
from sqlalchemy import Column, String, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from gestock.database import Base, generate_id


class PurchaseOrderItem(Base):
    """Line of a purchase order."""

    __tablename__ = 'purchase_order_item'

    id = Column(String(32), primary_key=True, default=generate_id)
    purchase_order_id = Column(String(32), ForeignKey('purchase_order.id'), nullable=False)
    product_id = Column(String(32), ForeignKey('product.id'), nullable=False)
    quantity = Column(Numeric(15, 3), nullable=False)
    unit_cost = Column(Numeric(15, 2), nullable=False)
    line_total = Column(Numeric(15, 2), nullable=False)

    # Relationships
    purchase_order = relationship('PurchaseOrder', back_populates='items')
    product = relationship('Product')

    def __repr__(self):
        return f"<PurchaseOrderItem(id={self.id}, product_id={self.product_id}, quantity={self.quantity})>"
