"""Current stock model."""
from sqlalchemy import Column, String, Integer, Numeric, Date, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from gestock.database import Base, generate_id


class StockCurrent(Base):
    """
    Current stock snapshot, one row per product.

    Created lazily on the first incoming movement. ``average_cost`` is the
    quantity-weighted moving average of the receipts, rounded to 2 decimals,
    and keeps its last value when stock drops to zero. ``movement_sequence``
    counts the movements recorded for the product and orders them.
    """

    __tablename__ = 'stock_current'

    id = Column(String(32), primary_key=True, default=generate_id)
    product_id = Column(String(32), ForeignKey('product.id'), nullable=False, unique=True)
    quantity_available = Column(Numeric(15, 3), nullable=False, default=0)
    average_cost = Column(Numeric(15, 2), nullable=False, default=0)
    movement_sequence = Column(Integer, nullable=False, default=0)
    last_movement_date = Column(Date, nullable=True)
    last_updated = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationship
    product = relationship('Product', back_populates='stock')

    def __repr__(self):
        return (
            f"<StockCurrent(product_id={self.product_id}, "
            f"quantity_available={self.quantity_available}, average_cost={self.average_cost})>"
        )
