"""Stock Movement model."""
from sqlalchemy import Column, String, Text, Integer, Numeric, Date, DateTime, Enum, ForeignKey, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from gestock.database import Base, generate_id, enum_values
import enum


class MovementType(enum.Enum):
    """Stock movement type enum."""
    IN = "in"
    OUT = "out"


class MovementSource(enum.Enum):
    """Business origin of a stock movement."""
    PURCHASE = "purchase"
    SALE_LOCAL = "sale_local"
    SALE_EXPORT = "sale_export"
    ADJUSTMENT = "adjustment"
    RETURN = "return"


class ReferenceType(enum.Enum):
    """Source document a movement belongs to."""
    PURCHASE_ORDER = "purchase_order"
    DELIVERY_NOTE = "delivery_note"
    DELIVERY_NOTE_CANCELLATION = "delivery_note_cancellation"
    STOCK_ENTRY = "stock_entry"


class StockMovement(Base):
    """Append-only stock ledger row, tagged with its source document."""

    __tablename__ = 'stock_movement'
    __table_args__ = (
        Index('ix_stock_movement_reference', 'reference_type', 'reference_id'),
    )

    id = Column(String(32), primary_key=True, default=generate_id)
    product_id = Column(String(32), ForeignKey('product.id'), nullable=False, index=True)
    movement_type = Column(Enum(MovementType, name='movement_type', values_callable=enum_values), nullable=False)
    movement_source = Column(Enum(MovementSource, name='movement_source', values_callable=enum_values), nullable=False)
    reference_type = Column(Enum(ReferenceType, name='reference_type', values_callable=enum_values), nullable=False)
    reference_id = Column(String(32), nullable=False)
    # Position of the row inside the batch applied for its reference
    line_number = Column(Integer, nullable=False, default=0)
    # Order of the row among the movements of its product
    sequence = Column(Integer, nullable=False, default=0)
    quantity = Column(Numeric(15, 3), nullable=False)
    unit_cost = Column(Numeric(15, 2), nullable=False)
    # Average cost of the product right before this movement
    previous_average_cost = Column(Numeric(15, 2), nullable=True)
    movement_date = Column(Date, nullable=False)
    notes = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    product = relationship('Product')

    @property
    def signed_quantity(self):
        """Quantity with its direction applied: positive in, negative out."""
        return self.quantity if self.movement_type == MovementType.IN else -self.quantity

    def __repr__(self):
        return (
            f"<StockMovement(id={self.id}, type={self.movement_type.value}, "
            f"reference={self.reference_type.value}:{self.reference_id}, quantity={self.quantity})>"
        )
