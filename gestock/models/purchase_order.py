"""Purchase Order model."""
from sqlalchemy import Column, String, Text, Date, Numeric, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from gestock.database import Base, generate_id, enum_values
import enum


class PurchaseOrderStatus(enum.Enum):
    """Purchase order status enum."""
    PENDING = "pending"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class PurchaseOrder(Base):
    """Purchase Order (bon de commande fournisseur)."""

    __tablename__ = 'purchase_order'

    id = Column(String(32), primary_key=True, default=generate_id)
    order_number = Column(String(50), nullable=False, unique=True)
    supplier_id = Column(String(32), ForeignKey('partner.id'), nullable=False)
    order_date = Column(Date, nullable=False)
    reception_date = Column(Date, nullable=True)
    status = Column(
        Enum(PurchaseOrderStatus, name='purchase_order_status', values_callable=enum_values),
        nullable=False,
        default=PurchaseOrderStatus.PENDING
    )
    supplier_order_number = Column(String(100), nullable=True)
    total_amount = Column(Numeric(15, 2), nullable=False, default=0)
    notes = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    supplier = relationship('Partner')
    items = relationship('PurchaseOrderItem', back_populates='purchase_order', cascade='all, delete-orphan')

    def __repr__(self):
        return f"<PurchaseOrder(id={self.id}, order_number='{self.order_number}', status={self.status.value})>"
