"""Invoice model."""
from sqlalchemy import Column, String, Text, Date, Numeric, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from gestock.database import Base, generate_id, enum_values
import enum


class InvoiceType(enum.Enum):
    """Invoice type enum."""
    SALE_INVOICE = "sale_invoice"
    DELIVERY_NOTE_INVOICE = "delivery_note_invoice"
    SALE_LOCAL = "sale_local"
    SALE_EXPORT = "sale_export"
    PROFORMA = "proforma"
    PURCHASE = "purchase"


class PaymentStatus(enum.Enum):
    """Invoice payment status enum."""
    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"


class InvoiceStatus(enum.Enum):
    """Invoice lifecycle status enum."""
    ACTIVE = "active"
    CANCELLED = "cancelled"


class Invoice(Base):
    """Invoice (facture), generated from a delivery note or entered line by line."""

    __tablename__ = 'invoice'

    id = Column(String(32), primary_key=True, default=generate_id)
    invoice_number = Column(String(50), nullable=False, unique=True)
    invoice_type = Column(Enum(InvoiceType, name='invoice_type', values_callable=enum_values), nullable=False)
    client_id = Column(String(32), ForeignKey('partner.id'), nullable=True)
    supplier_id = Column(String(32), ForeignKey('partner.id'), nullable=True)
    delivery_note_id = Column(String(32), ForeignKey('delivery_note.id'), nullable=True)
    purchase_order_id = Column(String(32), ForeignKey('purchase_order.id'), nullable=True)
    invoice_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=True)
    currency = Column(String(3), nullable=False, default='DZD')
    destination_country = Column(String(100), nullable=True)
    delivery_location = Column(String(255), nullable=True)
    subtotal = Column(Numeric(15, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(15, 2), nullable=False, default=0)
    total_amount = Column(Numeric(15, 2), nullable=False, default=0)
    payment_status = Column(
        Enum(PaymentStatus, name='payment_status', values_callable=enum_values),
        nullable=False,
        default=PaymentStatus.UNPAID
    )
    status = Column(
        Enum(InvoiceStatus, name='invoice_status', values_callable=enum_values),
        nullable=False,
        default=InvoiceStatus.ACTIVE
    )
    notes = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    client = relationship('Partner', foreign_keys=[client_id])
    supplier = relationship('Partner', foreign_keys=[supplier_id])
    delivery_note = relationship('DeliveryNote')
    items = relationship('InvoiceItem', back_populates='invoice', cascade='all, delete-orphan')
    payments = relationship('Payment', back_populates='invoice', cascade='all, delete-orphan')

    def __repr__(self):
        return f"<Invoice(id={self.id}, invoice_number='{self.invoice_number}', payment_status={self.payment_status.value})>"
