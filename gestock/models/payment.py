"""Payment model."""
from sqlalchemy import Column, String, Text, Date, Numeric, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from gestock.database import Base, generate_id, enum_values
import enum


class PaymentMethod(enum.Enum):
    """Payment method enum."""
    CASH = "cash"
    CHECK = "check"
    TRANSFER = "transfer"
    OTHER = "other"


class Payment(Base):
    """Payment (règlement) recorded against an invoice."""

    __tablename__ = 'payment'

    id = Column(String(32), primary_key=True, default=generate_id)
    payment_number = Column(String(50), nullable=False, unique=True)
    invoice_id = Column(String(32), ForeignKey('invoice.id'), nullable=False)
    partner_id = Column(String(32), ForeignKey('partner.id'), nullable=False)
    payment_date = Column(Date, nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    payment_method = Column(
        Enum(PaymentMethod, name='payment_method', values_callable=enum_values),
        nullable=False,
        default=PaymentMethod.CASH
    )
    reference = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    invoice = relationship('Invoice', back_populates='payments')
    partner = relationship('Partner')

    def __repr__(self):
        return f"<Payment(id={self.id}, payment_number='{self.payment_number}', amount={self.amount})>"
