"""Invoice Item model."""
from sqlalchemy import Column, String, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from gestock.database import Base, generate_id


class InvoiceItem(Base):
    """Invoice line with tax breakdown."""

    __tablename__ = 'invoice_item'

    id = Column(String(32), primary_key=True, default=generate_id)
    invoice_id = Column(String(32), ForeignKey('invoice.id'), nullable=False)
    product_id = Column(String(32), ForeignKey('product.id'), nullable=False)
    quantity = Column(Numeric(15, 3), nullable=False)
    unit_price = Column(Numeric(15, 2), nullable=False)
    discount_percent = Column(Numeric(5, 2), nullable=False, default=0)
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)
    line_subtotal = Column(Numeric(15, 2), nullable=False)
    line_tax = Column(Numeric(15, 2), nullable=False)
    line_total = Column(Numeric(15, 2), nullable=False)

    # Relationships
    invoice = relationship('Invoice', back_populates='items')
    product = relationship('Product')

    def __repr__(self):
        return f"<InvoiceItem(id={self.id}, product_id={self.product_id}, line_total={self.line_total})>"
