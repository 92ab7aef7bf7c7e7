"""Product model."""
from sqlalchemy import Column, String, Text, Boolean, Numeric, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from gestock.database import Base, generate_id


class Product(Base):
    """Product (article du catalogue)."""

    __tablename__ = 'product'

    id = Column(String(32), primary_key=True, default=generate_id)
    code = Column(String(50), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    unit_of_measure = Column(String(20), nullable=False, default='unité')
    purchase_price = Column(Numeric(15, 2), nullable=True)
    sale_price_local = Column(Numeric(15, 2), nullable=True)
    sale_price_export = Column(Numeric(15, 2), nullable=True)
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    stock = relationship('StockCurrent', uselist=False, back_populates='product')

    def __repr__(self):
        return f"<Product(id={self.id}, code='{self.code}', name='{self.name}')>"
