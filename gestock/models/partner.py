"""Partner model (clients and suppliers)."""
from sqlalchemy import Column, String, Text, Numeric, DateTime, Enum
from sqlalchemy.sql import func
from gestock.database import Base, generate_id, enum_values
import enum


class PartnerType(enum.Enum):
    """Partner type enum."""
    CLIENT = "client"
    SUPPLIER = "fournisseur"


class Partner(Base):
    """Business partner: client or supplier."""

    __tablename__ = 'partner'

    id = Column(String(32), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False)
    type = Column(Enum(PartnerType, name='partner_type', values_callable=enum_values), nullable=False)
    contact_person = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    address = Column(Text, nullable=True)
    country = Column(String(100), nullable=True)
    credit = Column(Numeric(10, 2), nullable=False, default=0)
    # Numéro d'Identification Fiscale / Registre de Commerce
    nif = Column(String(50), nullable=True)
    rc = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Partner(id={self.id}, name='{self.name}', type={self.type.value})>"
