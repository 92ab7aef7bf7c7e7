"""
Unit tests for SQLAlchemy models.
"""

import pytest
from decimal import Decimal

from gestock.models import (
    MovementSource, MovementType, Product, ReferenceType, StockCurrent, StockMovement
)


class TestProductModel:
    """Tests for Product model."""

    def test_create_product(self, session):
        product = Product(code='P-100', name='Semoule fine 25kg')
        session.add(product)
        session.commit()

        assert product.id is not None
        assert len(product.id) == 32
        assert product.unit_of_measure == 'unité'
        assert product.tax_rate == Decimal('0')
        assert product.is_active is True

    def test_product_code_unique(self, session, product):
        session.add(Product(code=product.code, name='Duplicate'))

        with pytest.raises(Exception):  # IntegrityError
            session.commit()


class TestStockModels:
    """Tests for StockCurrent and StockMovement."""

    def test_stock_relationship(self, session, stocked_product):
        assert stocked_product.stock is not None
        assert stocked_product.stock.quantity_available == Decimal('100')

    def test_one_stock_row_per_product(self, session, stocked_product):
        session.add(StockCurrent(product_id=stocked_product.id, quantity_available=1))

        with pytest.raises(Exception):  # IntegrityError
            session.commit()

    def test_signed_quantity(self):
        incoming = StockMovement(movement_type=MovementType.IN, quantity=Decimal('3'))
        outgoing = StockMovement(movement_type=MovementType.OUT, quantity=Decimal('3'))
        assert incoming.signed_quantity == Decimal('3')
        assert outgoing.signed_quantity == Decimal('-3')

    def test_enums_store_values(self, session, stocked_product):
        movement = session.query(StockMovement).filter(StockMovement.product_id == stocked_product.id).one()
        assert movement.movement_type == MovementType.IN
        assert movement.movement_source == MovementSource.ADJUSTMENT
        assert movement.reference_type == ReferenceType.STOCK_ENTRY
        assert 'stock_entry' in repr(movement)
