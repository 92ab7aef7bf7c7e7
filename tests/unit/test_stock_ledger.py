"""
Unit tests for the stock ledger reconciler.
"""

import pytest
from decimal import Decimal

from gestock.exceptions import (
    InsufficientStockError, NoStockRecordError, ProductNotFoundError, ValidationError
)
from gestock.models import MovementSource, MovementType, ReferenceType, StockMovement
from gestock.services import stock_ledger


def receive(session, product_id, quantity, unit_cost, reference_id):
    return stock_ledger.apply_movements(
        session, [{'product_id': product_id, 'quantity': quantity, 'unit_cost': unit_cost}],
        '2024-02-01', ReferenceType.STOCK_ENTRY, reference_id, stock_ledger.INCREASE, 'user-test'
    )


def withdraw(session, product_id, quantity, reference_id):
    return stock_ledger.apply_movements(
        session, [{'product_id': product_id, 'quantity': quantity, 'unit_price': '99.00'}],
        '2024-02-02', ReferenceType.DELIVERY_NOTE, reference_id, stock_ledger.DECREASE, 'user-test'
    )


class TestArithmetic:
    """Tests for the pure cost and proration formulas."""

    def test_weighted_average_cost(self):
        """(10 x 10 + 10 x 20) / 20 = 15."""
        assert stock_ledger.weighted_average_cost(
            Decimal('10'), Decimal('10.00'), Decimal('10'), Decimal('20')
        ) == Decimal('15.00')

    def test_weighted_average_cost_uses_rounded_average(self):
        """3 x 1.67 + 3 x 3 = 14.01, over 6 gives 2.335, rounded half-up."""
        assert stock_ledger.weighted_average_cost(
            Decimal('3'), Decimal('1.67'), Decimal('3'), Decimal('3')
        ) == Decimal('2.34')

    def test_weighted_average_cost_rounds_half_up(self):
        assert stock_ledger.weighted_average_cost(
            Decimal('0'), Decimal('0'), Decimal('1'), Decimal('12.345')
        ) == Decimal('12.35')

    def test_prorate_line_total(self):
        assert stock_ledger.prorate_line_total(Decimal('100.00'), Decimal('3'), Decimal('1')) == Decimal('33.33')
        assert stock_ledger.prorate_line_total(Decimal('500.00'), Decimal('10'), Decimal('4')) == Decimal('200.00')

    def test_prorate_line_total_rejects_zero_quantity(self):
        with pytest.raises(ValidationError):
            stock_ledger.prorate_line_total(Decimal('100.00'), Decimal('0'), Decimal('1'))

    def test_normalize_items(self):
        items = stock_ledger.normalize_items([{'product_id': 'p1', 'quantity': '2.5', 'unit_price': 7}])
        assert items == [{'product_id': 'p1', 'quantity': Decimal('2.500'), 'unit_cost': Decimal('7.00')}]

    @pytest.mark.parametrize('item', [
        {'product_id': 'p1', 'quantity': 0, 'unit_cost': 1},
        {'product_id': 'p1', 'quantity': -3, 'unit_cost': 1},
        {'product_id': '', 'quantity': 1, 'unit_cost': 1},
        {'product_id': 'p1', 'quantity': 'abc', 'unit_cost': 1},
        {'product_id': 'p1', 'quantity': 1, 'unit_cost': -1},
    ])
    def test_normalize_items_rejects_invalid_lines(self, item):
        with pytest.raises(ValidationError):
            stock_ledger.normalize_items([item])


class TestApplyMovements:
    """Tests for apply_movements."""

    def test_first_receipt_creates_stock_row(self, session, product, stock_of):
        """A receipt for a product without stock creates its row at the unit cost."""
        movements = receive(session, product.id, 10, '12.50', 'entry-1')

        stock = stock_of(product.id)
        assert stock.quantity_available == Decimal('10')
        assert stock.average_cost == Decimal('12.50')
        assert stock.movement_sequence == 1
        assert stock.last_movement_date.isoformat() == '2024-02-01'

        assert len(movements) == 1
        assert movements[0].movement_type == MovementType.IN
        assert movements[0].movement_source == MovementSource.ADJUSTMENT
        assert movements[0].created_by == 'user-test'

    def test_receipts_update_weighted_average(self, session, product, stock_of):
        receive(session, product.id, 10, '10.00', 'entry-1')
        receive(session, product.id, 10, '20.00', 'entry-2')

        stock = stock_of(product.id)
        assert stock.quantity_available == Decimal('20')
        assert stock.average_cost == Decimal('15.00')

    def test_three_receipts_average_from_rounded_cost(self, session, product, stock_of):
        receive(session, product.id, 1, '1.00', 'entry-1')
        receive(session, product.id, 2, '2.00', 'entry-2')
        assert stock_of(product.id).average_cost == Decimal('1.67')

        receive(session, product.id, 3, '3.00', 'entry-3')

        stock = stock_of(product.id)
        assert stock.quantity_available == Decimal('6')
        assert stock.average_cost == Decimal('2.34')

    def test_movements_are_numbered_per_product(self, session, product, product_b):
        first = receive(session, product.id, 1, '1.00', 'entry-1')
        other = receive(session, product_b.id, 1, '1.00', 'entry-2')
        second = receive(session, product.id, 1, '1.00', 'entry-3')

        assert [first[0].sequence, second[0].sequence] == [1, 2]
        assert other[0].sequence == 1

    def test_withdrawal_keeps_average_cost(self, session, stocked_product, stock_of):
        """Outgoing movements are valued at the average cost and leave it untouched."""
        movements = withdraw(session, stocked_product.id, 30, 'note-1')

        stock = stock_of(stocked_product.id)
        assert stock.quantity_available == Decimal('70')
        assert stock.average_cost == Decimal('10.00')
        assert movements[0].movement_type == MovementType.OUT
        assert movements[0].movement_source == MovementSource.SALE_LOCAL
        assert movements[0].unit_cost == Decimal('10.00')

    def test_withdrawal_without_stock_row(self, session, product):
        with pytest.raises(NoStockRecordError):
            withdraw(session, product.id, 1, 'note-1')

    def test_insufficient_stock(self, session, stocked_product, stock_of):
        with pytest.raises(InsufficientStockError) as exc_info:
            withdraw(session, stocked_product.id, 101, 'note-1')

        error = exc_info.value
        assert error.status_code == 409
        assert error.product_id == stocked_product.id
        assert error.current_quantity == Decimal('100')
        assert error.attempted_quantity == Decimal('101')
        assert 'Quantité insuffisante en stock' in error.message

        session.rollback()
        assert stock_of(stocked_product.id).quantity_available == Decimal('100')

    def test_unknown_product(self, session):
        with pytest.raises(ProductNotFoundError):
            receive(session, 'does-not-exist', 1, 1, 'entry-1')

    def test_failure_leaves_no_partial_effect(self, session, stocked_product, product_b, stock_of):
        """A batch failing on its second line is undone as a whole by the caller's rollback."""
        items = [
            {'product_id': stocked_product.id, 'quantity': 5, 'unit_price': 1},
            {'product_id': product_b.id, 'quantity': 5, 'unit_price': 1},
        ]
        with pytest.raises(NoStockRecordError):
            stock_ledger.apply_movements(
                session, items, '2024-02-02', ReferenceType.DELIVERY_NOTE, 'note-1', stock_ledger.DECREASE
            )
        session.rollback()

        assert stock_of(stocked_product.id).quantity_available == Decimal('100')
        assert session.query(StockMovement).filter(StockMovement.reference_id == 'note-1').count() == 0

    def test_unknown_direction(self, session, product):
        with pytest.raises(ValueError):
            stock_ledger.apply_movements(
                session, [{'product_id': product.id, 'quantity': 1}], '2024-02-02',
                ReferenceType.STOCK_ENTRY, 'entry-1', 'sideways'
            )


class TestReverseMovements:
    """Tests for reverse_movements."""

    def test_nothing_to_reverse(self, session):
        assert stock_ledger.reverse_movements(session, ReferenceType.PURCHASE_ORDER, 'unknown') == 0

    def test_reverse_withdrawal(self, session, stocked_product, stock_of):
        withdraw(session, stocked_product.id, 40, 'note-1')

        assert stock_ledger.reverse_movements(session, ReferenceType.DELIVERY_NOTE, 'note-1') == 1

        stock = stock_of(stocked_product.id)
        assert stock.quantity_available == Decimal('100')
        assert stock.average_cost == Decimal('10.00')
        assert stock_ledger.get_reference_movements(session, ReferenceType.DELIVERY_NOTE, 'note-1') == []

    def test_reverse_receipt_restores_average(self, session, product, stock_of):
        receive(session, product.id, 10, '10.00', 'entry-1')
        receive(session, product.id, 10, '20.00', 'entry-2')

        stock_ledger.reverse_movements(session, ReferenceType.STOCK_ENTRY, 'entry-2')

        stock = stock_of(product.id)
        assert stock.quantity_available == Decimal('10')
        assert stock.average_cost == Decimal('10.00')

    def test_reverse_latest_receipt_restores_previous_average(self, session, product, stock_of):
        receive(session, product.id, 1, '1.00', 'entry-1')
        receive(session, product.id, 2, '2.00', 'entry-2')
        receive(session, product.id, 3, '3.00', 'entry-3')

        stock_ledger.reverse_movements(session, ReferenceType.STOCK_ENTRY, 'entry-3')

        stock = stock_of(product.id)
        assert stock.quantity_available == Decimal('3')
        assert stock.average_cost == Decimal('1.67')

    def test_reverse_older_receipt_backs_cost_out(self, session, product, stock_of):
        """With later movements the receipt cost is removed from the current average."""
        receive(session, product.id, 10, '10.00', 'entry-1')
        receive(session, product.id, 10, '20.00', 'entry-2')
        withdraw(session, product.id, 5, 'note-1')

        stock_ledger.reverse_movements(session, ReferenceType.STOCK_ENTRY, 'entry-2')

        # (15 x 15.00 - 10 x 20.00) / 5
        stock = stock_of(product.id)
        assert stock.quantity_available == Decimal('5')
        assert stock.average_cost == Decimal('5.00')

    def test_reverse_to_zero_restores_previous_average(self, session, product, stock_of):
        receive(session, product.id, 10, '10.00', 'entry-1')
        withdraw(session, product.id, 10, 'note-1')
        receive(session, product.id, 5, '20.00', 'entry-2')
        assert stock_of(product.id).average_cost == Decimal('20.00')

        stock_ledger.reverse_movements(session, ReferenceType.STOCK_ENTRY, 'entry-2')

        stock = stock_of(product.id)
        assert stock.quantity_available == Decimal('0')
        assert stock.average_cost == Decimal('10.00')

    def test_reverse_consumed_receipt(self, session, product, stock_of):
        """Goods already sold cannot be un-received."""
        receive(session, product.id, 10, '10.00', 'entry-1')
        withdraw(session, product.id, 8, 'note-1')

        with pytest.raises(InsufficientStockError):
            stock_ledger.reverse_movements(session, ReferenceType.STOCK_ENTRY, 'entry-1')

    def test_reversal_date_updates_last_movement_date(self, session, stocked_product, stock_of):
        withdraw(session, stocked_product.id, 1, 'note-1')
        stock_ledger.reverse_movements(session, ReferenceType.DELIVERY_NOTE, 'note-1', '2024-03-15')
        assert stock_of(stocked_product.id).last_movement_date.isoformat() == '2024-03-15'


class TestReconcile:
    """Tests for reconcile."""

    def test_reconcile_replaces_movements(self, session, product, stock_of):
        receive(session, product.id, 10, '10.00', 'order-1')

        movements = stock_ledger.reconcile(
            session,
            [{'product_id': product.id, 'quantity': 10}],
            [{'product_id': product.id, 'quantity': 6, 'unit_cost': '10.00'}],
            ReferenceType.STOCK_ENTRY, 'order-1', '2024-02-03', stock_ledger.INCREASE
        )

        assert len(movements) == 1
        assert stock_of(product.id).quantity_available == Decimal('6')
        recorded = stock_ledger.get_reference_movements(session, ReferenceType.STOCK_ENTRY, 'order-1')
        assert [m.quantity for m in recorded] == [Decimal('6')]

    def test_reconcile_to_no_items(self, session, stocked_product, stock_of):
        withdraw(session, stocked_product.id, 10, 'note-1')

        movements = stock_ledger.reconcile(
            session, [{'product_id': stocked_product.id, 'quantity': 10}], [],
            ReferenceType.DELIVERY_NOTE, 'note-1', '2024-02-03', stock_ledger.DECREASE
        )

        assert movements == []
        assert stock_of(stocked_product.id).quantity_available == Decimal('100')

    def test_quantity_delta(self):
        delta = stock_ledger._quantity_delta(
            [{'product_id': 'a', 'quantity': 5}, {'product_id': 'b', 'quantity': 2}],
            [{'product_id': 'a', 'quantity': 5}, {'product_id': 'b', 'quantity': 3}]
        )
        assert delta == {'b': Decimal('1')}


class TestVerifyLedger:
    """Tests for verify_ledger."""

    def test_consistent_ledger(self, session, stocked_product):
        withdraw(session, stocked_product.id, 25, 'note-1')
        assert stock_ledger.verify_ledger(session) == []

    def test_detects_drift(self, session, stocked_product, stock_of):
        stock = stock_of(stocked_product.id)
        stock.quantity_available = Decimal('90')
        session.flush()

        mismatches = stock_ledger.verify_ledger(session)

        assert len(mismatches) == 1
        assert mismatches[0]['product_id'] == stocked_product.id
        assert mismatches[0]['recorded_quantity'] == Decimal('90')
        assert mismatches[0]['ledger_quantity'] == Decimal('100')
