"""
End-to-end ledger properties: exact reversal, stock boundaries, weighted
average and the purchase/sale scenarios.
"""

import pytest
from decimal import Decimal

from gestock.exceptions import InsufficientStockError
from gestock.models import ReferenceType
from gestock.services import (
    cancellation_service, delivery_note_service, purchase_order_service, stock_ledger, stock_service
)


def ledger_sum(session, reference_type, reference_id):
    return sum(
        (m.signed_quantity for m in stock_ledger.get_reference_movements(session, reference_type, reference_id)),
        Decimal('0')
    )


def snapshot(stock):
    return stock.quantity_available, stock.average_cost


class TestLedgerInvariants:

    def test_movements_sum_to_document_quantities(self, session, stocked_product, stocked_product_b):
        items = [
            {'product_id': stocked_product.id, 'quantity': '2.5', 'unit_price': 1},
            {'product_id': stocked_product_b.id, 'quantity': 4, 'unit_price': 1},
            {'product_id': stocked_product.id, 'quantity': 1, 'unit_price': 1},
        ]
        stock_ledger.apply_movements(
            session, items, '2024-06-01', ReferenceType.DELIVERY_NOTE, 'note-1', stock_ledger.DECREASE
        )

        assert ledger_sum(session, ReferenceType.DELIVERY_NOTE, 'note-1') == Decimal('-7.5')

    def test_receipt_reversal_is_exact(self, session, stocked_product, stock_of):
        before = snapshot(stock_of(stocked_product.id))

        stock_ledger.apply_movements(session, [
            {'product_id': stocked_product.id, 'quantity': 7, 'unit_cost': '13.37'},
            {'product_id': stocked_product.id, 'quantity': 3, 'unit_cost': '9.99'},
        ], '2024-06-01', ReferenceType.STOCK_ENTRY, 'entry-x', stock_ledger.INCREASE)
        assert stock_of(stocked_product.id).average_cost == Decimal('10.21')

        stock_ledger.reverse_movements(session, ReferenceType.STOCK_ENTRY, 'entry-x')

        assert snapshot(stock_of(stocked_product.id)) == before

    def test_withdrawal_reversal_is_exact(self, session, stocked_product, stock_of):
        stock_ledger.apply_movements(session, [
            {'product_id': stocked_product.id, 'quantity': 3, 'unit_cost': '15.00'},
        ], '2024-06-01', ReferenceType.STOCK_ENTRY, 'entry-x', stock_ledger.INCREASE)
        before = snapshot(stock_of(stocked_product.id))

        stock_ledger.apply_movements(session, [
            {'product_id': stocked_product.id, 'quantity': 33, 'unit_price': '80.00'},
        ], '2024-06-02', ReferenceType.DELIVERY_NOTE, 'note-x', stock_ledger.DECREASE)
        stock_ledger.reverse_movements(session, ReferenceType.DELIVERY_NOTE, 'note-x')

        assert snapshot(stock_of(stocked_product.id)) == before

    def test_second_reversal_is_noop(self, session, stocked_product, stock_of):
        stock_ledger.apply_movements(session, [
            {'product_id': stocked_product.id, 'quantity': 5, 'unit_price': 1},
        ], '2024-06-02', ReferenceType.DELIVERY_NOTE, 'note-x', stock_ledger.DECREASE)

        assert stock_ledger.reverse_movements(session, ReferenceType.DELIVERY_NOTE, 'note-x') == 1
        assert stock_ledger.reverse_movements(session, ReferenceType.DELIVERY_NOTE, 'note-x') == 0
        assert stock_of(stocked_product.id).quantity_available == Decimal('100')

    def test_withdrawing_exact_stock(self, session, stocked_product, stock_of):
        stock_ledger.apply_movements(session, [
            {'product_id': stocked_product.id, 'quantity': 100, 'unit_price': 1},
        ], '2024-06-02', ReferenceType.DELIVERY_NOTE, 'note-x', stock_ledger.DECREASE)

        assert stock_of(stocked_product.id).quantity_available == Decimal('0')

    def test_withdrawing_just_above_stock(self, session, stocked_product, stock_of):
        with pytest.raises(InsufficientStockError):
            stock_ledger.apply_movements(session, [
                {'product_id': stocked_product.id, 'quantity': '100.001', 'unit_price': 1},
            ], '2024-06-02', ReferenceType.DELIVERY_NOTE, 'note-x', stock_ledger.DECREASE)
        session.rollback()

        assert snapshot(stock_of(stocked_product.id)) == (Decimal('100'), Decimal('10.00'))

    def test_weighted_average_of_two_receipts(self, session, product, stock_of):
        stock_service.add_stock_entry(session, [
            {'product_id': product.id, 'quantity': 5, 'unit_cost': 100, 'movement_date': '2024-06-01'}
        ])
        assert stock_of(product.id).average_cost == Decimal('100.00')

        stock_service.add_stock_entry(session, [
            {'product_id': product.id, 'quantity': 3, 'unit_cost': 60, 'movement_date': '2024-06-02'}
        ])
        assert stock_of(product.id).average_cost == Decimal('85.00')


class TestScenarios:

    def test_proportional_cancellation(self, session, customer, stocked_product):
        """Q0=10, T0=1000, cancelling 3 leaves 7 and 700.00."""
        note = delivery_note_service.create_delivery_note(session, {
            'client_id': customer.id,
            'note_date': '2024-06-01',
            'items': [{'product_id': stocked_product.id, 'quantity': 10, 'unit_price': '100.00'}],
        }, 'user-test')
        note_item_id = delivery_note_service.get_delivery_note(session, note['id']).items[0].id
        cancellation = cancellation_service.create_partial_cancellation(session, {
            'client_id': customer.id,
            'cancellation_date': '2024-06-02',
            'items': [{'delivery_note_item_id': note_item_id, 'quantity': 10}],
        }, 'user-test')
        line = cancellation_service.get_cancellation(session, cancellation['id']).items[0]
        assert line.line_total == Decimal('1000.00')

        cancellation_service.reduce_cancellation_item(session, cancellation['id'], line.id, 3, 'user-test')

        line = cancellation_service.get_cancellation(session, cancellation['id']).items[0]
        assert line.quantity == Decimal('7')
        assert line.line_total == Decimal('700.00')

    def test_received_then_cancelled_purchase_order(self, session, supplier, product, stock_of):
        order_id = purchase_order_service.create_purchase_order(session, {
            'supplier_id': supplier.id,
            'order_date': '2024-06-01',
            'status': 'received',
            'items': [{'product_id': product.id, 'quantity': 5, 'unit_cost': 100}],
        }, 'user-test')
        assert snapshot(stock_of(product.id)) == (Decimal('5'), Decimal('100.00'))

        purchase_order_service.update_purchase_order_status(session, order_id, 'cancelled', 'user-test')

        assert snapshot(stock_of(product.id)) == (Decimal('0'), Decimal('100.00'))
        assert stock_ledger.get_reference_movements(session, ReferenceType.PURCHASE_ORDER, order_id) == []

    @pytest.mark.parametrize('undo', ['cancel', 'delete'])
    def test_delivery_note_restores_stock(self, session, customer, product, stock_of, undo):
        stock_service.add_stock_entry(session, [
            {'product_id': product.id, 'quantity': 10, 'unit_cost': 30, 'movement_date': '2024-06-01'}
        ])
        note = delivery_note_service.create_delivery_note(session, {
            'client_id': customer.id,
            'note_date': '2024-06-02',
            'items': [{'product_id': product.id, 'quantity': 2, 'unit_price': 50}],
        }, 'user-test')
        assert stock_of(product.id).quantity_available == Decimal('8')

        if undo == 'cancel':
            delivery_note_service.update_delivery_note_status(session, note['id'], 'cancelled', 'user-test')
        else:
            item_id = delivery_note_service.get_delivery_note(session, note['id']).items[0].id
            delivery_note_service.delete_delivery_note_item(session, note['id'], item_id, 'user-test')
            delivery_note_service.delete_delivery_note(session, note['id'])

        assert stock_of(product.id).quantity_available == Decimal('10')
