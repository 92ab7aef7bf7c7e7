"""
Integration tests for purchase orders and their stock receipts.
"""

import re
import pytest
from datetime import date
from decimal import Decimal

from gestock.exceptions import AlreadyExistsError, InsufficientStockError, NotFoundError, ValidationError
from gestock.models import MovementSource, MovementType, PurchaseOrder, PurchaseOrderStatus, ReferenceType
from gestock.services import purchase_order_service, stock_ledger
from gestock.services.delivery_note_service import create_delivery_note


def order_payload(supplier, product, status='pending', quantity=10, unit_cost='12.00', **extra):
    payload = {
        'supplier_id': supplier.id,
        'order_date': '2024-03-01',
        'status': status,
        'items': [{'product_id': product.id, 'quantity': quantity, 'unit_cost': unit_cost}],
    }
    payload.update(extra)
    return payload


def order_movements(session, order_id):
    return stock_ledger.get_reference_movements(session, ReferenceType.PURCHASE_ORDER, order_id)


class TestCreatePurchaseOrder:

    def test_pending_order_does_not_touch_stock(self, session, supplier, product, stock_of):
        order_id = purchase_order_service.create_purchase_order(
            session, order_payload(supplier, product), 'user-test'
        )

        order = purchase_order_service.get_purchase_order(session, order_id)
        assert order.status == PurchaseOrderStatus.PENDING
        assert re.fullmatch(rf'CMD-ACH-{date.today().year}-\d{{6}}', order.order_number)
        assert order.total_amount == Decimal('120.00')
        assert order.items[0].line_total == Decimal('120.00')
        assert stock_of(product.id) is None
        assert order_movements(session, order_id) == []

    def test_received_order_receives_stock(self, session, supplier, product, stock_of):
        order_id = purchase_order_service.create_purchase_order(
            session, order_payload(supplier, product, status='received', reception_date='2024-03-05'), 'user-test'
        )

        stock = stock_of(product.id)
        assert stock.quantity_available == Decimal('10')
        assert stock.average_cost == Decimal('12.00')

        movements = order_movements(session, order_id)
        assert len(movements) == 1
        assert movements[0].movement_type == MovementType.IN
        assert movements[0].movement_source == MovementSource.PURCHASE
        assert movements[0].movement_date == date(2024, 3, 5)
        assert movements[0].created_by == 'user-test'

    def test_duplicate_order_number(self, session, supplier, product):
        purchase_order_service.create_purchase_order(
            session, order_payload(supplier, product, order_number='CMD-1'), 'user-test'
        )
        with pytest.raises(AlreadyExistsError) as exc_info:
            purchase_order_service.create_purchase_order(
                session, order_payload(supplier, product, order_number='CMD-1'), 'user-test'
            )
        assert exc_info.value.status_code == 409
        assert '"CMD-1" existe déjà' in exc_info.value.message

    def test_unknown_supplier(self, session, product, supplier):
        payload = order_payload(supplier, product)
        payload['supplier_id'] = 'missing'
        with pytest.raises(NotFoundError):
            purchase_order_service.create_purchase_order(session, payload, 'user-test')
        assert session.query(PurchaseOrder).count() == 0

    def test_invalid_item_quantity(self, session, supplier, product):
        with pytest.raises(ValidationError):
            purchase_order_service.create_purchase_order(
                session, order_payload(supplier, product, quantity=0), 'user-test'
            )


class TestPurchaseOrderStatus:

    def test_pending_to_received(self, session, supplier, product, stock_of):
        order_id = purchase_order_service.create_purchase_order(
            session, order_payload(supplier, product), 'user-test'
        )

        purchase_order_service.update_purchase_order_status(
            session, order_id, 'received', 'user-test', reception_date='2024-03-10'
        )

        order = purchase_order_service.get_purchase_order(session, order_id)
        assert order.status == PurchaseOrderStatus.RECEIVED
        assert order.reception_date == date(2024, 3, 10)
        assert stock_of(product.id).quantity_available == Decimal('10')

    def test_received_to_cancelled_reverses_receipt(self, session, supplier, product, stock_of):
        order_id = purchase_order_service.create_purchase_order(
            session, order_payload(supplier, product, status='received'), 'user-test'
        )

        purchase_order_service.update_purchase_order_status(session, order_id, 'cancelled', 'user-test')

        assert stock_of(product.id).quantity_available == Decimal('0')
        assert order_movements(session, order_id) == []

    def test_same_status_is_noop(self, session, supplier, product, stock_of):
        order_id = purchase_order_service.create_purchase_order(
            session, order_payload(supplier, product, status='received'), 'user-test'
        )
        purchase_order_service.update_purchase_order_status(session, order_id, 'received', 'user-test')
        # No transaction (and no row lock) is left open
        assert not session.in_transaction()

        assert stock_of(product.id).quantity_available == Decimal('10')
        assert len(order_movements(session, order_id)) == 1

    def test_cancelled_order_cannot_be_received(self, session, supplier, product):
        order_id = purchase_order_service.create_purchase_order(
            session, order_payload(supplier, product, status='cancelled'), 'user-test'
        )
        with pytest.raises(ValidationError):
            purchase_order_service.update_purchase_order_status(session, order_id, 'received', 'user-test')

    def test_received_cannot_go_back_to_pending(self, session, supplier, product):
        order_id = purchase_order_service.create_purchase_order(
            session, order_payload(supplier, product, status='received'), 'user-test'
        )
        with pytest.raises(ValidationError):
            purchase_order_service.update_purchase_order_status(session, order_id, 'pending', 'user-test')

    def test_cannot_cancel_consumed_receipt(self, session, supplier, customer, product, stock_of):
        """Cancelling a receipt whose goods were sold fails and changes nothing."""
        order_id = purchase_order_service.create_purchase_order(
            session, order_payload(supplier, product, status='received'), 'user-test'
        )
        create_delivery_note(session, {
            'client_id': customer.id,
            'note_date': '2024-03-02',
            'items': [{'product_id': product.id, 'quantity': 8, 'unit_price': '20.00'}],
        }, 'user-test')

        with pytest.raises(InsufficientStockError):
            purchase_order_service.update_purchase_order_status(session, order_id, 'cancelled', 'user-test')

        session.expire_all()
        assert purchase_order_service.get_purchase_order(session, order_id).status == PurchaseOrderStatus.RECEIVED
        assert stock_of(product.id).quantity_available == Decimal('2')


class TestUpdatePurchaseOrder:

    def test_update_received_order_reconciles(self, session, supplier, product, product_b, stock_of):
        order_id = purchase_order_service.create_purchase_order(
            session, order_payload(supplier, product, status='received'), 'user-test'
        )

        payload = order_payload(supplier, product, status='received', quantity=6, unit_cost='12.00')
        payload['items'].append({'product_id': product_b.id, 'quantity': 4, 'unit_cost': '5.00'})
        purchase_order_service.update_purchase_order(session, order_id, payload, 'user-test')

        assert stock_of(product.id).quantity_available == Decimal('6')
        assert stock_of(product_b.id).quantity_available == Decimal('4')
        assert len(order_movements(session, order_id)) == 2

        order = purchase_order_service.get_purchase_order(session, order_id)
        assert len(order.items) == 2
        assert order.total_amount == Decimal('92.00')

    def test_update_pending_to_received(self, session, supplier, product, stock_of):
        order_id = purchase_order_service.create_purchase_order(
            session, order_payload(supplier, product), 'user-test'
        )
        purchase_order_service.update_purchase_order(
            session, order_id, order_payload(supplier, product, status='received', quantity=3), 'user-test'
        )
        assert stock_of(product.id).quantity_available == Decimal('3')

    def test_update_received_to_cancelled(self, session, supplier, product, stock_of):
        order_id = purchase_order_service.create_purchase_order(
            session, order_payload(supplier, product, status='received'), 'user-test'
        )
        purchase_order_service.update_purchase_order(
            session, order_id, order_payload(supplier, product, status='cancelled'), 'user-test'
        )
        assert stock_of(product.id).quantity_available == Decimal('0')
        assert order_movements(session, order_id) == []

    def test_update_unknown_order(self, session, supplier, product):
        with pytest.raises(NotFoundError) as exc_info:
            purchase_order_service.update_purchase_order(
                session, 'missing', order_payload(supplier, product), 'user-test'
            )
        assert exc_info.value.message == 'Bon de commande non trouvé'


class TestDeletePurchaseOrder:

    def test_delete_received_order(self, session, supplier, product, stock_of):
        order_id = purchase_order_service.create_purchase_order(
            session, order_payload(supplier, product, status='received'), 'user-test'
        )

        purchase_order_service.delete_purchase_order(session, order_id)

        assert session.get(PurchaseOrder, order_id) is None
        assert stock_of(product.id).quantity_available == Decimal('0')
        assert order_movements(session, order_id) == []

    def test_bulk_delete_is_all_or_nothing(self, session, supplier, product):
        order_id = purchase_order_service.create_purchase_order(
            session, order_payload(supplier, product), 'user-test'
        )
        with pytest.raises(NotFoundError):
            purchase_order_service.delete_purchase_orders(session, [order_id, 'missing'])

        assert session.get(PurchaseOrder, order_id) is not None
