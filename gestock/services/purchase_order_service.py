"""
Purchase order service.

A purchase order only affects stock while it is "received": receiving it
records "in" movements for its items, cancelling a received order reverses
them, and editing a received order reconciles them.
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError

from gestock.exceptions import AlreadyExistsError, NotFoundError, ValidationError
from gestock.models import (
    MovementSource, Partner, PurchaseOrder, PurchaseOrderItem, PurchaseOrderStatus, ReferenceType
)
from gestock.services import stock_ledger
from gestock.services.cache_service import (
    TAG_PURCHASE_ORDERS, TAG_STOCK, TAG_STOCK_MOVEMENTS, invalidate_tags
)
from gestock.services.numbering import generate_purchase_order_number, generate_unique_number
from gestock.utils.number_format import parse_date, parse_optional_date, quantize_money, to_decimal

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    PurchaseOrderStatus.PENDING: {PurchaseOrderStatus.RECEIVED, PurchaseOrderStatus.CANCELLED},
    PurchaseOrderStatus.RECEIVED: {PurchaseOrderStatus.CANCELLED},
    PurchaseOrderStatus.CANCELLED: set(),
}


def create_purchase_order(session, payload: Dict[str, Any], actor_id: Optional[str] = None) -> str:
    """
    Create a purchase order with its items.

    Args:
        payload: order_number (optional, generated when empty), supplier_id,
            order_date, reception_date, status, supplier_order_number,
            total_amount, notes, items [{product_id, quantity, unit_cost, line_total}]

    Returns:
        The new purchase order id.
    """
    items = _prepare_items(payload.get('items') or [])
    status = _parse_status(payload.get('status') or PurchaseOrderStatus.PENDING.value)
    order_number = (payload.get('order_number') or '').strip()

    try:
        if order_number:
            _ensure_number_available(session, order_number)
        else:
            order_number = generate_unique_number(
                session, PurchaseOrder.order_number, generate_purchase_order_number
            )
        _get_supplier(session, payload.get('supplier_id'))

        order = PurchaseOrder(
            order_number=order_number,
            supplier_id=payload['supplier_id'],
            order_date=parse_date(payload.get('order_date'), 'date de commande'),
            reception_date=parse_optional_date(payload.get('reception_date'), 'date de réception'),
            status=status,
            supplier_order_number=payload.get('supplier_order_number') or None,
            total_amount=_total_amount(payload.get('total_amount'), items),
            notes=payload.get('notes') or None,
            created_by=actor_id
        )
        session.add(order)
        session.flush()
        _insert_items(session, order, items)

        if status == PurchaseOrderStatus.RECEIVED:
            _receive(session, order, items, actor_id)

        order_id = order.id
        session.commit()
    except IntegrityError:
        session.rollback()
        raise AlreadyExistsError(_duplicate_message(order_number))
    except Exception:
        session.rollback()
        logger.exception('Error adding purchase order')
        raise

    invalidate_tags(TAG_PURCHASE_ORDERS, TAG_STOCK, TAG_STOCK_MOVEMENTS)
    return order_id


def update_purchase_order(session, order_id: str, payload: Dict[str, Any], actor_id: Optional[str] = None) -> str:
    """
    Replace a purchase order's fields and items, keeping the ledger consistent.

    received -> received reconciles the movements, received -> other reverses
    them, other -> received applies the new items.
    """
    items = _prepare_items(payload.get('items') or [])
    order_number = (payload.get('order_number') or '').strip()

    try:
        order = _get_order(session, order_id, lock=True)
        old_status = order.status
        new_status = _parse_status(payload.get('status') or old_status.value)
        _check_transition(old_status, new_status)

        if not order_number:
            order_number = order.order_number
        elif order_number != order.order_number:
            _ensure_number_available(session, order_number, exclude_id=order.id)
        _get_supplier(session, payload.get('supplier_id'))

        old_items = [_item_dict(item) for item in order.items]

        order.order_number = order_number
        order.supplier_id = payload['supplier_id']
        order.order_date = parse_date(payload.get('order_date'), 'date de commande')
        order.reception_date = parse_optional_date(payload.get('reception_date'), 'date de réception')
        order.status = new_status
        order.supplier_order_number = payload.get('supplier_order_number') or None
        order.total_amount = _total_amount(payload.get('total_amount'), items)
        order.notes = payload.get('notes') or None

        order.items.clear()
        session.flush()
        _insert_items(session, order, items)

        was_received = old_status == PurchaseOrderStatus.RECEIVED
        is_received = new_status == PurchaseOrderStatus.RECEIVED
        if was_received and is_received:
            stock_ledger.reconcile(
                session, old_items, items,
                ReferenceType.PURCHASE_ORDER, order.id, _reception_date(order),
                stock_ledger.INCREASE, actor_id, MovementSource.PURCHASE,
                notes=f'Réception commande {order.order_number}'
            )
        elif was_received:
            stock_ledger.reverse_movements(session, ReferenceType.PURCHASE_ORDER, order.id, date.today())
        elif is_received:
            _receive(session, order, items, actor_id)

        session.commit()
    except IntegrityError:
        session.rollback()
        raise AlreadyExistsError(_duplicate_message(order_number))
    except Exception:
        session.rollback()
        logger.exception(f'Error updating purchase order {order_id}')
        raise

    invalidate_tags(TAG_PURCHASE_ORDERS, TAG_STOCK, TAG_STOCK_MOVEMENTS)
    return order_id


def update_purchase_order_status(
    session,
    order_id: str,
    status: str,
    actor_id: Optional[str] = None,
    reception_date=None
) -> str:
    """
    Move a purchase order through pending -> received | cancelled, received -> cancelled.

    Cancelling a pending order is a pure status write; cancelling a received
    order reverses its receipt.
    """
    new_status = _parse_status(status)

    try:
        order = _get_order(session, order_id, lock=True)
        old_status = order.status
        if old_status == new_status:
            # Release the row lock taken above
            session.rollback()
            return order_id
        _check_transition(old_status, new_status)

        if new_status == PurchaseOrderStatus.RECEIVED:
            if reception_date or not order.reception_date:
                order.reception_date = parse_date(reception_date or date.today(), 'date de réception')
            _receive(session, order, [_item_dict(item) for item in order.items], actor_id)
        elif old_status == PurchaseOrderStatus.RECEIVED:
            stock_ledger.reverse_movements(session, ReferenceType.PURCHASE_ORDER, order.id, date.today())

        order.status = new_status
        session.commit()
    except Exception:
        session.rollback()
        logger.exception(f'Error updating purchase order status {order_id}')
        raise

    logger.info(f'Purchase order {order_id}: {old_status.value} -> {new_status.value}')
    invalidate_tags(TAG_PURCHASE_ORDERS, TAG_STOCK, TAG_STOCK_MOVEMENTS)
    return order_id


def delete_purchase_order(session, order_id: str) -> None:
    delete_purchase_orders(session, [order_id])


def delete_purchase_orders(session, order_ids: List[str]) -> None:
    """Delete purchase orders and undo their stock receipts, all or nothing."""
    try:
        for order_id in order_ids:
            order = _get_order(session, order_id, lock=True)
            stock_ledger.reverse_movements(session, ReferenceType.PURCHASE_ORDER, order.id, date.today())
            session.delete(order)
        session.commit()
    except Exception:
        session.rollback()
        logger.exception(f'Error deleting purchase orders {order_ids}')
        raise

    invalidate_tags(TAG_PURCHASE_ORDERS, TAG_STOCK, TAG_STOCK_MOVEMENTS)


def get_purchase_order(session, order_id: str) -> PurchaseOrder:
    return _get_order(session, order_id)


def list_purchase_orders(session, status: Optional[str] = None) -> List[PurchaseOrder]:
    query = session.query(PurchaseOrder)
    if status:
        query = query.filter(PurchaseOrder.status == _parse_status(status))
    return query.order_by(PurchaseOrder.order_date.desc(), PurchaseOrder.created_at.desc()).all()


# =====================================================
# PRIVATE HELPERS
# =====================================================

def _receive(session, order: PurchaseOrder, items: List[Dict[str, Any]], actor_id: Optional[str]) -> None:
    if not items:
        return
    stock_ledger.apply_movements(
        session, items, _reception_date(order),
        ReferenceType.PURCHASE_ORDER, order.id,
        stock_ledger.INCREASE, actor_id, MovementSource.PURCHASE,
        notes=f'Réception commande {order.order_number}'
    )


def _reception_date(order: PurchaseOrder) -> date:
    return order.reception_date or order.order_date


def _get_order(session, order_id: str, lock: bool = False) -> PurchaseOrder:
    query = session.query(PurchaseOrder).filter(PurchaseOrder.id == order_id)
    if lock:
        query = query.with_for_update()
    order = query.first()
    if not order:
        raise NotFoundError('Bon de commande non trouvé')
    return order


def _get_supplier(session, supplier_id: Optional[str]) -> Partner:
    if not supplier_id:
        raise ValidationError('Le fournisseur est obligatoire')
    supplier = session.get(Partner, supplier_id)
    if not supplier:
        raise NotFoundError('Fournisseur non trouvé')
    return supplier


def _ensure_number_available(session, order_number: str, exclude_id: Optional[str] = None) -> None:
    query = session.query(PurchaseOrder.id).filter(PurchaseOrder.order_number == order_number)
    if exclude_id:
        query = query.filter(PurchaseOrder.id != exclude_id)
    if query.first() is not None:
        raise AlreadyExistsError(_duplicate_message(order_number))


def _duplicate_message(order_number: str) -> str:
    return f'Le numéro de commande "{order_number}" existe déjà. Veuillez utiliser un numéro différent.'


def _parse_status(value) -> PurchaseOrderStatus:
    try:
        return PurchaseOrderStatus(value)
    except ValueError:
        raise ValidationError(f'Statut de commande invalide: {value}')


def _check_transition(old_status: PurchaseOrderStatus, new_status: PurchaseOrderStatus) -> None:
    if old_status != new_status and new_status not in ALLOWED_TRANSITIONS[old_status]:
        raise ValidationError(
            f'Transition de statut invalide: {old_status.value} -> {new_status.value}'
        )


def _prepare_items(raw_items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Validate items and fill line totals (quantity x unit cost) when missing."""
    items = []
    for raw, item in zip(raw_items, stock_ledger.normalize_items(raw_items)):
        line_total = raw.get('line_total')
        item['line_total'] = (
            quantize_money(to_decimal(line_total, 'total de ligne'))
            if line_total not in (None, '')
            else quantize_money(item['quantity'] * item['unit_cost'])
        )
        items.append(item)
    return items


def _insert_items(session, order: PurchaseOrder, items: List[Dict[str, Any]]) -> None:
    for item in items:
        order.items.append(PurchaseOrderItem(
            product_id=item['product_id'],
            quantity=item['quantity'],
            unit_cost=item['unit_cost'],
            line_total=item['line_total']
        ))
    session.flush()


def _item_dict(item: PurchaseOrderItem) -> Dict[str, Any]:
    return {'product_id': item.product_id, 'quantity': item.quantity, 'unit_cost': item.unit_cost}


def _total_amount(total_amount, items: List[Dict[str, Any]]) -> Decimal:
    if total_amount not in (None, ''):
        return quantize_money(to_decimal(total_amount, 'montant total'))
    return quantize_money(sum((item['line_total'] for item in items), Decimal('0')))
