"""
Delivery note cancellation service.

A partial cancellation returns part of the goods of one or more active
delivery notes of a client. Returned quantities go back into stock as "in"
movements at the product's current average cost, and each cancellation
line carries the prorated share of the delivery note line total.

Full cancellations (derived from cancelling a whole delivery note) hold no
movements of their own and are managed through the delivery note status.
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func

from gestock.exceptions import NotFoundError, ValidationError
from gestock.models import (
    DeliveryNote, DeliveryNoteCancellation, DeliveryNoteCancellationItem, DeliveryNoteItem,
    DeliveryNoteStatus, MovementSource, Partner, ReferenceType, StockCurrent
)
from gestock.services import stock_ledger
from gestock.services.cache_service import (
    TAG_CANCELLATIONS, TAG_DELIVERY_NOTES, TAG_STOCK, TAG_STOCK_MOVEMENTS, invalidate_tags
)
from gestock.services.numbering import generate_cancellation_number, generate_unique_number
from gestock.utils.number_format import parse_date, to_decimal

logger = logging.getLogger(__name__)

ZERO = Decimal('0')


def create_partial_cancellation(session, payload: Dict[str, Any], actor_id: Optional[str] = None) -> Dict[str, str]:
    """
    Cancel quantities of delivered items and return them to stock.

    Args:
        payload: client_id, cancellation_date, reason,
            items [{delivery_note_item_id, quantity}]

    Returns:
        {'id', 'cancellation_number'}

    Raises:
        ValidationError: empty items, quantity above what is still available,
            item of another client or of a cancelled delivery note.
    """
    requested = _requested_quantities(payload.get('items') or [])

    try:
        client_id = payload.get('client_id')
        _get_client(session, client_id)
        cancellation_date = parse_date(payload.get('cancellation_date'), "date d'annulation")

        note_items = _load_cancellable_items(session, client_id, requested)
        already_cancelled = _cancelled_quantities(session, list(requested))
        for item_id, quantity in requested.items():
            _check_available(note_items[item_id], quantity, already_cancelled.get(item_id, ZERO))

        note_ids = {item.delivery_note_id for item in note_items.values()}
        cancellation = DeliveryNoteCancellation(
            cancellation_number=generate_unique_number(
                session, DeliveryNoteCancellation.cancellation_number,
                lambda: generate_cancellation_number('delivery_note_cancellation')
            ),
            original_delivery_note_id=next(iter(note_ids)) if len(note_ids) == 1 else None,
            client_id=client_id,
            cancellation_date=cancellation_date,
            reason=payload.get('reason') or None,
            is_full=False,
            created_by=actor_id
        )
        session.add(cancellation)
        session.flush()

        for item_id, quantity in requested.items():
            cancellation.items.append(_new_cancellation_item(note_items[item_id], quantity))
        session.flush()

        stock_ledger.apply_movements(
            session, _return_items(session, cancellation), cancellation_date,
            ReferenceType.DELIVERY_NOTE_CANCELLATION, cancellation.id,
            stock_ledger.INCREASE, actor_id, MovementSource.RETURN,
            notes=f'Annulation {cancellation.cancellation_number}'
        )

        result = {'id': cancellation.id, 'cancellation_number': cancellation.cancellation_number}
        session.commit()
    except Exception:
        session.rollback()
        logger.exception('Error adding delivery note cancellation')
        raise

    invalidate_tags(TAG_CANCELLATIONS, TAG_DELIVERY_NOTES, TAG_STOCK, TAG_STOCK_MOVEMENTS)
    return result


def update_cancellation(session, cancellation_id: str, payload: Dict[str, Any], actor_id: Optional[str] = None) -> str:
    """
    Replace the date, reason and items of a partial cancellation.

    Availability is checked against the quantities cancelled by the other
    cancellations; the returns are reconciled in the ledger.
    """
    requested = _requested_quantities(payload.get('items') or [])

    try:
        cancellation = _get_cancellation(session, cancellation_id, lock=True)
        _ensure_partial(cancellation)

        cancellation_date = parse_date(
            payload.get('cancellation_date') or cancellation.cancellation_date, "date d'annulation"
        )
        note_items = _load_cancellable_items(session, cancellation.client_id, requested)
        cancelled_elsewhere = _cancelled_quantities(session, list(requested), exclude_id=cancellation.id)
        for item_id, quantity in requested.items():
            _check_available(note_items[item_id], quantity, cancelled_elsewhere.get(item_id, ZERO))

        old_items = _return_items(session, cancellation)
        cancellation.cancellation_date = cancellation_date
        if 'reason' in payload:
            cancellation.reason = payload.get('reason') or None

        cancellation.items.clear()
        session.flush()
        for item_id, quantity in requested.items():
            cancellation.items.append(_new_cancellation_item(note_items[item_id], quantity))
        session.flush()

        _reconcile_returns(session, cancellation, old_items, actor_id)
        session.commit()
    except Exception:
        session.rollback()
        logger.exception(f'Error updating cancellation {cancellation_id}')
        raise

    invalidate_tags(TAG_CANCELLATIONS, TAG_DELIVERY_NOTES, TAG_STOCK, TAG_STOCK_MOVEMENTS)
    return cancellation_id


def reduce_cancellation_item(
    session,
    cancellation_id: str,
    item_id: str,
    quantity,
    actor_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Take ``quantity`` out of a cancellation line.

    A line of quantity Q0 and total T0 keeps Q0 - q and T0 * (Q0 - q) / Q0.
    Removing the whole quantity deletes the line, and the cancellation itself
    once it has no line left.

    Returns:
        {'cancellation_id', 'item_deleted', 'cancellation_deleted'}
    """
    quantity = to_decimal(quantity, 'quantité')
    if quantity <= 0:
        raise ValidationError('La quantité doit être supérieure à 0')

    try:
        cancellation = _get_cancellation(session, cancellation_id, lock=True)
        _ensure_partial(cancellation)
        item = next((i for i in cancellation.items if i.id == item_id), None)
        if item is None:
            raise NotFoundError("Produit de l'annulation non trouvé")
        if quantity > item.quantity:
            raise ValidationError(
                f'La quantité à retirer ({quantity}) dépasse la quantité annulée ({item.quantity})'
            )

        old_items = _return_items(session, cancellation)
        item_deleted = quantity == item.quantity
        if item_deleted:
            cancellation.items.remove(item)
        else:
            remaining = item.quantity - quantity
            item.line_total = stock_ledger.prorate_line_total(item.line_total, item.quantity, remaining)
            item.quantity = remaining
        session.flush()

        cancellation_deleted = not cancellation.items
        if cancellation_deleted:
            stock_ledger.reverse_movements(
                session, ReferenceType.DELIVERY_NOTE_CANCELLATION, cancellation.id, date.today()
            )
            session.delete(cancellation)
        else:
            _reconcile_returns(session, cancellation, old_items, actor_id)
        session.commit()
    except Exception:
        session.rollback()
        logger.exception(f'Error reducing item {item_id} of cancellation {cancellation_id}')
        raise

    invalidate_tags(TAG_CANCELLATIONS, TAG_DELIVERY_NOTES, TAG_STOCK, TAG_STOCK_MOVEMENTS)
    return {
        'cancellation_id': cancellation_id,
        'item_deleted': item_deleted,
        'cancellation_deleted': cancellation_deleted,
    }


def delete_cancellation_item(session, cancellation_id: str, item_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
    """Remove a whole line from a cancellation (and the cancellation when it was the last one)."""
    item = (
        session.query(DeliveryNoteCancellationItem)
        .filter(
            DeliveryNoteCancellationItem.id == item_id,
            DeliveryNoteCancellationItem.cancellation_id == cancellation_id
        )
        .first()
    )
    if item is None:
        raise NotFoundError("Produit de l'annulation non trouvé")
    return reduce_cancellation_item(session, cancellation_id, item_id, item.quantity, actor_id)


def delete_cancellation(session, cancellation_id: str) -> None:
    delete_cancellations(session, [cancellation_id])


def delete_cancellations(session, cancellation_ids: List[str]) -> None:
    """
    Delete partial cancellations and take their returns back out of stock.

    Fails with InsufficientStockError when returned goods were consumed since.
    """
    try:
        for cancellation_id in cancellation_ids:
            cancellation = _get_cancellation(session, cancellation_id, lock=True)
            _ensure_partial(cancellation)
            stock_ledger.reverse_movements(
                session, ReferenceType.DELIVERY_NOTE_CANCELLATION, cancellation.id, date.today()
            )
            session.delete(cancellation)
        session.commit()
    except Exception:
        session.rollback()
        logger.exception(f'Error deleting cancellations {cancellation_ids}')
        raise

    invalidate_tags(TAG_CANCELLATIONS, TAG_DELIVERY_NOTES, TAG_STOCK, TAG_STOCK_MOVEMENTS)


def get_cancellation(session, cancellation_id: str) -> DeliveryNoteCancellation:
    return _get_cancellation(session, cancellation_id)


def list_cancellations(session, client_id: Optional[str] = None) -> List[DeliveryNoteCancellation]:
    query = session.query(DeliveryNoteCancellation)
    if client_id:
        query = query.filter(DeliveryNoteCancellation.client_id == client_id)
    return query.order_by(DeliveryNoteCancellation.cancellation_date.desc()).all()


# =====================================================
# PRIVATE HELPERS
# =====================================================

def _requested_quantities(raw_items: List[Dict[str, Any]]) -> Dict[str, Decimal]:
    """Sum requested quantities per delivery note item."""
    if not raw_items:
        raise ValidationError('Veuillez ajouter au moins un produit')
    requested: Dict[str, Decimal] = {}
    for raw in raw_items:
        item_id = raw.get('delivery_note_item_id')
        if not item_id:
            raise ValidationError('Le produit du bon de livraison est obligatoire')
        quantity = to_decimal(raw.get('quantity'), 'quantité')
        if quantity <= 0:
            raise ValidationError('La quantité doit être supérieure à 0')
        requested[item_id] = requested.get(item_id, ZERO) + quantity
    return requested


def _load_cancellable_items(session, client_id: str, requested: Dict[str, Decimal]) -> Dict[str, DeliveryNoteItem]:
    rows = (
        session.query(DeliveryNoteItem, DeliveryNote)
        .join(DeliveryNote, DeliveryNote.id == DeliveryNoteItem.delivery_note_id)
        .filter(DeliveryNoteItem.id.in_(list(requested)))
        .all()
    )
    found = {item.id: (item, note) for item, note in rows}

    items = {}
    for item_id in requested:
        if item_id not in found:
            raise NotFoundError('Produit du bon de livraison non trouvé')
        item, note = found[item_id]
        if note.client_id != client_id:
            raise ValidationError(f'Le bon de livraison {note.note_number} n\'appartient pas à ce client')
        if note.status != DeliveryNoteStatus.ACTIVE:
            raise ValidationError(f'Le bon de livraison {note.note_number} est annulé')
        items[item_id] = item
    return items


def _cancelled_quantities(session, item_ids: List[str], exclude_id: Optional[str] = None) -> Dict[str, Decimal]:
    query = (
        session.query(
            DeliveryNoteCancellationItem.delivery_note_item_id,
            func.sum(DeliveryNoteCancellationItem.quantity)
        )
        .filter(DeliveryNoteCancellationItem.delivery_note_item_id.in_(item_ids))
    )
    if exclude_id:
        query = query.filter(DeliveryNoteCancellationItem.cancellation_id != exclude_id)
    rows = query.group_by(DeliveryNoteCancellationItem.delivery_note_item_id).all()
    return {item_id: to_decimal(total) for item_id, total in rows}


def _check_available(item: DeliveryNoteItem, quantity: Decimal, cancelled: Decimal) -> None:
    available = item.quantity - cancelled
    if quantity > available:
        raise ValidationError(
            f'Quantité à annuler ({quantity}) supérieure à la quantité disponible '
            f'({available}) pour le produit {item.product_id}'
        )


def _new_cancellation_item(item: DeliveryNoteItem, quantity: Decimal) -> DeliveryNoteCancellationItem:
    return DeliveryNoteCancellationItem(
        delivery_note_item_id=item.id,
        product_id=item.product_id,
        quantity=quantity,
        unit_price=item.unit_price,
        discount_percent=item.discount_percent,
        line_total=stock_ledger.prorate_line_total(item.line_total, item.quantity, quantity)
    )


def _return_items(session, cancellation: DeliveryNoteCancellation) -> List[Dict[str, Any]]:
    """Ledger items returning the cancelled quantities at the current average cost."""
    items = []
    for item in cancellation.items:
        stock = session.query(StockCurrent).filter(StockCurrent.product_id == item.product_id).first()
        items.append({
            'product_id': item.product_id,
            'quantity': item.quantity,
            'unit_cost': stock.average_cost if stock else ZERO,
        })
    return items


def _reconcile_returns(session, cancellation: DeliveryNoteCancellation, old_items, actor_id: Optional[str]) -> None:
    stock_ledger.reconcile(
        session, old_items, _return_items(session, cancellation),
        ReferenceType.DELIVERY_NOTE_CANCELLATION, cancellation.id, cancellation.cancellation_date,
        stock_ledger.INCREASE, actor_id, MovementSource.RETURN,
        notes=f'Annulation {cancellation.cancellation_number}'
    )


def _ensure_partial(cancellation: DeliveryNoteCancellation) -> None:
    if cancellation.is_full:
        raise ValidationError(
            'Cette annulation provient de l\'annulation complète d\'un bon de livraison. '
            'Réactivez le bon de livraison pour l\'annuler.'
        )


def _get_cancellation(session, cancellation_id: str, lock: bool = False) -> DeliveryNoteCancellation:
    query = session.query(DeliveryNoteCancellation).filter(DeliveryNoteCancellation.id == cancellation_id)
    if lock:
        query = query.with_for_update()
    cancellation = query.first()
    if not cancellation:
        raise NotFoundError('Annulation non trouvée')
    return cancellation


def _get_client(session, client_id: Optional[str]) -> Partner:
    if not client_id:
        raise ValidationError('Le client est obligatoire')
    client = session.get(Partner, client_id)
    if not client:
        raise NotFoundError('Client non trouvé')
    return client
