"""
Delivery note service.

An active delivery note holds one "out" movement per item. Cancelling the
note reverses them and records a derived full cancellation; reactivating it
re-applies them. Items referenced by a cancellation are protected: they can
be edited but not removed, and never below the quantity already cancelled.
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from flask import current_app, has_app_context
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from gestock.exceptions import AlreadyExistsError, NotFoundError, ValidationError
from gestock.models import (
    DeliveryNote, DeliveryNoteCancellation, DeliveryNoteCancellationItem, DeliveryNoteItem,
    DeliveryNoteStatus, DeliveryNoteType, Invoice, MovementSource, Partner, ReferenceType
)
from gestock.services import stock_ledger
from gestock.services.cache_service import (
    TAG_CANCELLATIONS, TAG_DELIVERY_NOTES, TAG_INVOICES, TAG_PAYMENTS,
    TAG_STOCK, TAG_STOCK_MOVEMENTS, invalidate_tags
)
from gestock.services.numbering import (
    generate_cancellation_number, generate_delivery_note_number, generate_unique_number
)
from gestock.utils.number_format import parse_date, quantize_money, to_decimal

logger = logging.getLogger(__name__)

HUNDRED = Decimal('100')
DEFAULT_CURRENCY = 'DZD'


def create_delivery_note(session, payload: Dict[str, Any], actor_id: Optional[str] = None) -> Dict[str, str]:
    """
    Create a delivery note and withdraw its items from stock.

    Args:
        payload: note_type, client_id, note_date, currency,
            destination_country, delivery_location, notes,
            items [{product_id, quantity, unit_price, discount_percent, line_total}]

    Returns:
        {'id', 'note_number'}
    """
    items = _prepare_items(payload.get('items') or [])
    if not items:
        raise ValidationError('Veuillez ajouter au moins un produit')
    note_type = _parse_note_type(payload.get('note_type') or DeliveryNoteType.LOCAL.value)

    try:
        _get_client(session, payload.get('client_id'))
        note_number = generate_unique_number(
            session, DeliveryNote.note_number,
            lambda: generate_delivery_note_number(note_type.value)
        )

        note = DeliveryNote(
            note_number=note_number,
            note_type=note_type,
            client_id=payload['client_id'],
            note_date=parse_date(payload.get('note_date'), 'date du bon'),
            status=DeliveryNoteStatus.ACTIVE,
            currency=payload.get('currency') or _default_currency(),
            destination_country=payload.get('destination_country') or None,
            delivery_location=payload.get('delivery_location') or None,
            notes=payload.get('notes') or None,
            created_by=actor_id
        )
        session.add(note)
        session.flush()

        for item in items:
            note.items.append(_new_item(item))
        session.flush()

        _withdraw(session, note, actor_id)

        result = {'id': note.id, 'note_number': note.note_number}
        session.commit()
    except Exception:
        session.rollback()
        logger.exception('Error adding delivery note')
        raise

    invalidate_tags(TAG_DELIVERY_NOTES, TAG_STOCK, TAG_STOCK_MOVEMENTS)
    return result


def update_delivery_note(session, note_id: str, payload: Dict[str, Any], actor_id: Optional[str] = None) -> str:
    """
    Replace a delivery note's fields and items.

    The note's movements are reversed, the items replaced (protected items are
    updated in place) and the "out" movements re-applied for every item.
    """
    items = _prepare_items(payload.get('items') or [], keep_ids=True)
    if not items:
        raise ValidationError('Veuillez ajouter au moins un produit')

    note_number = (payload.get('note_number') or '').strip()

    try:
        note = _get_note(session, note_id, lock=True)
        if note.status == DeliveryNoteStatus.CANCELLED:
            raise ValidationError(
                'Impossible de modifier un bon de livraison annulé. Veuillez d\'abord le réactiver.'
            )

        if note_number and note_number != note.note_number:
            _ensure_number_available(session, note_number, note.id)
            note.note_number = note_number
        _get_client(session, payload.get('client_id'))

        note.note_type = _parse_note_type(payload.get('note_type') or note.note_type.value)
        note.client_id = payload['client_id']
        note.note_date = parse_date(payload.get('note_date'), 'date du bon')
        note.currency = payload.get('currency') or note.currency or _default_currency()
        note.destination_country = payload.get('destination_country', note.destination_country)
        note.delivery_location = payload.get('delivery_location', note.delivery_location)
        note.notes = payload.get('notes', note.notes)

        # 1) Reverse existing stock movements
        stock_ledger.reverse_movements(session, ReferenceType.DELIVERY_NOTE, note.id, note.note_date)

        # 2) Replace items, keeping the ones referenced by cancellations
        cancelled = _cancelled_quantities(session, note.id)
        existing = {item.id: item for item in note.items}
        input_ids = {item.get('id') for item in items if item.get('id')}

        for item_id in cancelled:
            if item_id not in input_ids:
                product = existing[item_id].product_id
                raise ValidationError(
                    f'Le produit {product} ne peut pas être supprimé car il est référencé par une annulation'
                )

        for item_id, item in existing.items():
            if item_id not in cancelled:
                note.items.remove(item)
        session.flush()

        for data in items:
            item_id = data.get('id')
            if item_id in cancelled:
                _update_protected_item(existing[item_id], data, cancelled[item_id])
            else:
                note.items.append(_new_item(data))
        session.flush()

        # 3) Re-apply "out" movements for all items
        _withdraw(session, note, actor_id)

        session.commit()
    except IntegrityError:
        session.rollback()
        raise AlreadyExistsError(
            f'Le numéro de bon "{note_number}" existe déjà. Veuillez utiliser un numéro différent.'
        )
    except Exception:
        session.rollback()
        logger.exception(f'Error updating delivery note {note_id}')
        raise

    invalidate_tags(TAG_DELIVERY_NOTES, TAG_STOCK, TAG_STOCK_MOVEMENTS)
    return note_id


def update_delivery_note_status(session, note_id: str, status: str, actor_id: Optional[str] = None) -> str:
    """
    Switch a delivery note between active and cancelled.

    active -> cancelled reverses the note's movements and records a full
    cancellation holding a copy of every item. cancelled -> active re-applies
    the movements and deletes that cancellation. Same status is a no-op.
    """
    new_status = _parse_status(status)

    try:
        note = _get_note(session, note_id, lock=True)
        old_status = note.status
        if old_status == new_status:
            # Release the row lock taken above
            session.rollback()
            return note_id

        if new_status == DeliveryNoteStatus.CANCELLED:
            if _has_partial_cancellations(session, note.id):
                raise ValidationError(
                    'Ce bon de livraison fait l\'objet d\'annulations partielles. '
                    'Veuillez d\'abord supprimer ces annulations.'
                )
            stock_ledger.reverse_movements(session, ReferenceType.DELIVERY_NOTE, note.id, date.today())
            _record_full_cancellation(session, note, actor_id)
        else:
            _withdraw(session, note, actor_id)
            for cancellation in _full_cancellations(session, note.id):
                session.delete(cancellation)

        note.status = new_status
        session.commit()
    except Exception:
        session.rollback()
        logger.exception(f'Error updating delivery note status {note_id}')
        raise

    logger.info(f'Delivery note {note_id}: {old_status.value} -> {new_status.value}')
    invalidate_tags(TAG_DELIVERY_NOTES, TAG_CANCELLATIONS, TAG_STOCK, TAG_STOCK_MOVEMENTS)
    return note_id


def delete_delivery_note_item(session, note_id: str, item_id: str, actor_id: Optional[str] = None) -> str:
    """Remove one item from a delivery note and reconcile the note's movements."""
    try:
        note = _get_note(session, note_id, lock=True)
        item = next((i for i in note.items if i.id == item_id), None)
        if item is None:
            raise NotFoundError('Produit du bon de livraison non trouvé')
        if item_id in _cancelled_quantities(session, note.id):
            raise ValidationError(
                'Impossible de supprimer ce produit car il est référencé par une annulation'
            )

        old_items = _ledger_items(note)
        note.items.remove(item)
        session.flush()

        if note.status == DeliveryNoteStatus.ACTIVE:
            stock_ledger.reconcile(
                session, old_items, _ledger_items(note),
                ReferenceType.DELIVERY_NOTE, note.id, note.note_date,
                stock_ledger.DECREASE, actor_id, _movement_source(note),
                notes=f'Bon de livraison {note.note_number}'
            )
        session.commit()
    except Exception:
        session.rollback()
        logger.exception(f'Error deleting item {item_id} of delivery note {note_id}')
        raise

    invalidate_tags(TAG_DELIVERY_NOTES, TAG_STOCK, TAG_STOCK_MOVEMENTS)
    return note_id


def delete_delivery_note(session, note_id: str) -> None:
    delete_delivery_notes(session, [note_id])


def delete_delivery_notes(session, note_ids: List[str]) -> None:
    """
    Delete empty delivery notes with their invoices, payments and cancellations.

    A note that still has items is refused: its items must be removed first.
    """
    if not note_ids:
        raise ValidationError('Aucun bon de livraison sélectionné')

    try:
        notes = [_get_note(session, note_id, lock=True) for note_id in note_ids]
        with_items = [note for note in notes if note.items]
        if with_items:
            if len(with_items) > 1:
                message = ('Impossible de supprimer ces bons de livraison car ils contiennent des produits. '
                           'Veuillez d\'abord supprimer tous les produits.')
            else:
                message = ('Impossible de supprimer ce bon de livraison car il contient des produits. '
                           'Veuillez d\'abord supprimer tous les produits.')
            raise ValidationError(message)

        for note in notes:
            stock_ledger.reverse_movements(session, ReferenceType.DELIVERY_NOTE, note.id, date.today())
            for invoice in session.query(Invoice).filter(Invoice.delivery_note_id == note.id).all():
                session.delete(invoice)
            cancellations = (
                session.query(DeliveryNoteCancellation)
                .filter(DeliveryNoteCancellation.original_delivery_note_id == note.id)
                .all()
            )
            for cancellation in cancellations:
                stock_ledger.reverse_movements(
                    session, ReferenceType.DELIVERY_NOTE_CANCELLATION, cancellation.id, date.today()
                )
                session.delete(cancellation)
            session.flush()
            session.delete(note)
        session.commit()
    except Exception:
        session.rollback()
        logger.exception(f'Error deleting delivery notes {note_ids}')
        raise

    invalidate_tags(
        TAG_DELIVERY_NOTES, TAG_CANCELLATIONS, TAG_INVOICES, TAG_PAYMENTS, TAG_STOCK, TAG_STOCK_MOVEMENTS
    )


def get_delivery_note(session, note_id: str) -> DeliveryNote:
    return _get_note(session, note_id)


def list_delivery_notes(session, note_type: Optional[str] = None, status: Optional[str] = None) -> List[DeliveryNote]:
    query = session.query(DeliveryNote)
    if note_type:
        query = query.filter(DeliveryNote.note_type == _parse_note_type(note_type))
    if status:
        query = query.filter(DeliveryNote.status == _parse_status(status))
    return query.order_by(DeliveryNote.note_date.desc(), DeliveryNote.created_at.desc()).all()


def get_available_items(session, client_id: str) -> List[Dict[str, Any]]:
    """
    Items of the client's active delivery notes that can still be cancelled.

    available_quantity = quantity - sum of quantities already cancelled.
    """
    rows = (
        session.query(DeliveryNoteItem, DeliveryNote)
        .join(DeliveryNote, DeliveryNote.id == DeliveryNoteItem.delivery_note_id)
        .filter(
            DeliveryNote.client_id == client_id,
            DeliveryNote.status == DeliveryNoteStatus.ACTIVE
        )
        .order_by(DeliveryNote.note_date, DeliveryNote.note_number)
        .all()
    )
    cancelled = _cancelled_quantities(session, note_ids=[note.id for _, note in rows])

    available = []
    for item, note in rows:
        cancelled_quantity = cancelled.get(item.id, Decimal('0'))
        available_quantity = item.quantity - cancelled_quantity
        if available_quantity <= 0:
            continue
        available.append({
            'delivery_note_item_id': item.id,
            'delivery_note_id': note.id,
            'note_number': note.note_number,
            'note_date': note.note_date,
            'product_id': item.product_id,
            'original_quantity': item.quantity,
            'cancelled_quantity': cancelled_quantity,
            'available_quantity': available_quantity,
            'unit_price': item.unit_price,
            'discount_percent': item.discount_percent,
            'line_total': item.line_total,
            'available_line_total': stock_ledger.prorate_line_total(
                item.line_total, item.quantity, available_quantity
            ),
        })
    return available


def compute_line_total(quantity: Decimal, unit_price: Decimal, discount_percent: Decimal) -> Decimal:
    """quantity x price x (1 - discount/100), rounded to 2 decimals."""
    return quantize_money(quantity * unit_price * (1 - discount_percent / HUNDRED))


# =====================================================
# PRIVATE HELPERS
# =====================================================

def _withdraw(session, note: DeliveryNote, actor_id: Optional[str]) -> None:
    """Record one "out" movement per item of the note."""
    items = _ledger_items(note)
    if not items:
        return
    stock_ledger.apply_movements(
        session, items, note.note_date,
        ReferenceType.DELIVERY_NOTE, note.id,
        stock_ledger.DECREASE, actor_id, _movement_source(note),
        notes=f'Bon de livraison {note.note_number}'
    )


def _movement_source(note: DeliveryNote) -> MovementSource:
    if note.note_type == DeliveryNoteType.EXPORT:
        return MovementSource.SALE_EXPORT
    return MovementSource.SALE_LOCAL


def _ledger_items(note: DeliveryNote) -> List[Dict[str, Any]]:
    return [
        {'product_id': item.product_id, 'quantity': item.quantity, 'unit_price': item.unit_price}
        for item in note.items
    ]


def _record_full_cancellation(session, note: DeliveryNote, actor_id: Optional[str]) -> DeliveryNoteCancellation:
    """Create (or complete) the cancellation derived from cancelling the whole note."""
    cancellation = next(iter(_full_cancellations(session, note.id)), None)
    if cancellation is None:
        number = generate_cancellation_number('delivery_note_cancellation', note.id[-6:])
        if session.query(DeliveryNoteCancellation.id).filter(
                DeliveryNoteCancellation.cancellation_number == number).first() is not None:
            number = generate_unique_number(
                session, DeliveryNoteCancellation.cancellation_number,
                lambda: generate_cancellation_number('delivery_note_cancellation')
            )
        cancellation = DeliveryNoteCancellation(
            cancellation_number=number,
            original_delivery_note_id=note.id,
            client_id=note.client_id,
            cancellation_date=date.today(),
            reason=f'Annulation du bon de livraison {note.note_number}',
            is_full=True,
            created_by=actor_id
        )
        session.add(cancellation)
        session.flush()

    copied = {item.delivery_note_item_id for item in cancellation.items}
    for item in note.items:
        if item.id in copied:
            continue
        cancellation.items.append(DeliveryNoteCancellationItem(
            delivery_note_item_id=item.id,
            product_id=item.product_id,
            quantity=item.quantity,
            unit_price=item.unit_price,
            discount_percent=item.discount_percent,
            line_total=item.line_total
        ))
    session.flush()
    return cancellation


def _full_cancellations(session, note_id: str) -> List[DeliveryNoteCancellation]:
    return (
        session.query(DeliveryNoteCancellation)
        .filter(
            DeliveryNoteCancellation.original_delivery_note_id == note_id,
            DeliveryNoteCancellation.is_full.is_(True)
        )
        .all()
    )


def _has_partial_cancellations(session, note_id: str) -> bool:
    return (
        session.query(DeliveryNoteCancellationItem.id)
        .join(DeliveryNoteCancellation, DeliveryNoteCancellation.id == DeliveryNoteCancellationItem.cancellation_id)
        .join(DeliveryNoteItem, DeliveryNoteItem.id == DeliveryNoteCancellationItem.delivery_note_item_id)
        .filter(
            DeliveryNoteItem.delivery_note_id == note_id,
            DeliveryNoteCancellation.is_full.is_(False)
        )
        .first()
    ) is not None


def _cancelled_quantities(session, note_id: Optional[str] = None, note_ids: Optional[List[str]] = None) -> Dict[str, Decimal]:
    """Quantity cancelled per delivery note item id, across all cancellations."""
    query = (
        session.query(
            DeliveryNoteCancellationItem.delivery_note_item_id,
            func.sum(DeliveryNoteCancellationItem.quantity)
        )
        .join(DeliveryNoteItem, DeliveryNoteItem.id == DeliveryNoteCancellationItem.delivery_note_item_id)
    )
    if note_id is not None:
        query = query.filter(DeliveryNoteItem.delivery_note_id == note_id)
    elif note_ids is not None:
        if not note_ids:
            return {}
        query = query.filter(DeliveryNoteItem.delivery_note_id.in_(note_ids))
    rows = query.group_by(DeliveryNoteCancellationItem.delivery_note_item_id).all()
    return {item_id: to_decimal(total) for item_id, total in rows}


def _update_protected_item(item: DeliveryNoteItem, data: Dict[str, Any], cancelled_quantity: Decimal) -> None:
    if data['product_id'] != item.product_id:
        raise ValidationError(
            f'Le produit {item.product_id} est référencé par une annulation et ne peut pas être remplacé'
        )
    if data['quantity'] < cancelled_quantity:
        raise ValidationError(
            f'La quantité du produit {item.product_id} ne peut pas être inférieure '
            f'à la quantité déjà annulée ({cancelled_quantity})'
        )
    item.quantity = data['quantity']
    item.unit_price = data['unit_price']
    item.discount_percent = data['discount_percent']
    item.line_total = data['line_total']


def _new_item(data: Dict[str, Any]) -> DeliveryNoteItem:
    return DeliveryNoteItem(
        product_id=data['product_id'],
        quantity=data['quantity'],
        unit_price=data['unit_price'],
        discount_percent=data['discount_percent'],
        line_total=data['line_total']
    )


def _prepare_items(raw_items: List[Dict[str, Any]], keep_ids: bool = False) -> List[Dict[str, Any]]:
    """Validate items; line totals default to quantity x price less discount."""
    items = []
    for raw, item in zip(raw_items, stock_ledger.normalize_items(raw_items)):
        discount = to_decimal(raw.get('discount_percent') or 0, 'remise')
        if discount < 0 or discount > HUNDRED:
            raise ValidationError('La remise doit être comprise entre 0 et 100')
        line_total = raw.get('line_total')
        prepared = {
            'product_id': item['product_id'],
            'quantity': item['quantity'],
            'unit_price': item['unit_cost'],
            'discount_percent': discount,
            'line_total': (
                quantize_money(to_decimal(line_total, 'total de ligne'))
                if line_total not in (None, '')
                else compute_line_total(item['quantity'], item['unit_cost'], discount)
            ),
        }
        if keep_ids and raw.get('id'):
            prepared['id'] = raw['id']
        items.append(prepared)
    return items


def _get_note(session, note_id: str, lock: bool = False) -> DeliveryNote:
    query = session.query(DeliveryNote).filter(DeliveryNote.id == note_id)
    if lock:
        query = query.with_for_update()
    note = query.first()
    if not note:
        raise NotFoundError('Bon de livraison non trouvé')
    return note


def _get_client(session, client_id: Optional[str]) -> Partner:
    if not client_id:
        raise ValidationError('Le client est obligatoire')
    client = session.get(Partner, client_id)
    if not client:
        raise NotFoundError('Client non trouvé')
    return client


def _ensure_number_available(session, note_number: str, exclude_id: str) -> None:
    exists = (
        session.query(DeliveryNote.id)
        .filter(DeliveryNote.note_number == note_number, DeliveryNote.id != exclude_id)
        .first()
    )
    if exists is not None:
        raise AlreadyExistsError(
            f'Le numéro de bon "{note_number}" existe déjà. Veuillez utiliser un numéro différent.'
        )


def _parse_note_type(value) -> DeliveryNoteType:
    try:
        return DeliveryNoteType(value)
    except ValueError:
        raise ValidationError(f'Type de bon invalide: {value}')


def _parse_status(value) -> DeliveryNoteStatus:
    try:
        return DeliveryNoteStatus(value)
    except ValueError:
        raise ValidationError(f'Statut de bon de livraison invalide: {value}')


def _default_currency() -> str:
    if has_app_context():
        return current_app.config.get('DEFAULT_CURRENCY', DEFAULT_CURRENCY)
    return DEFAULT_CURRENCY
