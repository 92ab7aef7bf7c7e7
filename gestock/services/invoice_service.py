"""
Invoice service.

Invoices are generated from delivery notes or entered line by line. They
never affect stock: only delivery notes, cancellations, purchase orders and
stock entries move goods.
"""
import logging
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError

from gestock.exceptions import AlreadyExistsError, NotFoundError, ProductNotFoundError, ValidationError
from gestock.models import (
    DeliveryNote, Invoice, InvoiceItem, InvoiceStatus, InvoiceType, Partner, PaymentStatus, Product,
    PurchaseOrder
)
from gestock.services.cache_service import TAG_DELIVERY_NOTES, TAG_INVOICES, TAG_PAYMENTS, invalidate_tags
from gestock.services.numbering import generate_invoice_number
from gestock.services.payment_service import refresh_invoice_payment_status
from gestock.utils.number_format import (
    parse_date, parse_optional_date, quantize_money, quantize_quantity, to_decimal
)

logger = logging.getLogger(__name__)

HUNDRED = Decimal('100')
DEFAULT_DUE_DAYS = 30


def compute_invoice_line(quantity: Decimal, unit_price: Decimal, discount_percent: Decimal, tax_rate: Decimal) -> Dict[str, Decimal]:
    """
    Tax breakdown of an invoice line.

    subtotal = quantity x price x (1 - discount/100), tax = subtotal x rate/100,
    total = subtotal + tax. Each amount rounded to 2 decimals.
    """
    subtotal = quantity * unit_price * (1 - discount_percent / HUNDRED)
    tax = subtotal * tax_rate / HUNDRED
    return {
        'line_subtotal': quantize_money(subtotal),
        'line_tax': quantize_money(tax),
        'line_total': quantize_money(subtotal + tax),
    }


def create_invoice_from_delivery_note(
    session,
    delivery_note_id: str,
    invoice_type: str = InvoiceType.DELIVERY_NOTE_INVOICE.value,
    invoice_number: Optional[str] = None,
    actor_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Invoice the items of a delivery note.

    When an active invoice of the same type already exists for the note it is
    returned as is, with already_exists=True.

    Returns:
        {'invoice_id', 'invoice_number', 'already_exists'}
    """
    try:
        invoice_type = InvoiceType(invoice_type)
    except ValueError:
        raise ValidationError(f'Type de facture invalide: {invoice_type}')
    if invoice_type not in (InvoiceType.DELIVERY_NOTE_INVOICE, InvoiceType.SALE_INVOICE):
        raise ValidationError(f'Type de facture invalide: {invoice_type.value}')

    note = session.get(DeliveryNote, delivery_note_id)
    if not note:
        raise NotFoundError('Bon de livraison non trouvé')
    if not note.items:
        raise ValidationError('Le bon de livraison ne contient aucun produit')

    existing = (
        session.query(Invoice)
        .filter(
            Invoice.delivery_note_id == delivery_note_id,
            Invoice.invoice_type == invoice_type,
            Invoice.status == InvoiceStatus.ACTIVE
        )
        .first()
    )
    if existing:
        return {'invoice_id': existing.id, 'invoice_number': existing.invoice_number, 'already_exists': True}

    invoice_number = (invoice_number or '').strip() or generate_invoice_number(invoice_type.value)
    if session.query(Invoice.id).filter(Invoice.invoice_number == invoice_number).first() is not None:
        raise AlreadyExistsError(_duplicate_message(invoice_number))

    try:
        invoice = Invoice(
            invoice_number=invoice_number,
            invoice_type=invoice_type,
            client_id=note.client_id,
            delivery_note_id=note.id,
            invoice_date=note.note_date,
            due_date=note.note_date + timedelta(days=_due_days()) if invoice_type == InvoiceType.SALE_INVOICE else None,
            currency=note.currency or _default_currency(),
            status=InvoiceStatus.ACTIVE,
            payment_status=PaymentStatus.UNPAID,
            notes=note.notes,
            created_by=actor_id
        )

        _set_lines(invoice, [
            {
                'product_id': item.product_id,
                'quantity': item.quantity,
                'unit_price': item.unit_price,
                'discount_percent': item.discount_percent,
                'tax_rate': _product_tax_rate(session.get(Product, item.product_id)),
            }
            for item in note.items
        ])
        session.add(invoice)
        session.flush()

        result = {'invoice_id': invoice.id, 'invoice_number': invoice.invoice_number, 'already_exists': False}
        session.commit()
    except IntegrityError:
        session.rollback()
        raise AlreadyExistsError(_duplicate_message(invoice_number))
    except Exception:
        session.rollback()
        logger.exception(f'Error creating invoice from delivery note {delivery_note_id}')
        raise

    invalidate_tags(TAG_INVOICES, TAG_DELIVERY_NOTES)
    return result


def create_invoice(session, payload: Dict[str, Any], actor_id: Optional[str] = None) -> Dict[str, str]:
    """
    Create an invoice from explicit lines (proforma, purchase, direct sale).

    Args:
        payload: invoice_number (optional, generated when empty), invoice_type,
            client_id, supplier_id, invoice_date, due_date, currency,
            destination_country, delivery_location, purchase_order_id, notes,
            items [{product_id, quantity, unit_price, discount_percent, tax_rate}]

    Returns:
        {'id', 'invoice_number'}
    """
    invoice_type = _parse_type(payload.get('invoice_type') or InvoiceType.SALE_INVOICE.value)
    invoice_date = parse_date(payload.get('invoice_date'), 'date de facture')
    due_date = parse_optional_date(payload.get('due_date'), "date d'échéance")
    if due_date is None and invoice_type == InvoiceType.SALE_INVOICE:
        due_date = invoice_date + timedelta(days=_due_days())

    invoice_number = (payload.get('invoice_number') or '').strip()
    try:
        lines = _prepare_lines(session, payload.get('items') or [])
        client_id, supplier_id = _get_partners(session, payload.get('client_id'), payload.get('supplier_id'))
        purchase_order_id = payload.get('purchase_order_id') or None
        if purchase_order_id and session.get(PurchaseOrder, purchase_order_id) is None:
            raise NotFoundError('Bon de commande non trouvé')

        invoice_number = invoice_number or generate_invoice_number(invoice_type.value)
        _ensure_number_available(session, invoice_number)

        invoice = Invoice(
            invoice_number=invoice_number,
            invoice_type=invoice_type,
            client_id=client_id,
            supplier_id=supplier_id,
            purchase_order_id=purchase_order_id,
            invoice_date=invoice_date,
            due_date=due_date,
            currency=payload.get('currency') or _default_currency(),
            destination_country=payload.get('destination_country') or None,
            delivery_location=payload.get('delivery_location') or None,
            status=InvoiceStatus.ACTIVE,
            payment_status=PaymentStatus.UNPAID,
            notes=payload.get('notes') or None,
            created_by=actor_id
        )
        _set_lines(invoice, lines)
        session.add(invoice)
        session.flush()

        result = {'id': invoice.id, 'invoice_number': invoice.invoice_number}
        session.commit()
    except IntegrityError:
        session.rollback()
        raise AlreadyExistsError(_duplicate_message(invoice_number))
    except Exception:
        session.rollback()
        logger.exception('Error adding invoice')
        raise

    invalidate_tags(TAG_INVOICES)
    return result


def update_proforma_invoice(session, invoice_id: str, payload: Dict[str, Any], actor_id: Optional[str] = None) -> str:
    """
    Replace a proforma invoice's fields and lines.

    The payment status is recomputed against the new total.
    """
    invoice_number = (payload.get('invoice_number') or '').strip()
    try:
        invoice = _get_proforma(session, invoice_id, lock=True)
        lines = _prepare_lines(session, payload.get('items') or [])
        if not payload.get('client_id'):
            raise ValidationError('Le client est obligatoire')
        client_id, _ = _get_partners(session, payload.get('client_id'), None)

        if not invoice_number:
            invoice_number = invoice.invoice_number
        elif invoice_number != invoice.invoice_number:
            _ensure_number_available(session, invoice_number, exclude_id=invoice.id)

        invoice.invoice_number = invoice_number
        invoice.client_id = client_id
        invoice.invoice_date = parse_date(payload.get('invoice_date'), 'date de facture')
        invoice.due_date = parse_optional_date(payload.get('due_date'), "date d'échéance")
        invoice.currency = payload.get('currency') or invoice.currency or _default_currency()
        invoice.destination_country = payload.get('destination_country') or None
        invoice.delivery_location = payload.get('delivery_location') or None
        invoice.notes = payload.get('notes') or None

        invoice.items.clear()
        session.flush()
        _set_lines(invoice, lines)
        session.flush()
        refresh_invoice_payment_status(session, invoice)

        session.commit()
    except IntegrityError:
        session.rollback()
        raise AlreadyExistsError(_duplicate_message(invoice_number))
    except Exception:
        session.rollback()
        logger.exception(f'Error updating proforma invoice {invoice_id}')
        raise

    invalidate_tags(TAG_INVOICES, TAG_PAYMENTS)
    return invoice_id


def delete_proforma_invoice(session, invoice_id: str) -> None:
    delete_proforma_invoices(session, [invoice_id])


def delete_proforma_invoices(session, invoice_ids: List[str]) -> None:
    """Delete proforma invoices with their lines and payments, all or nothing."""
    try:
        for invoice_id in invoice_ids:
            session.delete(_get_proforma(session, invoice_id, lock=True))
        session.commit()
    except Exception:
        session.rollback()
        logger.exception(f'Error deleting proforma invoices {invoice_ids}')
        raise

    invalidate_tags(TAG_INVOICES, TAG_PAYMENTS)


def get_invoice(session, invoice_id: str) -> Invoice:
    invoice = session.get(Invoice, invoice_id)
    if not invoice:
        raise NotFoundError('Facture non trouvée')
    return invoice


def list_invoices_for_delivery_note(session, delivery_note_id: str) -> List[Invoice]:
    return (
        session.query(Invoice)
        .filter(Invoice.delivery_note_id == delivery_note_id)
        .order_by(Invoice.created_at.desc())
        .all()
    )


def _due_days() -> int:
    if has_app_context():
        return int(current_app.config.get('INVOICE_DUE_DAYS', DEFAULT_DUE_DAYS))
    return DEFAULT_DUE_DAYS


def _duplicate_message(invoice_number: str) -> str:
    return f'Le numéro de facture "{invoice_number}" existe déjà. Veuillez utiliser un numéro différent.'


def _default_currency() -> str:
    if has_app_context():
        return current_app.config.get('DEFAULT_CURRENCY', 'DZD')
    return 'DZD'


def _parse_type(value) -> InvoiceType:
    try:
        return InvoiceType(value)
    except ValueError:
        raise ValidationError(f'Type de facture invalide: {value}')


def _get_proforma(session, invoice_id: str, lock: bool = False) -> Invoice:
    query = session.query(Invoice).filter(Invoice.id == invoice_id)
    if lock:
        query = query.with_for_update()
    invoice = query.first()
    if not invoice:
        raise NotFoundError('Facture proforma non trouvée')
    if invoice.invoice_type != InvoiceType.PROFORMA:
        raise ValidationError("Cette facture n'est pas une facture proforma")
    return invoice


def _get_partners(session, client_id: Optional[str], supplier_id: Optional[str]):
    if not client_id and not supplier_id:
        raise ValidationError('La facture doit avoir un client ou un fournisseur')
    for partner_id in (client_id, supplier_id):
        if partner_id and session.get(Partner, partner_id) is None:
            raise NotFoundError('Partenaire non trouvé')
    return client_id or None, supplier_id or None


def _ensure_number_available(session, invoice_number: str, exclude_id: Optional[str] = None) -> None:
    query = session.query(Invoice.id).filter(Invoice.invoice_number == invoice_number)
    if exclude_id:
        query = query.filter(Invoice.id != exclude_id)
    if query.first() is not None:
        raise AlreadyExistsError(_duplicate_message(invoice_number))


def _product_tax_rate(product: Optional[Product]) -> Decimal:
    if product is None or product.tax_rate is None:
        return Decimal('0')
    return product.tax_rate


def _prepare_lines(session, raw_items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Validate invoice lines; the tax rate defaults to the product's."""
    if not raw_items:
        raise ValidationError('Veuillez ajouter au moins un produit')

    lines = []
    for raw in raw_items:
        product_id = raw.get('product_id')
        if not product_id:
            raise ValidationError('Le produit est obligatoire')
        product = session.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError(product_id)

        quantity = quantize_quantity(to_decimal(raw.get('quantity'), 'quantité'))
        if quantity <= 0:
            raise ValidationError('La quantité doit être supérieure à 0')
        unit_price = quantize_money(to_decimal(raw.get('unit_price'), 'prix unitaire'))
        if unit_price < 0:
            raise ValidationError('Le prix unitaire ne peut pas être négatif')
        discount = to_decimal(raw.get('discount_percent') or 0, 'remise')
        if discount < 0 or discount > HUNDRED:
            raise ValidationError('La remise doit être comprise entre 0 et 100')
        tax_rate = raw.get('tax_rate')
        tax_rate = to_decimal(tax_rate, 'taux de TVA') if tax_rate not in (None, '') else _product_tax_rate(product)
        if tax_rate < 0:
            raise ValidationError('Le taux de TVA ne peut pas être négatif')

        lines.append({
            'product_id': product_id,
            'quantity': quantity,
            'unit_price': unit_price,
            'discount_percent': discount,
            'tax_rate': tax_rate,
        })
    return lines


def _set_lines(invoice: Invoice, lines: List[Dict[str, Any]]) -> None:
    """Append the lines to the invoice and total them."""
    subtotal = tax_amount = total = Decimal('0')
    for line in lines:
        amounts = compute_invoice_line(
            line['quantity'], line['unit_price'], line['discount_percent'], line['tax_rate']
        )
        invoice.items.append(InvoiceItem(**line, **amounts))
        subtotal += amounts['line_subtotal']
        tax_amount += amounts['line_tax']
        total += amounts['line_total']

    invoice.subtotal = subtotal
    invoice.tax_amount = tax_amount
    invoice.total_amount = total
