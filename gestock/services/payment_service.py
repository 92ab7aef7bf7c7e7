"""Payment service: payments against invoices and invoice payment status."""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import func

from gestock.exceptions import NotFoundError, ValidationError
from gestock.models import Invoice, Payment, PaymentMethod, PaymentStatus
from gestock.services.cache_service import TAG_INVOICES, TAG_PAYMENTS, invalidate_tags
from gestock.services.numbering import generate_payment_number, generate_unique_number
from gestock.utils.number_format import parse_date, quantize_money, to_decimal

logger = logging.getLogger(__name__)

# 1 centime tolerance
TOLERANCE = Decimal('0.01')


def derive_payment_status(total_paid, invoice_total) -> PaymentStatus:
    """
    Payment status of an invoice from the sum of its payments.

    unpaid while paid <= 0.01, paid once paid >= total - 0.01,
    partially_paid in between.
    """
    total_paid = to_decimal(total_paid, 'montant payé')
    invoice_total = to_decimal(invoice_total, 'montant total')
    if total_paid <= TOLERANCE:
        return PaymentStatus.UNPAID
    if total_paid >= invoice_total - TOLERANCE:
        return PaymentStatus.PAID
    return PaymentStatus.PARTIALLY_PAID


def get_total_paid(session, invoice_id: str, exclude_payment_id: Optional[str] = None) -> Decimal:
    query = session.query(func.coalesce(func.sum(Payment.amount), 0)).filter(Payment.invoice_id == invoice_id)
    if exclude_payment_id:
        query = query.filter(Payment.id != exclude_payment_id)
    return to_decimal(query.scalar())


def refresh_invoice_payment_status(session, invoice: Invoice) -> PaymentStatus:
    """Recompute and store the invoice payment status inside the caller's transaction."""
    session.flush()
    invoice.payment_status = derive_payment_status(get_total_paid(session, invoice.id), invoice.total_amount)
    return invoice.payment_status


def create_payment(session, payload: Dict[str, Any], actor_id: Optional[str] = None) -> Dict[str, str]:
    """
    Record a payment against an invoice.

    Args:
        payload: invoice_id, amount, payment_date, payment_method, reference, notes

    Returns:
        {'id', 'payment_number'}
    """
    amount = _parse_amount(payload.get('amount'))
    method = _parse_method(payload.get('payment_method'))

    try:
        invoice = _get_invoice(session, payload.get('invoice_id'), lock=True)
        _check_remaining(amount, invoice.total_amount, get_total_paid(session, invoice.id))

        partner_id = invoice.client_id or invoice.supplier_id
        if not partner_id:
            raise ValidationError("La facture n'a ni client ni fournisseur")

        payment = Payment(
            payment_number=generate_unique_number(session, Payment.payment_number, generate_payment_number),
            invoice_id=invoice.id,
            partner_id=partner_id,
            payment_date=parse_date(payload.get('payment_date'), 'date de paiement'),
            amount=amount,
            payment_method=method,
            reference=payload.get('reference') or None,
            notes=payload.get('notes') or None,
            created_by=actor_id
        )
        session.add(payment)
        refresh_invoice_payment_status(session, invoice)

        result = {'id': payment.id, 'payment_number': payment.payment_number}
        session.commit()
    except Exception:
        session.rollback()
        logger.exception('Error creating payment')
        raise

    invalidate_tags(TAG_PAYMENTS, TAG_INVOICES)
    return result


def update_payment(session, payment_id: str, payload: Dict[str, Any], actor_id: Optional[str] = None) -> str:
    """Change a payment; the new amount may not exceed what remains due without it."""
    amount = _parse_amount(payload.get('amount'))

    try:
        payment = _get_payment(session, payment_id)
        invoice = _get_invoice(session, payment.invoice_id, lock=True)
        _check_remaining(amount, invoice.total_amount, get_total_paid(session, invoice.id, exclude_payment_id=payment.id))

        payment.amount = amount
        payment.payment_date = parse_date(payload.get('payment_date') or payment.payment_date, 'date de paiement')
        if payload.get('payment_method'):
            payment.payment_method = _parse_method(payload['payment_method'])
        if 'reference' in payload:
            payment.reference = payload.get('reference') or None
        if 'notes' in payload:
            payment.notes = payload.get('notes') or None
        refresh_invoice_payment_status(session, invoice)
        session.commit()
    except Exception:
        session.rollback()
        logger.exception(f'Error updating payment {payment_id}')
        raise

    invalidate_tags(TAG_PAYMENTS, TAG_INVOICES)
    return payment_id


def delete_payment(session, payment_id: str) -> None:
    try:
        payment = _get_payment(session, payment_id)
        invoice = _get_invoice(session, payment.invoice_id, lock=True)
        invoice.payments.remove(payment)
        refresh_invoice_payment_status(session, invoice)
        session.commit()
    except Exception:
        session.rollback()
        logger.exception(f'Error deleting payment {payment_id}')
        raise

    invalidate_tags(TAG_PAYMENTS, TAG_INVOICES)


def _check_remaining(amount: Decimal, invoice_total: Decimal, already_paid: Decimal) -> None:
    remaining = invoice_total - already_paid
    if amount > remaining + TOLERANCE:
        raise ValidationError(
            f'Le montant ({amount:.2f}) dépasse le montant restant ({quantize_money(remaining):.2f})'
        )


def _parse_amount(value) -> Decimal:
    amount = quantize_money(to_decimal(value, 'montant'))
    if amount <= 0:
        raise ValidationError('Le montant doit être supérieur à 0')
    return amount


def _parse_method(value) -> PaymentMethod:
    try:
        return PaymentMethod(value or PaymentMethod.CASH.value)
    except ValueError:
        raise ValidationError(f'Mode de paiement invalide: {value}')


def _get_invoice(session, invoice_id: Optional[str], lock: bool = False) -> Invoice:
    query = session.query(Invoice).filter(Invoice.id == invoice_id)
    if lock:
        query = query.with_for_update()
    invoice = query.first()
    if not invoice:
        raise NotFoundError('Facture non trouvée')
    return invoice


def _get_payment(session, payment_id: str) -> Payment:
    payment = session.get(Payment, payment_id)
    if not payment:
        raise NotFoundError('Paiement non trouvé')
    return payment
