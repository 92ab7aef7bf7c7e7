"""
Partner service: clients and suppliers.

A partner referenced by any document (purchase order, delivery note,
cancellation, invoice or payment) cannot be deleted.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from gestock.exceptions import BusinessLogicError, NotFoundError, ValidationError
from gestock.models import (
    DeliveryNote, DeliveryNoteCancellation, Invoice, Partner, PartnerType, Payment, PurchaseOrder
)
from gestock.services.cache_service import TAG_PARTNERS, invalidate_tags
from gestock.utils.number_format import quantize_money, to_decimal

logger = logging.getLogger(__name__)

OPTIONAL_FIELDS = ('contact_person', 'phone', 'email', 'address', 'country', 'nif', 'rc')


def create_partner(session, payload: Dict[str, Any]) -> str:
    """
    Create a client or supplier.

    Args:
        payload: name, type ('client' | 'fournisseur'), contact_person, phone,
            email, address, country, credit, nif, rc

    Returns:
        The new partner id.
    """
    name = (payload.get('name') or '').strip()
    if not name:
        raise ValidationError('Le nom est obligatoire')
    partner_type = _parse_type(payload.get('type'))
    credit = payload.get('credit')
    credit = quantize_money(to_decimal(credit, 'crédit')) if credit not in (None, '') else Decimal('0.00')

    try:
        partner = Partner(name=name, type=partner_type, credit=credit)
        for field in OPTIONAL_FIELDS:
            setattr(partner, field, (payload.get(field) or '').strip() or None)
        session.add(partner)
        session.flush()
        partner_id = partner.id
        session.commit()
    except Exception:
        session.rollback()
        logger.exception('Error adding partner')
        raise

    invalidate_tags(TAG_PARTNERS)
    return partner_id


def delete_partner(session, partner_id: str) -> None:
    delete_partners(session, [partner_id])


def delete_partners(session, partner_ids: List[str]) -> None:
    """Delete partners, all or nothing; refused while a document references one."""
    try:
        for partner_id in partner_ids:
            partner = get_partner(session, partner_id)
            if _is_referenced(session, partner.id):
                raise BusinessLogicError(
                    f'Impossible de supprimer "{partner.name}" car il est utilisé dans des documents.',
                    status_code=409
                )
            session.delete(partner)
        session.commit()
    except Exception:
        session.rollback()
        logger.exception(f'Error deleting partners {partner_ids}')
        raise

    invalidate_tags(TAG_PARTNERS)


def get_partner(session, partner_id: str) -> Partner:
    partner = session.get(Partner, partner_id)
    if not partner:
        raise NotFoundError('Partenaire non trouvé')
    return partner


def list_partners(session, partner_type: Optional[str] = None) -> List[Partner]:
    query = session.query(Partner)
    if partner_type:
        query = query.filter(Partner.type == _parse_type(partner_type))
    return query.order_by(Partner.name).all()


def _parse_type(value) -> PartnerType:
    try:
        return PartnerType(value)
    except ValueError:
        raise ValidationError(f'Type de partenaire invalide: {value}')


def _is_referenced(session, partner_id: str) -> bool:
    references = (
        session.query(PurchaseOrder.id).filter(PurchaseOrder.supplier_id == partner_id),
        session.query(DeliveryNote.id).filter(DeliveryNote.client_id == partner_id),
        session.query(DeliveryNoteCancellation.id).filter(DeliveryNoteCancellation.client_id == partner_id),
        session.query(Invoice.id).filter((Invoice.client_id == partner_id) | (Invoice.supplier_id == partner_id)),
        session.query(Payment.id).filter(Payment.partner_id == partner_id),
    )
    return any(query.first() is not None for query in references)
