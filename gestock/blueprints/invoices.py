"""Invoices and payments blueprint."""
from flask import Blueprint, g

from gestock.database import get_session
from gestock.decorators.actor import require_actor
from gestock.exceptions import ValidationError
from gestock.services import invoice_service, payment_service
from gestock.utils.serializers import invoice_to_dict, request_payload, success

invoices_bp = Blueprint('invoices', __name__, url_prefix='/api')


@invoices_bp.route('/invoices/<invoice_id>', methods=['GET'])
def get_invoice(invoice_id):
    return success(invoice_to_dict(invoice_service.get_invoice(get_session(), invoice_id)))


@invoices_bp.route('/invoices', methods=['POST'])
@require_actor
def create_invoice():
    """Invoice entered line by line; never moves stock."""
    result = invoice_service.create_invoice(get_session(), request_payload(), g.actor_id)
    return success(result, 201)


@invoices_bp.route('/invoices/proforma/<invoice_id>', methods=['PUT'])
@require_actor
def update_proforma(invoice_id):
    invoice_service.update_proforma_invoice(get_session(), invoice_id, request_payload(), g.actor_id)
    return success({'id': invoice_id})


@invoices_bp.route('/invoices/proforma/<invoice_id>', methods=['DELETE'])
@require_actor
def delete_proforma(invoice_id):
    invoice_service.delete_proforma_invoice(get_session(), invoice_id)
    return success({'id': invoice_id})


@invoices_bp.route('/invoices/proforma/delete', methods=['POST'])
@require_actor
def delete_proformas():
    """Bulk delete: {ids: [...]}."""
    ids = request_payload().get('ids') or []
    if not ids:
        raise ValidationError('Aucune facture sélectionnée')
    invoice_service.delete_proforma_invoices(get_session(), ids)
    return success({'ids': ids})


@invoices_bp.route('/payments', methods=['POST'])
@require_actor
def create_payment():
    """{invoice_id, amount, payment_date, payment_method, reference, notes}"""
    result = payment_service.create_payment(get_session(), request_payload(), g.actor_id)
    return success(result, 201)


@invoices_bp.route('/payments/<payment_id>', methods=['PUT'])
@require_actor
def update_payment(payment_id):
    payment_service.update_payment(get_session(), payment_id, request_payload(), g.actor_id)
    return success({'id': payment_id})


@invoices_bp.route('/payments/<payment_id>', methods=['DELETE'])
@require_actor
def delete_payment(payment_id):
    payment_service.delete_payment(get_session(), payment_id)
    return success({'id': payment_id})
