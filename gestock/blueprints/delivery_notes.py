"""Delivery notes blueprint (local and export sales)."""
from flask import Blueprint, g, request

from gestock.database import get_session
from gestock.decorators.actor import require_actor
from gestock.exceptions import ValidationError
from gestock.services import delivery_note_service, invoice_service
from gestock.utils.serializers import delivery_note_to_dict, invoice_to_dict, request_payload, success

delivery_notes_bp = Blueprint('delivery_notes', __name__, url_prefix='/api/delivery-notes')


@delivery_notes_bp.route('', methods=['GET'])
def list_notes():
    notes = delivery_note_service.list_delivery_notes(
        get_session(), note_type=request.args.get('note_type'), status=request.args.get('status')
    )
    return success([delivery_note_to_dict(n) for n in notes])


@delivery_notes_bp.route('/available-items', methods=['GET'])
def available_items():
    """Items of a client's active notes that can still be cancelled."""
    client_id = request.args.get('client_id')
    if not client_id:
        raise ValidationError('Le client est obligatoire')
    return success(delivery_note_service.get_available_items(get_session(), client_id))


@delivery_notes_bp.route('/<note_id>', methods=['GET'])
def get_note(note_id):
    return success(delivery_note_to_dict(delivery_note_service.get_delivery_note(get_session(), note_id)))


@delivery_notes_bp.route('', methods=['POST'])
@require_actor
def create_note():
    result = delivery_note_service.create_delivery_note(get_session(), request_payload(), g.actor_id)
    return success(result, 201)


@delivery_notes_bp.route('/<note_id>', methods=['PUT'])
@require_actor
def update_note(note_id):
    delivery_note_service.update_delivery_note(get_session(), note_id, request_payload(), g.actor_id)
    return success({'id': note_id})


@delivery_notes_bp.route('/<note_id>/status', methods=['POST'])
@require_actor
def update_status(note_id):
    status = request_payload().get('status')
    if not status:
        raise ValidationError('Le statut est obligatoire')
    delivery_note_service.update_delivery_note_status(get_session(), note_id, status, g.actor_id)
    return success({'id': note_id})


@delivery_notes_bp.route('/<note_id>/items/<item_id>', methods=['DELETE'])
@require_actor
def delete_item(note_id, item_id):
    delivery_note_service.delete_delivery_note_item(get_session(), note_id, item_id, g.actor_id)
    return success({'id': note_id})


@delivery_notes_bp.route('/<note_id>', methods=['DELETE'])
@require_actor
def delete_note(note_id):
    delivery_note_service.delete_delivery_note(get_session(), note_id)
    return success({'id': note_id})


@delivery_notes_bp.route('/delete', methods=['POST'])
@require_actor
def delete_notes():
    """Bulk delete: {ids: [...]}."""
    ids = request_payload().get('ids') or []
    delivery_note_service.delete_delivery_notes(get_session(), ids)
    return success({'ids': ids})


@delivery_notes_bp.route('/<note_id>/invoices', methods=['GET'])
def list_invoices(note_id):
    invoices = invoice_service.list_invoices_for_delivery_note(get_session(), note_id)
    return success([invoice_to_dict(i) for i in invoices])


@delivery_notes_bp.route('/<note_id>/invoice', methods=['POST'])
@require_actor
def create_invoice(note_id):
    """{invoice_type: delivery_note_invoice | sale_invoice, invoice_number?}"""
    payload = request_payload()
    result = invoice_service.create_invoice_from_delivery_note(
        get_session(),
        note_id,
        payload.get('invoice_type') or 'delivery_note_invoice',
        payload.get('invoice_number'),
        g.actor_id
    )
    return success(result, 200 if result['already_exists'] else 201)
