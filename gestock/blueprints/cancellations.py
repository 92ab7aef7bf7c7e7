"""Delivery note cancellations blueprint."""
from flask import Blueprint, g, request

from gestock.database import get_session
from gestock.decorators.actor import require_actor
from gestock.exceptions import ValidationError
from gestock.services import cancellation_service
from gestock.utils.serializers import cancellation_to_dict, request_payload, success

cancellations_bp = Blueprint('cancellations', __name__, url_prefix='/api/cancellations')


@cancellations_bp.route('', methods=['GET'])
def list_cancellations():
    cancellations = cancellation_service.list_cancellations(get_session(), request.args.get('client_id'))
    return success([cancellation_to_dict(c) for c in cancellations])


@cancellations_bp.route('/<cancellation_id>', methods=['GET'])
def get_cancellation(cancellation_id):
    return success(cancellation_to_dict(cancellation_service.get_cancellation(get_session(), cancellation_id)))


@cancellations_bp.route('', methods=['POST'])
@require_actor
def create_cancellation():
    result = cancellation_service.create_partial_cancellation(get_session(), request_payload(), g.actor_id)
    return success(result, 201)


@cancellations_bp.route('/<cancellation_id>', methods=['PUT'])
@require_actor
def update_cancellation(cancellation_id):
    cancellation_service.update_cancellation(get_session(), cancellation_id, request_payload(), g.actor_id)
    return success({'id': cancellation_id})


@cancellations_bp.route('/<cancellation_id>/items/<item_id>/reduce', methods=['POST'])
@require_actor
def reduce_item(cancellation_id, item_id):
    """{quantity}: quantity taken out of the cancellation line."""
    quantity = request_payload().get('quantity')
    if quantity in (None, ''):
        raise ValidationError('La quantité est obligatoire')
    result = cancellation_service.reduce_cancellation_item(
        get_session(), cancellation_id, item_id, quantity, g.actor_id
    )
    return success(result)


@cancellations_bp.route('/<cancellation_id>/items/<item_id>', methods=['DELETE'])
@require_actor
def delete_item(cancellation_id, item_id):
    result = cancellation_service.delete_cancellation_item(get_session(), cancellation_id, item_id, g.actor_id)
    return success(result)


@cancellations_bp.route('/<cancellation_id>', methods=['DELETE'])
@require_actor
def delete_cancellation(cancellation_id):
    cancellation_service.delete_cancellation(get_session(), cancellation_id)
    return success({'id': cancellation_id})


@cancellations_bp.route('/delete', methods=['POST'])
@require_actor
def delete_cancellations():
    ids = request_payload().get('ids') or []
    if not ids:
        raise ValidationError('Aucune annulation sélectionnée')
    cancellation_service.delete_cancellations(get_session(), ids)
    return success({'ids': ids})
