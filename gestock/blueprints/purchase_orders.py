"""Purchase orders blueprint."""
from flask import Blueprint, g, request

from gestock.database import get_session
from gestock.decorators.actor import require_actor
from gestock.exceptions import ValidationError
from gestock.services import purchase_order_service
from gestock.utils.serializers import purchase_order_to_dict, request_payload, success

purchase_orders_bp = Blueprint('purchase_orders', __name__, url_prefix='/api/purchase-orders')


@purchase_orders_bp.route('', methods=['GET'])
def list_orders():
    orders = purchase_order_service.list_purchase_orders(get_session(), request.args.get('status'))
    return success([purchase_order_to_dict(o) for o in orders])


@purchase_orders_bp.route('/<order_id>', methods=['GET'])
def get_order(order_id):
    return success(purchase_order_to_dict(purchase_order_service.get_purchase_order(get_session(), order_id)))


@purchase_orders_bp.route('', methods=['POST'])
@require_actor
def create_order():
    order_id = purchase_order_service.create_purchase_order(get_session(), request_payload(), g.actor_id)
    return success({'id': order_id}, 201)


@purchase_orders_bp.route('/<order_id>', methods=['PUT'])
@require_actor
def update_order(order_id):
    purchase_order_service.update_purchase_order(get_session(), order_id, request_payload(), g.actor_id)
    return success({'id': order_id})


@purchase_orders_bp.route('/<order_id>/status', methods=['POST'])
@require_actor
def update_status(order_id):
    payload = request_payload()
    if not payload.get('status'):
        raise ValidationError('Le statut est obligatoire')
    purchase_order_service.update_purchase_order_status(
        get_session(), order_id, payload['status'], g.actor_id, payload.get('reception_date')
    )
    return success({'id': order_id})


@purchase_orders_bp.route('/<order_id>', methods=['DELETE'])
@require_actor
def delete_order(order_id):
    purchase_order_service.delete_purchase_order(get_session(), order_id)
    return success({'id': order_id})


@purchase_orders_bp.route('/delete', methods=['POST'])
@require_actor
def delete_orders():
    """Bulk delete: {ids: [...]}."""
    ids = request_payload().get('ids') or []
    if not ids:
        raise ValidationError('Aucun bon de commande sélectionné')
    purchase_order_service.delete_purchase_orders(get_session(), ids)
    return success({'ids': ids})
