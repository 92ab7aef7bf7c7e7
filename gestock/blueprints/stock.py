"""Stock blueprint: current stock, movements and manual stock entries."""
from flask import Blueprint, g, request

from gestock.database import get_session
from gestock.decorators.actor import require_actor
from gestock.services import stock_service
from gestock.utils.serializers import movement_to_dict, request_payload, stock_to_dict, success

stock_bp = Blueprint('stock', __name__, url_prefix='/api/stock')


@stock_bp.route('', methods=['GET'])
def list_stock():
    """Current quantity and average cost per product."""
    return success(stock_service.list_stock(get_session()))


@stock_bp.route('/overview', methods=['GET'])
def overview():
    return success(stock_service.get_stock_overview(get_session()))


@stock_bp.route('/movements', methods=['GET'])
def list_movements():
    movements = stock_service.list_movements(
        get_session(),
        product_id=request.args.get('product_id'),
        reference_type=request.args.get('reference_type'),
        reference_id=request.args.get('reference_id')
    )
    return success([movement_to_dict(m) for m in movements])


@stock_bp.route('/<product_id>', methods=['GET'])
def get_stock(product_id):
    return success(stock_to_dict(stock_service.get_stock(get_session(), product_id)))


@stock_bp.route('/entries', methods=['POST'])
@require_actor
def add_entries():
    """Manual stock receipt: {items: [{product_id, quantity, unit_cost, movement_date, notes}]}."""
    payload = request_payload()
    entry_ids = stock_service.add_stock_entry(get_session(), payload.get('items') or [], g.actor_id)
    return success({'entry_ids': entry_ids}, 201)
