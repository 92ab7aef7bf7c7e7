"""Partners blueprint: clients and suppliers."""
from flask import Blueprint, request

from gestock.database import get_session
from gestock.decorators.actor import require_actor
from gestock.exceptions import ValidationError
from gestock.services import partner_service
from gestock.utils.serializers import partner_to_dict, request_payload, success

partners_bp = Blueprint('partners', __name__, url_prefix='/api/partners')


@partners_bp.route('', methods=['GET'])
def list_partners():
    """Partners ordered by name, optionally filtered by ?type=client|fournisseur."""
    partners = partner_service.list_partners(get_session(), request.args.get('type'))
    return success([partner_to_dict(p) for p in partners])


@partners_bp.route('/<partner_id>', methods=['GET'])
def get_partner(partner_id):
    return success(partner_to_dict(partner_service.get_partner(get_session(), partner_id)))


@partners_bp.route('', methods=['POST'])
@require_actor
def create_partner():
    partner_id = partner_service.create_partner(get_session(), request_payload())
    return success({'id': partner_id}, 201)


@partners_bp.route('/<partner_id>', methods=['DELETE'])
@require_actor
def delete_partner(partner_id):
    partner_service.delete_partner(get_session(), partner_id)
    return success({'id': partner_id})


@partners_bp.route('/delete', methods=['POST'])
@require_actor
def delete_partners():
    """Bulk delete: {ids: [...]}."""
    ids = request_payload().get('ids') or []
    if not ids:
        raise ValidationError('Aucun partenaire sélectionné')
    partner_service.delete_partners(get_session(), ids)
    return success({'ids': ids})
