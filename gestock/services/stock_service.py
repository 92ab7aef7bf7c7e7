"""Stock service: manual stock entries and stock read models."""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from flask import current_app, has_app_context

from gestock.database import generate_id, transaction
from gestock.exceptions import NotFoundError, ValidationError
from gestock.models import MovementSource, Product, ReferenceType, StockCurrent, StockMovement
from gestock.services import stock_ledger
from gestock.services.cache_service import (
    TAG_STOCK, TAG_STOCK_MOVEMENTS, get_cache, invalidate_tags
)
from gestock.utils.number_format import quantize_money

logger = logging.getLogger(__name__)


def add_stock_entry(session, items: List[Dict[str, Any]], actor_id: Optional[str] = None) -> List[str]:
    """
    Record manual stock receipts.

    Each item ({product_id, quantity, unit_cost, movement_date, notes}) becomes
    its own stock entry, received at its own date with its own note.

    Returns:
        The stock entry ids, one per item.
    """
    if not items:
        raise ValidationError('Veuillez ajouter au moins un produit')

    entry_ids = []
    try:
        with transaction(session):
            for item in items:
                entry_id = generate_id()
                stock_ledger.apply_movements(
                    session,
                    [item],
                    item.get('movement_date'),
                    ReferenceType.STOCK_ENTRY,
                    entry_id,
                    stock_ledger.INCREASE,
                    actor_id,
                    movement_source=MovementSource.ADJUSTMENT,
                    notes=item.get('notes')
                )
                entry_ids.append(entry_id)
    except Exception:
        logger.exception('Error adding stock entry')
        raise

    invalidate_tags(TAG_STOCK, TAG_STOCK_MOVEMENTS)
    return entry_ids


def get_stock(session, product_id: str) -> StockCurrent:
    stock = session.query(StockCurrent).filter(StockCurrent.product_id == product_id).first()
    if not stock:
        raise NotFoundError("Aucun stock pour ce produit")
    return stock


def list_stock(session) -> List[Dict[str, Any]]:
    """Current stock per product, ordered by product code."""
    rows = (
        session.query(StockCurrent, Product)
        .join(Product, Product.id == StockCurrent.product_id)
        .order_by(Product.code)
        .all()
    )
    return [
        {
            'product_id': product.id,
            'product_code': product.code,
            'product_name': product.name,
            'unit_of_measure': product.unit_of_measure,
            'quantity_available': stock.quantity_available,
            'average_cost': stock.average_cost,
            'total_value': quantize_money(stock.quantity_available * stock.average_cost),
            'last_movement_date': stock.last_movement_date,
        }
        for stock, product in rows
    ]


def list_movements(
    session,
    product_id: Optional[str] = None,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None
) -> List[StockMovement]:
    """Stock movements, newest first, optionally filtered."""
    query = session.query(StockMovement)
    if product_id:
        query = query.filter(StockMovement.product_id == product_id)
    if reference_type:
        query = query.filter(StockMovement.reference_type == ReferenceType(reference_type))
    if reference_id:
        query = query.filter(StockMovement.reference_id == reference_id)
    return query.order_by(StockMovement.movement_date.desc(), StockMovement.created_at.desc()).all()


def get_stock_overview(session, low_stock_threshold: Optional[Decimal] = None) -> Dict[str, Any]:
    """
    Stock dashboard figures, cached under the stock tag.

    Low stock means quantity_available <= threshold (LOW_STOCK_THRESHOLD).
    """
    if low_stock_threshold is None:
        low_stock_threshold = Decimal(str(current_app.config.get('LOW_STOCK_THRESHOLD', 0))) \
            if has_app_context() else Decimal('0')

    def _load():
        stocks = session.query(StockCurrent).all()
        total_value = sum((s.quantity_available * s.average_cost for s in stocks), Decimal('0'))
        return {
            'product_count': len(stocks),
            'total_quantity': sum((s.quantity_available for s in stocks), Decimal('0')),
            'total_value': quantize_money(total_value),
            'low_stock_count': sum(1 for s in stocks if s.quantity_available <= low_stock_threshold),
        }

    if not has_app_context():
        return _load()
    ttl = current_app.config.get('CACHE_STOCK_TTL')
    return get_cache().memoize(TAG_STOCK, f'overview:{low_stock_threshold}', _load, ttl)
