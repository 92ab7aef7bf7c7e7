"""
Stock ledger reconciler.

Applies, reverses and re-applies the stock effect of a source document's
line items, keeping StockCurrent consistent with the StockMovement rows
tagged with the document's (reference_type, reference_id).

Every function here receives the caller's session and never commits: the
document action owns the transaction, so a failure halfway through a
reconcile (reverse succeeded, apply failed) is rolled back as a whole.
Cache invalidation is also left to the caller.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from gestock.blueprints.metrics import stock_movements_total, stock_reconciliation_failures_total
from gestock.exceptions import (
    InsufficientStockError, NoStockRecordError, ProductNotFoundError, ValidationError
)
from gestock.models import (
    MovementSource, MovementType, Product, ReferenceType, StockCurrent, StockMovement
)
from gestock.utils.number_format import parse_date, quantize_money, quantize_quantity, to_decimal

logger = logging.getLogger(__name__)

INCREASE = 'increase'
DECREASE = 'decrease'

ZERO = Decimal('0')

DEFAULT_SOURCES = {
    ReferenceType.PURCHASE_ORDER: MovementSource.PURCHASE,
    ReferenceType.DELIVERY_NOTE: MovementSource.SALE_LOCAL,
    ReferenceType.DELIVERY_NOTE_CANCELLATION: MovementSource.RETURN,
    ReferenceType.STOCK_ENTRY: MovementSource.ADJUSTMENT,
}


# =====================================================
# PURE ARITHMETIC
# =====================================================

def weighted_average_cost(current_quantity, current_average_cost, quantity, unit_cost) -> Decimal:
    """
    Quantity-weighted moving average after receiving ``quantity`` at ``unit_cost``.

    ``(q0*a0 + q*c) / (q0 + q)`` rounded half-up to 2 decimals.
    """
    total_quantity = current_quantity + quantity
    if total_quantity <= 0:
        return quantize_money(unit_cost)
    return quantize_money((current_quantity * current_average_cost + quantity * unit_cost) / total_quantity)


def prorate_line_total(line_total, original_quantity, quantity) -> Decimal:
    """
    Share of a line total corresponding to ``quantity`` out of ``original_quantity``.

    ``T0 * q / Q0`` rounded half-up to 2 decimals. Assumes uniform per-unit
    economics across the line (discount and tax are not re-derived).
    """
    original_quantity = to_decimal(original_quantity, 'quantité')
    if original_quantity <= 0:
        raise ValidationError("La quantité d'origine doit être supérieure à 0")
    return quantize_money(to_decimal(line_total, 'total') * to_decimal(quantity, 'quantité') / original_quantity)


def normalize_items(items: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Validate ledger line items and convert their numbers to Decimal.

    Accepts ``unit_cost`` or ``unit_price`` (delivery notes carry a price).
    """
    normalized = []
    for item in items:
        product_id = item.get('product_id')
        if not product_id:
            raise ValidationError('Le produit est obligatoire')

        quantity = quantize_quantity(to_decimal(item.get('quantity'), 'quantité'))
        if quantity <= 0:
            raise ValidationError('La quantité doit être supérieure à 0')

        raw_cost = item.get('unit_cost', item.get('unit_price', 0))
        unit_cost = quantize_money(to_decimal(raw_cost if raw_cost is not None else 0, 'coût unitaire'))
        if unit_cost < 0:
            raise ValidationError('Le coût unitaire ne peut pas être négatif')

        normalized.append({'product_id': product_id, 'quantity': quantity, 'unit_cost': unit_cost})
    return normalized


# =====================================================
# LEDGER OPERATIONS
# =====================================================

def apply_movements(
    session,
    items: Iterable[Dict[str, Any]],
    movement_date,
    reference_type,
    reference_id: str,
    direction: str,
    actor_id: Optional[str] = None,
    movement_source=None,
    notes: Optional[str] = None
) -> List[StockMovement]:
    """
    Apply the stock effect of a document's line items.

    Args:
        session: SQLAlchemy session of the enclosing transaction
        items: [{'product_id', 'quantity', 'unit_cost' | 'unit_price'}]
        movement_date: date or 'YYYY-MM-DD'
        reference_type: ReferenceType (or its value)
        reference_id: id of the source document
        direction: INCREASE (receipt, return) or DECREASE (sale)
        actor_id: user recording the movement
        movement_source: MovementSource, defaults from reference_type
        notes: free text stored on each movement

    Returns:
        The StockMovement rows created, one per item.

    Raises:
        ProductNotFoundError, NoStockRecordError, InsufficientStockError, ValidationError
    """
    if direction not in (INCREASE, DECREASE):
        raise ValueError(f'Unknown ledger direction: {direction}')

    reference_type = ReferenceType(reference_type)
    movement_source = MovementSource(movement_source) if movement_source else DEFAULT_SOURCES[reference_type]
    movement_date = parse_date(movement_date, 'date du mouvement')
    lines = normalize_items(items)

    movements = []
    for line_number, line in enumerate(lines):
        product_id = line['product_id']
        quantity = line['quantity']

        if session.get(Product, product_id) is None:
            stock_reconciliation_failures_total.labels(reason='product_not_found').inc()
            raise ProductNotFoundError(product_id)

        stock = _lock_stock(session, product_id)

        if direction == DECREASE:
            if stock is None:
                stock_reconciliation_failures_total.labels(reason='no_stock_record').inc()
                raise NoStockRecordError(product_id)

            current_quantity = stock.quantity_available
            new_quantity = current_quantity - quantity
            if new_quantity < 0:
                logger.warning(
                    f"[LEDGER] Rejected withdrawal of {quantity} from product {product_id} "
                    f"(available {current_quantity}) for {reference_type.value}:{reference_id}"
                )
                stock_reconciliation_failures_total.labels(reason='insufficient_stock').inc()
                raise InsufficientStockError(product_id, current_quantity, quantity)

            # Outgoing movements leave the average cost untouched
            previous_average = stock.average_cost
            unit_cost = stock.average_cost
            stock.quantity_available = new_quantity
            movement_type = MovementType.OUT
        else:
            unit_cost = line['unit_cost']
            if stock is None:
                stock = StockCurrent(
                    product_id=product_id,
                    quantity_available=ZERO,
                    average_cost=unit_cost,
                    movement_sequence=0
                )
                session.add(stock)

            previous_average = stock.average_cost
            stock.average_cost = weighted_average_cost(
                stock.quantity_available, stock.average_cost, quantity, unit_cost
            )
            stock.quantity_available = stock.quantity_available + quantity
            movement_type = MovementType.IN

        stock.last_movement_date = movement_date
        stock.movement_sequence = (stock.movement_sequence or 0) + 1

        movement = StockMovement(
            product_id=product_id,
            movement_type=movement_type,
            movement_source=movement_source,
            reference_type=reference_type,
            reference_id=reference_id,
            line_number=line_number,
            sequence=stock.movement_sequence,
            quantity=quantity,
            unit_cost=unit_cost,
            previous_average_cost=previous_average,
            movement_date=movement_date,
            notes=notes,
            created_by=actor_id
        )
        session.add(movement)
        # Flush so that a repeated product in the same batch sees the new row
        session.flush()
        movements.append(movement)

        stock_movements_total.labels(movement_type=movement_type.value, operation='apply').inc()
        logger.debug(
            f"[LEDGER] {movement_type.value} {quantity} x {product_id} @ {unit_cost} "
            f"for {reference_type.value}:{reference_id} -> qty={stock.quantity_available} avg={stock.average_cost}"
        )

    return movements


def reverse_movements(session, reference_type, reference_id: str, movement_date=None) -> int:
    """
    Undo every movement recorded for a source document and delete the rows.

    Movements are undone last-in first-out. Reversing an "out" adds the
    quantity back with the average cost unchanged. Reversing an "in" removes
    the quantity and restores the average in force before the movement when
    it is still the latest movement of its product (or stock drops to zero);
    otherwise its cost is backed out of the current weighted average.

    Returns:
        Number of movements reversed (0 when none are left).

    Raises:
        InsufficientStockError: reversing an "in" whose goods were already consumed.
    """
    reference_type = ReferenceType(reference_type)
    movements = (
        session.query(StockMovement)
        .filter(
            StockMovement.reference_type == reference_type,
            StockMovement.reference_id == reference_id
        )
        .order_by(StockMovement.line_number.desc())
        .all()
    )

    if not movements:
        return 0

    reversal_date = parse_date(movement_date, 'date du mouvement') if movement_date else None

    for movement in movements:
        stock = _lock_stock(session, movement.product_id)
        if stock is None:
            stock_reconciliation_failures_total.labels(reason='no_stock_record').inc()
            raise NoStockRecordError(movement.product_id)

        if movement.movement_type == MovementType.OUT:
            stock.quantity_available = stock.quantity_available + movement.quantity
        else:
            current_quantity = stock.quantity_available
            new_quantity = current_quantity - movement.quantity
            if new_quantity < 0:
                logger.warning(
                    f"[LEDGER] Cannot reverse receipt of {movement.quantity} x {movement.product_id} "
                    f"(available {current_quantity}) for {reference_type.value}:{reference_id}"
                )
                stock_reconciliation_failures_total.labels(reason='insufficient_stock').inc()
                raise InsufficientStockError(movement.product_id, current_quantity, movement.quantity)

            restore_previous = movement.previous_average_cost is not None and (
                new_quantity == 0 or not _has_later_movements(session, movement)
            )
            if restore_previous:
                stock.average_cost = movement.previous_average_cost
            elif new_quantity > 0:
                # Average cost never goes negative
                remaining_value = max(
                    current_quantity * stock.average_cost - movement.quantity * movement.unit_cost, ZERO
                )
                stock.average_cost = quantize_money(remaining_value / new_quantity)
            stock.quantity_available = new_quantity

        if reversal_date:
            stock.last_movement_date = reversal_date

        stock_movements_total.labels(movement_type=movement.movement_type.value, operation='reverse').inc()
        logger.debug(
            f"[LEDGER] reversed {movement.movement_type.value} {movement.quantity} x {movement.product_id} "
            f"for {reference_type.value}:{reference_id} -> qty={stock.quantity_available} avg={stock.average_cost}"
        )
        session.delete(movement)
        # Later movements of the same product are looked up per row
        session.flush()

    return len(movements)


def reconcile(
    session,
    old_items: Iterable[Dict[str, Any]],
    new_items: Iterable[Dict[str, Any]],
    reference_type,
    reference_id: str,
    movement_date,
    direction: str,
    actor_id: Optional[str] = None,
    movement_source=None,
    notes: Optional[str] = None
) -> List[StockMovement]:
    """
    Bring a document's movements in line with its new items: reverse, then apply.

    ``old_items`` is only used to log the quantity delta per product; the
    reversal works from the recorded movements.
    """
    new_items = list(new_items)
    delta = _quantity_delta(old_items, new_items)
    if delta:
        logger.info(f"[LEDGER] Reconciling {ReferenceType(reference_type).value}:{reference_id} delta={delta}")

    reverse_movements(session, reference_type, reference_id, movement_date)
    if not new_items:
        return []
    return apply_movements(
        session, new_items, movement_date, reference_type, reference_id,
        direction, actor_id, movement_source, notes
    )


# =====================================================
# READ HELPERS
# =====================================================

def get_reference_movements(session, reference_type, reference_id: str) -> List[StockMovement]:
    """Movements currently recorded for a source document."""
    return (
        session.query(StockMovement)
        .filter(
            StockMovement.reference_type == ReferenceType(reference_type),
            StockMovement.reference_id == reference_id
        )
        .order_by(StockMovement.line_number)
        .all()
    )


def verify_ledger(session) -> List[Dict[str, Any]]:
    """
    Compare each product's available quantity with the net of its movements.

    Returns:
        One dict per mismatching product: product_id, recorded_quantity,
        ledger_quantity. Empty when the ledger is consistent.
    """
    ledger_totals: Dict[str, Decimal] = {}
    for movement in session.query(StockMovement).all():
        ledger_totals[movement.product_id] = ledger_totals.get(movement.product_id, ZERO) + movement.signed_quantity

    mismatches = []
    stocks = {stock.product_id: stock for stock in session.query(StockCurrent).all()}
    for product_id in sorted(set(stocks) | set(ledger_totals)):
        recorded = stocks[product_id].quantity_available if product_id in stocks else ZERO
        expected = ledger_totals.get(product_id, ZERO)
        if recorded != expected:
            mismatches.append({
                'product_id': product_id,
                'recorded_quantity': recorded,
                'ledger_quantity': expected,
            })
    return mismatches


# =====================================================
# PRIVATE HELPERS
# =====================================================

def _lock_stock(session, product_id: str) -> Optional[StockCurrent]:
    """Lock the stock_current row FOR UPDATE for the rest of the transaction."""
    return (
        session.query(StockCurrent)
        .filter(StockCurrent.product_id == product_id)
        .with_for_update()
        .first()
    )


def _has_later_movements(session, movement: StockMovement) -> bool:
    """True when the product has movements recorded after ``movement``."""
    later = (
        session.query(StockMovement.id)
        .filter(
            StockMovement.product_id == movement.product_id,
            StockMovement.sequence > movement.sequence
        )
        .first()
    )
    return later is not None


def _quantity_delta(old_items, new_items) -> Dict[str, Decimal]:
    totals: Dict[str, Decimal] = {}
    for item in old_items or ():
        pid = item['product_id']
        totals[pid] = totals.get(pid, ZERO) - to_decimal(item['quantity'], 'quantité')
    for item in new_items or ():
        pid = item['product_id']
        totals[pid] = totals.get(pid, ZERO) + to_decimal(item['quantity'], 'quantité')
    return {pid: qty for pid, qty in totals.items() if qty != 0}
