"""
Human-readable document numbers.

Format: PREFIX-YYYY-XXXXXX, where XXXXXX is a random zero-padded 6-digit
number unless a suffix is given.
"""
import random
from datetime import date
from typing import Callable, Optional

from gestock.exceptions import BusinessLogicError

INVOICE_PREFIXES = {
    'sale_invoice': 'FAC-VT',
    'purchase': 'FAC-ACH',
    'delivery_note_invoice': 'BL',
    'proforma': 'FAC-PRO',
    'sale_local': 'FAC-LOC',
    'sale_export': 'FAC-EXP',
}

CANCELLATION_PREFIXES = {
    'delivery_note_cancellation': 'BL-ANL',
    'sale_invoice_cancellation': 'FAC-VT-AN',
}

MAX_ATTEMPTS = 10


def _random_suffix() -> str:
    return f"{random.randint(0, 999999):06d}"


def _format(prefix: str, suffix: Optional[str]) -> str:
    return f"{prefix}-{date.today().year}-{suffix or _random_suffix()}"


def generate_invoice_number(invoice_type: str, suffix: Optional[str] = None) -> str:
    return _format(INVOICE_PREFIXES.get(invoice_type, 'FAC'), suffix)


def generate_cancellation_number(cancellation_type: str, suffix: Optional[str] = None) -> str:
    return _format(CANCELLATION_PREFIXES.get(cancellation_type, 'ANL'), suffix)


def generate_delivery_note_number(note_type: str, suffix: Optional[str] = None) -> str:
    return _format('BL-EXP' if note_type == 'export' else 'BL', suffix)


def generate_purchase_order_number(suffix: Optional[str] = None) -> str:
    return _format('CMD-ACH', suffix)


def generate_payment_number(suffix: Optional[str] = None) -> str:
    return _format('PAY', suffix)


def generate_unique_number(session, column, generator: Callable[[], str], attempts: int = MAX_ATTEMPTS) -> str:
    """
    Draw numbers from ``generator`` until one is not used in ``column``.

    Raises:
        BusinessLogicError: after ``attempts`` collisions.
    """
    for _ in range(attempts):
        number = generator()
        if session.query(column).filter(column == number).first() is None:
            return number
    raise BusinessLogicError('Impossible de générer un numéro unique. Veuillez réessayer.')
