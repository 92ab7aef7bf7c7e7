"""Parsing helpers for amounts, quantities and dates received by actions."""
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from gestock.exceptions import ValidationError

CENT = Decimal('0.01')
MILLI = Decimal('0.001')


def to_decimal(value, field='valeur') -> Decimal:
    """
    Convert an int, float, str or Decimal to Decimal.

    Floats go through str() so that 0.1 becomes Decimal('0.1').

    Raises:
        ValidationError: if the value is missing, not a number, NaN or infinite.
    """
    if value is None or value == '':
        raise ValidationError(f'Le champ {field} est obligatoire')
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f'Valeur numérique invalide pour {field}: {value}')
    if not result.is_finite():
        raise ValidationError(f'Valeur numérique invalide pour {field}: {value}')
    return result


def quantize_money(value: Decimal, field='montant') -> Decimal:
    """Round half-up to 2 decimals."""
    return _quantize(value, CENT, field)


def quantize_quantity(value: Decimal, field='quantité') -> Decimal:
    """Round half-up to 3 decimals."""
    return _quantize(value, MILLI, field)


def _quantize(value: Decimal, step: Decimal, field) -> Decimal:
    # Out-of-range values (1e400) cannot be quantized within the context precision
    try:
        return value.quantize(step, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(f'Valeur numérique invalide pour {field}: {value}')


def parse_date(value, field='date') -> date:
    """
    Accept a date, a datetime or a "YYYY-MM-DD" string.

    Raises:
        ValidationError: if the value is missing or malformed.
    """
    if value is None or value == '':
        raise ValidationError(f'Le champ {field} est obligatoire')
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip()[:10], '%Y-%m-%d').date()
    except ValueError:
        raise ValidationError(f'Date invalide pour {field}: {value} (format attendu AAAA-MM-JJ)')


def parse_optional_date(value, field='date'):
    """Same as parse_date but returns None for empty values."""
    if value is None or value == '':
        return None
    return parse_date(value, field)
