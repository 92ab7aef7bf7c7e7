"""
Unit tests for document numbering.
"""

import re
import pytest
from datetime import date

from gestock.exceptions import BusinessLogicError
from gestock.models import Product
from gestock.services import numbering

YEAR = date.today().year


class TestNumberFormats:
    """PREFIX-YYYY-XXXXXX numbers."""

    @pytest.mark.parametrize('invoice_type,prefix', [
        ('sale_invoice', 'FAC-VT'),
        ('purchase', 'FAC-ACH'),
        ('delivery_note_invoice', 'BL'),
        ('proforma', 'FAC-PRO'),
        ('sale_local', 'FAC-LOC'),
        ('sale_export', 'FAC-EXP'),
        ('unknown', 'FAC'),
    ])
    def test_invoice_prefixes(self, invoice_type, prefix):
        number = numbering.generate_invoice_number(invoice_type)
        assert re.fullmatch(rf'{prefix}-{YEAR}-\d{{6}}', number)

    def test_cancellation_prefixes(self):
        assert numbering.generate_cancellation_number('delivery_note_cancellation', 'abc123') == f'BL-ANL-{YEAR}-abc123'
        assert numbering.generate_cancellation_number('sale_invoice_cancellation').startswith(f'FAC-VT-AN-{YEAR}-')
        assert numbering.generate_cancellation_number('other').startswith(f'ANL-{YEAR}-')

    def test_delivery_note_numbers(self):
        assert re.fullmatch(rf'BL-{YEAR}-\d{{6}}', numbering.generate_delivery_note_number('local'))
        assert re.fullmatch(rf'BL-EXP-{YEAR}-\d{{6}}', numbering.generate_delivery_note_number('export'))

    def test_other_documents(self):
        assert numbering.generate_purchase_order_number('000042') == f'CMD-ACH-{YEAR}-000042'
        assert re.fullmatch(rf'PAY-{YEAR}-\d{{6}}', numbering.generate_payment_number())


class TestUniqueNumber:
    """Tests for generate_unique_number."""

    def test_returns_free_number(self, session):
        assert numbering.generate_unique_number(session, Product.code, lambda: 'P-999') == 'P-999'

    def test_retries_on_collision(self, session, product):
        candidates = iter([product.code, product.code, 'P-NEW'])
        assert numbering.generate_unique_number(session, Product.code, lambda: next(candidates)) == 'P-NEW'

    def test_gives_up_after_attempts(self, session, product):
        code = product.code
        with pytest.raises(BusinessLogicError) as exc_info:
            numbering.generate_unique_number(session, Product.code, lambda: code, attempts=3)
        assert 'numéro unique' in exc_info.value.message
