"""JSON representations of models returned by the API."""
from datetime import date, datetime
from decimal import Decimal
from enum import Enum


def to_json(value):
    """Convert Decimals, dates and enums recursively into JSON-friendly values."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: to_json(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json(item) for item in value]
    return value


def _columns(obj, *names):
    return {name: to_json(getattr(obj, name)) for name in names}


def partner_to_dict(partner):
    return _columns(
        partner, 'id', 'name', 'type', 'contact_person', 'phone', 'email', 'address',
        'country', 'credit', 'nif', 'rc'
    )


def stock_to_dict(stock):
    return _columns(
        stock, 'product_id', 'quantity_available', 'average_cost', 'last_movement_date'
    )


def movement_to_dict(movement):
    return _columns(
        movement, 'id', 'product_id', 'movement_type', 'movement_source', 'reference_type',
        'reference_id', 'quantity', 'unit_cost', 'movement_date', 'notes', 'created_by'
    )


def purchase_order_to_dict(order):
    data = _columns(
        order, 'id', 'order_number', 'supplier_id', 'order_date', 'reception_date', 'status',
        'supplier_order_number', 'total_amount', 'notes', 'created_by'
    )
    data['items'] = [
        _columns(item, 'id', 'product_id', 'quantity', 'unit_cost', 'line_total')
        for item in order.items
    ]
    return data


def delivery_note_to_dict(note):
    data = _columns(
        note, 'id', 'note_number', 'note_type', 'client_id', 'note_date', 'status', 'currency',
        'destination_country', 'delivery_location', 'notes', 'created_by'
    )
    data['items'] = [
        _columns(item, 'id', 'product_id', 'quantity', 'unit_price', 'discount_percent', 'line_total')
        for item in note.items
    ]
    return data


def cancellation_to_dict(cancellation):
    data = _columns(
        cancellation, 'id', 'cancellation_number', 'original_delivery_note_id', 'client_id',
        'cancellation_date', 'reason', 'is_full', 'created_by'
    )
    data['items'] = [
        _columns(
            item, 'id', 'delivery_note_item_id', 'product_id', 'quantity',
            'unit_price', 'discount_percent', 'line_total'
        )
        for item in cancellation.items
    ]
    return data


def invoice_to_dict(invoice):
    data = _columns(
        invoice, 'id', 'invoice_number', 'invoice_type', 'client_id', 'supplier_id',
        'delivery_note_id', 'purchase_order_id', 'invoice_date', 'due_date', 'currency',
        'destination_country', 'delivery_location', 'subtotal', 'tax_amount', 'total_amount',
        'payment_status', 'status', 'notes'
    )
    data['items'] = [
        _columns(
            item, 'id', 'product_id', 'quantity', 'unit_price', 'discount_percent', 'tax_rate',
            'line_subtotal', 'line_tax', 'line_total'
        )
        for item in invoice.items
    ]
    data['payments'] = [payment_to_dict(payment) for payment in invoice.payments]
    return data


def payment_to_dict(payment):
    return _columns(
        payment, 'id', 'payment_number', 'invoice_id', 'partner_id', 'payment_date', 'amount',
        'payment_method', 'reference', 'notes'
    )


def success(data=None, status=200):
    """Action result envelope: {data, error: null}."""
    from flask import jsonify
    return jsonify({'data': to_json(data), 'error': None}), status


def request_payload():
    """JSON body of the current request as a dict."""
    from flask import request
    from gestock.exceptions import ValidationError

    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError('Le corps de la requête doit être un objet JSON')
    return payload
