"""Models package - exports all SQLAlchemy models."""
# Catalog and partners
from gestock.models.product import Product
from gestock.models.partner import Partner, PartnerType

# Stock ledger
from gestock.models.stock_current import StockCurrent
from gestock.models.stock_movement import StockMovement, MovementType, MovementSource, ReferenceType

# Source documents
from gestock.models.purchase_order import PurchaseOrder, PurchaseOrderStatus
from gestock.models.purchase_order_item import PurchaseOrderItem
from gestock.models.delivery_note import DeliveryNote, DeliveryNoteType, DeliveryNoteStatus
from gestock.models.delivery_note_item import DeliveryNoteItem
from gestock.models.delivery_note_cancellation import DeliveryNoteCancellation
from gestock.models.delivery_note_cancellation_item import DeliveryNoteCancellationItem

# Billing
from gestock.models.invoice import Invoice, InvoiceType, PaymentStatus, InvoiceStatus
from gestock.models.invoice_item import InvoiceItem
from gestock.models.payment import Payment, PaymentMethod

__all__ = [
    'Product', 'Partner', 'PartnerType',
    'StockCurrent', 'StockMovement', 'MovementType', 'MovementSource', 'ReferenceType',
    'PurchaseOrder', 'PurchaseOrderStatus', 'PurchaseOrderItem',
    'DeliveryNote', 'DeliveryNoteType', 'DeliveryNoteStatus', 'DeliveryNoteItem',
    'DeliveryNoteCancellation', 'DeliveryNoteCancellationItem',
    'Invoice', 'InvoiceType', 'PaymentStatus', 'InvoiceStatus', 'InvoiceItem',
    'Payment', 'PaymentMethod',
]
