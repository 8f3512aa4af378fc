from .orders import Order, OrderItem, OrderAuditEvent
from .payments import Payment, PaymentMethod, WebhookEventLog
from .inventory import InventoryItem, StockMovement
from .recovery import NoShowRecord, ErrorRecoveryRecord
from .notifications import NotificationRecord

__all__ = [
    'Order', 'OrderItem', 'OrderAuditEvent',
    'Payment', 'PaymentMethod', 'WebhookEventLog',
    'InventoryItem', 'StockMovement',
    'NoShowRecord', 'ErrorRecoveryRecord',
    'NotificationRecord',
]
