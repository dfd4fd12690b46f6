from .business import Business, BusinessToken
from .catalog import Item
from .promotions import Promotion, PromotionDetail
from .orders import (
    Order,
    OrderStatus,
    OrderStatusEvent,
    OrderLineItem,
    OrderCost,
    SettlementLease,
    STATUS_NAMES,
    status_name,
)

__all__ = [
    'Business', 'BusinessToken',
    'Item',
    'Promotion', 'PromotionDetail',
    'Order', 'OrderStatus', 'OrderStatusEvent', 'OrderLineItem', 'OrderCost', 'SettlementLease',
    'STATUS_NAMES', 'status_name',
]
