from .users import User
from .catalog import Product
from .inventory import StockEntry, StockMovement, LowStockAlert
from .promotions import DiscountCode
from .settings import GlobalSettings
from .sales import Cart, CartItem, Order, OrderItem
from .communications import Notification
from .documents import DocumentSequence

__all__ = [
    'User',
    'Product',
    'StockEntry', 'StockMovement', 'LowStockAlert',
    'DiscountCode',
    'GlobalSettings',
    'Cart', 'CartItem', 'Order', 'OrderItem',
    'Notification',
    'DocumentSequence',
]
