from .auth import User, SessionToken
from .catalog import SellerProfile, Product
from .orders import Order, OrderLine, OrderEvent, Payment
from .payouts import Payout, PayoutOrder
from .notifications import Notification

__all__ = [
    'User', 'SessionToken',
    'SellerProfile', 'Product',
    'Order', 'OrderLine', 'OrderEvent', 'Payment',
    'Payout', 'PayoutOrder',
    'Notification',
]
