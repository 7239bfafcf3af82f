from .tenancy import Company, User, Location
from .invoices import Customer, Invoice
from .inventory import InventoryItem, InventoryLocationQuantity, InventoryTransfer
from .billing import Subscription, SubscriptionPayment

__all__ = [
    'Company', 'User', 'Location',
    'Customer', 'Invoice',
    'InventoryItem', 'InventoryLocationQuantity', 'InventoryTransfer',
    'Subscription', 'SubscriptionPayment',
]
