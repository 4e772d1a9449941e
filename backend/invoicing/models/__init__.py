from .auth import User, SessionToken
from .clients import Client
from .catalog import Product, ProductGroup, ProductGroupItem
from .documents import Invoice, InvoiceItem, Delivery, DeliveryItem
from .activity import ActivityLog

__all__ = [
    'User', 'SessionToken',
    'Client',
    'Product', 'ProductGroup', 'ProductGroupItem',
    'Invoice', 'InvoiceItem', 'Delivery', 'DeliveryItem',
    'ActivityLog',
]
