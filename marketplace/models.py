from marketplace.catalog.domain.models import Product
from marketplace.ordering.domain.models import Address, Order, OrderItem, OrderStatus


__all__ = [
    "Product",
    "Address",
    "Order",
    "OrderItem",
    "OrderStatus",
]
