from .order_service import LineItem, OrderService, ShippingAddress

__all__ = [
    "LineItem",
    "OrderService",
    "ShippingAddress",
]
