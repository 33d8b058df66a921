from .order import Address, Order, OrderItem, OrderStatus


__all__ = [
    "Address",
    "Order",
    "OrderItem",
    "OrderStatus",
]
