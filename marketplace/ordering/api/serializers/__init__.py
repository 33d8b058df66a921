from .order_serializers import AddressSerializer, OrderDetailSerializer, OrderItemSerializer, OrderSummarySerializer

__all__ = [
    "AddressSerializer",
    "OrderDetailSerializer",
    "OrderItemSerializer",
    "OrderSummarySerializer",
]
