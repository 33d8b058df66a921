from rest_framework import serializers

from marketplace.ordering.domain.models.order import Address, Order, OrderItem


class OrderItemSerializer(serializers.ModelSerializer):
    productId = serializers.UUIDField(source="product_id", read_only=True)
    lineTotal = serializers.DecimalField(source="line_total", max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = OrderItem
        fields = ["id", "productId", "quantity", "price", "lineTotal"]
        read_only_fields = fields


class AddressSerializer(serializers.ModelSerializer):
    postalCode = serializers.CharField(source="postal_code", read_only=True)
    isDefault = serializers.BooleanField(source="is_default", read_only=True)

    class Meta:
        model = Address
        fields = ["id", "name", "street", "city", "state", "postalCode", "country", "isDefault"]
        read_only_fields = fields


class OrderSummarySerializer(serializers.ModelSerializer):
    """Payload returned to the checkout caller: ``{orderId, total, status, createdAt}``."""

    orderId = serializers.UUIDField(source="id", read_only=True)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)

    class Meta:
        model = Order
        fields = ["orderId", "total", "status", "createdAt"]
        read_only_fields = fields


class OrderDetailSerializer(OrderSummarySerializer):
    items = OrderItemSerializer(many=True, read_only=True)
    address = AddressSerializer(read_only=True)

    class Meta(OrderSummarySerializer.Meta):
        fields = OrderSummarySerializer.Meta.fields + ["address", "items"]
        read_only_fields = fields
