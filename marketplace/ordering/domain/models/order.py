import uuid

from django.conf import settings
from django.db import models

from marketplace.catalog.domain.models.catalog import Product


class OrderStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"  # Set at creation; only the payment webhook moves it on
    PROCESSING = "PROCESSING", "Processing"
    PAID = "PAID", "Paid"
    SHIPPED = "SHIPPED", "Shipped"
    DELIVERED = "DELIVERED", "Delivered"
    CANCELLED = "CANCELLED", "Cancelled"
    PAYMENT_FAILED = "PAYMENT_FAILED", "Payment Failed"


class Address(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="addresses")

    name = models.CharField(max_length=200)
    street = models.CharField(max_length=255)
    city = models.CharField(max_length=100)
    state = models.CharField(max_length=100, blank=True)
    postal_code = models.CharField(max_length=20)
    country = models.CharField(max_length=100)
    is_default = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        app_label = "marketplace"
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.name}, {self.city} ({self.country})"


class Order(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="orders")

    # Sum of the line-item price snapshots; never recomputed after creation
    total = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=20, choices=OrderStatus.choices, default=OrderStatus.PENDING)
    address = models.ForeignKey(Address, on_delete=models.SET_NULL, null=True, blank=True, related_name="orders")

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        app_label = "marketplace"

    def __str__(self):
        return f"Order {str(self.id)[:8]} ({self.status})"


class OrderItem(models.Model):
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="order_items")

    quantity = models.PositiveIntegerField()
    # Unit price the buyer was shown; historical pricing is never re-derived
    price = models.DecimalField(max_digits=10, decimal_places=2)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        app_label = "marketplace"
        constraints = [
            models.CheckConstraint(condition=models.Q(quantity__gt=0), name="marketplace_orderitem_quantity_positive"),
        ]

    def __str__(self):
        return f"{self.quantity}x {self.product_id} in order {str(self.order_id)[:8]}"

    @property
    def line_total(self):
        return self.price * self.quantity
