import uuid
from dataclasses import dataclass
from typing import Union

from django.core.validators import MinValueValidator
from django.db import models


@dataclass(frozen=True)
class Tracked:
    """Inventory is counted; ``count`` units are on hand."""

    count: int

    def covers(self, quantity: int) -> bool:
        return self.count >= quantity


@dataclass(frozen=True)
class Untracked:
    """Inventory is not counted (digital goods, made-to-order)."""

    def covers(self, quantity: int) -> bool:
        return True


UNTRACKED = Untracked()

StockLevel = Union[Tracked, Untracked]


class Product(models.Model):
    # Basic Information
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    title = models.CharField(max_length=200)
    description = models.TextField(blank=True)

    # Pricing
    price = models.DecimalField(max_digits=10, decimal_places=2, validators=[MinValueValidator(0)])
    discount_price = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)

    # Inventory: NULL means untracked. Only the order engine and stock edits write these two.
    inventory = models.IntegerField(null=True, blank=True)
    version = models.PositiveIntegerField(default=0)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        app_label = "marketplace"
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(inventory__isnull=True) | models.Q(inventory__gte=0),
                name="marketplace_product_inventory_non_negative",
            ),
        ]

    def __str__(self):
        return self.title

    @property
    def stock_level(self) -> StockLevel:
        if self.inventory is None:
            return UNTRACKED
        return Tracked(self.inventory)

    @property
    def effective_price(self):
        return self.discount_price if self.discount_price is not None else self.price
