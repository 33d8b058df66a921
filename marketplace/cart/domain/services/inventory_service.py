"""
InventoryService - Stock Management

Availability checks and seller stock edits. Edits are guarded by the product's
version stamp: a caller that read an older version gets a concurrency conflict
and must re-read before trying again.
"""

from typing import Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db.models import F

from marketplace.catalog.domain.models.catalog import Product
from marketplace.infra.observability.metrics import stock_updates_total
from utils.concurrency import with_optimistic_concurrency
from utils.errors import ApiError, ErrorCodes, bad_request_error, not_found_error, validation_error
from utils.service_base import BaseService, ServiceResult, service_ok
from utils.transaction_utils import TransactionExecutor, get_executor

STOCK_OPERATIONS = ("set", "add", "subtract")


class InventoryService(BaseService):
    """
    Service for reading and editing product inventory.
    """

    def __init__(self, executor: Optional[TransactionExecutor] = None):
        super().__init__()
        self.executor = executor or get_executor()

    @BaseService.log_performance
    def check_availability(self, product_id: str, quantity: int = 1) -> ServiceResult[bool]:
        """
        Check if a product has sufficient stock available.

        Args:
            product_id: UUID of the product
            quantity: Quantity to check (default: 1)

        Returns:
            ServiceResult with True if available, False otherwise. Untracked
            products are always available.

        Example:
            >>> result = inventory_service.check_availability(product_id, 5)
            >>> if result.ok and result.value:
            ...     print("Product is in stock!")
        """
        if quantity <= 0:
            return self.fail(
                validation_error("Quantity must be positive", details={"code": ErrorCodes.INVALID_QUANTITY})
            )

        try:
            product = Product.objects.filter(id=product_id).only("id", "inventory").first()
        except DjangoValidationError:
            product = None
        if product is None:
            return self.fail(
                not_found_error(
                    "Product not found",
                    details={"code": ErrorCodes.PRODUCT_NOT_FOUND, "product_id": str(product_id)},
                )
            )

        available = product.stock_level.covers(quantity)
        self.logger.info(
            f"Availability check for product {product_id}: "
            f"requested={quantity}, stock={product.stock_level}, result={available}"
        )
        return service_ok(available)

    @BaseService.log_performance
    def update_stock(
        self, product_id: str, expected_version: int, quantity: Optional[int], operation: str = "set"
    ) -> ServiceResult[Product]:
        """
        Edit a product's stock if nobody changed it since ``expected_version``.

        Args:
            product_id: UUID of the product
            expected_version: Version the seller last read
            quantity: New level for ``set`` (None switches the product to untracked),
                or the amount to ``add``/``subtract``
            operation: 'set', 'add' or 'subtract'

        Returns:
            ServiceResult with the updated Product (new version included)
        """
        try:
            self._validate_stock_edit(quantity, operation)
        except ApiError as e:
            return self.fail(e)

        def mutate(tx):
            product = Product.objects.select_for_update().get(id=product_id)

            if operation == "set":
                Product.objects.filter(id=product_id).update(inventory=quantity)
                return

            if product.inventory is None:
                raise bad_request_error(
                    "Product stock is not tracked",
                    details={"code": ErrorCodes.INVALID_INPUT, "product_id": str(product_id)},
                )

            if operation == "add":
                Product.objects.filter(id=product_id).update(inventory=F("inventory") + quantity)
                return

            if product.inventory < quantity:
                raise bad_request_error(
                    "Insufficient inventory",
                    details={
                        "code": ErrorCodes.INSUFFICIENT_STOCK,
                        "product_id": str(product_id),
                        "available": product.inventory,
                        "requested": quantity,
                    },
                )
            Product.objects.filter(id=product_id).update(inventory=F("inventory") - quantity)

        try:
            with_optimistic_concurrency(Product, product_id, expected_version, mutate, executor=self.executor)
        except ApiError as e:
            stock_updates_total.labels(operation=operation, result=e.kind.value).inc()
            return self.fail(e)

        stock_updates_total.labels(operation=operation, result="ok").inc()
        product = Product.objects.get(id=product_id)
        self.logger.info(
            f"Stock {operation} on product {product_id}: quantity={quantity}, "
            f"inventory={product.inventory}, version {expected_version} -> {product.version}"
        )
        return service_ok(product)

    @staticmethod
    def _validate_stock_edit(quantity: Optional[int], operation: str) -> None:
        if operation not in STOCK_OPERATIONS:
            raise validation_error(
                f"Unknown stock operation '{operation}'",
                details={"code": ErrorCodes.INVALID_INPUT, "allowed": list(STOCK_OPERATIONS)},
            )

        if operation == "set":
            if quantity is not None and (not isinstance(quantity, int) or quantity < 0):
                raise validation_error(
                    "Stock level must be a non-negative integer",
                    details={"code": ErrorCodes.INVALID_QUANTITY},
                )
            return

        if not isinstance(quantity, int) or quantity <= 0:
            raise validation_error("Quantity must be positive", details={"code": ErrorCodes.INVALID_QUANTITY})
