"""
OrderService - Order Placement and Payment Status

Turns a validated checkout request into a persisted order without overselling.
Every referenced product row is locked in primary-key order, tracked stock is
decremented with a version-checked write, and the order with its line items is
inserted in the same serializable transaction. Transient storage faults restart
the whole attempt through the TransactionExecutor; business-rule violations
abort it immediately.
"""

import logging
import time
from dataclasses import dataclass, fields
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db.models import F

from marketplace.catalog.domain.models.catalog import Product, Tracked
from marketplace.infra.observability.metrics import (
    order_placement_duration,
    order_status_transitions_total,
    order_value,
    orders_placed_total,
    stock_reservation_failures,
)
from marketplace.infra.observability.tracing import add_span_attributes, get_tracer
from marketplace.ordering.domain.models.order import Address, Order, OrderItem, OrderStatus
from utils.concurrency import conditional_update, lock_rows, with_pessimistic_lock
from utils.errors import (
    ApiError,
    ErrorCodes,
    ErrorKind,
    bad_request_error,
    conflict_error,
    forbidden_error,
    not_found_error,
    validation_error,
)
from utils.logging_utils import sanitize_payload
from utils.service_base import BaseService, ServiceResult, service_ok
from utils.transaction_utils import TransactionExecutor, TransactionHandle, get_executor

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

# Payment webhook outcomes and the statuses they may be applied from
PAYMENT_TRANSITIONS = {
    OrderStatus.PAID: (OrderStatus.PENDING, OrderStatus.PROCESSING),
    OrderStatus.PAYMENT_FAILED: (OrderStatus.PENDING, OrderStatus.PROCESSING),
}


def _order_not_found(order_id: Any) -> ApiError:
    return not_found_error("Order not found", details={"code": ErrorCodes.ORDER_NOT_FOUND, "order_id": str(order_id)})


def _parse_order_id(order_id: Any):
    """The order id as a UUID, or None when it cannot name any order."""
    try:
        return Order._meta.pk.to_python(order_id)
    except DjangoValidationError:
        return None


@dataclass(frozen=True)
class LineItem:
    """One cart line: product, quantity and the unit price the buyer was shown."""

    product_id: Any
    quantity: int
    price: Decimal

    @classmethod
    def coerce(cls, item: Union["LineItem", Mapping[str, Any]]) -> "LineItem":
        """
        Accept a LineItem or a parsed request dict (``productId`` or ``product_id``).

        The product id is normalised to a UUID and the price to a finite Decimal.
        """
        if isinstance(item, cls):
            product_id, quantity, price = item.product_id, item.quantity, item.price
        else:
            try:
                product_id = item.get("product_id", item.get("productId"))
                quantity = item["quantity"]
                price = item["price"]
            except (AttributeError, KeyError, TypeError):
                raise validation_error(
                    "Each item needs product_id, quantity and price", details={"code": ErrorCodes.INVALID_INPUT}
                )
        if product_id is None:
            raise validation_error("Each item needs a product_id", details={"code": ErrorCodes.INVALID_INPUT})

        try:
            product_id = Product._meta.pk.to_python(product_id)
        except DjangoValidationError:
            raise validation_error(
                "Invalid product id", details={"code": ErrorCodes.INVALID_INPUT, "product_id": str(product_id)}
            )

        try:
            price = Decimal(str(price))
        except InvalidOperation:
            raise validation_error("Price must be a number", details={"code": ErrorCodes.INVALID_PRICE})
        if not price.is_finite():
            raise validation_error("Price must be a finite number", details={"code": ErrorCodes.INVALID_PRICE})

        return cls(product_id=product_id, quantity=quantity, price=price)


@dataclass(frozen=True)
class ShippingAddress:
    """Inline shipping address; stored only when ``save_address`` is set."""

    name: str
    street: str
    city: str
    postal_code: str
    country: str
    state: str = ""
    save_address: bool = False

    @classmethod
    def coerce(cls, address: Union["ShippingAddress", Mapping[str, Any]]) -> "ShippingAddress":
        if isinstance(address, cls):
            return address

        data = dict(address)
        if "postalCode" in data and "postal_code" not in data:
            data["postal_code"] = data.pop("postalCode")
        if "saveAddress" in data and "save_address" not in data:
            data["save_address"] = data.pop("saveAddress")

        known = {f.name for f in fields(cls)}
        missing = [name for name in ("name", "street", "city", "postal_code", "country") if not data.get(name)]
        if missing:
            raise validation_error(
                "Shipping address is incomplete",
                details={"code": ErrorCodes.INVALID_INPUT, "missing": missing},
            )
        return cls(**{key: value for key, value in data.items() if key in known and value is not None})

    def as_log_payload(self) -> Dict[str, Any]:
        return sanitize_payload(
            {
                "name": self.name,
                "city": self.city,
                "country": self.country,
                "postal_code": self.postal_code,
                "save_address": self.save_address,
            }
        )


class OrderService(BaseService):
    """
    Service for placing orders and applying payment outcomes.
    """

    def __init__(self, executor: Optional[TransactionExecutor] = None):
        """
        Initialize OrderService.

        Args:
            executor: TransactionExecutor used for every write (injected; defaults
                to the process-wide executor built from settings)
        """
        super().__init__()
        self.executor = executor or get_executor()

    @BaseService.log_performance
    def place_order(
        self,
        user_id: int,
        line_items: Iterable[Union[LineItem, Mapping[str, Any]]],
        address_id: Optional[str] = None,
        address: Optional[Union[ShippingAddress, Mapping[str, Any]]] = None,
    ) -> ServiceResult[Order]:
        """
        Reserve stock for every line item and persist the order, all or nothing.

        Args:
            user_id: Authenticated buyer
            line_items: Cart lines with the unit price shown to the buyer
            address_id: Saved address of the buyer to ship to
            address: Inline shipping address, used when no ``address_id`` is given

        Returns:
            ServiceResult with the PENDING Order (items prefetched), or the error:
            - BAD_REQUEST: empty cart, insufficient inventory
            - VALIDATION_ERROR: non-positive quantity, negative price
            - NOT_FOUND: unknown product or address
            - CONCURRENCY_CONFLICT / SERVICE_UNAVAILABLE / INTERNAL_ERROR: retries exhausted

        Example:
            >>> result = order_service.place_order(user.id, [{"productId": pid, "quantity": 2, "price": "9.99"}])
            >>> if result.ok:
            ...     order = result.value
        """
        start = time.monotonic()

        with tracer.start_as_current_span("order.place") as span:
            add_span_attributes(span, user_id=user_id)

            try:
                items = self._validate_line_items(line_items)
                shipping = ShippingAddress.coerce(address) if address is not None and address_id is None else None
            except ApiError as e:
                orders_placed_total.labels(status="rejected").inc()
                return self.fail(e)

            add_span_attributes(span, line_items=len(items), address_id=address_id or "")
            if shipping is not None:
                self.logger.debug(f"Inline shipping address for user {user_id}: {shipping.as_log_payload()}")

            try:
                order = self.executor.execute(
                    lambda tx: self._place_order_attempt(tx, user_id, items, address_id, shipping),
                    isolation_level="SERIALIZABLE",
                )
            except ApiError as e:
                orders_placed_total.labels(status="failed").inc()
                add_span_attributes(span, error_kind=e.kind.value)
                return self.fail(e)
            finally:
                order_placement_duration.observe(time.monotonic() - start)

            orders_placed_total.labels(status="success").inc()
            order_value.observe(float(order.total))
            add_span_attributes(span, order_id=order.id, total=order.total)

        self.logger.info(
            f"Order {order.id} placed for user {user_id}: {len(items)} line item(s), total={order.total}"
        )
        return service_ok(order)

    def _place_order_attempt(
        self,
        tx: TransactionHandle,
        user_id: int,
        items: List[LineItem],
        address_id: Optional[str],
        shipping: Optional[ShippingAddress],
    ) -> Order:
        with tracer.start_as_current_span("order.reserve_stock") as span:
            add_span_attributes(span, attempt=tx.attempt)
            self._reserve_stock(items)

        total = sum((item.price * item.quantity for item in items), Decimal("0"))
        order_address = self._resolve_address(user_id, address_id, shipping)

        with tracer.start_as_current_span("order.persist"):
            order = Order.objects.create(
                user_id=user_id,
                total=total,
                status=OrderStatus.PENDING,
                address=order_address,
            )
            OrderItem.objects.bulk_create(
                [
                    OrderItem(order=order, product_id=item.product_id, quantity=item.quantity, price=item.price)
                    for item in items
                ]
            )

        return Order.objects.prefetch_related("items").get(pk=order.pk)

    def _reserve_stock(self, items: List[LineItem]) -> None:
        products = lock_rows(Product.objects.all(), (item.product_id for item in items))

        for item in items:
            product = products.get(item.product_id)
            if product is None:
                stock_reservation_failures.inc()
                raise not_found_error(
                    "Product not found",
                    details={"code": ErrorCodes.PRODUCT_NOT_FOUND, "product_id": str(item.product_id)},
                )

            stock = product.stock_level
            if not isinstance(stock, Tracked):
                continue

            if not stock.covers(item.quantity):
                stock_reservation_failures.inc()
                raise bad_request_error(
                    "Insufficient inventory",
                    details={
                        "code": ErrorCodes.INSUFFICIENT_STOCK,
                        "product_id": str(product.pk),
                        "available": stock.count,
                        "requested": item.quantity,
                    },
                )

            conditional_update(Product, product.pk, product.version, inventory=F("inventory") - item.quantity)
            # Keep the locked copy current so a repeated product in the cart sees this decrement
            product.inventory -= item.quantity
            product.version += 1
            logger.debug(
                f"Reserved {item.quantity} of product {product.pk}: inventory={product.inventory}, "
                f"version={product.version}"
            )

    def _resolve_address(
        self, user_id: int, address_id: Optional[str], shipping: Optional[ShippingAddress]
    ) -> Optional[Address]:
        if address_id is not None:
            order_address = Address.objects.filter(id=address_id, user_id=user_id).first()
            if order_address is None:
                raise not_found_error(
                    "Address not found",
                    details={"code": ErrorCodes.ADDRESS_NOT_FOUND, "address_id": str(address_id)},
                )
            return order_address

        if shipping is not None and shipping.save_address:
            return Address.objects.create(
                user_id=user_id,
                name=shipping.name,
                street=shipping.street,
                city=shipping.city,
                state=shipping.state,
                postal_code=shipping.postal_code,
                country=shipping.country,
                is_default=False,
            )

        return None

    @staticmethod
    def _validate_line_items(line_items: Iterable[Union[LineItem, Mapping[str, Any]]]) -> List[LineItem]:
        items = [LineItem.coerce(item) for item in (line_items or [])]
        if not items:
            raise bad_request_error("Cart is empty", details={"code": ErrorCodes.EMPTY_CART})

        for item in items:
            if not isinstance(item.quantity, int) or isinstance(item.quantity, bool) or item.quantity <= 0:
                raise validation_error(
                    "Quantity must be a positive integer",
                    details={"code": ErrorCodes.INVALID_QUANTITY, "product_id": str(item.product_id)},
                )
            if item.price < 0:
                raise validation_error(
                    "Price cannot be negative",
                    details={"code": ErrorCodes.INVALID_PRICE, "product_id": str(item.product_id)},
                )
        return items

    @BaseService.log_performance
    def mark_paid(self, order_id: str) -> ServiceResult[Order]:
        """Payment succeeded: move a PENDING/PROCESSING order to PAID."""
        return self._apply_payment_outcome(order_id, OrderStatus.PAID)

    @BaseService.log_performance
    def mark_failed(self, order_id: str) -> ServiceResult[Order]:
        """Payment failed: move a PENDING/PROCESSING order to PAYMENT_FAILED."""
        return self._apply_payment_outcome(order_id, OrderStatus.PAYMENT_FAILED)

    def _apply_payment_outcome(self, order_id: str, target: OrderStatus) -> ServiceResult[Order]:
        allowed_from = PAYMENT_TRANSITIONS[target]
        order_pk = _parse_order_id(order_id)
        if order_pk is None:
            return self.fail(_order_not_found(order_id))

        def transition(tx: TransactionHandle, order: Order) -> Order:
            if order.status == target:
                self.logger.info(f"Order {order_id} already {target}; nothing to do")
                return order
            if order.status not in allowed_from:
                raise conflict_error(
                    f"Cannot change order status from {order.status} to {target}",
                    details={
                        "code": ErrorCodes.INVALID_STATUS_TRANSITION,
                        "current_status": order.status,
                        "requested_status": str(target),
                    },
                )
            previous = order.status
            order.status = target
            order.save(update_fields=["status", "updated_at"])
            order_status_transitions_total.labels(status=str(target)).inc()
            self.logger.info(f"Order {order_id} status {previous} -> {target}")
            return order

        try:
            order = with_pessimistic_lock(Order, order_pk, transition, executor=self.executor)
        except ApiError as e:
            if e.kind == ErrorKind.NOT_FOUND and e.code is None:
                e = _order_not_found(order_id)
            return self.fail(e)

        return service_ok(order)

    @BaseService.log_performance
    def get_order(self, order_id: str, user_id: int) -> ServiceResult[Order]:
        """
        Owner-only read of a single order with its items.

        Returns:
            ServiceResult with the Order, NOT_FOUND if it does not exist, or
            FORBIDDEN if it belongs to someone else
        """
        order_pk = _parse_order_id(order_id)
        order = Order.objects.prefetch_related("items").filter(id=order_pk).first() if order_pk is not None else None
        if order is None:
            return self.fail(_order_not_found(order_id))
        if order.user_id != user_id:
            return self.fail(
                forbidden_error("You can only view your own orders", details={"code": ErrorCodes.NOT_ORDER_OWNER})
            )
        return service_ok(order)

    @BaseService.log_performance
    def list_orders(self, user_id: int) -> ServiceResult[List[Order]]:
        """The user's orders with items, newest first."""
        orders = list(Order.objects.filter(user_id=user_id).prefetch_related("items").order_by("-created_at"))
        return service_ok(orders)
