from decimal import Decimal

import pytest

from marketplace.ordering.api.serializers import OrderDetailSerializer, OrderSummarySerializer
from marketplace.ordering.domain.services.order_service import OrderService
from marketplace.tests.factories import AddressFactory, ProductFactory, UserFactory


@pytest.fixture
def placed():
    buyer = UserFactory()
    product = ProductFactory(inventory=5, price=Decimal("12.00"))
    address = AddressFactory(user=buyer)
    result = OrderService().place_order(
        buyer.id,
        [{"productId": str(product.id), "quantity": 2, "price": "12.00"}],
        address_id=str(address.id),
    )
    assert result.ok
    return result.value, product, address


@pytest.mark.django_db
class TestOrderSerializers:
    def test_summary_payload(self, placed):
        order, _, _ = placed

        data = OrderSummarySerializer(order).data

        assert set(data) == {"orderId", "total", "status", "createdAt"}
        assert data["orderId"] == str(order.id)
        assert data["total"] == "24.00"
        assert data["status"] == "PENDING"

    def test_detail_payload(self, placed):
        order, product, address = placed

        data = OrderDetailSerializer(order).data

        assert data["address"]["postalCode"] == address.postal_code
        assert len(data["items"]) == 1
        item = data["items"][0]
        assert item["productId"] == str(product.id)
        assert item["quantity"] == 2
        assert item["price"] == "12.00"
        assert item["lineTotal"] == "24.00"

    def test_error_payload(self):
        result = OrderService().place_order(UserFactory().id, [])

        assert result.to_dict() == {
            "success": False,
            "error": "Cart is empty",
            "type": "BAD_REQUEST",
            "details": {"code": "empty_cart"},
        }
