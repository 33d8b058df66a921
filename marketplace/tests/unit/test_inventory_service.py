from unittest.mock import Mock, patch

import pytest

from marketplace.cart.domain.services.inventory_service import InventoryService
from marketplace.models import Product
from utils.errors import ErrorCodes, ErrorKind


@pytest.mark.unit
class TestInventoryServiceUnit:
    def setup_method(self):
        self.executor = Mock()
        self.service = InventoryService(executor=self.executor)
        self.product_id = "test-product-id"

    def _mock_lookup(self, mock_filter, product):
        mock_filter.return_value.only.return_value.first.return_value = product

    @patch("marketplace.models.Product.objects.filter")
    def test_check_availability_success(self, mock_filter):
        self._mock_lookup(mock_filter, Product(inventory=10))

        result = self.service.check_availability(self.product_id, quantity=5)

        assert result.ok
        assert result.value is True

    @patch("marketplace.models.Product.objects.filter")
    def test_check_availability_insufficient(self, mock_filter):
        self._mock_lookup(mock_filter, Product(inventory=3))

        result = self.service.check_availability(self.product_id, quantity=5)

        assert result.ok
        assert result.value is False

    @patch("marketplace.models.Product.objects.filter")
    def test_check_availability_untracked(self, mock_filter):
        self._mock_lookup(mock_filter, Product(inventory=None))

        result = self.service.check_availability(self.product_id, quantity=10_000)

        assert result.ok
        assert result.value is True

    @patch("marketplace.models.Product.objects.filter")
    def test_check_availability_missing_product(self, mock_filter):
        self._mock_lookup(mock_filter, None)

        result = self.service.check_availability(self.product_id)

        assert not result.ok
        assert result.error_kind == ErrorKind.NOT_FOUND
        assert result.error_code == ErrorCodes.PRODUCT_NOT_FOUND

    def test_check_availability_rejects_non_positive_quantity(self):
        result = self.service.check_availability(self.product_id, quantity=0)

        assert not result.ok
        assert result.error_code == ErrorCodes.INVALID_QUANTITY

    @pytest.mark.parametrize(
        "quantity,operation,code",
        [
            (-1, "set", ErrorCodes.INVALID_QUANTITY),
            (0, "add", ErrorCodes.INVALID_QUANTITY),
            (None, "subtract", ErrorCodes.INVALID_QUANTITY),
            (5, "multiply", ErrorCodes.INVALID_INPUT),
        ],
    )
    def test_update_stock_validation(self, quantity, operation, code):
        result = self.service.update_stock(self.product_id, 0, quantity, operation=operation)

        assert not result.ok
        assert result.error_kind == ErrorKind.VALIDATION_ERROR
        assert result.error_code == code
        self.executor.execute.assert_not_called()
