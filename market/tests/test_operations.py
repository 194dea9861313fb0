from decimal import Decimal
from unittest.mock import patch

from django.db import DatabaseError, OperationalError
from django.test import TestCase, TransactionTestCase

from market.errors import (
    Conflict,
    CustomerHasOrders,
    CustomerNotFound,
    DuplicateEmail,
    InsufficientStock,
    InvalidPrice,
    InvalidQuantity,
    ProductNotFound,
    StoreError,
    ValidationError,
)
from market.models import Customer, Order, Product
from market.services import operations
from market.services.store import EntityStore


class OperationTestMixin:
    def setUp(self) -> None:
        super().setUp()
        self.store = EntityStore()

    def _customer(self, **overrides):
        fields = {
            "first_name": "Jane",
            "last_name": "Smith",
            "email": "jane@x.com",
            "phone": "987-654-3210",
            "address": "456 Oak Avenue, Springfield",
        }
        fields.update(overrides)
        return operations.create_customer(self.store, **fields)

    def _product(self, **overrides):
        fields = {
            "name": "Widget",
            "description": "A perfectly ordinary widget",
            "price": Decimal("10.00"),
            "stock_quantity": 5,
        }
        fields.update(overrides)
        return operations.create_product(self.store, **fields)

    def _order(self, customer_id, product_id, quantity, **kwargs):
        return operations.place_order(
            self.store,
            customer_id=customer_id,
            product_id=product_id,
            quantity=quantity,
            **kwargs,
        )

    def _stock(self, product_id) -> int:
        return Product.objects.get(pk=product_id).stock_quantity


class CreateCustomerTests(OperationTestMixin, TestCase):
    def test_lookup_returns_stored_fields(self) -> None:
        outcome = self._customer(address="  12 Elm Street ")

        self.assertTrue(outcome.ok)
        customer = self.store.get_customer(outcome.value)
        self.assertEqual(customer.first_name, "Jane")
        self.assertEqual(customer.last_name, "Smith")
        self.assertEqual(customer.email, "jane@x.com")
        self.assertEqual(customer.phone, "987-654-3210")
        self.assertEqual(customer.address, "  12 Elm Street ")
        self.assertEqual(customer.created_at, customer.modified_at)

    def test_duplicate_email_is_rejected_without_touching_first(self) -> None:
        first = self._customer()
        before = Customer.objects.get(pk=first.value)

        second = self._customer(first_name="Janet", phone="000")

        self.assertFalse(second.ok)
        self.assertIsInstance(second.error, DuplicateEmail)
        self.assertEqual(Customer.objects.count(), 1)
        after = Customer.objects.get(pk=first.value)
        self.assertEqual(after.first_name, before.first_name)
        self.assertEqual(after.phone, before.phone)
        self.assertEqual(after.modified_at, before.modified_at)

    def test_email_uniqueness_is_exact_match(self) -> None:
        self._customer()

        outcome = self._customer(email="Jane@X.com")

        self.assertTrue(outcome.ok)
        self.assertEqual(Customer.objects.count(), 2)

    def test_invalid_fields_insert_nothing(self) -> None:
        for overrides in ({"first_name": ""}, {"email": "not-an-email"}, {"phone": None}):
            with self.subTest(overrides=overrides):
                outcome = self._customer(**overrides)

                self.assertIsInstance(outcome.error, ValidationError)
                self.assertEqual(Customer.objects.count(), 0)

    @patch.object(EntityStore, "insert_customer", side_effect=DatabaseError("disk full"))
    def test_store_failure_is_retryable(self, mock_insert) -> None:
        outcome = self._customer()

        self.assertIsInstance(outcome.error, StoreError)
        self.assertTrue(outcome.error.retryable)
        self.assertEqual(Customer.objects.count(), 0)


class CreateProductTests(OperationTestMixin, TestCase):
    def test_creates_product(self) -> None:
        outcome = self._product(price="799.99", stock_quantity=10)

        product = self.store.get_product(outcome.value)
        self.assertEqual(product.price, Decimal("799.99"))
        self.assertEqual(product.stock_quantity, 10)
        self.assertEqual(product.version, 0)
        self.assertEqual(product.created_at, product.modified_at)

    def test_zero_stock_is_allowed(self) -> None:
        self.assertTrue(self._product(stock_quantity=0).ok)

    def test_non_positive_price_is_rejected(self) -> None:
        for price in (0, Decimal("-5.00")):
            with self.subTest(price=price):
                outcome = self._product(price=price)

                self.assertIsInstance(outcome.error, InvalidPrice)
        self.assertEqual(Product.objects.count(), 0)

    def test_negative_quantity_is_rejected(self) -> None:
        outcome = self._product(stock_quantity=-1)

        self.assertIsInstance(outcome.error, InvalidQuantity)
        self.assertEqual(Product.objects.count(), 0)


class PlaceOrderTests(OperationTestMixin, TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.customer_id = self._customer().value
        self.product_id = self._product(stock_quantity=10).value

    def test_successful_order_decrements_stock(self) -> None:
        before = Product.objects.get(pk=self.product_id)

        outcome = self._order(self.customer_id, self.product_id, 4)

        self.assertTrue(outcome.ok)
        order = Order.objects.get(pk=outcome.value)
        self.assertEqual(order.customer_id, self.customer_id)
        self.assertEqual(order.product_id, self.product_id)
        self.assertEqual(order.quantity, 4)
        self.assertEqual(order.status, Order.Status.PENDING)
        self.assertEqual(order.order_date, order.created_at)
        product = Product.objects.get(pk=self.product_id)
        self.assertEqual(product.stock_quantity, 6)
        self.assertEqual(product.version, before.version + 1)
        self.assertEqual(product.modified_at, order.created_at)

    def test_order_can_take_the_whole_stock(self) -> None:
        self.assertTrue(self._order(self.customer_id, self.product_id, 10).ok)
        self.assertEqual(self._stock(self.product_id), 0)

    def test_insufficient_stock_leaves_everything_unchanged(self) -> None:
        outcome = self._order(self.customer_id, self.product_id, 11)

        self.assertIsInstance(outcome.error, InsufficientStock)
        self.assertEqual(outcome.error.details["available"], 10)
        self.assertEqual(self._stock(self.product_id), 10)
        self.assertEqual(Order.objects.count(), 0)

    def test_unknown_customer_is_checked_first(self) -> None:
        outcome = self._order(self.customer_id + 100, self.product_id + 100, 1)

        self.assertIsInstance(outcome.error, CustomerNotFound)

    def test_unknown_product(self) -> None:
        outcome = self._order(self.customer_id, self.product_id + 100, 1)

        self.assertIsInstance(outcome.error, ProductNotFound)
        self.assertEqual(Order.objects.count(), 0)

    def test_non_positive_quantity_is_rejected(self) -> None:
        outcome = self._order(self.customer_id, self.product_id, 0)

        self.assertIsInstance(outcome.error, InvalidQuantity)
        self.assertEqual(self._stock(self.product_id), 10)

    def test_failure_after_insert_rolls_back_the_order(self) -> None:
        with patch.object(
            EntityStore, "decrement_stock", side_effect=DatabaseError("connection lost")
        ):
            outcome = self._order(self.customer_id, self.product_id, 3)

        self.assertIsInstance(outcome.error, StoreError)
        self.assertEqual(Order.objects.count(), 0)
        self.assertEqual(self._stock(self.product_id), 10)

    def test_lock_timeout_is_retried_then_reported_as_conflict(self) -> None:
        with patch.object(
            EntityStore,
            "lock_product",
            side_effect=OperationalError("canceling statement due to lock timeout"),
        ) as mock_lock:
            outcome = self._order(self.customer_id, self.product_id, 3, retries=1)

        self.assertIsInstance(outcome.error, Conflict)
        self.assertTrue(outcome.error.retryable)
        self.assertEqual(mock_lock.call_count, 2)
        self.assertEqual(Order.objects.count(), 0)

    def test_sqlite_lock_errors_are_conflicts(self) -> None:
        for message in ("database is locked", "database table is locked"):
            with self.subTest(message=message):
                with patch.object(
                    EntityStore, "lock_product", side_effect=OperationalError(message)
                ) as mock_lock:
                    outcome = self._order(self.customer_id, self.product_id, 3, retries=1)

                self.assertIsInstance(outcome.error, Conflict)
                self.assertEqual(mock_lock.call_count, 2)
                self.assertEqual(self._stock(self.product_id), 10)

    def test_terminal_errors_are_not_retried(self) -> None:
        real_lock = EntityStore.lock_product
        with patch.object(
            EntityStore, "lock_product", autospec=True, side_effect=real_lock
        ) as mock_lock:
            outcome = self._order(self.customer_id, self.product_id, 50, retries=3)

        self.assertIsInstance(outcome.error, InsufficientStock)
        self.assertEqual(mock_lock.call_count, 1)

    def test_stale_read_cannot_drive_stock_negative(self) -> None:
        stale = self.store.get_product(self.product_id)
        # Another placement commits between our read and our write.
        Product.objects.filter(pk=self.product_id).update(stock_quantity=4, version=1)

        with patch.object(EntityStore, "lock_product", return_value=stale):
            outcome = self._order(self.customer_id, self.product_id, 6)

        self.assertIsInstance(outcome.error, InsufficientStock)
        self.assertEqual(outcome.error.details["available"], 4)
        self.assertEqual(self._stock(self.product_id), 4)
        self.assertEqual(Order.objects.count(), 0)

    def test_stale_version_is_retried_with_fresh_read(self) -> None:
        stale = self.store.get_product(self.product_id)
        Product.objects.filter(pk=self.product_id).update(version=1)
        real_lock = EntityStore.lock_product
        calls = []

        def lock_once_stale(store, product_id):
            calls.append(product_id)
            if len(calls) == 1:
                return stale
            return real_lock(store, product_id)

        with patch.object(
            EntityStore, "lock_product", autospec=True, side_effect=lock_once_stale
        ):
            outcome = self._order(self.customer_id, self.product_id, 6, retries=1)

        self.assertTrue(outcome.ok)
        self.assertEqual(len(calls), 2)
        self.assertEqual(self._stock(self.product_id), 4)
        self.assertEqual(Order.objects.count(), 1)

    def test_stale_version_without_retries_is_a_conflict(self) -> None:
        stale = self.store.get_product(self.product_id)
        Product.objects.filter(pk=self.product_id).update(version=1)

        with patch.object(EntityStore, "lock_product", return_value=stale):
            outcome = self._order(self.customer_id, self.product_id, 6, retries=0)

        self.assertIsInstance(outcome.error, Conflict)
        self.assertEqual(self._stock(self.product_id), 10)
        self.assertEqual(Order.objects.count(), 0)

    def test_unwrap_raises_the_typed_error(self) -> None:
        outcome = self._order(self.customer_id, self.product_id, 11)

        with self.assertRaises(InsufficientStock):
            outcome.unwrap()


class UpdateProductPriceTests(OperationTestMixin, TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.product_id = self._product(price="10.00").value

    def test_updates_price_and_modified_at(self) -> None:
        before = Product.objects.get(pk=self.product_id)

        outcome = operations.update_product_price(
            self.store, product_id=self.product_id, price="12.50"
        )

        self.assertTrue(outcome.ok)
        self.assertIsNone(outcome.unwrap())
        product = Product.objects.get(pk=self.product_id)
        self.assertEqual(product.price, Decimal("12.50"))
        self.assertEqual(product.version, before.version + 1)
        self.assertGreaterEqual(product.modified_at, before.modified_at)
        self.assertEqual(product.created_at, before.created_at)

    def test_non_positive_price_leaves_price_unchanged(self) -> None:
        for price in (0, -1, "-0.01"):
            with self.subTest(price=price):
                outcome = operations.update_product_price(
                    self.store, product_id=self.product_id, price=price
                )

                self.assertIsInstance(outcome.error, InvalidPrice)
                self.assertEqual(
                    Product.objects.get(pk=self.product_id).price, Decimal("10.00")
                )

    def test_unknown_product(self) -> None:
        outcome = operations.update_product_price(
            self.store, product_id=self.product_id + 1, price="5.00"
        )

        self.assertIsInstance(outcome.error, ProductNotFound)


class DeleteCustomerTests(OperationTestMixin, TestCase):
    def test_customer_without_orders_is_deleted(self) -> None:
        customer_id = self._customer().value

        outcome = operations.delete_customer(self.store, customer_id=customer_id)

        self.assertTrue(outcome.ok)
        self.assertIsNone(self.store.get_customer(customer_id))

    def test_customer_with_orders_is_kept(self) -> None:
        customer_id = self._customer().value
        product_id = self._product().value
        self._order(customer_id, product_id, 1)

        outcome = operations.delete_customer(self.store, customer_id=customer_id)

        self.assertIsInstance(outcome.error, CustomerHasOrders)
        self.assertIsNotNone(self.store.get_customer(customer_id))
        self.assertEqual(Order.objects.filter(customer_id=customer_id).count(), 1)

    def test_unknown_customer(self) -> None:
        outcome = operations.delete_customer(self.store, customer_id=999)

        self.assertIsInstance(outcome.error, CustomerNotFound)


class MarketplaceScenarioTests(OperationTestMixin, TransactionTestCase):
    reset_sequences = True

    def test_jane_buys_widgets_until_stock_runs_low(self) -> None:
        customer = self._customer(first_name="Jane", email="jane@x.com")
        product = self._product(name="Widget", price="10.00", stock_quantity=5)
        self.assertEqual(customer.value, 1)
        self.assertEqual(product.value, 1)

        first = self._order(1, 1, 3)
        self.assertTrue(first.ok)
        self.assertEqual(first.value, 1)
        self.assertEqual(self._stock(1), 2)

        second = self._order(1, 1, 3)
        self.assertIsInstance(second.error, InsufficientStock)
        self.assertEqual(self._stock(1), 2)
        self.assertEqual(Order.objects.count(), 1)


class OversizedIdentifierTests(OperationTestMixin, TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.customer_id = self._customer().value
        self.product_id = self._product().value

    def test_delete_customer_rejects_oversized_id(self) -> None:
        outcome = operations.delete_customer(self.store, customer_id=10**20)

        self.assertIsInstance(outcome.error, ValidationError)
        self.assertEqual(outcome.error.details["field"], "customer_id")
        self.assertEqual(Customer.objects.count(), 1)

    def test_place_order_rejects_oversized_ids(self) -> None:
        by_customer = self._order(10**20, self.product_id, 1)
        by_product = self._order(self.customer_id, 10**20, 1)

        self.assertIsInstance(by_customer.error, ValidationError)
        self.assertIsInstance(by_product.error, ValidationError)
        self.assertEqual(Order.objects.count(), 0)
        self.assertEqual(self._stock(self.product_id), 5)

    def test_update_price_rejects_oversized_id(self) -> None:
        outcome = operations.update_product_price(
            self.store, product_id=-(10**20), price="5.00"
        )

        self.assertIsInstance(outcome.error, ValidationError)
        self.assertEqual(Product.objects.get(pk=self.product_id).price, Decimal("10.00"))
