"""
Transactional operations of the marketplace.

Each public function takes an :class:`~market.services.store.EntityStore`
handle, validates its input before touching the store, and runs every read
and write it needs inside a single atomic block. The function returns an
:class:`~market.services.outcome.Outcome`; a failed outcome marks the block
for rollback, so a rejected operation never leaves partial writes behind.
"""

import logging
from decimal import Decimal
from typing import Any, Callable, Optional

from django.conf import settings
from django.db import DatabaseError, IntegrityError, OperationalError

from market.errors import (
    Conflict,
    CustomerHasOrders,
    CustomerNotFound,
    DuplicateEmail,
    InsufficientStock,
    MarketError,
    ProductNotFound,
    StoreError,
)
from market.services import validators
from market.services.outcome import Outcome
from market.services.store import EntityStore

logger = logging.getLogger("market.operations")

DEFAULT_CONFLICT_RETRIES = 2
# SQLSTATE lock_not_available, raised when `lock_timeout` expires.
LOCK_NOT_AVAILABLE = "55P03"


def _is_lock_timeout(exc: OperationalError) -> bool:
    cause = exc.__cause__
    sqlstate = getattr(cause, "sqlstate", None) or getattr(cause, "pgcode", None)
    if sqlstate == LOCK_NOT_AVAILABLE:
        return True
    message = str(exc).lower()
    # PostgreSQL reports an expired lock_timeout; SQLite reports "database is
    # locked" or "database table is locked" once its busy timeout runs out.
    return "lock timeout" in message or "is locked" in message


def _rejected(operation: str, error: MarketError) -> Outcome:
    logger.warning("%s rejected: %s (%s)", operation, error.message, error.code)
    return Outcome.failure(error)


def _run_atomic(
    store: EntityStore, operation: str, body: Callable[[], Outcome]
) -> Outcome:
    """
    Execute ``body`` in one transaction and commit only a successful outcome.

    Database failures roll the transaction back and come back as retryable
    failures: ``Conflict`` for an expired lock wait, ``StoreError`` otherwise.
    """

    try:
        with store.atomic():
            outcome = body()
            if not outcome.ok:
                store.mark_rollback()
    except OperationalError as exc:
        if _is_lock_timeout(exc):
            return _rejected(
                operation,
                Conflict("Timed out waiting for a row lock; retry the request."),
            )
        logger.exception("%s failed in the store", operation)
        return Outcome.failure(StoreError(f"Store failure during {operation}: {exc}"))
    except DatabaseError as exc:
        logger.exception("%s failed in the store", operation)
        return Outcome.failure(StoreError(f"Store failure during {operation}: {exc}"))

    if outcome.ok:
        logger.info("%s committed: %s", operation, outcome.value)
        return outcome
    return _rejected(operation, outcome.error)


def create_customer(
    store: EntityStore,
    *,
    first_name: Any,
    last_name: Any,
    email: Any,
    phone: Any,
    address: Any,
) -> Outcome[int]:
    """Insert a customer with a unique email and return its id."""

    try:
        fields = validators.validate_customer_fields(
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone=phone,
            address=address,
        )
    except MarketError as exc:
        return _rejected("create_customer", exc)

    def body() -> Outcome[int]:
        email_value = fields["email"]
        if store.email_taken(email_value):
            return Outcome.failure(
                DuplicateEmail("Email address already exists.", email=email_value)
            )
        try:
            # Savepoint so a lost uniqueness race leaves the transaction usable.
            with store.atomic():
                customer = store.insert_customer(store.now(), **fields)
        except IntegrityError:
            if not store.email_taken(email_value):
                raise
            return Outcome.failure(
                DuplicateEmail("Email address already exists.", email=email_value)
            )
        return Outcome.success(customer.pk)

    return _run_atomic(store, "create_customer", body)


def create_product(
    store: EntityStore,
    *,
    name: Any,
    description: Any,
    price: Any,
    stock_quantity: Any,
) -> Outcome[int]:
    """Insert a product with a positive price and non-negative stock."""

    try:
        fields = validators.validate_product_fields(
            name=name,
            description=description,
            price=price,
            stock_quantity=stock_quantity,
        )
    except MarketError as exc:
        return _rejected("create_product", exc)

    def body() -> Outcome[int]:
        product = store.insert_product(store.now(), **fields)
        return Outcome.success(product.pk)

    return _run_atomic(store, "create_product", body)


def _place_order(
    store: EntityStore, customer_id: int, product_id: int, quantity: int
) -> Outcome[int]:
    if not store.hold_customer(customer_id):
        return Outcome.failure(
            CustomerNotFound("Customer does not exist.", customer_id=customer_id)
        )

    product = store.lock_product(product_id)
    if product is None:
        return Outcome.failure(
            ProductNotFound("Product does not exist.", product_id=product_id)
        )

    if product.stock_quantity < quantity:
        return Outcome.failure(
            InsufficientStock(
                "Insufficient stock available.",
                product_id=product_id,
                requested=quantity,
                available=product.stock_quantity,
            )
        )

    now = store.now()
    order = store.insert_order(customer_id, product_id, quantity, now)
    if store.decrement_stock(product, quantity, now):
        return Outcome.success(order.pk)

    # The row moved after it was read; re-validate against what is there now.
    current = store.get_product(product_id)
    available = current.stock_quantity if current is not None else 0
    if available < quantity:
        return Outcome.failure(
            InsufficientStock(
                "Insufficient stock available.",
                product_id=product_id,
                requested=quantity,
                available=available,
            )
        )
    return Outcome.failure(
        Conflict("Product changed while the order was placed; retry the request.")
    )


def place_order(
    store: EntityStore,
    *,
    customer_id: Any,
    product_id: Any,
    quantity: Any,
    retries: Optional[int] = None,
) -> Outcome[int]:
    """
    Create a pending order and take its quantity out of the product's stock.

    Preconditions are checked in order (customer, product, stock) and the first
    failure aborts with no side effects. The product row stays locked from the
    stock check until commit, so concurrent placements against one product
    are serialized while other products proceed independently. A retryable
    ``Conflict`` re-runs the whole transaction up to ``retries`` more times.
    """

    try:
        customer_id = validators.validate_identifier("customer_id", customer_id)
        product_id = validators.validate_identifier("product_id", product_id)
        quantity = validators.validate_order_quantity(quantity)
    except MarketError as exc:
        return _rejected("place_order", exc)

    if retries is None:
        retries = getattr(settings, "MARKET_CONFLICT_RETRIES", DEFAULT_CONFLICT_RETRIES)

    attempt = 0
    while True:
        attempt += 1
        outcome = _run_atomic(
            store,
            "place_order",
            lambda: _place_order(store, customer_id, product_id, quantity),
        )
        if outcome.ok or not isinstance(outcome.error, Conflict) or attempt > retries:
            return outcome
        logger.info(
            "place_order retrying after conflict (attempt %s of %s)",
            attempt + 1,
            retries + 1,
        )


def update_product_price(
    store: EntityStore, *, product_id: Any, price: Any
) -> Outcome[None]:
    """Set a new strictly positive price on an existing product."""

    try:
        product_id = validators.validate_identifier("product_id", product_id)
        new_price: Decimal = validators.validate_price(price)
    except MarketError as exc:
        return _rejected("update_product_price", exc)

    def body() -> Outcome[None]:
        if store.update_price(product_id, new_price, store.now()) == 0:
            return Outcome.failure(
                ProductNotFound("Product not found.", product_id=product_id)
            )
        return Outcome.success()

    return _run_atomic(store, "update_product_price", body)


def delete_customer(store: EntityStore, *, customer_id: Any) -> Outcome[None]:
    """
    Remove a customer that has never ordered anything.

    Orders are history and are never cascade-deleted; a customer with orders
    is refused with ``CustomerHasOrders`` instead.
    """

    try:
        customer_id = validators.validate_identifier("customer_id", customer_id)
    except MarketError as exc:
        return _rejected("delete_customer", exc)

    def body() -> Outcome[None]:
        # Locking the row blocks new orders for this customer until we finish.
        store.lock_customer(customer_id)
        if store.customer_has_orders(customer_id):
            return Outcome.failure(
                CustomerHasOrders(
                    "Cannot delete customer with existing orders.",
                    customer_id=customer_id,
                )
            )
        if store.delete_customer(customer_id) == 0:
            return Outcome.failure(
                CustomerNotFound("Customer not found.", customer_id=customer_id)
            )
        return Outcome.success()

    return _run_atomic(store, "delete_customer", body)
