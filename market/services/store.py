"""
Entity Store access for customers, products and orders.

An :class:`EntityStore` is an explicit handle bound to one Django database
alias. Operations receive it as an argument instead of reaching for the
ambient connection, which keeps the alias and the lock policy visible at the
call site and lets tests hand in a store configured however they need.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from django.conf import settings
from django.db import DEFAULT_DB_ALIAS, connections, transaction
from django.db.models import F
from django.utils import timezone

from market.models import Customer, Order, Product

logger = logging.getLogger("market.store")

DEFAULT_LOCK_TIMEOUT_MS = 2000


class EntityStore:
    def __init__(
        self, using: str = DEFAULT_DB_ALIAS, lock_timeout_ms: Optional[int] = None
    ) -> None:
        self.using = using
        if lock_timeout_ms is None:
            lock_timeout_ms = getattr(
                settings, "MARKET_LOCK_TIMEOUT_MS", DEFAULT_LOCK_TIMEOUT_MS
            )
        self.lock_timeout_ms = lock_timeout_ms

    def __repr__(self) -> str:
        return f"EntityStore(using={self.using!r}, lock_timeout_ms={self.lock_timeout_ms})"

    # ── Transactions ───────────────────────────────

    def atomic(self):
        return transaction.atomic(using=self.using)

    def mark_rollback(self) -> None:
        """Discard the innermost open atomic block when it exits."""
        transaction.set_rollback(True, using=self.using)

    def now(self) -> datetime:
        return timezone.now()

    @property
    def vendor(self) -> str:
        return connections[self.using].vendor

    def _bound_lock_wait(self) -> None:
        # SQLite serializes writers on its own and has no per-statement lock timeout.
        if self.vendor != "postgresql" or not self.lock_timeout_ms:
            return
        logger.debug("lock_timeout=%sms on alias %s", self.lock_timeout_ms, self.using)
        with connections[self.using].cursor() as cursor:
            cursor.execute(f"SET LOCAL lock_timeout = '{int(self.lock_timeout_ms)}ms'")

    # ── Customers ──────────────────────────────────

    def _customers(self):
        return Customer.objects.using(self.using)

    def get_customer(self, customer_id: int) -> Optional[Customer]:
        return self._customers().filter(pk=customer_id).first()

    def customer_exists(self, customer_id: int) -> bool:
        return self._customers().filter(pk=customer_id).exists()

    def email_taken(self, email: str) -> bool:
        return self._customers().filter(email=email).exists()

    def insert_customer(self, now: datetime, **fields) -> Customer:
        return self._customers().create(created_at=now, modified_at=now, **fields)

    def lock_customer(self, customer_id: int) -> Optional[Customer]:
        self._bound_lock_wait()
        return self._customers().select_for_update().filter(pk=customer_id).first()

    def hold_customer(self, customer_id: int) -> bool:
        """
        Report whether a customer exists and keep it from being deleted until commit.

        PostgreSQL takes `FOR KEY SHARE`, which blocks a concurrent delete but not
        other placements for the same customer. SQLite already serializes writers.
        """
        if self.vendor != "postgresql":
            return self.customer_exists(customer_id)
        self._bound_lock_wait()
        connection = connections[self.using]
        table = connection.ops.quote_name(Customer._meta.db_table)
        column = connection.ops.quote_name(Customer._meta.pk.column)
        with connection.cursor() as cursor:
            cursor.execute(
                f"SELECT 1 FROM {table} WHERE {column} = %s FOR KEY SHARE", [customer_id]
            )
            return cursor.fetchone() is not None

    def customer_has_orders(self, customer_id: int) -> bool:
        return self._orders().filter(customer_id=customer_id).exists()

    def delete_customer(self, customer_id: int) -> int:
        # Callers check for orders first; PROTECT still backs that up at delete time.
        deleted, _ = self._customers().filter(pk=customer_id).delete()
        return deleted

    # ── Products ───────────────────────────────────

    def _products(self):
        return Product.objects.using(self.using)

    def get_product(self, product_id: int) -> Optional[Product]:
        return self._products().filter(pk=product_id).first()

    def insert_product(self, now: datetime, **fields) -> Product:
        return self._products().create(created_at=now, modified_at=now, **fields)

    def lock_product(self, product_id: int) -> Optional[Product]:
        """Read a product under a row lock held until the transaction ends."""
        self._bound_lock_wait()
        return self._products().select_for_update().filter(pk=product_id).first()

    def decrement_stock(self, product: Product, quantity: int, now: datetime) -> bool:
        """
        Take ``quantity`` units from ``product`` if its row is unchanged.

        The update only matches while the stock still covers the quantity and the
        version is the one that was read, so a stale snapshot can never push the
        stock below zero. Returns ``False`` when nothing matched.
        """

        updated = (
            self._products()
            .filter(
                pk=product.pk,
                version=product.version,
                stock_quantity__gte=quantity,
            )
            .update(
                stock_quantity=F("stock_quantity") - quantity,
                version=F("version") + 1,
                modified_at=now,
            )
        )
        return updated == 1

    def update_price(self, product_id: int, price: Decimal, now: datetime) -> int:
        self._bound_lock_wait()
        return (
            self._products()
            .filter(pk=product_id)
            .update(price=price, version=F("version") + 1, modified_at=now)
        )

    # ── Orders ─────────────────────────────────────

    def _orders(self):
        return Order.objects.using(self.using)

    def insert_order(
        self, customer_id: int, product_id: int, quantity: int, now: datetime
    ) -> Order:
        return self._orders().create(
            customer_id=customer_id,
            product_id=product_id,
            quantity=quantity,
            status=Order.Status.PENDING,
            order_date=now,
            created_at=now,
            modified_at=now,
        )


def default_store() -> EntityStore:
    """Build a store for the default database using the configured lock policy."""
    return EntityStore()
