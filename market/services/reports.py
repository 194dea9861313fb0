"""
Read-only projections over customers, products and orders.

Nothing here writes to the store. Totals are computed from each product's
current price, so a price change re-values past orders as well.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db.models import DecimalField, ExpressionWrapper, F, Sum, Value
from django.db.models.functions import Concat

from market.models import Order, Product
from market.services import validators
from market.services.store import EntityStore

ZERO = Decimal("0.00")
DEFAULT_LOW_STOCK_THRESHOLD = 5

OUT_OF_STOCK = "Out of Stock"
LOW_STOCK = "Low Stock"
IN_STOCK = "In Stock"

_LINE_TOTAL = ExpressionWrapper(
    F("product__price") * F("quantity"),
    output_field=DecimalField(max_digits=20, decimal_places=2),
)


def _orders(store: EntityStore):
    return Order.objects.using(store.using)


def total_sales(store: EntityStore, product_id: int) -> Decimal:
    """Sum of price x quantity over a product's orders; zero when there are none."""

    product_id = validators.validate_identifier("product_id", product_id)
    total = _orders(store).filter(product_id=product_id).aggregate(
        total=Sum(_LINE_TOTAL)
    )["total"]
    if total is None:
        return ZERO
    return Decimal(total).quantize(ZERO)


def order_details(store: EntityStore) -> List[Dict[str, Any]]:
    rows = (
        _orders(store)
        .annotate(
            customer_full_name=Concat(
                F("customer__first_name"), Value(" "), F("customer__last_name")
            ),
            total_price=_LINE_TOTAL,
        )
        .order_by("id")
        .values(
            "id",
            "customer_full_name",
            "product__name",
            "product__price",
            "quantity",
            "total_price",
            "order_date",
            "status",
        )
    )
    return [
        {
            "order_id": row["id"],
            "customer_full_name": row["customer_full_name"],
            "product_name": row["product__name"],
            "product_price": row["product__price"],
            "quantity": row["quantity"],
            "total_price": row["total_price"],
            "order_date": row["order_date"],
            "status": row["status"],
        }
        for row in rows
    ]


def customer_orders(store: EntityStore, customer_id: int) -> List[Dict[str, Any]]:
    customer_id = validators.validate_identifier("customer_id", customer_id)
    rows = (
        _orders(store)
        .filter(customer_id=customer_id)
        .annotate(order_total=_LINE_TOTAL)
        .order_by("order_date", "id")
        .values("id", "product__name", "quantity", "order_date", "order_total")
    )
    return [
        {
            "order_id": row["id"],
            "product_name": row["product__name"],
            "quantity": row["quantity"],
            "order_date": row["order_date"],
            "order_total": row["order_total"],
        }
        for row in rows
    ]


def product_sales_summary(store: EntityStore) -> List[Dict[str, Any]]:
    """Quantity and revenue per product name, best sellers first."""

    rows = (
        _orders(store)
        .values("product__name")
        .annotate(total_quantity=Sum("quantity"), total_revenue=Sum(_LINE_TOTAL))
        .order_by("-total_quantity", "product__name")
    )
    return [
        {
            "product_name": row["product__name"],
            "total_quantity": row["total_quantity"],
            "total_revenue": row["total_revenue"],
        }
        for row in rows
    ]


def classify_stock(quantity: int, threshold: Optional[int] = None) -> str:
    if threshold is None:
        threshold = getattr(
            settings, "MARKET_LOW_STOCK_THRESHOLD", DEFAULT_LOW_STOCK_THRESHOLD
        )
    if quantity == 0:
        return OUT_OF_STOCK
    if quantity < threshold:
        return LOW_STOCK
    return IN_STOCK


def stock_status_report(
    store: EntityStore, threshold: Optional[int] = None
) -> List[Dict[str, Any]]:
    products = (
        Product.objects.using(store.using)
        .order_by("name", "id")
        .values("id", "name", "stock_quantity")
    )
    return [
        {
            "product_id": row["id"],
            "product_name": row["name"],
            "stock_quantity": row["stock_quantity"],
            "stock_status": classify_stock(row["stock_quantity"], threshold),
        }
        for row in products
    ]
