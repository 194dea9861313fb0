import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict

from django.http import HttpRequest, JsonResponse
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from market.errors import CustomerNotFound, MarketError, ProductNotFound, ValidationError
from market.services import operations, reports
from market.services.outcome import Outcome
from market.services.store import default_store

logger = logging.getLogger("market.api")

ERROR_STATUS = {
    "validation_error": 400,
    "invalid_price": 400,
    "invalid_quantity": 400,
    "not_found": 404,
    "customer_not_found": 404,
    "product_not_found": 404,
    "conflict_error": 409,
    "duplicate_email": 409,
    "insufficient_stock": 409,
    "customer_has_orders": 409,
    "conflict": 409,
    "store_error": 503,
}


def _serialize_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _serialize_row(row: Dict[str, Any]) -> Dict[str, Any]:
    return {key: _serialize_value(value) for key, value in row.items()}


def _json_error(error: MarketError) -> JsonResponse:
    status = ERROR_STATUS.get(error.code, 400)
    logger.info("Responding %s: %s", status, error.code)
    payload: Dict[str, Any] = {"status": "error", **error.as_dict()}
    return JsonResponse(payload, status=status)


def _parse_request_body(request: HttpRequest) -> Dict[str, Any]:
    if not request.body:
        return {}
    try:
        data = json.loads(request.body.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("Invalid JSON payload.") from exc
    if not isinstance(data, dict):
        raise ValidationError("JSON payload must be an object.")
    return data


def _respond(outcome: Outcome, *, status: int = 200, key: str = "id") -> JsonResponse:
    if not outcome.ok:
        return _json_error(outcome.error)
    payload: Dict[str, Any] = {"status": "ok"}
    if outcome.value is not None:
        payload[key] = outcome.value
    return JsonResponse(payload, status=status)


def _customer_payload(customer) -> Dict[str, Any]:
    return _serialize_row(
        {
            "id": customer.pk,
            "first_name": customer.first_name,
            "last_name": customer.last_name,
            "email": customer.email,
            "phone": customer.phone,
            "address": customer.address,
            "created_at": customer.created_at,
            "modified_at": customer.modified_at,
        }
    )


def _product_payload(product) -> Dict[str, Any]:
    return _serialize_row(
        {
            "id": product.pk,
            "name": product.name,
            "description": product.description,
            "price": product.price,
            "stock_quantity": product.stock_quantity,
            "created_at": product.created_at,
            "modified_at": product.modified_at,
        }
    )


@require_POST
def customers_api(request: HttpRequest) -> JsonResponse:
    """Create a customer from a JSON body."""

    try:
        payload = _parse_request_body(request)
    except ValidationError as exc:
        return _json_error(exc)

    outcome = operations.create_customer(
        default_store(),
        first_name=payload.get("first_name"),
        last_name=payload.get("last_name"),
        email=payload.get("email"),
        phone=payload.get("phone"),
        address=payload.get("address"),
    )
    return _respond(outcome, status=201)


@require_http_methods(["GET", "DELETE"])
def customer_detail_api(request: HttpRequest, customer_id: int) -> JsonResponse:
    store = default_store()
    if request.method == "DELETE":
        return _respond(operations.delete_customer(store, customer_id=customer_id))

    customer = store.get_customer(customer_id)
    if customer is None:
        return _json_error(CustomerNotFound("Customer not found.", customer_id=customer_id))
    return JsonResponse({"status": "ok", "customer": _customer_payload(customer)})


@require_POST
def products_api(request: HttpRequest) -> JsonResponse:
    try:
        payload = _parse_request_body(request)
    except ValidationError as exc:
        return _json_error(exc)

    outcome = operations.create_product(
        default_store(),
        name=payload.get("name"),
        description=payload.get("description"),
        price=payload.get("price"),
        stock_quantity=payload.get("stock_quantity"),
    )
    return _respond(outcome, status=201)


@require_GET
def product_detail_api(request: HttpRequest, product_id: int) -> JsonResponse:
    product = default_store().get_product(product_id)
    if product is None:
        return _json_error(ProductNotFound("Product not found.", product_id=product_id))
    return JsonResponse({"status": "ok", "product": _product_payload(product)})


@require_POST
def product_price_api(request: HttpRequest, product_id: int) -> JsonResponse:
    try:
        payload = _parse_request_body(request)
    except ValidationError as exc:
        return _json_error(exc)

    outcome = operations.update_product_price(
        default_store(), product_id=product_id, price=payload.get("price")
    )
    return _respond(outcome)


@require_GET
def product_sales_api(request: HttpRequest, product_id: int) -> JsonResponse:
    try:
        total = reports.total_sales(default_store(), product_id)
    except ValidationError as exc:
        return _json_error(exc)
    return JsonResponse(
        {"status": "ok", "product_id": product_id, "total_sales": str(total)}
    )


@require_POST
def orders_api(request: HttpRequest) -> JsonResponse:
    """Place an order; stock is decremented in the same transaction."""

    try:
        payload = _parse_request_body(request)
    except ValidationError as exc:
        return _json_error(exc)

    outcome = operations.place_order(
        default_store(),
        customer_id=payload.get("customer_id"),
        product_id=payload.get("product_id"),
        quantity=payload.get("quantity"),
    )
    return _respond(outcome, status=201)


@require_GET
def order_report_api(request: HttpRequest) -> JsonResponse:
    rows = reports.order_details(default_store())
    return JsonResponse({"status": "ok", "rows": [_serialize_row(r) for r in rows]})


@require_GET
def sales_report_api(request: HttpRequest) -> JsonResponse:
    rows = reports.product_sales_summary(default_store())
    return JsonResponse({"status": "ok", "rows": [_serialize_row(r) for r in rows]})


@require_GET
def stock_report_api(request: HttpRequest) -> JsonResponse:
    rows = reports.stock_status_report(default_store())
    return JsonResponse({"status": "ok", "rows": rows})
