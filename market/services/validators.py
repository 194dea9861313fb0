import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict

from market.errors import InvalidPrice, InvalidQuantity, ValidationError

# Basic local@domain.tld shape; whitespace and a second "@" are refused.
EMAIL_REGEX = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]{2,}$")

CUSTOMER_FIELD_LIMITS = {
    "first_name": 50,
    "last_name": 50,
    "email": 100,
    "phone": 25,
    "address": 200,
}
PRODUCT_FIELD_LIMITS = {
    "name": 50,
    "description": 200,
}

PRICE_QUANTUM = Decimal("0.01")
# decimal(10, 2) leaves eight integral digits.
MAX_PRICE = Decimal("99999999.99")

# Primary and foreign keys are signed 64-bit integers.
MIN_IDENTIFIER = -(2**63)
MAX_IDENTIFIER = 2**63 - 1


def require_text(field: str, value: Any, max_length: int) -> str:
    if value is None:
        raise ValidationError(f"`{field}` is required.", field=field)
    if not isinstance(value, str):
        raise ValidationError(f"`{field}` must be a string.", field=field)
    if not value.strip():
        raise ValidationError(f"`{field}` cannot be blank.", field=field)
    if len(value) > max_length:
        raise ValidationError(
            f"`{field}` must be at most {max_length} characters.", field=field
        )
    return value


def validate_email(value: Any) -> str:
    email = require_text("email", value, CUSTOMER_FIELD_LIMITS["email"])
    if not EMAIL_REGEX.match(email):
        raise ValidationError("`email` must look like local@domain.tld.", field="email")
    return email


def validate_customer_fields(**fields: Any) -> Dict[str, str]:
    """
    Check every customer attribute and return them unchanged, keyed by field.

    Values are stored exactly as given; surrounding whitespace is not trimmed.
    """

    cleaned = {}
    for field, max_length in CUSTOMER_FIELD_LIMITS.items():
        if field == "email":
            cleaned[field] = validate_email(fields.get(field))
        else:
            cleaned[field] = require_text(field, fields.get(field), max_length)
    return cleaned


def validate_price(value: Any) -> Decimal:
    """Parse a price into a two-place Decimal that is strictly positive."""

    if value is None or isinstance(value, bool):
        raise InvalidPrice("Price must be a number.", field="price")
    try:
        # Infinite or absurdly large values cannot be quantized and land here too.
        price = Decimal(str(value)).quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError) as exc:
        raise InvalidPrice("Price must be a number.", field="price") from exc
    if not price.is_finite():
        raise InvalidPrice("Price must be a finite number.", field="price")
    if price <= 0:
        raise InvalidPrice("Price must be greater than 0.", field="price")
    if price > MAX_PRICE:
        raise InvalidPrice(f"Price cannot exceed {MAX_PRICE}.", field="price")
    return price


def _require_int(field: str, value: Any) -> int:
    # bool is an int subclass, but True is never a sensible quantity.
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidQuantity(f"`{field}` must be an integer.", field=field)
    return value


def validate_stock_quantity(value: Any) -> int:
    quantity = _require_int("stock_quantity", value)
    if quantity < 0:
        raise InvalidQuantity("Quantity cannot be negative.", field="stock_quantity")
    return quantity


def validate_order_quantity(value: Any) -> int:
    quantity = _require_int("quantity", value)
    if quantity <= 0:
        raise InvalidQuantity("Order quantity must be greater than 0.", field="quantity")
    return quantity


def validate_product_fields(
    *, name: Any, description: Any, price: Any, stock_quantity: Any
) -> Dict[str, Any]:
    return {
        "name": require_text("name", name, PRODUCT_FIELD_LIMITS["name"]),
        "description": require_text(
            "description", description, PRODUCT_FIELD_LIMITS["description"]
        ),
        "price": validate_price(price),
        "stock_quantity": validate_stock_quantity(stock_quantity),
    }


def validate_identifier(field: str, value: Any) -> int:
    # Non-positive ids are well-formed; they simply never match a row.
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"`{field}` must be an integer.", field=field)
    if not MIN_IDENTIFIER <= value <= MAX_IDENTIFIER:
        raise ValidationError(f"`{field}` is out of range.", field=field)
    return value
