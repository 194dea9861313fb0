from django.db import models
from django.db.models import Q
from django.utils import timezone


class Customer(models.Model):
    """Represents an end user that can place orders."""

    first_name = models.CharField(max_length=50)
    last_name = models.CharField(max_length=50)
    email = models.EmailField(max_length=100, unique=True)
    phone = models.CharField(max_length=25)
    address = models.CharField(max_length=200)
    created_at = models.DateTimeField(default=timezone.now)
    modified_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["id"]

    def __str__(self) -> str:
        return f"{self.full_name} <{self.email}>"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Product(models.Model):
    """Product catalog entry with its on-hand inventory."""

    name = models.CharField(max_length=50)
    description = models.CharField(max_length=200)
    price = models.DecimalField(max_digits=10, decimal_places=2)
    stock_quantity = models.IntegerField(default=0)
    version = models.PositiveIntegerField(
        default=0, help_text="Bumped on every price or stock write."
    )
    created_at = models.DateTimeField(default=timezone.now)
    modified_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["name", "id"]
        constraints = [
            models.CheckConstraint(
                condition=Q(price__gt=0), name="market_product_price_positive"
            ),
            models.CheckConstraint(
                condition=Q(stock_quantity__gte=0),
                name="market_product_stock_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.name} ({self.stock_quantity} in stock)"


class Order(models.Model):
    """Represents a purchase of a product by a customer."""

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        SHIPPED = "shipped", "Shipped"
        DELIVERED = "delivered", "Delivered"
        CANCELLED = "cancelled", "Cancelled"

    # PROTECT keeps order history; customer deletion is refused instead of cascaded.
    customer = models.ForeignKey(
        Customer, on_delete=models.PROTECT, related_name="orders"
    )
    product = models.ForeignKey(
        Product, on_delete=models.PROTECT, related_name="orders"
    )
    order_date = models.DateTimeField(default=timezone.now, db_index=True)
    quantity = models.PositiveIntegerField()
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True
    )
    created_at = models.DateTimeField(default=timezone.now)
    modified_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-order_date", "id"]
        constraints = [
            models.CheckConstraint(
                condition=Q(quantity__gt=0), name="market_order_quantity_positive"
            ),
        ]

    def __str__(self) -> str:
        return f"Order #{self.pk or 'new'}"
