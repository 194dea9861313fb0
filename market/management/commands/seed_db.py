import random
from decimal import Decimal
from typing import List, Tuple

from django.core.management.base import BaseCommand, CommandError
from django.db import transaction
from faker import Faker

from market.models import Customer, Order, Product
from market.services import operations
from market.services.store import EntityStore


class Command(BaseCommand):
    help = (
        "Populate the database with synthetic data through the marketplace "
        "operations, so every row satisfies the same business rules."
    )

    DEFAULT_COUNTS = {"customers": 25, "products": 12, "orders": 100}
    PRICE_RANGE = (1, 1_000)
    STOCK_RANGE = (0, 40)
    ORDER_QUANTITY_RANGE = (1, 5)

    def add_arguments(self, parser):
        parser.add_argument(
            "--customers",
            type=int,
            default=self.DEFAULT_COUNTS["customers"],
            help="Ensure at least this many customers exist (default: %(default)s).",
        )
        parser.add_argument(
            "--products",
            type=int,
            default=self.DEFAULT_COUNTS["products"],
            help="Ensure at least this many products exist (default: %(default)s).",
        )
        parser.add_argument(
            "--orders",
            type=int,
            default=self.DEFAULT_COUNTS["orders"],
            help="Attempt this many order placements (default: %(default)s).",
        )
        parser.add_argument(
            "--purge",
            action="store_true",
            help="Delete existing orders/products/customers before seeding.",
        )
        parser.add_argument(
            "--database",
            default="default",
            help="Database alias to seed (default: %(default)s).",
        )

    def handle(self, *args, **options):
        faker = Faker()
        store = EntityStore(using=options["database"])
        customer_target = max(1, options["customers"])
        product_target = max(1, options["products"])
        order_attempts = max(0, options["orders"])

        if options["purge"]:
            self._purge_existing(store)

        customer_ids, new_customers = self._ensure_customers(
            faker, store, customer_target
        )
        product_ids, new_products = self._ensure_products(faker, store, product_target)
        placed, rejected = self._place_orders(
            store, customer_ids, product_ids, order_attempts
        )

        self.stdout.write(
            self.style.SUCCESS(
                "Seeding complete: "
                f"{new_customers} new customers, "
                f"{new_products} new products, "
                f"{placed} new orders ({rejected} rejected)."
            )
        )

    def _purge_existing(self, store: EntityStore) -> None:
        self.stdout.write("Purging existing orders, products, and customers...")
        with transaction.atomic(using=store.using):
            Order.objects.using(store.using).all().delete()
            Product.objects.using(store.using).all().delete()
            Customer.objects.using(store.using).all().delete()

    def _ensure_customers(
        self, faker: Faker, store: EntityStore, target: int
    ) -> Tuple[List[int], int]:
        current = Customer.objects.using(store.using).count()
        created = 0

        for _ in range(max(0, target - current)):
            outcome = operations.create_customer(
                store,
                first_name=faker.first_name()[:50],
                last_name=faker.last_name()[:50],
                email=faker.unique.email(),
                phone=faker.numerify("###-###-####"),
                address=faker.address().replace("\n", ", ")[:200],
            )
            if outcome.ok:
                created += 1
            else:
                self.stderr.write(f"Skipped customer: {outcome.error.message}")
        faker.unique.clear()

        ids = list(Customer.objects.using(store.using).values_list("id", flat=True))
        return ids, created

    def _ensure_products(
        self, faker: Faker, store: EntityStore, target: int
    ) -> Tuple[List[int], int]:
        current = Product.objects.using(store.using).count()
        created = 0

        for _ in range(max(0, target - current)):
            cents = faker.random_int(
                min=self.PRICE_RANGE[0] * 100, max=self.PRICE_RANGE[1] * 100
            )
            outcome = operations.create_product(
                store,
                name=faker.catch_phrase()[:50],
                description=faker.sentence(nb_words=12)[:200],
                price=Decimal(cents) / 100,
                stock_quantity=faker.random_int(*self.STOCK_RANGE),
            )
            if outcome.ok:
                created += 1
            else:
                raise CommandError(f"Could not create product: {outcome.error.message}")

        ids = list(Product.objects.using(store.using).values_list("id", flat=True))
        return ids, created

    def _place_orders(
        self,
        store: EntityStore,
        customer_ids: List[int],
        product_ids: List[int],
        attempts: int,
    ) -> Tuple[int, int]:
        if not customer_ids or not product_ids:
            raise CommandError("Customers and products must exist before creating orders.")

        placed = rejected = 0
        for _ in range(attempts):
            outcome = operations.place_order(
                store,
                customer_id=random.choice(customer_ids),
                product_id=random.choice(product_ids),
                quantity=random.randint(*self.ORDER_QUANTITY_RANGE),
            )
            # Running out of stock is expected once the catalogue drains.
            if outcome.ok:
                placed += 1
            else:
                rejected += 1
        return placed, rejected
