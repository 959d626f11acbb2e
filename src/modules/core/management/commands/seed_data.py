from __future__ import annotations

import random
from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.utils import timezone

from modules.orders.dtos import (
    CreateOrderDTO,
    CreateOrderItemDTO,
    ItemReturnDTO,
    ProcessReturnDTO,
)
from modules.orders.models import Order
from modules.orders.repositories import (
    AuditLogDjangoRepository,
    OrderDjangoRepository,
)
from modules.orders.services import OrderService

CATALOG = [
    ("Bridal Lehenga", Decimal("2500.00")),
    ("Sherwani", Decimal("1800.00")),
    ("Designer Saree", Decimal("1200.00")),
    ("Kundan Necklace Set", Decimal("900.00")),
    ("Jhumka Earrings", Decimal("250.00")),
    ("Indo-Western Suit", Decimal("1500.00")),
    ("Anarkali Gown", Decimal("1100.00")),
    ("Safa Turban", Decimal("150.00")),
]


class Command(BaseCommand):
    help = "Seed database with realistic development rental orders."

    def add_arguments(self, parser):
        parser.add_argument("--orders", type=int, default=30)

    def handle(self, *args, **options):
        random.seed(42)
        self.stdout.write("Seeding development data...")

        users_created = self._seed_users()
        orders_created = self._seed_orders(options["orders"])

        self.stdout.write(
            self.style.SUCCESS(
                f"Seed completed: users={users_created}, orders={orders_created}"
            )
        )

    def _seed_users(self) -> int:
        User = get_user_model()
        created = 0
        if not User.objects.filter(username="admin").exists():
            User.objects.create_superuser("admin", password="admin123")
            created += 1
        if not User.objects.filter(username="counter").exists():
            User.objects.create_user(
                "counter", password="counter123", first_name="Counter", is_staff=True
            )
            created += 1
        return created

    def _seed_orders(self, count: int) -> int:
        self.stdout.write("Creating orders...")
        if Order.objects.filter(notes__startswith="Seed order").exists():
            self.stdout.write(self.style.WARNING("Skipping orders (already seeded)."))
            return 0

        staff = get_user_model().objects.get(username="counter")
        audit_repository = AuditLogDjangoRepository()
        service = OrderService(
            OrderDjangoRepository(audit_repository), audit_repository
        )
        today = timezone.localdate()

        for i in range(count):
            start = today + timedelta(days=random.randint(-10, 10))
            end = start + timedelta(days=random.randint(1, 4))
            lines = random.sample(CATALOG, k=random.randint(1, 3))
            order = service.create_order(
                CreateOrderDTO(
                    start_date=start,
                    end_date=end,
                    items=[
                        CreateOrderItemDTO(
                            product_name=name,
                            quantity=random.randint(1, 2),
                            price_per_day=price,
                        )
                        for name, price in lines
                    ],
                    gst_amount=Decimal("0.00"),
                    security_deposit_amount=Decimal("1000.00"),
                    security_deposit_collected=True,
                    notes=f"Seed order {i + 1}",
                ),
                staff=staff,
            )
            if end < today and random.random() < 0.6:
                self._return_some(service, order, staff)

        self.stdout.write(self.style.SUCCESS("Creating orders... Done!"))
        return count

    @staticmethod
    def _return_some(service: OrderService, order: Order, staff) -> None:
        items = list(order.items.all())
        returned = items if random.random() < 0.7 else items[:1]
        service.process_return(
            order.id,
            ProcessReturnDTO(
                returns=[
                    ItemReturnDTO(item_id=item.id, quantity=item.quantity)
                    for item in returned
                ]
            ),
            user=staff,
        )
