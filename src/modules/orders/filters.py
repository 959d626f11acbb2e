import django_filters
from django.utils import timezone

from modules.orders.constants import OrderCategory
from modules.orders.domain.classification import classify
from modules.orders.dtos import OrderSnapshot
from modules.orders.models import Order


class OrderFilter(django_filters.FilterSet):
    status = django_filters.CharFilter(field_name="status", lookup_expr="iexact")
    category = django_filters.ChoiceFilter(
        choices=OrderCategory.choices, method="filter_category"
    )
    invoice_number = django_filters.CharFilter(
        field_name="invoice_number", lookup_expr="icontains"
    )
    start_date = django_filters.DateFilter(field_name="start_date", lookup_expr="gte")
    end_date = django_filters.DateFilter(field_name="end_date", lookup_expr="lte")
    min_total = django_filters.NumberFilter(
        field_name="total_amount", lookup_expr="gte"
    )
    max_total = django_filters.NumberFilter(
        field_name="total_amount", lookup_expr="lte"
    )

    class Meta:
        model = Order
        fields = [
            "status",
            "category",
            "invoice_number",
            "start_date",
            "end_date",
            "min_total",
            "max_total",
        ]

    def filter_category(self, queryset, name, value):
        # Categories are derived, so they cannot be expressed as a lookup.
        now = timezone.now()
        ids = [
            order.pk
            for order in queryset
            if classify(OrderSnapshot.from_entity(order), now) == value
        ]
        return queryset.filter(id__in=ids)
