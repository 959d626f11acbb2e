"""Order API views.

Exposes the ``OrderService`` via HTTP using DRF ViewSets.
Domain exceptions are caught and translated into appropriate
HTTP status codes; the view never swallows generic exceptions.
Detail responses carry the order overview (snapshot, category, return
statistics and settlement) computed after the operation.
"""

from __future__ import annotations

from typing import Any, Callable
from uuid import UUID

import structlog
from django.utils import timezone
from django_filters.rest_framework import DjangoFilterBackend
from pydantic import ValidationError as DTOValidationError
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.filters import OrderingFilter
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.throttling import BaseThrottle
from rest_framework.viewsets import GenericViewSet

from modules.core.pagination import StandardResultsSetPagination
from modules.orders.dtos import (
    AmountDTO,
    CreateOrderDTO,
    CreateOrderItemDTO,
    ItemReturnDTO,
    ItemRevertDTO,
    ProcessReturnDTO,
    StatusNoteDTO,
    UpdateItemDamageDTO,
)
from modules.orders.exceptions import (
    InvalidOrderStatus,
    OperationInProgress,
    OrderItemNotFound,
    OrderNotFound,
    ReturnValidationError,
    SettlementValidationError,
)
from modules.orders.filters import OrderFilter
from modules.orders.models import Order
from modules.orders.repositories import (
    AuditLogDjangoRepository,
    OrderDjangoRepository,
)
from modules.orders.serializers import (
    AmountSerializer,
    CreateOrderSerializer,
    OrderListSerializer,
    ProcessReturnSerializer,
    StatusNoteSerializer,
    UpdateItemDamageSerializer,
)
from modules.orders.services import OrderService

logger = structlog.get_logger(__name__)

_NOT_FOUND = (OrderNotFound, OrderItemNotFound)
_BAD_REQUEST = (
    InvalidOrderStatus,
    ReturnValidationError,
    SettlementValidationError,
)


def _detail(message: str, code: int) -> Response:
    return Response({"detail": message}, status=code)


def _dto_errors(exc: DTOValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": list(error["loc"]), "msg": error["msg"]} for error in exc.errors()
    ]


class OrderViewSet(GenericViewSet):
    """ViewSet for rental order operations.

    Uses ``OrderService`` with injected repositories (DIP).
    Does **not** extend ``ModelViewSet``; all ORM access goes through
    the service/repository layer.
    """

    queryset = Order.objects.all()
    filterset_class = OrderFilter
    ordering_fields = ["created_at", "start_date", "end_date", "total_amount"]
    ordering = ["-created_at", "-id"]
    filter_backends = [DjangoFilterBackend, OrderingFilter]

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        audit_repository = AuditLogDjangoRepository()
        self._service = OrderService(
            order_repository=OrderDjangoRepository(audit_repository),
            audit_repository=audit_repository,
        )

    def get_throttles(self) -> list[BaseThrottle]:
        """Throttle scopes per action."""
        throttle_scope: str | None
        if self.action == "create":
            throttle_scope = "order_creation"
        elif self.action in {"list", "retrieve", "summary", "timeline"}:
            throttle_scope = "order_listing"
        else:
            throttle_scope = None
        self.throttle_scope = throttle_scope
        return super().get_throttles()

    def get_queryset(self):
        return self._service.list_orders()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _overview(self, order: Order, code: int = status.HTTP_200_OK) -> Response:
        overview = self._service.build_overview(order, timezone.now())
        return Response(overview.model_dump(), status=code)

    def _execute(self, pk: str | None, call: Callable[[UUID], Order]) -> Response:
        """Run a mutation for order *pk* and render its overview.

        Domain errors become 404/400/409 responses.
        """
        if pk is None:
            return _detail("Order not found.", status.HTTP_404_NOT_FOUND)
        try:
            order_id = UUID(str(pk))
        except ValueError:
            return _detail("Invalid order ID format.", status.HTTP_400_BAD_REQUEST)

        try:
            order = call(order_id)
        except _NOT_FOUND as exc:
            return _detail(str(exc), status.HTTP_404_NOT_FOUND)
        except OperationInProgress as exc:
            return _detail(str(exc), status.HTTP_409_CONFLICT)
        except _BAD_REQUEST as exc:
            logger.info(
                "order.request_rejected",
                order_id=str(order_id),
                action=self.action,
                reason=str(exc),
            )
            return _detail(str(exc), status.HTTP_400_BAD_REQUEST)
        except DTOValidationError as exc:
            return Response(
                {"detail": _dto_errors(exc)}, status=status.HTTP_400_BAD_REQUEST
            )
        return self._overview(order)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, request: Request) -> Response:
        """POST /api/v1/orders/

        Supports idempotency via the ``Idempotency-Key`` header.
        """
        create_serializer = CreateOrderSerializer(data=request.data)
        create_serializer.is_valid(raise_exception=True)

        data = create_serializer.validated_data
        try:
            dto = CreateOrderDTO(
                start_date=data["start_date"],
                end_date=data["end_date"],
                start_datetime=data.get("start_datetime"),
                end_datetime=data.get("end_datetime"),
                items=[
                    CreateOrderItemDTO(
                        product_name=item["product_name"],
                        quantity=item["quantity"],
                        price_per_day=item["price_per_day"],
                        days=item.get("days"),
                    )
                    for item in data["items"]
                ],
                gst_amount=data.get("gst_amount", 0),
                security_deposit_amount=data.get("security_deposit_amount"),
                security_deposit_collected=data.get(
                    "security_deposit_collected", False
                ),
                invoice_number=data.get("invoice_number") or None,
                notes=data.get("notes", ""),
                idempotency_key=request.headers.get("Idempotency-Key"),
            )
        except DTOValidationError as exc:
            return Response(
                {"detail": _dto_errors(exc)}, status=status.HTTP_400_BAD_REQUEST
            )

        order = self._service.create_order(dto, staff=request.user)
        return self._overview(order, status.HTTP_201_CREATED)

    # ------------------------------------------------------------------
    # List / Retrieve
    # ------------------------------------------------------------------

    def list(self, request: Request) -> Response:
        """GET /api/v1/orders/

        Filtering (status, derived category, invoice, period, total range)
        is handled by ``OrderFilter``.  Results are paginated.
        """
        queryset = self.filter_queryset(self.get_queryset())

        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(queryset, request)
        serializer = OrderListSerializer(
            page, many=True, context={"now": timezone.now()}
        )
        return paginator.get_paginated_response(serializer.data)

    def retrieve(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/orders/{pk}/"""
        try:
            overview = self._service.get_overview(pk)
        except OrderNotFound:
            return _detail("Order not found.", status.HTTP_404_NOT_FOUND)
        return Response(overview.model_dump())

    @action(detail=False, methods=["get"])
    def summary(self, request: Request) -> Response:
        """GET /api/v1/orders/summary/ - counts per category and today's collection."""
        queryset = self.filter_queryset(self.get_queryset())
        now = timezone.now()
        data: dict = dict(self._service.category_summary(queryset, now))
        data["today_collection"] = self._service.today_collection(queryset, now)
        return Response(data)

    @action(detail=True, methods=["get"])
    def timeline(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/orders/{pk}/timeline/"""
        try:
            timeline = self._service.get_timeline(pk)
        except OrderNotFound:
            return _detail("Order not found.", status.HTTP_404_NOT_FOUND)
        return Response(timeline.model_dump())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @action(detail=True, methods=["post"])
    def start(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/start/ - scheduled -> active."""
        return self._execute(
            pk, lambda order_id: self._service.start_rental(order_id, user=request.user)
        )

    @action(detail=True, methods=["post"])
    def cancel(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/cancel/"""
        serializer = StatusNoteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        dto = StatusNoteDTO(**serializer.validated_data)
        return self._execute(
            pk,
            lambda order_id: self._service.cancel_order(
                order_id, notes=dto.notes, user=request.user
            ),
        )

    @action(detail=True, methods=["post"])
    def flag(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/flag/"""
        serializer = StatusNoteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        dto = StatusNoteDTO(**serializer.validated_data)
        return self._execute(
            pk,
            lambda order_id: self._service.flag_order(
                order_id, notes=dto.notes, user=request.user
            ),
        )

    # ------------------------------------------------------------------
    # Returns and damage
    # ------------------------------------------------------------------

    @action(detail=True, methods=["post"])
    def returns(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/returns/

        Body: ``{"returns": [{item_id, quantity, ...}], "reverts": [...]}``.
        Quantities are the amount returned now, added to what is already
        back.
        """
        serializer = ProcessReturnSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        def call(order_id: UUID) -> Order:
            dto = ProcessReturnDTO(
                returns=[ItemReturnDTO(**line) for line in data["returns"]],
                reverts=[ItemRevertDTO(**line) for line in data["reverts"]],
            )
            return self._service.process_return(order_id, dto, user=request.user)

        return self._execute(pk, call)

    @action(detail=True, methods=["post"])
    def damage(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/damage/ - record or clear item damage."""
        serializer = UpdateItemDamageSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        return self._execute(
            pk,
            lambda order_id: self._service.update_item_damage(
                order_id, UpdateItemDamageDTO(**data), user=request.user
            ),
        )

    # ------------------------------------------------------------------
    # Money
    # ------------------------------------------------------------------

    def _amount(self, request: Request) -> AmountDTO:
        serializer = AmountSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return AmountDTO(amount=serializer.validated_data.get("amount"))

    @action(detail=True, methods=["post"], url_path="late-fee")
    def late_fee(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/late-fee/"""
        dto = self._amount(request)
        return self._execute(
            pk,
            lambda order_id: self._service.update_late_fee(
                order_id, dto.amount, user=request.user
            ),
        )

    @action(detail=True, methods=["post"])
    def refund(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/refund/

        Refunds the remaining deposit balance when no amount is given.
        """
        dto = self._amount(request)
        return self._execute(
            pk,
            lambda order_id: self._service.refund_security_deposit(
                order_id, dto.amount, user=request.user
            ),
        )

    @action(detail=True, methods=["post"])
    def collect(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/collect/ - collect the outstanding amount."""
        dto = self._amount(request)
        return self._execute(
            pk,
            lambda order_id: self._service.collect_outstanding_amount(
                order_id, dto.amount, user=request.user
            ),
        )
