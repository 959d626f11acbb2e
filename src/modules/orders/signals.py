"""Signals writing status audit rows for every Order status change."""

from __future__ import annotations

from typing import Any, Optional, Protocol, cast

from django.db.models.signals import post_save, pre_save
from django.dispatch import receiver

from modules.orders.constants import AuditAction
from modules.orders.models import Order, OrderAuditEvent


class _OrderStatusAware(Protocol):
    _previous_status: str | None
    _status_change_notes: str | None
    _status_change_user: Any


@receiver(pre_save, sender=Order)
def _capture_previous_status(sender, instance: Order, **kwargs) -> None:
    status_instance = cast(_OrderStatusAware, instance)
    if instance._state.adding:
        status_instance._previous_status = None
        return
    previous_status = (
        sender.objects.filter(pk=instance.pk).values_list("status", flat=True).first()
    )
    status_instance._previous_status = previous_status


@receiver(post_save, sender=Order)
def _record_status_audit(sender, instance: Order, created: bool, **kwargs) -> None:
    status_instance = cast(_OrderStatusAware, instance)
    previous_status: Optional[str] = getattr(status_instance, "_previous_status", None)
    notes = getattr(status_instance, "_status_change_notes", None)
    user = getattr(status_instance, "_status_change_user", None)

    if not created and previous_status == instance.status:
        _clear_transient_status_attrs(instance)
        return

    if created:
        action = AuditAction.ORDER_CREATED
        notes = notes if notes is not None else "Order created"
        user = user or instance.staff
    else:
        action = AuditAction.STATUS_CHANGED
    if not getattr(user, "is_authenticated", False):
        user = None

    OrderAuditEvent.objects.create(
        order=instance,
        action=action,
        previous_status=previous_status,
        new_status=instance.status,
        user=user,
        notes=notes or "",
    )

    _clear_transient_status_attrs(instance)


def _clear_transient_status_attrs(instance: Order) -> None:
    for attr in ("_previous_status", "_status_change_notes", "_status_change_user"):
        if hasattr(instance, attr):
            delattr(instance, attr)
