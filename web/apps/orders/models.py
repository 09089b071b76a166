import uuid
from django.db import models
from django.db.models import Q
from django.utils import timezone


class OrderModel(models.Model):
    # UUID PK exposed in the API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    class Status(models.TextChoices):
        ACTIVE = "active"
        COMPLETED = "completed"
        CANCELLED = "cancelled"

    group_name = models.CharField(max_length=255)
    group_slug = models.CharField(max_length=255, db_index=True)
    winery_id = models.PositiveIntegerField(default=1, db_index=True)
    # {guest_key: display_name}
    guest_names = models.JSONField(default=dict)
    # {guest_key: [{"wine": ..., "status": ...}, ...]}
    selections = models.JSONField(default=dict)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.ACTIVE)
    # compare-and-swap counter, bumped on every committed mutation
    version = models.PositiveIntegerField(default=1)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["group_slug"],
                condition=Q(status="active"),
                name="orders_unique_active_group_slug",
            ),
        ]

    def __str__(self):
        return f"{self.group_name} ({self.status}, v{self.version})"


class ToggleReceiptModel(models.Model):
    """Keyed toggle already applied; written in the same transaction as the toggle."""

    key = models.CharField(max_length=128, unique=True)
    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="toggle_receipts")
    guest_key = models.CharField(max_length=64)
    selection_index = models.PositiveIntegerField()
    fingerprint = models.CharField(max_length=64)
    result_status = models.CharField(max_length=16)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "order_toggle_receipts"


class IdempotencyKey(models.Model):
    """Stored response of an order submission, replayed on client retry."""

    key = models.CharField(max_length=128, unique=True)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveSmallIntegerField(default=0)
    response_body = models.JSONField(default=dict)
    order = models.ForeignKey(OrderModel, null=True, blank=True, on_delete=models.SET_NULL)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"
