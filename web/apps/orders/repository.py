"""Repository layer persisting orders with the Django ORM.

``DjangoOrderStore`` implements ``OrderStorePort``. It maps rows to the
immutable domain snapshots and back, and keeps the domain free of ORM
types. Writes to an existing order go through ``compare_and_swap``: a
conditional ``UPDATE ... WHERE id = %s AND version = %s`` whose row count
tells whether this writer won. Database outages and timeouts surface as
``StoreUnavailable``; there is no in-memory fallback.
"""

import functools
import logging
import uuid
from typing import List, Optional

from django.db import IntegrityError, InterfaceError, OperationalError, transaction

from .domain import (
    Conflict,
    Order,
    OrderStatus,
    OrderStorePort,
    Selection,
    SelectionStatus,
    StoreUnavailable,
    ToggleReceipt,
)
from .models import OrderModel, ToggleReceiptModel

logger = logging.getLogger(__name__)


def _store_call(fn):
    """Translate connectivity/timeout errors into StoreUnavailable."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (OperationalError, InterfaceError) as e:
            logger.error("order store unavailable", extra={"operation": fn.__name__, "error": str(e)})
            raise StoreUnavailable(str(e)) from e

    return wrapper


def _selections_to_json(order: Order) -> dict:
    return {
        guest: [{"wine": s.wine_reference, "status": s.status.value} for s in entries]
        for guest, entries in order.selections.items()
    }


def to_domain(row: OrderModel) -> Order:
    """Map an ``OrderModel`` row to a domain ``Order`` snapshot."""
    selections = {
        str(guest): tuple(
            Selection(wine_reference=str(item.get("wine", "")),
                      status=SelectionStatus(item.get("status", SelectionStatus.PENDING.value)))
            for item in (entries or [])
        )
        for guest, entries in (row.selections or {}).items()
    }
    return Order(
        id=str(row.id),
        group_name=row.group_name,
        group_slug=row.group_slug,
        winery_id=row.winery_id,
        guest_names={str(k): v or "" for k, v in (row.guest_names or {}).items()},
        selections=selections,
        status=OrderStatus(row.status),
        created_at=row.created_at,
        updated_at=row.updated_at,
        version=row.version,
    )


def _parse_id(order_id) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(order_id))
    except ValueError:
        return None


class DjangoOrderStore(OrderStorePort):
    """Durable ``OrderStorePort`` backed by the ``orders`` table."""

    durable = True

    @_store_call
    def add(self, order: Order) -> Order:
        """Insert a new order row.

        The partial unique index on ``group_slug`` for active rows turns a
        race between two identical submissions into ``Conflict``.
        """
        try:
            with transaction.atomic():
                row = OrderModel.objects.create(
                    id=uuid.UUID(order.id),
                    group_name=order.group_name,
                    group_slug=order.group_slug,
                    winery_id=order.winery_id,
                    guest_names=dict(order.guest_names),
                    selections=_selections_to_json(order),
                    status=order.status.value,
                    version=order.version,
                    created_at=order.created_at,
                    updated_at=order.updated_at,
                )
        except IntegrityError as e:
            raise Conflict(f"an active order already uses slug {order.group_slug!r}") from e
        return to_domain(row)

    @_store_call
    def get(self, order_id: str) -> Optional[Order]:
        pk = _parse_id(order_id)
        if pk is None:
            return None
        row = OrderModel.objects.filter(id=pk).first()
        return to_domain(row) if row else None

    @_store_call
    def find_by_slug(self, slug: str) -> List[Order]:
        return [to_domain(r) for r in OrderModel.objects.filter(group_slug=slug)]

    @_store_call
    def all(self, winery_id: Optional[int] = None, status: Optional[OrderStatus] = None) -> List[Order]:
        qs = OrderModel.objects.order_by("-created_at")
        if winery_id is not None:
            qs = qs.filter(winery_id=winery_id)
        if status is not None:
            qs = qs.filter(status=OrderStatus(status).value)
        return [to_domain(r) for r in qs]

    @_store_call
    def compare_and_swap(self, order: Order, expected_version: int,
                         receipt: Optional[ToggleReceipt] = None) -> bool:
        """Conditionally write ``order`` and its receipt in one transaction.

        Returns False when the stored version moved on, or when a receipt
        with the same key was committed concurrently; the caller re-reads
        and decides again.
        """
        try:
            with transaction.atomic():
                written = OrderModel.objects.filter(id=uuid.UUID(order.id), version=expected_version).update(
                    selections=_selections_to_json(order),
                    status=order.status.value,
                    version=order.version,
                    updated_at=order.updated_at,
                )
                if written != 1:
                    return False
                if receipt is not None:
                    ToggleReceiptModel.objects.create(
                        key=receipt.key,
                        order_id=uuid.UUID(receipt.order_id),
                        guest_key=receipt.guest_key,
                        selection_index=receipt.selection_index,
                        fingerprint=receipt.fingerprint,
                        result_status=receipt.result_status.value,
                    )
        except IntegrityError:
            logger.info("toggle receipt raced, rolling back", extra={"order_id": order.id})
            return False
        return True

    @_store_call
    def get_receipt(self, key: str) -> Optional[ToggleReceipt]:
        rec = ToggleReceiptModel.objects.filter(key=key).first()
        if rec is None:
            return None
        return ToggleReceipt(
            key=rec.key,
            order_id=str(rec.order_id),
            guest_key=rec.guest_key,
            selection_index=rec.selection_index,
            fingerprint=rec.fingerprint,
            result_status=SelectionStatus(rec.result_status),
        )

    @_store_call
    def delete(self, order_id: str) -> bool:
        pk = _parse_id(order_id)
        if pk is None:
            return False
        deleted, _ = OrderModel.objects.filter(id=pk).delete()
        return deleted > 0
