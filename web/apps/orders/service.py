"""Order service: creation, selection updates and lifecycle transitions.

``OrderService`` is the single writer path for orders. Every mutation is a
read-compute-compare-and-swap loop on the order's ``version``: the new
snapshot is computed from the one just read and written only if nobody
committed in between, otherwise the loop starts over from a fresh read.
Two staff terminals toggling different selections of the same order
therefore both land, whatever the interleaving.

Events are published after the commit and outside of it; a broadcast
failure is logged and never turns a committed write into an error.
"""

import logging
import time
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .domain import (
    DEFAULT_WINERY_ID,
    BroadcastPort,
    Conflict,
    EventType,
    InvalidTarget,
    InvalidTransition,
    NotFound,
    Order,
    OrderEvent,
    OrderStatus,
    OrderStorePort,
    RetryPolicy,
    Selection,
    SelectionStatus,
    StoreUnavailable,
    ToggleReceipt,
    canonical_hash,
)
from .resolver import OrderResolver
from .slug import slugify
from .summary import GroupSummary, summarize

logger = logging.getLogger(__name__)

OrderRef = Union[Order, str]
_TERMINAL_TARGETS = {OrderStatus.COMPLETED, OrderStatus.CANCELLED}
# slugs that would collide with fixed path segments under /api/orders/
RESERVED_SLUGS = {"group"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderService:
    """Domain service owning every read and write of orders.

    Args:
        store: Durable store port.
        broadcaster: Fanout port; publish errors are swallowed and logged.
        resolver: Identifier resolver, defaults to id -> slug -> name.
        retry: Compare-and-swap retry policy.
        default_winery_id: Winery scope used when a submission has none.
        clock: Timestamp source, injectable for tests.
        sleep: Backoff sleep, injectable for tests.
    """

    def __init__(
        self,
        store: OrderStorePort,
        broadcaster: BroadcastPort,
        resolver: Optional[OrderResolver] = None,
        retry: Optional[RetryPolicy] = None,
        default_winery_id: int = DEFAULT_WINERY_ID,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.broadcaster = broadcaster
        self.resolver = resolver or OrderResolver()
        self.retry = retry or RetryPolicy()
        self.default_winery_id = default_winery_id
        self.clock = clock
        self.sleep = sleep

    # ---- reads ----
    def resolve(self, identifier: OrderRef) -> Order:
        """Resolve an id, slug or group name (or refresh an Order) to the stored order."""
        if isinstance(identifier, Order):
            fresh = self.store.get(identifier.id)
            if fresh is None:
                raise NotFound(identifier.id)
            return fresh
        return self.resolver.resolve(self.store, identifier)

    def summarize(self, identifier: OrderRef) -> GroupSummary:
        return summarize(self.resolve(identifier))

    def list_orders(self, winery_id: Optional[int] = None,
                    status: Optional[OrderStatus] = OrderStatus.ACTIVE) -> List[Order]:
        return self.store.all(winery_id=winery_id, status=status)

    # ---- writes ----
    def create_order(
        self,
        group_name: str,
        guest_names: Mapping[str, str],
        selections: Mapping[str, Sequence[Selection]],
        winery_id: Optional[int] = None,
    ) -> Order:
        """Create and persist a new active order.

        Selection statuses default to ``pending`` unless the submitted
        Selection carries one.

        Raises:
            InvalidTarget: Empty or reserved group name (after slugging) or a
                selection for a guest key missing from ``guest_names``.
            Conflict: An active order already has the same slug.
        """
        group_name = (group_name or "").strip()
        slug = slugify(group_name)
        if not slug:
            raise InvalidTarget("group name must contain letters or digits")
        if slug in RESERVED_SLUGS:
            raise InvalidTarget(f"group name {group_name!r} is reserved")

        guests: Dict[str, str] = {str(k): (v or "") for k, v in guest_names.items()}
        normalized: Dict[str, Tuple[Selection, ...]] = {}
        for guest_key, entries in selections.items():
            if str(guest_key) not in guests:
                raise InvalidTarget(f"selection for unknown guest {guest_key!r}")
            normalized[str(guest_key)] = tuple(
                Selection(wine_reference=s.wine_reference, status=SelectionStatus(s.status)) for s in entries
            )

        existing = [o for o in self.store.find_by_slug(slug) if o.is_active]
        if existing:
            raise Conflict(f"an active order already uses the name {existing[0].group_name!r}")

        now = self.clock()
        order = Order(
            id=str(uuid.uuid4()),
            group_name=group_name,
            group_slug=slug,
            winery_id=self.default_winery_id if winery_id is None else winery_id,
            guest_names=guests,
            selections=normalized,
            status=OrderStatus.ACTIVE,
            created_at=now,
            updated_at=now,
        )
        created = self.store.add(order)
        logger.info("order created", extra={"order_id": created.id, "group_slug": slug,
                                            "winery_id": created.winery_id})
        self._announce(EventType.ORDER_CREATED, created)
        return created

    def update_selection_status(
        self,
        ref: OrderRef,
        guest_key: str,
        index: int,
        status: Optional[SelectionStatus] = None,
        toggle_key: Optional[str] = None,
    ) -> Order:
        """Set or toggle the serving status of one selection.

        With ``status`` the selection is set to it (naturally idempotent;
        setting the current status is a no-op that writes nothing). Without
        it the status is toggled: ``servi`` becomes ``non-servi`` and
        anything else becomes ``servi``. A toggle carrying ``toggle_key`` is
        applied at most once: a replay of the same key for the same target
        returns the current order untouched.

        Returns:
            The full order after the change.

        Raises:
            NotFound: Unknown identifier.
            InvalidTarget: Bad guest key / index, unknown status, or order
                not active.
            Conflict: ``toggle_key`` already used for another target.
            StoreUnavailable: Store unreachable or contention not settled
                within the retry policy.
        """
        if status is not None:
            try:
                status = SelectionStatus(status)
            except ValueError as e:
                raise InvalidTarget(f"unknown selection status {status!r}") from e
        order_id = self.resolve(ref).id
        fingerprint = None
        if status is None and toggle_key:
            fingerprint = canonical_hash({"order": order_id, "guest": guest_key, "index": index, "op": "toggle"})

        attempt = 0
        while True:
            current = self.store.get(order_id)
            if current is None:
                raise NotFound(order_id)

            if fingerprint is not None:
                seen = self.store.get_receipt(toggle_key)
                if seen is not None:
                    if seen.fingerprint != fingerprint:
                        raise Conflict("IDEMPOTENCY_CONFLICT")
                    logger.info("toggle replay ignored", extra={"order_id": order_id, "toggle_key": toggle_key})
                    return current

            if not current.is_active:
                raise InvalidTarget(f"order is {current.status.value}")
            before = current.selection(guest_key, index).status
            target = status if status is not None else before.toggled()
            if target is before:
                return current

            updated = replace(
                current.with_selection_status(guest_key, index, target),
                version=current.version + 1,
                updated_at=self.clock(),
            )
            receipt = None
            if fingerprint is not None:
                receipt = ToggleReceipt(toggle_key, order_id, guest_key, index, fingerprint, target)

            if self.store.compare_and_swap(updated, current.version, receipt=receipt):
                logger.info(
                    "selection status updated",
                    extra={"order_id": order_id, "guest_key": guest_key, "index": index,
                           "from": before.value, "to": target.value, "version": updated.version},
                )
                self._announce(EventType.ORDER_UPDATED, updated)
                return updated
            attempt = self._backoff(attempt, order_id)

    def set_order_status(self, ref: OrderRef, status: OrderStatus) -> Order:
        """Move an active order to ``completed`` or ``cancelled``.

        Raises:
            InvalidTransition: Source is not active or target is not terminal.
        """
        order_id = self.resolve(ref).id
        status = OrderStatus(status)
        attempt = 0
        while True:
            current = self.store.get(order_id)
            if current is None:
                raise NotFound(order_id)
            if not current.is_active or status not in _TERMINAL_TARGETS:
                raise InvalidTransition(f"{current.status.value} -> {status.value} is not allowed")

            updated = replace(current, status=status, version=current.version + 1, updated_at=self.clock())
            if self.store.compare_and_swap(updated, current.version):
                logger.info("order status changed", extra={"order_id": order_id, "status": status.value})
                self._announce(EventType.ORDER_UPDATED, updated)
                return updated
            attempt = self._backoff(attempt, order_id)

    def delete_order(self, ref: OrderRef) -> Order:
        """Administrative removal; outside the lifecycle invariants."""
        order = self.resolve(ref)
        if not self.store.delete(order.id):
            raise NotFound(order.id)
        logger.warning("order deleted", extra={"order_id": order.id, "group_slug": order.group_slug})
        self._announce(EventType.ORDER_DELETED, order)
        return order

    # ---- helpers ----
    def _backoff(self, attempt: int, order_id: str) -> int:
        attempt += 1
        if attempt > self.retry.max_retries:
            logger.error("write contention not settled", extra={"order_id": order_id, "attempts": attempt})
            raise StoreUnavailable("WRITE_CONTENTION")
        logger.debug("version conflict, retrying", extra={"order_id": order_id, "attempt": attempt})
        self.sleep(self.retry.delay(attempt))
        return attempt

    def _announce(self, event_type: EventType, order: Order) -> None:
        try:
            self.broadcaster.publish(OrderEvent(type=event_type, order=order))
        except Exception:
            logger.exception("broadcast failed", extra={"order_id": order.id, "event": event_type.value})
