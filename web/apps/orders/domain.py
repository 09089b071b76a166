"""Domain models, errors and ports for tasting orders.

This module contains the immutable dataclasses that describe an order and
its nested guest selections, the error taxonomy raised by the order
service, and protocol definitions (ports) for the two external
dependencies of the core: the durable order store and the broadcast
channel. It has no Django imports so it can be exercised without a
database.
"""

import hashlib
import json
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Mapping, Optional, Protocol, Tuple

DEFAULT_WINERY_ID = 1


# ---- Enums ----
class SelectionStatus(str, Enum):
    """Serving status of a single wine selection.

    ``pending`` means staff has not acted yet; ``servi`` and ``non-servi``
    are the served / declined states staff toggle between.
    """

    PENDING = "pending"
    SERVED = "servi"
    NOT_SERVED = "non-servi"

    def toggled(self) -> "SelectionStatus":
        """Status reached by one staff toggle from this status."""
        if self is SelectionStatus.SERVED:
            return SelectionStatus.NOT_SERVED
        return SelectionStatus.SERVED


class OrderStatus(str, Enum):
    """Order lifecycle. Only ``active`` orders accept mutations."""

    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class EventType(str, Enum):
    ORDER_CREATED = "order-created"
    ORDER_UPDATED = "order-updated"
    ORDER_DELETED = "order-deleted"


# ---- Errors ----
class OrderError(Exception):
    """Base class for order service errors.

    ``str(exc)`` is a stable machine-readable code (mirrored in HTTP error
    bodies); ``exc.detail`` is an optional human readable reason.
    """

    code = "ORDER_ERROR"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail
        super().__init__(self.code)


class Conflict(OrderError):
    """An active order already uses the slug, or an idempotency key was reused."""

    code = "CONFLICT"


class NotFound(OrderError):
    """No resolution strategy matched the identifier."""

    code = "NOT_FOUND"

    def __init__(self, identifier: str, known: Iterable[str] = ()):
        self.identifier = identifier
        self.known = sorted(set(known))
        super().__init__(f"no order matches {identifier!r}")


class InvalidTarget(OrderError):
    """Unknown guest key, index out of range, or order no longer active."""

    code = "INVALID_TARGET"


class InvalidTransition(OrderError):
    """Lifecycle change other than ``active -> completed|cancelled``."""

    code = "INVALID_TRANSITION"


class StoreUnavailable(OrderError):
    """Backing store unreachable, timed out, or write contention never settled.

    The only error a caller may retry.
    """

    code = "STORE_UNAVAILABLE"


# ---- Entities ----
@dataclass(frozen=True)
class Selection:
    """One guest's claim on one wine.

    Attributes:
        wine_reference: Catalog reference (name or id) of the wine.
        status: Current serving status.
    """

    wine_reference: str
    status: SelectionStatus = SelectionStatus.PENDING


@dataclass(frozen=True)
class Order:
    """Snapshot of a tasting order.

    Snapshots are immutable: every mutation produces a new instance with
    ``version`` incremented, which is what the store compares on write.

    Attributes:
        id: Opaque identifier assigned at creation.
        group_name: Display name supplied by the submitter.
        group_slug: ``slugify(group_name)`` at creation time.
        winery_id: Owning winery scope.
        guest_names: Guest key -> display name.
        selections: Guest key -> ordered tuple of Selection.
        status: Lifecycle state.
        created_at: Creation timestamp.
        updated_at: Timestamp of the last committed mutation.
        version: Commit counter, starts at 1.
    """

    id: str
    group_name: str
    group_slug: str
    winery_id: int
    guest_names: Mapping[str, str]
    selections: Mapping[str, Tuple[Selection, ...]]
    status: OrderStatus
    created_at: datetime
    updated_at: datetime
    version: int = 1

    @property
    def is_active(self) -> bool:
        return self.status is OrderStatus.ACTIVE

    def selection(self, guest_key: str, index: int) -> Selection:
        """Return the addressed selection or raise InvalidTarget."""
        if guest_key not in self.guest_names:
            raise InvalidTarget(f"unknown guest {guest_key!r}")
        entries = self.selections.get(guest_key, ())
        if isinstance(index, bool) or not 0 <= index < len(entries):
            raise InvalidTarget(f"selection {index} out of range for guest {guest_key!r}")
        return entries[index]

    def with_selection_status(self, guest_key: str, index: int, status: SelectionStatus) -> "Order":
        """Copy of the order with a single selection status replaced."""
        current = self.selection(guest_key, index)
        entries = list(self.selections[guest_key])
        entries[index] = replace(current, status=status)
        selections = dict(self.selections)
        selections[guest_key] = tuple(entries)
        return replace(self, selections=selections)


@dataclass(frozen=True)
class ToggleReceipt:
    """Record of an applied keyed toggle, stored atomically with the toggle."""

    key: str
    order_id: str
    guest_key: str
    selection_index: int
    fingerprint: str
    result_status: SelectionStatus


@dataclass(frozen=True)
class OrderEvent:
    """Change notification carrying the full order snapshot."""

    type: EventType
    order: Order

    @property
    def winery_id(self) -> int:
        return self.order.winery_id


def canonical_hash(payload: dict) -> str:
    """Stable SHA-256 of a JSON-serializable payload (sorted keys, compact)."""
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


# ---- Ports (DIP) ----
class OrderStorePort(Protocol):
    """Durable repository of Order snapshots.

    Implementations must make ``compare_and_swap`` atomic: the write (and
    the optional receipt) happens only if the stored version still equals
    ``expected_version``.
    """

    durable: bool

    def add(self, order: Order) -> Order:
        """Persist a new order. Raises Conflict on a duplicate active slug."""
        raise NotImplementedError()

    def get(self, order_id: str) -> Optional[Order]:
        raise NotImplementedError()

    def find_by_slug(self, slug: str) -> List[Order]:
        raise NotImplementedError()

    def all(self, winery_id: Optional[int] = None, status: Optional[OrderStatus] = None) -> List[Order]:
        """Orders newest first, optionally filtered."""
        raise NotImplementedError()

    def compare_and_swap(self, order: Order, expected_version: int,
                         receipt: Optional[ToggleReceipt] = None) -> bool:
        """Replace the stored order if its version is ``expected_version``.

        Returns:
            True when written, False when another writer got there first.
        """
        raise NotImplementedError()

    def get_receipt(self, key: str) -> Optional[ToggleReceipt]:
        raise NotImplementedError()

    def delete(self, order_id: str) -> bool:
        raise NotImplementedError()


class BroadcastPort(Protocol):
    """Fire-and-forget publisher of order events."""

    def publish(self, event: OrderEvent) -> None:
        raise NotImplementedError()


@dataclass
class RetryPolicy:
    """Bounded retry for compare-and-swap contention."""

    max_retries: int = 5
    backoff_base: float = 0.02
    max_sleep: float = 0.25

    def delay(self, attempt: int) -> float:
        return min(self.backoff_base * (2 ** (attempt - 1)), self.max_sleep)
