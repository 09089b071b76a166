"""Group summary derived from an order.

The summary is a read-only projection recomputed on every read; nothing
here is ever persisted.
"""

from dataclasses import dataclass

from .domain import Order, SelectionStatus


@dataclass(frozen=True)
class GroupSummary:
    """Counts shown on the host dashboard for one group.

    Attributes:
        guest_count: Guests with a non-blank display name.
        wine_count: Total selection records across all guests.
        has_any_response: True once any selection has left ``pending``.
    """

    guest_count: int
    wine_count: int
    has_any_response: bool


def summarize(order: Order) -> GroupSummary:
    guest_count = sum(1 for name in order.guest_names.values() if (name or "").strip())
    entries = [s for seq in order.selections.values() for s in seq]
    return GroupSummary(
        guest_count=guest_count,
        wine_count=len(entries),
        has_any_response=any(s.status is not SelectionStatus.PENDING for s in entries),
    )
