from datetime import datetime, timezone

from apps.orders.domain import Order, OrderStatus, Selection, SelectionStatus
from apps.orders.summary import summarize

NOW = datetime(2024, 6, 1, 17, 0, tzinfo=timezone.utc)


def make(guest_names, selections):
    return Order("o1", "Table 5", "table_5", 1, guest_names, selections, OrderStatus.ACTIVE, NOW, NOW)


def test_summary_counts_named_guests_and_all_selections():
    order = make(
        {"g1": "Alice", "g2": "", "g3": "Chloé"},
        {
            "g1": (Selection("a"), Selection("b")),
            "g2": (Selection("c"),),
            "g3": (Selection("d"), Selection("e"), Selection("f")),
        },
    )
    s = summarize(order)
    assert s.guest_count == 2
    assert s.wine_count == 6
    assert s.has_any_response is False


def test_whitespace_name_is_blank():
    s = summarize(make({"g1": "   ", "g2": "Bob"}, {}))
    assert s.guest_count == 1
    assert s.wine_count == 0


def test_any_non_pending_counts_as_response():
    s = summarize(make({"g1": "Alice"}, {"g1": (Selection("a"), Selection("b", SelectionStatus.NOT_SERVED))}))
    assert s.has_any_response is True
