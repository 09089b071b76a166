"""Concurrent selection updates must never lose each other's effect."""

import threading
from dataclasses import replace

import pytest

from apps.orders.adapters import InMemoryOrderStore
from apps.orders.domain import RetryPolicy, Selection, SelectionStatus, StoreUnavailable
from apps.orders.fanout import BroadcastHub
from apps.orders.service import OrderService


class InterleavingStore(InMemoryOrderStore):
    """Commits a competing write right before the service's first swap."""

    def __init__(self, competing_writes=1):
        super().__init__()
        self.competing_writes = competing_writes
        self.swaps = 0

    def compare_and_swap(self, order, expected_version, receipt=None):
        self.swaps += 1
        if self.competing_writes:
            self.competing_writes -= 1
            stored = self.get(order.id)
            rival = replace(stored.with_selection_status("g2", 0, SelectionStatus.NOT_SERVED),
                            version=stored.version + 1)
            assert super().compare_and_swap(rival, stored.version)
        return super().compare_and_swap(order, expected_version, receipt=receipt)


def _service(store, retries=5):
    return OrderService(store, BroadcastHub(), retry=RetryPolicy(max_retries=retries, backoff_base=0.0),
                        sleep=lambda s: None)


def _create(service):
    return service.create_order(
        "Table 5",
        {"g1": "Alice", "g2": "Bob"},
        {"g1": [Selection("Hélium")], "g2": [Selection("Gris de Gris")]},
    )


def test_concurrent_toggles_on_different_guests_both_land(service, memory_store):
    order = _create(service)
    barrier = threading.Barrier(2)
    errors = []

    def toggle(guest):
        barrier.wait()
        try:
            service.update_selection_status(order.id, guest, 0)
        except Exception as e:  # surfaced by the assertion below
            errors.append(e)

    threads = [threading.Thread(target=toggle, args=(g,)) for g in ("g1", "g2")]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    assert errors == []
    final = memory_store.get(order.id)
    assert final.selections["g1"][0].status is SelectionStatus.SERVED
    assert final.selections["g2"][0].status is SelectionStatus.SERVED
    assert final.version == 3


def test_many_writers_no_lost_update():
    store = InMemoryOrderStore()
    service = _service(store, retries=200)
    guests = {f"g{i}": f"Guest {i}" for i in range(8)}
    order = service.create_order("Mariage", guests, {g: [Selection("Hélium")] for g in guests})

    threads = [
        threading.Thread(target=service.update_selection_status, args=(order.id, g, 0, SelectionStatus.SERVED))
        for g in guests
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    final = store.get(order.id)
    assert all(seq[0].status is SelectionStatus.SERVED for seq in final.selections.values())
    assert final.version == 1 + len(guests)


def test_stale_swap_is_retried_on_fresh_state():
    store = InterleavingStore(competing_writes=1)
    service = _service(store)
    order = _create(service)

    updated = service.update_selection_status(order.id, "g1", 0)

    assert store.swaps == 2
    assert updated.version == 3
    assert updated.selections["g1"][0].status is SelectionStatus.SERVED
    # the competing write survived
    assert updated.selections["g2"][0].status is SelectionStatus.NOT_SERVED


def test_unsettled_contention_raises_store_unavailable():
    store = InterleavingStore(competing_writes=100)
    service = _service(store, retries=2)
    order = _create(service)

    with pytest.raises(StoreUnavailable) as e:
        service.update_selection_status(order.id, "g1", 0)
    assert e.value.detail == "WRITE_CONTENTION"
    assert store.swaps == 3
    assert store.get(order.id).selections["g1"][0].status is SelectionStatus.PENDING
