"""DjangoOrderStore against the test database."""

import threading
import uuid
from dataclasses import replace

import pytest
from django.db import OperationalError, connection

from apps.orders.domain import (
    Conflict,
    OrderStatus,
    RetryPolicy,
    Selection,
    SelectionStatus,
    StoreUnavailable,
    ToggleReceipt,
)
from apps.orders.models import OrderModel, ToggleReceiptModel
from apps.orders.repository import DjangoOrderStore
from apps.orders.service import OrderService
from apps.orders.fanout import BroadcastHub

pytestmark = pytest.mark.django_db


@pytest.fixture
def store():
    return DjangoOrderStore()


@pytest.fixture
def db_service(store):
    return OrderService(store, BroadcastHub(), sleep=lambda s: None)


def _create(service, name="Table 5"):
    return service.create_order(
        name,
        {"g1": "Alice", "g2": ""},
        {"g1": [Selection("Hélium"), Selection("Le Chat Noir")], "g2": [Selection("Gris de Gris")]},
    )


def test_add_and_get_round_trip(store, db_service):
    order = _create(db_service)
    loaded = store.get(order.id)
    assert loaded == order
    row = OrderModel.objects.get(pk=order.id)
    assert row.selections["g1"][1] == {"wine": "Le Chat Noir", "status": "pending"}
    assert row.group_slug == "table_5"


def test_get_with_non_uuid_identifier(store, db_service):
    _create(db_service)
    assert store.get("table_5") is None
    assert store.get("o1") is None
    assert store.delete("o1") is False


def test_compare_and_swap_rejects_stale_version(store, db_service):
    order = _create(db_service)
    first = replace(order.with_selection_status("g1", 0, SelectionStatus.SERVED), version=2)
    assert store.compare_and_swap(first, expected_version=1) is True

    stale = replace(order.with_selection_status("g2", 0, SelectionStatus.SERVED), version=2)
    assert store.compare_and_swap(stale, expected_version=1) is False

    current = store.get(order.id)
    assert current.version == 2
    assert current.selections["g1"][0].status is SelectionStatus.SERVED
    assert current.selections["g2"][0].status is SelectionStatus.PENDING


def test_compare_and_swap_writes_receipt_atomically(store, db_service):
    order = _create(db_service)
    receipt = ToggleReceipt("tap-1", order.id, "g1", 0, "f" * 64, SelectionStatus.SERVED)
    toggled = replace(order.with_selection_status("g1", 0, SelectionStatus.SERVED), version=2)
    assert store.compare_and_swap(toggled, 1, receipt=receipt) is True
    assert store.get_receipt("tap-1") == receipt

    # same key again: the order write is rolled back with the receipt insert
    again = replace(toggled.with_selection_status("g1", 0, SelectionStatus.NOT_SERVED), version=3)
    assert store.compare_and_swap(again, 2, receipt=receipt) is False
    assert store.get(order.id).version == 2
    assert ToggleReceiptModel.objects.count() == 1


def test_unique_active_slug_enforced_by_database(store, db_service):
    order = _create(db_service)
    duplicate = replace(order, id=str(uuid.uuid4()))
    with pytest.raises(Conflict):
        store.add(duplicate)

    db_service.set_order_status(order.id, OrderStatus.COMPLETED)
    assert store.add(duplicate).id == duplicate.id


def test_all_filters_and_orders_newest_first(store, db_service):
    a = _create(db_service, "Table 1")
    b = db_service.create_order("Table 2", {"g1": "Zoé"}, {}, winery_id=2)
    c = _create(db_service, "Table 3")
    db_service.set_order_status(c.id, OrderStatus.CANCELLED)

    assert [o.id for o in store.all()] == [c.id, b.id, a.id]
    assert [o.id for o in store.all(status=OrderStatus.ACTIVE)] == [b.id, a.id]
    assert [o.id for o in store.all(winery_id=2)] == [b.id]


def test_keyed_toggle_replay_through_service(store, db_service):
    order = _create(db_service)
    first = db_service.update_selection_status(order.id, "g1", 0, toggle_key="tap-9")
    again = db_service.update_selection_status("Table 5", "g1", 0, toggle_key="tap-9")
    assert first.selections["g1"][0].status is SelectionStatus.SERVED
    assert again == first


def test_delete_cascades_receipts(store, db_service):
    order = _create(db_service)
    db_service.update_selection_status(order.id, "g1", 0, toggle_key="tap-1")
    assert store.delete(order.id) is True
    assert store.get(order.id) is None
    assert store.get_receipt("tap-1") is None


def test_database_outage_is_store_unavailable(store, monkeypatch):
    def boom(*args, **kwargs):
        raise OperationalError("could not connect to server")

    monkeypatch.setattr(OrderModel.objects, "filter", boom)
    with pytest.raises(StoreUnavailable):
        store.get(str(uuid.uuid4()))
    with pytest.raises(StoreUnavailable):
        store.find_by_slug("table_5")


@pytest.mark.django_db(transaction=True)
def test_concurrent_toggles_commit_through_database(store):
    """Two terminals toggling different guests on separate connections both land."""
    service = OrderService(store, BroadcastHub(), retry=RetryPolicy(max_retries=20, backoff_base=0.0),
                           sleep=lambda s: None)
    order = _create(service)
    barrier = threading.Barrier(2)
    errors = []

    def toggle(guest):
        try:
            barrier.wait()
            service.update_selection_status(order.id, guest, 0)
        except Exception as e:  # surfaced by the assertion below
            errors.append(e)
        finally:
            connection.close()

    threads = [threading.Thread(target=toggle, args=(g,)) for g in ("g1", "g2")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    final = store.get(order.id)
    assert final.version == 3
    assert final.selections["g1"][0].status is SelectionStatus.SERVED
    assert final.selections["g2"][0].status is SelectionStatus.SERVED
