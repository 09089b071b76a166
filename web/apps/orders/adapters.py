"""In-process store adapter for the orders domain port.

``InMemoryOrderStore`` implements ``OrderStorePort`` without a database.
It is used by unit tests and, when explicitly configured with
``ORDER_STORE_BACKEND=memory``, as a degraded single-process mode: data
lives only as long as the process, is not shared between workers, and
is never used as a silent substitute for the durable store.
"""

import threading
from typing import Dict, List, Optional

from .domain import Conflict, Order, OrderStatus, OrderStorePort, ToggleReceipt


class InMemoryOrderStore(OrderStorePort):
    """Volatile ``OrderStorePort`` guarded by a single lock.

    The lock makes ``compare_and_swap`` and ``add`` atomic, which is the
    same contract the durable store provides with a conditional UPDATE
    and a partial unique index.
    """

    durable = False

    def __init__(self):
        self._lock = threading.Lock()
        self._orders: Dict[str, Order] = {}
        self._receipts: Dict[str, ToggleReceipt] = {}

    def add(self, order: Order) -> Order:
        with self._lock:
            if order.id in self._orders:
                raise Conflict(f"order id {order.id} already exists")
            if order.is_active and any(
                o.is_active and o.group_slug == order.group_slug for o in self._orders.values()
            ):
                raise Conflict(f"an active order already uses slug {order.group_slug!r}")
            self._orders[order.id] = order
            return order

    def get(self, order_id: str) -> Optional[Order]:
        with self._lock:
            return self._orders.get(str(order_id))

    def find_by_slug(self, slug: str) -> List[Order]:
        with self._lock:
            return [o for o in self._orders.values() if o.group_slug == slug]

    def all(self, winery_id: Optional[int] = None, status: Optional[OrderStatus] = None) -> List[Order]:
        with self._lock:
            rows = list(self._orders.values())
        if winery_id is not None:
            rows = [o for o in rows if o.winery_id == winery_id]
        if status is not None:
            status = OrderStatus(status)
            rows = [o for o in rows if o.status is status]
        return sorted(rows, key=lambda o: o.created_at, reverse=True)

    def compare_and_swap(self, order: Order, expected_version: int,
                         receipt: Optional[ToggleReceipt] = None) -> bool:
        with self._lock:
            stored = self._orders.get(order.id)
            if stored is None or stored.version != expected_version:
                return False
            if receipt is not None and receipt.key in self._receipts:
                return False
            self._orders[order.id] = order
            if receipt is not None:
                self._receipts[receipt.key] = receipt
            return True

    def get_receipt(self, key: str) -> Optional[ToggleReceipt]:
        with self._lock:
            return self._receipts.get(key)

    def delete(self, order_id: str) -> bool:
        with self._lock:
            return self._orders.pop(str(order_id), None) is not None
