"""In-process broadcast hub for order events.

Subscribers register for a winery scope and receive every event published
for orders of that winery from the moment they subscribe; nothing is
replayed, so a (re)connecting viewer fetches current state first and uses
the stream for increments only.

Ordering: events carry full snapshots with a ``version``. The hub remembers
the last version it delivered for each order and drops any snapshot that
is not newer, so a subscriber never sees an order go back in time even
when two commits race to publish. Active orders keep their entry; an order
that reaches a terminal status moves to a small bounded table of retired
versions (oldest evicted first), so the guard does not grow with history.

Backpressure: each subscription buffers at most ``queue_size`` events. A
subscriber that falls that far behind is closed instead of silently losing
events; its stream ends and the client reconnects.
"""

import logging
import threading
from collections import OrderedDict, deque
from typing import Deque, Dict, Optional, Set

from .domain import EventType, OrderEvent

logger = logging.getLogger(__name__)


class Subscription:
    """A single viewer's bounded event buffer for one winery scope."""

    def __init__(self, hub: "BroadcastHub", winery_id: int, queue_size: int):
        self.hub = hub
        self.winery_id = winery_id
        self.queue_size = queue_size
        self.close_reason: Optional[str] = None
        self._events: Deque[OrderEvent] = deque()
        self._cond = threading.Condition()

    @property
    def closed(self) -> bool:
        return self.close_reason is not None

    def offer(self, event: OrderEvent) -> bool:
        """Enqueue without blocking. Returns False if the subscription had to close."""
        with self._cond:
            if self.closed:
                return False
            if len(self._events) >= self.queue_size:
                self.close_reason = "overflow"
                self._cond.notify_all()
                return False
            self._events.append(event)
            self._cond.notify()
            return True

    def get(self, timeout: Optional[float] = None) -> Optional[OrderEvent]:
        """Next event, or None on timeout or once closed and drained."""
        with self._cond:
            if not self._events and not self.closed:
                self._cond.wait(timeout)
            if self._events:
                return self._events.popleft()
            return None

    def close(self, reason: str = "closed") -> None:
        with self._cond:
            if self.close_reason is None:
                self.close_reason = reason
            self._cond.notify_all()
        self.hub.unsubscribe(self)

    def __iter__(self):
        while True:
            event = self.get()
            if event is None:
                if self.closed:
                    return
                continue
            yield event


class BroadcastHub:
    """Thread-safe publish/subscribe hub scoped by winery id.

    Also implements ``BroadcastPort`` so the order service can publish to
    it directly when events need not cross process boundaries.
    """

    def __init__(self, queue_size: int = 100, retired_size: int = 1024):
        self.queue_size = queue_size
        self.retired_size = retired_size
        self._lock = threading.Lock()
        self._subscribers: Dict[int, Set[Subscription]] = {}
        self._delivered_versions: Dict[str, int] = {}
        self._retired_versions: "OrderedDict[str, int]" = OrderedDict()

    def subscribe(self, winery_id: int) -> Subscription:
        sub = Subscription(self, int(winery_id), self.queue_size)
        with self._lock:
            self._subscribers.setdefault(sub.winery_id, set()).add(sub)
        logger.info("subscriber joined", extra={"winery_id": sub.winery_id})
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            scope = self._subscribers.get(sub.winery_id)
            if scope is None or sub not in scope:
                return
            scope.discard(sub)
            if not scope:
                del self._subscribers[sub.winery_id]
        logger.info("subscriber left", extra={"winery_id": sub.winery_id, "reason": sub.close_reason})

    def subscriber_count(self, winery_id: Optional[int] = None) -> int:
        with self._lock:
            if winery_id is not None:
                return len(self._subscribers.get(int(winery_id), ()))
            return sum(len(s) for s in self._subscribers.values())

    def publish(self, event: OrderEvent) -> int:
        """Deliver ``event`` to the subscribers of its winery.

        Returns:
            Number of subscriptions that accepted the event.
        """
        order = event.order
        overflowed = []
        with self._lock:
            if event.type is EventType.ORDER_DELETED:
                self._delivered_versions.pop(order.id, None)
                self._retired_versions.pop(order.id, None)
            else:
                last = self._last_delivered(order.id)
                if order.version <= last:
                    logger.debug("stale event dropped",
                                 extra={"order_id": order.id, "version": order.version, "delivered": last})
                    return 0
                if order.is_active:
                    self._delivered_versions[order.id] = order.version
                else:
                    self._retire(order.id, order.version)

            delivered = 0
            for sub in list(self._subscribers.get(order.winery_id, ())):
                if sub.offer(event):
                    delivered += 1
                else:
                    overflowed.append(sub)

        for sub in overflowed:
            logger.warning("subscriber overflowed, closing", extra={"winery_id": sub.winery_id})
            sub.close("overflow")
        return delivered

    def _last_delivered(self, order_id: str) -> int:
        if order_id in self._delivered_versions:
            return self._delivered_versions[order_id]
        return self._retired_versions.get(order_id, 0)

    def _retire(self, order_id: str, version: int) -> None:
        # caller holds self._lock
        self._delivered_versions.pop(order_id, None)
        self._retired_versions[order_id] = version
        self._retired_versions.move_to_end(order_id)
        while len(self._retired_versions) > self.retired_size:
            self._retired_versions.popitem(last=False)
