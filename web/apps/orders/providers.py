"""Service provider helpers for wiring OrderService with ports.

``get_order_service`` returns an ``OrderService`` configured from Django
settings:

* ``ORDER_STORE_BACKEND``: ``django`` (durable, default) or ``memory``.
  The memory store is a degraded mode selected explicitly; it is never
  used as a fallback when the database fails.
* ``BROADCAST_BACKEND``: ``local`` (in-process hub, default) or
  ``rabbitmq`` (topic exchange plus a relay thread feeding the local hub).

The hub, the memory store and the RabbitMQ publisher are process-wide
singletons; ``reset_providers`` drops them (used by tests).
"""

import logging
import threading

from django.conf import settings

from .adapters import InMemoryOrderStore
from .domain import BroadcastPort, OrderStorePort, RetryPolicy
from .fanout import BroadcastHub
from .repository import DjangoOrderStore
from .service import OrderService

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_hub = None
_memory_store = None
_broadcaster = None
_relay = None


def get_broadcast_hub() -> BroadcastHub:
    """Process-local hub that subscribers attach to."""
    global _hub, _relay
    with _lock:
        if _hub is None:
            _hub = BroadcastHub(queue_size=getattr(settings, "BROADCAST_QUEUE_SIZE", 100))
        if getattr(settings, "BROADCAST_BACKEND", "local") == "rabbitmq" and _relay is None:
            from .messaging import RabbitMQRelay

            _relay = RabbitMQRelay(_hub, settings.RABBITMQ_URL, settings.BROADCAST_EXCHANGE)
            _relay.start()
        return _hub


def get_broadcaster() -> BroadcastPort:
    global _broadcaster
    backend = getattr(settings, "BROADCAST_BACKEND", "local")
    if backend == "local":
        return get_broadcast_hub()
    if backend == "rabbitmq":
        get_broadcast_hub()  # make sure this process relays events to its own subscribers
        with _lock:
            if _broadcaster is None:
                from .messaging import RabbitMQBroadcaster

                _broadcaster = RabbitMQBroadcaster(settings.RABBITMQ_URL, settings.BROADCAST_EXCHANGE)
            return _broadcaster
    raise ValueError(f"Unknown BROADCAST_BACKEND {backend!r}")


def get_order_store() -> OrderStorePort:
    global _memory_store
    backend = getattr(settings, "ORDER_STORE_BACKEND", "django")
    if backend == "django":
        return DjangoOrderStore()
    if backend == "memory":
        with _lock:
            if _memory_store is None:
                logger.warning(
                    "ORDER_STORE_BACKEND=memory: orders are volatile, per-process and lost on restart"
                )
                _memory_store = InMemoryOrderStore()
            return _memory_store
    raise ValueError(f"Unknown ORDER_STORE_BACKEND {backend!r}")


def get_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        max_retries=getattr(settings, "ORDER_WRITE_RETRY_MAX", 5),
        backoff_base=getattr(settings, "ORDER_WRITE_BACKOFF_BASE", 0.02),
        max_sleep=getattr(settings, "ORDER_WRITE_MAX_SLEEP", 0.25),
    )


def get_order_service() -> OrderService:
    """Return a configured OrderService instance."""
    return OrderService(
        store=get_order_store(),
        broadcaster=get_broadcaster(),
        retry=get_retry_policy(),
        default_winery_id=getattr(settings, "DEFAULT_WINERY_ID", 1),
    )


def reset_providers() -> None:
    global _hub, _memory_store, _broadcaster, _relay
    with _lock:
        if _relay is not None:
            _relay.stop()
        if _broadcaster is not None:
            _broadcaster.close()
        _hub = _memory_store = _broadcaster = _relay = None
