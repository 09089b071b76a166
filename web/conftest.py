import pytest
from datetime import datetime, timedelta, timezone


@pytest.fixture(autouse=True)
def default_backends(settings):
    """Durable store, local hub and static catalog for every test; fresh singletons."""
    from django.core.cache import cache
    from apps.orders import providers

    settings.ORDER_STORE_BACKEND = "django"
    settings.BROADCAST_BACKEND = "local"
    settings.USE_HTTP_CATALOG = False
    settings.ORDER_WRITE_BACKOFF_BASE = 0.0
    providers.reset_providers()
    cache.clear()  # DRF throttling counters
    yield
    providers.reset_providers()


class StepClock:
    """Deterministic clock: each call is one second after the previous one."""

    def __init__(self, start=datetime(2024, 6, 1, 17, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        self.now = self.now + timedelta(seconds=1)
        return self.now


@pytest.fixture
def hub():
    from apps.orders.fanout import BroadcastHub
    return BroadcastHub(queue_size=10)


@pytest.fixture
def memory_store():
    from apps.orders.adapters import InMemoryOrderStore
    return InMemoryOrderStore()


@pytest.fixture
def service(memory_store, hub):
    """OrderService over the volatile store, publishing to ``hub``, no backoff sleeps."""
    from apps.orders.domain import RetryPolicy
    from apps.orders.service import OrderService

    return OrderService(
        memory_store,
        hub,
        retry=RetryPolicy(max_retries=5, backoff_base=0.0),
        clock=StepClock(),
        sleep=lambda s: None,
    )
