import pytest

from apps.orders import providers
from apps.orders.adapters import InMemoryOrderStore
from apps.orders.repository import DjangoOrderStore


def test_durable_store_by_default():
    service = providers.get_order_service()
    assert isinstance(service.store, DjangoOrderStore)
    assert service.store.durable is True
    assert service.broadcaster is providers.get_broadcast_hub()


def test_memory_backend_is_explicit_and_logged(settings, caplog):
    settings.ORDER_STORE_BACKEND = "memory"
    store = providers.get_order_store()
    assert isinstance(store, InMemoryOrderStore)
    assert store.durable is False
    assert providers.get_order_store() is store
    assert any("volatile" in rec.getMessage() for rec in caplog.records)


def test_unknown_backends_fail_loudly(settings):
    settings.ORDER_STORE_BACKEND = "redis"
    with pytest.raises(ValueError):
        providers.get_order_store()
    settings.BROADCAST_BACKEND = "kafka"
    with pytest.raises(ValueError):
        providers.get_broadcaster()


def test_retry_policy_from_settings(settings):
    settings.ORDER_WRITE_RETRY_MAX = 7
    settings.ORDER_WRITE_BACKOFF_BASE = 0.1
    settings.ORDER_WRITE_MAX_SLEEP = 0.3
    policy = providers.get_retry_policy()
    assert policy.max_retries == 7
    assert [policy.delay(n) for n in (1, 2, 3)] == [0.1, 0.2, 0.3]


def test_reset_providers_drops_singletons():
    hub = providers.get_broadcast_hub()
    providers.reset_providers()
    assert providers.get_broadcast_hub() is not hub
