import pytest
from django.db import OperationalError


@pytest.mark.django_db
def test_health_ok(client):
    r = client.get("/health/")
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["components"]["store"] == {"backend": "django", "durable": True, "ok": True}
    assert body["components"]["broadcast"]["backend"] == "local"


@pytest.mark.django_db
def test_health_reports_degraded_memory_store(client, settings):
    settings.ORDER_STORE_BACKEND = "memory"
    body = client.get("/health/").json()
    assert body["ok"] is True
    assert body["components"]["store"]["durable"] is False


@pytest.mark.django_db
def test_health_database_down(client, monkeypatch):
    from apps.monitoring import api

    class BrokenConnection:
        def cursor(self):
            raise OperationalError("connection refused")

    monkeypatch.setattr(api, "connection", BrokenConnection())
    r = client.get("/health/")
    assert r.status_code == 503
    assert r.json()["components"]["store"]["ok"] is False
