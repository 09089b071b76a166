from django.conf import settings
from django.db import DatabaseError, connection
from django.http import JsonResponse

from apps.orders import providers


def health_view(_request):
    """Liveness of the order store and the broadcast hub.

    The database is only checked when it backs the order store; the
    volatile store reports ``durable: false`` so a degraded deployment is
    visible at a glance.
    """
    store_backend = getattr(settings, "ORDER_STORE_BACKEND", "django")
    store = {"backend": store_backend, "durable": store_backend == "django"}
    if store_backend == "django":
        try:
            with connection.cursor() as cur:
                cur.execute("SELECT 1;")
            store["ok"] = True
        except DatabaseError:
            store["ok"] = False
    else:
        store["ok"] = True

    broadcast = {
        "backend": getattr(settings, "BROADCAST_BACKEND", "local"),
        "subscribers": providers.get_broadcast_hub().subscriber_count(),
        "ok": True,
    }

    ok = store["ok"]
    return JsonResponse(
        {"ok": ok, "components": {"store": store, "broadcast": broadcast}},
        status=200 if ok else 503,
    )
