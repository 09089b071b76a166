"""HTTP views for wineries: catalog reads and the per-winery order board.

Catalog endpoints pass the catalog data through untouched. When the remote
catalog is unreachable (transport errors after retries, or its circuit is
open) they answer 503 ``CATALOG_UNAVAILABLE``.
"""

import logging
from dataclasses import asdict

import httpx
from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from apps.orders import providers as order_providers
from apps.orders.domain import OrderError
from apps.orders.schemas import order_to_json
from apps.orders.summary import summarize
from apps.orders.views import error_response

from . import providers
from .http_adapters import CircuitOpen

logger = logging.getLogger(__name__)


def _catalog_unavailable(e: Exception) -> Response:
    logger.warning("catalog unavailable", extra={"error": str(e)})
    return Response({"detail": "CATALOG_UNAVAILABLE"}, status=status.HTTP_503_SERVICE_UNAVAILABLE)


class WineryCollectionView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "catalog"

    def get(self, request):
        try:
            wineries = providers.get_catalog().list_wineries()
        except (httpx.HTTPError, CircuitOpen) as e:
            return _catalog_unavailable(e)
        return Response([asdict(w) for w in wineries], status=200)


class WineryWinesView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "catalog"

    def get(self, request, winery_id: int):
        try:
            wines = providers.get_catalog().list_wines(winery_id)
        except (httpx.HTTPError, CircuitOpen) as e:
            return _catalog_unavailable(e)
        if wines is None:
            return Response({"detail": "NOT_FOUND"}, status=status.HTTP_404_NOT_FOUND)
        return Response([asdict(w) for w in wines], status=200)


class WineryGroupsView(APIView):
    """Active orders of one winery with their summaries, newest first."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_read"

    def get(self, request, winery_id: int):
        try:
            orders = order_providers.get_order_service().list_orders(winery_id=winery_id)
        except OrderError as e:
            return error_response(e)
        return Response([order_to_json(o, summarize(o)) for o in orders], status=200)
