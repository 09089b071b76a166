"""HTTP views for the orders app.

Views are kept small: they validate requests with Pydantic, delegate to the
``OrderService`` obtained from ``providers.get_order_service()`` and map
domain errors to HTTP responses. Every order endpoint addresses the order
by any identifier the resolver understands (id, group slug or raw group
name).

Error mapping (body ``{"detail": CODE}``):
    NOT_FOUND 404, INVALID_TARGET 400, INVALID_TRANSITION 409,
    CONFLICT 409, STORE_UNAVAILABLE 503, validation errors 400.
"""

import json
import logging

from django.conf import settings
from django.core.paginator import Paginator
from django.http import StreamingHttpResponse
from django.views.decorators.http import require_GET
from pydantic import ValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from . import idempotency, providers
from .domain import (
    Conflict,
    InvalidTarget,
    InvalidTransition,
    NotFound,
    OrderError,
    OrderStatus,
    StoreUnavailable,
)
from .schemas import (
    CreateOrderDTO,
    OrderEventDTO,
    SetOrderStatusDTO,
    SummaryDTO,
    UpdateSelectionDTO,
    order_to_json,
)
from .summary import summarize

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    NotFound: status.HTTP_404_NOT_FOUND,
    InvalidTarget: status.HTTP_400_BAD_REQUEST,
    InvalidTransition: status.HTTP_409_CONFLICT,
    Conflict: status.HTTP_409_CONFLICT,
    StoreUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def error_response(exc: OrderError) -> Response:
    """Build the HTTP response for a domain error."""
    code = ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    body = {"detail": str(exc)}
    if exc.detail:
        body["reason"] = exc.detail
    if isinstance(exc, NotFound):
        body["identifier"] = exc.identifier
    return Response(body, status=code)


def validation_response(e: ValidationError) -> Response:
    errors = [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]
    return Response({"detail": "VALIDATION_ERROR", "errors": errors}, status=status.HTTP_400_BAD_REQUEST)


class ScopedThrottleMixin:
    throttle_classes = [ScopedRateThrottle]
    read_scope = "orders_read"
    write_scope = "orders_write"

    def get_throttles(self):
        self.throttle_scope = self.read_scope if self.request.method == "GET" else self.write_scope
        return [throttle() for throttle in self.throttle_classes]


class OrdersCollectionView(ScopedThrottleMixin, APIView):
    """List orders for the host dashboard and create orders from the guest form.

    ``POST`` supports the ``Idempotency-Key`` header: the first request is
    processed and its response stored; a retry with the same key and
    identical payload gets the stored response back (header
    ``Idempotent-Replay: true``). The same key with a different payload
    returns 409.
    """

    write_scope = "orders_create"

    def get(self, request):
        """Paginated orders, newest first.

        Query params: ``wineryId``, ``status`` (``active`` by default,
        ``all`` for every state), ``page``, ``page_size``.
        """
        raw_status = request.GET.get("status", OrderStatus.ACTIVE.value)
        try:
            wanted = None if raw_status == "all" else OrderStatus(raw_status)
            winery = request.GET.get("wineryId") or request.GET.get("winery_id")
            winery_id = int(winery) if winery else None
            page = int(request.GET.get("page", 1))
            page_size = max(1, min(int(request.GET.get("page_size", 20)), 100))
        except ValueError:
            return Response({"detail": "INVALID_QUERY"}, status=status.HTTP_400_BAD_REQUEST)

        try:
            orders = providers.get_order_service().list_orders(winery_id=winery_id, status=wanted)
        except OrderError as e:
            return error_response(e)

        p = Paginator(orders, page_size)
        page_obj = p.get_page(page)
        return Response(
            {
                "count": p.count,
                "page": page_obj.number,
                "page_size": page_size,
                "results": [order_to_json(o, summarize(o)) for o in page_obj.object_list],
            },
            status=200,
        )

    def post(self, request):
        """Create a new order.

        Returns:
            Response: 201 with the order; 200 (replay) with the stored body;
            400 on validation errors; 409 ``CONFLICT`` when an active group
            already uses the name; 409 ``IDEMPOTENCY_CONFLICT``; 503
            ``STORE_UNAVAILABLE``.
        """
        idem_key = request.headers.get("Idempotency-Key")

        # 1) Pydantic validation
        try:
            dto = CreateOrderDTO.model_validate(request.data)
        except ValidationError as e:
            return validation_response(e)

        # 2) Idempotency get-or-create
        rec = None
        if idem_key:
            try:
                replay, rec = idempotency.begin(idem_key, dto.model_dump(mode="json"))
            except idempotency.IdempotencyConflict as e:
                return Response({"detail": e.code}, status=status.HTTP_409_CONFLICT)
            if replay:
                resp = Response(rec.response_body, status=rec.response_status)
                resp["Idempotent-Replay"] = "true"
                return resp

        # 3) Domain
        service = providers.get_order_service()
        try:
            order = service.create_order(
                group_name=dto.group_name,
                guest_names=dto.guest_names,
                selections={g: [s.to_domain() for s in items] for g, items in dto.selections.items()},
                winery_id=dto.winery_id,
            )
        except StoreUnavailable as e:
            if rec:
                idempotency.abandon(rec)
            return error_response(e)
        except OrderError as e:
            resp = error_response(e)
            if rec:
                idempotency.finalize(rec, resp.status_code, resp.data)
            return resp

        # 4) Response
        body = order_to_json(order, summarize(order))
        if rec:
            idempotency.finalize(rec, status.HTTP_201_CREATED, body, order_id=order.id)
        return Response(body, status=status.HTTP_201_CREATED)


class OrderDetailView(ScopedThrottleMixin, APIView):
    """Resolve an order by id, slug or group name; admin delete."""

    def get(self, request, identifier: str):
        try:
            order = providers.get_order_service().resolve(identifier)
        except OrderError as e:
            return error_response(e)
        return Response(order_to_json(order, summarize(order)), status=200)

    def delete(self, request, identifier: str):
        if not getattr(settings, "ALLOW_ORDER_DELETE", False):
            return Response({"detail": "DELETE_NOT_ALLOWED"}, status=status.HTTP_403_FORBIDDEN)
        try:
            order = providers.get_order_service().delete_order(identifier)
        except OrderError as e:
            return error_response(e)
        return Response({"id": order.id, "deleted": True}, status=200)


class OrderSummaryView(ScopedThrottleMixin, APIView):
    def get(self, request, identifier: str):
        try:
            summary = providers.get_order_service().summarize(identifier)
        except OrderError as e:
            return error_response(e)
        return Response(SummaryDTO.from_summary(summary).model_dump(by_alias=True), status=200)


class SelectionStatusView(ScopedThrottleMixin, APIView):
    """Set or toggle one guest's selection.

    Body: ``{"guestKey": "g1", "index": 0, "status": "servi"}``. Without
    ``status`` the selection is toggled. Toggle requests that may be
    retried should carry an ``Idempotency-Key`` header so a retry does not
    flip the status back.
    """

    write_scope = "orders_toggle"

    def put(self, request, identifier: str):
        try:
            dto = UpdateSelectionDTO.model_validate(request.data)
        except ValidationError as e:
            return validation_response(e)

        try:
            order = providers.get_order_service().update_selection_status(
                identifier,
                dto.guest_key,
                dto.index,
                status=dto.status,
                toggle_key=request.headers.get("Idempotency-Key"),
            )
        except OrderError as e:
            return error_response(e)

        body = order_to_json(order, summarize(order))
        body["newStatus"] = order.selections[dto.guest_key][dto.index].status.value
        return Response(body, status=200)


class OrderStatusView(ScopedThrottleMixin, APIView):
    """Complete or cancel an active order."""

    def put(self, request, identifier: str):
        try:
            dto = SetOrderStatusDTO.model_validate(request.data)
        except ValidationError as e:
            return validation_response(e)
        try:
            order = providers.get_order_service().set_order_status(identifier, dto.status)
        except OrderError as e:
            return error_response(e)
        return Response(order_to_json(order, summarize(order)), status=200)


def format_sse(event) -> str:
    payload = OrderEventDTO.from_event(event).to_json()
    return f"id: {event.order.id}:{event.order.version}\nevent: {event.type.value}\ndata: {json.dumps(payload['order'])}\n\n"


def event_stream(subscription, heartbeat: float):
    """Server-Sent Events generator over a hub subscription.

    Yields a keep-alive comment whenever no event arrives within
    ``heartbeat`` seconds and ends when the subscription is closed.
    The subscription is released when the client disconnects.
    """
    try:
        yield "retry: 3000\n\n"
        while True:
            event = subscription.get(timeout=heartbeat)
            if event is None:
                if subscription.closed:
                    break
                yield ": keep-alive\n\n"
                continue
            yield format_sse(event)
    finally:
        subscription.close()


@require_GET
def winery_events(request, winery_id: int):
    """Subscribe to the order events of one winery as an SSE stream."""
    subscription = providers.get_broadcast_hub().subscribe(winery_id)
    heartbeat = getattr(settings, "EVENTS_HEARTBEAT_SECS", 15)
    response = StreamingHttpResponse(event_stream(subscription, heartbeat), content_type="text/event-stream")
    response["Cache-Control"] = "no-cache"
    response["X-Accel-Buffering"] = "no"
    return response
