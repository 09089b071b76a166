"""Gateway middleware: request correlation and API payload size guard.

``RequestIdMiddleware`` gives every request an id, reusing the client's
``X-Request-ID`` when it sends one (staff terminals do, so a toggle can be
followed from tablet to log line). The id is kept in ``REQUEST_ID_CTX`` so
log filters and outbound HTTP clients can read it without the request
object, and echoed back on the response.

``ApiSizeLimitMiddleware`` rejects ``/api/`` bodies larger than
``API_MAX_BYTES`` with 413 before any parsing happens.
"""

import contextvars
import os
import uuid

from django.conf import settings
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")
MAX_API_BYTES = int(os.getenv("API_MAX_BYTES", str(256 * 1024)))


class RequestIdMiddleware(MiddlewareMixin):
    """Assign a per-request identifier and echo it on the response.

    Attributes:
        HEADER (str): Incoming header, in ``request.META`` casing, that may
            carry a client-provided id.
        RESPONSE_HEADER (str): Header set on every response.
    """

    HEADER = "HTTP_X_REQUEST_ID"       # as found in request.META
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        """Attach the request id to ``request`` and to ``REQUEST_ID_CTX``.

        The client's id is reused when present, otherwise a UUIDv4 is
        generated. The context token is kept on the request so the value
        can be restored once the response is out.

        Args:
            request: Django HttpRequest instance.
        """
        rid = request.META.get(self.HEADER) or str(uuid.uuid4())
        request.request_id = rid
        request._request_id_token = REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        """Set ``X-Request-ID`` on the response and reset the context var.

        Args:
            request: Django HttpRequest that was processed.
            response: Django HttpResponse to modify.

        Returns:
            The same response with the request id header set.
        """
        response[self.RESPONSE_HEADER] = getattr(request, "request_id", REQUEST_ID_CTX.get())
        token = getattr(request, "_request_id_token", None)
        if token is not None:
            REQUEST_ID_CTX.reset(token)
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    """Reject oversized ``/api/`` request bodies before they are parsed."""

    def process_request(self, request):
        """Short-circuit with 413 when ``Content-Length`` exceeds the limit.

        The limit is ``settings.API_MAX_BYTES`` when set, else the
        ``API_MAX_BYTES`` environment default.

        Args:
            request: Django HttpRequest instance.

        Returns:
            JsonResponse with ``PAYLOAD_TOO_LARGE`` and status 413, or None
            to let the request through.
        """
        if not request.path.startswith("/api/"):
            return None
        clen = request.META.get("CONTENT_LENGTH")
        limit = getattr(settings, "API_MAX_BYTES", MAX_API_BYTES)
        if clen and clen.isdigit() and int(clen) > limit:
            return JsonResponse({"detail": "PAYLOAD_TOO_LARGE"}, status=413)
        return None
