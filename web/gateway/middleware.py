"""Gateway middleware: request correlation and payload size limits.

``RequestIdMiddleware`` gives every request an identifier, reusing the
client's ``X-Request-ID`` when present and generating a UUIDv4 otherwise.
The id is stored on ``request.request_id`` and in ``REQUEST_ID_CTX`` so
logging filters and outbound HTTP adapters can read it without it being
passed around, and it is echoed back in the ``X-Request-ID`` response header.

``ApiSizeLimitMiddleware`` rejects ``/api/`` requests whose declared body is
larger than ``API_MAX_BYTES`` with 413 before any view runs.
"""

import contextvars
import os
import uuid

from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")
MAX_API_BYTES = int(os.getenv("API_MAX_BYTES", str(1 * 1024 * 1024)))


class RequestIdMiddleware(MiddlewareMixin):
    """Django middleware that sets and returns a per-request identifier.

    Attributes:
        HEADER (str): Name of the incoming header in ``request.META`` casing
            that may carry a client-provided id.
        RESPONSE_HEADER (str): Name of the header set on responses.
    """

    HEADER = "HTTP_X_REQUEST_ID"       # incoming header as found in request.META
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        """Attach a request id to the request and to ``REQUEST_ID_CTX``.

        A client-supplied id is stripped and truncated to 128 characters;
        when it is missing or blank a new UUIDv4 string is generated. The
        id is stored on ``request.request_id`` for views, and set in the
        ContextVar for code that has no request object (log filters, HTTP
        adapters). The ContextVar token is kept on the request so the
        value can be reset once the response is built.

        Args:
            request: Django HttpRequest instance.
        """
        rid = (request.META.get(self.HEADER) or "").strip()[:128] or str(uuid.uuid4())
        request.request_id = rid
        request._request_id_token = REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        """Echo the request id on the response and restore the ContextVar.

        The id attached to the request is preferred; the ContextVar value
        is the fallback for requests that never went through
        ``process_request`` (for example when an earlier middleware
        short-circuited).

        Args:
            request: Django HttpRequest.
            response: Django HttpResponse to modify.

        Returns:
            The same HttpResponse with the ``X-Request-ID`` header set.
        """
        response[self.RESPONSE_HEADER] = getattr(request, "request_id", REQUEST_ID_CTX.get())
        token = getattr(request, "_request_id_token", None)
        if token is not None:
            REQUEST_ID_CTX.reset(token)
            request._request_id_token = None
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    """Reject oversized API bodies before they reach a view."""

    def process_request(self, request):
        """Return 413 for ``/api/`` requests declaring too large a body.

        Only the ``Content-Length`` header is inspected; requests outside
        ``/api/`` and requests without a numeric length pass through.

        Args:
            request: Django HttpRequest instance.

        Returns:
            A ``PAYLOAD_TOO_LARGE`` JsonResponse with status 413 when the
            declared length exceeds ``MAX_API_BYTES``, otherwise None so
            processing continues.
        """
        if not request.path.startswith("/api/"):
            return None
        clen = request.META.get("CONTENT_LENGTH")
        if clen and clen.isdigit() and int(clen) > MAX_API_BYTES:
            return JsonResponse(
                {"detail": "PAYLOAD_TOO_LARGE", "message": f"Request body exceeds {MAX_API_BYTES} bytes"},
                status=413,
            )
        return None
