"""Idempotency records for order creation.

A client may send an ``Idempotency-Key`` header with a checkout. The first
request with a key stores a record with the request hash; once the view has
a response it finalizes the record so retries replay that response instead
of creating a second order. Reusing a key with a different payload is a
conflict.
"""

import hashlib
import json

from django.db import IntegrityError, transaction

from .domain import OrderError
from .models import IdempotencyKey


class IdempotencyConflict(OrderError):
    """A key was reused with a request whose hash differs from the stored one.

    Mapped to HTTP 409 by the order views. The offending key is carried in
    the error context.
    """

    code = "IDEMPOTENCY_CONFLICT"
    default_message = "Idempotency-Key was already used with a different request"


def request_hash(user_id: str, payload: dict) -> str:
    """Compute a stable SHA-256 hash of the caller and the request payload.

    The user id and payload are serialized together with sorted keys and
    compact separators so equal requests always produce the same digest.
    Values JSON cannot encode natively (UUIDs, datetimes) are stringified.
    Including the user id means two users can never share a stored response
    by picking the same key.

    Args:
        user_id: Identifier of the caller from ``X-User-Id``.
        payload: The JSON request body as received.

    Returns:
        str: Hex-encoded SHA-256 digest.
    """
    body = json.dumps({"user_id": user_id, "payload": payload}, sort_keys=True, separators=(",", ":"),
                      default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


def get_or_create_idempotent(key: str, user_id: str, payload: dict):
    """Get-or-create the idempotency record for ``key``.

    Behavior:
        - First request with a new key: create an empty record and return
          ``(False, rec)``; the caller runs the checkout and finalizes it.
        - Retry with the same key and the same request: lock the existing
          row and return ``(True, rec)`` so its stored response is replayed.
        - Same key with a different request: raise IdempotencyConflict.

    Must be called inside ``transaction.atomic()``. The create path runs in
    a nested savepoint so an IntegrityError only rolls back that block, and
    the existing-record path takes a row lock (``SELECT ... FOR UPDATE``) so
    a concurrent retry waits for the first request to finish.

    Args:
        key: Client-provided ``Idempotency-Key`` header value.
        user_id: Identifier of the caller.
        payload: Request body used to compute the request hash.

    Returns:
        tuple[bool, IdempotencyKey]: ``(existing, rec)`` where ``existing``
        is True when the key had been seen before with the same request.

    Raises:
        IdempotencyConflict: The key exists with a different request hash.
    """
    h = request_hash(user_id, payload)
    try:
        # savepoint: an IntegrityError only rolls back this block
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(key=key, request_hash=h)
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key)
        if rec.request_hash != h:
            raise IdempotencyConflict(key=key)
        return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id=None) -> None:
    """Persist the final response for an idempotent request.

    Stores the HTTP status code and response body and, for a created
    order, links the record to it. Later retries with the same key return
    this stored response without running the checkout again.

    Args:
        rec: The record returned by ``get_or_create_idempotent``.
        status_code: HTTP status code of the response.
        body: JSON-serializable response body.
        order_id: Optional id of the order created by the request.
    """
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order"])
