"""Idempotency records for order submissions.

Guest tablets retry a submission when the network drops the response. A
retried ``POST /api/orders/`` carrying the same ``Idempotency-Key`` must
get the original answer back (typically the 201 with the created order)
instead of a 409 for the duplicate group name. Records store the request
hash so a key reused for a different payload is detected.

Staff toggles are de-duplicated separately, inside the order write itself
(see ``ToggleReceiptModel``), because their outcome depends on state.
"""

from typing import Optional, Tuple

from django.db import IntegrityError, transaction

from .domain import canonical_hash
from .models import IdempotencyKey


class IdempotencyConflict(Exception):
    """Key already used with a different payload, or first request still running."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(code)


@transaction.atomic
def begin(key: str, payload: dict) -> Tuple[bool, IdempotencyKey]:
    """Get-or-create the idempotency record for ``key``.

    Returns:
        ``(replay, rec)``: ``replay`` is True when a finished response is
        stored and should be returned as-is; False when the caller owns
        the record and must ``finalize`` it.

    Raises:
        IdempotencyConflict: ``IDEMPOTENCY_CONFLICT`` when the payload hash
            differs, ``IDEMPOTENCY_IN_PROGRESS`` when the first request has
            not finished yet.
    """
    h = canonical_hash(payload)
    try:
        # savepoint: an IntegrityError only rolls back the insert
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(key=key, request_hash=h, response_status=0, response_body={})
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key)
        if rec.request_hash != h:
            raise IdempotencyConflict("IDEMPOTENCY_CONFLICT")
        if rec.response_status == 0:
            raise IdempotencyConflict("IDEMPOTENCY_IN_PROGRESS")
        return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id: Optional[str] = None) -> None:
    """Store the final response so retries can short-circuit."""
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order"])


def abandon(rec: IdempotencyKey) -> None:
    """Forget an unfinished record so the client can retry after a store outage."""
    IdempotencyKey.objects.filter(pk=rec.pk, response_status=0).delete()
