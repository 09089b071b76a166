"""Request correlation across the API and the JSON logs.

The gateway middleware must echo the caller's ``X-Request-ID`` (or mint
one) and every log record written while handling the request must carry
it.
"""

import logging
from uuid import UUID

import pytest

from gateway.logging_filters import RequestIdFilter
from gateway.middleware import REQUEST_ID_CTX

CREATE_URL = "/api/orders/"
PAYLOAD = {"groupName": "Table 5", "guestNames": {"g1": "Alice"}, "selections": {"g1": [{"wine": "Hélium"}]}}


@pytest.mark.django_db
def test_request_id_is_echoed(client):
    r = client.post(CREATE_URL, data=PAYLOAD, content_type="application/json", HTTP_X_REQUEST_ID="tablet-7-0042")
    assert r.status_code == 201
    assert r.headers["X-Request-ID"] == "tablet-7-0042"


@pytest.mark.django_db
def test_request_id_is_generated(client):
    r = client.get(CREATE_URL)
    UUID(r.headers["X-Request-ID"])
    assert REQUEST_ID_CTX.get() == "-"


@pytest.mark.django_db
def test_service_logs_carry_request_id(client, caplog):
    caplog.handler.addFilter(RequestIdFilter())
    with caplog.at_level(logging.INFO, logger="apps.orders"):
        client.post(CREATE_URL, data=PAYLOAD, content_type="application/json", HTTP_X_REQUEST_ID="rid-1")
    created = [rec for rec in caplog.records if rec.getMessage() == "order created"]
    assert created and created[0].request_id == "rid-1"
    assert created[0].group_slug == "table_5"


def test_filter_defaults_and_keeps_existing_id():
    f = RequestIdFilter()
    bare = logging.LogRecord("relay", logging.INFO, __file__, 1, "tick", None, None)
    assert f.filter(bare) is True
    assert bare.request_id == "-"
    stamped = logging.LogRecord("relay", logging.INFO, __file__, 1, "tick", None, None)
    stamped.request_id = "rid-9"
    assert f.filter(stamped) is True
    assert stamped.request_id == "rid-9"
