import json
from datetime import date, time

import httpx
import pytest

from ebook_lending.errors import NotFound, PaymentGatewayFailure, ValidationError
from ebook_lending.models import Payment
from ebook_lending.services.http_client import GatewayHTTPClient
from ebook_lending.services.payment_gateway import PaymentGatewayAdapter, PaymentService

GATEWAY_URL = "http://gateway.test/HorsePay.php"


def make_adapter(handler):
    client = GatewayHTTPClient(timeout=2, transport=httpx.MockTransport(handler))
    return PaymentGatewayAdapter(client=client, url=GATEWAY_URL)


def respond_with(**kwargs):
    return lambda request: httpx.Response(200, **kwargs)


@pytest.fixture
def payment():
    return Payment(user_id="user-1", amount=12.5, payment_date=date(2026, 10, 19), payment_time=time(9, 30, 5))


def test_payload_matches_gateway_format(payment):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"paymentSuccess": {"Status": True}})

    make_adapter(handler).check(payment)

    assert len(seen) == 1
    assert seen[0].method == "POST"
    assert str(seen[0].url) == GATEWAY_URL
    assert json.loads(seen[0].content) == {
        "storeID": "Team13",
        "customerID": "user-1",
        "date": "2026-10-19",
        "time": "09:30:05",
        "timeZone": "BST",
        "transactionAmount": 12.5,
        "currencyCode": "GBP",
        "forcePaymentSatusReturnType": True,
    }


def test_status_true_is_approved(payment):
    make_adapter(respond_with(json={"paymentSuccess": {"Status": True, "reason": None}})).check(payment)


def test_status_false_is_declined(payment):
    adapter = make_adapter(respond_with(json={"paymentSuccess": {"Status": False, "reason": "no funds"}}))
    with pytest.raises(PaymentGatewayFailure, match="declined"):
        adapter.check(payment)


@pytest.mark.parametrize("status", ["true", 1, None])
def test_only_literal_true_counts(payment, status):
    adapter = make_adapter(respond_with(json={"paymentSuccess": {"Status": status}}))
    with pytest.raises(PaymentGatewayFailure):
        adapter.check(payment)


@pytest.mark.parametrize("content", [b"", b"null", b"   "])
def test_empty_or_null_body(payment, content):
    adapter = make_adapter(respond_with(content=content))
    with pytest.raises(PaymentGatewayFailure, match="returned null"):
        adapter.check(payment)


def test_missing_status_key(payment):
    adapter = make_adapter(respond_with(json={"paymetSuccess": {"Status": True}}))
    with pytest.raises(PaymentGatewayFailure, match="did not include a payment status"):
        adapter.check(payment)


def test_malformed_json(payment):
    adapter = make_adapter(respond_with(content=b"<html>oops</html>"))
    with pytest.raises(PaymentGatewayFailure, match="malformed"):
        adapter.check(payment)


def test_http_error_status(payment):
    adapter = make_adapter(lambda request: httpx.Response(500, text="internal error"))
    with pytest.raises(PaymentGatewayFailure, match="HTTP 500"):
        adapter.check(payment)


def test_request_timeout_keeps_connect_bound(payment):
    seen = []

    def handler(request):
        seen.append(request.extensions["timeout"])
        return httpx.Response(200, json={"paymentSuccess": {"Status": True}})

    client = GatewayHTTPClient(transport=httpx.MockTransport(handler))
    PaymentGatewayAdapter(client=client, url=GATEWAY_URL, timeout=8).check(payment)

    assert seen[0]["connect"] == 5.0
    assert seen[0]["read"] == 8.0


def test_redirect_is_not_followed(payment):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(302, headers={"Location": "http://gateway.test/moved.php"})

    with pytest.raises(PaymentGatewayFailure, match="HTTP 302"):
        make_adapter(handler).check(payment)
    assert [r.method for r in calls] == ["POST"]


def test_timeout_is_not_retried(payment):
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(PaymentGatewayFailure, match="timed out"):
        make_adapter(handler).check(payment)
    assert len(calls) == 1


def test_unreachable_gateway(payment):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(PaymentGatewayFailure, match="unreachable"):
        make_adapter(handler).check(payment)


def test_failure_maps_to_bad_gateway(payment):
    adapter = make_adapter(respond_with(json={"paymentSuccess": {"Status": False}}))
    with pytest.raises(PaymentGatewayFailure) as excinfo:
        adapter.check(payment)
    assert excinfo.value.status_code == 502


# --- PaymentService ---
def test_approved_payment_is_stored(db, make_user):
    user = make_user()
    service = PaymentService(adapter=make_adapter(respond_with(json={"paymentSuccess": {"Status": True}})))

    outcome = service.create_payment(user.id, 9.99)
    assert outcome.ok
    assert outcome.value.user_id == user.id
    stored = service.get_payment(outcome.value.id)
    assert stored is not None
    assert stored.amount == 9.99
    assert [p.id for p in service.list_payments()] == [outcome.value.id]


def test_declined_payment_is_not_stored(db, make_user):
    user = make_user()
    service = PaymentService(adapter=make_adapter(respond_with(json={"paymentSuccess": {"Status": False}})))

    outcome = service.create_payment(user.id, 9.99)
    assert isinstance(outcome.error, PaymentGatewayFailure)
    assert service.list_payments() == []


def test_null_response_is_not_stored(db, make_user):
    user = make_user()
    service = PaymentService(adapter=make_adapter(respond_with(content=b"null")))

    outcome = service.create_payment(user.id, 5)
    assert not outcome.ok
    assert "returned null" in outcome.error.message
    assert service.list_payments() == []


def test_unknown_user_skips_gateway(db):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"paymentSuccess": {"Status": True}})

    outcome = PaymentService(adapter=make_adapter(handler)).create_payment("ghost", 10)
    assert isinstance(outcome.error, NotFound)
    assert calls == []


@pytest.mark.parametrize("amount", [-1, float("nan"), float("inf")])
def test_invalid_amount(db, make_user, amount):
    service = PaymentService(adapter=make_adapter(respond_with(json={"paymentSuccess": {"Status": True}})))
    outcome = service.create_payment(make_user().id, amount)
    assert isinstance(outcome.error, ValidationError)
