import httpx
import pytest
from fastapi.testclient import TestClient

from ebook_lending import api
from ebook_lending.config import settings
from ebook_lending.services.http_client import GatewayHTTPClient
from ebook_lending.services.payment_gateway import PaymentGatewayAdapter, PaymentService

HEADERS = {"X-API-Key": settings.api_key}


@pytest.fixture
def gateway_status():
    # mutable so a test can switch the gateway's answer
    return {"Status": True}


@pytest.fixture
def client(db, manager, gateway_status, monkeypatch):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"paymentSuccess": gateway_status}))
    adapter = PaymentGatewayAdapter(client=GatewayHTTPClient(transport=transport), url="http://gateway.test/")
    monkeypatch.setattr(api, "loans", manager)
    monkeypatch.setattr(api, "payments", PaymentService(adapter=adapter))
    return TestClient(api.app)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_rent_and_return(client, make_user, make_ebook):
    user, book = make_user(), make_ebook(quantity=1)

    response = client.post("/api/loan/rent", params={"userId": user.id, "ebookId": book.id})
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["code"] == 200
    assert body["data"]["state"] == "ACTIVE"
    loan_id = body["data"]["id"]

    response = client.get(f"/api/loan/{loan_id}")
    assert response.json()["data"]["ebook_id"] == book.id

    response = client.patch(f"/api/loan/{loan_id}")
    assert response.status_code == 200
    assert response.json()["data"]["state"] == "ENDED"

    response = client.patch(f"/api/loan/{loan_id}")
    assert response.status_code == 409
    assert response.json() == {"status": "fail", "code": 409, "message": "Loan has already ended.", "data": None}


def test_rent_out_of_stock(client, make_user, make_ebook):
    book = make_ebook(quantity=1)
    client.post("/api/loan/rent", params={"userId": make_user().id, "ebookId": book.id})

    response = client.post("/api/loan/rent", params={"userId": make_user().id, "ebookId": book.id})
    assert response.status_code == 409
    assert response.json()["status"] == "fail"
    assert response.json()["message"] == "EBook is out of stock."


def test_rent_not_logged_in(client, make_user, make_ebook):
    response = client.post("/api/loan/rent",
                           params={"userId": make_user(logged_in=False).id, "ebookId": make_ebook(quantity=1).id})
    assert response.status_code == 401


def test_rent_with_malformed_ids(client):
    response = client.post("/api/loan/rent", params={"userId": "not-a-uuid", "ebookId": "nope"})
    assert response.status_code == 405
    assert response.json()["message"] == "Bad Request."


def test_unknown_loan_is_error_envelope(client):
    response = client.get("/api/loan/does-not-exist")
    assert response.status_code == 404
    assert response.json()["status"] == "error"
    assert response.json()["data"] is None


def test_list_loans(client, make_user, make_ebook):
    user = make_user()
    client.post("/api/loan/rent", params={"userId": user.id, "ebookId": make_ebook(quantity=1).id})

    response = client.get("/api/loan/list", params={"userId": user.id})
    assert response.status_code == 200
    assert len(response.json()["data"]) == 1


def test_list_loans_unexpected_failure(client, make_user, monkeypatch):
    def broken(user_id):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(api.loans, "list_loans_for_user", broken)
    response = client.get("/api/loan/list", params={"userId": make_user().id})
    assert response.status_code == 500
    assert response.json()["message"] == "Error retrieving loans. Please try again."


def test_payment_approved(client, make_user):
    response = client.post("/api/payments", json={"userId": make_user().id, "amount": 10})
    assert response.status_code == 201
    assert response.json()["data"]["amount"] == 10
    assert len(client.get("/api/payments").json()["data"]) == 1


def test_payment_declined(client, make_user, gateway_status):
    gateway_status["Status"] = False
    response = client.post("/api/payments", json={"userId": make_user().id, "amount": 10})
    assert response.status_code == 502
    assert response.json()["status"] == "fail"
    assert client.get("/api/payments").json()["data"] == []


def test_payment_rejects_bad_input(client):
    response = client.post("/api/payments", json={"userId": "nope", "amount": 10})
    assert response.status_code == 400
    assert response.json()["status"] == "error"


def test_add_ebook_requires_api_key(client):
    payload = {"title": "Dune", "author": "Frank Herbert", "quantity_available": 3}
    response = client.post("/api/ebooks", json=payload, headers={"X-API-Key": "invalid-key"})
    assert response.status_code == 403

    response = client.post("/api/ebooks", json=payload, headers=HEADERS)
    assert response.status_code == 201
    ebook_id = response.json()["data"]["id"]

    response = client.get(f"/api/ebooks/{ebook_id}")
    assert response.json()["data"]["quantity_available"] == 3

    response = client.post("/api/ebooks", json=payload, headers=HEADERS)
    assert response.status_code == 400


def test_update_and_delete_ebook(client, make_ebook):
    book = make_ebook(quantity=2)
    response = client.put(f"/api/ebooks/{book.id}", json={"price": 4.5}, headers=HEADERS)
    assert response.json()["data"]["price"] == 4.5

    assert client.delete(f"/api/ebooks/{book.id}", headers=HEADERS).status_code == 200
    assert client.get(f"/api/ebooks/{book.id}").status_code == 404


def test_search_and_recommend(client, make_ebook):
    make_ebook(title="Dune", author="Frank Herbert", category="SciFi")
    make_ebook(title="Emma", author="Jane Austen", category="Romance")

    response = client.get("/api/ebooks", params={"category": "SciFi"})
    assert [b["title"] for b in response.json()["data"]] == ["Dune"]

    response = client.get("/api/ebooks/recommended", params={"count": 1})
    assert len(response.json()["data"]) == 1


def test_register_login_logout(client):
    response = client.post("/api/users/register", json={"email": "a@example.com", "password": "correct-horse"})
    assert response.status_code == 201
    user_id = response.json()["data"]["id"]
    assert "password_hash" not in response.json()["data"]

    response = client.post("/api/users/login", json={"email": "a@example.com", "password": "wrong-password"})
    assert response.status_code == 401

    response = client.post("/api/users/login", json={"email": "a@example.com", "password": "correct-horse"})
    assert response.json()["data"]["logged_in"] is True

    response = client.post(f"/api/users/{user_id}/logout")
    assert response.json()["data"]["logged_in"] is False


def test_promote_requires_api_key(client, make_user):
    user = make_user()
    assert client.post(f"/api/users/{user.id}/promote", headers={"X-API-Key": "nope"}).status_code == 403
    response = client.post(f"/api/users/{user.id}/promote", headers=HEADERS)
    assert response.json()["data"]["admin"] is True


def test_top_up_balance(client, make_user):
    user = make_user()
    response = client.post("/api/users/topup", params={"userId": user.id, "amount": 12.5})
    assert response.status_code == 200
    assert response.json()["message"] == "Successfully added 12.50 GBP"
    assert response.json()["data"]["balance"] == 12.5

    response = client.post("/api/users/topup", params={"userId": make_user(logged_in=False).id, "amount": 5})
    assert response.status_code == 401
    assert response.json()["status"] == "fail"

    response = client.post("/api/users/topup", params={"userId": "00000000-0000-4000-8000-000000000000", "amount": 5})
    assert response.status_code == 404

    response = client.post("/api/users/topup", params={"userId": user.id, "amount": -3})
    assert response.status_code == 400
    assert client.get(f"/api/users/{user.id}").json()["data"]["balance"] == 12.5


def test_reviews_and_wishlist(client, make_user, make_ebook):
    user, book = make_user(), make_ebook(quantity=1)
    loan_id = client.post("/api/loan/rent", params={"userId": user.id, "ebookId": book.id}).json()["data"]["id"]

    response = client.post("/api/reviews", json={"loanId": loan_id, "rating": 4})
    assert response.status_code == 400
    assert response.json()["status"] == "fail"

    client.patch(f"/api/loan/{loan_id}")
    response = client.post("/api/reviews", json={"loanId": loan_id, "rating": 4, "comment": "Good"})
    assert response.status_code == 201
    assert len(client.get(f"/api/reviews/ebook/{book.id}").json()["data"]) == 1

    response = client.post("/api/reviews", json={"loanId": loan_id, "rating": 9})
    assert response.status_code == 400

    response = client.post("/api/wishlist", json={"userId": user.id, "ebookId": book.id})
    assert response.status_code == 201
    assert len(client.get(f"/api/wishlist/{user.id}").json()["data"]) == 1
    response = client.delete("/api/wishlist", params={"userId": user.id, "ebookId": book.id})
    assert response.json()["data"] == {"removed": True}


def test_send_reminders(client, sent_emails, make_user, make_ebook):
    user = make_user()
    client.post("/api/loan/rent", params={"userId": user.id, "ebookId": make_ebook(quantity=1, max_loan_duration=1).id})
    sent_emails.clear()

    response = client.post("/api/emails/reminders", params={"withinDays": 2}, headers=HEADERS)
    assert response.json()["data"] == {"sent": 1}
    assert sent_emails[0]["Subject"] == "Your loan ends soon"
