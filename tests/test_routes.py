"""
Tests for the checkout, order and usage endpoints.
"""
from datetime import datetime, timedelta

from fastapi import status

from core.channels import Channel
from models.order import Order
from services.admission import admit_order, attach_order
from services.quota_ledger import read_usage
from services.results import Rejected, RejectionReason

ACME = {"X-Store-Domain": "shop.acme.com"}


class TestHealth:

    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestCheckout:
    """Test the admission endpoint."""

    def test_admit_cod(self, client, acme):
        store, _, _ = acme
        response = client.post("/checkout/admit", json={"payment_method": "cod"}, headers=ACME)
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["admitted"] is True
        assert data["store_id"] == store.id
        assert data["channel"] == "whatsapp"
        assert data["used"] == 3
        assert data["cap"] == 3

    def test_quota_exhausted_is_429(self, client, acme):
        client.post("/checkout/admit", json={"payment_method": "cod"}, headers=ACME)
        response = client.post("/checkout/admit", json={"payment_method": "cod"}, headers=ACME)
        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        detail = response.json()["detail"]
        assert detail["reason"] == "quota_exhausted"
        assert detail["used"] == 3
        assert detail["cap"] == 3
        assert "3/3" in detail["message"]

    def test_disabled_channel_is_403_with_fallback(self, client, acme):
        response = client.post("/checkout/admit", json={"payment_method": "razorpay"}, headers=ACME)
        assert response.status_code == status.HTTP_403_FORBIDDEN
        detail = response.json()["detail"]
        assert detail["reason"] == "channel_disabled"
        assert detail["channel"] == "website"
        assert detail["fallback_channel"] == "whatsapp"

    def test_unknown_store_is_404(self, client):
        response = client.post("/checkout/admit", json={"payment_method": "cod"},
                               headers={"X-Store-Domain": "nowhere.example.com"})
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["detail"]["reason"] == "store_not_found"

    def test_expired_subscription_is_402(self, client, db, acme):
        _, _, subscription = acme
        subscription.current_period_end = datetime.utcnow() - timedelta(days=1)
        db.commit()

        response = client.post("/checkout/admit", json={"payment_method": "cod"}, headers=ACME)
        assert response.status_code == status.HTTP_402_PAYMENT_REQUIRED
        assert response.json()["detail"]["reason"] == "subscription_expired"

    def test_no_subscription_is_403(self, client, make_store):
        make_store(slug="bare", custom_domain="bare.example.com")
        response = client.post("/checkout/admit", json={"payment_method": "cod"},
                               headers={"X-Store-Domain": "bare.example.com"})
        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["detail"]["reason"] == "no_subscription"

    def test_transient_conflict_is_503_with_retry_after(self, client, acme, monkeypatch):
        monkeypatch.setattr(
            "routes.checkout.admit_order",
            lambda *args, **kwargs: Rejected(RejectionReason.TRANSIENT_CONFLICT, channel=Channel.WHATSAPP),
        )
        response = client.post("/checkout/admit", json={"payment_method": "cod"}, headers=ACME)
        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.headers["Retry-After"] == "1"

    def test_replay_and_lookup(self, client, db, acme):
        _, _, subscription = acme
        body = {"payment_method": "cod", "admission_key": "chk-42"}

        first = client.post("/checkout/admit", json=body, headers=ACME)
        again = client.post("/checkout/admit", json=body, headers=ACME)

        assert first.status_code == again.status_code == 200
        assert again.json()["replayed"] is True
        assert read_usage(db, subscription.id, Channel.WHATSAPP) == 3

        lookup = client.get("/checkout/admissions/chk-42", headers=ACME)
        assert lookup.status_code == 200
        assert lookup.json()["channel"] == "whatsapp"

        assert client.get("/checkout/admissions/missing", headers=ACME).status_code == 404


class TestOrders:
    """Test order creation through the admission gate."""

    def test_create_order(self, client, acme):
        store, _, _ = acme
        response = client.post("/orders/", json={
            "payment_method": "cod",
            "total": 499.5,
            "customer_name": "Asha",
            "customer_phone": "+919800000000",
        }, headers=ACME)
        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["store_id"] == store.id
        assert data["channel"] == "whatsapp"
        assert data["status"] == "pending"
        assert data["currency"] == "INR"

        listed = client.get("/orders/", headers=ACME)
        assert [order["id"] for order in listed.json()] == [data["id"]]
        assert client.get(f"/orders/{data['id']}", headers=ACME).status_code == 200

    def test_rejected_order_is_not_created(self, client, acme):
        client.post("/orders/", json={"payment_method": "cod", "total": 10}, headers=ACME)
        response = client.post("/orders/", json={"payment_method": "cod", "total": 10}, headers=ACME)
        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert len(client.get("/orders/", headers=ACME).json()) == 1

    def test_retried_checkout_returns_same_order(self, client, db, acme):
        _, _, subscription = acme
        body = {"payment_method": "cod", "total": 250, "admission_key": "cart-7"}

        first = client.post("/orders/", json=body, headers=ACME)
        again = client.post("/orders/", json=body, headers=ACME)

        assert first.json()["id"] == again.json()["id"]
        assert read_usage(db, subscription.id, Channel.WHATSAPP) == 3
        assert client.get("/checkout/admissions/cart-7", headers=ACME).json()["order_id"] == first.json()["id"]

    def test_retry_while_first_order_pending_persists_one_order(self, client, db, acme):
        """A retry landing between the first request's admission and its order write."""
        store, _, subscription = acme
        body = {"payment_method": "cod", "total": 90, "admission_key": "cart-9"}
        # First request: admitted, order not written yet
        assert admit_order(db, "shop.acme.com", "cod", admission_key="cart-9").admitted

        retry = client.post("/orders/", json=body, headers=ACME)
        assert retry.status_code == status.HTTP_201_CREATED

        # First request resumes and loses the claim
        late = Order(store_id=store.id, channel="whatsapp", payment_method="cod", total=90)
        db.add(late)
        db.flush()
        assert attach_order(db, store.id, "cart-9", late.id) is False
        db.rollback()

        orders = client.get("/orders/", headers=ACME).json()
        assert [order["id"] for order in orders] == [retry.json()["id"]]
        assert read_usage(db, subscription.id, Channel.WHATSAPP) == 3

    def test_lost_claim_returns_winning_order(self, client, db, acme, monkeypatch):
        store, _, _ = acme
        winner = Order(store_id=store.id, channel="whatsapp", payment_method="cod", total=10)
        db.add(winner)
        db.commit()
        monkeypatch.setattr("routes.orders.attach_order", lambda *args: False)
        monkeypatch.setattr("routes.orders._claimed_order", lambda *args: winner)

        response = client.post("/orders/", json={"payment_method": "cod", "total": 10, "admission_key": "cart-10"},
                               headers=ACME)

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["id"] == winner.id
        assert len(client.get("/orders/", headers=ACME).json()) == 1

    def test_lost_claim_without_visible_order_is_409(self, client, acme, monkeypatch):
        monkeypatch.setattr("routes.orders.attach_order", lambda *args: False)
        monkeypatch.setattr("routes.orders._claimed_order", lambda *args: None)

        response = client.post("/orders/", json={"payment_method": "cod", "total": 10, "admission_key": "cart-11"},
                               headers=ACME)

        assert response.status_code == status.HTTP_409_CONFLICT
        assert client.get("/orders/", headers=ACME).json() == []

    def test_orders_are_scoped_to_store(self, client, acme, make_store, make_plan, make_subscription):
        other = make_store(slug="other", custom_domain="other.example.com")
        make_subscription(other, make_plan(slug="open", whatsapp=0), period_end=datetime.utcnow() + timedelta(days=1))
        created = client.post("/orders/", json={"payment_method": "cod", "total": 1},
                              headers={"X-Store-Domain": "other.example.com"}).json()

        assert client.get(f"/orders/{created['id']}", headers=ACME).status_code == 404
        assert client.get("/orders/", headers=ACME).json() == []

    def test_negative_total_is_invalid(self, client, acme):
        response = client.post("/orders/", json={"payment_method": "cod", "total": -1}, headers=ACME)
        assert response.status_code == 422


class TestUsage:
    """Test the owner-facing usage endpoint."""

    def test_usage_summary(self, client, acme):
        response = client.get("/stores/current/usage", headers=ACME)
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "active"
        channels = {c["channel"]: c for c in data["channels"]}
        assert channels["whatsapp"]["remaining"] == 1
        assert channels["website"]["limit_kind"] == "disabled"
        assert data["warnings"] == ["Warning: Only 1 WhatsApp order slots remaining (2/3)."]

    def test_usage_without_subscription(self, client, make_store):
        make_store(slug="bare", custom_domain="bare.example.com")
        data = client.get("/stores/current/usage", headers={"X-Store-Domain": "bare.example.com"}).json()
        assert data["status"] is None
        assert data["channels"] == []
