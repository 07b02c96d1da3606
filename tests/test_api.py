"""HTTP-level tests: routing, error mapping and response shapes."""
import pytest
from fastapi.testclient import TestClient

from marketplace.api.dependencies import get_effect_dispatcher
from marketplace.config.database import get_db
from marketplace.main import create_app


@pytest.fixture
def client(session_factory, dispatcher):
    app = create_app()

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_effect_dispatcher] = lambda: dispatcher
    return TestClient(app)


def as_user(user):
    return {"X-User-Id": str(user.id)}


def create_booking(client, customer, service, start="10:00"):
    return client.post("/api/v1/bookings", headers=as_user(customer), json={
        "service_id": str(service.id),
        "booking_date": "2030-01-08",
        "start_time": start,
    })


class TestHealth:
    def test_basic(self, client):
        response = client.get("/health/")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_correlation_id_is_echoed(self, client):
        response = client.get("/health/", headers={"X-Correlation-ID": "abc-123"})

        assert response.headers["X-Correlation-ID"] == "abc-123"


class TestIdentity:
    def test_missing_header(self, client):
        assert client.get("/api/v1/bookings").status_code == 422

    def test_invalid_header(self, client):
        assert client.get("/api/v1/bookings", headers={"X-User-Id": "not-a-uuid"}).status_code == 401


class TestAvailabilityApi:
    def test_set_and_read_windows(self, client, provider):
        response = client.put(f"/api/v1/providers/{provider.id}/availability", headers=as_user(provider),
                              json={"day_of_week": 2, "start_time": "09:00", "end_time": "12:00"})
        assert response.status_code == 200

        days = client.get(f"/api/v1/providers/{provider.id}/availability").json()["days"]
        assert [w["start_time"] for w in days["2"]] == ["09:00:00"]

    def test_only_provider_edits_own_windows(self, client, provider, customer):
        response = client.put(f"/api/v1/providers/{provider.id}/availability", headers=as_user(customer),
                              json={"day_of_week": 2, "start_time": "09:00", "end_time": "12:00"})

        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    def test_reversed_window_rejected(self, client, provider):
        response = client.put(f"/api/v1/providers/{provider.id}/availability", headers=as_user(provider),
                              json={"day_of_week": 2, "start_time": "12:00", "end_time": "09:00"})

        assert response.status_code == 422

    def test_generate_and_list_slots(self, client, provider):
        client.put(f"/api/v1/providers/{provider.id}/availability", headers=as_user(provider),
                   json={"day_of_week": 2, "start_time": "09:00", "end_time": "12:00"})

        response = client.post(f"/api/v1/providers/{provider.id}/slots/generate", headers=as_user(provider),
                               json={"start_date": "2030-01-08", "end_date": "2030-01-08", "duration_minutes": 60})
        assert response.status_code == 201
        assert response.json()["created"] == 3

        slots = client.get(f"/api/v1/providers/{provider.id}/slots", params={"date": "2030-01-08"}).json()
        assert [s["start_time"] for s in slots] == ["09:00:00", "10:00:00", "11:00:00"]


class TestBookingApi:
    def test_create_and_conflict(self, client, customer, other_customer, service):
        created = create_booking(client, customer, service)
        assert created.status_code == 201
        assert created.json()["status"] == "pending"
        assert created.json()["payment"]["status"] == "pending"

        clash = create_booking(client, other_customer, service, start="10:30")
        assert clash.status_code == 409
        assert clash.json()["error"] == "conflict"

    def test_lifecycle(self, client, provider, customer, service, dispatcher):
        booking_id = create_booking(client, customer, service).json()["id"]

        assert client.post(f"/api/v1/bookings/{booking_id}/accept", headers=as_user(customer)).status_code == 403

        accepted = client.post(f"/api/v1/bookings/{booking_id}/accept", headers=as_user(provider))
        assert accepted.json()["status"] == "accepted"
        assert "capture_payment" in dispatcher.kinds()

        again = client.post(f"/api/v1/bookings/{booking_id}/decline", headers=as_user(provider), json={})
        assert again.status_code == 400
        assert again.json()["error"] == "policy_violation"

    def test_cancel_returns_decision(self, client, customer, service):
        booking_id = create_booking(client, customer, service).json()["id"]

        preview = client.post(f"/api/v1/bookings/{booking_id}/policy-check", headers=as_user(customer),
                              json={"policy_type": "cancellation"})
        assert preview.status_code == 200
        assert preview.json()["allowed"] is True

        response = client.post(f"/api/v1/bookings/{booking_id}/cancel", headers=as_user(customer),
                               json={"reason": "Plans changed"})
        assert response.status_code == 200
        body = response.json()
        assert body["booking"]["status"] == "cancelled"
        assert body["decision"]["allowed"] is True

        repeat = client.post(f"/api/v1/bookings/{booking_id}/cancel", headers=as_user(customer), json={})
        assert repeat.status_code == 409

    def test_stranger_cannot_read(self, client, customer, other_customer, service):
        booking_id = create_booking(client, customer, service).json()["id"]

        assert client.get(f"/api/v1/bookings/{booking_id}", headers=as_user(other_customer)).status_code == 403

    def test_list_with_unknown_status(self, client, customer):
        response = client.get("/api/v1/bookings", headers=as_user(customer), params={"status": "lost"})

        assert response.status_code == 422


class TestPolicyApi:
    def test_templates(self, client):
        assert len(client.get("/api/v1/policies/templates").json()) == 4

    def test_create_with_conditions(self, client, provider, service):
        response = client.post("/api/v1/policies", headers=as_user(provider), json={
            "service_id": str(service.id),
            "name": "Strict",
            "type": "cancellation",
            "hours_before_booking": 48,
            "penalty_type": "percentage",
            "penalty_value": "50",
            "allow_exceptions": True,
            "exception_conditions": [{"kind": "grace_period", "hours": 2}],
        })

        assert response.status_code == 201
        listed = client.get("/api/v1/policies", params={"service_id": str(service.id)}).json()
        assert [p["name"] for p in listed] == ["Strict"]

    def test_unknown_condition_kind(self, client, provider, service):
        response = client.post("/api/v1/policies", headers=as_user(provider), json={
            "service_id": str(service.id),
            "name": "Odd",
            "type": "cancellation",
            "exception_conditions": [{"kind": "full_moon"}],
        })

        assert response.status_code == 422


class TestRecurringApi:
    def test_create_and_pause(self, client, customer, service):
        created = client.post("/api/v1/recurring-bookings", headers=as_user(customer), json={
            "service_id": str(service.id),
            "frequency": "weekly",
            "start_date": "2030-01-07",
            "days_of_week": [2],
            "occurrences": 3,
            "time_slot": "10:00",
        })
        assert created.status_code == 201
        body = created.json()
        assert [o["booking_date"] for o in body["occurrences"]] == ["2030-01-08", "2030-01-15", "2030-01-22"]

        series_id = body["series"]["id"]
        paused = client.post(f"/api/v1/recurring-bookings/{series_id}/pause", headers=as_user(customer))
        assert paused.json()["cancelled"] == 3
        assert paused.json()["series"]["status"] == "paused"

    def test_end_date_and_occurrences_together(self, client, customer, service):
        response = client.post("/api/v1/recurring-bookings", headers=as_user(customer), json={
            "service_id": str(service.id),
            "frequency": "daily",
            "start_date": "2030-01-07",
            "end_date": "2030-01-20",
            "occurrences": 3,
            "time_slot": "10:00",
        })

        assert response.status_code == 422


class TestEscrowApi:
    def test_earnings_only_for_self(self, client, provider, customer, service):
        create_booking(client, customer, service)

        own = client.get(f"/api/v1/escrow/providers/{provider.id}/earnings", headers=as_user(provider))
        assert own.status_code == 200
        assert own.json()["awaiting_capture"] == "90.00"

        other = client.get(f"/api/v1/escrow/providers/{provider.id}/earnings", headers=as_user(customer))
        assert other.status_code == 403

    def test_dispute_reason_length(self, client, customer, service):
        payment_id = create_booking(client, customer, service).json()["payment"]["id"]

        response = client.post(f"/api/v1/escrow/payments/{payment_id}/dispute", headers=as_user(customer),
                               json={"reason": "too short"})

        assert response.status_code == 422
