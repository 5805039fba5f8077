import json
from datetime import timedelta

import httpx
import pytest
from sqlalchemy import func, select, update

from barbershop.models import Booking, BranchCache, ServiceCache, TimifyReservation, utcnow

COMPANIES = "/booker-services/companies"
RESERVATIONS = "/booker-services/reservations"
CONFIRM = "/booker-services/appointments/confirm"
AVAILABILITIES = "/booker-services/availabilities"

BRANCHES = [
    {"id": "branch-1", "name": "Downtown", "address": "1 Main St", "city": "Paris", "country": "FR", "timezone": "Europe/Paris"},
    {"id": "branch-2", "name": "Harbour", "city": "Nice"},
]

RESERVATION = {"reservation_id": "tmf-res-1", "secret": "s3cret", "expires_at": "2099-01-01T10:00:00Z"}


def reserve_body(**overrides):
    body = {"branchId": "branch-1", "serviceId": "svc-1", "date": "2099-01-01", "time": "09:30"}
    body.update(overrides)
    return body


def post(client, url, body, headers):
    return client.post(url, data=json.dumps(body), content_type="application/json", headers=headers)


@pytest.fixture
def reservation_id(client, timify, auth_headers):
    timify.on("POST", RESERVATIONS, (200, RESERVATION))
    response = post(client, "/api/v1/booking/reserve", reserve_body(), auth_headers)
    assert response.status_code == 201, response.data
    return json.loads(response.data)["data"]["reservationId"]


@pytest.mark.booking
class TestCatalog:
    def test_list_branches(self, client, db_session, timify):
        timify.on("GET", COMPANIES, (200, BRANCHES))

        response = client.get("/api/v1/booking/branches")

        assert response.status_code == 200
        data = json.loads(response.data)["data"]
        assert [b["id"] for b in data] == ["branch-1", "branch-2"]
        assert data[0]["timezone"] == "Europe/Paris"
        assert db_session.get(BranchCache, "branch-1").name == "Downtown"

    def test_branch_allow_list(self, app, client, timify):
        app.extensions["barbershop"].booking.company_ids = ["branch-2"]
        timify.on("GET", COMPANIES, (200, BRANCHES))

        data = json.loads(client.get("/api/v1/booking/branches").data)["data"]

        assert [b["id"] for b in data] == ["branch-2"]

    def test_non_list_response_is_empty(self, client, timify):
        timify.on("GET", COMPANIES, (200, {"unexpected": True}))

        response = client.get("/api/v1/booking/branches")

        assert response.status_code == 200
        assert json.loads(response.data)["data"] == []

    def test_services_skip_zero_duration(self, client, db_session, timify):
        timify.on(
            "GET",
            f"{COMPANIES}/branch-1/services",
            (
                200,
                [
                    {"id": "svc-1", "name": "Haircut", "duration": 30, "price": 25, "currency": "EUR"},
                    {"id": "svc-x", "name": "Placeholder", "duration": 0},
                ],
            ),
        )

        response = client.get("/api/v1/booking/branches/branch-1/services")

        assert response.status_code == 200
        assert json.loads(response.data)["data"] == [
            {"id": "svc-1", "name": "Haircut", "durationMinutes": 30, "price": 25}
        ]
        assert db_session.get(ServiceCache, ("branch-1", "svc-1")).duration_minutes == 30

    def test_availability(self, client, timify):
        timify.on(
            "GET",
            AVAILABILITIES,
            (
                200,
                {
                    "calendar_begin": "2099-01-01",
                    "calendar_end": "2099-01-07",
                    "on_days": ["2099-01-01", "2099-01-02"],
                    "off_days": ["2099-01-03"],
                    "slots": [
                        {"start": "2099-01-01T09:00:00"},
                        {"start": "2099-01-01T09:30:00"},
                        {"start": "2099-01-01T09:30:00"},
                        {"start": "2099-01-02T14:00:00"},
                    ],
                },
            ),
        )

        response = client.get(
            "/api/v1/booking/availability?branchId=branch-1&serviceId=svc-1&startDate=2099-01-01&endDate=2099-01-07"
        )

        assert response.status_code == 200
        data = json.loads(response.data)["data"]
        assert data["onDays"] == ["2099-01-01", "2099-01-02"]
        assert data["offDays"] == ["2099-01-03"]
        assert data["timesByDay"] == {"2099-01-01": ["09:00", "09:30"], "2099-01-02": ["14:00"]}
        request = timify.calls_to("GET", AVAILABILITIES)[0]
        assert request.url.params["company_id"] == "branch-1"
        assert "resource_id" not in request.url.params

    def test_availability_without_slots(self, client, timify):
        timify.on(
            "GET",
            AVAILABILITIES,
            (200, {"calendar_begin": "2099-01-01", "calendar_end": "2099-01-07", "on_days": []}),
        )

        response = client.get(
            "/api/v1/booking/availability?branchId=b&serviceId=s&startDate=2099-01-01&endDate=2099-01-07"
        )

        assert json.loads(response.data)["data"]["timesByDay"] is None

    @pytest.mark.parametrize(
        "query",
        [
            "serviceId=s&startDate=2099-01-01&endDate=2099-01-07",
            "branchId=b&serviceId=s&startDate=01/01/2099&endDate=2099-01-07",
            "branchId=b&serviceId=s&startDate=2099-01-07&endDate=2099-01-01",
        ],
    )
    def test_availability_validation(self, client, timify, query):
        response = client.get(f"/api/v1/booking/availability?{query}")

        assert response.status_code == 400
        assert timify.calls == []


@pytest.mark.booking
class TestReserve:
    def test_reserve(self, client, db_session, timify, auth_headers, sample_user):
        timify.on("POST", RESERVATIONS, (200, RESERVATION))

        response = post(client, "/api/v1/booking/reserve", reserve_body(resourceId="barber-7"), auth_headers)

        assert response.status_code == 201
        data = json.loads(response.data)["data"]
        assert data["expiresAt"] == "2099-01-01T10:00:00"

        reservation = db_session.get(TimifyReservation, data["reservationId"])
        assert reservation.user_id == sample_user.id
        assert reservation.timify_reservation_id == "tmf-res-1"
        assert reservation.reserved_time == "09:30"
        assert reservation.used_at is None

        sent = json.loads(timify.calls_to("POST", RESERVATIONS)[0].content)
        assert sent == {
            "company_id": "branch-1",
            "service_id": "svc-1",
            "date": "2099-01-01",
            "time": "09:30",
            "resource_id": "barber-7",
        }

    @pytest.mark.parametrize(
        "overrides",
        [{"date": "2099-13-01"}, {"time": "9:30"}, {"time": "24:00"}, {"branchId": ""}],
    )
    def test_reserve_validation(self, client, timify, auth_headers, overrides):
        response = post(client, "/api/v1/booking/reserve", reserve_body(**overrides), auth_headers)

        assert response.status_code == 400
        assert timify.calls == []

    def test_reserve_requires_token(self, client):
        response = post(client, "/api/v1/booking/reserve", reserve_body(), {})

        assert response.status_code == 401

    def test_slot_taken(self, client, db_session, timify, auth_headers):
        timify.on("POST", RESERVATIONS, (409, {"message": "taken"}))

        response = post(client, "/api/v1/booking/reserve", reserve_body(), auth_headers)

        assert response.status_code == 409
        assert json.loads(response.data)["error"]["code"] == "BOOKING_SLOT_UNAVAILABLE"
        assert db_session.scalar(select(func.count(TimifyReservation.id))) == 0

    def test_provider_down(self, client, timify, auth_headers):
        timify.on("POST", RESERVATIONS, httpx.ConnectError("connection refused"))

        response = post(client, "/api/v1/booking/reserve", reserve_body(), auth_headers)

        assert response.status_code == 502
        data = json.loads(response.data)
        assert data["error"]["code"] == "BOOKING_PROVIDER_ERROR"
        assert "refused" not in data["error"]["message"]


@pytest.mark.booking
class TestConfirm:
    def test_confirm_creates_booking_and_stamp(self, client, services, db_session, timify, sample_user, auth_headers, reservation_id):
        timify.on("POST", CONFIRM, (200, {"appointment_id": "apt-9", "status": "CONFIRMED"}))

        response = post(client, "/api/v1/booking/confirm", {"reservationId": reservation_id}, auth_headers)

        assert response.status_code == 201
        data = json.loads(response.data)["data"]
        assert data["status"] == "CONFIRMED"
        assert data["timifyAppointmentId"] == "apt-9"
        assert data["startDateTime"] == "2099-01-01T09:30:00"
        assert data["userId"] == sample_user.id

        assert db_session.scalar(select(func.count(Booking.id))) == 1
        assert db_session.get(TimifyReservation, reservation_id).used_at is not None
        assert services.loyalty.get_stamps(sample_user.id) == 1

        sent = json.loads(timify.calls_to("POST", CONFIRM)[0].content)
        assert sent["reservation_id"] == "tmf-res-1"
        assert sent["secret"] == "s3cret"
        assert sent["external_customer_id"] == sample_user.id
        assert sent["is_course"] is False
        assert sent["region"] == "EUROPE"

    def test_confirm_twice(self, client, services, db_session, timify, sample_user, auth_headers, reservation_id):
        timify.on("POST", CONFIRM, (200, {"appointment_id": "apt-9", "status": "CONFIRMED"}))
        post(client, "/api/v1/booking/confirm", {"reservationId": reservation_id}, auth_headers)

        response = post(client, "/api/v1/booking/confirm", {"reservationId": reservation_id}, auth_headers)

        assert response.status_code == 400
        assert json.loads(response.data)["error"]["code"] == "BOOKING_VALIDATION_ERROR"
        assert db_session.scalar(select(func.count(Booking.id))) == 1
        assert services.loyalty.get_stamps(sample_user.id) == 1
        assert len(timify.calls_to("POST", CONFIRM)) == 1

    def test_expired_reservation(self, client, db_session, timify, auth_headers, reservation_id):
        db_session.execute(
            update(TimifyReservation).values(expires_at=utcnow() - timedelta(minutes=1))
        )
        db_session.commit()

        response = post(client, "/api/v1/booking/confirm", {"reservationId": reservation_id}, auth_headers)

        assert response.status_code == 400
        assert json.loads(response.data)["error"]["message"] == "Reservation expired"
        assert db_session.scalar(select(func.count(Booking.id))) == 0
        assert timify.calls_to("POST", CONFIRM) == []

    def test_unknown_reservation(self, client, auth_headers):
        response = post(client, "/api/v1/booking/confirm", {"reservationId": "missing"}, auth_headers)

        assert response.status_code == 404

    def test_other_users_reservation(self, client, make_user, timify, reservation_id):
        make_user("intruder@example.com")
        login = post(client, "/api/v1/auth/login", {"email": "intruder@example.com", "password": "password123"}, {})
        headers = {"Authorization": f"Bearer {json.loads(login.data)['token']}"}

        response = post(client, "/api/v1/booking/confirm", {"reservationId": reservation_id}, headers)

        assert response.status_code == 403
        assert timify.calls_to("POST", CONFIRM) == []

    def test_provider_failure_keeps_reservation(self, client, services, db_session, timify, sample_user, auth_headers, reservation_id):
        timify.on("POST", CONFIRM, (500, {"message": "boom"}))

        response = post(client, "/api/v1/booking/confirm", {"reservationId": reservation_id}, auth_headers)

        assert response.status_code == 502
        assert db_session.scalar(select(func.count(Booking.id))) == 0
        assert db_session.get(TimifyReservation, reservation_id).used_at is None
        assert services.loyalty.get_stamps(sample_user.id) == 0

    def test_malformed_provider_response(self, client, db_session, timify, auth_headers, reservation_id):
        timify.on("POST", CONFIRM, (200, {"appointment_id": "apt-9"}))

        response = post(client, "/api/v1/booking/confirm", {"reservationId": reservation_id}, auth_headers)

        assert response.status_code == 502
        assert db_session.scalar(select(func.count(Booking.id))) == 0

    def test_stamp_failure_rolls_back_booking(self, client, services, db_session, timify, sample_user, auth_headers, reservation_id, monkeypatch):
        timify.on("POST", CONFIRM, (200, {"appointment_id": "apt-9", "status": "CONFIRMED"}))

        def broken(user_id, amount=1):
            raise RuntimeError("stamp store unavailable")

        monkeypatch.setattr(services.loyalty, "increment_stamps", broken)

        response = post(client, "/api/v1/booking/confirm", {"reservationId": reservation_id}, auth_headers)

        assert response.status_code == 502
        error = json.loads(response.data)["error"]
        assert error["code"] == "BOOKING_PROVIDER_ERROR"
        assert error["message"] == "Failed to confirm booking"
        assert db_session.scalar(select(func.count(Booking.id))) == 0
        assert db_session.get(TimifyReservation, reservation_id).used_at is None
