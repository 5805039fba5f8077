import json
from datetime import timedelta

import pytest
from sqlalchemy import select

from barbershop.models import Booking, BranchCache, ServiceCache, utcnow


@pytest.fixture
def add_booking(db_session, sample_user):
    def factory(start_offset, status="CONFIRMED", user_id=None, branch_id="branch-1", service_id="svc-1"):
        booking = Booking(
            user_id=user_id or sample_user.id,
            branch_id=branch_id,
            service_id=service_id,
            start_date_time=(utcnow() + start_offset).replace(microsecond=0),
            timify_appointment_id="apt-1",
            status=status,
        )
        db_session.add(booking)
        db_session.commit()
        return booking.id

    return factory


@pytest.fixture
def cached_names(db_session):
    db_session.add(BranchCache(id="branch-1", name="Downtown", address="1 Main St", city="Paris", timezone="Europe/Paris"))
    db_session.add(ServiceCache(branch_id="branch-1", service_id="svc-1", name="Haircut", duration_minutes=30))
    db_session.commit()


def my_bookings(client, headers, query=""):
    response = client.get(f"/api/v1/bookings/me{query}", headers=headers)
    assert response.status_code == 200, response.data
    return json.loads(response.data)


@pytest.mark.booking
class TestMyBookings:
    def test_upcoming_ascending(self, client, auth_headers, add_booking, cached_names):
        later = add_booking(timedelta(days=3))
        sooner = add_booking(timedelta(days=1))
        add_booking(timedelta(days=2), status="CANCELED")
        add_booking(-timedelta(days=1))

        body = my_bookings(client, auth_headers)

        assert [b["id"] for b in body["data"]] == [sooner, later]
        assert body["nextCursor"] is None
        assert body["data"][0]["branch"] == {"id": "branch-1", "name": "Downtown", "city": "Paris"}
        assert body["data"][0]["service"] == {"id": "svc-1", "name": "Haircut"}

    def test_past_includes_canceled(self, client, auth_headers, add_booking, cached_names):
        future = add_booking(timedelta(days=1))
        canceled = add_booking(timedelta(days=2), status="CANCELED")
        yesterday = add_booking(-timedelta(days=1))
        last_week = add_booking(-timedelta(days=7))

        ids = [b["id"] for b in my_bookings(client, auth_headers, "?status=past")["data"]]

        assert ids == [canceled, yesterday, last_week]
        assert future not in ids

    def test_all(self, client, auth_headers, add_booking, cached_names):
        for offset in (1, -1, 2):
            add_booking(timedelta(days=offset))

        assert len(my_bookings(client, auth_headers, "?status=all")["data"]) == 3

    def test_only_own_bookings(self, client, make_user, auth_headers, add_booking, cached_names):
        other = make_user("other@example.com")
        add_booking(timedelta(days=1), user_id=other.id)

        assert my_bookings(client, auth_headers)["data"] == []

    def test_cursor_pagination(self, client, auth_headers, add_booking, cached_names):
        ids = [add_booking(timedelta(days=d)) for d in (1, 2, 3, 4, 5)]

        first = my_bookings(client, auth_headers, "?limit=2")
        assert [b["id"] for b in first["data"]] == ids[:2]
        assert first["nextCursor"]

        second = my_bookings(client, auth_headers, f"?limit=2&cursor={first['nextCursor']}")
        assert [b["id"] for b in second["data"]] == ids[2:4]

        third = my_bookings(client, auth_headers, f"?limit=2&cursor={second['nextCursor']}")
        assert [b["id"] for b in third["data"]] == ids[4:]
        assert third["nextCursor"] is None

    def test_unknown_names_fall_back_to_ids(self, client, auth_headers, add_booking):
        add_booking(timedelta(days=1), branch_id="ghost", service_id="svc-ghost")

        item = my_bookings(client, auth_headers)["data"][0]

        assert item["branch"] == {"id": "ghost"}
        assert item["service"] == {"id": "svc-ghost"}

    @pytest.mark.parametrize("query", ["?status=later", "?cursor=garbage", "?limit=0"])
    def test_invalid_query(self, client, auth_headers, query):
        response = client.get(f"/api/v1/bookings/me{query}", headers=auth_headers)

        assert response.status_code == 400
        assert json.loads(response.data)["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.booking
class TestGetBooking:
    def test_detail(self, client, auth_headers, add_booking, cached_names):
        booking_id = add_booking(timedelta(days=1))

        response = client.get(f"/api/v1/bookings/{booking_id}", headers=auth_headers)

        assert response.status_code == 200
        data = json.loads(response.data)["data"]
        assert data["branch"]["timezone"] == "Europe/Paris"
        assert data["service"]["durationMinutes"] == 30
        assert data["timifyAppointmentId"] == "apt-1"

    def test_not_found(self, client, auth_headers):
        response = client.get("/api/v1/bookings/missing", headers=auth_headers)

        assert response.status_code == 404
        assert json.loads(response.data)["error"]["code"] == "BOOKING_NOT_FOUND"

    def test_other_users_booking(self, client, make_user, auth_headers, add_booking):
        other = make_user("other@example.com")
        booking_id = add_booking(timedelta(days=1), user_id=other.id)

        response = client.get(f"/api/v1/bookings/{booking_id}", headers=auth_headers)

        assert response.status_code == 403


@pytest.mark.booking
class TestCancel:
    """Cutoff is 60 minutes in the test configuration."""

    def cancel(self, client, headers, booking_id):
        return client.post(f"/api/v1/bookings/{booking_id}/cancel", headers=headers)

    def test_cancel_outside_cutoff(self, client, db_session, auth_headers, add_booking):
        booking_id = add_booking(timedelta(minutes=90))

        response = self.cancel(client, auth_headers, booking_id)

        assert response.status_code == 200
        assert json.loads(response.data)["data"] == {"status": "CANCELED"}
        assert db_session.scalar(select(Booking.status).where(Booking.id == booking_id)) == "CANCELED"

    def test_cancel_inside_cutoff(self, client, db_session, auth_headers, add_booking):
        booking_id = add_booking(timedelta(minutes=30))

        response = self.cancel(client, auth_headers, booking_id)

        assert response.status_code == 400
        data = json.loads(response.data)
        assert data["error"]["code"] == "BOOKING_NOT_CANCELABLE"
        assert "60 minutes" in data["error"]["message"]
        assert db_session.scalar(select(Booking.status).where(Booking.id == booking_id)) == "CONFIRMED"

    def test_cancel_past(self, client, auth_headers, add_booking):
        booking_id = add_booking(-timedelta(hours=2))

        response = self.cancel(client, auth_headers, booking_id)

        assert json.loads(response.data)["error"]["message"] == "Cannot cancel past bookings"

    def test_cancel_twice(self, client, auth_headers, add_booking):
        booking_id = add_booking(timedelta(days=1))
        self.cancel(client, auth_headers, booking_id)

        response = self.cancel(client, auth_headers, booking_id)

        assert response.status_code == 400
        assert json.loads(response.data)["error"]["message"] == "Booking is already canceled"

    def test_cancel_disabled(self, app, client, auth_headers, add_booking):
        app.extensions["barbershop"].booking.enable_local_cancel = False
        booking_id = add_booking(timedelta(days=1))

        response = self.cancel(client, auth_headers, booking_id)

        assert response.status_code == 400
        assert json.loads(response.data)["error"]["code"] == "CANCEL_NOT_AVAILABLE"

    def test_cancel_other_users_booking(self, client, make_user, auth_headers, add_booking):
        other = make_user("other@example.com")
        booking_id = add_booking(timedelta(days=1), user_id=other.id)

        assert self.cancel(client, auth_headers, booking_id).status_code == 403

    def test_canceled_booking_moves_to_past(self, client, auth_headers, add_booking):
        booking_id = add_booking(timedelta(days=1))
        self.cancel(client, auth_headers, booking_id)

        assert my_bookings(client, auth_headers)["data"] == []
        assert [b["id"] for b in my_bookings(client, auth_headers, "?status=past")["data"]] == [booking_id]
