"""
Booking through the external scheduling provider.

The provider owns slot availability, so booking is two-phase: ``reserve``
places a provider-side hold and stores it locally; ``confirm`` confirms the
hold at the provider and then, in one local transaction, creates the
Booking, consumes the reservation and emits ``booking_confirmed``.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy import and_, or_, select, update

from ..errors import AppError, ErrorCode, ForbiddenError, NotFoundError, ProviderError, ValidationError
from ..events import booking_confirmed
from ..extensions import db
from ..models import Booking, BranchCache, ServiceCache, TimifyReservation, utcnow
from ..utils.db import insert_or_update, unit_of_work

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 50
BOOKING_STATUS_FILTERS = ("upcoming", "past", "all")


def parse_iso_datetime(value: str) -> datetime:
    """ISO-8601 string to naive UTC."""
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def encode_cursor(booking: Booking) -> str:
    return f"{booking.start_date_time.isoformat()}|{booking.id}"


def decode_cursor(cursor: str):
    try:
        raw_date, booking_id = cursor.split("|")
        if not booking_id:
            raise ValueError("empty id")
        return parse_iso_datetime(raw_date), booking_id
    except ValueError:
        raise ValidationError("Invalid cursor format", fields={"cursor": "expected <ISO-timestamp>|<id>"})


class BookingService:
    def __init__(self, config, timify):
        self.timify = timify
        self.cancel_cutoff_minutes = config["BOOKING_CANCEL_CUTOFF_MINUTES"]
        self.enable_local_cancel = config["ENABLE_LOCAL_CANCEL"]
        self.company_ids = list(config.get("TIMIFY_COMPANY_IDS") or [])

    # ------------------------------------------------------------------
    # catalog (read-through from the provider)
    # ------------------------------------------------------------------

    def get_branches(self) -> List[Dict[str, Any]]:
        companies = self.timify.get_companies()
        if self.company_ids:
            companies = [c for c in companies if c["id"] in self.company_ids]
        self._cache_branches(companies)
        return companies

    def get_branch_services(self, branch_id: str) -> List[Dict[str, Any]]:
        services = [s for s in self.timify.get_services(branch_id) if s["duration"] > 0]
        self._cache_services(branch_id, services)
        return [
            {
                "id": s["id"],
                "name": s["name"],
                "durationMinutes": s["duration"],
                "price": s.get("price"),
            }
            for s in services
        ]

    def get_availability(
        self,
        branch_id: str,
        service_id: str,
        start_date: str,
        end_date: str,
        resource_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        return self.timify.get_availabilities(
            company_id=branch_id,
            service_id=service_id,
            start_date=start_date,
            end_date=end_date,
            resource_id=resource_id,
        )

    # ------------------------------------------------------------------
    # two-phase booking
    # ------------------------------------------------------------------

    def reserve(
        self,
        user_id: str,
        branch_id: str,
        service_id: str,
        reserved_date: date,
        reserved_time: str,
        resource_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        response = self.timify.create_reservation(
            company_id=branch_id,
            service_id=service_id,
            date=reserved_date.isoformat(),
            time_=reserved_time,
            resource_id=resource_id,
        )
        try:
            expires_at = parse_iso_datetime(response["expires_at"])
        except ValueError:
            current_app.logger.error(f"Provider returned an unparseable expires_at: {response['expires_at']!r}")
            raise AppError(
                "Booking service temporarily unavailable",
                code=ErrorCode.BOOKING_PROVIDER_ERROR,
                status_code=502,
            )

        reservation = TimifyReservation(
            user_id=user_id,
            branch_id=branch_id,
            service_id=service_id,
            resource_id=resource_id or None,
            reserved_date=reserved_date,
            reserved_time=reserved_time,
            timify_reservation_id=response["reservation_id"],
            timify_secret=response["secret"],
            expires_at=expires_at,
        )
        with unit_of_work():
            db.session.add(reservation)

        current_app.logger.info(f"Reservation {reservation.id} created for user {user_id} at branch {branch_id}")
        return {"reservationId": reservation.id, "expiresAt": expires_at.isoformat()}

    def confirm(self, user_id: str, reservation_id: str) -> Dict[str, Any]:
        reservation = db.session.get(TimifyReservation, reservation_id)
        if reservation is None:
            raise NotFoundError("Reservation not found")
        if reservation.user_id != user_id:
            raise ForbiddenError("Reservation does not belong to user")
        if reservation.used_at is not None:
            raise ValidationError("Reservation already used", code=ErrorCode.BOOKING_VALIDATION_ERROR)
        if utcnow() > reservation.expires_at:
            raise ValidationError("Reservation expired", code=ErrorCode.BOOKING_VALIDATION_ERROR)

        provider = self.timify.confirm_appointment(
            company_id=reservation.branch_id,
            reservation_id=reservation.timify_reservation_id,
            secret=reservation.timify_secret,
            external_customer_id=user_id,
        )

        hours, minutes = (int(part) for part in reservation.reserved_time.split(":"))
        start = datetime.combine(reservation.reserved_date, datetime.min.time()).replace(hour=hours, minute=minutes)

        try:
            with unit_of_work():
                result = db.session.execute(
                    update(TimifyReservation)
                    .where(TimifyReservation.id == reservation_id, TimifyReservation.used_at.is_(None))
                    .values(used_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise ValidationError("Reservation already used", code=ErrorCode.BOOKING_VALIDATION_ERROR)

                booking = Booking(
                    user_id=user_id,
                    branch_id=reservation.branch_id,
                    service_id=reservation.service_id,
                    resource_id=reservation.resource_id,
                    start_date_time=start,
                    timify_appointment_id=provider.get("appointment_id"),
                    status="CONFIRMED",
                )
                db.session.add(booking)
                db.session.flush()
                booking_confirmed.send(self, booking=booking)
        except AppError:
            raise
        except Exception as e:
            # the provider already holds a confirmed appointment at this point
            current_app.logger.error(
                f"Local commit failed after provider confirmed reservation {reservation_id}: {e}"
            )
            raise ProviderError("Failed to confirm booking") from e

        current_app.logger.info(f"Booking {booking.id} confirmed for user {user_id} (reservation {reservation_id})")
        return self._booking_summary(booking)

    # ------------------------------------------------------------------
    # history
    # ------------------------------------------------------------------

    def list_bookings(
        self,
        user_id: str,
        status: str = "upcoming",
        limit: Optional[int] = DEFAULT_PAGE_SIZE,
        cursor: Optional[str] = None,
    ) -> Dict[str, Any]:
        if status not in BOOKING_STATUS_FILTERS:
            raise ValidationError(
                "Invalid status filter", fields={"status": f"one of {', '.join(BOOKING_STATUS_FILTERS)}"}
            )
        limit = max(1, min(limit or DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE))
        now = utcnow()
        ascending = status == "upcoming"

        stmt = select(Booking).where(Booking.user_id == user_id)
        if status == "upcoming":
            stmt = stmt.where(Booking.status == "CONFIRMED", Booking.start_date_time >= now)
        elif status == "past":
            stmt = stmt.where(or_(Booking.start_date_time < now, Booking.status == "CANCELED"))

        if cursor:
            cursor_start, cursor_id = decode_cursor(cursor)
            if ascending:
                stmt = stmt.where(
                    or_(
                        Booking.start_date_time > cursor_start,
                        and_(Booking.start_date_time == cursor_start, Booking.id > cursor_id),
                    )
                )
            else:
                stmt = stmt.where(
                    or_(
                        Booking.start_date_time < cursor_start,
                        and_(Booking.start_date_time == cursor_start, Booking.id < cursor_id),
                    )
                )

        if ascending:
            stmt = stmt.order_by(Booking.start_date_time.asc(), Booking.id.asc())
        else:
            stmt = stmt.order_by(Booking.start_date_time.desc(), Booking.id.desc())

        rows = db.session.scalars(stmt.limit(limit + 1)).all()
        has_more = len(rows) > limit
        items = rows[:limit]

        branches = {branch_id: self._branch_info(branch_id) for branch_id in {b.branch_id for b in items}}
        services = {}
        for b in items:
            key = (b.branch_id, b.service_id)
            if key not in services:
                services[key] = self._service_info(*key)

        result = []
        for b in items:
            branch = branches.get(b.branch_id)
            service = services.get((b.branch_id, b.service_id))
            result.append(
                {
                    "id": b.id,
                    "startDateTime": b.start_date_time.isoformat(),
                    "status": b.status,
                    "branch": {"id": branch.id, "name": branch.name, "city": branch.city}
                    if branch
                    else {"id": b.branch_id},
                    "service": {"id": service.service_id, "name": service.name}
                    if service
                    else {"id": b.service_id},
                }
            )

        return {
            "items": result,
            "nextCursor": encode_cursor(items[-1]) if has_more and items else None,
        }

    def get_booking(self, user_id: str, booking_id: str) -> Dict[str, Any]:
        booking = db.session.get(Booking, booking_id)
        if booking is None:
            raise NotFoundError("Booking not found", code=ErrorCode.BOOKING_NOT_FOUND)
        if booking.user_id != user_id:
            raise ForbiddenError("Booking does not belong to user")

        branch = self._branch_info(booking.branch_id)
        service = self._service_info(booking.branch_id, booking.service_id)
        return {
            "id": booking.id,
            "startDateTime": booking.start_date_time.isoformat(),
            "status": booking.status,
            "branch": {
                "id": branch.id,
                "name": branch.name,
                "address": branch.address,
                "city": branch.city,
                "timezone": branch.timezone,
            }
            if branch
            else {"id": booking.branch_id},
            "service": {
                "id": service.service_id,
                "name": service.name,
                "durationMinutes": service.duration_minutes,
            }
            if service
            else {"id": booking.service_id},
            "timifyAppointmentId": booking.timify_appointment_id,
        }

    def cancel_booking(self, user_id: str, booking_id: str) -> Dict[str, Any]:
        """
        Local cancellation only; the provider is not told. Guarded by
        ENABLE_LOCAL_CANCEL and BOOKING_CANCEL_CUTOFF_MINUTES.
        """
        booking = db.session.get(Booking, booking_id)
        if booking is None:
            raise NotFoundError("Booking not found", code=ErrorCode.BOOKING_NOT_FOUND)
        if booking.user_id != user_id:
            raise ForbiddenError("Booking does not belong to user")
        if booking.status == "CANCELED":
            raise ValidationError("Booking is already canceled", code=ErrorCode.BOOKING_NOT_CANCELABLE)
        if booking.status != "CONFIRMED":
            raise ValidationError("Only confirmed bookings can be canceled", code=ErrorCode.BOOKING_NOT_CANCELABLE)

        now = utcnow()
        if booking.start_date_time <= now:
            raise ValidationError("Cannot cancel past bookings", code=ErrorCode.BOOKING_NOT_CANCELABLE)
        if now >= booking.start_date_time - timedelta(minutes=self.cancel_cutoff_minutes):
            raise ValidationError(
                f"Booking cannot be canceled less than {self.cancel_cutoff_minutes} minutes before start time",
                code=ErrorCode.BOOKING_NOT_CANCELABLE,
            )
        if not self.enable_local_cancel:
            raise ValidationError("Cancellation is not available", code=ErrorCode.CANCEL_NOT_AVAILABLE)

        with unit_of_work():
            result = db.session.execute(
                update(Booking)
                .where(Booking.id == booking_id, Booking.status == "CONFIRMED")
                .values(status="CANCELED")
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ValidationError("Booking is already canceled", code=ErrorCode.BOOKING_NOT_CANCELABLE)

        current_app.logger.info(f"Booking {booking_id} canceled by user {user_id}")
        return {"status": "CANCELED"}

    # ------------------------------------------------------------------
    # display-name cache
    # ------------------------------------------------------------------

    @staticmethod
    def _booking_summary(booking: Booking) -> Dict[str, Any]:
        return {
            "id": booking.id,
            "userId": booking.user_id,
            "branchId": booking.branch_id,
            "serviceId": booking.service_id,
            "startDateTime": booking.start_date_time.isoformat(),
            "timifyAppointmentId": booking.timify_appointment_id,
            "status": booking.status,
            "createdAt": booking.created_at.isoformat(),
        }

    def _cache_branches(self, companies: List[Dict[str, Any]]):
        if not companies:
            return
        with unit_of_work():
            for c in companies:
                fields = {
                    "name": c["name"],
                    "address": c.get("address"),
                    "city": c.get("city"),
                    "country": c.get("country"),
                    "timezone": c.get("timezone"),
                    "updated_at": utcnow(),
                }
                insert_or_update(BranchCache, {"id": c["id"], **fields}, conflict_cols=["id"], set_=fields)

    def _cache_services(self, branch_id: str, services: List[Dict[str, Any]]):
        if not services:
            return
        with unit_of_work():
            for s in services:
                price = s.get("price")
                fields = {
                    "name": s["name"],
                    "duration_minutes": s["duration"],
                    "price": int(price) if price is not None else None,
                    "updated_at": utcnow(),
                }
                insert_or_update(
                    ServiceCache,
                    {"branch_id": branch_id, "service_id": s["id"], **fields},
                    conflict_cols=["branch_id", "service_id"],
                    set_=fields,
                )

    def _branch_info(self, branch_id: str) -> Optional[BranchCache]:
        cached = db.session.get(BranchCache, branch_id)
        if cached is not None:
            return cached
        try:
            companies = [c for c in self.timify.get_companies() if c["id"] == branch_id]
            self._cache_branches(companies)
        except AppError as e:
            current_app.logger.warning(f"Failed to fetch branch {branch_id} for cache: {e.code}")
            return None
        return db.session.get(BranchCache, branch_id)

    def _service_info(self, branch_id: str, service_id: str) -> Optional[ServiceCache]:
        cached = db.session.get(ServiceCache, (branch_id, service_id))
        if cached is not None:
            return cached
        try:
            self._cache_services(branch_id, self.timify.get_services(branch_id))
        except AppError as e:
            current_app.logger.warning(f"Failed to fetch services of branch {branch_id} for cache: {e.code}")
            return None
        return db.session.get(ServiceCache, (branch_id, service_id))
