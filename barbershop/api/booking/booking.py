from flask import Blueprint, g, jsonify, request

from ...errors import ValidationError
from ...extensions import get_services
from ...utils.auth import token_required
from ...utils.validation import get_json_body, parse_date, parse_time, require_fields, require_string

booking_bp = Blueprint("booking", __name__, url_prefix="/api/v1/booking")


@booking_bp.route("/branches", methods=["GET"])
def list_branches():
    """
    List bookable branches
    ---
    tags:
      - Booking
    responses:
      200:
        description: Branches from the scheduling provider
      502:
        description: Provider unavailable
    """
    branches = get_services().booking.get_branches()
    return jsonify({"status": "success", "data": branches}), 200


@booking_bp.route("/branches/<branch_id>/services", methods=["GET"])
def list_branch_services(branch_id):
    """
    List services offered by a branch
    ---
    tags:
      - Booking
    parameters:
      - in: path
        name: branch_id
        type: string
        required: true
    responses:
      200:
        description: Services with a positive duration
    """
    services = get_services().booking.get_branch_services(branch_id)
    return jsonify({"status": "success", "data": services}), 200


@booking_bp.route("/availability", methods=["GET"])
def get_availability():
    """
    Available days and start times
    ---
    tags:
      - Booking
    parameters:
      - {in: query, name: branchId, type: string, required: true}
      - {in: query, name: serviceId, type: string, required: true}
      - {in: query, name: startDate, type: string, required: true, description: YYYY-MM-DD}
      - {in: query, name: endDate, type: string, required: true, description: YYYY-MM-DD}
      - {in: query, name: resourceId, type: string, required: false}
    responses:
      200:
        description: calendarBegin, calendarEnd, onDays, offDays, timesByDay
    """
    args = require_fields(request.args.to_dict(), "branchId", "serviceId", "startDate", "endDate")
    start_date = parse_date(args["startDate"], "startDate")
    end_date = parse_date(args["endDate"], "endDate")
    if end_date < start_date:
        raise ValidationError("endDate must not be before startDate", fields={"endDate": "before startDate"})

    availability = get_services().booking.get_availability(
        branch_id=args["branchId"],
        service_id=args["serviceId"],
        start_date=start_date.isoformat(),
        end_date=end_date.isoformat(),
        resource_id=args.get("resourceId"),
    )
    return jsonify({"status": "success", "data": availability}), 200


@booking_bp.route("/reserve", methods=["POST"])
@token_required
def reserve_slot():
    """
    Place a temporary hold on a slot
    ---
    tags:
      - Booking
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [branchId, serviceId, date, time]
          properties:
            branchId: {type: string}
            serviceId: {type: string}
            date: {type: string, example: "2026-03-14"}
            time: {type: string, example: "10:30"}
            resourceId: {type: string}
    responses:
      201:
        description: reservationId and expiresAt
      400:
        description: Validation error
      404:
        description: Slot unavailable
      409:
        description: Slot already taken
    """
    data = require_fields(get_json_body(), "branchId", "serviceId", "date", "time")
    resource_id = data.get("resourceId")

    reservation = get_services().booking.reserve(
        user_id=g.user_id,
        branch_id=require_string(data, "branchId", 64),
        service_id=require_string(data, "serviceId", 64),
        reserved_date=parse_date(data["date"], "date"),
        reserved_time=parse_time(data["time"], "time"),
        resource_id=require_string(data, "resourceId", 64) if resource_id else None,
    )
    return jsonify({"status": "success", "data": reservation}), 201


@booking_bp.route("/confirm", methods=["POST"])
@token_required
def confirm_reservation():
    """
    Confirm a reservation into a booking
    ---
    tags:
      - Booking
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [reservationId]
          properties:
            reservationId: {type: string}
    responses:
      201:
        description: Booking created, one loyalty stamp awarded
      400:
        description: Reservation used or expired
      403:
        description: Reservation belongs to another user
      404:
        description: Reservation not found
    """
    data = get_json_body()
    reservation_id = require_string(data, "reservationId", 36)

    booking = get_services().booking.confirm(user_id=g.user_id, reservation_id=reservation_id)
    return jsonify({"status": "success", "data": booking}), 201
