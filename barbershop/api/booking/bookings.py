from flask import Blueprint, g, jsonify, request

from ...extensions import get_services
from ...services.booking_service import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from ...utils.auth import token_required
from ...utils.validation import parse_limit

bookings_bp = Blueprint("bookings", __name__, url_prefix="/api/v1/bookings")


@bookings_bp.route("/me", methods=["GET"])
@token_required
def my_bookings():
    """
    GET /api/v1/bookings/me
    Purpose: Cursor-paginated booking history of the caller.
    Input: query status=upcoming|past|all (default upcoming), limit (<= 50), cursor.

    Behavior:
    - upcoming: confirmed bookings starting now or later, oldest first
    - past: started bookings or canceled ones, newest first
    - all: everything, newest first
    - nextCursor is null on the last page
    """
    result = get_services().booking.list_bookings(
        user_id=g.user_id,
        status=request.args.get("status", "upcoming"),
        limit=parse_limit(request.args.get("limit"), DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE),
        cursor=request.args.get("cursor") or None,
    )
    return jsonify({"status": "success", "data": result["items"], "nextCursor": result["nextCursor"]}), 200


@bookings_bp.route("/<booking_id>", methods=["GET"])
@token_required
def get_booking(booking_id):
    """
    GET /api/v1/bookings/<booking_id>
    Purpose: One booking of the caller with branch and service details.
    """
    booking = get_services().booking.get_booking(user_id=g.user_id, booking_id=booking_id)
    return jsonify({"status": "success", "data": booking}), 200


@bookings_bp.route("/<booking_id>/cancel", methods=["POST"])
@token_required
def cancel_booking(booking_id):
    """
    POST /api/v1/bookings/<booking_id>/cancel
    Purpose: Cancel a confirmed future booking outside the cutoff window.
    Only the local record changes; the scheduling provider is not notified.
    """
    result = get_services().booking.cancel_booking(user_id=g.user_id, booking_id=booking_id)
    return jsonify({"status": "success", "data": result}), 200
