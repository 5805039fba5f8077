from flask import Blueprint, current_app, g, jsonify

from ...extensions import get_services
from ...utils.auth import admin_required
from ...utils.validation import get_json_body, require_string

admin_loyalty_bp = Blueprint("admin_loyalty", __name__, url_prefix="/api/v1/admin")


@admin_loyalty_bp.route("/loyalty/scan", methods=["POST"])
@admin_required
def scan_point_qr():
    """
    Scan a customer's point QR (+1 point, coupon at the target)
    ---
    tags:
      - Admin
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [qrPayload]
          properties:
            qrPayload: {type: string}
    responses:
      200:
        description: success, rewardEarned, points
      400:
        description: INVALID_OR_EXPIRED_QR
      403:
        description: Not an admin
    """
    payload = require_string(get_json_body(), "qrPayload", 512)
    result = get_services().loyalty.admin_scan_point_qr(payload)
    current_app.logger.info(f"Admin {g.user_id} scanned a point QR")
    return jsonify({"status": "success", "data": result}), 200


@admin_loyalty_bp.route("/loyalty/earn", methods=["POST"])
@admin_required
def earn_points():
    """
    Credit points for a service from a customer's earn QR
    ---
    tags:
      - Admin
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [qrPayload, serviceId]
          properties:
            qrPayload: {type: string, example: "BC|v1|E|<token>"}
            serviceId: {type: string}
    responses:
      200:
        description: pointsEarned, newBalance, newLifetime, newTier
      400:
        description: INVALID_QR or VALIDATION_ERROR
      404:
        description: OFFER_NOT_FOUND
    """
    data = get_json_body()
    payload = require_string(data, "qrPayload", 512)
    service_id = require_string(data, "serviceId", 36)
    result = get_services().loyalty_v2.admin_earn_points(payload, service_id)
    current_app.logger.info(f"Admin {g.user_id} credited {result['pointsEarned']} points")
    return jsonify({"status": "success", "data": result}), 200


@admin_loyalty_bp.route("/loyalty/redeem-voucher", methods=["POST"])
@admin_required
def redeem_voucher():
    """
    Mark a reward voucher as fulfilled
    ---
    tags:
      - Admin
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [qrPayload]
          properties:
            qrPayload: {type: string, example: "BC|v1|V|<token>"}
    responses:
      200:
        description: success, rewardName, newBalance
      400:
        description: INVALID_OR_EXPIRED_QR
    """
    payload = require_string(get_json_body(), "qrPayload", 512)
    result = get_services().loyalty_v2.admin_redeem_voucher(payload)
    return jsonify({"status": "success", "data": result}), 200


@admin_loyalty_bp.route("/loyalty/redeem-coupon", methods=["POST"])
@admin_required
def redeem_coupon():
    """
    POST /api/v1/admin/loyalty/redeem-coupon
    Purpose: Consume a legacy coupon QR (BC|v1|C|...).
    """
    payload = require_string(get_json_body(), "qrPayload", 512)
    result = get_services().loyalty.redeem_coupon(payload)
    return jsonify({"status": "success", "data": result}), 200


@admin_loyalty_bp.route("/services", methods=["GET"])
@admin_required
def list_services():
    """
    GET /api/v1/admin/services
    Purpose: Active in-store services with the points each one earns.
    """
    services = get_services().loyalty_v2.list_services_for_admin()
    return jsonify({"status": "success", "data": services}), 200
