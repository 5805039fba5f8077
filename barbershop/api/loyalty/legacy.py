from flask import Blueprint, g, jsonify

from ...extensions import get_services
from ...utils.auth import admin_required, token_required
from ...utils.validation import get_json_body, require_string

loyalty_bp = Blueprint("loyalty", __name__, url_prefix="/api/v1/loyalty")


@loyalty_bp.route("/me", methods=["GET"])
@token_required
def get_loyalty_card():
    """
    Legacy loyalty card of the caller
    ---
    tags:
      - Loyalty
    security:
      - Bearer: []
    responses:
      200:
        description: stamps, target, remaining, eligible, points, availableCoupons
    """
    state = get_services().loyalty.get_state(g.user_id)
    return jsonify({"status": "success", "data": state}), 200


@loyalty_bp.route("/qr", methods=["GET"])
@token_required
def get_redemption_qr():
    """
    Card-reset QR, only once the stamp target is reached
    ---
    tags:
      - Loyalty
    security:
      - Bearer: []
    responses:
      200:
        description: qrPayload and expiresAt
      400:
        description: LOYALTY_NOT_READY
    """
    qr = get_services().loyalty.generate_qr(g.user_id)
    return jsonify({"status": "success", "data": qr}), 200


@loyalty_bp.route("/qr", methods=["POST"])
@token_required
def create_point_qr():
    """
    Short-lived QR a barber scans to add one point to the card
    ---
    tags:
      - Loyalty
    security:
      - Bearer: []
    responses:
      201:
        description: qrPayload and expiresAt
    """
    qr = get_services().loyalty.generate_point_qr(g.user_id)
    return jsonify({"status": "success", "data": qr}), 201


@loyalty_bp.route("/scan", methods=["POST"])
@admin_required
def scan_redemption_qr():
    """
    Staff scan of a card-reset QR
    ---
    tags:
      - Loyalty
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
            qrPayload: {type: string, example: "BC|v1|P|<token>"}
    responses:
      200:
        description: Card reset
      400:
        description: INVALID_OR_EXPIRED_QR
    """
    payload = require_string(get_json_body(), "qrPayload", 512)
    result = get_services().loyalty.scan_qr(payload)
    return jsonify({"status": "success", "data": result}), 200


@loyalty_bp.route("/redeem", methods=["POST"])
@token_required
def redeem_stamps():
    """
    POST /api/v1/loyalty/redeem
    Purpose: Spend one full card (target stamps) of the caller.
    """
    result = get_services().loyalty.redeem(g.user_id)
    return jsonify({"status": "success", "data": result}), 200


@loyalty_bp.route("/coupons", methods=["GET"])
@token_required
def list_coupons():
    """
    GET /api/v1/loyalty/coupons
    Purpose: Unredeemed coupons of the caller, newest first.
    """
    coupons = get_services().loyalty.list_coupons(g.user_id)
    return jsonify({"status": "success", "data": coupons}), 200


@loyalty_bp.route("/coupons/<coupon_id>/qr", methods=["POST"])
@token_required
def create_coupon_qr(coupon_id):
    """
    POST /api/v1/loyalty/coupons/<coupon_id>/qr
    Purpose: (Re)issue the QR for one coupon; the previous one stops working.
    """
    qr = get_services().loyalty.generate_coupon_qr(g.user_id, coupon_id)
    return jsonify({"status": "success", "data": qr}), 201
