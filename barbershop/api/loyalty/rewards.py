from flask import Blueprint, g, jsonify, request

from ...extensions import get_services
from ...services.loyalty_v2_service import MAX_TRANSACTIONS_PAGE
from ...utils.auth import token_required
from ...utils.validation import get_json_body, parse_limit, require_string

rewards_bp = Blueprint("loyalty_v2", __name__, url_prefix="/api/v1/loyalty")


@rewards_bp.route("/v2/me", methods=["GET"])
@token_required
def get_account():
    """
    Points account of the caller
    ---
    tags:
      - Loyalty v2
    security:
      - Bearer: []
    responses:
      200:
        description: currentBalance, lifetimeEarned, tier, enrolledAt, nextTier
    """
    state = get_services().loyalty_v2.get_account_state(g.user_id)
    return jsonify({"status": "success", "data": state}), 200


@rewards_bp.route("/v2/qr", methods=["POST"])
@token_required
def create_earn_qr():
    """
    Earn QR shown at the counter after a purchase
    ---
    tags:
      - Loyalty v2
    security:
      - Bearer: []
    responses:
      201:
        description: qrPayload (BC|v1|E|...) and expiresAt
    """
    qr = get_services().loyalty_v2.generate_earn_qr(g.user_id)
    return jsonify({"status": "success", "data": qr}), 201


@rewards_bp.route("/rewards", methods=["GET"])
@token_required
def list_rewards():
    """
    Active reward catalog, cheapest first
    ---
    tags:
      - Loyalty v2
    security:
      - Bearer: []
    responses:
      200:
        description: Rewards
    """
    rewards = get_services().loyalty_v2.list_active_rewards()
    return jsonify({"status": "success", "data": rewards}), 200


@rewards_bp.route("/rewards/redeem", methods=["POST"])
@token_required
def redeem_reward():
    """
    Spend points on a reward; creates a PENDING voucher
    ---
    tags:
      - Loyalty v2
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [rewardId]
          properties:
            rewardId: {type: string}
    responses:
      201:
        description: redemptionId, rewardName, pointsSpent, newBalance
      400:
        description: INSUFFICIENT_POINTS
      404:
        description: Reward not found or inactive
    """
    reward_id = require_string(get_json_body(), "rewardId", 36)
    result = get_services().loyalty_v2.redeem_reward(g.user_id, reward_id)
    return jsonify({"status": "success", "data": result}), 201


@rewards_bp.route("/transactions", methods=["GET"])
@token_required
def list_transactions():
    """
    GET /api/v1/loyalty/transactions?limit=20
    Purpose: Latest earn/redeem ledger entries of the caller (max 50).
    """
    limit = parse_limit(request.args.get("limit"), 20, MAX_TRANSACTIONS_PAGE)
    transactions = get_services().loyalty_v2.list_transactions(g.user_id, limit)
    return jsonify({"status": "success", "data": transactions}), 200


@rewards_bp.route("/redemptions", methods=["GET"])
@token_required
def list_redemptions():
    """
    GET /api/v1/loyalty/redemptions
    Purpose: Vouchers of the caller, newest first, PENDING and USED.
    """
    redemptions = get_services().loyalty_v2.list_redemptions(g.user_id)
    return jsonify({"status": "success", "data": redemptions}), 200


@rewards_bp.route("/redemptions/<redemption_id>/qr", methods=["POST"])
@token_required
def create_voucher_qr(redemption_id):
    """
    POST /api/v1/loyalty/redemptions/<redemption_id>/qr
    Purpose: (Re)issue the 30-day QR of a PENDING voucher.
    """
    qr = get_services().loyalty_v2.generate_voucher_qr(g.user_id, redemption_id)
    return jsonify({"status": "success", "data": qr}), 201
