"""
Legacy loyalty card.

Two counters live here: ``LoyaltyState.stamps`` (one per confirmed booking,
redeemed by a staff scan that resets the card) and ``User.loyalty_points``
(one per staff scan of the user's point QR, turning into a coupon at the
target).
"""

from typing import Any, Dict, List

from flask import current_app
from sqlalchemy import func, select, update

from ..errors import ErrorCode, InvalidQRError, NotFoundError, ValidationError
from ..events import booking_confirmed
from ..extensions import db
from ..models import (
    LoyaltyCoupon,
    LoyaltyQrToken,
    LoyaltyRedemption,
    LoyaltyRedemptionToken,
    LoyaltyState,
    User,
    new_id,
    utcnow,
)
from ..utils.db import insert_or_update, unit_of_work
from ..utils.qr import QRType, decode_qr_payload, encode_qr_payload
from .ledger import LedgerService


def _invalid_qr(reason: str, scope: str) -> InvalidQRError:
    current_app.logger.warning(f"{scope} {reason}")
    return InvalidQRError(code=ErrorCode.INVALID_OR_EXPIRED_QR)


class LoyaltyService(LedgerService):
    def __init__(self, config, push):
        super().__init__(config, push)
        self.target = config["LOYALTY_TARGET"]
        self.qr_ttl_seconds = config["LOYALTY_QR_TTL_SECONDS"]

    # ------------------------------------------------------------------
    # stamps
    # ------------------------------------------------------------------

    def get_stamps(self, user_id: str) -> int:
        stamps = db.session.scalar(select(LoyaltyState.stamps).where(LoyaltyState.user_id == user_id))
        return stamps or 0

    def get_state(self, user_id: str) -> Dict[str, Any]:
        stamps = self.get_stamps(user_id)
        points = db.session.scalar(select(User.loyalty_points).where(User.id == user_id)) or 0
        available_coupons = db.session.scalar(
            select(func.count(LoyaltyCoupon.id)).where(
                LoyaltyCoupon.user_id == user_id, LoyaltyCoupon.redeemed_at.is_(None)
            )
        )
        return {
            "stamps": stamps,
            "target": self.target,
            "remaining": max(0, self.target - stamps),
            "eligible": stamps >= self.target,
            "points": points,
            "availableCoupons": available_coupons or 0,
        }

    def increment_stamps(self, user_id: str, amount: int = 1):
        """
        Atomic upsert of the stamp counter. Does not commit: callers run it
        inside their own unit of work.
        """
        insert_or_update(
            LoyaltyState,
            {"id": new_id(), "user_id": user_id, "stamps": amount, "updated_at": utcnow()},
            conflict_cols=["user_id"],
            set_={"stamps": LoyaltyState.stamps + amount, "updated_at": utcnow()},
        )
        current_app.logger.info(f"Loyalty stamps incremented for user {user_id} by {amount}")

    def subscribe(self, booking_service):
        """Award one stamp per confirmed booking, inside the confirming transaction."""
        booking_confirmed.connect(self._on_booking_confirmed, sender=booking_service, weak=False)

    def _on_booking_confirmed(self, sender, booking=None, **kwargs):
        self.increment_stamps(booking.user_id)

    def redeem(self, user_id: str) -> Dict[str, Any]:
        with unit_of_work():
            result = db.session.execute(
                update(LoyaltyState)
                .where(LoyaltyState.user_id == user_id, LoyaltyState.stamps >= self.target)
                .values(stamps=LoyaltyState.stamps - self.target, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ValidationError(
                    "Not enough stamps to redeem reward",
                    code=ErrorCode.BOOKING_VALIDATION_ERROR,
                )

        current_app.logger.info(f"Loyalty reward redeemed for user {user_id}")
        return {"success": True, "stamps": self.get_stamps(user_id)}

    def generate_qr(self, user_id: str) -> Dict[str, Any]:
        """Issue the card-reset QR. Any still-active token for the user is invalidated."""
        if self.get_stamps(user_id) < self.target:
            raise ValidationError("Loyalty target not reached", code=ErrorCode.LOYALTY_NOT_READY)

        raw, token_hash, expires_at = self.issue_token(self.qr_ttl_seconds)
        now = utcnow()
        with unit_of_work():
            db.session.execute(
                update(LoyaltyRedemptionToken)
                .where(
                    LoyaltyRedemptionToken.user_id == user_id,
                    LoyaltyRedemptionToken.used_at.is_(None),
                    LoyaltyRedemptionToken.expires_at > now,
                )
                .values(used_at=now)
                .execution_options(synchronize_session=False)
            )
            db.session.add(
                LoyaltyRedemptionToken(user_id=user_id, token_hash=token_hash, expires_at=expires_at)
            )

        current_app.logger.info(f"Redemption QR generated for user {user_id}, expires {expires_at.isoformat()}")
        return {"qrPayload": encode_qr_payload(QRType.POINT, raw), "expiresAt": expires_at.isoformat()}

    def scan_qr(self, payload) -> Dict[str, Any]:
        """Staff scan of a card-reset QR. Single use; the loser of a race gets INVALID_OR_EXPIRED_QR."""
        parsed = decode_qr_payload(payload)
        if parsed is None or parsed.type != QRType.POINT:
            raise _invalid_qr("invalid_format", "LOYALTY_REDEEM_SCAN")

        token_hash = self.hash(parsed.token)
        with unit_of_work():
            if not self.consume_token(LoyaltyRedemptionToken, token_hash):
                raise _invalid_qr(self.rejection_reason(LoyaltyRedemptionToken, token_hash), "LOYALTY_REDEEM_SCAN")

            user_id = db.session.scalar(
                select(LoyaltyRedemptionToken.user_id).where(LoyaltyRedemptionToken.token_hash == token_hash)
            )
            previous_stamps = self.get_stamps(user_id)
            db.session.add(LoyaltyRedemption(user_id=user_id, previous_stamps=previous_stamps))
            db.session.execute(
                update(LoyaltyState)
                .where(LoyaltyState.user_id == user_id)
                .values(stamps=0, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )

        current_app.logger.info(f"Loyalty card redeemed for user {user_id}, previous stamps {previous_stamps}")
        return {"status": "redeemed", "resetStamps": True}

    # ------------------------------------------------------------------
    # point card and coupons
    # ------------------------------------------------------------------

    def generate_point_qr(self, user_id: str) -> Dict[str, Any]:
        raw, token_hash, expires_at = self.issue_token(self.qr_ttl_seconds)
        with unit_of_work():
            db.session.add(LoyaltyQrToken(user_id=user_id, token_hash=token_hash, expires_at=expires_at))

        current_app.logger.info(f"Point QR generated for user {user_id}")
        return {"qrPayload": encode_qr_payload(QRType.POINT, raw), "expiresAt": expires_at.isoformat()}

    def admin_scan_point_qr(self, payload) -> Dict[str, Any]:
        parsed = decode_qr_payload(payload)
        if parsed is None or parsed.type != QRType.POINT:
            raise _invalid_qr("invalid_format", "LOYALTY_SCAN")

        token_hash = self.hash(parsed.token)
        reward_earned = False
        with unit_of_work():
            if not self.consume_token(LoyaltyQrToken, token_hash):
                raise _invalid_qr(self.rejection_reason(LoyaltyQrToken, token_hash), "LOYALTY_SCAN")

            user_id = db.session.scalar(
                select(LoyaltyQrToken.user_id).where(LoyaltyQrToken.token_hash == token_hash)
            )
            db.session.execute(
                update(User)
                .where(User.id == user_id)
                .values(loyalty_points=User.loyalty_points + 1)
                .execution_options(synchronize_session=False)
            )
            # reset only if this scan reached the target
            result = db.session.execute(
                update(User)
                .where(User.id == user_id, User.loyalty_points >= self.target)
                .values(loyalty_points=0)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                db.session.add(LoyaltyCoupon(user_id=user_id))
                reward_earned = True

            points = db.session.scalar(select(User.loyalty_points).where(User.id == user_id))

        current_app.logger.info(f"Point QR scanned for user {user_id}: points={points} reward={reward_earned}")

        if reward_earned:
            self.notify_user(user_id, "Reward unlocked", "Your free haircut is available.", {"type": "LOYALTY_REWARD"})
        else:
            self.notify_user(user_id, "Loyalty point added", "Your loyalty card was updated.", {"type": "LOYALTY_POINT"})

        return {"success": True, "rewardEarned": reward_earned, "points": points}

    def list_coupons(self, user_id: str) -> List[Dict[str, Any]]:
        coupons = db.session.scalars(
            select(LoyaltyCoupon)
            .where(LoyaltyCoupon.user_id == user_id, LoyaltyCoupon.redeemed_at.is_(None))
            .order_by(LoyaltyCoupon.created_at.desc())
        ).all()
        return [{"id": c.id, "createdAt": c.created_at.isoformat()} for c in coupons]

    def generate_coupon_qr(self, user_id: str, coupon_id: str) -> Dict[str, Any]:
        raw, token_hash, expires_at = self.issue_token(self.qr_ttl_seconds)
        with unit_of_work():
            result = db.session.execute(
                update(LoyaltyCoupon)
                .where(
                    LoyaltyCoupon.id == coupon_id,
                    LoyaltyCoupon.user_id == user_id,
                    LoyaltyCoupon.redeemed_at.is_(None),
                )
                .values(qr_token_hash=token_hash, qr_expires_at=expires_at, qr_used_at=None)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise NotFoundError("Coupon not found or already used", code=ErrorCode.INVALID_OR_EXPIRED_QR)

        current_app.logger.info(f"Coupon QR generated for user {user_id}, coupon {coupon_id}")
        return {"qrPayload": encode_qr_payload(QRType.COUPON, raw), "expiresAt": expires_at.isoformat()}

    def redeem_coupon(self, payload) -> Dict[str, Any]:
        parsed = decode_qr_payload(payload)
        if parsed is None or parsed.type != QRType.COUPON:
            raise _invalid_qr("invalid_format", "COUPON_REDEEM")

        token_hash = self.hash(parsed.token)
        now = utcnow()
        with unit_of_work():
            result = db.session.execute(
                update(LoyaltyCoupon)
                .where(
                    LoyaltyCoupon.qr_token_hash == token_hash,
                    LoyaltyCoupon.redeemed_at.is_(None),
                    LoyaltyCoupon.qr_used_at.is_(None),
                    LoyaltyCoupon.qr_expires_at > now,
                )
                .values(redeemed_at=now, qr_used_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise _invalid_qr("token_not_found_used_or_expired", "COUPON_REDEEM")

        current_app.logger.info("Coupon redeemed")
        return {"success": True}
