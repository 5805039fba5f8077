"""
Loyalty v2: points as currency.

``current_balance`` is spendable and goes down on redemption.
``lifetime_earned`` only ever grows and drives the tier. Every earn and
redeem appends an immutable ``LoyaltyTransaction``.
"""

from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy import select, update

from ..errors import (
    ErrorCode,
    InvalidQRError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import (
    LoyaltyAccount,
    LoyaltyAccountQrToken,
    LoyaltyRedemptionVoucher,
    LoyaltyReward,
    LoyaltyTransaction,
    Offer,
    User,
    new_id,
    utcnow,
)
from ..utils.db import insert_ignore, unit_of_work
from ..utils.qr import QRType, decode_qr_payload, encode_qr_payload
from .ledger import LedgerService
from .tiers import cheapest_reward_cost, next_tier, tier_for

MAX_TRANSACTIONS_PAGE = 50


def points_for_price(price: int) -> int:
    """
    1 point per currency unit. Prices below 100 are read as major units
    (25 -> 25), anything else as minor units (2500 -> 25). A service priced
    exactly 100 major units is therefore read as 1 point.
    """
    if price < 100:
        return price
    return price // 100


def reward_to_dict(reward: LoyaltyReward) -> Dict[str, Any]:
    return {
        "id": reward.id,
        "name": reward.name,
        "costPoints": reward.cost_points,
        "description": reward.description,
        "imageUrl": reward.image_url,
        "isActive": reward.is_active,
    }


class LoyaltyV2Service(LedgerService):
    def __init__(self, config, push):
        super().__init__(config, push)
        self.earn_qr_ttl_seconds = config["LOYALTY_QR_TTL_SECONDS"]
        self.voucher_qr_ttl_seconds = config["VOUCHER_QR_TTL_SECONDS"]
        self.near_reward_threshold = config["NEAR_REWARD_THRESHOLD"]

    # ------------------------------------------------------------------
    # account
    # ------------------------------------------------------------------

    def ensure_account(self, user_id: str) -> LoyaltyAccount:
        """Find-or-create. Concurrent first accesses converge on one row through the unique user_id."""
        account = db.session.scalar(select(LoyaltyAccount).where(LoyaltyAccount.user_id == user_id))
        if account is not None:
            return account

        if db.session.get(User, user_id) is None:
            raise NotFoundError("User not found")

        with unit_of_work():
            result = insert_ignore(
                LoyaltyAccount,
                {
                    "id": new_id(),
                    "user_id": user_id,
                    "current_balance": 0,
                    "lifetime_earned": 0,
                    "enrolled_at": utcnow(),
                },
                conflict_cols=["user_id"],
            )
        if result.rowcount == 1:
            current_app.logger.info(f"LoyaltyAccount created for user {user_id}")

        account = db.session.scalar(select(LoyaltyAccount).where(LoyaltyAccount.user_id == user_id))
        if account is None:
            raise NotFoundError("User not found")
        return account

    def _balances(self, account_id: str):
        return db.session.execute(
            select(LoyaltyAccount.current_balance, LoyaltyAccount.lifetime_earned).where(
                LoyaltyAccount.id == account_id
            )
        ).one()

    def get_account_state(self, user_id: str) -> Dict[str, Any]:
        account = self.ensure_account(user_id)
        balance, lifetime = self._balances(account.id)
        upcoming = next_tier(lifetime)
        return {
            "currentBalance": balance,
            "lifetimeEarned": lifetime,
            "tier": tier_for(lifetime),
            "enrolledAt": account.enrolled_at.isoformat(),
            "nextTier": {"name": upcoming[0], "remainingPoints": upcoming[1]} if upcoming else None,
        }

    # ------------------------------------------------------------------
    # earn
    # ------------------------------------------------------------------

    def generate_earn_qr(self, user_id: str) -> Dict[str, Any]:
        account = self.ensure_account(user_id)
        raw, token_hash, expires_at = self.issue_token(self.earn_qr_ttl_seconds)
        with unit_of_work():
            db.session.add(
                LoyaltyAccountQrToken(account_id=account.id, token_hash=token_hash, expires_at=expires_at)
            )
        return {"qrPayload": encode_qr_payload(QRType.EARN, raw), "expiresAt": expires_at.isoformat()}

    def admin_earn_points(self, payload, service_id: str) -> Dict[str, Any]:
        parsed = decode_qr_payload(payload)
        if parsed is None or parsed.type != QRType.EARN:
            current_app.logger.warning("LOYALTY_EARN invalid_format")
            raise InvalidQRError()

        token_hash = self.hash(parsed.token)
        with unit_of_work():
            account_id = db.session.scalar(
                select(LoyaltyAccountQrToken.account_id).where(
                    LoyaltyAccountQrToken.token_hash == token_hash,
                    LoyaltyAccountQrToken.used_at.is_(None),
                    LoyaltyAccountQrToken.expires_at > utcnow(),
                )
            )
            if account_id is None:
                reason = self.rejection_reason(LoyaltyAccountQrToken, token_hash)
                current_app.logger.warning(f"LOYALTY_EARN {reason}")
                raise InvalidQRError()

            offer = db.session.scalar(select(Offer).where(Offer.id == service_id, Offer.is_active.is_(True)))
            if offer is None:
                raise NotFoundError("Service not found", code=ErrorCode.OFFER_NOT_FOUND)

            points = points_for_price(offer.price)
            if points <= 0:
                raise ValidationError("Invalid amount for this service")

            if not self.consume_token(LoyaltyAccountQrToken, token_hash):
                current_app.logger.warning("LOYALTY_EARN token_race_lost")
                raise InvalidQRError()

            db.session.execute(
                update(LoyaltyAccount)
                .where(LoyaltyAccount.id == account_id)
                .values(
                    current_balance=LoyaltyAccount.current_balance + points,
                    lifetime_earned=LoyaltyAccount.lifetime_earned + points,
                )
                .execution_options(synchronize_session=False)
            )
            db.session.add(
                LoyaltyTransaction(
                    account_id=account_id,
                    type="EARN",
                    points=points,
                    description=offer.title,
                    reference_id=offer.id,
                )
            )
            balance, lifetime = self._balances(account_id)
            user_id = db.session.scalar(select(LoyaltyAccount.user_id).where(LoyaltyAccount.id == account_id))

        previous_tier = tier_for(lifetime - points)
        new_tier = tier_for(lifetime)
        current_app.logger.info(
            f"LOYALTY_EARN account={account_id} points={points} balance={balance} lifetime={lifetime}"
        )

        self._notify_earn(user_id, points, balance, previous_tier, new_tier)

        return {
            "pointsEarned": points,
            "newBalance": balance,
            "newLifetime": lifetime,
            "newTier": new_tier,
        }

    def _notify_earn(self, user_id: str, points: int, balance: int, previous_tier: str, new_tier: str):
        self.notify_user(
            user_id,
            "Loyalty points",
            f"+{points} points. Balance: {balance} pts",
            {"type": "LOYALTY_EARN", "pointsEarned": str(points), "newBalance": str(balance)},
        )
        if new_tier != previous_tier:
            self.notify_user(
                user_id, "New status", f"You reached {new_tier}", {"type": "LOYALTY_TIER", "tier": new_tier}
            )

        try:
            cheapest = cheapest_reward_cost(
                db.session.scalars(select(LoyaltyReward.cost_points).where(LoyaltyReward.is_active.is_(True))).all()
            )
        except Exception as e:
            current_app.logger.warning(f"Near-reward check failed for user {user_id}: {e}")
            return
        if cheapest is not None:
            gap = cheapest - balance
            if 0 < gap <= self.near_reward_threshold:
                self.notify_user(
                    user_id,
                    "Almost there",
                    f"Only {gap} points to your next reward",
                    {"type": "LOYALTY_NEAR_REWARD"},
                )

    # ------------------------------------------------------------------
    # rewards and vouchers
    # ------------------------------------------------------------------

    def list_active_rewards(self) -> List[Dict[str, Any]]:
        rewards = db.session.scalars(
            select(LoyaltyReward).where(LoyaltyReward.is_active.is_(True)).order_by(LoyaltyReward.cost_points.asc())
        ).all()
        return [reward_to_dict(r) for r in rewards]

    def redeem_reward(self, user_id: str, reward_id: str) -> Dict[str, Any]:
        account = self.ensure_account(user_id)
        reward = db.session.scalar(
            select(LoyaltyReward).where(LoyaltyReward.id == reward_id, LoyaltyReward.is_active.is_(True))
        )
        if reward is None:
            raise NotFoundError("Reward not found or inactive")

        cost = reward.cost_points
        with unit_of_work():
            result = db.session.execute(
                update(LoyaltyAccount)
                .where(LoyaltyAccount.id == account.id, LoyaltyAccount.current_balance >= cost)
                .values(current_balance=LoyaltyAccount.current_balance - cost)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ValidationError("Insufficient points", code=ErrorCode.INSUFFICIENT_POINTS)

            voucher = LoyaltyRedemptionVoucher(
                id=new_id(),
                account_id=account.id,
                reward_id=reward.id,
                points_spent=cost,
                status="PENDING",
            )
            db.session.add(voucher)
            db.session.add(
                LoyaltyTransaction(
                    account_id=account.id,
                    type="REDEEM",
                    points=-cost,
                    description=reward.name,
                    reference_id=voucher.id,
                )
            )
            balance, _ = self._balances(account.id)

        current_app.logger.info(f"Reward {reward.id} redeemed by user {user_id}, balance {balance}")
        return {
            "redemptionId": voucher.id,
            "rewardName": reward.name,
            "pointsSpent": cost,
            "newBalance": balance,
        }

    def generate_voucher_qr(self, user_id: str, redemption_id: str) -> Dict[str, Any]:
        """(Re)issue the voucher QR. Only the latest issued QR stays valid."""
        account = self.ensure_account(user_id)
        raw, token_hash, expires_at = self.issue_token(self.voucher_qr_ttl_seconds)
        with unit_of_work():
            result = db.session.execute(
                update(LoyaltyRedemptionVoucher)
                .where(
                    LoyaltyRedemptionVoucher.id == redemption_id,
                    LoyaltyRedemptionVoucher.account_id == account.id,
                    LoyaltyRedemptionVoucher.status == "PENDING",
                )
                .values(qr_token_hash=token_hash, qr_expires_at=expires_at, qr_used_at=None)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise NotFoundError("Voucher invalid or already used", code=ErrorCode.INVALID_OR_EXPIRED_QR)

        return {"qrPayload": encode_qr_payload(QRType.VOUCHER, raw), "expiresAt": expires_at.isoformat()}

    def admin_redeem_voucher(self, payload) -> Dict[str, Any]:
        parsed = decode_qr_payload(payload)
        if parsed is None or parsed.type != QRType.VOUCHER:
            current_app.logger.warning("VOUCHER_REDEEM invalid_format")
            raise InvalidQRError(code=ErrorCode.INVALID_OR_EXPIRED_QR)

        token_hash = self.hash(parsed.token)
        now = utcnow()
        with unit_of_work():
            result = db.session.execute(
                update(LoyaltyRedemptionVoucher)
                .where(
                    LoyaltyRedemptionVoucher.qr_token_hash == token_hash,
                    LoyaltyRedemptionVoucher.status == "PENDING",
                    LoyaltyRedemptionVoucher.qr_used_at.is_(None),
                    (LoyaltyRedemptionVoucher.qr_expires_at.is_(None))
                    | (LoyaltyRedemptionVoucher.qr_expires_at > now),
                )
                .values(status="USED", used_at=now, qr_used_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                current_app.logger.warning("VOUCHER_REDEEM not_found_used_or_expired")
                raise InvalidQRError(code=ErrorCode.INVALID_OR_EXPIRED_QR)

            row = db.session.execute(
                select(LoyaltyReward.name, LoyaltyAccount.current_balance, LoyaltyAccount.user_id)
                .join(LoyaltyRedemptionVoucher, LoyaltyRedemptionVoucher.reward_id == LoyaltyReward.id)
                .join(LoyaltyAccount, LoyaltyAccount.id == LoyaltyRedemptionVoucher.account_id)
                .where(LoyaltyRedemptionVoucher.qr_token_hash == token_hash)
            ).one()

        reward_name, balance, user_id = row
        current_app.logger.info(f"Voucher for {reward_name} fulfilled for user {user_id}")
        self.notify_user(
            user_id,
            "Voucher used",
            f"{reward_name} was validated. Balance: {balance} pts",
            {"type": "LOYALTY_REDEEMED", "rewardName": reward_name, "newBalance": str(balance)},
        )
        return {"success": True, "rewardName": reward_name, "newBalance": balance}

    # ------------------------------------------------------------------
    # history
    # ------------------------------------------------------------------

    def list_transactions(self, user_id: str, limit: Optional[int] = 20) -> List[Dict[str, Any]]:
        account = self.ensure_account(user_id)
        limit = max(1, min(limit or 20, MAX_TRANSACTIONS_PAGE))
        rows = db.session.scalars(
            select(LoyaltyTransaction)
            .where(LoyaltyTransaction.account_id == account.id)
            .order_by(LoyaltyTransaction.created_at.desc(), LoyaltyTransaction.id.desc())
            .limit(limit)
        ).all()
        return [
            {
                "id": t.id,
                "type": t.type,
                "points": t.points,
                "description": t.description,
                "createdAt": t.created_at.isoformat(),
            }
            for t in rows
        ]

    def list_redemptions(self, user_id: str) -> List[Dict[str, Any]]:
        account = self.ensure_account(user_id)
        rows = db.session.execute(
            select(LoyaltyRedemptionVoucher, LoyaltyReward.name)
            .join(LoyaltyReward, LoyaltyReward.id == LoyaltyRedemptionVoucher.reward_id)
            .where(LoyaltyRedemptionVoucher.account_id == account.id)
            .order_by(LoyaltyRedemptionVoucher.redeemed_at.desc())
        ).all()
        return [
            {
                "id": voucher.id,
                "rewardName": reward_name,
                "pointsSpent": voucher.points_spent,
                "status": voucher.status,
                "redeemedAt": voucher.redeemed_at.isoformat(),
                "usedAt": voucher.used_at.isoformat() if voucher.used_at else None,
            }
            for voucher, reward_name in rows
        ]

    def list_services_for_admin(self) -> List[Dict[str, Any]]:
        offers = db.session.scalars(
            select(Offer).where(Offer.is_active.is_(True)).order_by(Offer.title.asc())
        ).all()
        return [
            {
                "id": o.id,
                "name": o.title,
                "priceCents": o.price if o.price >= 100 else o.price * 100,
                "pointsEarned": points_for_price(o.price),
            }
            for o in offers
        ]
