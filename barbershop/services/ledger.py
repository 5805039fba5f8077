from datetime import timedelta
from typing import Dict, Optional, Tuple

from flask import current_app
from sqlalchemy import select, update

from ..extensions import db
from ..models import User, utcnow
from ..utils.qr import generate_token, hash_token


class LedgerService:
    """
    Capabilities shared by the legacy and v2 loyalty ledgers:
    issuing hashed single-use tokens, consuming them exactly once and
    best-effort push notifications.
    """

    def __init__(self, config, push):
        self.pepper = config["QR_TOKEN_PEPPER"]
        self.push = push

    def hash(self, raw_token: str) -> str:
        return hash_token(raw_token, self.pepper)

    def issue_token(self, ttl_seconds: int) -> Tuple[str, str, object]:
        """Return (raw token, token hash, expiry)."""
        raw = generate_token()
        return raw, self.hash(raw), utcnow() + timedelta(seconds=ttl_seconds)

    def consume_token(self, model, token_hash: str) -> bool:
        """
        Mark an unused, unexpired token as used in one conditional UPDATE.
        Exactly one concurrent caller gets True.
        """
        now = utcnow()
        result = db.session.execute(
            update(model)
            .where(
                model.token_hash == token_hash,
                model.used_at.is_(None),
                model.expires_at > now,
            )
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def rejection_reason(self, model, token_hash: str) -> str:
        """Internal reason a token was refused; logged, never returned."""
        row = db.session.execute(
            select(model.used_at, model.expires_at).where(model.token_hash == token_hash)
        ).first()
        if row is None:
            return "token_not_found"
        if row.used_at is not None:
            return "token_used"
        if row.expires_at <= utcnow():
            return "token_expired"
        return "token_race_lost"

    def notify_user(self, user_id: str, title: str, body: str, data: Optional[Dict[str, str]] = None):
        """Send a push to the user's device. Failures are logged and swallowed."""
        try:
            device_token = db.session.scalar(select(User.fcm_token).where(User.id == user_id))
            if not device_token:
                current_app.logger.info(f"No FCM token for user {user_id}, skip push")
                return False
            return self.push.send(device_token, title, body, data or {})
        except Exception as e:
            current_app.logger.warning(f"Push to user {user_id} failed: {e}")
            return False
