from datetime import date, timedelta

from sqlalchemy import func, select

from barbershop.models import LoyaltyQrToken, LoyaltyRedemptionToken, TimifyReservation, utcnow
from barbershop.scheduler import purge_expired_rows


def test_purge_keeps_recent_and_used_rows(db_session, sample_user):
    now = utcnow()
    db_session.add_all([
        LoyaltyQrToken(user_id=sample_user.id, token_hash="a" * 64, expires_at=now - timedelta(days=2)),
        LoyaltyQrToken(user_id=sample_user.id, token_hash="b" * 64, expires_at=now - timedelta(hours=1)),
        LoyaltyQrToken(
            user_id=sample_user.id, token_hash="c" * 64, expires_at=now - timedelta(days=2), used_at=now - timedelta(days=3)
        ),
        LoyaltyRedemptionToken(user_id=sample_user.id, token_hash="d" * 64, expires_at=now - timedelta(days=5)),
        TimifyReservation(
            user_id=sample_user.id,
            branch_id="branch-1",
            service_id="svc-1",
            reserved_date=date(2020, 1, 1),
            reserved_time="10:00",
            timify_reservation_id="r1",
            timify_secret="s",
            expires_at=now - timedelta(days=2),
        ),
    ])
    db_session.commit()

    counts = purge_expired_rows()

    assert counts["loyalty_qr_tokens"] == 1
    assert counts["loyalty_redemption_tokens"] == 1
    assert counts["loyalty_account_qr_tokens"] == 0
    assert counts["timify_reservations"] == 1
    assert db_session.scalar(select(func.count(LoyaltyQrToken.id))) == 2
