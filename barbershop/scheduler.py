from apscheduler.schedulers.background import BackgroundScheduler
import atexit
from datetime import timedelta
from sqlalchemy import delete
from .extensions import db
from .models import (
    LoyaltyAccountQrToken,
    LoyaltyQrToken,
    LoyaltyRedemptionToken,
    TimifyReservation,
    utcnow,
)

scheduler = BackgroundScheduler()

# Expired rows are kept this long for support lookups before they are purged
RETENTION = timedelta(days=1)


def purge_expired_rows():
    """Delete expired unused QR tokens and stale reservations. Returns the count per table."""
    cutoff = utcnow() - RETENTION
    counts = {}
    for model in (LoyaltyRedemptionToken, LoyaltyQrToken, LoyaltyAccountQrToken):
        result = db.session.execute(
            delete(model)
            .where(model.used_at.is_(None), model.expires_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        counts[model.__tablename__] = result.rowcount

    result = db.session.execute(
        delete(TimifyReservation)
        .where(TimifyReservation.used_at.is_(None), TimifyReservation.expires_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    counts[TimifyReservation.__tablename__] = result.rowcount
    db.session.commit()
    return counts


def init_scheduler(app):
    """Initialize the APScheduler scheduler with Flask app context."""

    @scheduler.scheduled_job("interval", minutes=30, id="purge_expired_rows", replace_existing=True)
    def scheduled_task():
        """Storage hygiene only; expiry is always checked at read time."""
        with app.app_context():
            try:
                counts = purge_expired_rows()
                app.logger.info(f"[SCHEDULER] Purged expired rows: {counts}")
            except Exception as e:
                db.session.rollback()
                app.logger.error(f"[SCHEDULER] Error purging expired rows: {e}")

    if not scheduler.running:
        scheduler.start()
        app.logger.info("[SCHEDULER] Scheduler started")
    else:
        app.logger.info("[SCHEDULER] Scheduler already running (skipping duplicate start)")

    # Shut down the scheduler when exiting the app
    atexit.register(lambda: scheduler.shutdown(wait=False))
