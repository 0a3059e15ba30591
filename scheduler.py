import logging

from extensions import scheduler
from errors import StoreUnavailable
from lifecycle import expire_overdue

logger = logging.getLogger(__name__)


def init_scheduler(app):
    """ Starts the background clock """
    # Note: We do NOT create a new APScheduler() here.
    # We use the one imported from extensions.py, already bound in create_app.
    scheduler.add_job(
        id='expire_donations',
        func=expire_donations_job,
        trigger='interval',
        minutes=app.config['EXPIRY_SWEEP_MINUTES'],
        max_instances=1,
        replace_existing=True,
    )
    if not scheduler.running:
        scheduler.start()
    logger.info("Scheduler started: sweeping for expired donations every %s min",
                app.config['EXPIRY_SWEEP_MINUTES'])


# ==========================================
#  TASK: AUTO-EXPIRE DONATIONS
# ==========================================
def expire_donations_job():
    """
    Marks pending/approved donations past their expiry_time as 'expired'
    so they stop showing up as available.
    """
    # We must use scheduler.app.app_context() because this runs in the background
    with scheduler.app.app_context():
        try:
            expired = expire_overdue()
        except StoreUnavailable as e:
            logger.warning("Expiry sweep skipped: %s", e.message)
            return []
        if expired:
            logger.info("Scheduler: marked %d donation(s) as expired", len(expired))
        return expired
