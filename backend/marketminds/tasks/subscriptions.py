"""
Subscription Tasks - daily expiry sweep and grant reconciliation
"""
from datetime import datetime, timezone

from celery.schedules import crontab
from redis.exceptions import LockError, RedisError

from ..core.config import settings
from ..core.database import SessionLocal, redis_client
from ..services.notification_service import notification_service
from ..services.payment_workflow import PaymentWorkflowService
from ..services.subscription_sweep import run_expiry_sweep
from .notifications import celery_app
import logging

logger = logging.getLogger(__name__)

SWEEP_LOCK_NAME = "marketminds:subscription-sweep"


def sweep_subscriptions() -> dict:
    """Reconcile approved-but-ungranted requests, then run the expiry sweep."""
    db = SessionLocal()
    try:
        reconciled = PaymentWorkflowService(db, notification_service).reconcile_ungranted()
        result = run_expiry_sweep(db, notification_service)
    finally:
        db.close()

    summary = result.to_dict()
    summary["reconciled"] = reconciled
    return summary


@celery_app.task
def run_subscription_sweep():
    """
    Periodic task; a Redis lock keeps overlapping invocations from sweeping
    twice at the same time.
    """
    lock = redis_client.lock(SWEEP_LOCK_NAME, timeout=settings.SWEEP_LOCK_TIMEOUT_SECONDS)
    try:
        acquired = lock.acquire(blocking=False)
    except RedisError as e:
        logger.error(f"Could not reach Redis for the sweep lock: {e}")
        return {'status': 'error', 'message': str(e)}

    if not acquired:
        logger.info("Subscription sweep already running; skipping")
        return {'status': 'skipped'}

    try:
        summary = sweep_subscriptions()
    except Exception as e:
        # The sweep reports per-user failures itself; this is a setup failure
        logger.error(f"Subscription sweep failed: {e}")
        return {'status': 'error', 'message': str(e)}
    finally:
        try:
            lock.release()
        except LockError as e:
            logger.error(f"Sweep lock expired before release: {e}")

    summary.update({
        'status': 'completed',
        'finished_at': datetime.now(timezone.utc).isoformat(),
    })
    return summary


# Periodic tasks configuration
celery_app.conf.beat_schedule = {
    'subscription-expiry-sweep': {
        'task': 'marketminds.tasks.subscriptions.run_subscription_sweep',
        'schedule': crontab(minute=0, hour=0),  # Daily at midnight UTC
    },
    'health-check': {
        'task': 'marketminds.tasks.notifications.health_check',
        'schedule': 300.0,  # Run every 5 minutes
    },
}
