"""
Notification Tasks - Celery app and transactional email delivery
"""
import smtplib
from typing import Dict, Any
from datetime import datetime, timezone

from celery import Celery

from ..core.config import settings
from ..core.events import EventKind
from ..services.email_service import email_service
import logging

logger = logging.getLogger(__name__)

# Initialize Celery
celery_app = Celery(
    'marketminds_tasks',
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=['marketminds.tasks.subscriptions']
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_ignore_result=True,
    task_routes={
        'marketminds.tasks.notifications.*': {'queue': 'notifications'},
        'marketminds.tasks.subscriptions.*': {'queue': 'maintenance'},
    }
)

@celery_app.task(bind=True, max_retries=3)
def send_notification(self, kind: str, payload: Dict[str, Any]):
    """
    Render and deliver one notification email
    """
    event = EventKind(kind)
    try:
        message = email_service.deliver(event, payload)
    except ValueError as e:
        # Bad recipient/template data will not improve on retry
        logger.error(f"Dropping {kind} notification: {e}")
        return {'status': 'dropped', 'kind': kind, 'error': str(e)}
    except (smtplib.SMTPException, OSError) as exc:
        logger.error(f"{kind} email delivery failed (attempt {self.request.retries + 1}): {exc}")
        raise self.retry(exc=exc, countdown=30 * (2 ** self.request.retries))

    return {
        'status': 'sent',
        'kind': kind,
        'to': message.to,
        'sent_at': datetime.now(timezone.utc).isoformat()
    }

@celery_app.task
def health_check():
    """
    Health check task to verify the task queue is working
    """
    return {
        'status': 'healthy',
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'queue': 'notifications'
    }
