"""
Celery configuration for background jobs.
"""

from celery import Celery
from celery.signals import setup_logging as celery_setup_logging

from .config import settings
from .logging_config import setup_logging

celery_app = Celery(
    "saas_core",
    broker=settings.CELERY_BROKER_URL or settings.REDIS_URL,
    backend=settings.CELERY_RESULT_BACKEND or settings.REDIS_URL,
    include=[
        'saas_core.tasks.plan_tasks',
    ]
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    task_routes={
        'saas_core.tasks.plan_tasks.*': {'queue': 'plans'},
    },

    # Task execution
    task_acks_late=True,
    worker_prefetch_multiplier=1,

    # Retry policy
    task_default_retry_delay=60,  # 1 minute
    task_max_retries=3,

    result_expires=3600,  # 1 hour

    beat_schedule={
        'expire-trial-plans': {
            'task': 'saas_core.tasks.plan_tasks.expire_trial_plans',
            'schedule': settings.TRIAL_EXPIRY_SCHEDULE_SECONDS,
        },
    },
)


@celery_setup_logging.connect
def configure_worker_logging(**kwargs):
    """Workers log through the package formatter instead of Celery's own."""
    setup_logging()
