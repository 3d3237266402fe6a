"""
Plan maintenance tasks - trial expiry.
"""

import logging

from ..celery_app import celery_app
from ..database import SessionLocal
from ..services.entitlement_service import EntitlementService

logger = logging.getLogger(__name__)


@celery_app.task(name="saas_core.tasks.plan_tasks.expire_trial_plans")
def expire_trial_plans(dry_run: bool = False):
    """Expire free-tier associations whose trial window has closed."""
    logger.info(f"Expiring trial plans (dry_run={dry_run})...")

    db = SessionLocal()
    try:
        expired = EntitlementService(db).expire_trial_plans(dry_run=dry_run)
    finally:
        db.close()

    logger.info(f"Trial expiry finished: {len(expired)} association(s)")
    return {"status": "completed", "dry_run": dry_run, "expired": expired}
