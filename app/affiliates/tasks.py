"""
Celery tasks for affiliate commissions.

Periodic tasks (registered with django-celery-beat by a data migration):
- approve_matured_commissions: hourly, promote matured pending commissions
- purge_expired_ip_intel: daily, delete expired IP reputation cache rows

Usage:
    from affiliates.tasks import approve_matured_commissions

    approve_matured_commissions.delay()
"""

from __future__ import annotations

import logging

from celery import shared_task

from affiliates.services.commission_engine import CommissionEngine
from affiliates.services.ip_intelligence import IpIntelligenceCache

logger = logging.getLogger(__name__)


@shared_task
def approve_matured_commissions() -> dict:
    """
    Approve pending commissions whose hold period has passed.

    Fraud-held commissions are never touched.

    Returns:
        Dict with the number of commissions approved
    """
    approved = CommissionEngine.approve_matured()
    logger.info(
        "Matured commission approval complete",
        extra={"approved_count": approved},
    )
    return {"approved": approved}


@shared_task
def purge_expired_ip_intel() -> dict:
    """
    Delete expired IP reputation cache rows.

    Lookups also evict their own expired row; this catches addresses that
    are never looked up again.

    Returns:
        Dict with the number of rows deleted
    """
    deleted = IpIntelligenceCache.purge_expired()
    logger.info(
        "Expired IP intelligence purged",
        extra={"deleted_count": deleted},
    )
    return {"deleted": deleted}
