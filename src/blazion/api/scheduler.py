"""Cron-driven background sync passes."""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from blazion.config import SyncSettings
from blazion.coordination.state import SyncCoordinator, SyncOutcomeStatus, SyncTrigger

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "sync"
IMAGE_REFRESH_JOB_ID = "image-refresh"


def build_scheduler(coordinator: SyncCoordinator, settings: SyncSettings) -> BackgroundScheduler:
    """Scheduler with the full sync and image refresh jobs; the caller starts it."""

    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        run_scheduled_sync,
        CronTrigger.from_crontab(settings.sync_cron, timezone="UTC"),
        args=[coordinator],
        id=SYNC_JOB_ID,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        run_scheduled_image_refresh,
        CronTrigger.from_crontab(settings.image_refresh_cron, timezone="UTC"),
        args=[coordinator],
        id=IMAGE_REFRESH_JOB_ID,
        max_instances=1,
        coalesce=True,
    )
    return scheduler


def run_scheduled_sync(coordinator: SyncCoordinator) -> None:
    try:
        outcome = coordinator.run_sync(SyncTrigger.CRON)
    except Exception:  # noqa: BLE001
        logger.exception("Scheduled sync failed")
        return
    if outcome.status == SyncOutcomeStatus.IN_PROGRESS:
        logger.info("Scheduled sync skipped: a sync is already running")
        return
    logger.info("Scheduled sync finished: %s", outcome.result.as_dict() if outcome.result else {})


def run_scheduled_image_refresh(coordinator: SyncCoordinator) -> None:
    try:
        outcome = coordinator.run_image_refresh(SyncTrigger.CRON)
    except Exception:  # noqa: BLE001
        logger.exception("Scheduled image URL refresh failed")
        return
    if outcome.status != SyncOutcomeStatus.COMPLETED:
        logger.info("Scheduled image URL refresh skipped: a refresh is already running")
        return
    logger.info(
        "Scheduled image URL refresh finished: %s",
        outcome.result.as_dict() if outcome.result else {},
    )
