"""
Background scheduler for loyalty maintenance jobs.

Handles:
- Discount outbox delivery (every OUTBOX_POLL_MINUTES)
- Expired window entries (daily at EXPIRATION_SWEEP_HOUR UTC)
- Expired earned rewards (daily, 30 minutes after the window sweep)

Jobs are (trigger, handler) pairs registered on a LoyaltyScheduler owned by
the Flask app (``app.extensions['loyalty_scheduler']``). Handlers run inside
an application context; a failing handler is logged and its session rolled
back, and the next run proceeds normally.
"""
import atexit
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

JOB_DEFAULTS = {
    'coalesce': True,  # Combine missed runs
    'max_instances': 1,  # Prevent concurrent runs
    'misfire_grace_time': 3600  # 1 hour grace period
}


@dataclass
class ScheduledJob:
    id: str
    name: str
    trigger: BaseTrigger
    handler: Callable[[], object]


class LoyaltyScheduler:
    """
    Explicit job registry with a start/stop lifecycle.

    Usage:
        scheduler = LoyaltyScheduler(app)
        scheduler.register('outbox', 'Deliver discounts', IntervalTrigger(minutes=1), drain_outbox)
        scheduler.start()
        ...
        scheduler.stop()
    """

    def __init__(self, app, timezone: str = 'UTC'):
        self.app = app
        self.timezone = timezone
        self._jobs: Dict[str, ScheduledJob] = {}
        self._scheduler: Optional[BackgroundScheduler] = None

    def register(self, job_id: str, name: str, trigger: BaseTrigger, handler: Callable[[], object]) -> ScheduledJob:
        if job_id in self._jobs:
            raise ValueError(f'Job {job_id} is already registered')
        job = ScheduledJob(id=job_id, name=name, trigger=trigger, handler=handler)
        self._jobs[job_id] = job
        if self._scheduler is not None:
            self._add_to_backend(job)
        return job

    @property
    def jobs(self) -> List[ScheduledJob]:
        return list(self._jobs.values())

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        if self.running:
            return
        self._scheduler = BackgroundScheduler(timezone=self.timezone, job_defaults=JOB_DEFAULTS)
        for job in self._jobs.values():
            self._add_to_backend(job)
        self._scheduler.start()
        logger.info(f'[Scheduler] Started with {len(self._jobs)} jobs: {", ".join(self._jobs)}')

    def stop(self, wait: bool = False) -> None:
        if self.running:
            self._scheduler.shutdown(wait=wait)
            logger.info('[Scheduler] Shutdown complete')
        self._scheduler = None

    def run_job(self, job_id: str):
        """Run a registered job immediately, in the caller's thread."""
        return self._run(self._jobs[job_id])

    def _add_to_backend(self, job: ScheduledJob) -> None:
        self._scheduler.add_job(
            self._run,
            trigger=job.trigger,
            args=[job],
            id=job.id,
            name=job.name,
            replace_existing=True
        )

    def _run(self, job: ScheduledJob):
        with self.app.app_context():
            try:
                return job.handler()
            except Exception as e:
                from ..extensions import db
                db.session.rollback()
                logger.error(f'[Scheduler] Job {job.id} failed: {e}')
                return None


# ==================== Job handlers ====================

def drain_discount_outbox() -> Dict[str, int]:
    """Deliver due discount provisioning and cleanup requests for every merchant."""
    from ..services.discount_outbox import DiscountOutbox, merchants_with_pending_items

    totals = {'merchants': 0, 'processed': 0, 'failed': 0}
    for merchant_id in merchants_with_pending_items():
        stats = DiscountOutbox(merchant_id).process_pending()
        totals['merchants'] += 1
        totals['processed'] += stats['processed']
        totals['failed'] += stats['failed']
    return totals


def _active_merchant_ids() -> List[int]:
    from ..models.merchant import Merchant
    return [m.id for m in Merchant.query.filter_by(is_active=True).order_by(Merchant.id)]


def expire_window_entries() -> Dict[str, int]:
    from ..services.expiration_service import ExpirationService

    totals = {'merchants': 0, 'customers_processed': 0, 'errors': 0}
    for merchant_id in _active_merchant_ids():
        stats = ExpirationService(merchant_id).process_expired_window_entries()
        totals['merchants'] += 1
        totals['customers_processed'] += stats['customers_processed']
        totals['errors'] += stats['errors']
    logger.info(f'[Scheduler] Window expiration complete: {totals}')
    return totals


def expire_earned_rewards() -> Dict[str, int]:
    from ..services.expiration_service import ExpirationService

    totals = {'merchants': 0, 'rewards_revoked': 0, 'errors': 0}
    for merchant_id in _active_merchant_ids():
        stats = ExpirationService(merchant_id).process_expired_earned_rewards()
        totals['merchants'] += 1
        totals['rewards_revoked'] += stats['rewards_revoked']
        totals['errors'] += stats['errors']
    logger.info(f'[Scheduler] Earned reward expiration complete: {totals}')
    return totals


def register_default_jobs(scheduler: LoyaltyScheduler, config) -> None:
    sweep_hour = config.get('EXPIRATION_SWEEP_HOUR', 3)

    scheduler.register(
        'discount_outbox',
        'Deliver reward discount requests',
        IntervalTrigger(minutes=config.get('OUTBOX_POLL_MINUTES', 1)),
        drain_discount_outbox,
    )
    scheduler.register(
        'window_expiration',
        'Recompute progress after window expiry',
        CronTrigger(hour=sweep_hour, minute=0),
        expire_window_entries,
    )
    scheduler.register(
        'earned_reward_expiration',
        'Revoke stale earned rewards',
        CronTrigger(hour=sweep_hour, minute=30),
        expire_earned_rewards,
    )


def init_scheduler(app) -> LoyaltyScheduler:
    """
    Build the app's scheduler and start it when enabled.

    Disabled under TESTING or when SCHEDULER_ENABLED is false; the
    scheduler object is still registered so jobs can be run on demand.
    """
    scheduler = LoyaltyScheduler(app)
    register_default_jobs(scheduler, app.config)
    app.extensions['loyalty_scheduler'] = scheduler

    if app.config.get('TESTING') or not app.config.get('SCHEDULER_ENABLED'):
        logger.info('[Scheduler] Disabled (set ENABLE_SCHEDULER=true to enable)')
        return scheduler

    scheduler.start()
    atexit.register(scheduler.stop)
    return scheduler
