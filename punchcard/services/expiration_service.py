"""
Rolling-window expiration sweeps.

Eligible quantity is always computed against today's date, so expired
purchases stop counting the moment their window ends. These sweeps bring
the stored state (in_progress quantities, summaries, earned rewards) in
line with that and leave an audit trail. Each customer is handled in its
own transaction so one failure does not block the rest.
"""

import logging
from typing import Dict, Any

from dateutil.relativedelta import relativedelta
from sqlalchemy import and_, exists

from ..extensions import db
from ..models.audit import AuditAction, TriggeredBy
from ..models.ledger import PurchaseEvent, Reward, RewardStatus
from ..models.offer import Offer
from ..utils.db import today, utcnow
from .audit_service import log_audit_event
from .ledger_queries import eligible_quantity, not_superseded
from .ledger_service import LedgerService

logger = logging.getLogger(__name__)

EXPIRED_REWARD_REASON = 'Earned reward expired unredeemed'


class ExpirationService:
    """Periodic cleanup of expired window entries and stale earned rewards."""

    def __init__(self, merchant_id: int, ledger: LedgerService = None):
        self.merchant_id = merchant_id
        self.ledger = ledger or LedgerService(merchant_id)

    def process_expired_window_entries(self) -> Dict[str, Any]:
        """
        Recompute progress for customers whose in_progress reward still
        counts purchases that have since expired.
        """
        as_of = today()
        stats = {'customers_processed': 0, 'errors': 0}

        has_expired_events = exists().where(
            and_(
                PurchaseEvent.merchant_id == Reward.merchant_id,
                PurchaseEvent.offer_id == Reward.offer_id,
                PurchaseEvent.customer_id == Reward.customer_id,
                PurchaseEvent.reward_id.is_(None),
                PurchaseEvent.window_end_date < as_of,
                not_superseded(),
            )
        )
        candidates = (
            db.session.query(Reward.id, Reward.offer_id, Reward.customer_id, Reward.current_quantity)
            .filter(
                Reward.merchant_id == self.merchant_id,
                Reward.status == RewardStatus.IN_PROGRESS.value,
                has_expired_events,
            )
            .all()
        )

        for reward_id, offer_id, customer_id, stored_quantity in candidates:
            live_quantity = max(0, eligible_quantity(self.merchant_id, offer_id, customer_id, as_of))
            if live_quantity == stored_quantity:
                continue

            try:
                offer = Offer.query.filter_by(id=offer_id, merchant_id=self.merchant_id).one()
                progress = self.ledger.update_reward_progress(customer_id, offer)
                log_audit_event(
                    merchant_id=self.merchant_id,
                    action=AuditAction.WINDOW_EXPIRED,
                    offer_id=offer_id,
                    reward_id=reward_id,
                    customer_id=customer_id,
                    old_quantity=stored_quantity,
                    new_quantity=progress.current_quantity,
                    triggered_by=TriggeredBy.EXPIRATION_CLEANUP,
                )
                db.session.commit()
                stats['customers_processed'] += 1
            except Exception as e:
                db.session.rollback()
                stats['errors'] += 1
                logger.error(f"Window expiration failed for customer {customer_id} offer {offer_id}: {e}")

        if stats['customers_processed'] or stats['errors']:
            logger.info(f"Window expiration for merchant {self.merchant_id}: {stats}")
        return stats

    def process_expired_earned_rewards(self) -> Dict[str, Any]:
        """
        Revoke earned rewards that were never redeemed within the offer
        window and whose locked purchases have all expired.
        """
        as_of = today()
        now = utcnow()
        stats = {'rewards_revoked': 0, 'errors': 0}

        rewards = (
            Reward.query
            .filter_by(merchant_id=self.merchant_id, status=RewardStatus.EARNED.value)
            .order_by(Reward.id)
            .all()
        )

        for reward in rewards:
            cutoff = now - relativedelta(months=reward.offer.window_months)
            if not reward.earned_at or reward.earned_at >= cutoff:
                continue

            live_locked = db.session.query(
                PurchaseEvent.query.filter(
                    PurchaseEvent.reward_id == reward.id,
                    PurchaseEvent.window_end_date >= as_of,
                ).exists()
            ).scalar()
            if live_locked:
                continue

            try:
                locked = (
                    Reward.query
                    .filter_by(id=reward.id, status=RewardStatus.EARNED.value)
                    .with_for_update()
                    .first()
                )
                if locked is None:
                    continue
                self.ledger.revoke_reward(
                    locked,
                    EXPIRED_REWARD_REASON,
                    triggered_by=TriggeredBy.EXPIRATION_CLEANUP.value,
                )
                self.ledger.summary.rebuild(locked.customer_id, locked.offer_id)
                db.session.commit()
                stats['rewards_revoked'] += 1
            except Exception as e:
                db.session.rollback()
                stats['errors'] += 1
                logger.error(f"Failed to expire earned reward {reward.id}: {e}")

        if stats['rewards_revoked'] or stats['errors']:
            logger.info(f"Earned reward expiration for merchant {self.merchant_id}: {stats}")
        return stats
