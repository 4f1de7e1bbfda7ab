"""
Discount outbox: queued upstream discount side effects.

The ledger enqueues provisioning (reward earned) and cleanup (reward
redeemed or revoked) requests inside its own transaction. The scheduler
drains the queue out-of-band, so commerce API latency or failures never
hold ledger locks or roll back ledger state.

Retry policy:
- Failed deliveries back off exponentially from OUTBOX_BACKOFF_SECONDS
- After OUTBOX_MAX_ATTEMPTS the item is marked failed and audited
- Provisioning for a reward that is no longer earned is cancelled
- Items are leased and committed one at a time; a created discount id is
  saved before the reward is touched, so retries never create a second one
"""

import logging
from datetime import timedelta
from typing import Optional, Dict, Any, List

from flask import current_app

from ..extensions import db
from ..models.audit import AuditAction
from ..models.ledger import Reward, RewardStatus
from ..models.offer import QualifyingVariation
from ..models.outbox import DiscountOutboxItem, OutboxAction, OutboxStatus
from ..utils.db import supports_skip_locked, utcnow
from ..utils.exceptions import DiscountServiceError
from .audit_service import log_audit_event
from .discount_client import DiscountClient

logger = logging.getLogger(__name__)


class DiscountOutbox:
    """
    Enqueue and deliver reward discount requests for one merchant.

    Usage:
        outbox = DiscountOutbox(merchant_id)
        outbox.enqueue_provision(reward)     # inside the ledger transaction
        outbox.process_pending()             # later, from the scheduler
    """

    def __init__(self, merchant_id: int, client: DiscountClient = None):
        self.merchant_id = merchant_id
        self._client = client

    # ==================== Enqueue (caller's transaction) ====================

    def enqueue_provision(self, reward: Reward) -> DiscountOutboxItem:
        return self._enqueue(reward, OutboxAction.PROVISION)

    def enqueue_cleanup(self, reward: Reward) -> Optional[DiscountOutboxItem]:
        """
        Queue deletion of a reward's discount.

        Pending provisioning is cancelled first; if no discount was ever
        created there is nothing to clean up.
        """
        cancelled = self.cancel_pending_for_reward(reward.id, OutboxAction.PROVISION)
        if not reward.discount_id and cancelled:
            return None
        return self._enqueue(reward, OutboxAction.CLEANUP, discount_id=reward.discount_id)

    def cancel_pending_for_reward(self, reward_id: int, action: OutboxAction = None) -> int:
        query = DiscountOutboxItem.query.filter_by(
            merchant_id=self.merchant_id,
            reward_id=reward_id,
            status=OutboxStatus.PENDING.value,
        )
        if action is not None:
            query = query.filter_by(action=action.value)

        count = 0
        for item in query.all():
            item.status = OutboxStatus.CANCELLED.value
            item.processed_at = utcnow()
            count += 1
        return count

    def _enqueue(self, reward: Reward, action: OutboxAction, discount_id: str = None) -> DiscountOutboxItem:
        item = DiscountOutboxItem(
            merchant_id=self.merchant_id,
            reward_id=reward.id,
            offer_id=reward.offer_id,
            customer_id=reward.customer_id,
            action=action.value,
            status=OutboxStatus.PENDING.value,
            attempts=0,
            next_attempt_at=utcnow(),
            discount_id=discount_id,
        )
        db.session.add(item)
        logger.debug(f"Queued discount {action.value} for reward {reward.id}")
        return item

    # ==================== Delivery (scheduler) ====================

    def process_pending(self, limit: int = None) -> Dict[str, Any]:
        """
        Deliver due outbox items, committing after each one.

        Due items are leased first (next_attempt_at pushed out by
        OUTBOX_LEASE_SECONDS) and that lease is committed, so no row lock is
        held while the commerce API is called and a crashed drain's items
        come due again on their own.

        Returns:
            Dict with counts of processed, succeeded, retried, failed and
            cancelled items
        """
        stats = {'processed': 0, 'succeeded': 0, 'retried': 0, 'failed': 0, 'cancelled': 0}

        item_ids = self._lease_due_items(limit or current_app.config.get('OUTBOX_BATCH_SIZE', 50))
        for item_id in item_ids:
            stats['processed'] += 1
            stats[self._process_item(item_id)] += 1

        if item_ids:
            logger.info(f"Discount outbox for merchant {self.merchant_id}: {stats}")
        return stats

    def _lease_due_items(self, limit: int) -> List[int]:
        now = utcnow()
        query = (
            DiscountOutboxItem.query
            .filter(
                DiscountOutboxItem.merchant_id == self.merchant_id,
                DiscountOutboxItem.status == OutboxStatus.PENDING.value,
                DiscountOutboxItem.next_attempt_at <= now,
            )
            .order_by(DiscountOutboxItem.id)
            .limit(limit)
        )
        if supports_skip_locked():
            query = query.with_for_update(skip_locked=True)

        items = query.all()
        lease_until = now + timedelta(seconds=current_app.config.get('OUTBOX_LEASE_SECONDS', 300))
        for item in items:
            item.next_attempt_at = lease_until
        db.session.commit()
        return [item.id for item in items]

    def _process_item(self, item_id: int) -> str:
        item = db.session.get(DiscountOutboxItem, item_id)
        try:
            outcome = self._deliver(item)
            db.session.commit()
            return outcome
        except Exception as e:
            db.session.rollback()
            logger.error(f"Outbox item {item_id} failed unexpectedly: {e}")
            item = db.session.get(DiscountOutboxItem, item_id)
            outcome = self._record_failure(item, e)
            db.session.commit()
            return outcome

    def _deliver(self, item: DiscountOutboxItem) -> str:
        try:
            if item.action == OutboxAction.PROVISION.value:
                return self._provision(item)
            return self._cleanup(item)
        except DiscountServiceError as e:
            return self._record_failure(item, e)

    def _provision(self, item: DiscountOutboxItem) -> str:
        reward = item.reward

        if not item.discount_id:
            if reward.status != RewardStatus.EARNED.value:
                self._finish(item, OutboxStatus.CANCELLED)
                return 'cancelled'

            if reward.discount_id:
                item.discount_id = reward.discount_id
                self._finish(item, OutboxStatus.DONE)
                return 'succeeded'

            variation_ids = [
                v.variation_id for v in QualifyingVariation.query.filter_by(
                    merchant_id=self.merchant_id,
                    offer_id=reward.offer_id,
                    is_active=True,
                )
            ]
            title = f'Loyalty reward: {reward.offer.offer_name}'
            item.discount_id = self.client.create_reward_discount(reward.id, reward.customer_id, variation_ids, title)
            # Committed before the reward is touched; a retry reuses this id
            db.session.commit()

        discount_id = item.discount_id

        # The reward may have been redeemed or revoked while the API call ran
        db.session.refresh(reward, with_for_update=True)
        reward.discount_id = discount_id
        self._finish(item, OutboxStatus.DONE)

        log_audit_event(
            merchant_id=self.merchant_id,
            action=AuditAction.DISCOUNT_PROVISIONED,
            offer_id=reward.offer_id,
            reward_id=reward.id,
            customer_id=reward.customer_id,
            details={'discount_id': discount_id},
        )

        if reward.status != RewardStatus.EARNED.value:
            self._enqueue(reward, OutboxAction.CLEANUP, discount_id=discount_id)

        logger.info(f"Provisioned discount {discount_id} for reward {reward.id}")
        return 'succeeded'

    def _cleanup(self, item: DiscountOutboxItem) -> str:
        discount_id = item.discount_id or item.reward.discount_id
        if discount_id:
            self.client.delete_discount(discount_id)
            item.discount_id = discount_id
            logger.info(f"Deleted discount {discount_id} for reward {item.reward_id}")
        self._finish(item, OutboxStatus.DONE)
        return 'succeeded'

    def _record_failure(self, item: DiscountOutboxItem, error: Exception) -> str:
        max_attempts = current_app.config.get('OUTBOX_MAX_ATTEMPTS', 5)
        backoff = current_app.config.get('OUTBOX_BACKOFF_SECONDS', 30)

        item.attempts += 1
        item.last_error = str(error)[:2000]

        if item.attempts >= max_attempts:
            self._finish(item, OutboxStatus.FAILED)
            log_audit_event(
                merchant_id=self.merchant_id,
                action=AuditAction.DISCOUNT_FAILED,
                offer_id=item.offer_id,
                reward_id=item.reward_id,
                customer_id=item.customer_id,
                details={'outbox_action': item.action, 'attempts': item.attempts, 'error': item.last_error},
            )
            logger.error(
                f"Discount {item.action} for reward {item.reward_id} failed permanently "
                f"after {item.attempts} attempts: {error}"
            )
            return 'failed'

        item.next_attempt_at = utcnow() + timedelta(seconds=backoff * 2 ** (item.attempts - 1))
        logger.warning(
            f"Discount {item.action} for reward {item.reward_id} failed "
            f"(attempt {item.attempts}/{max_attempts}), retrying at {item.next_attempt_at}: {error}"
        )
        return 'retried'

    @staticmethod
    def _finish(item: DiscountOutboxItem, status: OutboxStatus) -> None:
        item.status = status.value
        item.processed_at = utcnow()

    @property
    def client(self) -> DiscountClient:
        if self._client is None:
            try:
                self._client = DiscountClient(
                    self.merchant_id,
                    api_version=current_app.config.get('DISCOUNT_API_VERSION', '2026-01'),
                    timeout=current_app.config.get('DISCOUNT_API_TIMEOUT', 30.0),
                )
            except ValueError as e:
                raise DiscountServiceError(str(e), e) from e
        return self._client


def merchants_with_pending_items():
    """Merchant ids that have outbox items due now."""
    rows = (
        db.session.query(DiscountOutboxItem.merchant_id)
        .filter(
            DiscountOutboxItem.status == OutboxStatus.PENDING.value,
            DiscountOutboxItem.next_attempt_at <= utcnow(),
        )
        .distinct()
        .all()
    )
    return [row[0] for row in rows]
