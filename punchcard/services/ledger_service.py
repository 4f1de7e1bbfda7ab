"""
Reward ledger: purchase recording, reward earning and refund reversal.

ARCHITECTURE:
- PurchaseEvent rows are the source of truth; Reward and CustomerSummary
  are derived from them and recomputed after every change
- An in_progress Reward tracks the current cycle. When the eligible
  quantity reaches the threshold, the oldest eligible events are locked to
  it (reward_id set) and it becomes earned
- An event that crosses the threshold is split into a locked child carrying
  exactly the shortfall and an unlocked child carrying the excess. The
  parent stays unlocked but is excluded from every aggregate once it has
  children, so units are never lost or counted twice
- Refunds are negative events. A refund that pulls an earned reward's
  locked total under its threshold revokes the reward and returns its
  events to the pool, after which the earning loop runs again

Row locks: the customer's in_progress reward (and, on refunds, earned
rewards) are read FOR UPDATE, which serializes concurrent purchases for the
same customer and offer. The partial unique index on in_progress rewards
catches the case where no reward row existed yet to lock.

Transactions: every public mutation runs in the caller's session. With
commit=True (default) the method commits, or rolls back and re-raises on
failure. The intake gateway passes commit=False and wraps each line item in
a SAVEPOINT.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Tuple

from dateutil.relativedelta import relativedelta
from sqlalchemy import func

from ..extensions import db
from ..models.audit import AuditAction, TriggeredBy
from ..models.ledger import OrderSource, PurchaseEvent, Reward, RewardStatus
from ..models.offer import Offer, QualifyingVariation
from ..utils.db import today, utcnow
from ..utils.exceptions import ValidationError
from .audit_service import log_audit_event
from .discount_outbox import DiscountOutbox
from .ledger_queries import eligible_filter, eligible_quantity, locked_quantity
from .summary_service import SummaryService

logger = logging.getLogger(__name__)

# Result reasons for no-op calls
REASON_DUPLICATE = 'duplicate'
REASON_NOT_QUALIFYING = 'variation_not_qualifying'
REASON_ORIGINAL_NOT_FOUND = 'original_purchase_not_found'

REFUND_REVOCATION_REASON = 'Refund reduced qualifying quantity below threshold'


# ==================== Results ====================

@dataclass
class RewardProgress:
    """State of a customer's progress after the earning loop ran."""
    reward_id: Optional[int]
    status: Optional[str]
    current_quantity: int
    required_quantity: int
    earned_reward_ids: List[int] = field(default_factory=list)


@dataclass
class PurchaseResult:
    recorded: bool
    reason: Optional[str] = None
    purchase_event: Optional[PurchaseEvent] = None
    progress: Optional[RewardProgress] = None

    @property
    def reward_earned(self) -> bool:
        return bool(self.progress and self.progress.earned_reward_ids)


@dataclass
class RefundResult:
    recorded: bool
    reason: Optional[str] = None
    refund_event: Optional[PurchaseEvent] = None
    refund_events: List[PurchaseEvent] = field(default_factory=list)
    revoked_reward_ids: List[int] = field(default_factory=list)
    progress: Optional[RewardProgress] = None


def to_utc_naive(value: datetime) -> datetime:
    """Timestamps are stored as naive UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class LedgerService:
    """
    Records purchases and refunds and keeps rewards in step with them.

    Usage:
        ledger = LedgerService(merchant_id)
        result = ledger.record_purchase('CUST1', 'ORDER1', 'VAR1', 2, datetime.utcnow())
        if result.reward_earned:
            ...
    """

    def __init__(self, merchant_id: int, outbox: DiscountOutbox = None, summary_service: SummaryService = None):
        self.merchant_id = merchant_id
        self.outbox = outbox or DiscountOutbox(merchant_id)
        self.summary = summary_service or SummaryService(merchant_id)

    # ==================== Purchases ====================

    def record_purchase(
        self,
        customer_id: str,
        order_id: str,
        variation_id: str,
        quantity: int,
        purchased_at: datetime,
        unit_price_cents: int = None,
        location_id: str = None,
        source: str = OrderSource.WEBHOOK.value,
        customer_source: str = None,
        receipt_url: str = None,
        payment_type: str = None,
        commit: bool = True,
    ) -> PurchaseResult:
        """
        Record one qualifying line item and re-evaluate the customer's reward.

        Returns a no-op result (recorded=False) when the variation does not
        qualify for an active offer or the line was already recorded.

        Raises:
            ValidationError: Missing identifiers or non-positive quantity
        """
        self._require(customer_id, 'customer_id')
        self._require(order_id, 'order_id')
        self._require(variation_id, 'variation_id')
        if not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError('quantity must be a positive integer', 'quantity')
        if purchased_at is None:
            raise ValidationError('purchased_at is required', 'purchased_at')

        offer = self.resolve_offer(variation_id)
        if offer is None:
            return PurchaseResult(recorded=False, reason=REASON_NOT_QUALIFYING)

        idempotency_key = f'{order_id}:{variation_id}:{quantity}'
        existing = PurchaseEvent.query.filter_by(
            merchant_id=self.merchant_id,
            idempotency_key=idempotency_key,
        ).first()
        if existing:
            logger.info(f"Purchase {idempotency_key} already recorded as event {existing.id}")
            return PurchaseResult(recorded=False, reason=REASON_DUPLICATE, purchase_event=existing)

        try:
            purchased_at = to_utc_naive(purchased_at)
            purchase_date = purchased_at.date()

            earliest_open = (
                db.session.query(func.min(PurchaseEvent.purchased_at))
                .filter(
                    eligible_filter(self.merchant_id, offer.id, customer_id, today()),
                    PurchaseEvent.quantity > 0,
                )
                .scalar()
            )
            window_start = min(earliest_open.date(), purchase_date) if earliest_open else purchase_date
            window_end = purchase_date + relativedelta(months=offer.window_months)

            event = PurchaseEvent(
                merchant_id=self.merchant_id,
                offer_id=offer.id,
                customer_id=customer_id,
                order_id=order_id,
                location_id=location_id,
                variation_id=variation_id,
                quantity=quantity,
                unit_price_cents=unit_price_cents,
                purchased_at=purchased_at,
                window_start_date=window_start,
                window_end_date=window_end,
                is_refund=False,
                idempotency_key=idempotency_key,
                source=getattr(source, 'value', source),
                customer_source=customer_source,
                receipt_url=receipt_url,
                payment_type=payment_type,
            )
            db.session.add(event)
            db.session.flush()

            log_audit_event(
                merchant_id=self.merchant_id,
                action=AuditAction.PURCHASE_RECORDED,
                offer_id=offer.id,
                purchase_event_id=event.id,
                customer_id=customer_id,
                order_id=order_id,
                new_quantity=quantity,
                details={'variation_id': variation_id, 'source': event.source},
            )

            progress = self.update_reward_progress(customer_id, offer)

            if commit:
                db.session.commit()
        except Exception as e:
            if commit:
                db.session.rollback()
            logger.error(f"Failed to record purchase {idempotency_key}: {e}")
            raise

        logger.info(
            f"Recorded purchase of {quantity} x {variation_id} for customer {customer_id} "
            f"(order {order_id}): {progress.current_quantity}/{progress.required_quantity}"
        )
        return PurchaseResult(recorded=True, purchase_event=event, progress=progress)

    # ==================== Earning loop ====================

    def update_reward_progress(self, customer_id: str, offer: Offer) -> RewardProgress:
        """
        Re-evaluate a customer's progress on an offer, earning as many
        rewards as the eligible quantity allows.

        Does not commit.
        """
        as_of = today()
        earned_ids = []

        reward = self._lock_in_progress_reward(offer.id, customer_id)
        quantity = eligible_quantity(self.merchant_id, offer.id, customer_id, as_of)

        if reward is None:
            if quantity > 0:
                reward = self._open_reward(offer, customer_id, quantity, as_of)
        else:
            self._set_progress(reward, quantity, as_of)

        while (
            reward is not None
            and reward.status == RewardStatus.IN_PROGRESS.value
            and quantity >= reward.required_quantity
        ):
            self._earn(reward, as_of)
            earned_ids.append(reward.id)

            quantity = eligible_quantity(self.merchant_id, offer.id, customer_id, as_of)
            reward = self._open_reward(offer, customer_id, quantity, as_of) if quantity > 0 else None

        self.summary.rebuild(customer_id, offer.id)

        if reward is None:
            return RewardProgress(
                reward_id=None,
                status=None,
                current_quantity=max(0, quantity),
                required_quantity=offer.required_quantity,
                earned_reward_ids=earned_ids,
            )
        return RewardProgress(
            reward_id=reward.id,
            status=reward.status,
            current_quantity=reward.current_quantity,
            required_quantity=reward.required_quantity,
            earned_reward_ids=earned_ids,
        )

    def _lock_in_progress_reward(self, offer_id: int, customer_id: str) -> Optional[Reward]:
        return (
            Reward.query
            .filter_by(
                merchant_id=self.merchant_id,
                offer_id=offer_id,
                customer_id=customer_id,
                status=RewardStatus.IN_PROGRESS.value,
            )
            .with_for_update()
            .first()
        )

    def _window_bounds(self, offer_id: int, customer_id: str, as_of):
        return (
            db.session.query(
                func.min(PurchaseEvent.window_start_date),
                func.max(PurchaseEvent.window_end_date),
            )
            .filter(
                eligible_filter(self.merchant_id, offer_id, customer_id, as_of),
                PurchaseEvent.quantity > 0,
            )
            .one()
        )

    def _open_reward(self, offer: Offer, customer_id: str, quantity: int, as_of) -> Reward:
        window_start, window_end = self._window_bounds(offer.id, customer_id, as_of)
        reward = Reward(
            merchant_id=self.merchant_id,
            offer_id=offer.id,
            customer_id=customer_id,
            status=RewardStatus.IN_PROGRESS.value,
            current_quantity=max(0, quantity),
            required_quantity=offer.required_quantity,
            window_start_date=window_start,
            window_end_date=window_end,
        )
        db.session.add(reward)
        db.session.flush()

        log_audit_event(
            merchant_id=self.merchant_id,
            action=AuditAction.REWARD_PROGRESS_UPDATED,
            offer_id=offer.id,
            reward_id=reward.id,
            customer_id=customer_id,
            new_state=reward.status,
            old_quantity=0,
            new_quantity=reward.current_quantity,
        )
        return reward

    def _set_progress(self, reward: Reward, quantity: int, as_of) -> None:
        # Refunds can push the eligible sum below zero
        new_quantity = max(0, quantity)
        old_quantity = reward.current_quantity
        window_start, window_end = self._window_bounds(reward.offer_id, reward.customer_id, as_of)
        reward.window_start_date = window_start
        reward.window_end_date = window_end

        if new_quantity != old_quantity:
            reward.current_quantity = new_quantity
            log_audit_event(
                merchant_id=self.merchant_id,
                action=AuditAction.REWARD_PROGRESS_UPDATED,
                offer_id=reward.offer_id,
                reward_id=reward.id,
                customer_id=reward.customer_id,
                old_quantity=old_quantity,
                new_quantity=new_quantity,
            )

    def _earn(self, reward: Reward, as_of) -> None:
        """
        Lock exactly required_quantity units to the reward and mark it earned.

        Unlocked refund rows cancel units of their own purchase first, so
        units that were already refunded are never locked to a new reward.
        """
        required = reward.required_quantity
        events = (
            PurchaseEvent.query
            .filter(
                eligible_filter(self.merchant_id, reward.offer_id, reward.customer_id, as_of),
                PurchaseEvent.quantity > 0,
            )
            .order_by(PurchaseEvent.purchased_at.asc(), PurchaseEvent.id.asc())
            .with_for_update()
            .all()
        )
        refunded = self._unlocked_refunds(reward, as_of)

        locked_total = 0
        locked_ids = []
        splits = []
        for event in events:
            root_id = self._root_event_id(event)
            offset = min(refunded.get(root_id, 0), event.quantity)
            if offset:
                refunded[root_id] -= offset
                if offset == event.quantity:
                    continue

            if not offset and locked_total + event.quantity <= required:
                event.reward_id = reward.id
                locked_total += event.quantity
                locked_ids.append(event.id)
            else:
                take = min(event.quantity - offset, required - locked_total)
                splits.append(self._split_event(event, reward, take))
                locked_total += take
            if locked_total == required:
                break

        reward.status = RewardStatus.EARNED.value
        reward.current_quantity = required
        reward.earned_at = utcnow()
        db.session.flush()

        log_audit_event(
            merchant_id=self.merchant_id,
            action=AuditAction.REWARD_EARNED,
            offer_id=reward.offer_id,
            reward_id=reward.id,
            customer_id=reward.customer_id,
            old_state=RewardStatus.IN_PROGRESS.value,
            new_state=RewardStatus.EARNED.value,
            new_quantity=required,
            details={'locked_event_ids': locked_ids, 'splits': splits},
        )

        # Delivered out-of-band; the ledger never waits on the commerce API
        self.outbox.enqueue_provision(reward)

        logger.info(
            f"Reward {reward.id} earned by customer {reward.customer_id} "
            f"on offer {reward.offer_id} ({len(locked_ids)} events locked, "
            f"{len(splits)} split)"
        )

    def _unlocked_refunds(self, reward: Reward, as_of) -> dict:
        """Units refunded but not attributed to any reward, keyed by purchase."""
        rows = (
            PurchaseEvent.query
            .filter(
                eligible_filter(self.merchant_id, reward.offer_id, reward.customer_id, as_of),
                PurchaseEvent.is_refund.is_(True),
                PurchaseEvent.quantity < 0,
            )
            .all()
        )
        refunded = defaultdict(int)
        for row in rows:
            if row.original_event_id is not None:
                refunded[self._root_event_id(db.session.get(PurchaseEvent, row.original_event_id))] += -row.quantity
        return refunded

    @staticmethod
    def _root_event_id(event: PurchaseEvent) -> int:
        """Walk split children back to the purchase they came from."""
        while event.original_event_id is not None and not event.is_refund:
            event = db.session.get(PurchaseEvent, event.original_event_id)
        return event.id

    def _split_event(self, parent: PurchaseEvent, reward: Reward, shortfall: int) -> dict:
        """
        Split a threshold-crossing event.

        The locked child carries the shortfall and the unlocked child the
        excess; the children always sum to the parent's quantity.
        """
        excess = parent.quantity - shortfall

        locked_child = self._child_event(parent, shortfall, f'{parent.idempotency_key}:split_locked:{reward.id}')
        locked_child.reward_id = reward.id
        db.session.add(locked_child)

        excess_child = None
        if excess > 0:
            excess_child = self._child_event(parent, excess, f'{parent.idempotency_key}:split_excess:{reward.id}')
            db.session.add(excess_child)

        db.session.flush()
        return {
            'parent_event_id': parent.id,
            'locked_event_id': locked_child.id,
            'locked_quantity': shortfall,
            'excess_event_id': excess_child.id if excess_child else None,
            'excess_quantity': excess,
        }

    @staticmethod
    def _child_event(parent: PurchaseEvent, quantity: int, idempotency_key: str) -> PurchaseEvent:
        return PurchaseEvent(
            merchant_id=parent.merchant_id,
            offer_id=parent.offer_id,
            customer_id=parent.customer_id,
            order_id=parent.order_id,
            location_id=parent.location_id,
            variation_id=parent.variation_id,
            quantity=quantity,
            unit_price_cents=parent.unit_price_cents,
            purchased_at=parent.purchased_at,
            window_start_date=parent.window_start_date,
            window_end_date=parent.window_end_date,
            is_refund=False,
            original_event_id=parent.id,
            idempotency_key=idempotency_key,
            source=parent.source,
            customer_source=parent.customer_source,
            receipt_url=parent.receipt_url,
            payment_type=parent.payment_type,
        )

    # ==================== Refunds ====================

    def record_refund(
        self,
        customer_id: str,
        order_id: str,
        variation_id: str,
        quantity: int,
        refunded_at: datetime = None,
        original_event_id: int = None,
        refund_id: str = None,
        unit_price_cents: int = None,
        location_id: str = None,
        source: str = OrderSource.WEBHOOK.value,
        commit: bool = True,
    ) -> RefundResult:
        """
        Record a refunded line item and reverse its effect.

        The refund is split into one row per bucket it comes out of: the
        purchase's unlocked units first, then each earned reward holding
        its locked units. Any earned reward whose locked total falls below
        its threshold is revoked and its events returned to the pool, then
        the earning loop runs again.

        Args:
            quantity: Refunded units (sign is ignored; stored negative)
            refund_id: Upstream refund id, makes retries idempotent
            original_event_id: Refunded purchase; looked up by order and
                variation when omitted
        """
        self._require(customer_id, 'customer_id')
        self._require(order_id, 'order_id')
        self._require(variation_id, 'variation_id')
        if not isinstance(quantity, int) or quantity == 0:
            raise ValidationError('quantity must be a non-zero integer', 'quantity')

        refund_quantity = abs(quantity)
        refunded_at = to_utc_naive(refunded_at or utcnow())

        original = self._find_original_purchase(order_id, variation_id, customer_id, original_event_id)
        if original is None:
            logger.info(f"Refund for order {order_id} variation {variation_id}: no recorded purchase, ignoring")
            return RefundResult(recorded=False, reason=REASON_ORIGINAL_NOT_FOUND)

        discriminator = refund_id or refunded_at.isoformat()
        idempotency_key = f'refund:{order_id}:{variation_id}:{refund_quantity}:{discriminator}'
        existing = PurchaseEvent.query.filter_by(
            merchant_id=self.merchant_id,
            idempotency_key=idempotency_key,
        ).first()
        if existing:
            return RefundResult(recorded=False, reason=REASON_DUPLICATE, refund_event=existing)

        try:
            earned_rewards = self._lock_earned_rewards(original.offer_id, customer_id)
            shares = self._refund_shares(original, refund_quantity, earned_rewards)

            refunds = []
            for reward_id, share in shares:
                key = idempotency_key if not refunds else f'{idempotency_key}:reward:{reward_id}'
                row = PurchaseEvent(
                    merchant_id=self.merchant_id,
                    offer_id=original.offer_id,
                    customer_id=customer_id,
                    order_id=order_id,
                    location_id=location_id or original.location_id,
                    variation_id=variation_id,
                    quantity=-share,
                    unit_price_cents=unit_price_cents if unit_price_cents is not None else original.unit_price_cents,
                    purchased_at=refunded_at,
                    window_start_date=original.window_start_date,
                    window_end_date=original.window_end_date,
                    reward_id=reward_id,
                    is_refund=True,
                    original_event_id=original.id,
                    idempotency_key=key,
                    source=getattr(source, 'value', source),
                )
                db.session.add(row)
                db.session.flush()
                refunds.append(row)

                log_audit_event(
                    merchant_id=self.merchant_id,
                    action=AuditAction.REFUND_PROCESSED,
                    offer_id=original.offer_id,
                    reward_id=reward_id,
                    purchase_event_id=row.id,
                    customer_id=customer_id,
                    order_id=order_id,
                    new_quantity=-share,
                    details={'original_event_id': original.id, 'refund_id': refund_id},
                )

            revoked = []
            for reward in earned_rewards:
                locked = locked_quantity(reward.id)
                if locked < reward.required_quantity:
                    self.revoke_reward(reward, REFUND_REVOCATION_REASON, locked_quantity_before=locked)
                    revoked.append(reward.id)

            progress = self.update_reward_progress(customer_id, self._offer(original.offer_id))

            if commit:
                db.session.commit()
        except Exception as e:
            if commit:
                db.session.rollback()
            logger.error(f"Failed to record refund {idempotency_key}: {e}")
            raise

        logger.info(
            f"Recorded refund of {refund_quantity} x {variation_id} for customer {customer_id} "
            f"(order {order_id}) in {len(refunds)} rows, revoked rewards: {revoked or 'none'}"
        )
        return RefundResult(
            recorded=True,
            refund_event=refunds[0],
            refund_events=refunds,
            revoked_reward_ids=revoked,
            progress=progress,
        )

    def revoke_reward(
        self,
        reward: Reward,
        reason: str,
        triggered_by: str = TriggeredBy.SYSTEM.value,
        locked_quantity_before: int = None,
    ) -> None:
        """
        Revoke an earned reward and return its events to the pool.

        The caller must hold the reward row lock. Does not commit.
        """
        old_status = reward.status
        reward.status = RewardStatus.REVOKED.value
        reward.revoked_at = utcnow()
        reward.revocation_reason = reason

        unlocked = (
            PurchaseEvent.query
            .filter_by(merchant_id=self.merchant_id, reward_id=reward.id)
            .update({PurchaseEvent.reward_id: None}, synchronize_session='fetch')
        )

        log_audit_event(
            merchant_id=self.merchant_id,
            action=AuditAction.REWARD_REVOKED,
            offer_id=reward.offer_id,
            reward_id=reward.id,
            customer_id=reward.customer_id,
            old_state=old_status,
            new_state=reward.status,
            old_quantity=locked_quantity_before,
            new_quantity=0,
            triggered_by=triggered_by,
            details={'reason': reason, 'unlocked_events': unlocked},
        )

        self.outbox.enqueue_cleanup(reward)
        logger.info(f"Reward {reward.id} revoked ({reason}); {unlocked} events unlocked")

    def _find_original_purchase(
        self,
        order_id: str,
        variation_id: str,
        customer_id: str,
        original_event_id: int = None
    ) -> Optional[PurchaseEvent]:
        query = PurchaseEvent.query.filter_by(merchant_id=self.merchant_id, is_refund=False)
        if original_event_id is not None:
            return query.filter_by(id=original_event_id).first()
        return (
            query.filter_by(
                order_id=order_id,
                variation_id=variation_id,
                customer_id=customer_id,
                original_event_id=None,
            )
            .order_by(PurchaseEvent.id.asc())
            .first()
        )

    def _leaf_events(self, event: PurchaseEvent) -> List[PurchaseEvent]:
        """The rows currently carrying an event's quantity (itself, or its split descendants)."""
        leaves = []
        pending = [event]
        while pending:
            current = pending.pop()
            children = PurchaseEvent.query.filter_by(
                original_event_id=current.id,
                is_refund=False,
            ).all()
            if children:
                pending.extend(children)
            else:
                leaves.append(current)
        return leaves

    def _refund_shares(
        self,
        original: PurchaseEvent,
        quantity: int,
        earned_rewards: List[Reward],
    ) -> List[Tuple[Optional[int], int]]:
        """
        Split refunded units between open progress and earned rewards.

        Units still unlocked on the refunded purchase absorb the refund
        first. The rest comes out of the earned rewards holding its locked
        units, newest reward first, so each reward's share lands on its own
        locked total. Units beyond that (redeemed rewards, over-refunds)
        stay unlocked. Earlier refunds of the same purchase have already
        used up part of each bucket.

        Returns (reward_id or None, units) pairs, unlocked share first.
        """
        held = defaultdict(int)
        for leaf in self._leaf_events(original):
            held[leaf.reward_id] += leaf.quantity
        for prior in PurchaseEvent.query.filter_by(original_event_id=original.id, is_refund=True):
            held[prior.reward_id] += prior.quantity

        unlocked = min(quantity, max(0, held[None]))
        remaining = quantity - unlocked

        reward_shares = []
        for reward in sorted(earned_rewards, key=lambda r: r.id, reverse=True):
            if remaining == 0:
                break
            share = min(remaining, max(0, held.get(reward.id, 0)))
            if share:
                reward_shares.append((reward.id, share))
                remaining -= share

        unlocked += remaining
        shares = [(None, unlocked)] if unlocked else []
        return shares + reward_shares

    def _lock_earned_rewards(self, offer_id: int, customer_id: str) -> List[Reward]:
        return (
            Reward.query
            .filter_by(
                merchant_id=self.merchant_id,
                offer_id=offer_id,
                customer_id=customer_id,
                status=RewardStatus.EARNED.value,
            )
            .order_by(Reward.id.asc())
            .with_for_update()
            .all()
        )

    # ==================== Lookups ====================

    def resolve_offer(self, variation_id: str) -> Optional[Offer]:
        """Active offer for an active qualifying variation, scoped to this merchant."""
        return (
            Offer.query
            .join(QualifyingVariation, QualifyingVariation.offer_id == Offer.id)
            .filter(
                Offer.merchant_id == self.merchant_id,
                Offer.is_active.is_(True),
                QualifyingVariation.merchant_id == self.merchant_id,
                QualifyingVariation.variation_id == variation_id,
                QualifyingVariation.is_active.is_(True),
            )
            .first()
        )

    def _offer(self, offer_id: int) -> Offer:
        return Offer.query.filter_by(id=offer_id, merchant_id=self.merchant_id).one()

    def _require(self, value, field_name: str) -> None:
        if not self.merchant_id:
            raise ValidationError('merchant_id is required', 'merchant_id')
        if value is None or value == '':
            raise ValidationError(f'{field_name} is required', field_name)
