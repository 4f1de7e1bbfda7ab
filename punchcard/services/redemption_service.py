"""
Reward redemption.

Moves earned rewards to redeemed, either explicitly (admin or checkout
integration) or by recognising a redemption in an incoming order.

Detection strategies, in order:
1. The order applied a discount whose catalog id is an earned reward's
   discount
2. A qualifying item was given away free (price > 0, total 0) to a customer
   holding an earned reward for that item's offer
3. Discounts on qualifying items add up to at least
   REDEMPTION_AMOUNT_MATCH_RATIO of the reward's expected item value
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models.audit import AuditAction, TriggeredBy
from ..models.ledger import PurchaseEvent, RedemptionType, Reward, RewardStatus
from ..models.offer import QualifyingVariation
from ..utils.db import utcnow
from ..utils.exceptions import (
    InvalidStatusTransitionError,
    RewardNotFoundError,
    ValidationError,
)
from .audit_service import log_audit_event
from .customer_identification import CustomerIdentifier
from .discount_outbox import DiscountOutbox
from .purchase_qualifier import money_amount
from .summary_service import SummaryService

logger = logging.getLogger(__name__)

METHOD_DISCOUNT_ID = 'discount_catalog_id'
METHOD_FREE_ITEM = 'free_item'
METHOD_DISCOUNT_AMOUNT = 'discount_amount'


@dataclass
class RedemptionDetection:
    detected: bool
    reward_id: Optional[int] = None
    method: Optional[str] = None
    redeemed: bool = False
    details: Dict[str, Any] = field(default_factory=dict)


class RedemptionService:
    """Redeem earned rewards and detect redemptions in orders."""

    def __init__(self, merchant_id: int, outbox: DiscountOutbox = None):
        self.merchant_id = merchant_id
        self.outbox = outbox or DiscountOutbox(merchant_id)
        self.summary = SummaryService(merchant_id)

    def redeem_reward(
        self,
        reward_id: int,
        order_id: str = None,
        customer_id: str = None,
        redemption_type: str = RedemptionType.ORDER_DISCOUNT.value,
        redeemed_by: str = None,
    ) -> Reward:
        """
        Mark an earned reward as redeemed.

        Raises:
            RewardNotFoundError: Unknown reward for this merchant
            ValidationError: Reward belongs to a different customer
            InvalidStatusTransitionError: Reward is not earned
        """
        try:
            reward = (
                Reward.query
                .filter_by(id=reward_id, merchant_id=self.merchant_id)
                .with_for_update()
                .first()
            )
            if not reward:
                raise RewardNotFoundError(reward_id)
            if customer_id and reward.customer_id != customer_id:
                raise ValidationError(
                    f'Reward {reward_id} does not belong to customer {customer_id}', 'customer_id'
                )
            if reward.status != RewardStatus.EARNED.value:
                raise InvalidStatusTransitionError('reward', reward.status, RewardStatus.REDEEMED.value)

            reward.status = RewardStatus.REDEEMED.value
            reward.redeemed_at = utcnow()
            reward.redemption_order_id = order_id
            reward.redemption_type = getattr(redemption_type, 'value', redemption_type)

            log_audit_event(
                merchant_id=self.merchant_id,
                action=AuditAction.REWARD_REDEEMED,
                offer_id=reward.offer_id,
                reward_id=reward.id,
                customer_id=reward.customer_id,
                order_id=order_id,
                old_state=RewardStatus.EARNED.value,
                new_state=RewardStatus.REDEEMED.value,
                triggered_by=TriggeredBy.ADMIN if redeemed_by else TriggeredBy.SYSTEM,
                user_id=redeemed_by,
                details={'redemption_type': reward.redemption_type},
            )

            self.summary.rebuild(reward.customer_id, reward.offer_id)
            self.outbox.enqueue_cleanup(reward)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(f"Reward {reward.id} redeemed by customer {reward.customer_id} (order {order_id})")
        return reward

    # ==================== Detection ====================

    def detect_redemption_from_order(
        self,
        order: Dict[str, Any],
        customer_id: str = None,
        dry_run: bool = False,
    ) -> RedemptionDetection:
        """
        Recognise a reward redemption in an order and, unless dry_run,
        redeem the matched reward.
        """
        order_id = order.get('id')
        if not customer_id:
            customer_id = CustomerIdentifier(self.merchant_id).identify(order).customer_id

        detection = (
            self._match_discount_id(order)
            or (customer_id and self._match_free_item(order, customer_id))
            or (customer_id and self._match_discount_amount(order, customer_id))
        )
        if not detection:
            return RedemptionDetection(detected=False)

        if dry_run:
            logger.info(f"[dry run] Order {order_id} redeems reward {detection.reward_id} via {detection.method}")
            return detection

        redemption_type = (
            RedemptionType.ORDER_DISCOUNT.value if detection.method == METHOD_DISCOUNT_ID
            else RedemptionType.AUTO_DETECTED.value
        )
        reward = self.redeem_reward(detection.reward_id, order_id=order_id, redemption_type=redemption_type)
        detection.redeemed = reward.status == RewardStatus.REDEEMED.value
        return detection

    def _earned_rewards(self, customer_id: str = None) -> List[Reward]:
        query = Reward.query.filter_by(merchant_id=self.merchant_id, status=RewardStatus.EARNED.value)
        if customer_id:
            query = query.filter_by(customer_id=customer_id)
        return query.order_by(Reward.earned_at.asc(), Reward.id.asc()).all()

    def _match_discount_id(self, order) -> Optional[RedemptionDetection]:
        catalog_ids = [
            d.get('catalog_object_id') for d in order.get('discounts') or []
            if d.get('catalog_object_id')
        ]
        if not catalog_ids:
            return None

        reward = (
            Reward.query
            .filter(
                Reward.merchant_id == self.merchant_id,
                Reward.status == RewardStatus.EARNED.value,
                Reward.discount_id.in_(catalog_ids),
            )
            .first()
        )
        if not reward:
            return None
        return RedemptionDetection(
            detected=True,
            reward_id=reward.id,
            method=METHOD_DISCOUNT_ID,
            details={'discount_id': reward.discount_id},
        )

    def _offer_variations(self, offer_id: int) -> set:
        return {
            v.variation_id for v in QualifyingVariation.query.filter_by(
                merchant_id=self.merchant_id, offer_id=offer_id, is_active=True
            )
        }

    def _match_free_item(self, order, customer_id: str) -> Optional[RedemptionDetection]:
        free_variations = set()
        for line_item in order.get('line_items') or []:
            base = money_amount(line_item.get('base_price_money')) or 0
            total = money_amount(line_item.get('total_money'))
            if line_item.get('catalog_object_id') and base > 0 and total == 0:
                free_variations.add(line_item['catalog_object_id'])
        if not free_variations:
            return None

        for reward in self._earned_rewards(customer_id):
            matched = free_variations & self._offer_variations(reward.offer_id)
            if matched:
                return RedemptionDetection(
                    detected=True,
                    reward_id=reward.id,
                    method=METHOD_FREE_ITEM,
                    details={'variation_ids': sorted(matched)},
                )
        return None

    def _match_discount_amount(self, order, customer_id: str) -> Optional[RedemptionDetection]:
        ratio = current_app.config.get('REDEMPTION_AMOUNT_MATCH_RATIO', 0.95)

        for reward in self._earned_rewards(customer_id):
            variations = self._offer_variations(reward.offer_id)
            discount_total = sum(
                money_amount(li.get('total_discount_money')) or 0
                for li in order.get('line_items') or []
                if li.get('catalog_object_id') in variations
            )
            if discount_total <= 0:
                continue

            expected = self._expected_item_value(reward)
            if expected and discount_total >= ratio * expected:
                return RedemptionDetection(
                    detected=True,
                    reward_id=reward.id,
                    method=METHOD_DISCOUNT_AMOUNT,
                    details={'discount_cents': discount_total, 'expected_cents': expected},
                )
        return None

    def _expected_item_value(self, reward: Reward) -> Optional[int]:
        """Highest unit price among the reward's locked purchases, else among the offer's."""
        value = (
            db.session.query(func.max(PurchaseEvent.unit_price_cents))
            .filter(PurchaseEvent.reward_id == reward.id, PurchaseEvent.quantity > 0)
            .scalar()
        )
        if value:
            return value
        return (
            db.session.query(func.max(PurchaseEvent.unit_price_cents))
            .filter(
                PurchaseEvent.merchant_id == self.merchant_id,
                PurchaseEvent.offer_id == reward.offer_id,
                PurchaseEvent.quantity > 0,
            )
            .scalar()
        )
