"""
Customer summary aggregator.

Rebuilds the CustomerSummary projection from the ledger. Called at the end
of every ledger mutation, inside the same transaction.
"""

import logging
from typing import Optional, List

from sqlalchemy import func, select

from ..extensions import db
from ..models.ledger import PurchaseEvent, Reward, RewardStatus
from ..models.offer import Offer
from ..models.summary import CustomerSummary
from ..utils.db import dialect_insert, today, utcnow
from ..utils.exceptions import OfferNotFoundError
from .ledger_queries import customer_offer_filter, eligible_quantity, not_superseded

logger = logging.getLogger(__name__)


class SummaryService:
    """Read and rebuild per-customer progress summaries."""

    def __init__(self, merchant_id: int):
        self.merchant_id = merchant_id

    def rebuild(self, customer_id: str, offer_id: int) -> CustomerSummary:
        """
        Recompute and upsert the summary for one customer and offer.

        Does not commit; the caller owns the transaction.
        """
        offer = Offer.query.filter_by(id=offer_id, merchant_id=self.merchant_id).first()
        if not offer:
            raise OfferNotFoundError(offer_id)

        current_quantity = max(0, eligible_quantity(self.merchant_id, offer_id, customer_id, today()))

        lifetime, last_purchase_at = (
            db.session.query(
                func.coalesce(func.sum(PurchaseEvent.quantity), 0),
                func.max(PurchaseEvent.purchased_at),
            )
            .filter(
                customer_offer_filter(self.merchant_id, offer_id, customer_id),
                PurchaseEvent.quantity > 0,
                not_superseded(),
            )
            .one()
        )

        rewards = Reward.query.filter_by(
            merchant_id=self.merchant_id,
            offer_id=offer_id,
            customer_id=customer_id,
        ).order_by(Reward.earned_at.asc(), Reward.id.asc()).all()

        in_progress = next((r for r in rewards if r.status == RewardStatus.IN_PROGRESS.value), None)
        earned = [r for r in rewards if r.status == RewardStatus.EARNED.value]
        redeemed_count = sum(1 for r in rewards if r.status == RewardStatus.REDEEMED.value)

        values = {
            'current_quantity': current_quantity,
            'required_quantity': offer.required_quantity,
            'window_start_date': in_progress.window_start_date if in_progress else None,
            'window_end_date': in_progress.window_end_date if in_progress else None,
            'has_earned_reward': bool(earned),
            'earned_reward_id': earned[0].id if earned else None,
            'total_lifetime_purchases': int(lifetime or 0),
            'total_rewards_earned': len(earned) + redeemed_count,
            'total_rewards_redeemed': redeemed_count,
            'last_purchase_at': last_purchase_at,
            'updated_at': utcnow(),
        }

        stmt = dialect_insert(CustomerSummary).values(
            merchant_id=self.merchant_id,
            customer_id=customer_id,
            offer_id=offer_id,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=['merchant_id', 'customer_id', 'offer_id'],
            set_=values,
        )
        db.session.execute(stmt)

        logger.debug(
            f"Summary rebuilt for customer {customer_id} offer {offer_id}: "
            f"{current_quantity}/{offer.required_quantity}, earned={len(earned)}"
        )
        return self.get_summary(customer_id, offer_id)

    def get_summary(self, customer_id: str, offer_id: int) -> Optional[CustomerSummary]:
        stmt = (
            select(CustomerSummary)
            .filter_by(merchant_id=self.merchant_id, customer_id=customer_id, offer_id=offer_id)
            .execution_options(populate_existing=True)
        )
        return db.session.execute(stmt).scalar_one_or_none()

    def get_customer_status(self, customer_id: str) -> List[CustomerSummary]:
        """All summaries for a customer across active offers."""
        return (
            CustomerSummary.query
            .join(Offer, Offer.id == CustomerSummary.offer_id)
            .filter(
                CustomerSummary.merchant_id == self.merchant_id,
                CustomerSummary.customer_id == customer_id,
                Offer.is_active.is_(True),
            )
            .order_by(Offer.brand_name, Offer.size_group)
            .all()
        )
