"""
Customer identification for incoming orders.

Orders do not always carry a customer id directly. Identification runs an
ordered list of strategies and the first match wins; each strategy reports
the method it used, which is stored on the purchase as customer_source.
"""

import logging
from dataclasses import dataclass
from typing import Optional, List, Dict, Any

from ..extensions import db
from ..models.ledger import Reward

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CustomerMatch:
    found: bool
    customer_id: Optional[str] = None
    method: Optional[str] = None


NO_MATCH = CustomerMatch(found=False)


class IdentificationStrategy:
    """Base class: inspect an order payload and maybe return a customer."""
    method = None

    def identify(self, order: Dict[str, Any]) -> CustomerMatch:
        raise NotImplementedError

    def _match(self, customer_id: Optional[str]) -> CustomerMatch:
        if customer_id:
            return CustomerMatch(found=True, customer_id=customer_id, method=self.method)
        return NO_MATCH


class OrderCustomerStrategy(IdentificationStrategy):
    """The customer attached to the order itself."""
    method = 'order_customer_id'

    def identify(self, order):
        return self._match(order.get('customer_id'))


class TenderCustomerStrategy(IdentificationStrategy):
    """A customer attached to any payment tender."""
    method = 'tender_customer_id'

    def identify(self, order):
        for tender in order.get('tenders') or []:
            if tender.get('customer_id'):
                return self._match(tender['customer_id'])
        return NO_MATCH


class RewardDiscountStrategy(IdentificationStrategy):
    """
    Reverse lookup through an applied reward discount.

    Reward discounts are customer-restricted, so an order that applied one
    belongs to that reward's customer.
    """
    method = 'reward_discount'

    def __init__(self, merchant_id: int):
        self.merchant_id = merchant_id

    def identify(self, order):
        discount_ids = [
            d.get('catalog_object_id') for d in order.get('discounts') or []
            if d.get('catalog_object_id')
        ]
        if not discount_ids:
            return NO_MATCH

        customer_id = (
            db.session.query(Reward.customer_id)
            .filter(
                Reward.merchant_id == self.merchant_id,
                Reward.discount_id.in_(discount_ids),
            )
            .order_by(Reward.id.desc())
            .limit(1)
            .scalar()
        )
        return self._match(customer_id)


class CustomerIdentifier:
    """
    Runs identification strategies in order.

    Usage:
        match = CustomerIdentifier(merchant_id).identify(order)
        if match.found:
            ...
    """

    def __init__(self, merchant_id: int, strategies: List[IdentificationStrategy] = None):
        self.merchant_id = merchant_id
        if strategies is None:
            strategies = [
                OrderCustomerStrategy(),
                TenderCustomerStrategy(),
                RewardDiscountStrategy(merchant_id),
            ]
        self.strategies = strategies

    def identify(self, order: Dict[str, Any]) -> CustomerMatch:
        for strategy in self.strategies:
            match = strategy.identify(order)
            if match.found:
                logger.debug(f"Order {order.get('id')}: customer {match.customer_id} via {match.method}")
                return match

        logger.debug(f"Order {order.get('id')}: no customer identified")
        return NO_MATCH
