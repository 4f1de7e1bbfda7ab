"""
Query building blocks shared by the ledger, summary and expiration services.

"Eligible" purchase rows are the ones that still count toward progress:
unlocked (no reward_id), window not yet ended, and not superseded by split
children. Refund rows never supersede the purchase they reference.
"""
from datetime import date

from sqlalchemy import and_, exists, func
from sqlalchemy.orm import aliased

from ..extensions import db
from ..models.ledger import PurchaseEvent


def not_superseded():
    """Exclude split parents; their children carry the quantity instead."""
    child = aliased(PurchaseEvent)
    return ~exists().where(
        and_(
            child.original_event_id == PurchaseEvent.id,
            child.is_refund.is_(False),
        )
    )


def customer_offer_filter(merchant_id: int, offer_id: int, customer_id: str):
    return and_(
        PurchaseEvent.merchant_id == merchant_id,
        PurchaseEvent.offer_id == offer_id,
        PurchaseEvent.customer_id == customer_id,
    )


def eligible_filter(merchant_id: int, offer_id: int, customer_id: str, as_of: date):
    """Unlocked, unexpired, non-superseded rows for one customer and offer."""
    return and_(
        customer_offer_filter(merchant_id, offer_id, customer_id),
        PurchaseEvent.reward_id.is_(None),
        PurchaseEvent.window_end_date >= as_of,
        not_superseded(),
    )


def eligible_quantity(merchant_id: int, offer_id: int, customer_id: str, as_of: date) -> int:
    """Signed sum of eligible quantities (refunds included)."""
    total = (
        db.session.query(func.coalesce(func.sum(PurchaseEvent.quantity), 0))
        .filter(eligible_filter(merchant_id, offer_id, customer_id, as_of))
        .scalar()
    )
    return int(total or 0)


def locked_quantity(reward_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(PurchaseEvent.quantity), 0))
        .filter(PurchaseEvent.reward_id == reward_id, not_superseded())
        .scalar()
    )
    return int(total or 0)
