"""
Purchase qualifier.

Pure decisions about which order lines may count toward a frequent-buyer
offer. No database access: the intake gateway loads the merchant's reward
discount ids and passes them in.

A line is skipped when:
- it has no catalog variation
- its quantity is zero or negative
- it is free because this program's reward discount zeroed it
- any discount applied to it is one of this program's reward discounts

A line zeroed by an unrelated promotion still counts.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any, Iterable


# Skip reasons
SKIP_NO_VARIATION = 'no_variation'
SKIP_NON_POSITIVE_QUANTITY = 'non_positive_quantity'
SKIP_FREE_ITEM_REDEMPTION = 'free_item_redemption'
SKIP_REWARD_DISCOUNT = 'reward_discount_applied'


@dataclass(frozen=True)
class AppliedDiscount:
    """An order-level discount as seen by the qualifier."""
    uid: str
    catalog_object_id: Optional[str]
    amount_cents: int
    is_reward_discount: bool


@dataclass(frozen=True)
class LineItemDecision:
    """Whether one line counts, and the values the ledger needs if it does."""
    skip: bool
    reason: Optional[str] = None
    variation_id: Optional[str] = None
    quantity: int = 0
    unit_price_cents: Optional[int] = None


def money_amount(money: Optional[Dict[str, Any]]) -> Optional[int]:
    """Extract an integer minor-unit amount from a money object."""
    if not money:
        return None
    amount = money.get('amount')
    if amount is None:
        return None
    return int(amount)


def parse_quantity(value) -> int:
    """Line quantities arrive as strings; fractional quantities truncate."""
    if value is None:
        return 0
    try:
        return int(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        return 0


def build_discount_map(order: Dict[str, Any], reward_discount_ids: Iterable[str]) -> Dict[str, AppliedDiscount]:
    """
    Index the order's discounts by uid, flagging this program's own.

    Args:
        order: Order payload
        reward_discount_ids: Upstream discount ids provisioned for rewards
    """
    reward_discount_ids = set(d for d in reward_discount_ids if d)
    discount_map = {}

    for discount in order.get('discounts') or []:
        uid = discount.get('uid')
        if not uid:
            continue
        catalog_id = discount.get('catalog_object_id')
        discount_map[uid] = AppliedDiscount(
            uid=uid,
            catalog_object_id=catalog_id,
            amount_cents=money_amount(discount.get('applied_money')) or 0,
            is_reward_discount=bool(catalog_id and catalog_id in reward_discount_ids),
        )

    return discount_map


def should_skip_line_item(line_item: Dict[str, Any], discount_map: Dict[str, AppliedDiscount]) -> LineItemDecision:
    """Decide whether a line item counts toward an offer."""
    variation_id = line_item.get('catalog_object_id')
    if not variation_id:
        return LineItemDecision(skip=True, reason=SKIP_NO_VARIATION)

    quantity = parse_quantity(line_item.get('quantity'))
    if quantity <= 0:
        return LineItemDecision(skip=True, reason=SKIP_NON_POSITIVE_QUANTITY, variation_id=variation_id)

    applied_uids = [d.get('discount_uid') for d in line_item.get('applied_discounts') or []]
    applied = [discount_map[uid] for uid in applied_uids if uid in discount_map]

    if any(d.is_reward_discount for d in applied):
        return LineItemDecision(skip=True, reason=SKIP_REWARD_DISCOUNT, variation_id=variation_id)

    gross = money_amount(line_item.get('gross_sales_money'))
    if gross is None:
        gross = money_amount(line_item.get('base_price_money'))
    net = money_amount(line_item.get('total_money'))

    if gross and gross > 0 and net == 0:
        # Zeroed by an order-level discount; only ours makes it a redemption
        if any(d.is_reward_discount for d in discount_map.values()):
            return LineItemDecision(skip=True, reason=SKIP_FREE_ITEM_REDEMPTION, variation_id=variation_id)

    return LineItemDecision(
        skip=False,
        variation_id=variation_id,
        quantity=quantity,
        unit_price_cents=money_amount(line_item.get('base_price_money')),
    )
