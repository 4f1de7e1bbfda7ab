"""
Tests for reward redemption and redemption detection.
"""
import pytest

from punchcard.extensions import db
from punchcard.models import (
    AuditAction,
    AuditEvent,
    DiscountOutboxItem,
    OutboxAction,
    RedemptionType,
    Reward,
    RewardStatus,
)
from punchcard.services.redemption_service import (
    METHOD_DISCOUNT_AMOUNT,
    METHOD_DISCOUNT_ID,
    METHOD_FREE_ITEM,
    RedemptionService,
)
from punchcard.utils.exceptions import (
    InvalidStatusTransitionError,
    RewardNotFoundError,
    ValidationError,
)

from payloads import days_ago, make_line_item, make_order

DISCOUNT_GID = 'gid://shopify/DiscountCodeNode/31'


@pytest.fixture
def redemptions(merchant):
    return RedemptionService(merchant.id)


@pytest.fixture
def earned_reward(merchant, offer, ledger):
    ledger.record_purchase('CUST-1', 'ORDER-EARN', 'VAR-1', 12, days_ago(5), unit_price_cents=1500)
    return Reward.query.filter_by(status=RewardStatus.EARNED.value).one()


class TestRedeemReward:

    def test_redeem_earned_reward(self, redemptions, earned_reward):
        reward = redemptions.redeem_reward(
            earned_reward.id,
            order_id='ORDER-FREE',
            customer_id='CUST-1',
            redemption_type=RedemptionType.MANUAL_ADMIN,
            redeemed_by='admin@test-coffee.com',
        )

        assert reward.status == RewardStatus.REDEEMED.value
        assert reward.redeemed_at is not None
        assert reward.redemption_order_id == 'ORDER-FREE'
        assert reward.redemption_type == 'manual_admin'

        audit = AuditEvent.query.filter_by(action=AuditAction.REWARD_REDEEMED.value).one()
        assert audit.triggered_by == 'ADMIN'
        assert audit.user_id == 'admin@test-coffee.com'

    def test_redeem_with_discount_queues_cleanup(self, redemptions, earned_reward):
        earned_reward.discount_id = DISCOUNT_GID
        db.session.commit()

        redemptions.redeem_reward(earned_reward.id)

        cleanup = DiscountOutboxItem.query.filter_by(action=OutboxAction.CLEANUP.value).one()
        assert cleanup.discount_id == DISCOUNT_GID

    def test_cannot_redeem_twice(self, redemptions, earned_reward):
        redemptions.redeem_reward(earned_reward.id)

        with pytest.raises(InvalidStatusTransitionError):
            redemptions.redeem_reward(earned_reward.id)

    def test_cannot_redeem_in_progress(self, redemptions, ledger, offer):
        ledger.record_purchase('CUST-1', 'ORDER-1', 'VAR-1', 3, days_ago(1))
        reward = Reward.query.one()

        with pytest.raises(InvalidStatusTransitionError):
            redemptions.redeem_reward(reward.id)
        assert reward.status == RewardStatus.IN_PROGRESS.value

    def test_unknown_reward(self, redemptions):
        with pytest.raises(RewardNotFoundError):
            redemptions.redeem_reward(4040)

    def test_other_merchant_cannot_redeem(self, other_merchant, earned_reward):
        with pytest.raises(RewardNotFoundError):
            RedemptionService(other_merchant.id).redeem_reward(earned_reward.id)

    def test_customer_mismatch(self, redemptions, earned_reward):
        with pytest.raises(ValidationError):
            redemptions.redeem_reward(earned_reward.id, customer_id='CUST-OTHER')
        assert earned_reward.status == RewardStatus.EARNED.value


class TestDetectRedemption:

    def test_detect_by_discount_id(self, redemptions, earned_reward):
        earned_reward.discount_id = DISCOUNT_GID
        db.session.commit()
        order = make_order(
            order_id='ORDER-FREE',
            line_items=[make_line_item('VAR-1', 1, discount_uids=['D1'], total=0, total_discount=1500)],
            discounts=[{'uid': 'D1', 'catalog_object_id': DISCOUNT_GID, 'applied_money': {'amount': 1500}}],
        )

        detection = redemptions.detect_redemption_from_order(order)

        assert detection.detected is True
        assert detection.method == METHOD_DISCOUNT_ID
        assert detection.redeemed is True
        assert earned_reward.status == RewardStatus.REDEEMED.value
        assert earned_reward.redemption_type == RedemptionType.ORDER_DISCOUNT.value
        assert earned_reward.redemption_order_id == 'ORDER-FREE'

    def test_detect_free_item(self, redemptions, earned_reward):
        order = make_order(order_id='ORDER-FREE', line_items=[make_line_item('VAR-2', 1, total=0)])

        detection = redemptions.detect_redemption_from_order(order)

        assert detection.method == METHOD_FREE_ITEM
        assert detection.details == {'variation_ids': ['VAR-2']}
        assert earned_reward.status == RewardStatus.REDEEMED.value
        assert earned_reward.redemption_type == RedemptionType.AUTO_DETECTED.value

    def test_detect_by_discount_amount(self, redemptions, earned_reward):
        order = make_order(line_items=[make_line_item('VAR-1', 2, total_discount=1450)])

        detection = redemptions.detect_redemption_from_order(order)

        assert detection.method == METHOD_DISCOUNT_AMOUNT
        assert detection.details == {'discount_cents': 1450, 'expected_cents': 1500}

    def test_small_discount_not_a_redemption(self, redemptions, earned_reward):
        order = make_order(line_items=[make_line_item('VAR-1', 2, total_discount=1000)])

        detection = redemptions.detect_redemption_from_order(order)

        assert detection.detected is False
        assert earned_reward.status == RewardStatus.EARNED.value

    def test_dry_run_does_not_redeem(self, redemptions, earned_reward):
        order = make_order(line_items=[make_line_item('VAR-1', 1, total=0)])

        detection = redemptions.detect_redemption_from_order(order, dry_run=True)

        assert detection.detected is True
        assert detection.redeemed is False
        assert earned_reward.status == RewardStatus.EARNED.value

    def test_free_item_needs_earned_reward_of_that_customer(self, redemptions, earned_reward):
        order = make_order(customer_id='CUST-2', line_items=[make_line_item('VAR-1', 1, total=0)])

        assert redemptions.detect_redemption_from_order(order).detected is False

    def test_free_non_qualifying_item_ignored(self, redemptions, earned_reward):
        order = make_order(line_items=[make_line_item('VAR-OTHER', 1, total=0)])

        assert redemptions.detect_redemption_from_order(order).detected is False
