"""
Tests for the order intake gateway.

Covers:
- Exactly-once processing per order
- Outcome classification (qualifying, non_qualifying, no_customer, no_line_items)
- Reward discount exclusion
- Per-line failure isolation and transaction failure rollback
- Refund intake
"""
import pytest
from unittest.mock import patch

from sqlalchemy.exc import IntegrityError

from punchcard.extensions import db
from punchcard.models import (
    AuditAction,
    AuditEvent,
    OrderSource,
    ProcessedOrder,
    ProcessedOrderResult,
    PurchaseEvent,
    Reward,
    RewardStatus,
)
from punchcard.services.ledger_service import REASON_DUPLICATE, REASON_NOT_QUALIFYING
from punchcard.services.order_intake import (
    OrderIntakeService,
    extract_tender_info,
    parse_order_timestamp,
)
from punchcard.services.purchase_qualifier import SKIP_REWARD_DISCOUNT
from punchcard.utils.exceptions import ValidationError

from payloads import days_ago, make_line_item, make_order, make_refund


@pytest.fixture
def intake(merchant):
    return OrderIntakeService(merchant.id)


class TestProcessOrder:
    """Happy path and exactly-once behavior."""

    def test_qualifying_order(self, merchant, offer, intake):
        order = make_order(line_items=[make_line_item('VAR-1', 2), make_line_item('VAR-2', 1)])

        result = intake.process_order(order)

        assert result.already_processed is False
        assert result.result_type == ProcessedOrderResult.QUALIFYING.value
        assert result.customer_id == 'CUST-1'
        assert len(result.purchase_events) == 2
        assert result.reward_earned is False

        claim = ProcessedOrder.query.filter_by(order_id='ORDER-1').one()
        assert claim.result_type == ProcessedOrderResult.QUALIFYING.value
        assert claim.qualifying_items == 2
        assert claim.total_line_items == 2
        assert claim.customer_id == 'CUST-1'
        assert claim.source == OrderSource.WEBHOOK.value

    def test_double_intake_is_idempotent(self, merchant, offer, intake):
        order = make_order(line_items=[make_line_item('VAR-1', 3)])

        intake.process_order(order)
        second = intake.process_order(order, source='catchup')

        assert second.already_processed is True
        assert PurchaseEvent.query.count() == 1
        assert ProcessedOrder.query.count() == 1
        assert Reward.query.one().current_quantity == 3

    def test_order_with_recorded_purchases_counts_as_processed(self, merchant, offer, intake, ledger):
        """Purchases recorded before claims existed still block reprocessing."""
        ledger.record_purchase('CUST-1', 'ORDER-LEGACY', 'VAR-1', 2, days_ago(30))

        result = intake.process_order(make_order(order_id='ORDER-LEGACY'))

        assert result.already_processed is True
        assert ProcessedOrder.query.count() == 0

    def test_claim_lost_to_another_worker(self, merchant, offer, intake):
        """A claim that inserts no row means another worker owns the order."""
        with patch.object(intake, 'is_order_processed', return_value=False), \
                patch.object(intake, '_claim_order', return_value=False):
            result = intake.process_order(make_order())

        assert result.already_processed is True
        assert PurchaseEvent.query.count() == 0

    def test_order_earning_reward(self, merchant, offer, intake):
        result = intake.process_order(make_order(line_items=[make_line_item('VAR-1', 12)]))

        assert result.reward_earned is True
        assert Reward.query.filter_by(status=RewardStatus.EARNED.value).count() == 1

    def test_source_and_tender_details_recorded(self, merchant, offer, intake):
        order = make_order(tenders=[
            {'type': 'CARD', 'receipt_url': None},
            {'type': 'CASH', 'receipt_url': 'https://receipts.example.com/r/9'},
        ])

        intake.process_order(order, source=OrderSource.BACKFILL)

        event = PurchaseEvent.query.one()
        assert event.source == 'backfill'
        assert event.customer_source == 'order_customer_id'
        assert event.payment_type == 'CARD'
        assert event.receipt_url == 'https://receipts.example.com/r/9'
        assert event.location_id == 'LOC-1'
        assert event.unit_price_cents == 1500

    def test_caller_supplied_customer(self, merchant, offer, intake):
        order = make_order(customer_id=None)

        result = intake.process_order(order, customer_id='CUST-42', customer_source='loyalty_lookup')

        assert result.customer_id == 'CUST-42'
        assert PurchaseEvent.query.one().customer_source == 'loyalty_lookup'

    def test_customer_from_tender(self, merchant, offer, intake):
        order = make_order(customer_id=None, tenders=[{'type': 'CARD', 'customer_id': 'CUST-9'}])

        result = intake.process_order(order)

        assert result.customer_id == 'CUST-9'
        assert PurchaseEvent.query.one().customer_source == 'tender_customer_id'

    def test_intake_audit_event(self, merchant, offer, intake):
        intake.process_order(make_order())

        audit = AuditEvent.query.filter_by(action=AuditAction.ORDER_INTAKE_COMPLETE.value).one()
        assert audit.order_id == 'ORDER-1'
        assert audit.new_state == ProcessedOrderResult.QUALIFYING.value
        assert audit.details['qualifying_items'] == 1


class TestOrderOutcomes:
    """Orders that record nothing are still claimed."""

    def test_no_customer(self, merchant, offer, intake):
        result = intake.process_order(make_order(customer_id=None))

        assert result.result_type == ProcessedOrderResult.NO_CUSTOMER.value
        assert PurchaseEvent.query.count() == 0
        assert ProcessedOrder.query.one().result_type == ProcessedOrderResult.NO_CUSTOMER.value

    def test_no_line_items(self, merchant, offer, intake):
        result = intake.process_order(make_order(line_items=[]))

        assert result.result_type == ProcessedOrderResult.NO_LINE_ITEMS.value
        assert ProcessedOrder.query.one().result_type == ProcessedOrderResult.NO_LINE_ITEMS.value

    def test_non_qualifying(self, merchant, offer, intake):
        result = intake.process_order(make_order(line_items=[make_line_item('VAR-OTHER', 2)]))

        assert result.result_type == ProcessedOrderResult.NON_QUALIFYING.value
        assert result.skipped_items == [
            {'index': 0, 'variation_id': 'VAR-OTHER', 'reason': REASON_NOT_QUALIFYING}
        ]

    def test_duplicate_line_in_same_order(self, merchant, offer, intake):
        """Two identical lines share an idempotency key, so only one is recorded."""
        order = make_order(line_items=[make_line_item('VAR-1', 2), make_line_item('VAR-1', 2)])

        result = intake.process_order(order)

        assert len(result.purchase_events) == 1
        assert result.skipped_items[0]['reason'] == REASON_DUPLICATE

    def test_missing_order_id(self, merchant, intake):
        with pytest.raises(ValidationError):
            intake.process_order({'line_items': []})

    def test_missing_merchant(self, app):
        with pytest.raises(ValidationError):
            OrderIntakeService(None).process_order(make_order())


class TestRewardDiscountExclusion:
    """Lines paid for with this program's reward discount never count."""

    def test_reward_discount_line_skipped(self, merchant, offer, intake, ledger):
        ledger.record_purchase('CUST-1', 'ORDER-EARN', 'VAR-1', 12, days_ago(10))
        reward = Reward.query.filter_by(status=RewardStatus.EARNED.value).one()
        reward.discount_id = 'gid://shopify/DiscountCodeNode/77'
        db.session.commit()

        order = make_order(
            order_id='ORDER-REDEEM',
            line_items=[
                make_line_item('VAR-1', 1, discount_uids=['DISC-1'], total=0, total_discount=1500),
                make_line_item('VAR-2', 1),
            ],
            discounts=[{
                'uid': 'DISC-1',
                'catalog_object_id': 'gid://shopify/DiscountCodeNode/77',
                'applied_money': {'amount': 1500},
            }],
        )

        result = intake.process_order(order)

        assert result.skipped_items[0]['reason'] == SKIP_REWARD_DISCOUNT
        assert [e.variation_id for e in result.purchase_events] == ['VAR-2']

    def test_unrelated_promotion_still_counts(self, merchant, offer, intake):
        order = make_order(
            line_items=[make_line_item('VAR-1', 1, discount_uids=['PROMO'], total=0, total_discount=1500)],
            discounts=[{'uid': 'PROMO', 'catalog_object_id': 'SPRING-SALE', 'applied_money': {'amount': 1500}}],
        )

        result = intake.process_order(order)

        assert result.result_type == ProcessedOrderResult.QUALIFYING.value


class TestRedemptionDetection:
    """Orders paid with a reward discount redeem that reward."""

    @pytest.fixture
    def provisioned_reward(self, merchant, offer, ledger):
        ledger.record_purchase('CUST-1', 'ORDER-EARN', 'VAR-1', 12, days_ago(10))
        reward = Reward.query.filter_by(status=RewardStatus.EARNED.value).one()
        reward.discount_id = 'gid://shopify/DiscountCodeNode/77'
        db.session.commit()
        return reward

    @staticmethod
    def redeeming_order():
        return make_order(
            order_id='ORDER-REDEEM',
            line_items=[
                make_line_item('VAR-1', 1, discount_uids=['DISC-1'], total=0, total_discount=1500),
                make_line_item('VAR-2', 1),
            ],
            discounts=[{
                'uid': 'DISC-1',
                'catalog_object_id': 'gid://shopify/DiscountCodeNode/77',
                'applied_money': {'amount': 1500},
            }],
        )

    def test_order_with_reward_discount_redeems_reward(self, intake, provisioned_reward):
        result = intake.process_order(self.redeeming_order())

        assert result.redemption.detected is True
        assert result.redemption.reward_id == provisioned_reward.id
        assert result.redemption.redeemed is True

        reward = db.session.get(Reward, provisioned_reward.id)
        assert reward.status == RewardStatus.REDEEMED.value
        assert reward.redemption_order_id == 'ORDER-REDEEM'

        audit = AuditEvent.query.filter_by(action=AuditAction.REWARD_REDEEMED.value).one()
        assert audit.reward_id == reward.id

    def test_order_without_reward_discount(self, merchant, offer, intake):
        result = intake.process_order(make_order())

        assert result.redemption.detected is False

    def test_detection_failure_keeps_order_committed(self, intake, provisioned_reward):
        with patch.object(
            intake.redemptions, 'detect_redemption_from_order', side_effect=RuntimeError('lookup failed'),
        ):
            result = intake.process_order(self.redeeming_order())

        assert result.redemption is None
        assert [e.variation_id for e in result.purchase_events] == ['VAR-2']
        assert ProcessedOrder.query.filter_by(order_id='ORDER-REDEEM').count() == 1
        assert db.session.get(Reward, provisioned_reward.id).status == RewardStatus.EARNED.value


class TestLineFailures:

    def test_line_error_skipped_and_order_committed(self, merchant, offer, intake):
        """One failing line does not roll back the others."""
        real_record = intake.ledger.record_purchase
        calls = []

        def flaky_record(**kwargs):
            calls.append(kwargs['variation_id'])
            if kwargs['variation_id'] == 'VAR-2':
                raise RuntimeError('catalog lookup failed')
            return real_record(**kwargs)

        order = make_order(line_items=[make_line_item('VAR-1', 2), make_line_item('VAR-2', 1)])
        with patch.object(intake.ledger, 'record_purchase', side_effect=flaky_record):
            result = intake.process_order(order)

        assert calls == ['VAR-1', 'VAR-2']
        assert result.result_type == ProcessedOrderResult.QUALIFYING.value
        assert len(result.purchase_events) == 1
        assert result.failed_items == [
            {'index': 1, 'variation_id': 'VAR-2', 'error': 'catalog lookup failed'}
        ]
        assert PurchaseEvent.query.count() == 1
        assert ProcessedOrder.query.one().qualifying_items == 1

    def test_database_error_rolls_back_whole_order(self, merchant, offer, intake):
        """Constraint failures release the claim so a retry can reprocess."""
        error = IntegrityError('INSERT INTO loyalty_purchase_events', {}, Exception('unique violation'))
        with patch.object(intake.ledger, 'record_purchase', side_effect=error):
            with pytest.raises(IntegrityError):
                intake.process_order(make_order())

        assert ProcessedOrder.query.count() == 0
        assert PurchaseEvent.query.count() == 0

        retry = intake.process_order(make_order())
        assert retry.result_type == ProcessedOrderResult.QUALIFYING.value


class TestProcessRefund:

    def test_refund_revokes_reward(self, merchant, offer, intake):
        intake.process_order(make_order(line_items=[make_line_item('VAR-1', 12)], created_at=days_ago(3)))
        reward = Reward.query.filter_by(status=RewardStatus.EARNED.value).one()

        result = intake.process_refund(make_refund(returns=[('VAR-1', 1)]))

        assert result.customer_id == 'CUST-1'
        assert len(result.refunds) == 1
        assert result.refunds[0].recorded is True
        assert result.revoked_reward_ids == [reward.id]
        assert reward.status == RewardStatus.REVOKED.value

    def test_refund_retry_is_idempotent(self, merchant, offer, intake):
        intake.process_order(make_order(line_items=[make_line_item('VAR-1', 5)]))

        intake.process_refund(make_refund())
        retry = intake.process_refund(make_refund())

        assert retry.refunds[0].recorded is False
        assert retry.refunds[0].reason == REASON_DUPLICATE
        assert PurchaseEvent.query.filter_by(is_refund=True).count() == 1

    def test_refund_for_unknown_order(self, merchant, offer, intake):
        result = intake.process_refund(make_refund(order_id='ORDER-NOPE'))

        assert result.customer_id is None
        assert result.refunds == []

    def test_refund_skips_lines_without_variation(self, merchant, offer, intake):
        intake.process_order(make_order(line_items=[make_line_item('VAR-1', 5)]))
        refund = make_refund(returns=[('VAR-1', 1)])
        refund['return_line_items'].append({'quantity': '1'})

        result = intake.process_refund(refund)

        assert len(result.refunds) == 1

    def test_refund_requires_order_id(self, merchant, intake):
        with pytest.raises(ValidationError):
            intake.process_refund({'id': 'REF-1'})


class TestHelpers:

    def test_parse_order_timestamp(self):
        parsed = parse_order_timestamp('2026-05-01T10:15:00Z')
        assert parsed.year == 2026 and parsed.hour == 10
        assert parsed.tzinfo is not None

    def test_parse_missing_timestamp_defaults_to_now(self):
        assert parse_order_timestamp(None) is not None

    def test_extract_tender_info_empty(self):
        assert extract_tender_info({}) == {'payment_type': None, 'receipt_url': None}
