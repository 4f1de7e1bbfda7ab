"""
Tests for the discount outbox.

The upstream client is mocked; these tests cover queue state, retries and
the hand-off between provisioning and cleanup.
"""
import pytest
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

from punchcard.extensions import db
from punchcard.models import (
    AuditAction,
    AuditEvent,
    DiscountOutboxItem,
    Merchant,
    OutboxAction,
    OutboxStatus,
    Reward,
    RewardStatus,
)
from punchcard.services.discount_client import DiscountClient
from punchcard.services.discount_outbox import DiscountOutbox, merchants_with_pending_items
from punchcard.services.ledger_service import LedgerService
from punchcard.services.redemption_service import RedemptionService
from punchcard.utils.exceptions import DiscountServiceError

from payloads import days_ago

DISCOUNT_GID = 'gid://shopify/DiscountCodeNode/99'


@pytest.fixture
def discount_client():
    client = MagicMock(spec=DiscountClient)
    client.create_reward_discount.return_value = DISCOUNT_GID
    client.delete_discount.return_value = True
    return client


@pytest.fixture
def earned_reward(merchant, offer, ledger):
    ledger.record_purchase('CUST-1', 'ORDER-1', 'VAR-1', 12, days_ago(2), unit_price_cents=1500)
    return Reward.query.filter_by(status=RewardStatus.EARNED.value).one()


@pytest.fixture
def outbox(merchant, discount_client):
    return DiscountOutbox(merchant.id, client=discount_client)


def provision_item(reward):
    return DiscountOutboxItem.query.filter_by(reward_id=reward.id, action=OutboxAction.PROVISION.value).one()


class TestProvisioning:

    def test_provision_success(self, earned_reward, outbox, discount_client):
        stats = outbox.process_pending()

        assert stats == {'processed': 1, 'succeeded': 1, 'retried': 0, 'failed': 0, 'cancelled': 0}
        assert earned_reward.discount_id == DISCOUNT_GID

        item = provision_item(earned_reward)
        assert item.status == OutboxStatus.DONE.value
        assert item.discount_id == DISCOUNT_GID
        assert item.processed_at is not None

        args = discount_client.create_reward_discount.call_args[0]
        assert args[0] == earned_reward.id
        assert args[1] == 'CUST-1'
        assert sorted(args[2]) == ['VAR-1', 'VAR-2']
        assert AuditEvent.query.filter_by(action=AuditAction.DISCOUNT_PROVISIONED.value).count() == 1

    def test_nothing_due(self, merchant, outbox, discount_client):
        stats = outbox.process_pending()

        assert stats['processed'] == 0
        discount_client.create_reward_discount.assert_not_called()

    def test_already_provisioned_reward_skips_api(self, earned_reward, outbox, discount_client):
        earned_reward.discount_id = 'gid://shopify/DiscountCodeNode/5'
        db.session.commit()

        stats = outbox.process_pending()

        assert stats['succeeded'] == 1
        discount_client.create_reward_discount.assert_not_called()

    def test_cancelled_when_reward_no_longer_earned(self, earned_reward, outbox, discount_client):
        earned_reward.status = RewardStatus.REVOKED.value
        db.session.commit()

        stats = outbox.process_pending()

        assert stats['cancelled'] == 1
        assert provision_item(earned_reward).status == OutboxStatus.CANCELLED.value
        discount_client.create_reward_discount.assert_not_called()

    def test_reward_redeemed_during_api_call_gets_cleanup(self, earned_reward, outbox, discount_client):
        """A reward that left earned while the discount was created gets it deleted."""
        def redeem_meanwhile(*args):
            db.session.query(Reward).filter_by(id=earned_reward.id).update(
                {Reward.status: RewardStatus.REDEEMED.value}, synchronize_session=False
            )
            return DISCOUNT_GID

        discount_client.create_reward_discount.side_effect = redeem_meanwhile

        outbox.process_pending()

        cleanup = DiscountOutboxItem.query.filter_by(action=OutboxAction.CLEANUP.value).one()
        assert cleanup.discount_id == DISCOUNT_GID
        assert cleanup.status == OutboxStatus.PENDING.value


class TestRetries:

    def test_failure_schedules_retry_with_backoff(self, app, earned_reward, outbox, discount_client):
        discount_client.create_reward_discount.side_effect = DiscountServiceError('upstream down')
        backoff = app.config['OUTBOX_BACKOFF_SECONDS']

        before = datetime.utcnow()
        stats = outbox.process_pending()

        assert stats['retried'] == 1
        item = provision_item(earned_reward)
        assert item.status == OutboxStatus.PENDING.value
        assert item.attempts == 1
        assert item.last_error == 'upstream down'
        assert timedelta(seconds=backoff - 1) <= item.next_attempt_at - before <= timedelta(seconds=backoff + 5)
        assert earned_reward.discount_id is None
        assert earned_reward.status == RewardStatus.EARNED.value

        # Not due yet
        assert outbox.process_pending()['processed'] == 0

    def test_backoff_doubles(self, app, earned_reward, outbox, discount_client):
        discount_client.create_reward_discount.side_effect = DiscountServiceError('upstream down')
        backoff = app.config['OUTBOX_BACKOFF_SECONDS']
        item = provision_item(earned_reward)
        item.attempts = 2
        db.session.commit()

        before = datetime.utcnow()
        outbox.process_pending()

        item = provision_item(earned_reward)
        assert item.attempts == 3
        assert item.next_attempt_at - before >= timedelta(seconds=backoff * 4 - 1)

    def test_gives_up_after_max_attempts(self, app, earned_reward, outbox, discount_client):
        discount_client.create_reward_discount.side_effect = DiscountServiceError('upstream down')
        item = provision_item(earned_reward)
        item.attempts = app.config['OUTBOX_MAX_ATTEMPTS'] - 1
        db.session.commit()

        stats = outbox.process_pending()

        assert stats['failed'] == 1
        item = provision_item(earned_reward)
        assert item.status == OutboxStatus.FAILED.value
        failed = AuditEvent.query.filter_by(action=AuditAction.DISCOUNT_FAILED.value).one()
        assert failed.reward_id == earned_reward.id
        assert earned_reward.status == RewardStatus.EARNED.value

    def test_missing_credentials_is_retryable(self, offer, merchant):
        """A merchant without API credentials fails delivery without raising."""
        merchant_row = db.session.get(Merchant, merchant.id)
        merchant_row.access_token = None
        db.session.commit()
        LedgerService(merchant.id).record_purchase('CUST-1', 'ORDER-1', 'VAR-1', 12, days_ago(1))

        stats = DiscountOutbox(merchant.id).process_pending()

        assert stats['retried'] == 1
        item = DiscountOutboxItem.query.one()
        assert 'missing commerce credentials' in item.last_error


class TestCleanup:

    def test_redemption_deletes_discount(self, earned_reward, outbox, discount_client, merchant):
        outbox.process_pending()
        RedemptionService(merchant.id).redeem_reward(earned_reward.id, order_id='ORDER-FREE')

        stats = outbox.process_pending()

        assert stats['succeeded'] == 1
        discount_client.delete_discount.assert_called_once_with(DISCOUNT_GID)
        cleanup = DiscountOutboxItem.query.filter_by(action=OutboxAction.CLEANUP.value).one()
        assert cleanup.status == OutboxStatus.DONE.value

    def test_redemption_before_provisioning_cancels(self, earned_reward, outbox, discount_client, merchant):
        RedemptionService(merchant.id).redeem_reward(earned_reward.id)

        assert provision_item(earned_reward).status == OutboxStatus.CANCELLED.value
        assert DiscountOutboxItem.query.filter_by(action=OutboxAction.CLEANUP.value).count() == 0
        assert outbox.process_pending()['processed'] == 0

    def test_cleanup_failure_retries(self, earned_reward, outbox, discount_client, merchant):
        outbox.process_pending()
        RedemptionService(merchant.id).redeem_reward(earned_reward.id)
        discount_client.delete_discount.side_effect = DiscountServiceError('timeout')

        stats = outbox.process_pending()

        assert stats['retried'] == 1


class TestPendingMerchants:

    def test_merchants_with_pending_items(self, merchant, earned_reward):
        assert merchants_with_pending_items() == [merchant.id]

    def test_no_pending(self, merchant):
        assert merchants_with_pending_items() == []


class TestDeliveryIsolation:
    """Each item is committed on its own and never delivered twice."""

    def test_items_are_leased_before_delivery(self, app, earned_reward, outbox):
        before = datetime.utcnow()

        item_ids = outbox._lease_due_items(10)

        assert item_ids == [provision_item(earned_reward).id]
        lease = app.config['OUTBOX_LEASE_SECONDS']
        assert provision_item(earned_reward).next_attempt_at - before >= timedelta(seconds=lease - 1)
        assert outbox._lease_due_items(10) == []

    def test_unexpected_error_only_affects_its_item(self, merchant, offer, ledger, outbox, discount_client):
        ledger.record_purchase('CUST-1', 'ORDER-1', 'VAR-1', 12, days_ago(2))
        ledger.record_purchase('CUST-2', 'ORDER-2', 'VAR-1', 12, days_ago(2))
        first, second = Reward.query.filter_by(status=RewardStatus.EARNED.value).order_by(Reward.id).all()
        discount_client.create_reward_discount.side_effect = [DISCOUNT_GID, RuntimeError('socket closed')]

        stats = outbox.process_pending()

        assert stats == {'processed': 2, 'succeeded': 1, 'retried': 1, 'failed': 0, 'cancelled': 0}
        assert first.discount_id == DISCOUNT_GID
        assert provision_item(first).status == OutboxStatus.DONE.value

        item = provision_item(second)
        assert item.status == OutboxStatus.PENDING.value
        assert item.attempts == 1
        assert item.last_error == 'socket closed'
        assert second.discount_id is None

    def test_created_discount_survives_failed_reward_write(self, earned_reward, outbox, discount_client):
        with patch('punchcard.services.discount_outbox.log_audit_event', side_effect=RuntimeError('audit down')):
            stats = outbox.process_pending()

        assert stats['retried'] == 1
        item = provision_item(earned_reward)
        assert item.discount_id == DISCOUNT_GID
        assert earned_reward.discount_id is None

        item.next_attempt_at = datetime.utcnow() - timedelta(seconds=1)
        db.session.commit()

        assert outbox.process_pending()['succeeded'] == 1
        assert earned_reward.discount_id == DISCOUNT_GID
        assert provision_item(earned_reward).status == OutboxStatus.DONE.value
        discount_client.create_reward_discount.assert_called_once()
