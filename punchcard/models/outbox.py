"""
Discount outbox.

Upstream discount side effects are queued here inside the ledger
transaction and delivered later by DiscountOutbox.process_pending, so a
slow or failing commerce API never holds ledger row locks.
"""
from datetime import datetime
from enum import Enum
from ..extensions import db


class OutboxAction(str, Enum):
    PROVISION = 'provision'   # Create the customer's free-item discount
    CLEANUP = 'cleanup'       # Delete it after redemption or revocation


class OutboxStatus(str, Enum):
    PENDING = 'pending'
    DONE = 'done'
    FAILED = 'failed'         # Gave up after max attempts
    CANCELLED = 'cancelled'   # Superseded before delivery


class DiscountOutboxItem(db.Model):
    """A queued discount provisioning or cleanup request."""
    __tablename__ = 'loyalty_discount_outbox'

    id = db.Column(db.Integer, primary_key=True)
    merchant_id = db.Column(db.Integer, db.ForeignKey('merchants.id'), nullable=False)
    reward_id = db.Column(db.Integer, db.ForeignKey('loyalty_rewards.id'), nullable=False)
    offer_id = db.Column(db.Integer, db.ForeignKey('loyalty_offers.id'), nullable=False)
    customer_id = db.Column(db.String(100), nullable=False)

    action = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=OutboxStatus.PENDING.value)

    attempts = db.Column(db.Integer, nullable=False, default=0)
    next_attempt_at = db.Column(db.DateTime, default=datetime.utcnow)
    last_error = db.Column(db.Text)

    discount_id = db.Column(db.String(255))  # Target of a cleanup, or result of a provision

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    processed_at = db.Column(db.DateTime)

    reward = db.relationship('Reward')

    __table_args__ = (
        db.Index('ix_loyalty_discount_outbox_due', 'status', 'next_attempt_at'),
        db.Index('ix_loyalty_discount_outbox_reward', 'reward_id'),
    )

    def __repr__(self):
        return f'<DiscountOutboxItem {self.id}: {self.action} reward {self.reward_id} ({self.status})>'

    def to_dict(self):
        return {
            'id': self.id,
            'reward_id': self.reward_id,
            'action': self.action,
            'status': self.status,
            'attempts': self.attempts,
            'next_attempt_at': self.next_attempt_at.isoformat() if self.next_attempt_at else None,
            'last_error': self.last_error,
            'discount_id': self.discount_id,
        }
