"""
Customer summary projection.
"""
from datetime import datetime
from ..extensions import db


class CustomerSummary(db.Model):
    """
    Denormalized per-customer, per-offer progress.

    Always derived from PurchaseEvent and Reward rows and rebuilt after every
    ledger mutation. Never written directly by anything else.
    """
    __tablename__ = 'loyalty_customer_summaries'

    id = db.Column(db.Integer, primary_key=True)
    merchant_id = db.Column(db.Integer, db.ForeignKey('merchants.id'), nullable=False)
    customer_id = db.Column(db.String(100), nullable=False)
    offer_id = db.Column(db.Integer, db.ForeignKey('loyalty_offers.id'), nullable=False)

    current_quantity = db.Column(db.Integer, nullable=False, default=0)
    required_quantity = db.Column(db.Integer, nullable=False)
    window_start_date = db.Column(db.Date)
    window_end_date = db.Column(db.Date)

    has_earned_reward = db.Column(db.Boolean, nullable=False, default=False)
    earned_reward_id = db.Column(db.Integer, db.ForeignKey('loyalty_rewards.id'))

    total_lifetime_purchases = db.Column(db.Integer, nullable=False, default=0)
    total_rewards_earned = db.Column(db.Integer, nullable=False, default=0)
    total_rewards_redeemed = db.Column(db.Integer, nullable=False, default=0)
    last_purchase_at = db.Column(db.DateTime)

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    offer = db.relationship('Offer')

    __table_args__ = (
        db.UniqueConstraint('merchant_id', 'customer_id', 'offer_id', name='uq_loyalty_customer_summaries_key'),
    )

    def __repr__(self):
        return f'<CustomerSummary {self.customer_id} offer {self.offer_id}: {self.current_quantity}/{self.required_quantity}>'

    @property
    def remaining_quantity(self) -> int:
        return max(0, self.required_quantity - self.current_quantity)

    def to_dict(self):
        return {
            'customer_id': self.customer_id,
            'offer_id': self.offer_id,
            'offer_name': self.offer.offer_name if self.offer else None,
            'current_quantity': self.current_quantity,
            'required_quantity': self.required_quantity,
            'remaining_quantity': self.remaining_quantity,
            'window_start_date': self.window_start_date.isoformat() if self.window_start_date else None,
            'window_end_date': self.window_end_date.isoformat() if self.window_end_date else None,
            'has_earned_reward': self.has_earned_reward,
            'earned_reward_id': self.earned_reward_id,
            'total_lifetime_purchases': self.total_lifetime_purchases,
            'total_rewards_earned': self.total_rewards_earned,
            'total_rewards_redeemed': self.total_rewards_redeemed,
            'last_purchase_at': self.last_purchase_at.isoformat() if self.last_purchase_at else None,
        }
