"""
Reward ledger models.

The ledger is append-mostly: PurchaseEvent rows are immutable once written
except for ``reward_id``, which records which earned reward consumed them.
Rewards move through a small state machine:

    in_progress -> earned -> redeemed
                         \\-> revoked

Design notes:
- ``idempotency_key`` is unique per merchant; re-delivering the same
  (order, variation, quantity) never inserts a second row
- Split rows reference their parent through ``original_event_id``; a parent
  with split children no longer counts toward progress (the children do)
- Refund rows carry a negative quantity, ``is_refund=True`` and point at the
  refunded purchase through ``original_event_id``; they never supersede it
- At most one in_progress reward per (merchant, offer, customer), enforced
  by a partial unique index
- ProcessedOrder is the per-order claim table shared by every intake source
"""

from datetime import datetime
from enum import Enum
from ..extensions import db


# ==================== Enums ====================

class RewardStatus(str, Enum):
    """Reward lifecycle states."""
    IN_PROGRESS = 'in_progress'
    EARNED = 'earned'
    REDEEMED = 'redeemed'
    REVOKED = 'revoked'


class ProcessedOrderResult(str, Enum):
    """Outcome recorded on a claimed order."""
    PENDING = 'pending'
    QUALIFYING = 'qualifying'
    NON_QUALIFYING = 'non_qualifying'
    NO_CUSTOMER = 'no_customer'
    NO_LINE_ITEMS = 'no_line_items'


class OrderSource(str, Enum):
    """Where an order entered the system."""
    WEBHOOK = 'webhook'      # Live event delivery
    CATCHUP = 'catchup'      # Periodic sweep for missed events
    BACKFILL = 'backfill'    # Manual historical import
    AUDIT = 'audit'          # Reconciliation tooling


class RedemptionType(str, Enum):
    """How a redemption was detected."""
    ORDER_DISCOUNT = 'order_discount'
    MANUAL_ADMIN = 'manual_admin'
    AUTO_DETECTED = 'auto_detected'


TERMINAL_REWARD_STATUSES = (RewardStatus.REDEEMED.value, RewardStatus.REVOKED.value)


# ==================== Models ====================

class PurchaseEvent(db.Model):
    """
    One qualifying purchase (or refund) line.

    Positive quantities are purchases, negative quantities are refunds.
    ``reward_id`` is set when an earned reward locks the row.
    """
    __tablename__ = 'loyalty_purchase_events'

    id = db.Column(db.Integer, primary_key=True)
    merchant_id = db.Column(db.Integer, db.ForeignKey('merchants.id'), nullable=False)
    offer_id = db.Column(db.Integer, db.ForeignKey('loyalty_offers.id'), nullable=False)
    customer_id = db.Column(db.String(100), nullable=False)

    # Order details
    order_id = db.Column(db.String(100), nullable=False)
    location_id = db.Column(db.String(100))
    variation_id = db.Column(db.String(100), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)  # Positive for purchase, negative for refund
    unit_price_cents = db.Column(db.Integer)
    purchased_at = db.Column(db.DateTime, nullable=False)

    # Rolling window
    window_start_date = db.Column(db.Date, nullable=False)
    window_end_date = db.Column(db.Date, nullable=False)

    # Locking and lineage
    reward_id = db.Column(db.Integer, db.ForeignKey('loyalty_rewards.id'))
    is_refund = db.Column(db.Boolean, nullable=False, default=False)
    original_event_id = db.Column(db.Integer, db.ForeignKey('loyalty_purchase_events.id'))

    idempotency_key = db.Column(db.String(255), nullable=False)

    # Provenance
    source = db.Column(db.String(20), default=OrderSource.WEBHOOK.value)
    customer_source = db.Column(db.String(50))
    receipt_url = db.Column(db.Text)
    payment_type = db.Column(db.String(50))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    original_event = db.relationship('PurchaseEvent', remote_side=[id])

    __table_args__ = (
        db.UniqueConstraint('merchant_id', 'idempotency_key', name='uq_loyalty_purchase_events_idempotency'),
        db.CheckConstraint('quantity != 0', name='quantity_nonzero'),
        db.Index('ix_loyalty_purchase_events_progress', 'merchant_id', 'offer_id', 'customer_id', 'reward_id'),
        db.Index('ix_loyalty_purchase_events_order', 'merchant_id', 'order_id'),
        db.Index('ix_loyalty_purchase_events_window', 'merchant_id', 'window_end_date'),
        db.Index('ix_loyalty_purchase_events_original', 'original_event_id'),
    )

    def __repr__(self):
        return f'<PurchaseEvent {self.id}: {self.quantity} x {self.variation_id} for {self.customer_id}>'

    def to_dict(self):
        return {
            'id': self.id,
            'offer_id': self.offer_id,
            'customer_id': self.customer_id,
            'order_id': self.order_id,
            'variation_id': self.variation_id,
            'quantity': self.quantity,
            'unit_price_cents': self.unit_price_cents,
            'purchased_at': self.purchased_at.isoformat() if self.purchased_at else None,
            'window_start_date': self.window_start_date.isoformat() if self.window_start_date else None,
            'window_end_date': self.window_end_date.isoformat() if self.window_end_date else None,
            'reward_id': self.reward_id,
            'is_refund': self.is_refund,
            'original_event_id': self.original_event_id,
            'source': self.source,
        }


class Reward(db.Model):
    """
    Progress toward, or an earned unit of, a free item.
    """
    __tablename__ = 'loyalty_rewards'

    id = db.Column(db.Integer, primary_key=True)
    merchant_id = db.Column(db.Integer, db.ForeignKey('merchants.id'), nullable=False)
    offer_id = db.Column(db.Integer, db.ForeignKey('loyalty_offers.id'), nullable=False)
    customer_id = db.Column(db.String(100), nullable=False)

    status = db.Column(db.String(20), nullable=False, default=RewardStatus.IN_PROGRESS.value)
    current_quantity = db.Column(db.Integer, nullable=False, default=0)
    required_quantity = db.Column(db.Integer, nullable=False)  # Snapshot of the offer at creation

    window_start_date = db.Column(db.Date)
    window_end_date = db.Column(db.Date)

    earned_at = db.Column(db.DateTime)
    redeemed_at = db.Column(db.DateTime)
    redemption_order_id = db.Column(db.String(100))
    redemption_type = db.Column(db.String(30))
    revoked_at = db.Column(db.DateTime)
    revocation_reason = db.Column(db.String(255))

    # Upstream discount object, written by the discount outbox
    discount_id = db.Column(db.String(255))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    offer = db.relationship('Offer')
    purchase_events = db.relationship('PurchaseEvent', backref='reward', lazy='dynamic')

    __table_args__ = (
        db.Index(
            'uq_loyalty_rewards_one_in_progress',
            'merchant_id', 'offer_id', 'customer_id',
            unique=True,
            postgresql_where=db.text("status = 'in_progress'"),
            sqlite_where=db.text("status = 'in_progress'"),
        ),
        db.Index('ix_loyalty_rewards_customer_status', 'merchant_id', 'customer_id', 'status'),
        db.Index('ix_loyalty_rewards_discount', 'merchant_id', 'discount_id'),
    )

    def __repr__(self):
        return f'<Reward {self.id}: {self.status} {self.current_quantity}/{self.required_quantity}>'

    def to_dict(self):
        return {
            'id': self.id,
            'offer_id': self.offer_id,
            'customer_id': self.customer_id,
            'status': self.status,
            'current_quantity': self.current_quantity,
            'required_quantity': self.required_quantity,
            'window_start_date': self.window_start_date.isoformat() if self.window_start_date else None,
            'window_end_date': self.window_end_date.isoformat() if self.window_end_date else None,
            'earned_at': self.earned_at.isoformat() if self.earned_at else None,
            'redeemed_at': self.redeemed_at.isoformat() if self.redeemed_at else None,
            'redemption_order_id': self.redemption_order_id,
            'revoked_at': self.revoked_at.isoformat() if self.revoked_at else None,
            'revocation_reason': self.revocation_reason,
            'discount_id': self.discount_id,
        }


class ProcessedOrder(db.Model):
    """Per-order claim and outcome, shared by all intake sources."""
    __tablename__ = 'loyalty_processed_orders'

    id = db.Column(db.Integer, primary_key=True)
    merchant_id = db.Column(db.Integer, db.ForeignKey('merchants.id'), nullable=False)
    order_id = db.Column(db.String(100), nullable=False)
    customer_id = db.Column(db.String(100))

    result_type = db.Column(db.String(20), nullable=False, default=ProcessedOrderResult.PENDING.value)
    qualifying_items = db.Column(db.Integer, default=0)
    total_line_items = db.Column(db.Integer, default=0)
    source = db.Column(db.String(20), default=OrderSource.WEBHOOK.value)

    processed_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('merchant_id', 'order_id', name='uq_loyalty_processed_orders_order'),
    )

    def __repr__(self):
        return f'<ProcessedOrder {self.order_id}: {self.result_type}>'

    def to_dict(self):
        return {
            'id': self.id,
            'order_id': self.order_id,
            'customer_id': self.customer_id,
            'result_type': self.result_type,
            'qualifying_items': self.qualifying_items,
            'total_line_items': self.total_line_items,
            'source': self.source,
            'processed_at': self.processed_at.isoformat() if self.processed_at else None,
        }
