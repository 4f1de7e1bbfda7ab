"""
Append-only audit trail for loyalty ledger mutations.
"""
from datetime import datetime
from enum import Enum
from ..extensions import db


class AuditAction(str, Enum):
    """Audit event kinds."""
    OFFER_CREATED = 'OFFER_CREATED'
    OFFER_UPDATED = 'OFFER_UPDATED'
    OFFER_DEACTIVATED = 'OFFER_DEACTIVATED'
    VARIATION_ADDED = 'VARIATION_ADDED'
    VARIATION_REMOVED = 'VARIATION_REMOVED'
    PURCHASE_RECORDED = 'PURCHASE_RECORDED'
    REFUND_PROCESSED = 'REFUND_PROCESSED'
    WINDOW_EXPIRED = 'WINDOW_EXPIRED'
    REWARD_PROGRESS_UPDATED = 'REWARD_PROGRESS_UPDATED'
    REWARD_EARNED = 'REWARD_EARNED'
    REWARD_REDEEMED = 'REWARD_REDEEMED'
    REWARD_REVOKED = 'REWARD_REVOKED'
    ORDER_INTAKE_COMPLETE = 'ORDER_INTAKE_COMPLETE'
    DISCOUNT_PROVISIONED = 'DISCOUNT_PROVISIONED'
    DISCOUNT_FAILED = 'DISCOUNT_FAILED'


class TriggeredBy(str, Enum):
    """What initiated an audited change."""
    SYSTEM = 'SYSTEM'
    ADMIN = 'ADMIN'
    WEBHOOK = 'WEBHOOK'
    EXPIRATION_CLEANUP = 'EXPIRATION_CLEANUP'


class AuditEvent(db.Model):
    """One audited state change."""
    __tablename__ = 'loyalty_audit_events'

    id = db.Column(db.Integer, primary_key=True)
    merchant_id = db.Column(db.Integer, db.ForeignKey('merchants.id'), nullable=False)
    action = db.Column(db.String(50), nullable=False)

    # Subjects (all optional, depending on action)
    offer_id = db.Column(db.Integer)
    reward_id = db.Column(db.Integer)
    purchase_event_id = db.Column(db.Integer)
    customer_id = db.Column(db.String(100))
    order_id = db.Column(db.String(100))

    # State change
    old_state = db.Column(db.String(30))
    new_state = db.Column(db.String(30))
    old_quantity = db.Column(db.Integer)
    new_quantity = db.Column(db.Integer)

    triggered_by = db.Column(db.String(30), nullable=False, default=TriggeredBy.SYSTEM.value)
    user_id = db.Column(db.String(100))
    details = db.Column(db.JSON, default=dict)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.Index('ix_loyalty_audit_events_merchant_created', 'merchant_id', 'created_at'),
        db.Index('ix_loyalty_audit_events_customer', 'merchant_id', 'customer_id'),
    )

    def __repr__(self):
        return f'<AuditEvent {self.id}: {self.action}>'

    def to_dict(self):
        return {
            'id': self.id,
            'action': self.action,
            'offer_id': self.offer_id,
            'reward_id': self.reward_id,
            'purchase_event_id': self.purchase_event_id,
            'customer_id': self.customer_id,
            'order_id': self.order_id,
            'old_state': self.old_state,
            'new_state': self.new_state,
            'old_quantity': self.old_quantity,
            'new_quantity': self.new_quantity,
            'triggered_by': self.triggered_by,
            'user_id': self.user_id,
            'details': self.details or {},
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
