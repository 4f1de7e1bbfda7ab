"""
Frequent-buyer offer catalog.

An Offer is a "buy N, get one free" rule scoped to a brand and size group.
QualifyingVariation rows link catalog variations to the offer whose
purchases count toward it.

Design notes:
- (merchant, brand, size_group) is unique, so a brand/size pairing has one offer
- A variation may only be active on one active offer; the admin service
  checks this before assigning
- Item and variation names are cached for display and audit only
"""

from datetime import datetime
from ..extensions import db


class Offer(db.Model):
    """A buy-N-get-one-free rule."""
    __tablename__ = 'loyalty_offers'

    id = db.Column(db.Integer, primary_key=True)
    merchant_id = db.Column(db.Integer, db.ForeignKey('merchants.id'), nullable=False)

    offer_name = db.Column(db.String(255), nullable=False)
    brand_name = db.Column(db.String(255), nullable=False)
    size_group = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)

    required_quantity = db.Column(db.Integer, nullable=False)
    window_months = db.Column(db.Integer, nullable=False, default=12)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.String(100))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    variations = db.relationship(
        'QualifyingVariation', backref='offer', lazy='dynamic', cascade='all, delete-orphan'
    )

    __table_args__ = (
        db.UniqueConstraint('merchant_id', 'brand_name', 'size_group', name='uq_loyalty_offers_brand_size'),
        db.CheckConstraint('required_quantity > 0', name='required_quantity_positive'),
        db.CheckConstraint('window_months > 0', name='window_months_positive'),
        db.Index('ix_loyalty_offers_merchant_active', 'merchant_id', 'is_active'),
    )

    def __repr__(self):
        return f'<Offer {self.id}: {self.offer_name} (buy {self.required_quantity})>'

    def to_dict(self, include_variations: bool = False):
        data = {
            'id': self.id,
            'offer_name': self.offer_name,
            'brand_name': self.brand_name,
            'size_group': self.size_group,
            'description': self.description,
            'required_quantity': self.required_quantity,
            'window_months': self.window_months,
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
        if include_variations:
            data['variations'] = [v.to_dict() for v in self.variations.filter_by(is_active=True)]
        return data


class QualifyingVariation(db.Model):
    """A catalog variation whose purchases count toward an offer."""
    __tablename__ = 'loyalty_qualifying_variations'

    id = db.Column(db.Integer, primary_key=True)
    merchant_id = db.Column(db.Integer, db.ForeignKey('merchants.id'), nullable=False)
    offer_id = db.Column(db.Integer, db.ForeignKey('loyalty_offers.id'), nullable=False)

    variation_id = db.Column(db.String(100), nullable=False)
    item_id = db.Column(db.String(100))
    item_name = db.Column(db.String(255))
    variation_name = db.Column(db.String(255))
    sku = db.Column(db.String(100))

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('merchant_id', 'offer_id', 'variation_id', name='uq_loyalty_variations_offer_variation'),
        db.Index('ix_loyalty_variations_lookup', 'merchant_id', 'variation_id', 'is_active'),
    )

    def __repr__(self):
        return f'<QualifyingVariation {self.variation_id} -> offer {self.offer_id}>'

    def to_dict(self):
        return {
            'id': self.id,
            'offer_id': self.offer_id,
            'variation_id': self.variation_id,
            'item_id': self.item_id,
            'item_name': self.item_name,
            'variation_name': self.variation_name,
            'sku': self.sku,
            'is_active': self.is_active
        }
