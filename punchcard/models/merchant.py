"""
Merchant model for the multi-tenant loyalty ledger.
"""
from datetime import datetime
from ..extensions import db


class Merchant(db.Model):
    """
    A merchant running a frequent-buyer program.
    Global table - every loyalty row carries a merchant_id.
    """
    __tablename__ = 'merchants'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)

    # Commerce platform integration
    commerce_domain = db.Column(db.String(255))
    access_token = db.Column(db.Text)  # Encrypted in production

    # Settings (JSON for flexibility)
    settings = db.Column(db.JSON, default=dict)

    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    offers = db.relationship('Offer', backref='merchant', lazy='dynamic')

    def __repr__(self):
        return f'<Merchant {self.slug}>'

    @property
    def has_commerce_credentials(self) -> bool:
        return bool(self.commerce_domain and self.access_token)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'slug': self.slug,
            'commerce_domain': self.commerce_domain,
            'is_active': self.is_active
        }
