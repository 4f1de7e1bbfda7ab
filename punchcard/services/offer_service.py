"""
Offer administration.

Creates and maintains frequent-buyer offers and the catalog variations that
qualify for them. This is the only writer of Offer and QualifyingVariation.

Usage:
    service = OfferService(merchant_id)
    offer = service.create_offer('Acme', '12oz', required_quantity=12)
    service.add_qualifying_variations(offer.id, [{'variation_id': 'VAR1'}])
"""

import logging
from typing import Optional, List, Dict, Any

from ..extensions import db
from ..models.audit import AuditAction, TriggeredBy
from ..models.offer import Offer, QualifyingVariation
from ..utils.exceptions import (
    DuplicateError,
    OfferNotFoundError,
    ValidationError,
    VariationConflictError,
)
from .audit_service import log_audit_event

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_MONTHS = 12

UPDATABLE_FIELDS = ('offer_name', 'description', 'required_quantity', 'window_months')


class OfferService:
    """Admin operations for offers and qualifying variations."""

    def __init__(self, merchant_id: int):
        self.merchant_id = merchant_id

    # ==================== Offers ====================

    def create_offer(
        self,
        brand_name: str,
        size_group: str,
        required_quantity: int,
        window_months: int = None,
        offer_name: str = None,
        description: str = None,
        created_by: str = None,
    ) -> Offer:
        """
        Create a buy-N-get-one-free offer.

        Raises:
            ValidationError: Missing brand/size or non-positive quantities
            DuplicateError: An offer for this brand and size group already exists
        """
        if not brand_name or not brand_name.strip():
            raise ValidationError('brand_name is required', 'brand_name')
        if not size_group or not size_group.strip():
            raise ValidationError('size_group is required', 'size_group')
        self._validate_positive(required_quantity, 'required_quantity')

        if window_months is None:
            window_months = DEFAULT_WINDOW_MONTHS
        self._validate_positive(window_months, 'window_months')

        brand_name = brand_name.strip()
        size_group = size_group.strip()

        existing = Offer.query.filter_by(
            merchant_id=self.merchant_id,
            brand_name=brand_name,
            size_group=size_group,
        ).first()
        if existing:
            raise DuplicateError('Offer', f'brand {brand_name} and size {size_group}')

        offer = Offer(
            merchant_id=self.merchant_id,
            offer_name=offer_name or f'{brand_name} {size_group} - Buy {required_quantity} Get 1 Free',
            brand_name=brand_name,
            size_group=size_group,
            description=description,
            required_quantity=required_quantity,
            window_months=window_months,
            created_by=created_by,
        )
        db.session.add(offer)
        db.session.flush()

        log_audit_event(
            merchant_id=self.merchant_id,
            action=AuditAction.OFFER_CREATED,
            offer_id=offer.id,
            triggered_by=TriggeredBy.ADMIN,
            user_id=created_by,
            details={
                'offer_name': offer.offer_name,
                'brand_name': brand_name,
                'size_group': size_group,
                'required_quantity': required_quantity,
                'window_months': window_months,
            },
        )
        db.session.commit()

        logger.info(f"Created offer {offer.id} '{offer.offer_name}' for merchant {self.merchant_id}")
        return offer

    def get_offer(self, offer_id: int) -> Offer:
        offer = Offer.query.filter_by(id=offer_id, merchant_id=self.merchant_id).first()
        if not offer:
            raise OfferNotFoundError(offer_id)
        return offer

    def list_offers(self, active_only: bool = False, brand_name: str = None) -> List[Offer]:
        query = Offer.query.filter_by(merchant_id=self.merchant_id)
        if active_only:
            query = query.filter_by(is_active=True)
        if brand_name:
            query = query.filter_by(brand_name=brand_name)
        return query.order_by(Offer.brand_name, Offer.size_group).all()

    def update_offer(self, offer_id: int, updated_by: str = None, **changes) -> Offer:
        """
        Update display fields or thresholds.

        Threshold changes only apply to rewards opened afterwards; existing
        rewards keep their required_quantity snapshot.
        """
        offer = self.get_offer(offer_id)

        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        for field in ('required_quantity', 'window_months'):
            if field in changes:
                self._validate_positive(changes[field], field)

        applied = {}
        for field, value in changes.items():
            old_value = getattr(offer, field)
            if old_value != value:
                setattr(offer, field, value)
                applied[field] = {'old': old_value, 'new': value}

        if applied:
            log_audit_event(
                merchant_id=self.merchant_id,
                action=AuditAction.OFFER_UPDATED,
                offer_id=offer.id,
                triggered_by=TriggeredBy.ADMIN,
                user_id=updated_by,
                details={'changes': applied},
            )
        db.session.commit()
        return offer

    def deactivate_offer(self, offer_id: int, deactivated_by: str = None) -> Offer:
        """Stop an offer from accruing new purchases. Existing rewards are untouched."""
        offer = self.get_offer(offer_id)
        if offer.is_active:
            offer.is_active = False
            log_audit_event(
                merchant_id=self.merchant_id,
                action=AuditAction.OFFER_DEACTIVATED,
                offer_id=offer.id,
                triggered_by=TriggeredBy.ADMIN,
                user_id=deactivated_by,
            )
            db.session.commit()
            logger.info(f"Deactivated offer {offer.id} for merchant {self.merchant_id}")
        return offer

    # ==================== Qualifying variations ====================

    def check_variation_conflicts(
        self,
        variation_ids: List[str],
        exclude_offer_id: int = None
    ) -> List[Dict[str, Any]]:
        """Find variations already active on another active offer."""
        if not variation_ids:
            return []

        query = (
            db.session.query(QualifyingVariation, Offer)
            .join(Offer, Offer.id == QualifyingVariation.offer_id)
            .filter(
                QualifyingVariation.merchant_id == self.merchant_id,
                QualifyingVariation.variation_id.in_(variation_ids),
                QualifyingVariation.is_active.is_(True),
                Offer.is_active.is_(True),
            )
        )
        if exclude_offer_id is not None:
            query = query.filter(Offer.id != exclude_offer_id)

        return [
            {
                'variation_id': variation.variation_id,
                'offer_id': offer.id,
                'offer_name': offer.offer_name,
            }
            for variation, offer in query.all()
        ]

    def add_qualifying_variations(
        self,
        offer_id: int,
        variations: List[Dict[str, Any]],
        added_by: str = None
    ) -> List[QualifyingVariation]:
        """
        Attach catalog variations to an offer.

        Args:
            offer_id: Offer to attach to
            variations: Dicts with variation_id and optional item_id,
                item_name, variation_name, sku

        Raises:
            VariationConflictError: A variation belongs to another active offer
        """
        offer = self.get_offer(offer_id)

        variation_ids = [v.get('variation_id') for v in variations]
        if not all(variation_ids):
            raise ValidationError('Every variation needs a variation_id', 'variation_id')

        conflicts = self.check_variation_conflicts(variation_ids, exclude_offer_id=offer.id)
        if conflicts:
            raise VariationConflictError(conflicts)

        added = []
        for data in variations:
            variation = QualifyingVariation.query.filter_by(
                merchant_id=self.merchant_id,
                offer_id=offer.id,
                variation_id=data['variation_id'],
            ).first()

            if variation is None:
                variation = QualifyingVariation(
                    merchant_id=self.merchant_id,
                    offer_id=offer.id,
                    variation_id=data['variation_id'],
                )
                db.session.add(variation)

            variation.item_id = data.get('item_id', variation.item_id)
            variation.item_name = data.get('item_name', variation.item_name)
            variation.variation_name = data.get('variation_name', variation.variation_name)
            variation.sku = data.get('sku', variation.sku)
            variation.is_active = True
            added.append(variation)

            log_audit_event(
                merchant_id=self.merchant_id,
                action=AuditAction.VARIATION_ADDED,
                offer_id=offer.id,
                triggered_by=TriggeredBy.ADMIN,
                user_id=added_by,
                details={'variation_id': data['variation_id'], 'item_name': data.get('item_name')},
            )

        db.session.commit()
        logger.info(f"Added {len(added)} qualifying variations to offer {offer.id}")
        return added

    def remove_qualifying_variation(self, offer_id: int, variation_id: str, removed_by: str = None) -> bool:
        """Deactivate a variation on an offer. Returns False if it was not active."""
        offer = self.get_offer(offer_id)
        variation = QualifyingVariation.query.filter_by(
            merchant_id=self.merchant_id,
            offer_id=offer.id,
            variation_id=variation_id,
            is_active=True,
        ).first()
        if not variation:
            return False

        variation.is_active = False
        log_audit_event(
            merchant_id=self.merchant_id,
            action=AuditAction.VARIATION_REMOVED,
            offer_id=offer.id,
            triggered_by=TriggeredBy.ADMIN,
            user_id=removed_by,
            details={'variation_id': variation_id},
        )
        db.session.commit()
        return True

    def get_offer_for_variation(self, variation_id: str) -> Optional[Offer]:
        """The active offer an active variation qualifies for, if any."""
        return (
            Offer.query
            .join(QualifyingVariation, QualifyingVariation.offer_id == Offer.id)
            .filter(
                Offer.merchant_id == self.merchant_id,
                Offer.is_active.is_(True),
                QualifyingVariation.merchant_id == self.merchant_id,
                QualifyingVariation.variation_id == variation_id,
                QualifyingVariation.is_active.is_(True),
            )
            .first()
        )

    @staticmethod
    def _validate_positive(value, field: str) -> None:
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            raise ValidationError(f'{field} must be a positive integer', field)
