"""
Order intake gateway.

Single entry point for orders from every source (live events, catch-up
sweeps, backfill, audit tooling). Sources are uncoordinated, so the same
order can arrive several times, concurrently; the ProcessedOrder claim makes
processing happen exactly once per (merchant, order).

Flow:
1. Fast path: skip orders already claimed or already holding purchase events
2. Claim the order with INSERT ... ON CONFLICT DO NOTHING (pending)
3. Identify the customer and qualify each line item
4. Record qualifying lines through the ledger, one SAVEPOINT per line
5. Finalize the claim with the outcome and commit once
6. Look for a reward redemption in the order (own transaction)

Per-line application errors are logged and skipped. Database errors
(constraint violations, deadlocks) roll back the whole order, including
the claim, and are re-raised so the caller can retry.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any

from dateutil.parser import isoparse
from sqlalchemy.exc import IntegrityError, OperationalError

from ..extensions import db
from ..models.audit import AuditAction
from ..models.ledger import (
    OrderSource,
    ProcessedOrder,
    ProcessedOrderResult,
    PurchaseEvent,
    Reward,
)
from ..utils.db import dialect_insert, utcnow
from ..utils.exceptions import ValidationError
from .audit_service import log_audit_event
from .customer_identification import CustomerIdentifier
from .ledger_service import LedgerService, RefundResult
from .redemption_service import RedemptionDetection, RedemptionService
from .purchase_qualifier import (
    build_discount_map,
    money_amount,
    parse_quantity,
    should_skip_line_item,
)

logger = logging.getLogger(__name__)


@dataclass
class OrderIntakeResult:
    """Outcome of one process_order call."""
    order_id: str
    already_processed: bool = False
    result_type: Optional[str] = None
    customer_id: Optional[str] = None
    purchase_events: List[PurchaseEvent] = field(default_factory=list)
    reward_earned: bool = False
    skipped_items: List[Dict[str, Any]] = field(default_factory=list)
    failed_items: List[Dict[str, Any]] = field(default_factory=list)
    redemption: Optional[RedemptionDetection] = None


@dataclass
class RefundIntakeResult:
    refund_id: Optional[str]
    order_id: str
    customer_id: Optional[str] = None
    refunds: List[RefundResult] = field(default_factory=list)

    @property
    def revoked_reward_ids(self) -> List[int]:
        return [rid for r in self.refunds for rid in r.revoked_reward_ids]


def parse_order_timestamp(value) -> datetime:
    if isinstance(value, datetime):
        return value
    if value:
        return isoparse(value)
    return utcnow()


def extract_tender_info(order: Dict[str, Any]) -> Dict[str, Optional[str]]:
    """Payment type from the first tender, receipt URL from the first tender that has one."""
    tenders = order.get('tenders') or []
    payment_type = tenders[0].get('type') if tenders else None
    receipt_url = next((t['receipt_url'] for t in tenders if t.get('receipt_url')), None)
    return {'payment_type': payment_type, 'receipt_url': receipt_url}


class OrderIntakeService:
    """
    Process orders and refunds into the loyalty ledger.

    Usage:
        intake = OrderIntakeService(merchant_id)
        result = intake.process_order(order_payload, source='webhook')
    """

    def __init__(self, merchant_id: int, ledger: LedgerService = None, identifier: CustomerIdentifier = None,
                 redemptions: RedemptionService = None):
        self.merchant_id = merchant_id
        self.ledger = ledger or LedgerService(merchant_id)
        self.identifier = identifier or CustomerIdentifier(merchant_id)
        self.redemptions = redemptions or RedemptionService(merchant_id)

    # ==================== Orders ====================

    def process_order(
        self,
        order: Dict[str, Any],
        customer_id: str = None,
        source: str = OrderSource.WEBHOOK.value,
        customer_source: str = None,
    ) -> OrderIntakeResult:
        """
        Process one order exactly once.

        Args:
            order: Order payload
            customer_id: Caller-identified customer; identified from the
                order when omitted
            source: Intake source tag (webhook, catchup, backfill, audit)
            customer_source: How the caller identified the customer

        Raises:
            ValidationError: Missing order id or merchant id
        """
        order_id = (order or {}).get('id')
        if not self.merchant_id:
            raise ValidationError('merchant_id is required', 'merchant_id')
        if not order_id:
            raise ValidationError('order id is required', 'order_id')
        source = getattr(source, 'value', source)

        if self.is_order_processed(order_id):
            logger.debug(f"Order {order_id} already processed, skipping")
            return OrderIntakeResult(order_id=order_id, already_processed=True)

        try:
            if not self._claim_order(order_id, source):
                db.session.commit()
                logger.info(f"Order {order_id} claimed by another worker, skipping")
                return OrderIntakeResult(order_id=order_id, already_processed=True)

            result = OrderIntakeResult(order_id=order_id)

            if not customer_id:
                match = self.identifier.identify(order)
                customer_id = match.customer_id
                customer_source = customer_source or match.method
            result.customer_id = customer_id

            line_items = order.get('line_items') or []

            if not customer_id:
                result.result_type = ProcessedOrderResult.NO_CUSTOMER.value
            elif not line_items:
                result.result_type = ProcessedOrderResult.NO_LINE_ITEMS.value
            else:
                self._process_line_items(order, line_items, customer_id, customer_source, source, result)
                result.result_type = (
                    ProcessedOrderResult.QUALIFYING.value if result.purchase_events
                    else ProcessedOrderResult.NON_QUALIFYING.value
                )

            self._finalize_claim(order_id, customer_id, result, len(line_items))

            log_audit_event(
                merchant_id=self.merchant_id,
                action=AuditAction.ORDER_INTAKE_COMPLETE,
                customer_id=customer_id,
                order_id=order_id,
                new_state=result.result_type,
                details={
                    'source': source,
                    'customer_source': customer_source,
                    'qualifying_items': len(result.purchase_events),
                    'skipped_items': len(result.skipped_items),
                    'failed_items': len(result.failed_items),
                    'reward_earned': result.reward_earned,
                },
            )
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Order {order_id} intake failed, rolled back: {e}")
            raise

        logger.info(
            f"Order {order_id} ({source}) processed as {result.result_type}: "
            f"{len(result.purchase_events)} purchase events, reward earned: {result.reward_earned}"
        )

        if customer_id:
            result.redemption = self._detect_redemption(order, customer_id)
        return result

    def _detect_redemption(self, order: Dict[str, Any], customer_id: str) -> Optional[RedemptionDetection]:
        """Runs after the intake commit; errors are logged, not raised."""
        try:
            detection = self.redemptions.detect_redemption_from_order(order, customer_id=customer_id)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Order {order.get('id')} redemption detection failed: {e}")
            return None
        if detection.detected:
            logger.info(
                f"Order {order.get('id')} redeemed reward {detection.reward_id} via {detection.method}"
            )
        return detection

    def is_order_processed(self, order_id: str) -> bool:
        """An order counts as processed once claimed or once any purchase from it is recorded."""
        claimed = db.session.query(
            ProcessedOrder.query.filter_by(merchant_id=self.merchant_id, order_id=order_id).exists()
        ).scalar()
        if claimed:
            return True
        return db.session.query(
            PurchaseEvent.query.filter_by(merchant_id=self.merchant_id, order_id=order_id).exists()
        ).scalar()

    def _claim_order(self, order_id: str, source: str) -> bool:
        now = utcnow()
        stmt = (
            dialect_insert(ProcessedOrder)
            .values(
                merchant_id=self.merchant_id,
                order_id=order_id,
                result_type=ProcessedOrderResult.PENDING.value,
                qualifying_items=0,
                total_line_items=0,
                source=source,
                processed_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=['merchant_id', 'order_id'])
        )
        return db.session.execute(stmt).rowcount == 1

    def _finalize_claim(self, order_id: str, customer_id: Optional[str], result: OrderIntakeResult,
                        total_line_items: int) -> None:
        claim = ProcessedOrder.query.filter_by(merchant_id=self.merchant_id, order_id=order_id).one()
        claim.customer_id = customer_id
        claim.result_type = result.result_type
        claim.qualifying_items = len(result.purchase_events)
        claim.total_line_items = total_line_items
        claim.processed_at = utcnow()

    def _process_line_items(self, order, line_items, customer_id, customer_source, source, result) -> None:
        discount_map = build_discount_map(order, self._reward_discount_ids())
        purchased_at = parse_order_timestamp(order.get('created_at'))
        tender = extract_tender_info(order)

        for index, line_item in enumerate(line_items):
            decision = should_skip_line_item(line_item, discount_map)
            if decision.skip:
                result.skipped_items.append({
                    'index': index,
                    'variation_id': decision.variation_id,
                    'reason': decision.reason,
                })
                continue

            try:
                with db.session.begin_nested():
                    purchase = self.ledger.record_purchase(
                        customer_id=customer_id,
                        order_id=result.order_id,
                        variation_id=decision.variation_id,
                        quantity=decision.quantity,
                        purchased_at=purchased_at,
                        unit_price_cents=decision.unit_price_cents,
                        location_id=order.get('location_id'),
                        source=source,
                        customer_source=customer_source,
                        receipt_url=tender['receipt_url'],
                        payment_type=tender['payment_type'],
                        commit=False,
                    )
            except (IntegrityError, OperationalError):
                raise
            except Exception as e:
                logger.error(
                    f"Order {result.order_id} line {index} ({decision.variation_id}) failed, skipping: {e}"
                )
                result.failed_items.append({
                    'index': index,
                    'variation_id': decision.variation_id,
                    'error': str(e),
                })
                continue

            if purchase.recorded:
                result.purchase_events.append(purchase.purchase_event)
                result.reward_earned = result.reward_earned or purchase.reward_earned
            else:
                result.skipped_items.append({
                    'index': index,
                    'variation_id': decision.variation_id,
                    'reason': purchase.reason,
                })

    def _reward_discount_ids(self) -> List[str]:
        rows = (
            db.session.query(Reward.discount_id)
            .filter(Reward.merchant_id == self.merchant_id, Reward.discount_id.isnot(None))
            .all()
        )
        return [row[0] for row in rows]

    # ==================== Refunds ====================

    def process_refund(
        self,
        refund: Dict[str, Any],
        customer_id: str = None,
        source: str = OrderSource.WEBHOOK.value,
    ) -> RefundIntakeResult:
        """
        Reverse the returned line items of a refund.

        Args:
            refund: Refund payload with id, order_id, created_at and
                return_line_items
            customer_id: Customer of the original order; taken from its
                recorded purchases when omitted

        Raises:
            ValidationError: Missing order id
        """
        order_id = (refund or {}).get('order_id')
        if not order_id:
            raise ValidationError('refund order_id is required', 'order_id')

        refund_id = refund.get('id')
        result = RefundIntakeResult(refund_id=refund_id, order_id=order_id)

        if not customer_id:
            customer_id = (
                db.session.query(PurchaseEvent.customer_id)
                .filter_by(merchant_id=self.merchant_id, order_id=order_id, is_refund=False)
                .limit(1)
                .scalar()
            )
        if not customer_id:
            logger.info(f"Refund {refund_id} for order {order_id}: order has no loyalty purchases")
            return result
        result.customer_id = customer_id

        refunded_at = parse_order_timestamp(refund.get('created_at'))

        try:
            for line_item in refund.get('return_line_items') or []:
                variation_id = line_item.get('catalog_object_id')
                quantity = parse_quantity(line_item.get('quantity'))
                if not variation_id or quantity <= 0:
                    continue

                with db.session.begin_nested():
                    outcome = self.ledger.record_refund(
                        customer_id=customer_id,
                        order_id=order_id,
                        variation_id=variation_id,
                        quantity=quantity,
                        refunded_at=refunded_at,
                        refund_id=refund_id,
                        unit_price_cents=money_amount(line_item.get('base_price_money')),
                        source=source,
                        commit=False,
                    )
                result.refunds.append(outcome)

            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Refund {refund_id} for order {order_id} failed, rolled back: {e}")
            raise

        return result
