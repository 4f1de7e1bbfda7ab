"""
Audit trail writer and reader.

Audit rows are added to the caller's session and commit (or roll back)
with the ledger change they describe. Each row is also mirrored to the
``punchcard.audit`` logger.
"""
from typing import Optional, List, Dict, Any

from ..extensions import db
from ..models.audit import AuditEvent, TriggeredBy
from ..utils.exceptions import ValidationError
from ..utils.logging_config import get_logger

audit_logger = get_logger('audit')


def log_audit_event(
    merchant_id: int,
    action: str,
    offer_id: int = None,
    reward_id: int = None,
    purchase_event_id: int = None,
    customer_id: str = None,
    order_id: str = None,
    old_state: str = None,
    new_state: str = None,
    old_quantity: int = None,
    new_quantity: int = None,
    triggered_by: str = TriggeredBy.SYSTEM.value,
    user_id: str = None,
    details: Dict[str, Any] = None,
) -> AuditEvent:
    """
    Record an audit event in the current transaction.

    Args:
        merchant_id: Owning merchant (required)
        action: One of AuditAction values

    Returns:
        The pending AuditEvent (flushed with the caller's next flush/commit)
    """
    if not merchant_id:
        raise ValidationError('merchant_id is required for audit logging', 'merchant_id')

    action = getattr(action, 'value', action)
    triggered_by = getattr(triggered_by, 'value', triggered_by)

    event = AuditEvent(
        merchant_id=merchant_id,
        action=action,
        offer_id=offer_id,
        reward_id=reward_id,
        purchase_event_id=purchase_event_id,
        customer_id=customer_id,
        order_id=order_id,
        old_state=old_state,
        new_state=new_state,
        old_quantity=old_quantity,
        new_quantity=new_quantity,
        triggered_by=triggered_by,
        user_id=user_id,
        details=details or {},
    )
    db.session.add(event)

    audit_logger.info(
        f"{action} merchant={merchant_id} customer={customer_id} offer={offer_id} "
        f"reward={reward_id} order={order_id} "
        f"state={old_state}->{new_state} qty={old_quantity}->{new_quantity}"
    )
    return event


def get_audit_logs(
    merchant_id: int,
    action: str = None,
    customer_id: str = None,
    offer_id: int = None,
    limit: int = 100,
    offset: int = 0,
) -> List[AuditEvent]:
    """List audit events, newest first."""
    query = AuditEvent.query.filter_by(merchant_id=merchant_id)

    if action:
        query = query.filter(AuditEvent.action == getattr(action, 'value', action))
    if customer_id:
        query = query.filter(AuditEvent.customer_id == customer_id)
    if offer_id:
        query = query.filter(AuditEvent.offer_id == offer_id)

    return (
        query.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def count_audit_logs(merchant_id: int, action: Optional[str] = None) -> int:
    query = AuditEvent.query.filter_by(merchant_id=merchant_id)
    if action:
        query = query.filter(AuditEvent.action == getattr(action, 'value', action))
    return query.count()
