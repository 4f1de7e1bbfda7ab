"""
Database models for the Punchcard loyalty ledger.
"""
from .merchant import Merchant
from .offer import Offer, QualifyingVariation
from .ledger import (
    # Enums
    RewardStatus,
    ProcessedOrderResult,
    OrderSource,
    RedemptionType,
    # Models
    PurchaseEvent,
    Reward,
    ProcessedOrder,
)
from .summary import CustomerSummary
from .audit import AuditEvent, AuditAction, TriggeredBy
from .outbox import DiscountOutboxItem, OutboxAction, OutboxStatus

__all__ = [
    'Merchant',
    'Offer',
    'QualifyingVariation',
    'RewardStatus',
    'ProcessedOrderResult',
    'OrderSource',
    'RedemptionType',
    'PurchaseEvent',
    'Reward',
    'ProcessedOrder',
    'CustomerSummary',
    'AuditEvent',
    'AuditAction',
    'TriggeredBy',
    'DiscountOutboxItem',
    'OutboxAction',
    'OutboxStatus',
]
