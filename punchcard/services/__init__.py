"""
Business logic services for the loyalty ledger.
"""
from .offer_service import OfferService
from .ledger_service import LedgerService
from .summary_service import SummaryService
from .order_intake import OrderIntakeService
from .redemption_service import RedemptionService
from .expiration_service import ExpirationService
from .discount_outbox import DiscountOutbox

__all__ = [
    'OfferService',
    'LedgerService',
    'SummaryService',
    'OrderIntakeService',
    'RedemptionService',
    'ExpirationService',
    'DiscountOutbox',
]
