"""
Utility modules for the loyalty ledger.
"""
from .logging_config import setup_logging, get_logger
from .exceptions import (
    PunchcardError,
    NotFoundError,
    OfferNotFoundError,
    RewardNotFoundError,
    ValidationError,
    InvalidStatusTransitionError,
    DuplicateError,
    VariationConflictError,
    DiscountServiceError,
    ConfigurationError,
)

__all__ = [
    'setup_logging',
    'get_logger',
    'PunchcardError',
    'NotFoundError',
    'OfferNotFoundError',
    'RewardNotFoundError',
    'ValidationError',
    'InvalidStatusTransitionError',
    'DuplicateError',
    'VariationConflictError',
    'DiscountServiceError',
    'ConfigurationError',
]
