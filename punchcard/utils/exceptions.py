"""
Custom exceptions for the loyalty ledger.

Business rule violations raise one of these; idempotent no-ops (duplicate
orders, non-qualifying variations) are reported through result objects
instead and never raise.
"""


class PunchcardError(Exception):
    """Base exception for all loyalty ledger errors."""

    def __init__(self, message: str, code: str = "PUNCHCARD_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class NotFoundError(PunchcardError):
    """Resource not found."""

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with ID {identifier} not found"
        super().__init__(message, f"{resource.upper()}_NOT_FOUND")


class OfferNotFoundError(NotFoundError):
    """Loyalty offer not found."""

    def __init__(self, identifier=None):
        super().__init__("Offer", identifier)


class RewardNotFoundError(NotFoundError):
    """Reward not found."""

    def __init__(self, identifier=None):
        super().__init__("Reward", identifier)


class ValidationError(PunchcardError):
    """Invalid input data."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        code = f"INVALID_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(message, code)


class InvalidStatusTransitionError(PunchcardError):
    """Invalid status transition for a resource."""

    def __init__(self, resource: str, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        message = f"Cannot change {resource} status from '{from_status}' to '{to_status}'"
        super().__init__(message, "INVALID_STATUS_TRANSITION")


class DuplicateError(PunchcardError):
    """Resource already exists."""

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} already exists"
        if identifier:
            message = f"{resource} with {identifier} already exists"
        super().__init__(message, "DUPLICATE_ENTRY")


class VariationConflictError(PunchcardError):
    """A variation is already assigned to another active offer."""

    def __init__(self, conflicts: list):
        self.conflicts = conflicts
        ids = ', '.join(str(c['variation_id']) for c in conflicts)
        super().__init__(
            f"Variations already assigned to another offer: {ids}",
            "VARIATION_CONFLICT"
        )


class DiscountServiceError(PunchcardError):
    """Error communicating with the commerce platform discount API."""

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(message, "DISCOUNT_SERVICE_ERROR")


class ConfigurationError(PunchcardError):
    """Application configuration error."""

    def __init__(self, message: str):
        super().__init__(message, "CONFIGURATION_ERROR")
