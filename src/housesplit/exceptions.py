"""Custom exceptions for HouseSplit."""


class HouseSplitError(Exception):
    """Base exception for all HouseSplit errors."""

    pass


class ConfigurationError(HouseSplitError):
    """Raised when configuration is invalid or missing."""

    pass


class InvalidSplitConfig(HouseSplitError):
    """Raised when percentages or amounts cannot be allocated against a total."""

    pass


class EmptyParticipantSet(HouseSplitError):
    """Raised when a split is requested with no participants."""

    def __init__(self, message: str | None = None):
        super().__init__(message or "At least one participant is required")


class InvalidChargeSpec(HouseSplitError):
    """Raised when tax, service or line item inputs are negative or malformed."""

    pass


class TemplateNotDue(HouseSplitError):
    """Signals that a recurring template has nothing to materialize yet.

    This is a no-op signal rather than a failure: callers skip the template.
    """

    def __init__(self, template_id: str, message: str | None = None):
        self.template_id = template_id
        super().__init__(message or f"Recurring template {template_id} is not due")


class ConcurrentMaterializationConflict(HouseSplitError):
    """Raised when another processing pass advanced the template first."""

    def __init__(self, template_id: str, expected_version: int):
        self.template_id = template_id
        self.expected_version = expected_version
        super().__init__(
            f"Recurring template {template_id} changed while processing "
            f"(expected version {expected_version}); retry or ignore"
        )


class InvalidPayment(HouseSplitError):
    """Raised when a payment cannot be recorded, e.g. a payment to oneself."""

    pass


class InvalidPaymentTransition(HouseSplitError):
    """Raised when a payment status change is not allowed."""

    pass


class RecordNotFoundError(HouseSplitError):
    """Raised when a record id does not exist in the store."""

    def __init__(self, kind: str, record_id: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} {record_id} not found")
