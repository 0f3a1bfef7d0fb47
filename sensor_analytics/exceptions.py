"""
Exception hierarchy for the analytics engine.

Every error raised by this package derives from AnalyticsError so callers
can catch the whole family in one place.

Exceptions:
    ValidationError: A rule was rejected (all violations listed).
    NotFoundError: Unknown rule or template identifier.
    EvaluationFailure: A condition could not be compiled.
    DeliveryFailure: A transport failed to deliver a notification.
    ProcessingError: Handling a single event failed inside the worker.
"""

from typing import List, Optional


class AnalyticsError(Exception):
    """Base exception for the analytics engine."""

    pass


class ValidationError(AnalyticsError):
    """
    Raised when a rule fails validation.

    Attributes:
        errors: Every violation found, in check order.
        rule_id: Identifier of the rejected rule, if it had one.
    """

    def __init__(self, errors: List[str], rule_id: Optional[str] = None) -> None:
        self.errors = list(errors)
        self.rule_id = rule_id
        super().__init__(f"Invalid rule: {', '.join(self.errors)}")


class NotFoundError(AnalyticsError):
    """
    Raised when a rule or template does not exist.

    Attributes:
        kind: What was looked up ("rule" or "template").
        key: The identifier that was not found.
    """

    def __init__(self, kind: str, key: str) -> None:
        self.kind = kind
        self.key = key
        super().__init__(f"{kind.capitalize()} not found: {key}")


class EvaluationFailure(AnalyticsError):
    """Raised by the condition compiler for an unparsable expression."""

    def __init__(self, condition: str, reason: str = "invalid condition format") -> None:
        self.condition = condition
        self.reason = reason
        super().__init__(f"{reason}: {condition!r}")


class DeliveryFailure(AnalyticsError):
    """
    Raised by a transport adapter when a send or post fails.

    Channels always capture this into a DeliveryResult; it never reaches
    the dispatcher's caller.
    """

    def __init__(self, channel: str, detail: str) -> None:
        self.channel = channel
        self.detail = detail
        super().__init__(f"{channel} delivery failed: {detail}")


class ProcessingError(AnalyticsError):
    """Raised when the worker fails to process one event."""

    def __init__(self, device_id: Optional[str], cause: Exception) -> None:
        self.device_id = device_id
        self.cause = cause
        super().__init__(f"Failed to process event from {device_id}: {cause}")
