"""
Domain exception hierarchy.

Services raise these exceptions; the API layer renders them through a
single exception handler using the ``status_code`` and ``error_code``
carried on each class.
"""
from __future__ import annotations

from typing import Optional


class TrackdealError(Exception):
    """Base exception for all trackdeal domain errors."""

    status_code = 400
    default_error_code = "TRACKDEAL_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(TrackdealError):
    """Malformed or missing input; the caller must correct and retry."""

    status_code = 422
    default_error_code = "VALIDATION_ERROR"


class NotFound(TrackdealError):
    """The referenced negotiation or message does not exist."""

    status_code = 404
    default_error_code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: object):
        super().__init__(
            message=f"{resource} {resource_id} not found",
            details={"resource": resource, "id": resource_id},
        )


class InvalidTransition(TrackdealError):
    """A status change that the negotiation state machine does not allow."""

    status_code = 409
    default_error_code = "INVALID_TRANSITION"

    def __init__(self, current: str, target: str, reason: Optional[str] = None):
        self.current = current
        self.target = target
        super().__init__(
            message=reason or f"Cannot transition negotiation from {current} to {target}",
            details={"current": current, "target": target},
        )


class NegotiationNotActive(TrackdealError):
    """A message append was attempted on a negotiation in a terminal status."""

    status_code = 409
    default_error_code = "NEGOTIATION_NOT_ACTIVE"

    def __init__(self, negotiation_id: int, status: str):
        self.negotiation_id = negotiation_id
        self.status = status
        super().__init__(
            message=f"Negotiation {negotiation_id} is {status}; no further messages can be added",
            details={"negotiation_id": negotiation_id, "status": status},
        )


class SentimentAlreadyAttached(TrackdealError):
    """The message already carries a sentiment score."""

    status_code = 409
    default_error_code = "SENTIMENT_ALREADY_ATTACHED"

    def __init__(self, message_id: int):
        self.message_id = message_id
        super().__init__(
            message=f"Message {message_id} already has a sentiment score",
            details={"message_id": message_id},
        )


class AnalysisUnavailable(TrackdealError):
    """The analysis service failed, timed out or returned unusable output.

    Never surfaced by the message append operation; the background
    dispatcher logs it and leaves the message without a sentiment score.
    """

    status_code = 503
    default_error_code = "ANALYSIS_UNAVAILABLE"
