"""Error taxonomy for the generation job lifecycle.

ValidationError and CredentialError are raised synchronously from submission
and never leave a job behind. TransientNetworkError and ProtocolError during
polling count as failed attempts toward the retry bound. ProviderReportedFailure
carries the provider's own message. MaterializationError never downgrades a
provider-confirmed success.
"""

from __future__ import annotations


class GenerationError(Exception):
    """Base class for all job lifecycle errors."""


class ValidationError(GenerationError):
    """Request shape is malformed or not supported by the chosen provider/sub-model."""


class CredentialError(GenerationError):
    """Provider credential is missing or was rejected (HTTP 401/403)."""


class ProtocolError(GenerationError):
    """Provider answered with an unparseable or unexpected envelope."""


class TransientNetworkError(GenerationError):
    """Timeout, connection failure, 408/429 or 5xx. Eligible for bounded retry."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderReportedFailure(GenerationError):
    """Provider explicitly rejected the request or reported generation failure."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class MaterializationError(GenerationError):
    """Provider succeeded but the result could not be downloaded or stored."""


class InvalidTransition(GenerationError):
    """Attempted a job state change the state machine does not allow."""


class JobNotFound(GenerationError):
    """No live job or persisted record for the given id."""
