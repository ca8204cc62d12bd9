"""Exception types raised by the wizard core and its collaborators."""
from __future__ import annotations


class WizardError(Exception):
    """Base class for every failure the wizard turns into a user-visible notice."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InputValidationError(WizardError):
    """A required field is missing or malformed."""


class FilePolicyError(WizardError):
    """A selected file breaks the size or type policy of its slot."""


class IdentityVerificationError(WizardError):
    pass


class InvalidIdentifierDomain(IdentityVerificationError):
    pass


class DeliveryFailed(IdentityVerificationError):
    pass


class InvalidOrExpiredOtp(IdentityVerificationError):
    pass


class SubmissionError(WizardError):
    pass


class ServiceError(Exception):
    """A collaborator (HTTP backend, PDF renderer) failed. `message` is safe to show."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ConfigurationError(RuntimeError):
    pass
