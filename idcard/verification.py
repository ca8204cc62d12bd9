# idcard/verification.py
"""
Two-phase identity proof: request an OTP for an identifier, then confirm it.

Faculty and staff identify with an institute email; students with a roll
number whose institute email is derived as `<rollno>@<domain>`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from .errors import (
    DeliveryFailed, IdentityVerificationError, InputValidationError,
    InvalidIdentifierDomain, InvalidOrExpiredOtp, ServiceError,
)
from .form_data_builder import FLOW_TEMPLATE_REGISTRY, Role
from .validation import OTP_PATTERN, ROLL_NUMBER_PATTERN

logger = logging.getLogger(__name__)

class VerificationPhase(Enum):
    REQUEST_OTP = 'request_otp'
    CONFIRM_OTP = 'confirm_otp'

@dataclass(frozen=True)
class ApplicantIdentity:
    role: Role
    # Lowercase roll number for students, the normalized email otherwise.
    identifier: str
    email: str
    verified: bool = True

class AuthBackend(Protocol):
    async def request_otp(self, identifier: str, role: Role) -> None: ...
    async def confirm_otp(self, identifier: str, code: str, role: Role) -> dict[str, Any]: ...
    async def end_session(self) -> None: ...

def normalize_identifier(identifier: str, role: Role, domain: str) -> tuple[str, str]:
    """
    Returns `(identifier, email)` for the role.
    Raises InputValidationError for blank input and InvalidIdentifierDomain
    for a faculty/staff email outside the institute domain.
    """
    cleaned = (identifier or '').strip()
    domain = domain.strip().lower().lstrip('@')
    if role is Role.STUDENT:
        if not cleaned:
            raise InputValidationError("Please enter your roll number.")
        if not ROLL_NUMBER_PATTERN.match(cleaned):
            raise InputValidationError("Roll number may contain only letters and digits.")
        roll_no = cleaned.lower()
        return roll_no, f"{roll_no}@{domain}"

    if not cleaned:
        raise InputValidationError("Please enter your institute email.")
    email = cleaned.lower()
    if not email.endswith(f"@{domain}"):
        raise InvalidIdentifierDomain(f"Only @{domain} institute email is allowed")
    return email, email

class VerificationGate:
    """
    Holds the verification sub-step of one session. Each backend call is
    single-flight: a call made while the previous one is still pending
    returns None without touching the backend.
    """

    def __init__(self, auth: AuthBackend, role: Role, domain: str) -> None:
        self._auth = auth
        self.domain = domain
        self.role = role
        self.phase = VerificationPhase.REQUEST_OTP
        self.identifier: str = ''
        self.email: str = ''
        self.code: str = ''
        self.pending: bool = False
        # Bumped by reset(); a reply that arrives after a reset is ignored.
        self._generation: int = 0

    def set_role(self, role: Role) -> None:
        if self.pending:
            raise IdentityVerificationError("Please wait for the OTP request to finish.")
        if self.phase is not VerificationPhase.REQUEST_OTP:
            raise IdentityVerificationError("The role cannot change after the OTP has been sent.")
        if role not in FLOW_TEMPLATE_REGISTRY[self.role]['role_family']:
            raise IdentityVerificationError(f"Cannot switch from {self.role.value} to {role.value}.")
        self.role = role

    async def request_otp(self, raw_identifier: str) -> str | None:
        """Phase 1. Returns the email the OTP went to."""
        if self.pending:
            return None
        identifier, email = normalize_identifier(raw_identifier, self.role, self.domain)
        # Students are looked up by the roll number as typed; the lowercase form is only the session key.
        sent_identifier = raw_identifier.strip() if self.role is Role.STUDENT else identifier
        generation = self._generation
        self.pending = True
        try:
            await self._auth.request_otp(sent_identifier, self.role)
        except ServiceError as e:
            logger.warning(f"OTP delivery failed for {self.role.value}: {e.message}")
            raise DeliveryFailed(e.message or 'Failed to send OTP') from e
        finally:
            if generation == self._generation:
                self.pending = False

        if generation != self._generation:
            return None
        self.identifier, self.email = identifier, email
        self.code = ''
        self.phase = VerificationPhase.CONFIRM_OTP
        logger.info(f"OTP sent to {email} ({self.role.value}).")
        return email

    async def confirm_otp(self, code: str) -> ApplicantIdentity | None:
        """Phase 2. Returns the verified identity."""
        if self.pending:
            return None
        if self.phase is not VerificationPhase.CONFIRM_OTP:
            raise IdentityVerificationError("Request an OTP first.")
        code = (code or '').strip()
        if not OTP_PATTERN.match(code):
            raise InputValidationError("Please enter the 6-digit OTP.")

        self.code = code
        generation = self._generation
        self.pending = True
        try:
            response = await self._auth.confirm_otp(self.email, code, self.role)
        except ServiceError as e:
            logger.warning(f"OTP confirmation failed for {self.email}: {e.message}")
            raise InvalidOrExpiredOtp(e.message or 'Invalid OTP') from e
        finally:
            if generation == self._generation:
                self.pending = False

        if generation != self._generation:
            return None
        email = str(response.get('email') or self.email).strip().lower()
        identity = ApplicantIdentity(role=self.role, identifier=self.identifier, email=email)
        logger.info(f"Verified {identity.role.value} identity {identity.identifier}.")
        return identity

    def change_identifier(self) -> None:
        """Back to phase 1. The role selection survives."""
        self.phase = VerificationPhase.REQUEST_OTP
        self.code = ''

    def reset(self) -> None:
        self._generation += 1
        self.pending = False
        self.change_identifier()
        self.identifier = ''
        self.email = ''

    async def end_session(self) -> None:
        """Drops any backend session. A failing logout must not block a fresh start."""
        self.reset()
        try:
            await self._auth.end_session()
        except ServiceError as e:
            logger.warning(f"Ending the previous session failed: {e.message}")
