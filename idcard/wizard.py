# idcard/wizard.py
"""
The step wizard: one state machine for every applicant role.

Verification -> Form -> Documents -> Preview -> Submitted (staged topology),
or Verification -> Form+Documents -> Preview -> Submitted (inline topology).
Which steps exist, which fields are validated and which documents are
required all come from the `FlowConfig`; nothing here branches on role.

Every operation is driven by one user action. Failures never raise out of
the wizard: they become `state.notice` and the caller re-renders the step.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from .config import Settings
from .draft import (
    Draft, apply_field_change, check_category, check_documents, check_fields, new_draft,
)
from .errors import FilePolicyError, ServiceError, SubmissionError, WizardError
from .files import CandidateFile, FileRejection, SlotBoard, SLOT_LABELS, accept
from .form_data_builder import (
    PREVIEW_STEP, SUBMITTED_STEP, VERIFICATION_STEP, Role,
)
from .pdf_summary import summary_rows
from .session_store import DraftStore
from .step_definitions import (
    STEPS_BY_ID, FlowConfig, build_flow_config, calculate_next_step_id, calculate_prev_step_id,
)
from .submission import (
    DocumentRenderer, SubmissionOutcome, SubmissionPackage, assemble, build_snapshot,
    resolve_application_id,
)
from .utils import GUARD_ORDER, StepDefinition
from .verification import ApplicantIdentity, AuthBackend, VerificationGate, VerificationPhase

logger = logging.getLogger(__name__)

NOTICE_TIMEOUT_SECONDS: float = 3.0

class ApplicationBackend(Protocol):
    async def submit(self, package: SubmissionPackage) -> dict[str, Any]: ...

@dataclass(frozen=True)
class Notice:
    message: str
    severity: str = 'error'  # error | success | info

@dataclass
class WizardState:
    current_step: int
    role: Role
    draft: Draft
    files: SlotBoard
    identity: ApplicantIdentity | None = None
    notice: Notice | None = None
    # Kinds of async operation currently in flight.
    pending: set[str] = field(default_factory=set)
    # Bumped on every session reset; results from an older epoch are dropped.
    epoch: int = 0
    # Filenames from before a reload. Content is not kept, so these must be re-attached.
    resumed_file_names: dict[str, str] = field(default_factory=dict)

# (epoch, step) at the moment an async operation started.
_Ticket = tuple[int, int]

class Wizard:
    def __init__(
        self,
        config: FlowConfig,
        store: DraftStore,
        auth: AuthBackend,
        applications: ApplicationBackend,
        generator: DocumentRenderer,
        *,
        email_domain: str = 'nitt.edu',
        institution: str = 'NITT',
    ) -> None:
        self.config = config
        self.store = store
        self.applications = applications
        self.generator = generator
        self.institution = institution
        self.gate = VerificationGate(auth, config.role, email_domain)
        self.state = self._fresh_state(epoch=0)

    # ===================================================================
    # STATE HELPERS
    # ===================================================================

    def _fresh_state(self, epoch: int, step: int | None = None) -> WizardState:
        return WizardState(
            current_step=self.config.step_sequence[0] if step is None else step,
            role=self.config.role,
            draft=new_draft(self.config.role),
            files=SlotBoard(self.config.template['available_slots']),
            epoch=epoch,
        )

    @property
    def current_step_def(self) -> StepDefinition:
        return STEPS_BY_ID[self.state.current_step]

    @property
    def verification_phase(self) -> VerificationPhase:
        return self.gate.phase

    def is_pending(self, kind: str) -> bool:
        return kind in self.state.pending

    def _notify(self, message: str, severity: str = 'error') -> None:
        self.state.notice = Notice(message=message, severity=severity)
        if severity == 'error':
            logger.warning(f"[{self.state.role.value}] step {self.state.current_step}: {message}")

    def dismiss_notice(self) -> None:
        self.state.notice = None

    def _begin(self, kind: str) -> _Ticket | None:
        if kind in self.state.pending:
            logger.debug(f"Ignoring duplicate '{kind}' while one is in flight.")
            return None
        self.state.pending.add(kind)
        return self.state.epoch, self.state.current_step

    def _finish(self, kind: str, ticket: _Ticket) -> None:
        # A reset since the start already dropped the old pending set.
        if ticket[0] == self.state.epoch:
            self.state.pending.discard(kind)

    def _is_stale(self, ticket: _Ticket, kind: str) -> bool:
        stale = ticket != (self.state.epoch, self.state.current_step)
        if stale:
            logger.debug(f"Discarding '{kind}' result: the wizard has moved on since it started.")
        return stale

    def _move_to(self, step_id: int) -> None:
        self.state.current_step = step_id
        self.store.save_step(step_id)
        logger.info(f"[{self.state.role.value}] now on step '{STEPS_BY_ID[step_id]['name']}'.")

    def _persist_draft(self) -> None:
        if self.state.identity is not None:
            self.store.save_draft(self.state.identity, self.state.draft)

    # ===================================================================
    # SESSION LIFECYCLE
    # ===================================================================

    async def start(self) -> None:
        """
        Fresh entry into verification: drops the backend session and wipes
        every stored identity, draft and file, whoever they belonged to.
        """
        epoch = self.state.epoch + 1
        self.store.clear()
        self.state = self._fresh_state(epoch=epoch)
        await self.gate.end_session()
        logger.info(f"Started a fresh {self.config.role.value} session.")

    async def enter(self) -> None:
        """Page load: resume the stored session, or start fresh when there is none to resume."""
        if not self.resume():
            await self.start()

    def resume(self) -> bool:
        """
        Restores a verified session after a page reload. Lands on the stored
        form or documents step (Preview needs the files, which have to be
        picked again), otherwise on the first step after verification.
        """
        identity = self.store.load_identity()
        if identity is None:
            return False
        if identity.role not in self.config.template['role_family']:
            logger.info(f"Stored identity is a {identity.role.value}; not resuming a {self.config.role.value} flow.")
            return False
        if identity.role is not self.config.role:
            self.config = build_flow_config(identity.role, self.config.topology, self.config.file_policy)
        self.gate.role = identity.role

        step = self.store.load_step()
        if step not in self.config.step_sequence or not (
                STEPS_BY_ID[step]['shows_form'] or STEPS_BY_ID[step]['shows_documents']):
            step = calculate_next_step_id(VERIFICATION_STEP, self.config.step_sequence)
        state = self._fresh_state(epoch=self.state.epoch + 1, step=step)
        state.identity = identity
        state.draft = self.store.load_draft(identity)
        state.resumed_file_names = {
            slot: name for slot, name in self.store.load_file_manifest().items() if name and slot in state.files
        }
        self.state = state
        self.store.save_step(state.current_step)
        logger.info(f"Resumed session for {identity.identifier}.")
        return True

    def set_role(self, role: Role) -> bool:
        """Switches between roles that share a form (faculty/staff) before the OTP is sent."""
        if self.state.current_step != VERIFICATION_STEP or self.state.pending or self.gate.pending:
            return False
        try:
            self.gate.set_role(role)
        except WizardError as e:
            self._notify(e.message)
            return False
        self.config = build_flow_config(role, self.config.topology, self.config.file_policy)
        self.state = self._fresh_state(epoch=self.state.epoch)
        return True

    # ===================================================================
    # VERIFICATION
    # ===================================================================

    async def request_otp(self, identifier: str) -> bool:
        if self.state.current_step != VERIFICATION_STEP:
            return False
        ticket = self._begin('request_otp')
        if ticket is None:
            return False
        try:
            email = await self.gate.request_otp(identifier)
        except WizardError as e:
            if not self._is_stale(ticket, 'request_otp'):
                self._notify(e.message)
            return False
        finally:
            self._finish('request_otp', ticket)

        if email is None or self._is_stale(ticket, 'request_otp'):
            return False
        self._notify(f"OTP sent to {email}", 'success')
        return True

    async def confirm_otp(self, code: str) -> bool:
        """On success the identity is stored and the wizard moves past verification."""
        if self.state.current_step != VERIFICATION_STEP:
            return False
        ticket = self._begin('confirm_otp')
        if ticket is None:
            return False
        try:
            identity = await self.gate.confirm_otp(code)
        except WizardError as e:
            if not self._is_stale(ticket, 'confirm_otp'):
                self._notify(e.message)
            return False
        finally:
            self._finish('confirm_otp', ticket)

        if identity is None or self._is_stale(ticket, 'confirm_otp'):
            return False

        self.state.identity = identity
        self.state.role = identity.role
        self.store.save_identity(identity)
        self.state.draft = self.store.load_draft(identity)
        self._persist_draft()
        if not self.advance():
            return False
        self._notify("Verification Successful!", 'success')
        return True

    def change_identifier(self) -> None:
        if self.state.current_step == VERIFICATION_STEP and not self.state.pending:
            self.gate.change_identifier()
            self.dismiss_notice()

    # ===================================================================
    # FORM & DOCUMENTS
    # ===================================================================

    def update_field(self, field_name: str, raw_value: Any) -> bool:
        if not self.current_step_def['shows_form'] or self.state.identity is None:
            return False
        updated = apply_field_change(self.state.draft, self.state.role, field_name, raw_value)
        if updated is self.state.draft:
            return False
        self.state.draft = updated
        self._persist_draft()
        return True

    def update_fields(self, changes: dict[str, Any]) -> None:
        for field_name, raw_value in changes.items():
            self.update_field(field_name, raw_value)

    async def attach_file(self, slot_name: str, candidate: CandidateFile) -> bool:
        """
        Checks the file against the configured policy (off the event loop, as
        the preview encoding may be large). A rejected file leaves the slot as it was.
        """
        if not self.current_step_def['shows_documents']:
            return False
        if slot_name not in self.state.files:
            self._notify(f"{SLOT_LABELS.get(slot_name, slot_name)} is not needed for this application.")
            return False
        ticket = self._begin('attach_file')
        if ticket is None:
            return False
        try:
            result = await asyncio.to_thread(accept, slot_name, candidate, self.config.file_policy)
        finally:
            self._finish('attach_file', ticket)

        if self._is_stale(ticket, 'attach_file'):
            return False
        if isinstance(result, FileRejection):
            error = FilePolicyError(result.message)
            self._notify(error.message)
            return False
        self.state.files.put(result)
        self.state.resumed_file_names.pop(slot_name, None)
        self.store.save_file_manifest(self.state.files.manifest())
        self.dismiss_notice()
        return True

    def remove_file(self, slot_name: str) -> None:
        self.state.files.remove(slot_name)
        self.store.save_file_manifest(self.state.files.manifest())

    # ===================================================================
    # NAVIGATION
    # ===================================================================

    def first_unmet_condition(self) -> str | None:
        """Runs the current step's guards in the fixed order and returns the first failure."""
        step_guards = self.current_step_def['guards']
        checks: dict[str, Callable[[], str | None]] = {
            'identity': lambda: None if self.state.identity else "Please verify your identity with the OTP first.",
            'category': lambda: check_category(self.state.draft, self.config),
            'fields': lambda: check_fields(self.state.draft, self.config),
            'documents': lambda: check_documents(self.state.draft, self.state.files, self.config),
        }
        for guard in GUARD_ORDER:
            if guard in step_guards:
                message = checks[guard]()
                if message:
                    return message
        return None

    def advance(self) -> bool:
        current = self.state.current_step
        if current in (PREVIEW_STEP, SUBMITTED_STEP):
            return False
        message = self.first_unmet_condition()
        if message:
            self._notify(message)
            return False
        next_step_id = calculate_next_step_id(current, self.config.step_sequence)
        if next_step_id == current:
            return False
        self.dismiss_notice()
        self._move_to(next_step_id)
        return True

    def back_allowed(self) -> bool:
        """Verification cannot be re-entered by going back: a new identity needs `start()`."""
        current = self.state.current_step
        prev_step_id = calculate_prev_step_id(current, self.config.step_sequence)
        return not (prev_step_id == current or prev_step_id == VERIFICATION_STEP or current == SUBMITTED_STEP)

    def back(self) -> bool:
        """One step back, keeping draft and files."""
        if not self.back_allowed():
            return False
        self.dismiss_notice()
        self._move_to(calculate_prev_step_id(self.state.current_step, self.config.step_sequence))
        return True

    # ===================================================================
    # PREVIEW & SUBMISSION
    # ===================================================================

    def preview_rows(self) -> list[tuple[str, str]]:
        if self.state.identity is None:
            return []
        return summary_rows(build_snapshot(self.state.draft, self.state.identity, ''))

    async def preview_pdf(self) -> bytes | None:
        """A watermarked copy of the summary for on-screen review."""
        if self.state.current_step != PREVIEW_STEP or self.state.identity is None:
            return None
        ticket = self._begin('preview_pdf')
        if ticket is None:
            return None
        snapshot = build_snapshot(self.state.draft, self.state.identity, 'PREVIEW')
        try:
            pdf_bytes = await asyncio.to_thread(self.generator.render_summary, snapshot, True)
        except ServiceError as e:
            if not self._is_stale(ticket, 'preview_pdf'):
                self._notify(e.message)
            return None
        finally:
            self._finish('preview_pdf', ticket)
        return None if self._is_stale(ticket, 'preview_pdf') else pdf_bytes

    async def submit(self) -> SubmissionOutcome | None:
        """
        Exactly one submission attempt per call; a call made while another is
        in flight is ignored. On success the whole session is cleared. On
        failure nothing is touched and the wizard stays on Preview.
        """
        if self.state.current_step != PREVIEW_STEP or self.state.identity is None:
            return None
        ticket = self._begin('submit')
        if ticket is None:
            return None
        identity = self.state.identity
        try:
            package = await asyncio.to_thread(
                assemble, dict(self.state.draft), self.state.files.present(), identity,
                self.generator, institution=self.institution,
            )
            response = await self.applications.submit(package)
        except ServiceError as e:
            error = SubmissionError(f"Submission Error: {e.message}")
            if not self._is_stale(ticket, 'submit'):
                self._notify(error.message)
            return None
        finally:
            self._finish('submit', ticket)

        if self._is_stale(ticket, 'submit'):
            return None

        outcome = SubmissionOutcome(
            application_id=resolve_application_id(response, package.provisional_id),
            provisional_id=package.provisional_id,
            application=response.get('application'),
        )
        self.store.clear()
        self.gate.reset()
        self.state = self._fresh_state(epoch=self.state.epoch + 1, step=SUBMITTED_STEP)
        self._notify("Application submitted successfully!", 'success')
        logger.info(f"Submitted {identity.role.value} application {outcome.application_id}.")
        return outcome

def create_wizard(role: Role, settings: Settings, store: DraftStore, auth: AuthBackend,
                  applications: ApplicationBackend, generator: DocumentRenderer) -> Wizard:
    config = build_flow_config(role, settings.topology, settings.file_policy)
    return Wizard(
        config, store, auth, applications, generator,
        email_domain=settings.email_domain,
        institution=settings.institution_code,
    )
