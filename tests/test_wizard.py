# tests/test_wizard.py
from __future__ import annotations

import asyncio
import sys
import threading
from pathlib import Path
from typing import Any

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from idcard.config import load_settings
from idcard.errors import ServiceError
from idcard.files import MB, CandidateFile, accept
from idcard.form_data_builder import (
    DOCUMENTS_STEP, FORM_AND_DOCUMENTS_STEP, FORM_STEP, PREVIEW_STEP, SUBMITTED_STEP,
    VERIFICATION_STEP, Role,
)
from idcard.session_store import DraftStore
from idcard.submission import SUMMARY_FIELD_NAME, SubmissionPackage
from idcard.verification import VerificationPhase
from idcard.wizard import Wizard, create_wizard

STAFF_FIELDS: dict[str, Any] = {
    'requestCategory': 'New', 'title': 'Dr', 'staffName': 'John Doe', 'staffNo': 'S1234',
    'designation': 'Assistant Professor', 'department': 'Computer Science & Engineering',
    'dob': '1985-04-12', 'joiningDate': '2012-07-01', 'gender': 'Male', 'bloodGroup': 'O+',
    'phone': '9876543210', 'address': 'Staff Quarters, NIT Campus',
}

STUDENT_FIELDS: dict[str, Any] = {
    'requestCategory': 'Lost', 'name': 'Asha Raman', 'fatherName': 'Raman K', 'dob': '2006-02-14',
    'gender': 'Female', 'phone': '9123456780', 'parentMobile': '9988776655',
    'permanentAddress': '12 Gandhi Road, Madurai', 'programme': 'M.Tech', 'branch': 'CSE',
    'batch': '2024-2026', 'semester': '3', 'issuedBooks': 0,
}

class FakeAuth:
    def __init__(self) -> None:
        self.sessions_ended = 0

    async def request_otp(self, identifier: str, role: Role) -> None:
        return None

    async def confirm_otp(self, identifier: str, code: str, role: Role) -> dict[str, Any]:
        if code != '123456':
            raise ServiceError("Invalid OTP", status_code=400)
        return {'success': True}

    async def end_session(self) -> None:
        self.sessions_ended += 1

class SlowAuth(FakeAuth):
    """Holds every OTP call until `release` is set."""

    def __init__(self, fail_delivery: bool = False) -> None:
        super().__init__()
        self.release = asyncio.Event()
        self.fail_delivery = fail_delivery
        self.calls: list[tuple[str, Role]] = []

    async def request_otp(self, identifier: str, role: Role) -> None:
        self.calls.append(('request', role))
        await self.release.wait()
        if self.fail_delivery:
            raise ServiceError("Failed to send OTP", status_code=500)

    async def confirm_otp(self, identifier: str, code: str, role: Role) -> dict[str, Any]:
        self.calls.append(('confirm', role))
        await self.release.wait()
        return await super().confirm_otp(identifier, code, role)

class FakeApplications:
    def __init__(self, response: dict[str, Any] | None = None) -> None:
        self.response = response if response is not None else {'applicationId': 'APP-2026-0001'}
        self.fail_with: str | None = None
        self.packages: list[SubmissionPackage] = []

    async def submit(self, package: SubmissionPackage) -> dict[str, Any]:
        self.packages.append(package)
        await asyncio.sleep(0)
        if self.fail_with:
            raise ServiceError(self.fail_with, status_code=500)
        return self.response

class FakeRenderer:
    def render_summary(self, snapshot: dict[str, Any], include_watermark: bool = False) -> bytes:
        return b'%PDF-1.7 ' + (b'PREVIEW' if include_watermark else b'FINAL')

def _make_wizard(role: Role, storage: dict[str, Any] | None = None, topology: str = 'staged',
                 applications: FakeApplications | None = None, auth: FakeAuth | None = None) -> tuple[Wizard, dict[str, Any], FakeApplications]:
    settings = load_settings({'IDCARD_FILE_POLICY': 'staged', 'IDCARD_FLOW_TOPOLOGY': topology})
    storage = {} if storage is None else storage
    applications = applications or FakeApplications()
    wizard = create_wizard(role, settings, DraftStore(storage), auth or FakeAuth(), applications, FakeRenderer())
    return wizard, storage, applications

def _jpeg(size: int = 2 * MB) -> CandidateFile:
    return CandidateFile(filename='photo.jpg', content=b'\xff' * size, mime_type='image/jpeg')

async def _verify(wizard: Wizard, identifier: str) -> None:
    await wizard.start()
    assert await wizard.request_otp(identifier)
    assert await wizard.confirm_otp('123456')

async def _staff_to_preview(wizard: Wizard) -> None:
    await _verify(wizard, 'jdoe@nitt.edu')
    wizard.update_fields(STAFF_FIELDS)
    assert wizard.advance()
    assert await wizard.attach_file('photo', _jpeg())
    assert wizard.advance()
    assert wizard.state.current_step == PREVIEW_STEP

def test_staff_application_end_to_end() -> None:
    wizard, storage, applications = _make_wizard(Role.STAFF)

    async def scenario() -> None:
        await wizard.start()
        assert wizard.state.current_step == VERIFICATION_STEP

        assert await wizard.request_otp('JDoe@nitt.edu')
        assert wizard.verification_phase is VerificationPhase.CONFIRM_OTP
        assert wizard.state.notice is not None and wizard.state.notice.message == "OTP sent to jdoe@nitt.edu"

        assert await wizard.confirm_otp('123456')
        assert wizard.state.current_step == FORM_STEP
        assert wizard.state.draft['email'] == 'jdoe@nitt.edu'

        wizard.update_fields(STAFF_FIELDS)
        assert wizard.advance()
        assert wizard.state.current_step == DOCUMENTS_STEP

        assert not wizard.advance()
        assert wizard.state.notice is not None
        assert wizard.state.notice.message == "Please upload your passport-sized photograph."

        assert await wizard.attach_file('photo', _jpeg())
        assert wizard.advance()
        assert wizard.state.current_step == PREVIEW_STEP

        outcome = await wizard.submit()
        assert outcome is not None
        assert outcome.application_id == 'APP-2026-0001'
        assert outcome.application_id != outcome.provisional_id
        assert outcome.provisional_id.startswith('NITT-STF-')

    asyncio.run(scenario())

    package = applications.packages[0]
    assert package.file_fields() == ['photo', SUMMARY_FIELD_NAME], "Staff never send a payment receipt"
    summary = package.get_file(SUMMARY_FIELD_NAME)
    assert summary is not None and summary.filename == 'application_S1234.pdf'
    assert summary.content.endswith(b'FINAL')
    assert package.field_dict()['userType'] == 'staff'

    assert wizard.state.current_step == SUBMITTED_STEP
    assert wizard.state.identity is None
    assert storage == {}, "A successful submission clears the session"

def test_student_lost_card_needs_payment_receipt() -> None:
    wizard, _, applications = _make_wizard(Role.STUDENT)

    async def scenario() -> None:
        await _verify(wizard, '205124040')
        assert wizard.state.draft['rollNo'] == '205124040'
        assert wizard.state.draft['email'] == '205124040@nitt.edu'

        wizard.update_fields(STUDENT_FIELDS)
        assert wizard.advance(), wizard.state.notice
        assert await wizard.attach_file('photo', _jpeg(300 * 1024))

        assert not wizard.advance()
        assert wizard.state.notice is not None
        assert wizard.state.notice.message == "Please upload the payment receipt."

        receipt = CandidateFile('receipt.pdf', b'%PDF' * 100, 'application/pdf')
        assert await wizard.attach_file('payment', receipt)
        assert wizard.advance()

        outcome = await wizard.submit()
        assert outcome is not None

    asyncio.run(scenario())

    package = applications.packages[0]
    assert package.file_fields() == ['photo', 'payment', SUMMARY_FIELD_NAME]
    assert package.get_file(SUMMARY_FIELD_NAME).filename == 'application_205124040.pdf'
    assert package.field_dict()['rollNo'] == '205124040'
    assert package.field_dict()['issuedBooks'] == '0'

def test_student_new_card_skips_payment_receipt() -> None:
    wizard, _, _ = _make_wizard(Role.STUDENT)

    async def scenario() -> None:
        await _verify(wizard, '205124040')
        wizard.update_fields({**STUDENT_FIELDS, 'requestCategory': 'New'})
        assert wizard.advance()
        assert await wizard.attach_file('photo', _jpeg(300 * 1024))
        assert wizard.advance()
        assert wizard.state.current_step == PREVIEW_STEP

    asyncio.run(scenario())

def test_request_category_is_the_first_unmet_condition() -> None:
    wizard, _, _ = _make_wizard(Role.STAFF)

    async def scenario() -> None:
        await _verify(wizard, 'jdoe@nitt.edu')
        wizard.update_fields({k: v for k, v in STAFF_FIELDS.items() if k != 'requestCategory'})
        wizard.update_field('staffNo', '')

        assert wizard.first_unmet_condition() == "Please select a request category."
        assert not wizard.advance()
        assert wizard.state.current_step == FORM_STEP

        wizard.update_field('requestCategory', 'Correction')
        assert wizard.first_unmet_condition() == "Please select the data to be changed."
        wizard.update_field('dataToChange', 'Name')
        assert wizard.first_unmet_condition() == "Staff No. is required."

    asyncio.run(scenario())

def test_inline_topology_checks_form_then_documents() -> None:
    wizard, _, _ = _make_wizard(Role.FACULTY, topology='inline')

    async def scenario() -> None:
        await _verify(wizard, 'prof@nitt.edu')
        assert wizard.state.current_step == FORM_AND_DOCUMENTS_STEP

        assert wizard.first_unmet_condition() == "Please select a request category."
        wizard.update_fields(STAFF_FIELDS)
        assert wizard.first_unmet_condition() == "Please upload your passport-sized photograph."

        assert await wizard.attach_file('photo', _jpeg())
        assert wizard.advance()
        assert wizard.state.current_step == PREVIEW_STEP

        assert wizard.back()
        assert wizard.state.current_step == FORM_AND_DOCUMENTS_STEP
        assert not wizard.back(), "Verification is not re-entered by going back"

    asyncio.run(scenario())

def test_rejected_file_leaves_the_slot_untouched() -> None:
    wizard, _, _ = _make_wizard(Role.STAFF)

    async def scenario() -> None:
        await _verify(wizard, 'jdoe@nitt.edu')
        wizard.update_fields(STAFF_FIELDS)
        assert wizard.advance()

        assert not await wizard.attach_file('photo', _jpeg(6 * MB))
        assert wizard.state.notice is not None
        assert wizard.state.notice.message == "File size exceeds 5MB limit"
        assert not wizard.state.files.has('photo')

        assert not await wizard.attach_file('payment', _jpeg())
        assert not wizard.state.files.has('payment')

    asyncio.run(scenario())

def test_back_keeps_draft_and_files() -> None:
    wizard, _, _ = _make_wizard(Role.STAFF)

    async def scenario() -> None:
        await _staff_to_preview(wizard)
        assert wizard.back()
        assert wizard.state.current_step == DOCUMENTS_STEP
        assert wizard.back()
        assert wizard.state.current_step == FORM_STEP
        assert wizard.state.draft['staffName'] == 'John Doe'
        assert wizard.state.files.has('photo')

    asyncio.run(scenario())

def test_failed_submission_keeps_everything() -> None:
    applications = FakeApplications()
    applications.fail_with = "Service unavailable"
    wizard, storage, _ = _make_wizard(Role.STAFF, applications=applications)

    async def scenario() -> None:
        await _staff_to_preview(wizard)
        assert await wizard.submit() is None

    asyncio.run(scenario())

    assert wizard.state.current_step == PREVIEW_STEP
    assert wizard.state.notice is not None
    assert wizard.state.notice.message == "Submission Error: Service unavailable"
    assert wizard.state.draft['staffNo'] == 'S1234'
    assert wizard.state.files.has('photo')
    assert storage != {}
    assert not wizard.is_pending('submit')

def test_duplicate_submit_is_ignored_while_in_flight() -> None:
    wizard, _, applications = _make_wizard(Role.STAFF)

    async def scenario() -> None:
        await _staff_to_preview(wizard)
        first = asyncio.create_task(wizard.submit())
        await asyncio.sleep(0)
        assert wizard.is_pending('submit')
        assert await wizard.submit() is None
        assert await first is not None

    asyncio.run(scenario())
    assert len(applications.packages) == 1

def test_missing_server_id_falls_back_to_provisional_id() -> None:
    wizard, _, _ = _make_wizard(Role.STAFF, applications=FakeApplications(response={'success': True}))

    async def scenario() -> None:
        await _staff_to_preview(wizard)
        outcome = await wizard.submit()
        assert outcome is not None
        assert outcome.application_id == outcome.provisional_id

    asyncio.run(scenario())

def test_start_wipes_the_previous_session() -> None:
    storage: dict[str, Any] = {}
    wizard, _, _ = _make_wizard(Role.STUDENT, storage)

    async def scenario() -> None:
        await _verify(wizard, '205124040')
        wizard.update_field('name', 'Asha Raman')
        assert storage

        await wizard.start()

    asyncio.run(scenario())
    assert storage == {}
    assert wizard.state.current_step == VERIFICATION_STEP
    assert wizard.state.identity is None
    assert wizard.state.draft['name'] == ''

def test_resume_restores_own_draft_after_reload() -> None:
    storage: dict[str, Any] = {}
    first_tab, _, _ = _make_wizard(Role.STUDENT, storage)

    async def scenario() -> None:
        await _verify(first_tab, '205124040')
        first_tab.update_field('name', 'Asha Raman')
        assert first_tab.advance() is False

    asyncio.run(scenario())

    reloaded, _, _ = _make_wizard(Role.STUDENT, storage)
    assert reloaded.resume()
    assert reloaded.state.current_step == FORM_STEP
    assert reloaded.state.draft['name'] == 'Asha Raman'
    assert reloaded.state.identity is not None and reloaded.state.identity.identifier == '205124040'

    staff_tab, _, _ = _make_wizard(Role.STAFF, storage)
    assert not staff_tab.resume(), "A student session never resumes into the staff flow"

def test_faculty_can_switch_to_staff_before_the_otp() -> None:
    wizard, _, _ = _make_wizard(Role.FACULTY)

    async def scenario() -> None:
        await wizard.start()
        assert wizard.set_role(Role.STAFF)
        assert wizard.config.role is Role.STAFF
        assert not wizard.set_role(Role.STUDENT)

        assert await wizard.request_otp('jdoe@nitt.edu')
        assert not wizard.set_role(Role.FACULTY)

        assert await wizard.confirm_otp('123456')
        assert wizard.state.identity is not None
        assert wizard.state.identity.role is Role.STAFF

    asyncio.run(scenario())

def test_preview_pdf_is_watermarked() -> None:
    wizard, _, _ = _make_wizard(Role.STAFF)

    async def scenario() -> bytes | None:
        await _staff_to_preview(wizard)
        return await wizard.preview_pdf()

    pdf_bytes = asyncio.run(scenario())
    assert pdf_bytes is not None and pdf_bytes.endswith(b'PREVIEW')
    labels = dict(wizard.preview_rows())
    assert labels['Staff No.'] == 'S1234'
    assert labels['Date of Birth'] == '12/04/1985'

def test_resume_returns_to_documents_and_asks_for_files_again() -> None:
    storage: dict[str, Any] = {}
    first_tab, _, _ = _make_wizard(Role.STAFF, storage)

    async def scenario() -> None:
        await _staff_to_preview(first_tab)

    asyncio.run(scenario())

    # Preview needs the uploaded files, which do not survive a reload.
    reloaded, _, _ = _make_wizard(Role.STAFF, storage)
    assert reloaded.resume()
    assert reloaded.state.current_step == FORM_STEP
    assert reloaded.state.resumed_file_names == {'photo': 'photo.jpg'}
    assert not reloaded.state.files.has('photo')

    assert reloaded.advance()
    assert reloaded.state.current_step == DOCUMENTS_STEP
    again, _, _ = _make_wizard(Role.STAFF, storage)
    assert again.resume()
    assert again.state.current_step == DOCUMENTS_STEP

def test_reloading_the_page_resumes_instead_of_starting_over() -> None:
    storage: dict[str, Any] = {}
    first_tab, _, _ = _make_wizard(Role.STAFF, storage)

    async def first_visit() -> None:
        await first_tab.enter()
        assert first_tab.state.current_step == VERIFICATION_STEP
        assert await first_tab.request_otp('jdoe@nitt.edu')
        assert await first_tab.confirm_otp('123456')
        first_tab.update_fields({'requestCategory': 'New', 'staffName': 'John Doe'})

    asyncio.run(first_visit())

    reloaded, _, _ = _make_wizard(Role.STAFF, storage)
    asyncio.run(reloaded.enter())
    assert reloaded.state.current_step == FORM_STEP
    assert reloaded.state.draft['staffName'] == 'John Doe'
    assert reloaded.state.identity is not None

    # Choosing a role on the home page clears the session before the wizard page loads.
    DraftStore(storage).clear()
    fresh, _, _ = _make_wizard(Role.STAFF, storage)
    asyncio.run(fresh.enter())
    assert fresh.state.current_step == VERIFICATION_STEP
    assert fresh.state.identity is None

def test_role_cannot_switch_while_otp_request_is_in_flight() -> None:
    auth = SlowAuth()
    wizard, _, _ = _make_wizard(Role.FACULTY, auth=auth)

    async def scenario() -> None:
        await wizard.start()
        request = asyncio.create_task(wizard.request_otp('prof@nitt.edu'))
        await asyncio.sleep(0)
        assert wizard.is_pending('request_otp')

        assert not wizard.set_role(Role.STAFF)
        assert wizard.config.role is Role.FACULTY
        assert wizard.is_pending('request_otp')

        auth.release.set()
        assert await request
        assert await wizard.confirm_otp('123456')
        assert wizard.state.identity is not None
        assert wizard.state.identity.role is Role.FACULTY

    asyncio.run(scenario())
    assert auth.calls == [('request', Role.FACULTY), ('confirm', Role.FACULTY)]

def test_otp_reply_arriving_after_restart_is_discarded() -> None:
    auth = SlowAuth()
    auth.release.set()
    wizard, storage, _ = _make_wizard(Role.STAFF, auth=auth)

    async def scenario() -> None:
        await wizard.start()
        assert await wizard.request_otp('jdoe@nitt.edu')

        auth.release.clear()
        confirmation = asyncio.create_task(wizard.confirm_otp('123456'))
        await asyncio.sleep(0)
        assert wizard.is_pending('confirm_otp')

        await wizard.start()
        auth.release.set()
        assert not await confirmation

        assert wizard.state.identity is None
        assert wizard.state.current_step == VERIFICATION_STEP
        assert wizard.verification_phase is VerificationPhase.REQUEST_OTP
        assert wizard.state.notice is None
        assert wizard.state.pending == set()
        assert not wizard.gate.pending

    asyncio.run(scenario())
    assert storage == {}, "The late identity is never stored"

def test_otp_failure_arriving_after_restart_leaves_no_notice() -> None:
    auth = SlowAuth(fail_delivery=True)
    wizard, _, _ = _make_wizard(Role.STAFF, auth=auth)

    async def scenario() -> None:
        await wizard.start()
        request = asyncio.create_task(wizard.request_otp('jdoe@nitt.edu'))
        await asyncio.sleep(0)

        await wizard.start()
        auth.release.set()
        assert not await request
        assert wizard.state.notice is None
        assert wizard.state.pending == set()

    asyncio.run(scenario())

def test_file_check_finishing_after_back_is_discarded(monkeypatch) -> None:
    release = threading.Event()

    def slow_accept(slot_name, candidate, policy):
        release.wait(timeout=5)
        return accept(slot_name, candidate, policy)

    monkeypatch.setattr('idcard.wizard.accept', slow_accept)
    wizard, _, _ = _make_wizard(Role.STAFF)

    async def scenario() -> None:
        await _verify(wizard, 'jdoe@nitt.edu')
        wizard.update_fields(STAFF_FIELDS)
        assert wizard.advance()

        upload = asyncio.create_task(wizard.attach_file('photo', _jpeg()))
        await asyncio.sleep(0)
        assert wizard.is_pending('attach_file')

        assert wizard.back()
        release.set()
        assert not await upload

        assert wizard.state.current_step == FORM_STEP
        assert not wizard.state.files.has('photo')
        assert wizard.state.notice is None
        assert wizard.state.pending == set()

    asyncio.run(scenario())
