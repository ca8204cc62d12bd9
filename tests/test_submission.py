# tests/test_submission.py
from __future__ import annotations

import json
import random
import re
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from idcard.files import STAGED_UPLOAD_POLICY, CandidateFile, FileSlot, accept
from idcard.form_data_builder import Role
from idcard.submission import (
    SUMMARY_FIELD_NAME, assemble, flatten_fields, generate_provisional_id,
    resolve_application_id, summary_filename,
)
from idcard.verification import ApplicantIdentity

STAFF = ApplicantIdentity(role=Role.STAFF, identifier='jdoe@nitt.edu', email='jdoe@nitt.edu')

class RecordingRenderer:
    def __init__(self) -> None:
        self.calls: list[tuple[dict[str, Any], bool]] = []

    def render_summary(self, snapshot: dict[str, Any], include_watermark: bool = False) -> bytes:
        self.calls.append((snapshot, include_watermark))
        return b'%PDF-1.7 summary'

def test_provisional_id_format() -> None:
    for role, prefix in ((Role.STUDENT, 'STU'), (Role.FACULTY, 'FAC'), (Role.STAFF, 'STF')):
        provisional = generate_provisional_id(role, 'NITT', 2026, random.Random(7))
        assert re.fullmatch(rf"NITT-{prefix}-2026-\d{{5}}", provisional), provisional

def test_flatten_fields() -> None:
    flat = dict(flatten_fields({
        'staffName': 'John Doe',
        'dataToChange': ['Name', 'Designation'],
        'officeOrderAttached': False,
        'issuedBooks': 0,
        'otherDataChange': '',
        'retirementDate': None,
    }))
    assert flat == {
        'staffName': 'John Doe',
        'dataToChange': '["Name", "Designation"]',
        'officeOrderAttached': 'false',
        'issuedBooks': '0',
    }
    assert json.loads(flat['dataToChange']) == ['Name', 'Designation']

def test_summary_filename_prefers_staff_number_then_roll_number() -> None:
    assert summary_filename({'staffNo': 'S1234'}, 'NITT-STF-2026-10000') == 'application_S1234.pdf'
    assert summary_filename({'rollNo': '205124040'}, 'NITT-STU-2026-10000') == 'application_205124040.pdf'
    assert summary_filename({}, 'NITT-FAC-2026-10000') == 'application_NITT-FAC-2026-10000.pdf'

def test_assemble_builds_the_multipart_package() -> None:
    photo = accept('photo', CandidateFile('me.jpg', b'\xff' * 2048, 'image/jpeg'), STAGED_UPLOAD_POLICY)
    assert isinstance(photo, FileSlot)
    renderer = RecordingRenderer()
    now = datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc)

    package = assemble(
        {'requestCategory': 'New', 'staffNo': 'S1234', 'staffName': 'John Doe', 'email': 'jdoe@nitt.edu'},
        {'photo': photo}, STAFF, renderer, institution='NITT', now=now, rng=random.Random(1),
    )

    fields = package.field_dict()
    assert list(fields)[:2] == ['userType', 'email']
    assert fields['userType'] == 'staff'
    assert fields['provisionalApplicationId'] == package.provisional_id
    assert fields['submittedAt'] == '2026-10-18T09:30:00+00:00'
    assert package.provisional_id.startswith('NITT-STF-2026-')

    assert package.file_fields() == ['photo', SUMMARY_FIELD_NAME]
    summary = package.get_file(SUMMARY_FIELD_NAME)
    assert summary is not None
    assert summary.filename == 'application_S1234.pdf'
    assert summary.mime_type == 'application/pdf'

    # The submitted copy carries no preview watermark.
    snapshot, watermark = renderer.calls[0]
    assert watermark is False
    assert snapshot['provisionalApplicationId'] == package.provisional_id

    data, files = package.as_multipart()
    assert data == fields
    assert files[0] == ('photo', ('me.jpg', b'\xff' * 2048, 'image/jpeg'))

def test_server_id_wins_over_provisional_id() -> None:
    assert resolve_application_id({'applicationId': 'APP-77'}, 'NITT-STF-2026-10000') == 'APP-77'
    assert resolve_application_id({'id': 42}, 'NITT-STF-2026-10000') == '42'
    assert resolve_application_id({}, 'NITT-STF-2026-10000') == 'NITT-STF-2026-10000'
