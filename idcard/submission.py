# idcard/submission.py
"""
Builds the final multipart package: form fields, identity, uploaded files,
the generated PDF summary and a provisional id used only until the backend
returns the real one.
"""
from __future__ import annotations

import json
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from .draft import Draft
from .files import FileSlot
from .form_data_builder import FLOW_TEMPLATE_REGISTRY, Role
from .verification import ApplicantIdentity

logger = logging.getLogger(__name__)

SUMMARY_FIELD_NAME: str = 'applicationPdf'

class DocumentRenderer(Protocol):
    def render_summary(self, snapshot: dict[str, Any], include_watermark: bool) -> bytes: ...

@dataclass(frozen=True)
class PackageFile:
    field_name: str
    filename: str
    content: bytes = field(repr=False)
    mime_type: str

@dataclass(frozen=True)
class SubmissionPackage:
    fields: tuple[tuple[str, str], ...]
    files: tuple[PackageFile, ...]
    provisional_id: str
    submitted_at: str

    def field_dict(self) -> dict[str, str]:
        return dict(self.fields)

    def file_fields(self) -> list[str]:
        return [f.field_name for f in self.files]

    def get_file(self, field_name: str) -> PackageFile | None:
        return next((f for f in self.files if f.field_name == field_name), None)

    def as_multipart(self) -> tuple[dict[str, str], list[tuple[str, tuple[str, bytes, str]]]]:
        """`(data, files)` in the shape httpx expects for a multipart POST."""
        files = [(f.field_name, (f.filename, f.content, f.mime_type)) for f in self.files]
        return self.field_dict(), files

@dataclass(frozen=True)
class SubmissionOutcome:
    application_id: str
    provisional_id: str
    application: dict[str, Any] | None = None

def generate_provisional_id(role: Role, institution: str = 'NITT', year: int | None = None,
                            rng: random.Random | None = None) -> str:
    """<INSTITUTION>-<ROLE-PREFIX>-<YEAR>-<5 digits>, e.g. NITT-STF-2026-48213."""
    year = year or datetime.now().year
    number = (rng or random).randint(10000, 99999)
    prefix = FLOW_TEMPLATE_REGISTRY[role]['id_prefix']
    return f"{institution}-{prefix}-{year}-{number}"

def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return isinstance(value, (list, tuple, set, dict)) and not value

def flatten_fields(draft: Draft) -> list[tuple[str, str]]:
    """
    Scalars pass through as text, collections become JSON, booleans become
    `true`/`false`. Empty values are left out entirely.
    """
    flat: list[tuple[str, str]] = []
    for key, value in draft.items():
        if _is_empty(value):
            continue
        if isinstance(value, bool):
            flat.append((key, 'true' if value else 'false'))
        elif isinstance(value, (list, tuple, set, dict)):
            flat.append((key, json.dumps(list(value) if isinstance(value, set) else value)))
        else:
            flat.append((key, str(value)))
    return flat

def summary_filename(draft: Draft, provisional_id: str) -> str:
    reference = str(draft.get('staffNo') or draft.get('rollNo') or '').strip() or provisional_id
    return f"application_{reference}.pdf"

def build_snapshot(draft: Draft, identity: ApplicantIdentity, provisional_id: str) -> dict[str, Any]:
    """The read-only view of a draft handed to the PDF renderer and the preview step."""
    return {
        **draft,
        'email': identity.email,
        'userType': identity.role.value,
        'provisionalApplicationId': provisional_id,
    }

def assemble(
    draft: Draft,
    files: dict[str, FileSlot],
    identity: ApplicantIdentity,
    generator: DocumentRenderer,
    *,
    institution: str = 'NITT',
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> SubmissionPackage:
    """
    Creates the package. Renders the summary PDF synchronously; callers on
    the event loop should run this in a worker thread.
    """
    now = now or datetime.now(timezone.utc)
    provisional_id = generate_provisional_id(identity.role, institution, now.year, rng)

    fields: list[tuple[str, str]] = [('userType', identity.role.value), ('email', identity.email)]
    fields += [(key, value) for key, value in flatten_fields(draft) if key not in ('userType', 'email')]
    fields.append(('provisionalApplicationId', provisional_id))
    fields.append(('submittedAt', now.isoformat()))

    package_files: list[PackageFile] = [
        PackageFile(field_name=name, filename=slot.filename, content=slot.content, mime_type=slot.mime_type)
        for name, slot in files.items()
    ]
    pdf_bytes = generator.render_summary(build_snapshot(draft, identity, provisional_id), False)
    package_files.append(PackageFile(
        field_name=SUMMARY_FIELD_NAME,
        filename=summary_filename(draft, provisional_id),
        content=pdf_bytes,
        mime_type='application/pdf',
    ))
    logger.info(f"Assembled {identity.role.value} package {provisional_id} "
                f"with {len(fields)} fields and {len(package_files)} files.")
    return SubmissionPackage(
        fields=tuple(fields),
        files=tuple(package_files),
        provisional_id=provisional_id,
        submitted_at=now.isoformat(),
    )

def resolve_application_id(response: dict[str, Any], provisional_id: str) -> str:
    """The server's id wins; the provisional one is only a fallback."""
    server_id = response.get('applicationId') or response.get('id')
    if server_id:
        return str(server_id)
    logger.warning(f"Backend returned no application id; falling back to {provisional_id}.")
    return provisional_id
