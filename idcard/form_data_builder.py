from __future__ import annotations
from enum import Enum
from typing import TypedDict

from .para import (
    student_request_categories, staff_request_categories,
    student_data_change_reasons, staff_data_change_reasons,
)

# ===================================================================
# 1. APPLICANT ROLES & STEP TOPOLOGIES
# ===================================================================

class Role(Enum):
    STUDENT = 'student'
    FACULTY = 'faculty'
    STAFF = 'staff'

# Step ids, shared by every topology. SUBMITTED is terminal and never
# part of a sequence.
VERIFICATION_STEP: int = 0
FORM_STEP: int = 1
DOCUMENTS_STEP: int = 2
PREVIEW_STEP: int = 3
FORM_AND_DOCUMENTS_STEP: int = 4
SUBMITTED_STEP: int = 5

class FlowTopology(Enum):
    STAGED = 'staged'
    # Legacy 3-step variant: documents are uploaded on the form step.
    INLINE = 'inline'

TOPOLOGY_STEP_SEQUENCE: dict[FlowTopology, list[int]] = {
    FlowTopology.STAGED: [VERIFICATION_STEP, FORM_STEP, DOCUMENTS_STEP, PREVIEW_STEP],
    FlowTopology.INLINE: [VERIFICATION_STEP, FORM_AND_DOCUMENTS_STEP, PREVIEW_STEP],
}

# ===================================================================
# 2. THE BLUEPRINT FOR EACH APPLICANT CLASS
# ===================================================================

class FlowTemplate(TypedDict):
    """Everything role-specific about an application flow."""
    name: str
    # Prefix of the provisional application id (NITT-<prefix>-<year>-<n>).
    id_prefix: str
    # Faculty and staff share one form and may switch between each other
    # before the OTP is sent.
    role_family: frozenset[Role]
    request_categories: dict[str, str]
    data_change_reasons: list[str]
    # Categories under which `dataToChange` must be filled in.
    data_change_categories: frozenset[str]
    available_slots: tuple[str, ...]
    always_required_slots: tuple[str, ...]
    # Slot -> categories that waive it.
    waivable_slots: dict[str, frozenset[str]]

_FACULTY_STAFF = frozenset({Role.FACULTY, Role.STAFF})

FLOW_TEMPLATE_REGISTRY: dict[Role, FlowTemplate] = {
    Role.STUDENT: {
        'name': "Student ID Card Application",
        'id_prefix': 'STU',
        'role_family': frozenset({Role.STUDENT}),
        'request_categories': student_request_categories,
        'data_change_reasons': student_data_change_reasons,
        'data_change_categories': frozenset({'Correction'}),
        'available_slots': ('photo', 'fir', 'payment'),
        'always_required_slots': ('photo',),
        'waivable_slots': {'payment': frozenset({'New'})},
    },
    Role.FACULTY: {
        'name': "Faculty ID Card Application",
        'id_prefix': 'FAC',
        'role_family': _FACULTY_STAFF,
        'request_categories': staff_request_categories,
        'data_change_reasons': staff_data_change_reasons,
        'data_change_categories': frozenset({'Correction', 'Update'}),
        'available_slots': ('photo',),
        'always_required_slots': ('photo',),
        'waivable_slots': {},
    },
    Role.STAFF: {
        'name': "Staff ID Card Application",
        'id_prefix': 'STF',
        'role_family': _FACULTY_STAFF,
        'request_categories': staff_request_categories,
        'data_change_reasons': staff_data_change_reasons,
        'data_change_categories': frozenset({'Correction', 'Update'}),
        'available_slots': ('photo',),
        'always_required_slots': ('photo',),
        'waivable_slots': {},
    },
}

def required_slots(template: FlowTemplate, request_category: str | None) -> list[str]:
    """Slots that must be filled for the given category, in check order."""
    slots: list[str] = list(template['always_required_slots'])
    for slot, waived_for in template['waivable_slots'].items():
        if request_category not in waived_for:
            slots.append(slot)
    return slots
