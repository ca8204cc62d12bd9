# idcard/step_definitions.py
from __future__ import annotations

from dataclasses import dataclass

from .utils import (
    FieldConfig, FormField, StepDefinition, StudentSchema, StaffSchema, fields_for_role,
)
from .validation import (
    required, required_choice, match_pattern, max_length, non_negative_integer,
    required_for_categories, is_within_date_range, is_date_after,
    PHONE_PATTERN, BATCH_PATTERN,
)
from .form_data_builder import (
    Role, FlowTopology, FlowTemplate, FLOW_TEMPLATE_REGISTRY, TOPOLOGY_STEP_SEQUENCE,
    VERIFICATION_STEP, FORM_STEP, DOCUMENTS_STEP, PREVIEW_STEP,
    FORM_AND_DOCUMENTS_STEP, SUBMITTED_STEP,
)
from .files import FilePolicy

STEPS_BY_ID: dict[int, StepDefinition] = {
    VERIFICATION_STEP: {
        'id': VERIFICATION_STEP, 'name': 'verification', 'title': 'Email Verification',
        'subtitle': 'Verify your institute identity with a one-time passcode.',
        'guards': ['identity'], 'shows_form': False, 'shows_documents': False,
    },
    FORM_STEP: {
        'id': FORM_STEP, 'name': 'application_form', 'title': 'Application Form',
        'subtitle': 'Fill in all required fields marked with *.',
        'guards': ['category', 'fields'], 'shows_form': True, 'shows_documents': False,
    },
    DOCUMENTS_STEP: {
        'id': DOCUMENTS_STEP, 'name': 'documents', 'title': 'Upload Documents',
        'subtitle': 'Supported formats: JPG, PNG, PDF.',
        'guards': ['documents'], 'shows_form': False, 'shows_documents': True,
    },
    PREVIEW_STEP: {
        'id': PREVIEW_STEP, 'name': 'preview', 'title': 'Preview & Submit',
        'subtitle': 'Check every detail before submitting. Submitted data cannot be edited.',
        'guards': [], 'shows_form': False, 'shows_documents': False,
    },
    FORM_AND_DOCUMENTS_STEP: {
        'id': FORM_AND_DOCUMENTS_STEP, 'name': 'form_and_documents', 'title': 'Application Form',
        'subtitle': 'Fill in the form and attach your photograph.',
        'guards': ['category', 'fields', 'documents'], 'shows_form': True, 'shows_documents': True,
        'layout': 'inline',
    },
    SUBMITTED_STEP: {
        'id': SUBMITTED_STEP, 'name': 'submitted', 'title': 'Application Submitted',
        'subtitle': '', 'guards': [], 'shows_form': False, 'shows_documents': False,
    },
}

# ===================================================================
# FORM RULES PER ROLE (order = check order on the form step)
# ===================================================================

_PHONE_RULES = [
    match_pattern(PHONE_PATTERN, "Mobile Number must be exactly 10 digits."),
]

STUDENT_FORM_FIELDS: list[FieldConfig] = [
    {'field': StudentSchema.REQUEST_CATEGORY, 'validators': [required_choice("Please select a request category.")]},
    {'field': StudentSchema.DATA_TO_CHANGE, 'validators': [
        required_for_categories(
            FLOW_TEMPLATE_REGISTRY[Role.STUDENT]['data_change_categories'], "Please select the data to be changed."),
    ]},
    {'field': StudentSchema.NAME, 'validators': [
        required("Full Name is required."), max_length(60, "Full Name cannot exceed 60 characters."),
    ]},
    {'field': StudentSchema.FATHER_NAME, 'validators': [required("Father's Name is required.")]},
    {'field': StudentSchema.DOB, 'validators': [
        required("Date of Birth is required."), is_within_date_range(message="Date of Birth is not valid."),
    ]},
    {'field': StudentSchema.GENDER, 'validators': [required_choice("Gender is required.")]},
    {'field': StudentSchema.PHONE, 'validators': [required("Mobile Number is required."), *_PHONE_RULES]},
    {'field': StudentSchema.PARENT_MOBILE, 'validators': [
        required("Parent Mobile is required."),
        match_pattern(PHONE_PATTERN, "Parent Mobile must be exactly 10 digits."),
    ]},
    {'field': StudentSchema.PERMANENT_ADDRESS, 'validators': [required("Address is required.")]},
    {'field': StudentSchema.PROGRAMME, 'validators': [required_choice("Programme is required.")]},
    {'field': StudentSchema.BRANCH, 'validators': [required_choice("Branch is required.")]},
    {'field': StudentSchema.BATCH, 'validators': [
        required("Batch is required."), match_pattern(BATCH_PATTERN, "Batch must look like 2021-2025."),
    ]},
    {'field': StudentSchema.SEMESTER, 'validators': [required_choice("Semester is required.")]},
    {'field': StudentSchema.ISSUED_BOOKS, 'validators': [
        required("Issued Books count is required (enter 0 if none)."),
        non_negative_integer("Issued Books must be a whole number."),
    ]},
    {'field': StudentSchema.FIR_DATE, 'validators': [is_within_date_range(message="FIR Date is not valid.")]},
]

STAFF_FORM_FIELDS: list[FieldConfig] = [
    {'field': StaffSchema.REQUEST_CATEGORY, 'validators': [required_choice("Please select a request category.")]},
    {'field': StaffSchema.DATA_TO_CHANGE, 'validators': [
        required_for_categories(
            FLOW_TEMPLATE_REGISTRY[Role.STAFF]['data_change_categories'], "Please select the data to be changed."),
    ]},
    {'field': StaffSchema.TITLE, 'validators': [required_choice("Title is required.")]},
    {'field': StaffSchema.STAFF_NAME, 'validators': [required("Name is required.")]},
    {'field': StaffSchema.STAFF_NO, 'validators': [required("Staff No. is required.")]},
    {'field': StaffSchema.DESIGNATION, 'validators': [required("Designation is required.")]},
    {'field': StaffSchema.DEPARTMENT, 'validators': [required("Department is required.")]},
    {'field': StaffSchema.DOB, 'validators': [
        required("Date of Birth is required."), is_within_date_range(message="Date of Birth is not valid."),
    ]},
    {'field': StaffSchema.JOINING_DATE, 'validators': [
        required("Date of Joining is required."),
        is_date_after('dob', "Date of Joining must be after Date of Birth."),
    ]},
    {'field': StaffSchema.RETIREMENT_DATE, 'validators': [
        is_date_after('joiningDate', "Date of Retirement must be after Date of Joining."),
    ]},
    {'field': StaffSchema.GENDER, 'validators': [required_choice("Gender is required.")]},
    {'field': StaffSchema.BLOOD_GROUP, 'validators': [required_choice("Blood Group is required.")]},
    {'field': StaffSchema.PHONE, 'validators': [required("Mobile Number is required."), *_PHONE_RULES]},
    {'field': StaffSchema.ADDRESS, 'validators': [required("Address is required.")]},
]

FORM_FIELDS_BY_ROLE: dict[Role, list[FieldConfig]] = {
    Role.STUDENT: STUDENT_FORM_FIELDS,
    Role.FACULTY: STAFF_FORM_FIELDS,
    Role.STAFF: STAFF_FORM_FIELDS,
}

# ===================================================================
# THE FLOW CONFIGURATION CONSUMED BY THE WIZARD
# ===================================================================

@dataclass(frozen=True)
class FlowConfig:
    """One wizard, parametrized: role, step topology, document rules and field rules."""
    role: Role
    topology: FlowTopology
    template: FlowTemplate
    form_fields: list[FieldConfig]
    file_policy: FilePolicy

    @property
    def step_sequence(self) -> list[int]:
        return TOPOLOGY_STEP_SEQUENCE[self.topology]

    @property
    def schema_fields(self) -> list[FormField]:
        return fields_for_role(self.role)

def build_flow_config(role: Role, topology: FlowTopology, file_policy: FilePolicy) -> FlowConfig:
    return FlowConfig(
        role=role,
        topology=topology,
        template=FLOW_TEMPLATE_REGISTRY[role],
        form_fields=FORM_FIELDS_BY_ROLE[role],
        file_policy=file_policy,
    )

def calculate_next_step_id(current_step_id: int, step_sequence: list[int]) -> int:
    """Calculates the ID of the next step in the sequence."""
    if not step_sequence:
        return VERIFICATION_STEP
    try:
        current_index: int = step_sequence.index(current_step_id)
        if current_index < len(step_sequence) - 1:
            return step_sequence[current_index + 1]
        return current_step_id  # Stay on the last step if there's no next one
    except ValueError:
        return step_sequence[0]  # Go to start if current step isn't in sequence

def calculate_prev_step_id(current_step_id: int, step_sequence: list[int]) -> int:
    """Calculates the ID of the previous step in the sequence."""
    if not step_sequence:
        return VERIFICATION_STEP
    try:
        current_index: int = step_sequence.index(current_step_id)
        return step_sequence[current_index - 1] if current_index > 0 else step_sequence[0]
    except ValueError:
        return step_sequence[0]
