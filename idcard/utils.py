# idcard/utils.py
from __future__ import annotations
from typing import Any, NotRequired, TypedDict, TypeAlias
from dataclasses import dataclass

from .para import (
    titles, genders, blood_groups, departments, programmes, branches,
    semesters, student_request_categories, staff_request_categories,
    student_data_change_reasons, staff_data_change_reasons,
)
from .form_data_builder import Role
from .validation import ValidatorFunc, DATE_FORMAT_STORAGE

# ===================================================================
# 1. CORE DATA STRUCTURES & TYPE ALIASES
# ===================================================================

@dataclass(frozen=True)
class FormField:
    """Defines everything about a form field in one place."""
    key: str
    label: str
    ui_type: str = 'text'
    options: list[str] | dict[str, str] | None = None
    default_value: Any = ''
    max_length: int | None = None
    # Locked fields are filled from the verified identity and never edited.
    locked: bool = False

class FieldConfig(TypedDict):
    field: FormField
    validators: list[ValidatorFunc]

# Guard names, evaluated in this order whenever a step lists several.
GuardName: TypeAlias = str
GUARD_ORDER: tuple[GuardName, ...] = ('identity', 'category', 'fields', 'documents')

class StepDefinition(TypedDict):
    id: int
    name: str
    title: str
    subtitle: str
    guards: list[GuardName]
    shows_form: bool
    shows_documents: bool
    layout: NotRequired[str]

# ===================================================================
# 2. THE APPLICATION SCHEMAS (Single Source of Truth)
# ===================================================================

class _Schema:
    @classmethod
    def get_all_fields(cls) -> list[FormField]:
        return [
            field_instance for field_instance in cls.__dict__.values()
            if isinstance(field_instance, FormField)
        ]

class StudentSchema(_Schema):
    NAME = FormField(key='name', label='Full Name', max_length=60)
    ROLL_NO = FormField(key='rollNo', label='Roll Number', locked=True)
    EMAIL = FormField(key='email', label='Email Address', locked=True)
    FATHER_NAME = FormField(key='fatherName', label="Father's Name", max_length=60)
    MOTHER_NAME = FormField(key='motherName', label="Mother's Name", max_length=60)
    DOB = FormField(key='dob', label='Date of Birth', ui_type='date')
    GENDER = FormField(key='gender', label='Gender', ui_type='select', options=genders)
    BLOOD_GROUP = FormField(key='bloodGroup', label='Blood Group', ui_type='select', options=blood_groups)
    PHONE = FormField(key='phone', label='Mobile Number', max_length=10)
    PARENT_MOBILE = FormField(key='parentMobile', label='Parent/Guardian Mobile', max_length=10)
    PERMANENT_ADDRESS = FormField(key='permanentAddress', label='Permanent Address', ui_type='textarea', max_length=250)
    PROGRAMME = FormField(key='programme', label='Programme', ui_type='select', options=programmes)
    BRANCH = FormField(key='branch', label='Branch/Department', ui_type='select', options=branches)
    BATCH = FormField(key='batch', label='Batch/Year', max_length=9)
    SEMESTER = FormField(key='semester', label='Current Semester', ui_type='select', options=semesters)
    HOSTEL = FormField(key='hostel', label='Hostel', max_length=40)
    ROOM_NO = FormField(key='roomNo', label='Room No.', max_length=10)
    ISSUED_BOOKS = FormField(key='issuedBooks', label='No. of Issued Books', ui_type='number')
    REQUEST_CATEGORY = FormField(key='requestCategory', label='Reason', ui_type='select',
                                 options=student_request_categories)
    DATA_TO_CHANGE = FormField(key='dataToChange', label='Data to be Changed', ui_type='checklist',
                               options=student_data_change_reasons, default_value=[])
    REASON_DETAILS = FormField(key='reasonDetails', label='Additional Details', ui_type='textarea', max_length=500)
    FIR_NUMBER = FormField(key='firNumber', label='FIR Number', max_length=40)
    FIR_DATE = FormField(key='firDate', label='FIR Date', ui_type='date')
    POLICE_STATION = FormField(key='policeStation', label='Police Station Name', max_length=80)

class StaffSchema(_Schema):
    EMAIL = FormField(key='email', label='Institute Email', locked=True)
    REQUEST_CATEGORY = FormField(key='requestCategory', label='Request Category', ui_type='select',
                                 options=staff_request_categories)
    DATA_TO_CHANGE = FormField(key='dataToChange', label='Data to be Changed', ui_type='checklist',
                               options=staff_data_change_reasons, default_value=[])
    OTHER_DATA_CHANGE = FormField(key='otherDataChange', label='Other data to change', max_length=100)
    TITLE = FormField(key='title', label='Title', ui_type='select', options=titles)
    STAFF_NAME = FormField(key='staffName', label='Name', max_length=60)
    STAFF_NO = FormField(key='staffNo', label='Staff No.', max_length=20)
    DESIGNATION = FormField(key='designation', label='Designation', max_length=60)
    DEPARTMENT = FormField(key='department', label='Department / Section', ui_type='select', options=departments)
    DOB = FormField(key='dob', label='Date of Birth', ui_type='date')
    JOINING_DATE = FormField(key='joiningDate', label='Date of Joining', ui_type='date')
    RETIREMENT_DATE = FormField(key='retirementDate', label='Date of Retirement', ui_type='date')
    GENDER = FormField(key='gender', label='Gender', ui_type='select', options=genders[:2])
    BLOOD_GROUP = FormField(key='bloodGroup', label='Blood Group', ui_type='select', options=blood_groups)
    PHONE = FormField(key='phone', label='Mobile Number', max_length=10)
    ADDRESS = FormField(key='address', label='Address', ui_type='textarea', max_length=250)
    CORRECTION_DETAILS = FormField(key='correctionDetails', label='Correction Details', ui_type='textarea',
                                   max_length=500)
    OFFICE_ORDER_ATTACHED = FormField(key='officeOrderAttached', label='Office order attached',
                                      ui_type='checkbox', default_value=False)

SCHEMA_BY_ROLE: dict[Role, type[_Schema]] = {
    Role.STUDENT: StudentSchema,
    Role.FACULTY: StaffSchema,
    Role.STAFF: StaffSchema,
}

def fields_for_role(role: Role) -> list[FormField]:
    return SCHEMA_BY_ROLE[role].get_all_fields()

# ===================================================================
# 3. CENTRALIZED CONSTANTS & SESSION KEYS
# ===================================================================

REQUEST_CATEGORY_KEY: str = 'requestCategory'
DATA_TO_CHANGE_KEY: str = 'dataToChange'
LOCKED_FIELD_KEYS: frozenset[str] = frozenset({'rollNo', 'email'})

VERIFIED_ROLE_KEY: str = 'verified_role'
VERIFIED_IDENTIFIER_KEY: str = 'verified_identifier'
VERIFIED_EMAIL_KEY: str = 'verified_email'
UPLOADED_FILES_KEY: str = 'uploaded_files'
CURRENT_STEP_KEY: str = 'current_step'

def draft_storage_key(role: Role) -> str:
    """Drafts are kept per role so a student draft never seeds a staff form."""
    return f'{role.value}_form_data'
