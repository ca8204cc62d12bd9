# idcard/draft.py
"""
The application draft: creation, the pure change reducer and validation.

None of these functions touch storage or the UI. The wizard calls them and
persists the returned draft.
"""
from __future__ import annotations

import copy
from typing import Any

from .form_data_builder import Role, required_slots
from .step_definitions import FlowConfig, FORM_FIELDS_BY_ROLE
from .utils import (
    FieldConfig, FormField, fields_for_role,
    REQUEST_CATEGORY_KEY, DATA_TO_CHANGE_KEY, LOCKED_FIELD_KEYS,
)
from .files import SlotBoard, SLOT_LABELS
from .validation import ValidatorFunc

Draft = dict[str, Any]

def new_draft(role: Role, identity: Any | None = None) -> Draft:
    """Role-aware defaults, with the locked identity fields filled in when known."""
    draft: Draft = {
        field.key: copy.deepcopy(field.default_value) for field in fields_for_role(role)
    }
    if identity is not None:
        draft.update(identity_fields(role, identity))
    return draft

def identity_fields(role: Role, identity: Any) -> Draft:
    """The locked fields a verified identity imposes on the draft."""
    fields: Draft = {'email': identity.email}
    if role is Role.STUDENT:
        fields['rollNo'] = identity.identifier
    return fields

def _field_by_key(role: Role, field_name: str) -> FormField | None:
    for field in fields_for_role(role):
        if field.key == field_name:
            return field
    return None

def apply_field_change(draft: Draft, role: Role, field_name: str, raw_value: Any) -> Draft:
    """
    Returns a new draft with one field changed. Unknown and locked fields are
    ignored. Checklists toggle: passing a single option adds it when absent and
    removes it when present; passing a list replaces the selection.
    """
    field = _field_by_key(role, field_name)
    if field is None or field.locked or field_name in LOCKED_FIELD_KEYS:
        return draft

    updated = dict(draft)
    if field.ui_type == 'checklist':
        current: list[str] = list(draft.get(field_name) or [])
        if isinstance(raw_value, (list, tuple, set)):
            # Keep first occurrence, drop duplicates.
            updated[field_name] = list(dict.fromkeys(str(v) for v in raw_value))
        elif raw_value in current:
            updated[field_name] = [v for v in current if v != raw_value]
        else:
            updated[field_name] = current + [str(raw_value)]
    elif field.ui_type == 'checkbox':
        updated[field_name] = bool(raw_value)
    elif isinstance(raw_value, str):
        # No leading whitespace.
        updated[field_name] = raw_value.lstrip()
    elif raw_value is None:
        updated[field_name] = ''
    else:
        updated[field_name] = raw_value
    return updated

# ===================================================================
# VALIDATION
# ===================================================================

def _validate_simple_field(field_key: str, validator_list: list[ValidatorFunc], form_data: Draft, errors: dict[str, str]) -> bool:
    value_to_validate = form_data.get(field_key)
    for validator_func in validator_list:
        is_valid, msg = validator_func(value_to_validate, form_data)
        if not is_valid:
            if field_key not in errors:
                errors[field_key] = msg
            return False
    return True

def run_validators(draft: Draft, form_fields: list[FieldConfig]) -> dict[str, str]:
    """
    Field key -> first failing message. Insertion order follows `form_fields`,
    so the first entry is always the first unmet condition.
    """
    errors: dict[str, str] = {}
    for field_conf in form_fields:
        _validate_simple_field(field_conf['field'].key, field_conf['validators'], draft, errors)
    return errors

def validate(draft: Draft, role: Role) -> dict[str, str]:
    """All field errors of a draft under the rules of `role`."""
    return run_validators(draft, FORM_FIELDS_BY_ROLE[role])

# ===================================================================
# GUARD CHECKS (one message or None each)
# ===================================================================

def check_category(draft: Draft, config: FlowConfig) -> str | None:
    category_rules = [conf for conf in config.form_fields if conf['field'].key == REQUEST_CATEGORY_KEY]
    errors = run_validators(draft, category_rules)
    return errors.get(REQUEST_CATEGORY_KEY)

def check_fields(draft: Draft, config: FlowConfig) -> str | None:
    """Data-change selection and every other required/format rule, in declaration order."""
    rules = [conf for conf in config.form_fields if conf['field'].key != REQUEST_CATEGORY_KEY]
    errors = run_validators(draft, rules)
    if not errors:
        return None
    return next(iter(errors.values()))

def check_documents(draft: Draft, files: SlotBoard, config: FlowConfig) -> str | None:
    for slot_name in required_slots(config.template, draft.get(REQUEST_CATEGORY_KEY)):
        if not files.has(slot_name):
            if slot_name == 'photo':
                return "Please upload your passport-sized photograph."
            if slot_name == 'payment':
                return "Please upload the payment receipt."
            return f"Please upload the {SLOT_LABELS.get(slot_name, slot_name)}."
    return None

def data_change_applies(draft: Draft, config: FlowConfig) -> bool:
    """Whether `dataToChange` means anything under the current category."""
    return draft.get(REQUEST_CATEGORY_KEY) in config.template['data_change_categories'] \
        and DATA_TO_CHANGE_KEY in draft
