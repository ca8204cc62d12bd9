# validation.py
from __future__ import annotations
import re
from re import Pattern
from typing import Any
from collections.abc import Callable, Collection
from datetime import date, datetime

# --- Type Aliases ---
ValidationResult = tuple[bool, str]
# The validator gets the value and the entire form_data dict for context
ValidatorFunc = Callable[[Any | None, dict[str, Any]], ValidationResult]

# --- Regex Patterns (centralized) ---
PHONE_PATTERN: Pattern[str] = re.compile(r'^\d{10}$')
ROLL_NUMBER_PATTERN: Pattern[str] = re.compile(r'^[A-Za-z0-9]+$')
BATCH_PATTERN: Pattern[str] = re.compile(r'^\d{4}\s*-\s*\d{4}$')
OTP_PATTERN: Pattern[str] = re.compile(r'^\d{6}$')
DATE_FORMAT_STORAGE: str = '%Y-%m-%d'

# ===================================================================
# GENERIC VALIDATOR GENERATORS
# ===================================================================

def required(message: str = "This field is required.") -> ValidatorFunc:
    """Ensures a value is not None, not an empty string, and not just whitespace."""
    def validator(value: Any | None, form_data: dict[str, Any]) -> ValidationResult:
        if value is None:
            return False, message
        if isinstance(value, str) and not value.strip():
            return False, message
        if isinstance(value, (list, dict)) and not value:
            return False, message
        return True, ""
    return validator

def required_choice(message: str = "Please make a selection.") -> ValidatorFunc:
    """Ensures a value from a select/radio is not None or empty/whitespace."""
    def validator(value: Any | None, form_data: dict[str, Any]) -> ValidationResult:
        if value is None or (isinstance(value, str) and not value.strip()):
            return False, message
        return True, ""
    return validator

def match_pattern(pattern: Pattern[str], message: str) -> ValidatorFunc:
    """Ensures a string value matches a regex pattern."""
    def validator(value: Any | None, form_data: dict[str, Any]) -> ValidationResult:
        # Empty values are `required`'s job.
        if not value or not isinstance(value, str):
            return True, ""
        if not pattern.match(value.strip()):
            return False, message
        return True, ""
    return validator

def max_length(limit: int, message: str) -> ValidatorFunc:
    """Ensures a string value is at most `limit` characters long."""
    def validator(value: Any | None, form_data: dict[str, Any]) -> ValidationResult:
        if not value or not isinstance(value, str):
            return True, ""
        if len(value) > limit:
            return False, message
        return True, ""
    return validator

def non_negative_integer(message: str) -> ValidatorFunc:
    """Accepts whole numbers >= 0 given as int or digit string. 0 is a valid answer."""
    def validator(value: Any | None, form_data: dict[str, Any]) -> ValidationResult:
        if value is None or value == '':
            return True, ""
        if isinstance(value, bool):
            return False, message
        if isinstance(value, int) and value >= 0:
            return True, ""
        if isinstance(value, str) and value.strip().isdigit():
            return True, ""
        return False, message
    return validator

def required_for_categories(categories: Collection[str], message: str,
                            category_key: str = 'requestCategory') -> ValidatorFunc:
    """
    Conditional `required`: only enforced while the form's request category
    is one of `categories`. Stale values under other categories pass.
    """
    inner = required(message)
    def validator(value: Any | None, form_data: dict[str, Any]) -> ValidationResult:
        if form_data.get(category_key) not in categories:
            return True, ""
        return inner(value, form_data)
    return validator

def is_within_date_range(
    min_date: date | None = date(1900, 1, 1), max_date: date | None = None,
    message: str = "The selected date is outside the allowed range."
) -> ValidatorFunc:
    """Ensures a date string is within the specified min/max range (max defaults to today)."""
    def validator(value: str | None, form_data: dict[str, Any]) -> ValidationResult:
        if not value:
            return True, ''
        upper = max_date or date.today()
        try:
            dt_object = datetime.strptime(value, DATE_FORMAT_STORAGE).date()
            if (min_date and dt_object < min_date) or dt_object > upper:
                return False, message
        except ValueError:
            return False, "Invalid date format."
        return True, ''
    return validator

def is_date_after(other_field_key: str, message: str) -> ValidatorFunc:
    """
    Validates that a YYYY-MM-DD date in one field comes strictly after the
    date in another field of the same form.
    """
    def validator(value: str | None, form_data: dict[str, Any]) -> ValidationResult:
        other_value = form_data.get(other_field_key)

        # Missing or malformed values are another validator's concern.
        if not value or not other_value:
            return True, ""
        try:
            this_date = datetime.strptime(value, DATE_FORMAT_STORAGE).date()
            other_date = datetime.strptime(other_value, DATE_FORMAT_STORAGE).date()
        except (ValueError, TypeError):
            return True, ""

        if this_date <= other_date:
            return False, message
        return True, ""
    return validator
