"""
Conversation Engine - Field Validators
======================================

Built-in checks per declared field type, shared by workflow field collection
and the CRUD dispatcher.

Policy:
- required + empty → invalid, regardless of type
- email / url / phone / currency / date → dedicated format checks
- number → numeric and not NaN
- anything else → the field's custom validator if it has one, else valid
"""

import math
import re
from datetime import datetime
from typing import Any, Callable, Optional
from urllib.parse import urlparse

from conversation_engine.errors import ValidationError
from conversation_engine.models import FieldDefinition, FieldType

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^[\d\s\-().+]+$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

MAX_CURRENCY = 999_999_999.99
MIN_PHONE_DIGITS = 10

TYPE_ERROR_MESSAGES = {
    FieldType.EMAIL: "Invalid email format",
    FieldType.URL: "Invalid URL format",
    FieldType.PHONE: "Invalid phone format (minimum 10 digits)",
    FieldType.CURRENCY: "Invalid amount",
    FieldType.DATE: "Invalid date format (use YYYY-MM-DD)",
    FieldType.NUMBER: "Must be a number",
}


def is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def is_valid_email(value: Any) -> bool:
    if not value or not isinstance(value, str):
        return False
    return bool(EMAIL_PATTERN.match(value))


def is_valid_url(value: Any) -> bool:
    if not value or not isinstance(value, str):
        return False
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return bool(parsed.scheme) and bool(parsed.netloc)


def is_valid_phone(value: Any) -> bool:
    if not value or not isinstance(value, str):
        return False
    digits = re.sub(r"\D", "", value)
    return bool(PHONE_PATTERN.match(value)) and len(digits) >= MIN_PHONE_DIGITS


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return None if math.isnan(number) else number


def is_number(value: Any) -> bool:
    return _to_number(value) is not None


def is_valid_currency(value: Any) -> bool:
    number = _to_number(value)
    return number is not None and 0 <= number <= MAX_CURRENCY


def is_valid_date(value: Any) -> bool:
    if not value or not isinstance(value, str) or not DATE_PATTERN.match(value):
        return False
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        return False
    return True


_TYPE_CHECKS = {
    FieldType.EMAIL: is_valid_email,
    FieldType.URL: is_valid_url,
    FieldType.PHONE: is_valid_phone,
    FieldType.CURRENCY: is_valid_currency,
    FieldType.DATE: is_valid_date,
    FieldType.NUMBER: is_number,
}


def validate_value(
    field_type: FieldType,
    value: Any,
    required: bool = False,
    custom: Optional[Callable[[Any], bool]] = None,
) -> bool:
    """Apply the type-dispatch policy above to a single value."""
    if required and is_empty(value):
        return False
    check = _TYPE_CHECKS.get(FieldType(field_type))
    if check is not None:
        return check(value)
    if custom is not None:
        return bool(custom(value))
    return True


def check_field(field: FieldDefinition, value: Any) -> None:
    """
    Validate a workflow field submission.

    A field with its own validator uses it (on the string form of the value);
    otherwise the built-in check for its type applies.

    Raises:
        ValidationError: With the field's error message, or a type default.
    """
    if is_empty(value):
        if field.required:
            raise ValidationError(field.name, field.error_message or f"{field.label} is required")
        return

    if field.validator is not None:
        valid = bool(field.validator(str(value)))
    else:
        valid = validate_value(field.type, value, required=field.required)

    if not valid:
        message = field.error_message or TYPE_ERROR_MESSAGES.get(field.type) or f"Invalid {field.name}"
        raise ValidationError(field.name, message)
