"""
Generic form validation against a template's field descriptors.

Responsibility:
    Check an opaque ``form_data`` mapping against a list of
    ``FieldDescriptor`` tags.  Field kinds are never modelled as separate
    types; each kind contributes one value check.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O.

Failure modes:
    - MissingRequiredFieldsError listing the labels of applicable required
      fields that are empty.  Raised before any value check.
    - InvalidFieldValuesError mapping labels to a reason.
"""

import re
from collections.abc import Callable, Mapping, Sequence
from datetime import date
from typing import Any

from approval_kernel.domain.workflow import FieldDescriptor, FieldKind
from approval_kernel.exceptions import (
    InvalidFieldValuesError,
    MissingRequiredFieldsError,
)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PHONE_RE = re.compile(r"^\+?[0-9 ()\-]{6,20}$")


def is_empty(value: Any) -> bool:
    """True for values that do not satisfy a required field."""
    if value is None or value is False:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def is_applicable(descriptor: FieldDescriptor, form_data: Mapping[str, Any]) -> bool:
    """A dependent field applies only when its controlling value matches."""
    if not descriptor.is_active:
        return False
    if not descriptor.depends_on_field:
        return True
    controlling = form_data.get(descriptor.depends_on_field)
    if controlling is None:
        return False
    return str(controlling) == (descriptor.depends_on_value or "")


def missing_required_fields(
    fields: Sequence[FieldDescriptor],
    form_data: Mapping[str, Any] | None,
) -> list[str]:
    """Labels of applicable required fields with empty values, in field order."""
    data = form_data or {}
    ordered = sorted(fields, key=lambda f: f.sort_order)
    return [
        f.label
        for f in ordered
        if f.required and is_applicable(f, data) and is_empty(data.get(f.name))
    ]


def _check_text(descriptor: FieldDescriptor, value: Any) -> str | None:
    if not isinstance(value, str):
        return "must be text"
    if descriptor.validation and re.fullmatch(descriptor.validation, value) is None:
        return "does not match the required format"
    return None


def _check_number(descriptor: FieldDescriptor, value: Any) -> str | None:
    if isinstance(value, bool):
        return "must be a number"
    try:
        float(value)
    except (TypeError, ValueError):
        return "must be a number"
    return None


def _check_date(descriptor: FieldDescriptor, value: Any) -> str | None:
    if not isinstance(value, str):
        return "must be an ISO date (YYYY-MM-DD)"
    try:
        date.fromisoformat(value)
    except ValueError:
        return "must be an ISO date (YYYY-MM-DD)"
    return None


def _check_choice(descriptor: FieldDescriptor, value: Any) -> str | None:
    if descriptor.options and str(value) not in descriptor.options:
        return f"must be one of: {', '.join(descriptor.options)}"
    return None


def _check_checkbox(descriptor: FieldDescriptor, value: Any) -> str | None:
    if not descriptor.options:
        if not isinstance(value, bool):
            return "must be true or false"
        return None
    if not isinstance(value, (list, tuple)):
        return "must be a list of options"
    unknown = [v for v in value if str(v) not in descriptor.options]
    if unknown:
        return f"unknown options: {', '.join(str(v) for v in unknown)}"
    return None


def _check_file(descriptor: FieldDescriptor, value: Any) -> str | None:
    if isinstance(value, str):
        return None
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return None
    return "must be a file reference"


def _check_email(descriptor: FieldDescriptor, value: Any) -> str | None:
    if not isinstance(value, str) or _EMAIL_RE.match(value) is None:
        return "must be an email address"
    return None


def _check_phone(descriptor: FieldDescriptor, value: Any) -> str | None:
    if not isinstance(value, str) or _PHONE_RE.match(value) is None:
        return "must be a phone number"
    return None


_CHECKS: dict[FieldKind, Callable[[FieldDescriptor, Any], str | None]] = {
    FieldKind.TEXT: _check_text,
    FieldKind.TEXTAREA: _check_text,
    FieldKind.NUMBER: _check_number,
    FieldKind.DATE: _check_date,
    FieldKind.SELECT: _check_choice,
    FieldKind.RADIO: _check_choice,
    FieldKind.CHECKBOX: _check_checkbox,
    FieldKind.FILE: _check_file,
    FieldKind.EMAIL: _check_email,
    FieldKind.PHONE: _check_phone,
}


def invalid_field_values(
    fields: Sequence[FieldDescriptor],
    form_data: Mapping[str, Any] | None,
) -> dict[str, str]:
    """Label -> reason for every applicable, non-empty value that fails its kind."""
    data = form_data or {}
    problems: dict[str, str] = {}
    for descriptor in sorted(fields, key=lambda f: f.sort_order):
        if not is_applicable(descriptor, data):
            continue
        value = data.get(descriptor.name)
        if is_empty(value):
            continue
        reason = _CHECKS[descriptor.kind](descriptor, value)
        if reason is not None:
            problems[descriptor.label] = reason
    return problems


def validate_form_data(
    fields: Sequence[FieldDescriptor],
    form_data: Mapping[str, Any] | None,
) -> None:
    """
    Validate ``form_data`` for submission.

    Raises:
        MissingRequiredFieldsError: Required applicable fields are empty.
        InvalidFieldValuesError: Values that do not fit their field kind.
    """
    missing = missing_required_fields(fields, form_data)
    if missing:
        raise MissingRequiredFieldsError(missing)
    problems = invalid_field_values(fields, form_data)
    if problems:
        raise InvalidFieldValuesError(problems)
