"""
Submission validation.

Two checks with different purposes:

- validate_form: completeness. Every required question has an answer and
  likert answers are numeric. Partial submissions fail this check, which is
  fine while a conversation is still in progress.
- check_submission: stored-data invariant. Every key belongs to the schema,
  text answers are strings or numbers, likert answers are integers in
  [1, 5]. The submission sink enforces this before storing anything.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from .schema import FieldType, FormSchema, LIKERT_MAX, LIKERT_MIN

Number = Union[int, float]

REQUIRED_MESSAGE = "This question is required"
LIKERT_NUMERIC_MESSAGE = f"Please select a rating from {LIKERT_MIN} to {LIKERT_MAX}"


@dataclass(frozen=True)
class FieldError:
    """Validation error for one field."""

    key: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"key": self.key, "message": self.message}


def parse_number(text: str) -> Optional[Number]:
    """
    Parse a string that is entirely a finite number.

    Surrounding whitespace is allowed. Integral values come back as int, so
    "4" and "4.0" both give 4. Returns None for anything else (empty strings,
    words, nan/inf, digit separators).
    """
    stripped = text.strip()
    if not stripped or "_" in stripped:
        return None
    try:
        number = float(stripped)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    if number.is_integer():
        return int(number)
    return number


def is_numeric(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return math.isfinite(value)
    if isinstance(value, str):
        return parse_number(value) is not None
    return False


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_form(schema: FormSchema, submission: Mapping[str, Any]) -> list[FieldError]:
    """
    Return one error per required field that is missing, blank or, for
    likert fields, not numeric. Optional fields are never reported.
    """
    errors: list[FieldError] = []
    for field in schema:
        if not field.required:
            continue
        value = submission.get(field.key)
        if _is_blank(value):
            errors.append(FieldError(field.key, REQUIRED_MESSAGE))
        elif field.type == FieldType.LIKERT and not is_numeric(value):
            errors.append(FieldError(field.key, LIKERT_NUMERIC_MESSAGE))
    return errors


def check_submission(schema: FormSchema, submission: Mapping[str, Any]) -> list[FieldError]:
    """Check the stored-submission invariant for every key in the submission."""
    errors: list[FieldError] = []
    for key, value in submission.items():
        field = schema.get(key)
        if field is None:
            errors.append(FieldError(key, "Unknown question"))
            continue
        if field.type == FieldType.TEXT:
            # Spoken numeric answers arrive coerced to numbers
            if isinstance(value, bool) or not isinstance(value, (str, int, float)):
                errors.append(FieldError(key, "Answer must be text"))
            continue
        if (
            isinstance(value, bool)
            or not isinstance(value, (int, float))
            or not math.isfinite(value)
            or not float(value).is_integer()
            or not LIKERT_MIN <= value <= LIKERT_MAX
        ):
            errors.append(FieldError(key, f"Rating must be a whole number from {LIKERT_MIN} to {LIKERT_MAX}"))
    return errors
