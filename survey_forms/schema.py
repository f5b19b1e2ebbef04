"""
Form schema model.

Wire shape (as stored by the survey API and sent to the voice agent):

    {"form": [{"key": "...", "title": "...", "description": "...",
               "required": true, "type": "text" | "likert"}, ...]}

Field order is meaningful: it drives both the manual form layout and the order
in which the voice agent asks the questions.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Iterator, Mapping, Optional, Sequence


LIKERT_MIN = 1
LIKERT_MAX = 5


class FieldType(str, Enum):
    """Supported question types."""
    TEXT = "text"
    LIKERT = "likert"


class SchemaError(ValueError):
    """Raised when a schema payload violates the form schema invariants."""


@dataclass(frozen=True)
class FormField:
    """One question in a form."""

    key: str
    title: str
    type: FieldType = FieldType.TEXT
    required: bool = False
    description: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FormField":
        try:
            field_type = FieldType(data.get("type", FieldType.TEXT.value))
        except ValueError:
            raise SchemaError(f"Unsupported field type: {data.get('type')!r}")
        return cls(
            key=str(data.get("key") or ""),
            title=str(data.get("title") or ""),
            type=field_type,
            required=bool(data.get("required", False)),
            description=str(data.get("description") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "title": self.title,
            "description": self.description,
            "required": self.required,
            "type": self.type.value,
        }


@dataclass(frozen=True)
class FormSchema:
    """Ordered sequence of fields with unique keys."""

    fields: tuple[FormField, ...] = field(default_factory=tuple)

    def __post_init__(self):
        seen: set[str] = set()
        for f in self.fields:
            if f.key and not f.title.strip():
                raise SchemaError(f"Field {f.key!r} has a key but no title")
            if not f.key and f.title.strip():
                raise SchemaError(f"Field {f.title!r} has a title but no key")
            if f.key in seen:
                raise SchemaError(f"Duplicate field key: {f.key!r}")
            seen.add(f.key)

    @classmethod
    def from_fields(cls, fields: Iterable[FormField]) -> "FormSchema":
        return cls(fields=tuple(fields))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FormSchema":
        """Parse the {"form": [...]} wire shape."""
        items = data.get("form")
        if items is None:
            items = []
        if not isinstance(items, list):
            raise SchemaError("'form' must be a list of fields")
        return cls(fields=tuple(FormField.from_dict(item) for item in items))

    def to_dict(self) -> dict[str, Any]:
        return {"form": [f.to_dict() for f in self.fields]}

    def keys(self) -> list[str]:
        return [f.key for f in self.fields]

    def get(self, key: str) -> Optional[FormField]:
        for f in self.fields:
            if f.key == key:
                return f
        return None

    def __iter__(self) -> Iterator[FormField]:
        return iter(self.fields)

    def __len__(self) -> int:
        return len(self.fields)


_NON_KEY_CHARS = re.compile(r"[^a-z0-9_]")
FALLBACK_KEY = "question"


def generate_key(title: str, existing_keys: Sequence[str]) -> str:
    """
    Generate a snake_case field key from a title.

    Uses the first three words, drops anything outside [a-z0-9_] and appends
    _1, _2, ... until the key is unique among existing_keys. Titles with no
    usable characters (punctuation only, non-Latin scripts) fall back to
    "question".
    """
    words = title.strip().lower().split()[:3]
    base_key = _NON_KEY_CHARS.sub("", "_".join(words)).strip("_") or FALLBACK_KEY

    key = base_key
    counter = 1
    while key in existing_keys:
        key = f"{base_key}_{counter}"
        counter += 1
    return key
