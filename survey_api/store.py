"""
In-memory form store.

Holds forms, their access tokens and their submissions. A form accepts
submissions while it has at least one unexpired token; disabling a form
deletes all of its tokens, issuing a new token enables it again.
"""
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from logging_setup import get_logger, Component
from survey_forms.schema import FormSchema

logger = get_logger(Component.FORM_STORE)

TOKEN_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789"
TOKEN_LENGTH = 8


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_access_token() -> str:
    """Short token a respondent can type in by hand."""
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(TOKEN_LENGTH))


@dataclass
class FormToken:
    token: str
    expires_at: datetime
    created_at: datetime = field(default_factory=_now)

    def is_active(self, at: Optional[datetime] = None) -> bool:
        return (at or _now()) < self.expires_at


@dataclass
class Submission:
    submission_id: str
    form_id: str
    data: Dict[str, Any]
    created_at: datetime = field(default_factory=_now)
    idempotency_key: Optional[str] = None


@dataclass
class Form:
    form_id: str
    title: str
    description: str
    schema: FormSchema
    created_at: datetime = field(default_factory=_now)
    tokens: List[FormToken] = field(default_factory=list)
    submissions: List[Submission] = field(default_factory=list)

    def active_token(self) -> Optional[FormToken]:
        """Most recently issued unexpired token."""
        active = [t for t in self.tokens if t.is_active()]
        return max(active, key=lambda t: t.created_at) if active else None

    def accepts(self, token: str) -> bool:
        return any(t.token == token and t.is_active() for t in self.tokens)


class FormStore:
    """Forms, tokens and submissions."""

    def __init__(self):
        self._forms: Dict[str, Form] = {}
        self._idempotency: Dict[tuple[str, str], Submission] = {}

    def create_form(self, title: str, description: str, schema: FormSchema) -> Form:
        form = Form(
            form_id=uuid.uuid4().hex,
            title=title,
            description=description,
            schema=schema,
        )
        self._forms[form.form_id] = form
        logger.info("Form created", form_id=form.form_id, fields=len(schema))
        return form

    def get_form(self, form_id: str) -> Optional[Form]:
        return self._forms.get(form_id)

    def list_forms(self) -> List[Form]:
        """Forms, newest first."""
        return sorted(self._forms.values(), key=lambda f: f.created_at, reverse=True)

    def update_form(
        self,
        form_id: str,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
        schema: Optional[FormSchema] = None,
    ) -> Optional[Form]:
        """Replace the given parts of a form; tokens and submissions are kept."""
        form = self._forms.get(form_id)
        if form is None:
            return None
        if title is not None:
            form.title = title
        if description is not None:
            form.description = description
        if schema is not None:
            form.schema = schema
        logger.info("Form updated", form_id=form_id, fields=len(form.schema))
        return form

    def get_form_by_token(self, form_id: str, token: str) -> Optional[Form]:
        """Form for a respondent: None if unknown, token wrong/expired, or disabled."""
        form = self._forms.get(form_id)
        if form is None or not form.accepts(token):
            return None
        return form

    def issue_token(self, form_id: str, ttl: timedelta) -> Optional[FormToken]:
        form = self._forms.get(form_id)
        if form is None:
            return None
        token = FormToken(token=new_access_token(), expires_at=_now() + ttl)
        form.tokens.append(token)
        logger.info("Form token issued", form_id=form_id, expires_at=token.expires_at.isoformat())
        return token

    def disable_submissions(self, form_id: str) -> bool:
        form = self._forms.get(form_id)
        if form is None:
            return False
        form.tokens.clear()
        logger.info("Form submissions disabled", form_id=form_id)
        return True

    def add_submission(
        self,
        form_id: str,
        data: Dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> tuple[Submission, bool]:
        """
        Store a submission. Returns (submission, created).

        A repeated idempotency key for the same form returns the stored
        submission with created=False.
        """
        if idempotency_key:
            existing = self._idempotency.get((form_id, idempotency_key))
            if existing is not None:
                logger.info(
                    "Duplicate submission ignored",
                    form_id=form_id,
                    submission_id=existing.submission_id,
                )
                return existing, False

        form = self._forms[form_id]
        submission = Submission(
            submission_id=uuid.uuid4().hex,
            form_id=form_id,
            data=dict(data),
            idempotency_key=idempotency_key,
        )
        form.submissions.append(submission)
        if idempotency_key:
            self._idempotency[(form_id, idempotency_key)] = submission
        logger.info(
            "Submission stored",
            form_id=form_id,
            submission_id=submission.submission_id,
            answers=len(data),
        )
        return submission, True

    def list_submissions(self, form_id: str) -> List[Submission]:
        form = self._forms.get(form_id)
        return list(form.submissions) if form else []

    def clear(self) -> None:
        self._forms.clear()
        self._idempotency.clear()


# Global form store
form_store = FormStore()
