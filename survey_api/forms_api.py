"""
Forms API: form creation, access tokens, schema store and submission sink.

Respondent-facing endpoints authenticate with the form's access token only.
Errors use stable detail codes (form_not_found, invalid_or_expired_token,
invalid_submission); no internal traces are returned.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from logging_setup import get_logger, Component
from observability.events import Component as ObsComponent, EventEmitter, Severity
from survey_forms.schema import FormField, FormSchema, SchemaError, generate_key
from survey_forms.validation import check_submission, validate_form

from .config import get_config
from .schemas import (
    CreateFormRequest,
    FieldIn,
    FormDetailResponse,
    FormListResponse,
    FormResponse,
    FormSummary,
    IssueTokenRequest,
    StatusResponse,
    StoredSubmission,
    SubmissionListResponse,
    SubmissionRequest,
    SubmissionResponse,
    TokenResponse,
    UpdateFormRequest,
    ValidateTokenRequest,
    ValidateTokenResponse,
)
from .store import Form, FormToken, Submission, form_store


router = APIRouter(tags=["forms"])
logger = get_logger(Component.SURVEY_API)
emitter = EventEmitter(ObsComponent.SURVEY_API)


def _token_response(token: Optional[FormToken]) -> Optional[TokenResponse]:
    if token is None:
        return None
    return TokenResponse(token=token.token, expires_at=token.expires_at.isoformat())


def _form_response(form: Form, token: Optional[FormToken] = None) -> FormResponse:
    return FormResponse(
        form_id=form.form_id,
        title=form.title,
        description=form.description,
        form=form.schema.to_dict()["form"],
        token=_token_response(token),
    )


def _stored_submission(submission: Submission) -> StoredSubmission:
    return StoredSubmission(
        submission_id=submission.submission_id,
        data=submission.data,
        created_at=submission.created_at.isoformat(),
    )


def _get_form_or_404(form_id: str) -> Form:
    form = form_store.get_form(form_id)
    if form is None:
        raise HTTPException(status_code=404, detail="form_not_found")
    return form


def _build_schema(fields_in: list[FieldIn], previous: Optional[FormSchema] = None) -> FormSchema:
    """
    Assign keys and build the schema.

    A given key is kept unless it belongs to an existing field whose title
    changed; that field and fields without a key get a key generated from
    their title, unique among all other keys.
    """
    keys: list[Optional[str]] = []
    for f in fields_in:
        existing = previous.get(f.key) if previous is not None and f.key else None
        if f.key and (existing is None or existing.title == f.title):
            keys.append(f.key)
        else:
            keys.append(None)

    taken = [k for k in keys if k]
    fields = []
    for f, key in zip(fields_in, keys):
        if key is None:
            key = generate_key(f.title, taken)
            taken.append(key)
        fields.append(FormField.from_dict({**f.model_dump(), "key": key}))

    try:
        return FormSchema.from_fields(fields)
    except SchemaError as e:
        raise HTTPException(status_code=422, detail={"error": "invalid_schema", "message": str(e)})


@router.get("/forms", response_model=FormListResponse)
async def list_forms() -> FormListResponse:
    return FormListResponse(
        forms=[
            FormSummary(
                form_id=form.form_id,
                title=form.title,
                description=form.description,
                fields=len(form.schema),
                submission_count=len(form.submissions),
                token=_token_response(form.active_token()),
            )
            for form in form_store.list_forms()
        ]
    )


@router.post("/forms", response_model=FormResponse)
async def create_form(req: CreateFormRequest) -> FormResponse:
    """
    Create a form and issue its first access token.

    Fields without a key get one generated from their title.
    """
    schema = _build_schema(req.fields)
    form = form_store.create_form(req.title, req.description, schema)
    token = form_store.issue_token(form.form_id, timedelta(days=get_config().token_ttl_days))
    return _form_response(form, token)


@router.get("/forms/{form_id}", response_model=FormDetailResponse)
async def get_form(form_id: str) -> FormDetailResponse:
    """Owner view with the active token (None while submissions are disabled)."""
    form = _get_form_or_404(form_id)
    return FormDetailResponse(
        form_id=form.form_id,
        title=form.title,
        description=form.description,
        form=form.schema.to_dict()["form"],
        token=_token_response(form.active_token()),
        submissions=[_stored_submission(s) for s in form.submissions],
    )


@router.patch("/forms/{form_id}", response_model=FormResponse)
async def update_form(form_id: str, req: UpdateFormRequest) -> FormResponse:
    """
    Update title, description and/or fields.

    Keys stay fixed unless the field's title changed. Tokens and stored
    submissions are kept.
    """
    form = _get_form_or_404(form_id)
    schema = _build_schema(req.fields, previous=form.schema) if req.fields is not None else None
    form = form_store.update_form(
        form_id,
        title=req.title,
        description=req.description,
        schema=schema,
    )
    return _form_response(form, form.active_token())


@router.post("/forms/{form_id}/tokens", response_model=TokenResponse)
async def issue_token(form_id: str, req: Optional[IssueTokenRequest] = None) -> TokenResponse:
    """Issue a new access token (re-enables a disabled form)."""
    _get_form_or_404(form_id)
    ttl_days = (req.ttl_days if req else None) or get_config().token_ttl_days
    token = form_store.issue_token(form_id, timedelta(days=ttl_days))
    return _token_response(token)


@router.post("/forms/{form_id}/submissions/disable", response_model=StatusResponse)
async def disable_submissions(form_id: str) -> StatusResponse:
    """Revoke every access token of the form."""
    if not form_store.disable_submissions(form_id):
        raise HTTPException(status_code=404, detail="form_not_found")
    return StatusResponse(success=True)


@router.get("/forms/{form_id}/submissions", response_model=SubmissionListResponse)
async def list_submissions(form_id: str) -> SubmissionListResponse:
    _get_form_or_404(form_id)
    return SubmissionListResponse(
        form_id=form_id,
        submissions=[
            _stored_submission(s) for s in form_store.list_submissions(form_id)
        ],
    )


@router.get("/forms/{form_id}/schema", response_model=FormResponse)
async def get_schema(form_id: str, token: str = Query(..., min_length=1)) -> FormResponse:
    """
    Schema store for respondents.

    Unknown forms, wrong or expired tokens and disabled forms all answer
    404 form_not_found so the token cannot be probed.
    """
    form = form_store.get_form_by_token(form_id, token)
    if form is None:
        raise HTTPException(status_code=404, detail="form_not_found")
    return _form_response(form, form.active_token())


@router.post("/forms/{form_id}/tokens/validate", response_model=ValidateTokenResponse)
async def validate_token(form_id: str, req: ValidateTokenRequest) -> ValidateTokenResponse:
    return ValidateTokenResponse(valid=form_store.get_form_by_token(form_id, req.token) is not None)


@router.post("/submissions", response_model=SubmissionResponse)
async def submit(req: SubmissionRequest) -> SubmissionResponse:
    """
    Submission sink.

    Stores the submission once per idempotency key; a repeated key returns
    the original submission id.
    """
    form = form_store.get_form_by_token(req.form_id, req.token)
    if form is None:
        logger.warning("Submission rejected: invalid token", form_id=req.form_id)
        raise HTTPException(status_code=403, detail="invalid_or_expired_token")

    errors = check_submission(form.schema, req.data)
    reported = {e.key for e in errors}
    errors += [e for e in validate_form(form.schema, req.data) if e.key not in reported]
    if errors:
        emitter.emit(
            "survey.submission.rejected",
            session_id=req.idempotency_key or req.form_id,
            severity=Severity.WARN,
            correlation_id=req.form_id,
            fields=[e.key for e in errors],
        )
        raise HTTPException(
            status_code=422,
            detail={"error": "invalid_submission", "fields": [e.to_dict() for e in errors]},
        )

    submission, created = form_store.add_submission(
        form.form_id, req.data, idempotency_key=req.idempotency_key
    )
    emitter.emit(
        "survey.submission.received" if created else "survey.submission.duplicate",
        session_id=req.idempotency_key or submission.submission_id,
        correlation_id=form.form_id,
        submission_id=submission.submission_id,
        answers=len(req.data),
    )
    return SubmissionResponse(success=True, submission_id=submission.submission_id)
