"""
Request / response models for the survey API.

Wire names are camelCase (formId, submissionId, ...) to match the web form.
"""
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# --- Forms ---


class FieldIn(WireModel):
    key: Optional[str] = None
    title: str = Field(..., min_length=1)
    description: str = ""
    required: bool = False
    type: Literal["text", "likert"] = "text"


class CreateFormRequest(WireModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    fields: List[FieldIn] = Field(default_factory=list)


class TokenResponse(WireModel):
    token: str
    expires_at: str = Field(..., alias="expiresAt")


class FormResponse(WireModel):
    form_id: str = Field(..., alias="formId")
    title: str
    description: str
    form: List[Dict[str, Any]]
    token: Optional[TokenResponse] = None


class UpdateFormRequest(WireModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    fields: Optional[List[FieldIn]] = None


class FormSummary(WireModel):
    form_id: str = Field(..., alias="formId")
    title: str
    description: str
    fields: int
    submission_count: int = Field(..., alias="submissionCount")
    token: Optional[TokenResponse] = None


class FormListResponse(WireModel):
    forms: List[FormSummary]


class IssueTokenRequest(WireModel):
    ttl_days: Optional[int] = Field(None, ge=1, alias="ttlDays")


class ValidateTokenRequest(WireModel):
    token: str


class ValidateTokenResponse(WireModel):
    valid: bool


class StatusResponse(WireModel):
    success: bool


# --- Submissions ---


class SubmissionRequest(WireModel):
    form_id: str = Field(..., min_length=1, alias="formId")
    token: str = Field(..., min_length=1)
    data: Dict[str, Union[str, int, float]]
    idempotency_key: Optional[str] = Field(None, alias="idempotencyKey")


class SubmissionResponse(WireModel):
    success: bool
    submission_id: str = Field(..., alias="submissionId")


class StoredSubmission(WireModel):
    submission_id: str = Field(..., alias="submissionId")
    data: Dict[str, Any]
    created_at: str = Field(..., alias="createdAt")


class SubmissionListResponse(WireModel):
    form_id: str = Field(..., alias="formId")
    submissions: List[StoredSubmission]


class FormDetailResponse(FormResponse):
    """Owner view: the form, its active token and its submissions."""

    submissions: List[StoredSubmission] = Field(default_factory=list)


# --- Voice ---


class RealtimeTokenResponse(WireModel):
    value: str
    expires_at: Optional[int] = None


class VoiceSessionRequest(WireModel):
    form_id: str = Field(..., min_length=1, alias="formId")
    token: str = Field(..., min_length=1)
    identity: Optional[str] = None


class VoiceSessionResponse(WireModel):
    server_url: str = Field(..., alias="serverUrl")
    room_name: str = Field(..., alias="roomName")
    participant_token: str = Field(..., alias="participantToken")
    session_id: str = Field(..., alias="sessionId")


class EndVoiceSessionResponse(WireModel):
    status: str
