"""
Survey API client used by the voice agent.

Fetches the form schema for a dispatched job and sends the final submission.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import aiohttp

from logging_setup import get_logger, Component
from survey_forms.schema import FormSchema, SchemaError

logger = get_logger(Component.FORMS_CLIENT)


class FormsApiError(Exception):
    """The survey API could not be reached or returned an unusable response."""


@dataclass(frozen=True)
class SubmitResult:
    """Outcome of a submission attempt."""

    success: bool
    submission_id: Optional[str] = None
    error: Optional[str] = None


def _error_detail(body: Any, status: int) -> str:
    if isinstance(body, dict):
        detail = body.get("detail")
        if isinstance(detail, str):
            return detail
        if isinstance(detail, dict) and isinstance(detail.get("error"), str):
            return detail["error"]
        if isinstance(body.get("error"), str):
            return body["error"]
    return f"HTTP {status}"


class FormsApiClient:
    """Thin aiohttp client for the survey API."""

    def __init__(self, base_url: str, timeout_seconds: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def fetch_schema(self, form_id: str, token: str) -> FormSchema:
        endpoint = f"{self.base_url}/forms/{form_id}/schema"
        try:
            async with aiohttp.ClientSession() as s:
                async with s.get(endpoint, params={"token": token}, timeout=self.timeout) as resp:
                    body = await resp.json(content_type=None)
                    if resp.status != 200:
                        raise FormsApiError(
                            f"Schema request failed: {_error_detail(body, resp.status)}"
                        )
        except (aiohttp.ClientError, ValueError) as e:
            raise FormsApiError(f"Survey API unreachable: {type(e).__name__}") from e

        if not isinstance(body, dict):
            raise FormsApiError("Invalid form schema: expected an object")
        try:
            schema = FormSchema.from_dict(body)
        except SchemaError as e:
            raise FormsApiError(f"Invalid form schema: {e}") from e
        logger.info("Form schema loaded", form_id=form_id, fields=len(schema))
        return schema

    async def submit(
        self,
        form_id: str,
        token: str,
        data: Mapping[str, Any],
        *,
        idempotency_key: Optional[str] = None,
    ) -> SubmitResult:
        """
        POST the submission.

        Network errors and rejections are returned as an unsuccessful
        SubmitResult, never raised.
        """
        endpoint = f"{self.base_url}/submissions"
        payload: dict[str, Any] = {"formId": form_id, "token": token, "data": dict(data)}
        if idempotency_key:
            payload["idempotencyKey"] = idempotency_key

        start_ts = time.time()
        try:
            async with aiohttp.ClientSession() as s:
                async with s.post(endpoint, json=payload, timeout=self.timeout) as resp:
                    body = await resp.json(content_type=None)
                    status = resp.status
        except (aiohttp.ClientError, ValueError) as e:
            logger.warning(
                "Submission request failed",
                endpoint=endpoint,
                form_id=form_id,
                error=str(e),
                error_type=type(e).__name__,
                latency_ms=int((time.time() - start_ts) * 1000),
            )
            return SubmitResult(success=False, error=f"Survey API unreachable ({type(e).__name__})")

        logger.info(
            "Submission response",
            endpoint=endpoint,
            form_id=form_id,
            status=status,
            latency_ms=int((time.time() - start_ts) * 1000),
        )
        if status == 200 and isinstance(body, dict) and body.get("success"):
            return SubmitResult(success=True, submission_id=body.get("submissionId"))
        return SubmitResult(success=False, error=_error_detail(body, status))
