"""
Tool surface exposed to the realtime model.

Three tools, each with a closed parameter schema (strict, no additional
properties) so the model cannot pass arbitrary payloads:

- update_submission(key, value): records an answer; always returns ""
- validate_submission(): completeness check (no-op unless the policy is on)
- submit_form(): sends the submission to the sink, then hangs up

None of them needs human approval; confirmation before submitting is a
conversational step driven by the instructions, not a gate here. Results start
with a stable status token the instructions refer to.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable

from logging_setup import get_logger, Component
from survey_forms.validation import FieldError, validate_form

from .errors import IncompleteSubmissionError, SubmissionError
from .history import parse_update_arguments
from .submission import UPDATE_SUBMISSION
from .transport import AnswerProposed

if TYPE_CHECKING:
    from .session import SessionController

logger = get_logger(Component.TOOLS)

SUBMISSION_SUCCESS = (
    "SUBMISSION_SUCCESS: Your survey has been submitted successfully! Thank you for your feedback."
)
VALIDATION_SKIPPED = "VALIDATION_SUCCESS: Proceeding without validation."
VALIDATION_PASSED = "VALIDATION_SUCCESS: All required questions have been answered."

TOOL_DECLARATIONS: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "update_submission",
        "description": (
            "Updates the survey submission with a user's answer to a specific question. "
            "Call this immediately after the user has spoken an answer."
        ),
        "strict": True,
        "parameters": {
            "type": "object",
            "properties": {
                "key": {
                    "type": "string",
                    "description": "The field key from the survey schema (e.g. 'employee_satisfaction', 'feedback')",
                },
                "value": {
                    "type": "string",
                    "description": (
                        "The user's answer. For text questions the full answer; "
                        "for likert questions the number as a string (e.g. '3')."
                    ),
                },
            },
            "required": ["key", "value"],
            "additionalProperties": False,
        },
    },
    {
        "type": "function",
        "name": "validate_submission",
        "description": "Checks whether all required questions have been answered.",
        "strict": True,
        "parameters": {
            "type": "object",
            "properties": {},
            "required": [],
            "additionalProperties": False,
        },
    },
    {
        "type": "function",
        "name": "submit_form",
        "description": (
            "Submits the survey and ends the voice session. "
            "Only call this after the user has confirmed they want to submit."
        ),
        "strict": True,
        "parameters": {
            "type": "object",
            "properties": {},
            "required": [],
            "additionalProperties": False,
        },
    },
]


def submission_failed(detail: str) -> str:
    return f"SUBMISSION_FAILED: {detail}. Please ask user to use the manual form."


class SurveyTools:
    """Tool implementations bound to one session controller."""

    def __init__(
        self,
        controller: "SessionController",
        *,
        validate_on_submit: bool = False,
        disconnect_delay: float = 2.0,
    ):
        self._controller = controller
        self.validate_on_submit = validate_on_submit
        self.disconnect_delay = disconnect_delay

    def handler_for(self, name: str) -> Callable[..., Awaitable[str]]:
        handlers = {
            "update_submission": self.update_submission,
            "validate_submission": self.validate_submission,
            "submit_form": self.submit_form,
        }
        try:
            return handlers[name]
        except KeyError:
            raise ValueError(f"Unknown tool: {name}") from None

    async def invoke(self, name: str, arguments: Any = None) -> str:
        """
        Run a tool by name with the model's raw arguments.

        update_submission arguments are checked against the declared schema;
        ToolArgumentsError propagates to the transport.
        """
        handler = self.handler_for(name)
        if name == UPDATE_SUBMISSION:
            key, value = parse_update_arguments(arguments if arguments is not None else {})
            return await handler(key, value)
        return await handler()

    async def update_submission(self, key: str, value: Any) -> str:
        """
        Queue the answer for the session dispatcher.

        The history stream carries the same call; both routes go through the
        ledger, so whichever is dispatched first wins and the other is a no-op.
        The empty result keeps the model from commenting on the save.
        """
        self._controller.post(AnswerProposed(key=key, value=value))
        self._record("update_submission", "")
        return ""

    async def validate_submission(self) -> str:
        if not self.validate_on_submit:
            result = VALIDATION_SKIPPED
        else:
            await self._controller.drain()
            errors = validate_form(self._controller.schema, self._controller.current_submission())
            result = self._missing_message(errors) if errors else VALIDATION_PASSED
        self._record("validate_submission", result)
        return result

    async def submit_form(self) -> str:
        try:
            await self._controller.submit(validate=self.validate_on_submit)
        except IncompleteSubmissionError as e:
            result = self._missing_message(e.errors)
        except SubmissionError as e:
            # Session stays connected so the model can point to the manual form
            result = submission_failed(str(e))
        else:
            self._controller.schedule_disconnect(self.disconnect_delay)
            result = SUBMISSION_SUCCESS
        self._record("submit_form", result)
        return result

    def _missing_message(self, errors: Iterable[FieldError]) -> str:
        titles = []
        for error in errors:
            field = self._controller.schema.get(error.key)
            titles.append(f'"{field.title}"' if field else error.key)
        return (
            f"VALIDATION_FAILED: Missing required questions: {', '.join(titles)}. "
            "Please ask for these answers."
        )

    def _record(self, tool: str, result: str) -> None:
        status = result.split(":", 1)[0] if result else "ACK"
        logger.with_session(self._controller.session_id).info(
            "Tool invoked", tool=tool, status=status
        )
        self._controller.emitter.tool_invoked(
            self._controller.session_id,
            tool=tool,
            result=status,
            correlation_id=self._controller.form_id,
        )
