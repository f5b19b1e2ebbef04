"""
Schema instruction compiler.

Turns a FormSchema into the instruction block for the realtime interviewer.
The instruction text is the only way the remote model learns the survey
content and the recording discipline, so it is kept as a versioned prompt
file rather than inline strings:

- Prompts live in voice_agent/prompts/<name>.yaml (YAML or JSON, read with
  PyYAML's safe_load)
- Prompt selection: explicit name, then VOICE_PROMPT env var, then
  "survey_interviewer"
- The policy part of the prompt is fixed; only the question list varies

Compilation is pure and total: an empty schema yields an empty question list
inside a still-valid instruction block.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from survey_forms.schema import FormSchema

DEFAULT_PROMPT_NAME = "survey_interviewer"

# Last-resort prompt when no prompt file can be found
INTERVIEWER_INSTRUCTIONS = """
You are a friendly survey interviewer having a natural conversation.

SURVEY QUESTIONS (ask in order):
{questions}

Greet the user first. Ask one question at a time and wait for the spoken answer.
Probe answers that are too brief. Only after hearing an answer, silently call
update_submission(key, value); never say that you are recording. Acknowledge
briefly and move on. After all questions, confirm with the user.
{validation_step}
Then call submit_form. On "SUBMISSION_SUCCESS" thank the user; on
"SUBMISSION_FAILED" apologise and ask them to use the manual form.
""".strip()

DEFAULT_GREETING_INSTRUCTIONS = (
    "Greet the respondent warmly and ask whether they are ready to get started."
)

DEFAULT_VALIDATION_STEP = (
    "Before submitting, call validate_submission and ask any missing questions it lists."
)


def _get_prompts_dir() -> Path:
    return Path(__file__).parent / "prompts"


def _load_file(path: Path) -> Dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Prompt file {path} must contain a mapping at top-level")
    return data


def load_prompt(prompt_name: str) -> Dict[str, Any]:
    """
    Load a prompt definition.

    Resolution order:
    1) <name>.yaml / <name>.yml / <name>.json
    2) the default prompt file
    3) built-in fallback
    """
    prompts_dir = _get_prompts_dir()
    for name in (prompt_name, DEFAULT_PROMPT_NAME):
        for suffix in (".yaml", ".yml", ".json"):
            candidate = prompts_dir / f"{name}{suffix}"
            if candidate.exists():
                return _load_file(candidate)

    return {
        "name": "builtin",
        "version": "builtin",
        "prompt": INTERVIEWER_INSTRUCTIONS,
        "validation_step": DEFAULT_VALIDATION_STEP,
        "greeting_instructions": DEFAULT_GREETING_INSTRUCTIONS,
    }


def get_prompt(prompt_name: Optional[str] = None) -> Dict[str, Any]:
    """Resolve the prompt for an explicit name, VOICE_PROMPT, or the default."""
    name = prompt_name or os.getenv("VOICE_PROMPT") or DEFAULT_PROMPT_NAME
    return load_prompt(name)


def get_prompt_version(prompt_name: Optional[str] = None) -> str:
    prompt = get_prompt(prompt_name)
    return str(prompt.get("version", "unversioned"))


def get_greeting_instructions(prompt_name: Optional[str] = None) -> str:
    """Instructions for the model's opening turn."""
    prompt = get_prompt(prompt_name)
    return str(prompt.get("greeting_instructions") or DEFAULT_GREETING_INSTRUCTIONS).strip()


def describe_schema(schema: FormSchema) -> str:
    """
    One line per field, in schema order:

        - [REQUIRED] Title: description (Type: text, Key: key)
    """
    lines = []
    for field in schema:
        required_label = "REQUIRED" if field.required else "OPTIONAL"
        description = f": {field.description}" if field.description else ""
        lines.append(
            f"- [{required_label}] {field.title}{description} "
            f"(Type: {field.type.value}, Key: {field.key})"
        )
    return "\n".join(lines)


def compile_instructions(
    schema: FormSchema,
    *,
    prompt_name: Optional[str] = None,
    validate_before_submit: bool = False,
) -> str:
    """
    Compile the complete interviewer instructions for a schema.

    Args:
        schema: Form schema; field order is the question order
        prompt_name: Prompt file to use (defaults per get_prompt)
        validate_before_submit: Include the validate_submission step
    """
    prompt = get_prompt(prompt_name)
    template = str(prompt.get("prompt") or INTERVIEWER_INSTRUCTIONS)
    validation_step = ""
    if validate_before_submit:
        validation_step = str(prompt.get("validation_step") or DEFAULT_VALIDATION_STEP)

    return template.format(
        questions=describe_schema(schema),
        validation_step=validation_step.rstrip(),
    ).strip()
