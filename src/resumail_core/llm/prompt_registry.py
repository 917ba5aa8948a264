"""Utility helpers for locating and rendering versioned prompt templates."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from resumail_core import DEFAULT_PROMPT_VERSION

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"

PROMPT_TEMPLATE_MAP: Dict[str, str] = {
    "classify.v2": "classify/v2/default.j2",
    "merge.v2": "merge/v2/default.j2",
}

# Summary length requested from each role
SUMMARY_SENTENCES: Dict[str, int] = {
    "classify": 5,
    "merge": 8,
}

_environment: Environment | None = None


def get_prompt_template_path(template_name: str) -> str:
    """Return the relative Jinja template path for the given template key.

    Args:
        template_name: Logical template key (e.g. ``"classify.v2"``).

    Returns:
        Relative path to the template inside the ``prompts`` directory.

    Raises:
        KeyError: If the template key is unknown.
    """

    try:
        return PROMPT_TEMPLATE_MAP[template_name]
    except KeyError as exc:
        raise KeyError(
            f"Unknown prompt template '{template_name}'. Known templates: {sorted(PROMPT_TEMPLATE_MAP)}"
        ) from exc


def render_instruction(role: str, version: str = DEFAULT_PROMPT_VERSION, **context: Any) -> str:
    """Render the system instruction for ``role`` (``classify`` or ``merge``)."""
    global _environment
    if _environment is None:
        _environment = Environment(
            loader=FileSystemLoader(PROMPTS_DIR),
            undefined=StrictUndefined,
            keep_trailing_newline=False,
        )
    template = _environment.get_template(get_prompt_template_path(f"{role}.{version}"))
    context.setdefault("summary_sentences", SUMMARY_SENTENCES.get(role, 5))
    return template.render(**context).strip()
