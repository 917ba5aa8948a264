"""
Result repair - turn raw oracle text into a well-formed AnalysisResult.

The oracle is asked for JSON only, but answers arrive wrapped in prose or
markdown fences, truncated, or missing fields. Everything downstream of this
module only ever sees a valid ``AnalysisResult``.
"""
import json
import re
from typing import Any, Dict, List, Optional, Tuple

import structlog

from resumail_core.llm.schemas import (
    CATEGORIES,
    AnalysisResult,
    Classification,
    Highlight,
    HighlightItem,
)

logger = structlog.get_logger()

# Greedy: first "{" to last "}" so fenced or prose-wrapped objects still match
JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

DEFAULT_FALLBACK_SUMMARY_CHARS = 1000
DEFAULT_SUMMARY_MAX_CHARS = 4000


def extract_json_object(raw_text: str) -> Optional[Dict[str, Any]]:
    """
    Locate and parse the brace-delimited object in ``raw_text``.

    Returns:
        Parsed dict, or None when nothing object-like parses
    """
    if not raw_text:
        return None
    match = JSON_OBJECT_RE.search(raw_text)
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except (json.JSONDecodeError, RecursionError) as e:
        logger.debug("Oracle output is not valid JSON", error=str(e), preview=raw_text[:200])
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def parse_analysis(
    raw_text: str,
    fallback_count: int,
    fallback_summary_chars: int = DEFAULT_FALLBACK_SUMMARY_CHARS,
    summary_max_chars: int = DEFAULT_SUMMARY_MAX_CHARS,
) -> Tuple[AnalysisResult, bool]:
    """
    Repair raw oracle text into an AnalysisResult.

    Args:
        raw_text: Oracle answer, possibly empty or malformed
        fallback_count: ``total_emails`` to use when the answer lacks one
        fallback_summary_chars: Raw characters salvaged as summary on fallback
        summary_max_chars: Upper bound for the summary of a parsed answer

    Returns:
        Tuple of (result, parsed) where ``parsed`` is False when the pure
        fallback was used
    """
    raw_text = raw_text if isinstance(raw_text, str) else ""
    fallback_count = max(int(fallback_count or 0), 0)

    data = extract_json_object(raw_text)
    if data is None:
        return AnalysisResult.fallback(
            fallback_count, summary=raw_text[:fallback_summary_chars]
        ), False

    result = AnalysisResult(
        total_emails=_coerce_count(data.get("total_emails"), default=fallback_count),
        classification=_coerce_classification(data.get("classification")),
        highlights=_coerce_highlights(data.get("highlights")),
        summary=_truncate_summary(_coerce_summary(data.get("summary")), summary_max_chars),
    )
    return result, True


def repair(raw_text: str, fallback_count: int, **limits) -> AnalysisResult:
    """Total repair: always returns a well-formed AnalysisResult."""
    result, _ = parse_analysis(raw_text, fallback_count, **limits)
    return result


def _coerce_count(value: Any, default: int = 0) -> int:
    """Non-negative integer from JSON scalars, ``default`` otherwise."""
    if isinstance(value, bool) or value is None:
        return default
    if isinstance(value, int):
        return value if value >= 0 else default
    if isinstance(value, float) and value.is_integer():
        return int(value) if value >= 0 else default
    if isinstance(value, str):
        stripped = value.strip().rstrip("%")
        if stripped.isdigit():
            return int(stripped)
    return default


def _coerce_classification(value: Any) -> Classification:
    if not isinstance(value, dict):
        return Classification()
    lowered = {str(k).strip().lower(): v for k, v in value.items()}
    return Classification(**{cat: _coerce_count(lowered.get(cat)) for cat in CATEGORIES})


def _coerce_highlights(value: Any) -> List[Highlight]:
    if not isinstance(value, list):
        return []

    highlights: List[Highlight] = []
    for item in value:
        if isinstance(item, str):
            if item.strip():
                highlights.append(item.strip())
        elif isinstance(item, dict):
            text = item.get("text")
            if not isinstance(text, str) or not text.strip():
                continue
            pct = item.get("pct", "")
            highlights.append(HighlightItem(
                text=text.strip(),
                count=_coerce_count(item.get("count")),
                pct=pct if isinstance(pct, str) else str(pct),
            ))
        elif isinstance(item, (int, float)) and not isinstance(item, bool):
            highlights.append(str(item))
    return highlights


def _coerce_summary(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, list):
        return " ".join(str(part).strip() for part in value if isinstance(part, (str, int, float)))
    return ""


def _truncate_summary(text: str, max_length: int) -> str:
    """Cut at a word boundary so the summary stays under ``max_length``."""
    if len(text) <= max_length:
        return text

    words = text[:max_length - 3].split()
    if len(words) > 1:
        return " ".join(words[:-1]) + "..."
    return text[:max(max_length - 3, 1)] + "..."
