"""User-facing texts shared by the parse and clarify flows.

The clarification fallback is shown whenever the summarizer cannot answer,
so chat and table stay consistent even when the model is unavailable.
"""

from __future__ import annotations

from typing import Iterable

CLARIFY_FALLBACK_MESSAGE = "I've updated the table. Please review the details."


def _bullet_list(items: Iterable[str]) -> str:
    return "\n".join(f"- {item}" for item in items)


def clarify_fallback_message() -> str:
    return CLARIFY_FALLBACK_MESSAGE


def malformed_extraction_message(problems: list[str]) -> str:
    """Error text when the extraction result cannot be read as an RFQ."""
    cleaned = [p.strip() for p in problems if p and p.strip()]
    if not cleaned:
        return "Extraction output could not be read as an RFQ."
    return "Extraction output could not be read as an RFQ:\n" + _bullet_list(cleaned)


def extraction_timeout_message(timeout: float) -> str:
    return f"Extraction service did not answer within {timeout:g} seconds."


def extraction_failure_message(exc: BaseException) -> str:
    detail = str(exc).strip() or exc.__class__.__name__
    return f"Extraction service failed: {detail}"
