"""Interfaces of the external capabilities the RFQ service depends on.

The service only talks to these protocols; ``backend.app.llm`` provides the
model-backed implementations and tests inject small fakes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

MODE_CREATING = "creating"
MODE_EDITING = "editing"


@dataclass(frozen=True)
class Attachment:
    filename: str
    mime_type: str
    data: bytes


@dataclass
class ExtractionRequest:
    text: str
    mode: str
    project_name: Optional[str] = None
    current_items: List[Dict[str, Any]] = field(default_factory=list)
    language: str = "en"
    attachments: List[Attachment] = field(default_factory=list)

    @property
    def is_editing(self) -> bool:
        return self.mode == MODE_EDITING


class ExtractionService(Protocol):
    async def extract(self, request: ExtractionRequest) -> Dict[str, Any]:
        """Return the raw extraction payload (project, commercial, line_items)."""
        ...


class ClarificationSummarizer(Protocol):
    async def summarize(self, summary: Dict[str, Any], user_message: str, lang: str) -> str:
        ...
