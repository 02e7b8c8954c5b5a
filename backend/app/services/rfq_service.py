"""RFQ service layer behind the buyer and supplier endpoints.

Request-scoped pipeline: decode the client's current line items, run the
extraction capability with a timeout, reconcile its output into a complete
RFQ and only then replace the stored record. Clarification, retrieval and
quote intake share the same context object so the HTTP layer stays thin.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from backend.app.error_messages import (
    clarify_fallback_message,
    extraction_failure_message,
    extraction_timeout_message,
)
from backend.app.errors import ExternalServiceFailure, ServiceError
from backend.app.models import LineItem
from backend.app.services.capabilities import (
    MODE_CREATING,
    MODE_EDITING,
    Attachment,
    ExtractionRequest,
)
from backend.app.services.reconcile import build_rfq
from backend.app.utils import decode_json_list

CLARIFY_SAMPLE_SIZE = 3


@dataclass
class RfqServiceContext:
    extractor: Any | None
    summarizer: Any | None
    rfq_store: Any
    quote_store: Any
    logger: Any
    extraction_timeout: float = 60.0
    clarify_timeout: float = 20.0
    default_language: str = "en"
    skip_llm_setup: bool = False
    debug: bool = False


def _now_millis() -> int:
    return int(time.time() * 1000)


def mint_rfq_id(rfq_store: Any, clock: Callable[[], int] = _now_millis) -> str:
    millis = clock()
    for offset in range(10000):
        candidate = f"RFQ-{str(millis + offset)[-4:]}"
        if not rfq_store.exists(candidate):
            return candidate
    raise ServiceError("No free RFQ identifier available.", status_code=500)


def decode_current_entries(raw: Any, logger: Any) -> List[Any]:
    """Decode the client's current line items as sent; an undecodable value counts as none."""
    try:
        return decode_json_list(raw)
    except ValueError as exc:
        logger.warning("Ignoring unreadable currentLineItems: %s", exc)
        return []


def _entry_item_id(entry: Any) -> Optional[str]:
    if not isinstance(entry, dict):
        return None
    item_id = entry.get("item_id")
    if not isinstance(item_id, str) or not item_id.strip():
        return None
    return item_id


def load_prior_items(raw: Any, logger: Any) -> List[LineItem]:
    """
    Identities of the current line items.

    Entries without an ``item_id`` have no identity to keep. Entries with an
    id but unreadable fields keep their id so an echoed item is not re-minted.
    """
    items: List[LineItem] = []
    for entry in decode_current_entries(raw, logger):
        item_id = _entry_item_id(entry)
        if item_id is None:
            logger.warning("Current line item without item_id: %r", entry)
            continue
        try:
            items.append(LineItem.model_validate(entry))
        except ValidationError as exc:
            logger.warning("Current line item %s has unreadable fields: %s", item_id, exc.errors()[:1])
            items.append(LineItem(item_id=item_id))
    return items


async def _run_extraction(request: ExtractionRequest, ctx: RfqServiceContext) -> Dict[str, Any]:
    if ctx.extractor is None:
        raise ExternalServiceFailure("Extraction service is disabled (SKIP_LLM_SETUP=1).")
    try:
        return await asyncio.wait_for(ctx.extractor.extract(request), timeout=ctx.extraction_timeout)
    except asyncio.TimeoutError as exc:
        raise ExternalServiceFailure(extraction_timeout_message(ctx.extraction_timeout)) from exc
    except ServiceError:
        raise
    except Exception as exc:
        raise ExternalServiceFailure(extraction_failure_message(exc)) from exc


async def parse_rfq(
    *,
    text: str,
    ctx: RfqServiceContext,
    project_name: Optional[str] = None,
    current_line_items: Any = None,
    lang: Optional[str] = None,
    files: Iterable[Attachment] = (),
    rfq_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Create or edit an RFQ from a free-form request.

    Args:
        text: The user's instruction or request text.
        ctx: Shared service context (capabilities, stores, logger).
        project_name: Project name context sent by the client.
        current_line_items: Current items as JSON string or list; non-empty means editing.
        lang: Language for inferred text, defaults to the context default.
        files: Attached documents.
        rfq_id: Existing identifier; a new one is minted when absent.

    Returns:
        The full RFQ record in wire shape.
    """
    current_entries = decode_current_entries(current_line_items, ctx.logger)
    prior_items = load_prior_items(current_entries, ctx.logger)
    request = ExtractionRequest(
        text=text or "",
        mode=MODE_EDITING if current_entries else MODE_CREATING,
        project_name=project_name or None,
        # entries as sent by the client, unreadable ones included
        current_items=current_entries,
        language=lang or ctx.default_language,
        attachments=list(files),
    )
    raw = await _run_extraction(request, ctx)

    rfq_id = (rfq_id or "").strip() or mint_rfq_id(ctx.rfq_store)
    rfq = build_rfq(rfq_id, raw, prior_items, project_name=project_name)
    ctx.rfq_store.put(rfq)
    ctx.logger.info(
        "RFQ %s stored (%s, %d attachments, %d line items)",
        rfq.rfq_id,
        request.mode,
        len(request.attachments),
        len(rfq.line_items),
    )
    return rfq.to_wire()


def _sample_text(item: Any) -> str:
    if not isinstance(item, dict):
        return str(item)
    parts = [item.get("quantity"), item.get("uom"), item.get("description")]
    return " ".join(str(part) for part in parts if part not in (None, ""))


def summarize_rfq(rfq: Any) -> Dict[str, Any]:
    """Compact state sent to the summarizer: item count plus the first items."""
    if not isinstance(rfq, dict):
        raise ValueError("rfq must be an object")
    items = rfq.get("line_items")
    if not isinstance(items, list):
        raise ValueError("rfq.line_items must be a list")
    return {
        "item_count": len(items),
        "items_sample": [_sample_text(item) for item in items[:CLARIFY_SAMPLE_SIZE]],
    }


async def clarify(
    *,
    rfq: Any,
    user_message: Optional[str],
    ctx: RfqServiceContext,
    lang: Optional[str] = None,
) -> Dict[str, str]:
    if ctx.summarizer is None:
        return {"message": clarify_fallback_message()}
    try:
        summary = summarize_rfq(rfq)
        message = await asyncio.wait_for(
            ctx.summarizer.summarize(summary, user_message or "", lang or ctx.default_language),
            timeout=ctx.clarify_timeout,
        )
    except Exception as exc:
        ctx.logger.warning("Clarification failed, sending fallback message: %s", exc)
        return {"message": clarify_fallback_message()}
    return {"message": message}


def get_rfq(*, rfq_id: str, ctx: RfqServiceContext) -> Dict[str, Any]:
    return ctx.rfq_store.get(rfq_id).to_wire()


def submit_quote(*, rfq_id: str, payload: Any, ctx: RfqServiceContext) -> Dict[str, Any]:
    # quotes are not checked against stored RFQs
    ctx.quote_store.submit(rfq_id, payload)
    ctx.logger.info("Quote received for %s", rfq_id)
    return {"success": True}


def list_quotes(*, rfq_id: str, ctx: RfqServiceContext) -> Dict[str, Any]:
    return {"rfq_id": rfq_id, "quotes": ctx.quote_store.quotes_for(rfq_id)}
