"""Reconciliation of extracted line items against the current RFQ state.

The extraction step already applies the user's edit intent (deletions,
updates, additions) and returns the complete resulting list. This module only
guarantees that the result is well-formed: identities of surviving items are
kept, new items get fresh identities, dimensions and quantities are
normalized and ``line`` is renumbered ``1..N`` in the order extraction chose.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set

from pydantic import ValidationError

from backend.app.error_messages import malformed_extraction_message
from backend.app.errors import MalformedExtractionOutput
from backend.app.models import (
    RFQ,
    Commercial,
    ExtractionOutput,
    LineItem,
    RawLineItem,
    RawSize,
    Size,
)
from backend.app.uom_convert import coerce_number, normalize_dimension, normalize_uom

logger = logging.getLogger("crontal.rfq")


def _now_millis() -> int:
    return int(time.time() * 1000)


def mint_item_id(index: int, taken: Set[str], clock: Callable[[], int] = _now_millis) -> str:
    base = f"L{clock()}-{index}"
    candidate = base
    suffix = 1
    while candidate in taken:
        candidate = f"{base}-{suffix}"
        suffix += 1
    return candidate


def assign_identity(
    raw_item: RawLineItem,
    index: int,
    prior_items_by_id: Mapping[str, LineItem],
    used_ids: Set[str],
    clock: Callable[[], int] = _now_millis,
) -> str:
    """
    Resolve the identity of one extracted item.

    An ``item_id`` naming a prior item is reused verbatim, unless an earlier
    item of the same pass already claimed it. Everything else gets a new id
    that is unique among prior and already assigned ids.
    """
    raw_id = (raw_item.item_id or "").strip()
    if raw_id and raw_id in prior_items_by_id and raw_id not in used_ids:
        return raw_id
    if raw_id:
        logger.debug("item_id %r not reusable at position %d, minting a new one", raw_id, index)
    return mint_item_id(index, used_ids | set(prior_items_by_id), clock=clock)


def index_items(items: Sequence[LineItem]) -> Dict[str, LineItem]:
    return {item.item_id: item for item in items if item.item_id}


def parse_extraction(payload: Any) -> ExtractionOutput:
    if isinstance(payload, ExtractionOutput):
        return payload
    if payload is None:
        raise MalformedExtractionOutput(malformed_extraction_message(["no extraction result"]))
    if not isinstance(payload, Mapping):
        raise MalformedExtractionOutput(
            malformed_extraction_message([f"expected an object, got {type(payload).__name__}"])
        )
    try:
        return ExtractionOutput.model_validate(dict(payload))
    except ValidationError as exc:
        problems = [
            f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}"
            for err in exc.errors()
        ]
        raise MalformedExtractionOutput(malformed_extraction_message(problems)) from exc


def _build_line_item(raw: RawLineItem, item_id: str, line: int) -> LineItem:
    size = raw.size or RawSize()
    return LineItem(
        item_id=item_id,
        line=line,
        description=raw.description or "",
        material_grade=raw.material_grade or "",
        size=Size(
            outer_diameter=normalize_dimension(size.od_val, size.od_unit),
            wall_thickness=normalize_dimension(size.wt_val, size.wt_unit),
            length=normalize_dimension(size.len_val, size.len_unit),
        ),
        quantity=coerce_number(raw.quantity),
        uom=normalize_uom(raw.uom),
    )


def reconcile(
    prior_items: Sequence[LineItem],
    extraction_output: Any,
    clock: Callable[[], int] = _now_millis,
) -> List[LineItem]:
    """Return the new authoritative item list; it fully replaces ``prior_items``."""
    extraction = parse_extraction(extraction_output)
    prior_by_id = index_items(prior_items)
    used: Set[str] = set()
    items: List[LineItem] = []
    for index, raw in enumerate(extraction.line_items):
        item_id = assign_identity(raw, index, prior_by_id, used, clock=clock)
        used.add(item_id)
        items.append(_build_line_item(raw, item_id, line=index + 1))

    kept = len(used & set(prior_by_id))
    logger.info(
        "Reconciled %d items (%d kept, %d new, %d dropped)",
        len(items),
        kept,
        len(items) - kept,
        len(prior_by_id) - kept,
    )
    return items


def build_commercial(extraction: ExtractionOutput) -> Commercial:
    raw = extraction.commercial
    if raw is None:
        return Commercial()
    return Commercial(
        destination=raw.destination or "",
        incoterm=raw.incoterm or "",
        payment_term=raw.payment_terms or "",
        other_requirements=raw.other_requirements or "",
    )


def build_rfq(
    rfq_id: str,
    extraction_output: Any,
    prior_items: Sequence[LineItem] = (),
    project_name: Optional[str] = None,
    clock: Callable[[], int] = _now_millis,
) -> RFQ:
    extraction = parse_extraction(extraction_output)
    return RFQ(
        rfq_id=rfq_id,
        project_name=extraction.project_name or project_name or None,
        commercial=build_commercial(extraction),
        line_items=reconcile(prior_items, extraction, clock=clock),
    )
