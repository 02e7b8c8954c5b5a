from __future__ import annotations

from typing import Any, Dict

import pytest

from backend.app.errors import MalformedExtractionOutput
from backend.app.models import Dimension, LineItem, RawLineItem
from backend.app.services.reconcile import (
    assign_identity,
    build_rfq,
    mint_item_id,
    reconcile,
)


def _clock() -> int:
    return 1700000000000


def _raw_item(item_id=None, description="Seamless pipe", **size) -> Dict[str, Any]:
    return {
        "item_id": item_id,
        "description": description,
        "material_grade": "API 5L X52",
        "size": {
            "od_val": size.get("od_val", 10),
            "od_unit": size.get("od_unit", "in"),
            "wt_val": size.get("wt_val", 0.5),
            "wt_unit": size.get("wt_unit", "in"),
            "len_val": size.get("len_val", 6),
            "len_unit": size.get("len_unit", "m"),
        },
        "quantity": size.get("quantity", 50),
        "uom": "pcs",
    }


def _as_raw(item: LineItem) -> Dict[str, Any]:
    """Echo a canonical item the way the extraction step returns unchanged items."""
    size = item.size
    return {
        "item_id": item.item_id,
        "description": item.description,
        "material_grade": item.material_grade,
        "size": {
            "od_val": size.outer_diameter.value,
            "od_unit": size.outer_diameter.unit,
            "wt_val": size.wall_thickness.value,
            "wt_unit": size.wall_thickness.unit,
            "len_val": size.length.value,
            "len_unit": size.length.unit,
        },
        "quantity": item.quantity,
        "uom": item.uom,
    }


def _prior_items():
    payload = {
        "line_items": [
            _raw_item("a", "Pipe A", od_val=4, quantity=10),
            _raw_item("b", "Pipe B", od_val=6, quantity=20),
            _raw_item("c", "Pipe C", od_val=8, quantity=30),
        ]
    }
    return reconcile([], payload, clock=_clock)


def test_creating_single_item_end_to_end():
    payload = {"project_name": None, "line_items": [_raw_item()]}
    items = reconcile([], payload, clock=_clock)

    assert len(items) == 1
    item = items[0]
    assert item.line == 1
    assert item.item_id == "L1700000000000-0"
    assert item.size.outer_diameter == Dimension(value=10, unit="in")
    assert item.size.wall_thickness == Dimension(value=0.5, unit="in")
    assert item.size.length == Dimension(value=6, unit="m")
    assert item.quantity == 50
    assert item.uom == "pcs"


def test_creating_mode_mints_ids_even_if_extraction_sends_some():
    prior = _prior_items()
    # creating mode ignores ids the extraction invented
    assert [item.item_id for item in prior] == [
        "L1700000000000-0",
        "L1700000000000-1",
        "L1700000000000-2",
    ]


def test_delete_middle_item_keeps_identity_and_fields():
    prior = [
        item.model_copy(update={"item_id": new_id})
        for item, new_id in zip(_prior_items(), ["a", "b", "c"])
    ]
    payload = {"line_items": [_as_raw(prior[0]), _as_raw(prior[2])]}

    items = reconcile(prior, payload, clock=_clock)

    assert [item.item_id for item in items] == ["a", "c"]
    assert [item.line for item in items] == [1, 2]
    assert items[0].model_dump(exclude={"line"}) == prior[0].model_dump(exclude={"line"})
    assert items[1].model_dump(exclude={"line"}) == prior[2].model_dump(exclude={"line"})


def test_new_items_get_fresh_ids_next_to_kept_ones():
    prior = [LineItem(item_id="a", line=1, description="Pipe A")]
    payload = {
        "line_items": [
            {"item_id": "a", "description": "Pipe A"},
            {"description": "Elbow 90"},
            {"item_id": "zzz", "description": "Flange"},
        ]
    }

    items = reconcile(prior, payload, clock=_clock)

    assert items[0].item_id == "a"
    assert items[1].item_id == "L1700000000000-1"
    assert items[2].item_id == "L1700000000000-2"
    assert [item.line for item in items] == [1, 2, 3]


def test_duplicate_echoed_id_is_claimed_once():
    prior = [LineItem(item_id="a", line=1, description="Pipe A")]
    payload = {"line_items": [{"item_id": "a"}, {"item_id": "a"}]}

    items = reconcile(prior, payload, clock=_clock)

    ids = [item.item_id for item in items]
    assert ids[0] == "a"
    assert ids[1] != "a"
    assert len(set(ids)) == 2


def test_minted_id_skips_taken_values():
    taken = {"L1700000000000-0", "L1700000000000-0-1"}
    assert mint_item_id(0, taken, clock=_clock) == "L1700000000000-0-2"


def test_assign_identity_never_reuses_unknown_ids():
    raw = RawLineItem(item_id="ghost")
    item_id = assign_identity(raw, 4, {}, set(), clock=_clock)
    assert item_id == "L1700000000000-4"


def test_order_follows_extraction():
    prior = [
        LineItem(item_id="a", line=1),
        LineItem(item_id="b", line=2),
        LineItem(item_id="c", line=3),
    ]
    payload = {"line_items": [{"item_id": "c"}, {"item_id": "a"}, {"item_id": "b"}]}

    items = reconcile(prior, payload, clock=_clock)

    assert [(item.item_id, item.line) for item in items] == [("c", 1), ("a", 2), ("b", 3)]


@pytest.mark.parametrize("count", [0, 1, 2, 7])
def test_lines_are_exactly_one_to_n(count):
    payload = {"line_items": [{"description": f"item {i}"} for i in range(count)]}
    items = reconcile([], payload, clock=_clock)
    assert [item.line for item in items] == list(range(1, count + 1))
    assert len({item.item_id for item in items}) == count


def test_optional_fields_are_always_present():
    rfq = build_rfq("RFQ-0001", {"line_items": [{}]}, clock=_clock)
    wire = rfq.to_wire()

    assert wire["commercial"] == {
        "destination": "",
        "incoterm": "",
        "paymentTerm": "",
        "otherRequirements": "",
    }
    item = wire["line_items"][0]
    assert set(item) == {"item_id", "line", "description", "material_grade", "size", "quantity", "uom"}
    assert item["description"] == ""
    assert item["material_grade"] == ""
    assert item["quantity"] is None
    assert item["uom"] is None
    for key in ("outer_diameter", "wall_thickness", "length"):
        assert item["size"][key] == {"value": None, "unit": None}


def test_commercial_terms_are_mapped():
    payload = {
        "project_name": "North Field",
        "commercial": {
            "destination": "Rotterdam",
            "incoterm": "CIF",
            "payment_terms": "30 days",
            "other_requirements": None,
        },
        "line_items": [],
    }
    rfq = build_rfq("RFQ-0002", payload, project_name="ignored", clock=_clock)
    wire = rfq.to_wire()

    assert wire["project_name"] == "North Field"
    assert wire["commercial"] == {
        "destination": "Rotterdam",
        "incoterm": "CIF",
        "paymentTerm": "30 days",
        "otherRequirements": "",
    }


def test_project_name_falls_back_to_request():
    rfq = build_rfq("RFQ-0003", {"line_items": []}, project_name="Refinery revamp", clock=_clock)
    assert rfq.project_name == "Refinery revamp"


def test_null_line_items_reads_as_empty():
    assert reconcile([], {"line_items": None}, clock=_clock) == []


@pytest.mark.parametrize(
    "payload",
    [
        None,
        [],
        "not json",
        {},
        {"line_items": "pipe"},
        {"line_items": [{"size": "10in"}]},
        {"line_items": [["nested"]]},
    ],
)
def test_malformed_extraction_raises(payload):
    with pytest.raises(MalformedExtractionOutput) as excinfo:
        reconcile([], payload, clock=_clock)
    assert excinfo.value.status_code == 500


def test_numeric_text_fields_are_accepted():
    items = reconcile([], {"line_items": [{"description": 316, "material_grade": 304}]}, clock=_clock)
    assert items[0].description == "316"
    assert items[0].material_grade == "304"
