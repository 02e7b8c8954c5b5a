"""
RFQ data model - canonical records and the raw extraction shape
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

Number = Union[int, float]


# --- Canonical records ---

class Dimension(BaseModel):
    value: Optional[Number] = None
    unit: Optional[str] = None


class Size(BaseModel):
    outer_diameter: Dimension = Field(default_factory=Dimension)
    wall_thickness: Dimension = Field(default_factory=Dimension)
    length: Dimension = Field(default_factory=Dimension)


class Commercial(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    destination: str = ""
    incoterm: str = ""
    payment_term: str = Field(
        default="",
        validation_alias=AliasChoices("paymentTerm", "payment_term", "payment_terms"),
        serialization_alias="paymentTerm",
    )
    other_requirements: str = Field(
        default="",
        validation_alias=AliasChoices("otherRequirements", "other_requirements"),
        serialization_alias="otherRequirements",
    )

    @field_validator("*", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class LineItem(BaseModel):
    item_id: str
    line: int = 0
    description: str = ""
    material_grade: str = ""
    size: Size = Field(default_factory=Size)
    quantity: Optional[Number] = None
    uom: Optional[str] = None

    @field_validator("description", "material_grade", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class RFQ(BaseModel):
    rfq_id: str
    project_name: Optional[str] = None
    commercial: Commercial = Field(default_factory=Commercial)
    line_items: List[LineItem] = Field(default_factory=list)

    def to_wire(self) -> Dict[str, Any]:
        """Serialized record as returned to clients (every key present)."""
        return self.model_dump(mode="json", by_alias=True)


# --- Raw extraction output ---

class _RawModel(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True, populate_by_name=True)


class RawSize(_RawModel):
    od_val: Any = None
    od_unit: Any = None
    wt_val: Any = None
    wt_unit: Any = None
    len_val: Any = None
    len_unit: Any = None


class RawCommercial(_RawModel):
    destination: Optional[str] = None
    incoterm: Optional[str] = None
    payment_terms: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("payment_terms", "payment_term", "paymentTerm"),
    )
    other_requirements: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("other_requirements", "otherRequirements"),
    )


class RawLineItem(_RawModel):
    item_id: Optional[str] = None
    description: Optional[str] = None
    product_type: Optional[str] = None
    material_grade: Optional[str] = None
    size: Optional[RawSize] = None
    quantity: Any = None
    uom: Any = None


class ExtractionOutput(_RawModel):
    project_name: Optional[str] = None
    commercial: Optional[RawCommercial] = None
    # required key; null is read as an empty list
    line_items: Optional[List[RawLineItem]]

    @field_validator("line_items", mode="after")
    @classmethod
    def _none_to_list(cls, v: Optional[List[RawLineItem]]) -> List[RawLineItem]:
        return v or []
