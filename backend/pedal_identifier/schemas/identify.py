import math
import re
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# v1: {"pedalIdentification": {make, model, confidence}} (one pedal, no pricing)
# v2: {"pedalIdentifications": [...], "overallAssessment": "..."}
SCHEMA_VERSION = 2


class Advice(str, Enum):
    KEEP = "Keep"
    SELL = "Sell"
    BUY_IF_CHEAP = "Buy If Cheap"
    CONSIDER_SELLING = "Consider Selling"


_ADVICE_BY_KEY = {a.value.lower(): a for a in Advice}


def _parse_price_value(price: Any) -> Optional[float]:
    """
    Converts 62.5, "62.50", "$1,402.58" to float.
    Returns None for null, negatives, inf/NaN, or anything not parseable.
    """
    if price is None or isinstance(price, bool):
        return None
    if isinstance(price, (int, float)):
        value = float(price)
    else:
        m = re.search(r"(-?\d[\d,]*\.?\d*)", str(price))
        if not m:
            return None
        try:
            value = float(m.group(1).replace(",", ""))
        except ValueError:
            return None
    if not math.isfinite(value) or value < 0:
        return None
    # -0.0 -> 0.0
    return value + 0.0


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class PedalIdentification(_CamelModel):
    make: str = ""
    model: str = ""
    confidence: Optional[float] = None
    estimated_used_price: Optional[float] = Field(default=None, alias="estimatedUsedPrice")
    advice: Optional[Advice] = None
    reasoning: str = ""

    @field_validator("make", "model", "reasoning", mode="before")
    @classmethod
    def _text(cls, v: Any) -> str:
        if v is None:
            return ""
        return str(v).strip()

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v: Any) -> Optional[float]:
        if v is None or isinstance(v, bool):
            return None
        try:
            score = float(v)
        except (TypeError, ValueError):
            return None
        if score != score:
            return None
        return max(0.0, min(1.0, score))

    @field_validator("estimated_used_price", mode="before")
    @classmethod
    def _price(cls, v: Any) -> Optional[float]:
        return _parse_price_value(v)

    @field_validator("advice", mode="before")
    @classmethod
    def _advice(cls, v: Any) -> Optional[Advice]:
        if isinstance(v, Advice):
            return v
        if not isinstance(v, str):
            return None
        return _ADVICE_BY_KEY.get(" ".join(v.split()).lower())


def migrate_payload(obj: Any) -> Dict[str, Any]:
    """
    Bring any model reply up to the current schema version.

    v1 replies carried a single `pedalIdentification` object; it becomes a
    one-item `pedalIdentifications` list with price/advice/reasoning unset.
    Replies with neither key are treated as "nothing identified".
    """
    if not isinstance(obj, dict):
        return {"pedalIdentifications": [], "schemaVersion": SCHEMA_VERSION}

    data = dict(obj)
    if "pedalIdentifications" not in data and "pedal_identifications" not in data:
        single = data.pop("pedalIdentification", None)
        data["pedalIdentifications"] = [single] if isinstance(single, dict) else []

    pedals = data.get("pedalIdentifications", data.get("pedal_identifications"))
    if not isinstance(pedals, list):
        pedals = []
    data.pop("pedal_identifications", None)
    data["pedalIdentifications"] = [p for p in pedals if isinstance(p, (dict, PedalIdentification))]
    data["schemaVersion"] = SCHEMA_VERSION
    data.pop("schema_version", None)
    return data


class IdentificationResult(_CamelModel):
    pedal_identifications: List[PedalIdentification] = Field(default_factory=list, alias="pedalIdentifications")
    overall_assessment: Optional[str] = Field(default=None, alias="overallAssessment")
    schema_version: int = Field(default=SCHEMA_VERSION, alias="schemaVersion")

    @model_validator(mode="before")
    @classmethod
    def _migrate(cls, data: Any) -> Any:
        if isinstance(data, IdentificationResult):
            return data
        return migrate_payload(data)

    @field_validator("overall_assessment", mode="before")
    @classmethod
    def _assessment(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        text = str(v).strip()
        return text or None


class ManufacturerAggregate(_CamelModel):
    make: str
    value: float
    percentage: int
    color_index: int = Field(alias="colorIndex")


class ResultSummary(_CamelModel):
    total: float
    total_display: str = Field(alias="totalDisplay")
    manufacturers: Dict[str, float]
    chart: List[ManufacturerAggregate]
    pedal_count: int = Field(alias="pedalCount")


class IdentifyRequest(_CamelModel):
    photo_data_uri: str = Field(alias="photoDataUri", min_length=1)


class IdentifyResponse(_CamelModel):
    result: IdentificationResult
    summary: ResultSummary
    raw_model_output: Optional[str] = Field(default=None, alias="rawModelOutput")
