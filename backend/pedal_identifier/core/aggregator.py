"""
Totals and chart data derived from one identification result.

Everything here is a pure function of its input: the results page and the
JSON API both call `summarize()` on the latest result and throw the output
away on the next identification.
"""

from __future__ import annotations

import math
from typing import Dict, Iterable, List, Optional

from pedal_identifier.schemas.identify import (
    IdentificationResult,
    ManufacturerAggregate,
    PedalIdentification,
    ResultSummary,
)

PRICE_UNKNOWN = "Price Unknown"
UNKNOWN_MAKE = "Unknown"
PALETTE_SIZE = 5


def _round_half_up(x: float) -> int:
    """12.5 -> 13, 12.4 -> 12."""
    return int(math.floor(x + 0.5))


def _known_price(pedal: PedalIdentification) -> float:
    price = pedal.estimated_used_price
    if price is None or not math.isfinite(price):
        return 0.0
    return price


def compute_total(pedals: Iterable[PedalIdentification]) -> float:
    """Sum of known prices. Unknown (None or non-finite) prices count as 0."""
    return sum(_known_price(p) for p in pedals)


def format_price(value: Optional[float]) -> str:
    """
    "Price Unknown" for None or non-finite, else "$" + two decimals:
      62.5   -> "$62.50"
      1234.5 -> "$1234.50"
    """
    if value is None or not math.isfinite(value):
        return PRICE_UNKNOWN
    return f"${value:.2f}"


def manufacturer_key(make: Optional[str]) -> str:
    make = (make or "").strip()
    return make or UNKNOWN_MAKE


def group_by_manufacturer(pedals: Iterable[PedalIdentification]) -> Dict[str, float]:
    """
    make -> summed price. Keys keep first-encounter order, which is what
    breaks ties in build_chart_dataset().
    """
    grouped: Dict[str, float] = {}
    for p in pedals:
        key = manufacturer_key(p.make)
        grouped[key] = grouped.get(key, 0.0) + _known_price(p)
    return grouped


def build_chart_dataset(grouped: Dict[str, float], total: float) -> List[ManufacturerAggregate]:
    """
    Bar chart rows, biggest value first.

    Rows with value <= 0 or non-finite are dropped. sorted() is stable, so
    equal values stay in first-encounter order. Colors are assigned from the
    final position so a manufacturer keeps its color across re-renders.
    """
    rows = [(make, value) for make, value in grouped.items() if math.isfinite(value) and value > 0]
    rows = sorted(rows, key=lambda row: row[1], reverse=True)

    dataset: List[ManufacturerAggregate] = []
    for position, (make, value) in enumerate(rows):
        percentage = _round_half_up(value / total * 100) if math.isfinite(total) and total > 0 else 0
        dataset.append(
            ManufacturerAggregate(
                make=make,
                value=value,
                percentage=percentage,
                color_index=position % PALETTE_SIZE,
            )
        )
    return dataset


def summarize(result: IdentificationResult) -> ResultSummary:
    pedals = result.pedal_identifications
    total = compute_total(pedals)
    grouped = group_by_manufacturer(pedals)
    return ResultSummary(
        total=total,
        total_display=format_price(total),
        manufacturers=grouped,
        chart=build_chart_dataset(grouped, total),
        pedal_count=len(pedals),
    )
