from __future__ import annotations

import logging
from collections import Counter
from decimal import Decimal
from typing import Iterable

from estimator.core.rates import RateTable, default_rate_table
from estimator.core.schema import (
    CATEGORY_ORDER,
    AssemblyLine,
    AssemblySelection,
    CategoryBreakdown,
    CostReport,
    Element,
    ElementCategory,
    quantize,
)

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


def escalated_total(base_unit_cost: Decimal, escalation_percent: Decimal, quantity: Decimal) -> Decimal:
    """``base × (1 + escalation/100) × quantity`` rounded half-up to cents."""

    return quantize(base_unit_cost * (1 + escalation_percent / HUNDRED) * quantity)


def _element_sort_key(element: Element) -> tuple[str, str, str, str]:
    return (element.id, element.type, element.unit, str(element.quantity))


def price_selection(selection: AssemblySelection, rate_table: RateTable) -> AssemblyLine | None:
    assembly = rate_table.assembly(selection.assembly_id)
    if assembly is None:
        return None

    if selection.escalation_percent is not None:
        escalation = selection.escalation_percent
    else:
        escalation = rate_table.escalation_percent(selection.year)

    return AssemblyLine(
        id=assembly.id,
        name=assembly.name,
        base_unit_cost=assembly.base_unit_cost,
        eco_rating=assembly.eco_rating,
        unit=assembly.unit,
        components=assembly.components,
        escalation_percent=escalation,
        quantity=selection.quantity,
        escalated_unit_cost=quantize(assembly.base_unit_cost * (1 + escalation / HUNDRED)),
        total_cost=escalated_total(assembly.base_unit_cost, escalation, selection.quantity),
    )


def aggregate(
    elements: Iterable[Element],
    selections: Iterable[AssemblySelection] = (),
    *,
    rate_table: RateTable | None = None,
    accuracy_band: str | None = None,
    processing_duration: float | None = None,
    extraction_warnings: Iterable[str] = (),
) -> CostReport:
    """Combine extracted elements and assembly selections into a CostReport.

    The result only depends on the inputs as multisets: categories come out
    in a fixed order and elements inside a category are sorted, so calling
    this twice with the same data yields byte-identical JSON. Partial data
    never raises; gaps are listed in ``coverage_gaps`` instead.
    """

    rate_table = rate_table or default_rate_table()

    grouped: dict[ElementCategory, list[Element]] = {category: [] for category in CATEGORY_ORDER}
    for element in elements:
        grouped[element.category].append(element)

    breakdowns: list[CategoryBreakdown] = []
    elements_total = Decimal("0.00")
    for category in CATEGORY_ORDER:
        members = sorted(grouped[category], key=_element_sort_key)
        subtotal = sum((item.total_cost for item in members), Decimal("0.00"))
        elements_total += subtotal
        breakdowns.append(
            CategoryBreakdown(
                category=category,
                elements=tuple(members),
                element_count=len(members),
                subtotal=subtotal,
            )
        )

    gaps: list[str] = list(extraction_warnings)
    unknown = grouped[ElementCategory.UNKNOWN]
    if unknown:
        labels = Counter(item.source_category or "<missing>" for item in unknown)
        for label in sorted(labels):
            gaps.append(f"unrecognised category {label!r}: {labels[label]} element(s) priced under Unknown")

    lines: list[AssemblyLine] = []
    for selection in selections:
        line = price_selection(selection, rate_table)
        if line is None:
            logger.warning("Skipping unknown parametric assembly %s", selection.assembly_id)
            gaps.append(f"unknown parametric assembly {selection.assembly_id!r} skipped")
            continue
        lines.append(line)
    lines.sort(key=lambda line: (line.id, str(line.quantity), str(line.escalation_percent)))
    assemblies_total = sum((line.total_cost for line in lines), Decimal("0.00"))

    total_elements = sum(breakdown.element_count for breakdown in breakdowns)
    return CostReport(
        categories=tuple(breakdowns),
        parametric_assemblies=tuple(lines),
        total_elements=total_elements,
        elements_total=elements_total,
        assemblies_total=assemblies_total,
        total_cost=elements_total + assemblies_total,
        accuracy_band=accuracy_band,
        processing_duration=processing_duration,
        coverage_gaps=tuple(sorted(gaps)),
    )
