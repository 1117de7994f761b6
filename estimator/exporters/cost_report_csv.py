from __future__ import annotations

from pathlib import Path

import pandas as pd

from estimator.core.schema import CostReport, ExportRow

EXPORT_COLUMNS = ["category", "type", "quantity", "unit", "unit_cost", "total_cost"]
PARAMETRIC_CATEGORY = "Parametric"


def flatten_report(report: CostReport) -> list[ExportRow]:
    """One row per element, then one per priced assembly, in report order."""

    rows: list[ExportRow] = []
    for breakdown in report.categories:
        for element in breakdown.elements:
            rows.append(
                ExportRow(
                    category=breakdown.category.value,
                    type=element.type,
                    quantity=element.quantity,
                    unit=element.unit,
                    unit_cost=element.unit_cost,
                    total_cost=element.total_cost,
                )
            )
    for line in report.parametric_assemblies:
        rows.append(
            ExportRow(
                category=PARAMETRIC_CATEGORY,
                type=line.name,
                quantity=line.quantity,
                unit=line.unit,
                unit_cost=line.escalated_unit_cost,
                total_cost=line.total_cost,
            )
        )
    return rows


def _frame(report: CostReport) -> pd.DataFrame:
    records = [row.model_dump() for row in flatten_report(report)]
    return pd.DataFrame(records, columns=EXPORT_COLUMNS)


def render_cost_report_csv(report: CostReport) -> str:
    return _frame(report).to_csv(index=False)


def export_cost_report(path: Path, report: CostReport) -> Path:
    df = _frame(report)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
    return path
