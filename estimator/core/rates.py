"""Read-only rate table: element unit costs, escalation by year, assemblies."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from estimator.core.schema import AssemblyComponent, ElementCategory, ParametricAssembly

CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"
DEFAULT_RATE_TABLE = CONFIG_DIR / "rate_table.yaml"


def _to_decimal(value: Any, *, field_name: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except (InvalidOperation, TypeError):
        raise ValueError(f"rate table field {field_name} is not numeric: {value!r}") from None
    if not result.is_finite():
        raise ValueError(f"rate table field {field_name} is not finite: {value!r}")
    return result


def _rate_key(category: ElementCategory | str, element_type: str) -> str:
    label = category.value if isinstance(category, ElementCategory) else str(category)
    return f"{label.strip().lower()}.{element_type.strip().lower()}"


@dataclass(frozen=True)
class RateTable:
    unit_costs: dict[str, Decimal] = field(default_factory=dict)
    escalation: dict[int, Decimal] = field(default_factory=dict)
    assemblies: dict[str, ParametricAssembly] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: dict[str, Any] | None) -> "RateTable":
        data = data or {}

        unit_costs: dict[str, Decimal] = {}
        for key, value in (data.get("unit_costs") or {}).items():
            category, _, element_type = str(key).partition(".")
            if not element_type:
                raise ValueError(f"unit cost key must look like 'Category.type': {key!r}")
            unit_costs[_rate_key(category, element_type)] = _to_decimal(value, field_name=str(key))

        escalation = {
            int(year): _to_decimal(percent, field_name=f"escalation.{year}")
            for year, percent in (data.get("escalation") or {}).items()
        }

        assemblies: dict[str, ParametricAssembly] = {}
        for raw in data.get("assemblies") or []:
            components = tuple(
                AssemblyComponent(
                    material=str(item["material"]),
                    quantity=_to_decimal(item.get("quantity", 0), field_name="component.quantity"),
                    unit=str(item.get("unit") or ""),
                )
                for item in raw.get("components") or []
            )
            assembly = ParametricAssembly(
                id=str(raw["id"]),
                name=str(raw.get("name") or raw["id"]),
                base_unit_cost=_to_decimal(raw.get("base_unit_cost", 0), field_name=f"{raw['id']}.base_unit_cost"),
                eco_rating=int(raw.get("eco_rating") or 0),
                unit=str(raw.get("unit") or "m²"),
                components=components,
            )
            assemblies[assembly.id] = assembly

        return cls(unit_costs=unit_costs, escalation=escalation, assemblies=assemblies)

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------
    def unit_cost_for(self, category: ElementCategory | str, element_type: str) -> Decimal | None:
        return self.unit_costs.get(_rate_key(category, element_type))

    @property
    def latest_year(self) -> int | None:
        return max(self.escalation) if self.escalation else None

    def escalation_percent(self, year: int | None = None) -> Decimal:
        """Escalation for ``year``; the latest known year when ``year`` is None.

        A year missing from the table resolves to the closest earlier year,
        or the earliest known year when it predates the table.
        """

        if not self.escalation:
            return Decimal("0")
        if year is None:
            return self.escalation[max(self.escalation)]
        if year in self.escalation:
            return self.escalation[year]
        earlier = [known for known in self.escalation if known < year]
        if earlier:
            return self.escalation[max(earlier)]
        return self.escalation[min(self.escalation)]

    def assembly(self, assembly_id: str) -> ParametricAssembly | None:
        return self.assemblies.get(assembly_id)


def load_rate_table(path: Path | None = None) -> RateTable:
    """Load a rate table from YAML; an absent file yields an empty table."""

    if path is None:
        env_path = os.getenv("ESTIMATOR_RATE_TABLE")
        path = Path(env_path).expanduser() if env_path else DEFAULT_RATE_TABLE
    if not path.exists():
        return RateTable()
    with path.open("r", encoding="utf-8") as fp:
        return RateTable.from_mapping(yaml.safe_load(fp))


@lru_cache(maxsize=1)
def default_rate_table() -> RateTable:
    return load_rate_table()
