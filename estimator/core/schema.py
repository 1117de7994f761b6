from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field

CENT = Decimal("0.01")

# Upper bound for quantities and unit costs. Products of two such values
# still quantize to cents within the default 28-digit Decimal context.
MAX_AMOUNT = Decimal("1e12")


def quantize(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


class ElementCategory(str, Enum):
    STRUCTURAL = "Structural"
    ARCHITECTURAL = "Architectural"
    MEP = "MEP"
    FINISHES = "Finishes"
    EXTERNAL = "External"
    UNKNOWN = "Unknown"


# Output order of a CostReport; Unknown is always last.
CATEGORY_ORDER: tuple[ElementCategory, ...] = (
    ElementCategory.STRUCTURAL,
    ElementCategory.ARCHITECTURAL,
    ElementCategory.MEP,
    ElementCategory.FINISHES,
    ElementCategory.EXTERNAL,
    ElementCategory.UNKNOWN,
)


class Element(BaseModel):
    """A single categorised quantity-takeoff record."""

    model_config = ConfigDict(frozen=True)

    id: str
    category: ElementCategory
    type: str
    quantity: Decimal = Field(ge=0, le=MAX_AMOUNT)
    unit: str = "ea"
    unit_cost: Decimal = Field(default=Decimal("0"), ge=0, le=MAX_AMOUNT)
    source_category: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_cost(self) -> Decimal:
        return quantize(self.quantity * self.unit_cost)


class AssemblyComponent(BaseModel):
    model_config = ConfigDict(frozen=True)

    material: str
    quantity: Decimal
    unit: str


class ParametricAssembly(BaseModel):
    """A pre-configured multi-material assembly with a composite unit cost."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    base_unit_cost: Decimal = Field(ge=0)
    eco_rating: int = Field(default=0, ge=0, le=10)
    unit: str = "m²"
    components: tuple[AssemblyComponent, ...] = ()


class AssemblySelection(BaseModel):
    model_config = ConfigDict(frozen=True)

    assembly_id: str
    quantity: Decimal = Field(ge=0, le=MAX_AMOUNT)
    year: int | None = None
    escalation_percent: Decimal | None = Field(default=None, ge=-100, le=1000)


class AssemblyLine(BaseModel):
    """An assembly selection priced with its escalation applied."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    base_unit_cost: Decimal
    eco_rating: int
    unit: str
    components: tuple[AssemblyComponent, ...]
    escalation_percent: Decimal
    quantity: Decimal
    escalated_unit_cost: Decimal
    total_cost: Decimal


class CategoryBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: ElementCategory
    elements: tuple[Element, ...] = ()
    element_count: int = 0
    subtotal: Decimal = Decimal("0.00")


class CostReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    categories: tuple[CategoryBreakdown, ...]
    parametric_assemblies: tuple[AssemblyLine, ...] = ()
    total_elements: int = 0
    elements_total: Decimal = Decimal("0.00")
    assemblies_total: Decimal = Decimal("0.00")
    total_cost: Decimal = Decimal("0.00")
    accuracy_band: str | None = None
    processing_duration: float | None = None
    coverage_gaps: tuple[str, ...] = ()

    def category(self, category: ElementCategory) -> CategoryBreakdown:
        for breakdown in self.categories:
            if breakdown.category == category:
                return breakdown
        raise KeyError(category)

    @property
    def has_unknown_elements(self) -> bool:
        return self.category(ElementCategory.UNKNOWN).element_count > 0


class ExportRow(BaseModel):
    category: str
    type: str
    quantity: Decimal
    unit: str
    unit_cost: Decimal
    total_cost: Decimal
