"""Pydantic models shared by the search, compile and fetch stages.

These models define the wire contracts with the row store (Predicate),
the field browser (FieldInfo) and saved-view persistence (SavedView).
"""

import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ..utils.errors import InsufficientDataError
from .filters import FilterGroup

# Search


class SearchQuery(BaseModel):
    """Free-text search input plus the fields it is scoped to."""

    model_config = ConfigDict(populate_by_name=True)

    text: str = ""
    fields: Union[Literal["all"], List[str]] = "all"
    case_sensitive: bool = Field(default=False, alias="caseSensitive")
    exact_match: bool = Field(default=False, alias="exactMatch")

    @property
    def scope_is_all(self) -> bool:
        return self.fields == "all" or not self.fields or "all" in self.fields


# Field discovery

FieldType = Literal["string", "number", "boolean", "date", "object", "array"]
FieldCategory = Literal["basic", "metadata", "transcription", "metrics"]


class FieldInfo(BaseModel):
    """A queryable field, either a physical column or a JSON subkey."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    path: str
    type: FieldType
    category: FieldCategory
    sample_values: Optional[List[Any]] = Field(default=None, alias="sampleValues")
    count: Optional[int] = None
    unique_count: Optional[int] = Field(default=None, alias="uniqueCount")

    @property
    def column(self) -> str:
        return self.path.split(".", 1)[0]

    @property
    def json_field(self) -> Optional[str]:
        parts = self.path.split(".", 1)
        return parts[1] if len(parts) == 2 else None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# Percentiles / anomaly toggles


class AnomalyToggle(str, Enum):
    """Smart filters that show calls above the 95th percentile."""

    DURATION = "duration"
    COST = "cost"
    LATENCY = "latency"


class PercentileThresholds(BaseModel):
    """p95 per signal, ``None`` when the sample is too small."""

    duration_p95: Optional[float] = None
    cost_p95: Optional[float] = None
    latency_p95: Optional[float] = None
    sample_sizes: Dict[str, int] = Field(default_factory=dict)
    computed_at: Optional[datetime] = None

    def for_toggle(self, toggle: AnomalyToggle) -> Optional[float]:
        return getattr(self, f"{AnomalyToggle(toggle).value}_p95")

    def require(self, toggle: AnomalyToggle, minimum: int = 0) -> float:
        value = self.for_toggle(toggle)
        if value is None:
            raise InsufficientDataError(
                AnomalyToggle(toggle).value,
                sample_size=self.sample_sizes.get(AnomalyToggle(toggle).value, 0),
                minimum=minimum,
            )
        return value

    @property
    def is_empty(self) -> bool:
        return all(v is None for v in (self.duration_p95, self.cost_p95, self.latency_p95))


# Predicates

Operator = Literal["equals", "pattern_match", "gte", "lte", "gt", "lt", "not_null", "is_null"]

_NUMERIC_SUFFIX = " (numeric)"
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ColumnExpression(BaseModel):
    """Column reference with an optional JSON subkey and numeric cast.

    Rendered forms:
        ``call_started_at``              plain column
        ``metadata.intent``              subkey extracted as text
        ``metadata.intent (numeric)``    subkey extracted and cast to numeric
    """

    model_config = ConfigDict(frozen=True)

    column: str
    json_field: Optional[str] = None
    numeric: bool = False

    def render(self) -> str:
        expr = f"{self.column}.{self.json_field}" if self.json_field else self.column
        return expr + _NUMERIC_SUFFIX if self.numeric else expr

    @classmethod
    def parse(cls, expression: str) -> "ColumnExpression":
        numeric = expression.endswith(_NUMERIC_SUFFIX)
        if numeric:
            expression = expression[: -len(_NUMERIC_SUFFIX)]
        column, _, json_field = expression.partition(".")
        if not _IDENTIFIER.match(column):
            raise ValueError(f"Invalid column expression: {expression!r}")
        return cls(column=column, json_field=json_field or None, numeric=numeric)

    def __str__(self) -> str:
        return self.render()


class Predicate(BaseModel):
    """One compiled ``(column expression, operator, value)`` unit."""

    model_config = ConfigDict(frozen=True)

    column: str
    operator: Operator
    value: Union[None, bool, int, float, str] = None

    @property
    def expression(self) -> ColumnExpression:
        return ColumnExpression.parse(self.column)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump()


# Sorting

SORTABLE_COLUMNS = frozenset(
    {"duration_seconds", "total_cost", "avg_latency", "call_started_at", "created_at"}
)


class SortState(BaseModel):
    """One sort column plus a direction flag."""

    model_config = ConfigDict(frozen=True)

    column: str = "call_started_at"
    ascending: bool = False

    def toggled(self, column: str) -> "SortState":
        """Sort state after clicking ``column``'s header.

        Clicking the active column flips the direction, clicking another
        sortable column sorts it descending, anything else is a no-op.
        """
        if column not in SORTABLE_COLUMNS:
            return self
        if column == self.column:
            return SortState(column=column, ascending=not self.ascending)
        return SortState(column=column, ascending=False)


# Saved views


class VisibleColumns(BaseModel):
    """Visible column keys per table section.

    Unknown section keys are preserved so newer clients can round-trip
    through older ones.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    basic: List[str] = Field(default_factory=list)
    metadata: List[str] = Field(default_factory=list)
    transcription: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("transcription", "transcription_metrics"),
    )
    metrics: List[str] = Field(default_factory=list)


class SavedView(BaseModel):
    """A named filter tree + column visibility configuration for an agent."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: Optional[str] = None
    agent_id: str = Field(validation_alias=AliasChoices("agent_id", "agentId"))
    name: str = Field(min_length=1, max_length=255)
    filters: List[FilterGroup] = Field(default_factory=list)
    visible_columns: VisibleColumns = Field(
        default_factory=VisibleColumns,
        validation_alias=AliasChoices("visible_columns", "visibleColumns"),
    )
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
