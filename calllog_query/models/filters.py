"""Filter tree models and the fixed column registry.

Filter trees are edited client-side, one group per "AND/OR" block. All
helpers in this module are pure: they return new objects and never
mutate their inputs.
"""

import uuid
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..utils.errors import UnsupportedOperationError, ValidationError

ColumnType = Literal["text", "number", "date", "jsonb"]
GroupLogic = Literal["AND", "OR"]

OPERATIONS: Dict[str, Tuple[str, ...]] = {
    "text": ("equals", "contains", "starts_with", "ends_with", "is_empty"),
    "number": ("equals", "greater_than", "less_than", "between"),
    "date": ("equals", "greater_than", "less_than", "between"),
    "jsonb": (
        "json_equals",
        "json_contains",
        "json_exists",
        "json_greater_than",
        "json_less_than",
    ),
}

# Operations that do not take a value
VALUELESS_OPERATIONS = frozenset({"is_empty", "json_exists"})

# Plain operations a jsonb column also accepts once a jsonField is set
JSON_FIELD_OPERATIONS = frozenset({"equals", "contains", "starts_with", "greater_than", "less_than"})


def new_id() -> str:
    return uuid.uuid4().hex


class ColumnDescriptor(BaseModel):
    """A filterable column of the call-log table."""

    model_config = ConfigDict(frozen=True)

    name: str
    label: str
    type: ColumnType

    @property
    def operations(self) -> Tuple[str, ...]:
        return OPERATIONS[self.type]

    @property
    def is_json(self) -> bool:
        return self.type == "jsonb"


COLUMNS: Dict[str, ColumnDescriptor] = {
    col.name: col
    for col in (
        ColumnDescriptor(name="customer_number", label="Customer Number", type="text"),
        ColumnDescriptor(name="call_id", label="Call ID", type="text"),
        ColumnDescriptor(name="call_ended_reason", label="Status", type="text"),
        ColumnDescriptor(name="duration_seconds", label="Duration (seconds)", type="number"),
        ColumnDescriptor(name="billing_duration_seconds", label="Billing Duration", type="number"),
        ColumnDescriptor(name="avg_latency", label="Avg Latency (ms)", type="number"),
        ColumnDescriptor(name="total_cost", label="Total Cost", type="number"),
        ColumnDescriptor(name="call_started_at", label="Date", type="date"),
        ColumnDescriptor(name="metadata", label="Metadata", type="jsonb"),
        ColumnDescriptor(name="transcription_metrics", label="Transcription", type="jsonb"),
        ColumnDescriptor(name="metrics", label="Metrics", type="jsonb"),
    )
}

TEXT_COLUMNS: Tuple[str, ...] = tuple(
    name for name, col in COLUMNS.items() if col.type == "text"
)


def get_column(name: str) -> Optional[ColumnDescriptor]:
    return COLUMNS.get(name)


class FilterRule(BaseModel):
    """A single ``column operation value`` condition."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=new_id)
    column: str
    operation: str
    value: str = ""
    json_field: Optional[str] = Field(default=None, alias="jsonField")


class FilterGroup(BaseModel):
    """An ordered list of rules combined with AND or OR logic."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    logic: GroupLogic = "AND"
    filters: List[FilterRule] = Field(default_factory=list)
    groups: List["FilterGroup"] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.filters and all(g.is_empty for g in self.groups)


# Rule validation


def operation_allowed(column: ColumnDescriptor, rule: FilterRule) -> bool:
    if rule.operation in column.operations:
        return True
    return column.is_json and bool(rule.json_field) and rule.operation in JSON_FIELD_OPERATIONS


def check_rule(rule: FilterRule) -> ColumnDescriptor:
    """Raise the matching FilterError if ``rule`` is not well-formed.

    Returns the rule's column descriptor when the rule is valid.
    """
    column = get_column(rule.column)
    if column is None:
        raise ValidationError(f"Unknown column '{rule.column}'", rule=rule)

    if not operation_allowed(column, rule):
        raise UnsupportedOperationError(
            f"Operation '{rule.operation}' is not allowed on {column.type} column '{column.name}'",
            rule=rule,
        )

    if rule.operation not in VALUELESS_OPERATIONS and not rule.value.strip():
        raise ValidationError(f"Operation '{rule.operation}' requires a value", rule=rule)

    if column.is_json and not rule.json_field:
        raise ValidationError(f"JSON column '{column.name}' requires a jsonField", rule=rule)
    if not column.is_json and rule.json_field:
        raise ValidationError(f"Column '{column.name}' does not accept a jsonField", rule=rule)

    return column


def validate_rule(rule: FilterRule) -> bool:
    try:
        check_rule(rule)
    except (ValidationError, UnsupportedOperationError):
        return False
    return True


# Group mutation helpers


def add_rule(group: FilterGroup, rule: FilterRule) -> FilterGroup:
    return group.model_copy(update={"filters": [*group.filters, rule]})


def remove_rule(group: FilterGroup, rule_id: str) -> FilterGroup:
    return group.model_copy(
        update={"filters": [r for r in group.filters if r.id != rule_id]}
    )


def set_group_logic(group: FilterGroup, logic: GroupLogic) -> FilterGroup:
    if logic not in ("AND", "OR"):
        raise ValueError(f"Invalid group logic: {logic!r}")
    return group.model_copy(update={"logic": logic})


def update_group(groups: List[FilterGroup], group: FilterGroup) -> List[FilterGroup]:
    """Replace the group with the same id."""
    return [group if g.id == group.id else g for g in groups]


def default_groups() -> List[FilterGroup]:
    """The state "clear all" resets to: one empty AND group."""
    return [FilterGroup()]


def add_group(groups: List[FilterGroup], logic: GroupLogic = "AND") -> List[FilterGroup]:
    return [*groups, FilterGroup(logic=logic)]


def remove_group(groups: List[FilterGroup], group_id: str) -> List[FilterGroup]:
    """Remove a group, refusing to remove the last remaining one."""
    if len(groups) <= 1:
        return list(groups)
    return [g for g in groups if g.id != group_id]


def _copy_with_fresh_ids(group: FilterGroup) -> FilterGroup:
    return FilterGroup(
        logic=group.logic,
        filters=[rule.model_copy(update={"id": new_id()}) for rule in group.filters],
        groups=[_copy_with_fresh_ids(child) for child in group.groups],
    )


def duplicate_group(groups: List[FilterGroup], group_id: str) -> List[FilterGroup]:
    """Append a deep copy of a group; the copy and all its rules get new ids."""
    source = next((g for g in groups if g.id == group_id), None)
    if source is None:
        return list(groups)
    return [*groups, _copy_with_fresh_ids(source)]


def flatten_groups(groups: List[FilterGroup]) -> List[FilterRule]:
    """All rules of all groups, depth first, ignoring group logic."""
    rules: List[FilterRule] = []
    for group in groups:
        rules.extend(group.filters)
        rules.extend(flatten_groups(group.groups))
    return rules


def count_rules(groups: List[FilterGroup]) -> int:
    return len(flatten_groups(groups))
