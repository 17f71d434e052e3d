"""Compile filter trees, anomaly toggles and owner scope into predicates.

The compiler is a pure function of its inputs: the same groups, toggles,
thresholds and ``now`` always produce the same ordered predicate list.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from ..models.filters import (
    VALUELESS_OPERATIONS,
    FilterGroup,
    FilterRule,
    flatten_groups,
    get_column,
    operation_allowed,
)
from ..models.query_models import (
    AnomalyToggle,
    ColumnExpression,
    FieldInfo,
    PercentileThresholds,
    Predicate,
)
from ..utils.errors import FilterError, UnsupportedOperationError, ValidationError

logger = logging.getLogger(__name__)

DAY_START = "00:00:00"
DAY_END = "23:59:59.999"

OWNER_COLUMN = "agent_id"

# Anomaly toggle -> column expression compared against the toggle's p95
ANOMALY_COLUMNS: Dict[AnomalyToggle, str] = {
    AnomalyToggle.DURATION: "duration_seconds",
    AnomalyToggle.COST: ColumnExpression(
        column="metadata", json_field="customer_charge", numeric=True
    ).render(),
    AnomalyToggle.LATENCY: "avg_latency",
}

# Discovered field types -> filter column types
_CATALOG_TYPES = {
    "string": "text",
    "boolean": "text",
    "number": "number",
    "date": "date",
    "object": "jsonb",
    "array": "jsonb",
}

_LEADING_FLOAT = re.compile(r"^\s*[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")
_INTEGER = re.compile(r"^\s*[-+]?\d+\s*$")

Number = Union[int, float]


def owner_scope(agent_id: str) -> Predicate:
    """The predicate that restricts every query to one agent's calls."""
    return Predicate(column=OWNER_COLUMN, operator="equals", value=agent_id)


def parse_leading_float(value: str) -> Optional[float]:
    """Parse the numeric prefix of ``value`` (``"0.5abc"`` -> 0.5).

    Returns ``None`` when there is no numeric prefix at all.
    """
    match = _LEADING_FLOAT.match(value or "")
    return float(match.group(0)) if match else None


@dataclass
class CompilationResult:
    """Compiled predicates plus the rules that were dropped and why."""

    predicates: List[Predicate]
    dropped: List[Tuple[FilterRule, FilterError]] = field(default_factory=list)


class QueryCompiler:
    """Translate the filter model into an ordered list of predicates.

    Groups are flattened before compilation and every predicate is
    combined with implicit AND, so ``FilterGroup.logic`` is not applied
    at this stage.
    """

    def __init__(self, field_catalog: Optional[Iterable[FieldInfo]] = None):
        self._catalog_types: Dict[str, str] = {}
        self.update_catalog(field_catalog or [])

        self._handlers: Dict[str, Callable[..., List[Predicate]]] = {
            "equals": self._compile_equals,
            "contains": self._compile_contains,
            "starts_with": self._compile_starts_with,
            "ends_with": self._compile_ends_with,
            "is_empty": self._compile_is_empty,
            "greater_than": self._compile_greater_than,
            "less_than": self._compile_less_than,
            "between": self._compile_between,
            "json_equals": self._compile_json_equals,
            "json_contains": self._compile_json_contains,
            "json_exists": self._compile_json_exists,
            "json_greater_than": self._compile_json_greater_than,
            "json_less_than": self._compile_json_less_than,
        }

    def update_catalog(self, field_catalog: Iterable[FieldInfo]) -> None:
        """Use discovered field types for columns outside the fixed registry."""
        self._catalog_types = {
            info.path: _CATALOG_TYPES.get(info.type, "text")
            for info in field_catalog
            if "." not in info.path
        }

    # Public API

    def compile(
        self,
        groups: Iterable[FilterGroup],
        *,
        owner: Optional[Predicate] = None,
        anomaly_toggles: Iterable[Union[AnomalyToggle, str]] = (),
        thresholds: Optional[PercentileThresholds] = None,
        now: Optional[datetime] = None,
    ) -> List[Predicate]:
        return self.compile_with_report(
            groups,
            owner=owner,
            anomaly_toggles=anomaly_toggles,
            thresholds=thresholds,
            now=now,
        ).predicates

    def compile_with_report(
        self,
        groups: Iterable[FilterGroup],
        *,
        owner: Optional[Predicate] = None,
        anomaly_toggles: Iterable[Union[AnomalyToggle, str]] = (),
        thresholds: Optional[PercentileThresholds] = None,
        now: Optional[datetime] = None,
    ) -> CompilationResult:
        """
        Compile regular filters, anomaly toggles and the owner scope.

        Args:
            groups: Filter groups; flattened and ANDed regardless of logic
            owner: Owner-scope predicate, placed first when given
            anomaly_toggles: Active smart filters
            thresholds: Current p95 thresholds for the toggles
            now: Reference time for relative dates ("today", "yesterday")

        Returns:
            CompilationResult with predicates and dropped rules
        """
        groups = list(groups)
        result = CompilationResult(predicates=[owner] if owner is not None else [])

        for group in groups:
            if group.logic == "OR" and len(group.filters) + len(group.groups) > 1:
                logger.debug(f"Group {group.id} uses OR logic; its rules are ANDed after flattening")

        for rule in flatten_groups(groups):
            try:
                result.predicates.extend(self.compile_rule(rule, now=now))
            except FilterError as e:
                logger.warning(f"Skipping filter rule: {e}")
                result.dropped.append((rule, e))

        result.predicates.extend(self.anomaly_predicates(anomaly_toggles, thresholds))
        return result

    def compile_rule(self, rule: FilterRule, now: Optional[datetime] = None) -> List[Predicate]:
        """Compile one rule, raising a FilterError if it cannot be compiled."""
        handler = self._handlers.get(rule.operation)
        if handler is None:
            raise UnsupportedOperationError(f"Unknown filter operation '{rule.operation}'", rule=rule)

        column_type = self.resolve_column_type(rule)
        column = get_column(rule.column)
        if column is not None and not operation_allowed(column, rule):
            raise UnsupportedOperationError(
                f"Operation '{rule.operation}' is not allowed on {column.type} column '{column.name}'",
                rule=rule,
            )

        if rule.operation not in VALUELESS_OPERATIONS and not rule.value.strip():
            raise ValidationError(f"Operation '{rule.operation}' requires a value", rule=rule)
        if column_type == "jsonb" and not rule.json_field:
            raise ValidationError(f"JSON column '{rule.column}' requires a jsonField", rule=rule)
        if column_type != "jsonb" and rule.json_field:
            raise ValidationError(f"Column '{rule.column}' does not accept a jsonField", rule=rule)

        return handler(rule, column_type, now or datetime.now())

    def anomaly_predicates(
        self,
        toggles: Iterable[Union[AnomalyToggle, str]],
        thresholds: Optional[PercentileThresholds],
    ) -> List[Predicate]:
        """``>= p95`` predicates for the active toggles that have a threshold."""
        if thresholds is None:
            return []
        active = {AnomalyToggle(t) for t in toggles}
        predicates = []
        # Declaration order keeps output stable whatever the toggle set order
        for toggle in AnomalyToggle:
            value = thresholds.for_toggle(toggle)
            if toggle in active and value is not None:
                predicates.append(Predicate(column=ANOMALY_COLUMNS[toggle], operator="gte", value=value))
        return predicates

    def resolve_column_type(self, rule: FilterRule) -> str:
        column = get_column(rule.column)
        if column is not None:
            return column.type
        if rule.column in self._catalog_types:
            return self._catalog_types[rule.column]
        raise ValidationError(f"Unknown column '{rule.column}'", rule=rule)

    # Value helpers

    @staticmethod
    def _text_expression(rule: FilterRule) -> str:
        return ColumnExpression(column=rule.column, json_field=rule.json_field).render()

    @staticmethod
    def _numeric_expression(rule: FilterRule) -> str:
        return ColumnExpression(column=rule.column, json_field=rule.json_field, numeric=True).render()

    @staticmethod
    def _parse_day(raw: str, rule: FilterRule, now: datetime) -> date:
        value = raw.strip().lower()
        if value == "today":
            return now.date()
        if value == "yesterday":
            return now.date() - timedelta(days=1)
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            raise ValidationError(f"Invalid date '{raw}'", rule=rule) from None

    @staticmethod
    def _parse_number(raw: str, rule: FilterRule) -> Number:
        try:
            return int(raw) if _INTEGER.match(raw) else float(raw)
        except ValueError:
            raise ValidationError(f"Invalid number '{raw}'", rule=rule) from None

    def _comparison_value(self, raw: str, rule: FilterRule, column_type: str) -> Union[str, Number]:
        if column_type == "number" and not rule.json_field:
            return self._parse_number(raw.strip(), rule)
        return raw

    def _split_range(self, rule: FilterRule) -> Tuple[str, str]:
        low, sep, high = rule.value.partition(",")
        if not sep or not low.strip() or not high.strip():
            raise ValidationError(f"'between' expects 'low,high', got '{rule.value}'", rule=rule)
        return low.strip(), high.strip()

    # Per-operation compilation

    def _compile_equals(self, rule: FilterRule, column_type: str, now: datetime) -> List[Predicate]:
        if column_type == "date":
            day = self._parse_day(rule.value, rule, now).isoformat()
            return [
                Predicate(column=rule.column, operator="gte", value=f"{day} {DAY_START}"),
                Predicate(column=rule.column, operator="lte", value=f"{day} {DAY_END}"),
            ]
        return [
            Predicate(
                column=self._text_expression(rule),
                operator="equals",
                value=self._comparison_value(rule.value, rule, column_type),
            )
        ]

    def _compile_contains(self, rule: FilterRule, column_type: str, now: datetime) -> List[Predicate]:
        return [Predicate(column=self._text_expression(rule), operator="pattern_match", value=f"%{rule.value}%")]

    def _compile_starts_with(self, rule: FilterRule, column_type: str, now: datetime) -> List[Predicate]:
        return [Predicate(column=self._text_expression(rule), operator="pattern_match", value=f"{rule.value}%")]

    def _compile_ends_with(self, rule: FilterRule, column_type: str, now: datetime) -> List[Predicate]:
        return [Predicate(column=self._text_expression(rule), operator="pattern_match", value=f"%{rule.value}")]

    def _compile_is_empty(self, rule: FilterRule, column_type: str, now: datetime) -> List[Predicate]:
        return [Predicate(column=self._text_expression(rule), operator="is_null", value=None)]

    def _compile_greater_than(self, rule: FilterRule, column_type: str, now: datetime) -> List[Predicate]:
        if column_type == "date":
            # Day granular: "after D" means from the start of D + 1
            next_day = (self._parse_day(rule.value, rule, now) + timedelta(days=1)).isoformat()
            return [Predicate(column=rule.column, operator="gte", value=f"{next_day} {DAY_START}")]
        return [
            Predicate(
                column=self._text_expression(rule),
                operator="gt",
                value=self._comparison_value(rule.value, rule, column_type),
            )
        ]

    def _compile_less_than(self, rule: FilterRule, column_type: str, now: datetime) -> List[Predicate]:
        if column_type == "date":
            day = self._parse_day(rule.value, rule, now).isoformat()
            return [Predicate(column=rule.column, operator="lt", value=f"{day} {DAY_START}")]
        return [
            Predicate(
                column=self._text_expression(rule),
                operator="lt",
                value=self._comparison_value(rule.value, rule, column_type),
            )
        ]

    def _compile_between(self, rule: FilterRule, column_type: str, now: datetime) -> List[Predicate]:
        low, high = self._split_range(rule)
        if column_type == "date":
            start = self._parse_day(low, rule, now).isoformat()
            end = self._parse_day(high, rule, now).isoformat()
            return [
                Predicate(column=rule.column, operator="gte", value=f"{start} {DAY_START}"),
                Predicate(column=rule.column, operator="lte", value=f"{end} {DAY_END}"),
            ]
        column = self._text_expression(rule)
        return [
            Predicate(column=column, operator="gte", value=self._comparison_value(low, rule, column_type)),
            Predicate(column=column, operator="lte", value=self._comparison_value(high, rule, column_type)),
        ]

    def _compile_json_equals(self, rule: FilterRule, column_type: str, now: datetime) -> List[Predicate]:
        return [Predicate(column=self._text_expression(rule), operator="equals", value=rule.value)]

    def _compile_json_contains(self, rule: FilterRule, column_type: str, now: datetime) -> List[Predicate]:
        return [Predicate(column=self._text_expression(rule), operator="pattern_match", value=f"%{rule.value}%")]

    def _compile_json_exists(self, rule: FilterRule, column_type: str, now: datetime) -> List[Predicate]:
        return [Predicate(column=self._text_expression(rule), operator="not_null", value=None)]

    def _json_numeric(self, rule: FilterRule, operator: str) -> List[Predicate]:
        value = parse_leading_float(rule.value)
        if value is None:
            # A NULL comparison value never matches; the rule is kept, not rejected
            logger.warning(f"Non-numeric value '{rule.value}' for {rule.operation} on {rule.column}.{rule.json_field}")
        return [Predicate(column=self._numeric_expression(rule), operator=operator, value=value)]

    def _compile_json_greater_than(self, rule: FilterRule, column_type: str, now: datetime) -> List[Predicate]:
        return self._json_numeric(rule, "gt")

    def _compile_json_less_than(self, rule: FilterRule, column_type: str, now: datetime) -> List[Predicate]:
        return self._json_numeric(rule, "lt")
