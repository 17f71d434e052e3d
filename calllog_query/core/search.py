"""Search query parsing for the call-log search box.

Supports queries like:
    - ``customer_number:+1555``        field equals value
    - ``duration_seconds:>300``        field greater than value
    - ``avg_latency:<2000``            field less than value
    - ``metadata.intent:billing``      JSON subkey equals value
    - ``"exact phrase"``               exact match in every scoped field
    - ``refund``                       substring match in every scoped field
    - ``refund OR cancel``             switch the whole query to OR logic
"""

import logging
import re
from typing import Dict, List, Optional, Sequence, Union

from ..models.filters import TEXT_COLUMNS, FilterGroup, FilterRule, get_column
from ..models.query_models import SearchQuery

logger = logging.getLogger(__name__)

# A token is a run of non-space characters where quoted sections may contain spaces
_TOKEN = re.compile(r"""(?:[^\s"']+|"[^"]*"|'[^']*'|["'])+""")
_FIELD_TOKEN = re.compile(
    r"^(?P<field>[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z0-9_]+)?):(?P<op>!=|>|<)?(?P<value>.*)$"
)

_OPERATOR_MAP = {
    None: "equals",
    ">": "greater_than",
    "<": "less_than",
    "!=": "not_equals",
}


def _strip_quotes(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def _is_quoted(token: str) -> bool:
    return len(token) >= 2 and token[0] == token[-1] and token[0] in ("'", '"')


class SearchDSLParser:
    """Turn a search-box string into a single :class:`FilterGroup`.

    Field-qualified terms become rules on their own; every unqualified
    term is expanded over the field scope and the expansion is kept in a
    nested OR group. Unknown field names are not rejected here: the
    compiler drops whatever it cannot compile.
    """

    def __init__(self, default_fields: Sequence[str] = TEXT_COLUMNS):
        self.default_fields = tuple(default_fields)

    def tokenize(self, text: str) -> List[str]:
        return _TOKEN.findall(text or "")

    def parse(
        self,
        text: str,
        fields: Union[str, Sequence[str]] = "all",
        *,
        exact_match: bool = False,
    ) -> FilterGroup:
        """
        Parse search text into a filter group.

        Args:
            text: Raw search-box text
            fields: ``"all"`` or the explicit list of fields to search
            exact_match: Match unqualified terms by equality instead of substring

        Returns:
            A FilterGroup; empty input yields an empty AND group
        """
        tokens = self.tokenize(text)
        if not tokens:
            return FilterGroup()

        logic = "AND"
        rules: List[FilterRule] = []
        expansions: List[FilterGroup] = []

        for token in tokens:
            if token == "OR":
                logic = "OR"
                continue
            if token == "AND":
                continue

            match = None if _is_quoted(token) else _FIELD_TOKEN.match(token)
            if match:
                rules.append(self._field_rule(match))
                continue

            phrase = _is_quoted(token)
            term = _strip_quotes(token)
            if not term or term in ("'", '"'):
                continue
            expanded = self._expand_term(term, fields, exact=exact_match or phrase)
            if len(expanded) == 1:
                rules.extend(expanded)
            elif expanded:
                expansions.append(FilterGroup(logic="OR", filters=expanded))

        logger.debug(f"Parsed search {text!r} into {len(rules)} rules and {len(expansions)} OR groups")
        return FilterGroup(logic=logic, filters=rules, groups=expansions)

    def parse_query(self, query: SearchQuery) -> FilterGroup:
        fields = "all" if query.scope_is_all else query.fields
        return self.parse(query.text, fields, exact_match=query.exact_match)

    def _field_rule(self, match: "re.Match[str]") -> FilterRule:
        field = match.group("field")
        column, _, json_field = field.partition(".")
        return FilterRule(
            column=column,
            operation=_OPERATOR_MAP[match.group("op")],
            value=_strip_quotes(match.group("value")),
            json_field=json_field or None,
        )

    def _expand_term(
        self, term: str, fields: Union[str, Sequence[str]], exact: bool
    ) -> List[FilterRule]:
        if isinstance(fields, str):
            fields = [fields]
        if not fields or "all" in fields:
            scope: Sequence[str] = self.default_fields
        else:
            scope = fields

        rules = []
        for field in scope:
            column, _, json_field = field.partition(".")
            descriptor = get_column(column)
            if json_field:
                operation = "json_equals" if exact else "json_contains"
            elif exact or (descriptor is not None and descriptor.type != "text"):
                # Substring match is for text columns only
                operation = "equals"
            else:
                operation = "contains"
            rules.append(
                FilterRule(
                    column=column,
                    operation=operation,
                    value=term,
                    json_field=json_field or None,
                )
            )
        return rules


# Rendering rules back into search text

_RENDER_OPERATORS = {
    "greater_than": ">",
    "json_greater_than": ">",
    "less_than": "<",
    "json_less_than": "<",
    "not_equals": "!=",
}


def rules_to_query_string(rules: Sequence[FilterRule]) -> str:
    """Build a search-box string that describes ``rules``."""
    parts = []
    for rule in rules:
        field = f"{rule.column}.{rule.json_field}" if rule.json_field else rule.column
        operator = _RENDER_OPERATORS.get(rule.operation, "")
        value = f'"{rule.value}"' if " " in rule.value else rule.value
        parts.append(f"{field}:{operator}{value}")
    return " AND ".join(parts)


def search_suggestions(partial: str, available_fields: Sequence[str], limit: int = 5) -> List[str]:
    """Completions for a partially typed query."""
    suggestions: List[str] = []
    if ":" in partial:
        field = partial.split(":", 1)[0]
        if any(f.startswith(field) for f in available_fields):
            suggestions.extend([f"{field}:value", f"{field}:>100", f"{field}:<100"])
    else:
        needle = partial.lower()
        suggestions.extend(f"{f}:" for f in available_fields if needle in f.lower())
    return suggestions[:limit]


QUICK_FILTERS: Dict[str, Dict[str, object]] = {
    "long-calls": {
        "label": "Long calls (>5 min)",
        "description": "Calls longer than 5 minutes",
        "query": SearchQuery(text="duration_seconds:>300", fields=["duration_seconds"]),
    },
    "high-latency": {
        "label": "High latency (>2s)",
        "description": "Calls with average latency over 2 seconds",
        "query": SearchQuery(text="avg_latency:>2000", fields=["avg_latency"]),
    },
    "completed-calls": {
        "label": "Completed calls",
        "description": "Successfully completed calls",
        "query": SearchQuery(text="call_ended_reason:completed", fields=["call_ended_reason"]),
    },
}


def quick_filter(filter_id: str) -> Optional[SearchQuery]:
    preset = QUICK_FILTERS.get(filter_id)
    return preset["query"] if preset else None  # type: ignore[return-value]
