"""Filter and sort parameters for List queries."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

OPERATORS = frozenset({"=", "<", ">", "!=", "<=", ">=", "in", "nin"})


@dataclass(frozen=True)
class Filter:
    """A single ``{field, op, value}`` predicate."""

    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in OPERATORS:
            raise ValueError(
                f"Unsupported filter operator {self.op!r}; "
                f"expected one of {sorted(OPERATORS)}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "op": self.op, "value": self.value}


@dataclass(frozen=True)
class Sort:
    """Sort key. Bill.com encodes direction as ``asc`` = 1 or 0."""

    field: str
    ascending: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "asc": 1 if self.ascending else 0}


class Parameters:
    """Builder for the filters and sorts of a List query.

    Not every field can be filtered; see the Bill.com List documentation.

    Example:
        params = Parameters().add_filter("isActive", "=", "1").add_sort("amountDue")
    """

    def __init__(self) -> None:
        """Initialize an empty parameter set."""
        self.filters: list[Filter] = []
        self.sorts: list[Sort] = []

    def add_filter(self, field: str, operator: str, value: Any) -> Parameters:
        """Add a filter.

        Args:
            field: Field name (camelCase, as in the API)
            operator: One of ``= < > != <= >= in nin``
            value: Value to compare against

        Returns:
            This parameter set, for chaining

        Raises:
            ValueError: If the operator is not supported
        """
        self.filters.append(Filter(field, operator, value))
        return self

    def add_sort(self, field: str, ascending: bool = True) -> Parameters:
        """Add a sort key. Keys apply in the order they are added."""
        self.sorts.append(Sort(field, ascending))
        return self

    def copy(self) -> Parameters:
        """Return an independent copy."""
        params = Parameters()
        params.filters = list(self.filters)
        params.sorts = list(self.sorts)
        return params

    def __repr__(self) -> str:
        return f"Parameters(filters={self.filters!r}, sorts={self.sorts!r})"
