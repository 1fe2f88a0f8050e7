"""Query types for collection reads.

A `Query` defines *what* a cursor reads (collection, filters, ordering),
while `PageContext` carries *where* to resume and the page size lives on
the cursor itself.
"""

from enum import Enum
from typing import Any, Self

from pydantic import BaseModel


class FilterOp(str, Enum):
    """Comparison operator for a field filter."""

    EQUAL = "=="
    NOT_EQUAL = "!="
    LESS_THAN = "<"
    LESS_THAN_OR_EQUAL = "<="
    GREATER_THAN = ">"
    GREATER_THAN_OR_EQUAL = ">="

    IN = "in"
    """Field equals one of the values in a list."""

    NOT_IN = "not-in"
    """Field equals none of the values in a list."""

    ARRAY_CONTAINS = "array-contains"
    """Array field contains the value."""

    ARRAY_CONTAINS_ANY = "array-contains-any"
    """Array field contains at least one of the values in a list."""


class Direction(str, Enum):
    """Sort direction for an ordering clause."""

    ASCENDING = "asc"
    DESCENDING = "desc"


class Filter(BaseModel, frozen=True):
    """A single field condition."""

    field: str
    op: FilterOp
    value: Any


class Ordering(BaseModel, frozen=True):
    """A single ordering clause."""

    field: str
    direction: Direction = Direction.ASCENDING


class Query(BaseModel, frozen=True):
    """An immutable collection query: filters plus ordering."""

    collection: str
    """Collection path to read from."""

    filters: tuple[Filter, ...] = ()
    """Conditions every result must satisfy (combined with AND)."""

    order_by: tuple[Ordering, ...] = ()
    """Ordering clauses; the document id is always the final tiebreaker."""

    def where(self, field: str, op: FilterOp | str, value: Any) -> Self:
        """Return a copy of this query with an extra filter."""
        condition = Filter(field=field, op=FilterOp(op), value=value)
        return self.model_copy(update={"filters": (*self.filters, condition)})

    def ordered(
        self,
        field: str,
        direction: Direction | str = Direction.ASCENDING,
    ) -> Self:
        """Return a copy of this query with an extra ordering clause."""
        clause = Ordering(field=field, direction=Direction(direction))
        return self.model_copy(update={"order_by": (*self.order_by, clause)})
