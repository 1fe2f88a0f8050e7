"""Value types shared by stores, entities and cursors."""

from tower_dal.schema.contexts import PageContext
from tower_dal.schema.datatypes import (
    SERVER_TIMESTAMP,
    ArrayRemove,
    ArrayUnion,
    DocumentData,
    DocumentSnapshot,
    Increment,
    Reference,
    ServerTimestamp,
)
from tower_dal.schema.params import Direction, Filter, FilterOp, Ordering, Query

__all__ = [
    # Contexts (runtime state)
    "PageContext",
    # Queries (configuration)
    "Direction",
    "Filter",
    "FilterOp",
    "Ordering",
    "Query",
    # Data types
    "DocumentData",
    "DocumentSnapshot",
    "Reference",
    # Field transforms
    "SERVER_TIMESTAMP",
    "ArrayRemove",
    "ArrayUnion",
    "Increment",
    "ServerTimestamp",
]
