"""Context types for paged reads.

Contexts carry state needed to resume reading from a specific position.
They only track *where* to resume, not *how much* to read (that's the
cursor's page size).
"""

from typing import Any

from pydantic import BaseModel


class PageContext(BaseModel, frozen=True):
    """Context for paged collection queries.

    Uses marker-based pagination (last seen key), which maps directly onto
    Firestore's `start_after` and onto keyset pagination in other stores.
    """

    start_after: Any = None
    """Pagination key of the last document already read, if any."""

    @property
    def is_initial(self) -> bool:
        """Whether this context points at the start of the result set."""
        return self.start_after is None
