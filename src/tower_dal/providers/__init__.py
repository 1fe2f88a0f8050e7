"""Document store implementations.

Each provider module exports a `Provider` class alias for the main store
class, along with its credentials and params types.

Available providers:
- memory: in-process store for development and tests (no extra dependencies)
- firestore: Google Cloud Firestore (requires the `firestore` extra); import
  it explicitly with `from tower_dal.providers import firestore`
"""

from tower_dal.providers import memory

__all__ = [
    "memory",
]
