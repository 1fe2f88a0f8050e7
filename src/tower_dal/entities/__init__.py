"""Domain entities backed by store documents.

Each entity loads lazily from its `Reference` or is built from data a
query already returned. Relationships are exposed as reference-only
entities sharing the parent's client.
"""

from tower_dal.entities.base import DocumentModel, LazyEntity, Timestamp, contains_ref, remove_ref
from tower_dal.entities.grades import (
    RouteClassifier,
    RouteStatus,
    RouteTech,
    RouteType,
    all_classifiers,
)
from tower_dal.entities.tag import Tag
from tower_dal.entities.user import User, UserStatus
from tower_dal.entities.forum import Forum
from tower_dal.entities.post import Post
from tower_dal.entities.comment import Comment
from tower_dal.entities.route import Route
from tower_dal.entities.send import Send
from tower_dal.entities.report import Report, Reportable
from tower_dal.entities.mod_action import ModAction

__all__ = [
    "Comment",
    "DocumentModel",
    "Forum",
    "LazyEntity",
    "ModAction",
    "Post",
    "Report",
    "Reportable",
    "Route",
    "RouteClassifier",
    "RouteStatus",
    "RouteTech",
    "RouteType",
    "Send",
    "Tag",
    "Timestamp",
    "User",
    "UserStatus",
    "all_classifiers",
    "contains_ref",
    "remove_ref",
]
