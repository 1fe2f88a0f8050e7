"""Post feeds assembled from one or more paginated queries."""

import logging

from tower_dal.client import Client
from tower_dal.cursors import MergeCursor, QueryCursor
from tower_dal.entities.post import Post
from tower_dal.entities.user import User
from tower_dal.schema.params import Direction, FilterOp, Query

logger = logging.getLogger(__name__)


def all_posts_cursor(client: Client) -> QueryCursor[Post]:
    """Every post, newest first."""
    query = Query(collection=Post.collection).ordered("timestamp", Direction.DESCENDING)
    return QueryCursor(client, Post, query, client.settings.default_page_size)


async def following_feed(client: Client, user: User) -> MergeCursor[Post]:
    """Posts by the users `user` follows, newest first.

    An `in` filter accepts a limited number of values, so the following
    list is split into slices of `settings.feed_slice_size`, each read by
    its own cursor, and the cursors are merged by timestamp.
    """
    following = await user.get_following()
    references = [followed.reference for followed in following if followed.reference is not None]
    size = client.settings.feed_slice_size
    cursors = [
        QueryCursor(
            client,
            Post,
            Query(collection=Post.collection)
            .where("author", FilterOp.IN, references[start : start + size])
            .ordered("timestamp", Direction.DESCENDING),
            client.settings.default_page_size,
        )
        for start in range(0, len(references), size)
    ]
    logger.debug("Following feed for %s merges %d queries", user.reference, len(cursors))
    return MergeCursor(cursors)
