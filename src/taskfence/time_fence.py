"""Edit-after-trigger defence.

Everything fetched for a run is compared against one trigger instant T: an
item created after T, or edited after T, is treated as if it did not exist.
Without T (automation paths with no single human trigger) everything is kept.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import TypeVar

from taskfence.models import IssueData, PullRequestData, Review

logger = logging.getLogger(__name__)

ItemT = TypeVar("ItemT")
EntityT = TypeVar("EntityT", IssueData, PullRequestData)


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def is_within_fence(
    created_at: datetime | None,
    last_edited_at: datetime | None,
    trigger_time: datetime | None,
) -> bool:
    """True iff content with these timestamps existed unchanged at ``trigger_time``."""
    if trigger_time is None:
        return True
    t = _aware(trigger_time)
    if created_at is None or _aware(created_at) > t:
        return False
    return last_edited_at is None or _aware(last_edited_at) <= t


def filter_comments_to_trigger_time(
    items: Sequence[ItemT], trigger_time: datetime | None
) -> list[ItemT]:
    """Keep items created and last edited at or before ``trigger_time``.

    Works on anything with a ``created_at``; ``last_edited_at`` is optional
    (cross-reference and commit-reference events have none).
    """
    if trigger_time is None:
        return list(items)
    return [
        item
        for item in items
        if is_within_fence(
            getattr(item, "created_at", None),
            getattr(item, "last_edited_at", None),
            trigger_time,
        )
    ]


def filter_reviews_to_trigger_time(
    reviews: Sequence[Review], trigger_time: datetime | None
) -> list[Review]:
    """Same rule as comments, with ``submitted_at`` as the creation instant.

    Pending reviews (never submitted) are dropped once a trigger time is set.
    """
    if trigger_time is None:
        return list(reviews)
    return [
        review
        for review in reviews
        if is_within_fence(review.submitted_at, review.last_edited_at, trigger_time)
    ]


def is_body_safe_to_use(entity: IssueData, trigger_time: datetime | None) -> bool:
    if trigger_time is None or entity.last_edited_at is None:
        return True
    return _aware(entity.last_edited_at) <= _aware(trigger_time)


def apply_time_fence(entity: EntityT, trigger_time: datetime | None) -> EntityT:
    """Return a copy of ``entity`` holding only content that existed at ``trigger_time``.

    Applies to the body, every timeline item, every review and the comments
    of every review that survives.
    """
    if trigger_time is None:
        return entity

    update: dict = {}

    if not is_body_safe_to_use(entity, trigger_time):
        logger.warning(
            "Body of #%d was edited after the trigger time (%s); excluding it",
            entity.number,
            trigger_time.isoformat(),
        )
        update["body"] = ""
        update["body_html"] = ""

    timeline = entity.timeline_items.nodes
    kept_timeline = filter_comments_to_trigger_time(timeline, trigger_time)
    if len(kept_timeline) != len(timeline):
        logger.warning(
            "Excluded %d timeline item(s) created or edited after the trigger time",
            len(timeline) - len(kept_timeline),
        )
    update["timeline_items"] = entity.timeline_items.model_copy(update={"nodes": kept_timeline})

    if isinstance(entity, PullRequestData):
        reviews = entity.reviews.nodes
        kept_reviews = []
        for review in filter_reviews_to_trigger_time(reviews, trigger_time):
            comments = review.comments.nodes
            kept_comments = filter_comments_to_trigger_time(comments, trigger_time)
            if len(kept_comments) != len(comments):
                logger.warning(
                    "Excluded %d comment(s) of review %s created or edited after the trigger time",
                    len(comments) - len(kept_comments),
                    review.database_id or review.id,
                )
            kept_reviews.append(
                review.model_copy(
                    update={"comments": review.comments.model_copy(update={"nodes": kept_comments})}
                )
            )
        if len(kept_reviews) != len(reviews):
            logger.warning(
                "Excluded %d review(s) submitted or edited after the trigger time",
                len(reviews) - len(kept_reviews),
            )
        update["reviews"] = entity.reviews.model_copy(update={"nodes": kept_reviews})

    return entity.model_copy(update=update)
