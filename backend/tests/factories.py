"""
Factories for test content and interactions.
"""

from datetime import datetime, timedelta
from typing import Optional

from personalization.models.domain import (
    ActualOutcome,
    ContentItem,
    ContentMetrics,
    ContentSource,
    ContentSummary,
    Interaction,
    InteractionRecord,
    InteractionType,
    Prediction,
    RecordedInteraction,
    RelevanceBreakdown,
)


# Fixed reference time for recency, decay and cooldown checks
NOW = datetime(2024, 6, 1, 12, 0, 0)


def make_content(
    content_id: str = "content-1",
    title: str = "Sample article",
    topics: Optional[list[str]] = None,
    categories: Optional[list[str]] = None,
    source_type: Optional[str] = None,
    age: Optional[timedelta] = None,
    source_name: Optional[str] = None,
    credibility: Optional[float] = None,
    metrics: Optional[ContentMetrics] = None,
    **extra,
) -> ContentItem:
    """
    Create a content item for testing.

    Args:
        age: Publication age relative to NOW; no publication date when omitted
        source_name: Publisher name; no source when omitted and credibility is None
    """
    source = None
    if source_name is not None or credibility is not None:
        source = ContentSource(name=source_name, credibility_score=credibility)
    return ContentItem(
        id=content_id,
        title=title,
        topics=topics or [],
        categories=categories or [],
        source_type=source_type,
        published_at=NOW - age if age is not None else None,
        source=source,
        metrics=metrics,
        **extra,
    )


def make_interaction(
    interaction_type: InteractionType | str = InteractionType.CLICK,
    timestamp: datetime = NOW,
    **extra,
) -> Interaction:
    return Interaction(type=interaction_type, timestamp=timestamp, **extra)


def make_record(
    predicted: int,
    engagement: float,
    topic: str = "AI",
    published_at: Optional[datetime] = None,
    quality: float = 0.5,
    timestamp: datetime = NOW,
) -> InteractionRecord:
    """An interaction record with a chosen prediction and observed engagement."""
    return InteractionRecord(
        timestamp=timestamp,
        interaction=RecordedInteraction(type=InteractionType.VIEW, engagement=engagement),
        content=ContentSummary(
            id=f"c-{topic}",
            topics=[topic],
            categories=["tech"],
            source_type="news",
            published_at=published_at or NOW - timedelta(days=3),
        ),
        prediction=Prediction(
            relevance_score=predicted,
            confidence=0.5,
            breakdown=RelevanceBreakdown(
                topic_score=0.5,
                category_score=0.5,
                source_type_score=0.5,
                recency_score=0.5,
                quality_score=quality,
            ),
        ),
        actual=ActualOutcome(user_engagement=engagement, satisfaction=0.5),
    )


async def fill(learner, user_id: str, records: list[InteractionRecord]) -> None:
    """Append records straight into a learner's buffer."""
    for record in records:
        await learner.repository.append(user_id, record, learner.learning_config.evaluation_window)
