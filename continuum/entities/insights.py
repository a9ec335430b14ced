"""
Entity digests for Continuum.

Summarizes the recorded mentions of one entity: recent sentiment and how
it is moving, how often the entity comes up, and short trend, risk and
opportunity insights.
"""

import math
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from ..config import config
from ..models import (
    Entity,
    EntityDigest,
    EntityInsight,
    EntityMention,
    MentionFrequency,
    SentimentTrend,
)

TREND_MIN_MENTIONS = 5
STRONG_SENTIMENT = 0.5
SIGNAL_SENTIMENT = 0.3
SIGNAL_MIN_MENTIONS = 2


def sentiment_trend(mentions: Sequence[EntityMention]) -> SentimentTrend:
    """
    Average the scored mentions and compare the newer half with the older half.

    Args:
        mentions: Mentions in the order they were recorded

    Returns:
        The sentiment trend; change is 0.0 with fewer than two scores
    """
    scores = [m.sentiment for m in reversed(mentions) if m.sentiment is not None]
    if not scores:
        return SentimentTrend()

    average = sum(scores) / len(scores)
    if len(scores) < 2:
        return SentimentTrend(average=average, samples=1)

    split = math.ceil(len(scores) / 2)
    newer, older = scores[:split], scores[split:]
    change = sum(newer) / len(newer) - sum(older) / len(older)
    return SentimentTrend(average=average, samples=len(scores), change=change)


def mention_frequency(mentions: Sequence[EntityMention], now: datetime) -> MentionFrequency:
    """Count mentions in the last day, the last week and the week before."""
    day_ago = now - timedelta(days=1)
    week_ago = now - timedelta(days=7)
    two_weeks_ago = now - timedelta(days=14)

    return MentionFrequency(
        last_day=sum(1 for m in mentions if m.created_at >= day_ago),
        last_week=sum(1 for m in mentions if m.created_at >= week_ago),
        previous_week=sum(1 for m in mentions if two_weeks_ago <= m.created_at < week_ago)
    )


def trend_insight(entity: Entity, trend: SentimentTrend, mention_count: int) -> Optional[EntityInsight]:
    """
    Describe the direction and strength of an entity's sentiment.

    Needs at least five recent mentions and one sentiment score.
    """
    if mention_count < TREND_MIN_MENTIONS or trend.average is None:
        return None

    direction = "positive" if trend.average > 0 else "negative"
    strong = abs(trend.average) > STRONG_SENTIMENT
    strength = "strong" if strong else "moderate"

    return EntityInsight(
        insight_type="trend",
        title=f"{strength.capitalize()} {direction} trend",
        content=(
            f"{entity.name} shows a {strength} {direction} sentiment trend with an average "
            f"score of {trend.average:.2f} across {mention_count} recent mentions."
        ),
        priority="high" if strong else "medium",
        confidence=0.7
    )


def signal_insights(entity: Entity, mentions: Sequence[EntityMention]) -> List[EntityInsight]:
    """
    Flag clusters of clearly negative or clearly positive mentions.

    Args:
        entity: The entity
        mentions: Recent mentions

    Returns:
        A risk insight, an opportunity insight, both or neither
    """
    negative = [m for m in mentions if m.sentiment is not None and m.sentiment < -SIGNAL_SENTIMENT]
    positive = [m for m in mentions if m.sentiment is not None and m.sentiment > SIGNAL_SENTIMENT]

    insights = []
    for insight_type, group, tone, priority in (
        ("risk", negative, "negative", "high"),
        ("opportunity", positive, "positive", "medium"),
    ):
        if len(group) < SIGNAL_MIN_MENTIONS:
            continue
        contexts = [m.context.strip() for m in group if m.context.strip()]
        content = f"{len(group)} recent mentions of {entity.name} are clearly {tone}."
        if contexts:
            content += " " + " / ".join(contexts[:3])
        insights.append(EntityInsight(
            insight_type=insight_type,
            title=f"{insight_type.capitalize()} signals for {entity.name}",
            content=content,
            priority=priority,
            confidence=0.7,
            mention_ids=[m.mention_id for m in group if m.mention_id]
        ))
    return insights


def summarize_entity(entity: Entity, mentions: Sequence[EntityMention],
                     now: Optional[datetime] = None,
                     window_days: Optional[int] = None) -> EntityDigest:
    """
    Build the digest of one entity.

    Args:
        entity: The entity
        mentions: All its recorded mentions, oldest first
        now: Reference time (defaults to the current time)
        window_days: Days of mentions feeding the trend (defaults to config value)

    Returns:
        The entity digest
    """
    now = now or datetime.now()
    window_days = window_days if window_days is not None else config.trend_window_days
    recent = [m for m in mentions if m.created_at >= now - timedelta(days=window_days)]

    trend = sentiment_trend(recent)
    insights = []
    trend_note = trend_insight(entity, trend, len(recent))
    if trend_note:
        insights.append(trend_note)
    insights.extend(signal_insights(entity, recent))

    return EntityDigest(
        entity=entity,
        summary=f"{entity.name} is a {entity.entity_type} that has been mentioned {entity.mention_count} times.",
        sentiment=trend,
        frequency=mention_frequency(mentions, now),
        insights=insights
    )
