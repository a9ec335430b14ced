"""
Entity models for Continuum.

This module defines the deduplicated real-world subjects tracked across
reports and messages, and the individual mentions that feed them.
"""

from typing import List, Literal, Optional, Tuple
from datetime import datetime
from pydantic import BaseModel, Field


EntityType = Literal["company", "asset", "person", "sector", "other"]
ENTITY_TYPES: Tuple[str, ...] = ("company", "asset", "person", "sector", "other")
SourceType = Literal["report", "message"]


class Entity(BaseModel):
    """
    Represents a deduplicated entity (company, asset, person, etc.).
    """

    entity_id: str = Field(..., description="Primary key")

    name: str = Field(
        ...,
        description="The canonical name of the entity"
    )

    slug: str = Field(
        ...,
        description="URL-safe identifier, unique per (name, type)"
    )

    entity_type: EntityType = Field(
        ...,
        description="The classified type"
    )

    ticker: Optional[str] = Field(
        None,
        description="Upper-case market symbol, unique across entities"
    )

    mention_count: int = Field(0, ge=0)
    sentiment_score: Optional[float] = Field(None, ge=-1.0, le=1.0)
    sentiment_samples: int = Field(0, ge=0)
    relevance_score: Optional[float] = Field(None, ge=0.0, le=1.0)
    relevance_samples: int = Field(0, ge=0)
    first_mentioned: Optional[datetime] = None
    last_mentioned: Optional[datetime] = None


class EntityKey(BaseModel):
    """
    What is known about an entity before it is resolved.
    """

    name: Optional[str] = None
    entity_type: Optional[EntityType] = None
    ticker: Optional[str] = None


class EntityMention(BaseModel):
    """
    Represents one occurrence of an entity inside a report or message.
    """

    mention_id: Optional[str] = Field(
        None,
        description="Primary key, assigned when the mention is recorded"
    )

    entity_id: Optional[str] = Field(
        None,
        description="Resolved entity, if known"
    )

    name: Optional[str] = Field(None, description="Entity name as written in the source")
    entity_type: Optional[EntityType] = None
    ticker: Optional[str] = None

    source_id: Optional[str] = Field(
        None,
        description="The report revision or message the mention came from"
    )

    source_type: SourceType = "report"
    thread_id: Optional[str] = None
    sentiment: Optional[float] = Field(None, ge=-1.0, le=1.0)
    relevance: Optional[float] = Field(None, ge=0.0, le=1.0)
    context: str = Field("", description="Snippet surrounding the mention")
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def key(self) -> EntityKey:
        return EntityKey(name=self.name, entity_type=self.entity_type, ticker=self.ticker)

    @property
    def mention_type(self) -> str:
        """Primary mentions are the ones the source is mostly about."""
        if self.relevance is not None and self.relevance > 0.7:
            return "primary"
        return "secondary"


class AggregatedEntity(BaseModel):
    """
    The folded view of every mention of one entity in a batch.
    """

    entity_id: Optional[str] = None
    name: Optional[str] = None
    entity_type: Optional[EntityType] = None
    ticker: Optional[str] = None
    mention_count: int = 0
    sentiment: Optional[float] = None
    sentiment_samples: int = 0
    relevance: Optional[float] = None
    relevance_samples: int = 0

    first_seen: int = Field(
        0,
        description="Index of the first mention of this entity in the input"
    )

    source_ids: List[str] = Field(default_factory=list)


class SentimentTrend(BaseModel):
    """
    Sentiment of an entity's recent mentions.
    """

    average: Optional[float] = Field(None, description="Mean sentiment of scored mentions in the window")
    samples: int = Field(0, ge=0, description="Scored mentions in the window")

    change: float = Field(
        0.0,
        description="Mean of the newer half minus mean of the older half"
    )


class MentionFrequency(BaseModel):
    """
    How often an entity was mentioned lately.
    """

    last_day: int = 0
    last_week: int = 0
    previous_week: int = 0

    @property
    def change(self) -> int:
        return self.last_week - self.previous_week


InsightType = Literal["trend", "risk", "opportunity"]


class EntityInsight(BaseModel):
    """
    A short observation derived from an entity's mentions.
    """

    insight_type: InsightType
    title: str
    content: str
    priority: Literal["low", "medium", "high"] = "medium"
    confidence: float = Field(0.7, ge=0.0, le=1.0)

    mention_ids: List[str] = Field(
        default_factory=list,
        description="Mentions the insight was drawn from"
    )


class EntityDigest(BaseModel):
    """
    Everything known about one entity, summarized for display.
    """

    entity: Entity
    summary: str
    sentiment: SentimentTrend
    frequency: MentionFrequency
    insights: List[EntityInsight] = Field(default_factory=list)
