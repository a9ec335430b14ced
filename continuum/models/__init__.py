"""Data models for Continuum."""

from .threads import Thread, Message, SharedUser
from .reports import ReportRevision, UsageLedger, UsageOperation
from .entities import (
    Entity,
    EntityKey,
    EntityMention,
    AggregatedEntity,
    ENTITY_TYPES,
    SentimentTrend,
    MentionFrequency,
    EntityInsight,
    EntityDigest,
)
from .plans import (
    SessionPolicy,
    EnhancementPlan,
    CompressionResult,
    MaybeCompressResult,
    EnhancementResult,
)

__all__ = [
    "Thread",
    "Message",
    "SharedUser",
    "ReportRevision",
    "UsageLedger",
    "UsageOperation",
    "Entity",
    "EntityKey",
    "EntityMention",
    "AggregatedEntity",
    "ENTITY_TYPES",
    "SentimentTrend",
    "MentionFrequency",
    "EntityInsight",
    "EntityDigest",
    "SessionPolicy",
    "EnhancementPlan",
    "CompressionResult",
    "MaybeCompressResult",
    "EnhancementResult",
]
