"""Entity aggregation and extraction."""

from .aggregator import EntityAggregator, fold_average, identity_key, identity_keys, rank_entities
from .extraction import EntityExtractor, normalize_entity_type
from .insights import mention_frequency, sentiment_trend, signal_insights, summarize_entity, trend_insight

__all__ = [
    "EntityAggregator",
    "fold_average",
    "identity_key",
    "identity_keys",
    "rank_entities",
    "EntityExtractor",
    "normalize_entity_type",
    "mention_frequency",
    "sentiment_trend",
    "signal_insights",
    "summarize_entity",
    "trend_insight",
]
