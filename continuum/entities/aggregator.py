"""
Entity aggregation for Continuum.

Many extraction passes mention the same company or asset. This module folds
those mentions into one record per entity and resolves bare mentions
against the entity store.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from ..errors import ConflictRetryable, InvalidMention, NotFound
from ..models import AggregatedEntity, Entity, EntityDigest, EntityKey, EntityMention
from .insights import summarize_entity


def fold_average(average: Optional[float], samples: int, value: Optional[float]) -> Tuple[Optional[float], int]:
    """
    Fold one value into a running average.

    Args:
        average: Current average, None before the first sample
        samples: Number of values already folded in
        value: New value; None leaves the average untouched

    Returns:
        Tuple of (new average, new sample count)
    """
    if value is None:
        return average, samples
    if average is None or samples == 0:
        return float(value), 1
    return (average * samples + value) / (samples + 1), samples + 1


def identity_keys(mention: EntityMention) -> List[Tuple[str, ...]]:
    """
    Get every key a mention can be grouped under.

    A resolved mention is identified by its entity id alone. An unresolved
    one matches by folded name within its type and, when it has one, by
    ticker, so "Apple" with AAPL and a bare "apple" land in one group.

    Args:
        mention: The mention

    Returns:
        ("id", entity_id), or ("name", folded name, type) and/or ("ticker", TICKER)

    Raises:
        InvalidMention: If the mention cannot identify an entity
    """
    if mention.entity_id:
        return [("id", mention.entity_id)]

    keys: List[Tuple[str, ...]] = []
    if mention.name and mention.name.strip() and mention.entity_type:
        keys.append(("name", mention.name.strip().casefold(), mention.entity_type))
    if mention.ticker and mention.ticker.strip():
        keys.append(("ticker", mention.ticker.strip().upper()))
    if not keys:
        raise InvalidMention(
            f"Mention from {mention.source_id or 'unknown source'} has no entity id, ticker, or name and type"
        )
    return keys


def identity_key(mention: EntityMention) -> Tuple[str, ...]:
    """Primary grouping key: entity id, else name and type, else ticker."""
    return identity_keys(mention)[0]


def rank_entities(aggregates: Iterable[AggregatedEntity]) -> List[AggregatedEntity]:
    """
    Order aggregated entities for presentation.

    Highest relevance first, then most mentioned. Entities without any
    relevance sample go last. Remaining ties keep first-seen order.

    Args:
        aggregates: Aggregates in first-seen order

    Returns:
        Ranked list
    """
    def sort_key(aggregate: AggregatedEntity):
        has_relevance = aggregate.relevance is not None
        relevance = aggregate.relevance if has_relevance else 0.0
        return (not has_relevance, -relevance, -aggregate.mention_count)

    return sorted(aggregates, key=sort_key)


class EntityAggregator:
    """
    Merges entity mentions and resolves them against an entity store.

    The store is any object with resolve_or_create_entity(key); the
    aggregator takes no locks and relies on the store's uniqueness
    constraints instead.
    """

    def __init__(self, store=None):
        """
        Initialize the aggregator.

        Args:
            store: Optional entity store used by resolve()
        """
        self.store = store

    def merge(self, mentions: Iterable[EntityMention], strict: bool = True) -> List[AggregatedEntity]:
        """
        Fold mentions into one ranked record per entity.

        Mentions are folded in the order supplied, so the same input always
        produces bit-identical averages.

        Args:
            mentions: Mentions from any number of sources
            strict: Raise on a malformed mention instead of dropping it

        Returns:
            Aggregated entities, ranked

        Raises:
            InvalidMention: If strict and a mention cannot identify an entity
        """
        groups: Dict[Tuple[str, ...], AggregatedEntity] = {}
        aggregates: List[AggregatedEntity] = []

        for index, mention in enumerate(mentions):
            try:
                keys = identity_keys(mention)
            except InvalidMention as e:
                if strict:
                    raise
                logging.warning(f"Dropping mention #{index}: {e}")
                continue

            aggregate = next((groups[key] for key in keys if key in groups), None)
            if aggregate is None:
                aggregate = AggregatedEntity(first_seen=index)
                aggregates.append(aggregate)
            for key in keys:
                groups.setdefault(key, aggregate)

            self._fold(aggregate, mention)

        return rank_entities(aggregates)

    def _fold(self, aggregate: AggregatedEntity, mention: EntityMention) -> None:
        aggregate.entity_id = aggregate.entity_id or mention.entity_id
        aggregate.name = aggregate.name or mention.name
        aggregate.entity_type = aggregate.entity_type or mention.entity_type
        aggregate.ticker = aggregate.ticker or (mention.ticker.upper() if mention.ticker else None)
        aggregate.mention_count += 1

        aggregate.sentiment, aggregate.sentiment_samples = fold_average(
            aggregate.sentiment, aggregate.sentiment_samples, mention.sentiment)
        aggregate.relevance, aggregate.relevance_samples = fold_average(
            aggregate.relevance, aggregate.relevance_samples, mention.relevance)

        if mention.source_id and mention.source_id not in aggregate.source_ids:
            aggregate.source_ids.append(mention.source_id)

    def resolve(self, key: EntityKey) -> Entity:
        """
        Resolve a key to an entity, creating it if nothing matches.

        A uniqueness conflict during creation means another request created
        the entity first; the lookup is repeated once before giving up.

        Args:
            key: Ticker, or name and type

        Returns:
            The resolved entity

        Raises:
            InvalidMention: If the key has neither a ticker nor a name and type
            ConflictRetryable: If the retry collides as well
        """
        if self.store is None:
            raise RuntimeError("EntityAggregator has no entity store")
        if not key.ticker and not (key.name and key.name.strip() and key.entity_type):
            raise InvalidMention("Entity key needs a ticker or a name and type")

        try:
            return self.store.resolve_or_create_entity(key)
        except ConflictRetryable as e:
            logging.info(f"Entity creation raced for {key.ticker or key.name}, retrying once: {e}")
            return self.store.resolve_or_create_entity(key)

    def resolve_mentions(self, mentions: Iterable[EntityMention],
                         strict: bool = False) -> List[EntityMention]:
        """
        Attach an entity id to every mention.

        Args:
            mentions: Resolved or unresolved mentions
            strict: Raise on a malformed mention instead of dropping it

        Returns:
            Resolved copies of the mentions, input order preserved
        """
        resolved = []
        for mention in mentions:
            if mention.entity_id:
                resolved.append(mention)
                continue
            try:
                entity = self.resolve(mention.key)
            except InvalidMention as e:
                if strict:
                    raise
                logging.warning(f"Dropping mention from {mention.source_id}: {e}")
                continue
            resolved.append(mention.model_copy(update={
                "entity_id": entity.entity_id,
                "name": entity.name,
                "entity_type": entity.entity_type,
                "ticker": entity.ticker,
            }))
        return resolved

    def digest(self, entity_id: str, now: Optional[datetime] = None) -> EntityDigest:
        """
        Summarize everything recorded about one entity.

        Args:
            entity_id: The entity
            now: Reference time for the trend window (defaults to the current time)

        Returns:
            Sentiment trend, mention frequency and insights for the entity

        Raises:
            NotFound: If the entity does not exist
        """
        if self.store is None:
            raise RuntimeError("EntityAggregator has no entity store")

        entity = self.store.get_entity(entity_id)
        if entity is None:
            raise NotFound(f"Entity {entity_id} not found")
        return summarize_entity(entity, self.store.get_mentions(entity_id=entity_id), now=now)
