"""
The Continuum engine.

ContinuityEngine is what the request-handling layer talks to. It wires the
enhancement decider, the compression policy, the entity aggregator and the
report continuity store together along one user turn:

    user message -> plan -> (compress context) -> generate -> new revision
                 -> usage ledger -> assistant message -> entities -> snapshot
"""

import asyncio
import logging
from typing import Iterable, List, Optional

from .agents.base import TextGenerator, TextSummarizer
from .compression import CompressionPolicy, estimate_tokens
from .config import config
from .continuity import ReportContinuityStore
from .entities import EntityAggregator, EntityExtractor
from .enhancement import AutoContinueHandler, EnhancementDecider
from .errors import ContinuumError, GeneratorError, InvalidArgument
from .models import (
    AggregatedEntity,
    CompressionResult,
    EnhancementPlan,
    EnhancementResult,
    EntityDigest,
    EntityMention,
    Message,
    MaybeCompressResult,
    ReportRevision,
    SessionPolicy,
    Thread,
    UsageLedger,
    UsageOperation,
)
from .pricing import calculate_cost
from .versioning import SnapshotManager


class ContinuityEngine:
    """
    Facade over the continuity components.

    AI collaborators are injected so the engine can run against Ollama in
    production and against fakes in tests.
    """

    def __init__(
        self,
        store: ReportContinuityStore,
        generator: TextGenerator,
        summarizer: TextSummarizer,
        model_name: Optional[str] = None,
        decider: Optional[EnhancementDecider] = None,
        compression: Optional[CompressionPolicy] = None,
        aggregator: Optional[EntityAggregator] = None,
        extractor: Optional[EntityExtractor] = None,
        snapshots: Optional[SnapshotManager] = None,
        auto_continue: Optional[AutoContinueHandler] = None,
        default_policy: Optional[SessionPolicy] = None
    ):
        """
        Initialize the engine.

        Args:
            store: Report continuity store
            generator: Report generator
            summarizer: Context summarizer
            model_name: Model used for pricing the usage ledger (defaults to config value)
            decider: Enhancement decider
            compression: Compression policy (defaults to the configured budget)
            aggregator: Entity aggregator (defaults to one backed by the store's database)
            extractor: Entity extractor; None disables entity extraction in enhance()
            snapshots: Snapshot manager; None disables snapshots
            auto_continue: Auto-continue handler
            default_policy: Session policy used when a call passes none
        """
        self.store = store
        self.generator = generator
        self.summarizer = summarizer
        self.model_name = model_name or config.model_name
        self.decider = decider or EnhancementDecider()
        self.compression = compression or CompressionPolicy()
        self.aggregator = aggregator or EntityAggregator(store.db)
        self.extractor = extractor
        self.snapshots = snapshots
        self.auto_continue = auto_continue or AutoContinueHandler()
        self.default_policy = default_policy or SessionPolicy(**config.default_session_policy)

    # Component operations

    def plan_enhancement(self, thread: Thread, prior_report: Optional[ReportRevision],
                         new_instruction: str, messages: Optional[Iterable[Message]] = None,
                         policy: Optional[SessionPolicy] = None) -> EnhancementPlan:
        """Decide between a fresh report and an incremental enhancement."""
        return self.decider.decide(thread, prior_report, new_instruction, messages,
                                   policy or self.default_policy)

    async def maybe_compress(self, text: str, kind: str = "report") -> MaybeCompressResult:
        """Compress text with the injected summarizer when it is over budget."""
        return await self.compression.maybe_compress(text, self.summarizer, kind)

    def aggregate_entities(self, mentions: Iterable[EntityMention],
                           strict: bool = True) -> List[AggregatedEntity]:
        """Fold mentions into ranked per-entity records."""
        return self.aggregator.merge(mentions, strict=strict)

    async def entity_digest(self, entity_id: str) -> EntityDigest:
        """Sentiment trend, mention frequency and insights for one recorded entity."""
        return await asyncio.to_thread(self.aggregator.digest, entity_id)

    async def append_revision(self, thread_id: str, expected_current_version: int, content: str,
                              parent_version: Optional[int] = None,
                              title: str = "") -> ReportRevision:
        """Append a revision under optimistic concurrency."""
        return await self.store.append_revision(thread_id, expected_current_version, content,
                                                parent_version, title)

    async def append_usage(self, revision_id: str, operation: UsageOperation) -> UsageLedger:
        """Append one operation to a revision's usage ledger."""
        return await self.store.append_usage(revision_id, operation)

    def auto_reply(self, assistant_text: str, policy: Optional[SessionPolicy] = None) -> Optional[str]:
        """Approval reply for an assistant confirmation request, if the session allows it."""
        return self.auto_continue.auto_reply(assistant_text, policy or self.default_policy)

    # Entities

    async def record_entities(self, mentions: Iterable[EntityMention]) -> List[AggregatedEntity]:
        """
        Resolve mentions against the entity store and record them.

        Malformed mentions are dropped with a warning.

        Args:
            mentions: Unresolved or resolved mentions

        Returns:
            The recorded mentions aggregated per entity
        """
        resolved = await asyncio.to_thread(self.aggregator.resolve_mentions, list(mentions))

        recorded = []
        for mention in resolved:
            recorded.append(await asyncio.to_thread(self.store.db.record_mention, mention))

        return self.aggregator.merge(recorded)

    async def ingest_entities(self, text: str, source_id: str, source_type: str = "report",
                              thread_id: Optional[str] = None,
                              title: Optional[str] = None) -> List[AggregatedEntity]:
        """
        Extract entities from a text and record them against their source.

        Args:
            text: Report body or message content
            source_id: Revision or message id
            source_type: "report" or "message"
            thread_id: Owning thread (optional)
            title: Report title passed to the extractor (optional)

        Returns:
            Aggregated entities found in the text
        """
        extractor = self.extractor or EntityExtractor()
        mentions = await extractor.extract(text, source_id=source_id, source_type=source_type,
                                           thread_id=thread_id, title=title)
        if not mentions:
            return []

        entities = await self.record_entities(mentions)
        logging.info(f"Recorded {len(mentions)} mentions of {len(entities)} entities from {source_type} {source_id}")
        return entities

    # Composed flow

    async def enhance(self, thread_id: str, instruction: str,
                      policy: Optional[SessionPolicy] = None,
                      title: Optional[str] = None) -> EnhancementResult:
        """
        Run one user turn end to end.

        Nothing is persisted between the user message and the new revision,
        so a turn cancelled while the generator or summarizer is working
        leaves no revision and no ledger entry behind.

        Args:
            thread_id: The thread to work in
            instruction: The user's request
            policy: Session policy (defaults to the engine's)
            title: Report title (defaults to the thread title)

        Returns:
            The plan, the stored revision, compression metrics, recorded
            entities and any non-fatal errors

        Raises:
            NotFound: If the thread does not exist
            ThreadArchived: If the thread is archived
            InvalidArgument: If the instruction is empty
            GeneratorError: If the generator fails or returns nothing
            SummarizerError: If over-budget context cannot be compressed
            ConcurrentModification: If another turn stored a revision first
        """
        if not isinstance(instruction, str) or not instruction.strip():
            raise InvalidArgument("Instruction must be a non-empty string")

        thread = await self.store.get_thread(thread_id)
        user_message = await self.store.add_message(thread_id, "user", instruction)

        try:
            plan, revision, compression = await self._run_turn(thread, instruction, policy, title)
        except ContinuumError:
            await self.store.set_message_status(user_message.message_id, "error")
            raise

        await self.store.add_message(
            thread_id, "assistant",
            f"{'Updated' if plan.mode == 'incremental' else 'Created'} report v{revision.version}",
            report_id=revision.revision_id,
            status="complete"
        )

        errors: List[str] = []
        entities: List[AggregatedEntity] = []
        if self.extractor is not None:
            try:
                entities = await self.ingest_entities(
                    revision.body, revision.revision_id, "report", thread_id, revision.title
                )
            except ContinuumError as e:
                logging.warning(f"Entity extraction for revision {revision.revision_id} failed: {e}")
                errors.append(f"entities: {e.code}")

        if self.snapshots is not None:
            written = await asyncio.to_thread(self.snapshots.write_snapshot, thread, revision)
            if not written:
                errors.append("snapshot: failed")

        return EnhancementResult(
            plan=plan,
            revision=revision,
            compression=compression,
            entities=entities,
            errors=errors
        )

    async def _run_turn(self, thread: Thread, instruction: str,
                        policy: Optional[SessionPolicy], title: Optional[str]):
        expected_version, prior = await self.store.revision_state(thread.thread_id)
        messages = await self.store.list_messages(thread.thread_id)
        plan = self.plan_enhancement(thread, prior, instruction, messages, policy)

        operations: List[UsageOperation] = []
        compression: Optional[CompressionResult] = None
        context = plan.context

        if context is not None:
            compressed = await self.maybe_compress(context, "report")
            if compressed.was_compressed:
                compression = compressed.metrics
                context = compressed.text
                operations.append(self._usage("compression", compression.original_tokens,
                                              compression.new_token_count))

        try:
            body = await self.generator.generate(context, plan.directive)
        except ContinuumError:
            raise
        except Exception as e:
            logging.error(f"Generator call failed for thread {thread.thread_id}: {e}")
            raise GeneratorError(f"Generator call failed: {e}") from e

        if not isinstance(body, str) or not body.strip():
            raise GeneratorError("Generator returned no report text")

        operations.append(self._usage(
            "generation",
            estimate_tokens(context) + estimate_tokens(plan.directive),
            estimate_tokens(body)
        ))

        parent_version = plan.parent_revision.version if plan.parent_revision else None
        revision = await self.store.append_revision(
            thread.thread_id, expected_version, body,
            parent_version=parent_version,
            title=title or (plan.parent_revision.title if plan.parent_revision else "") or thread.title,
            operations=operations
        )
        return plan, revision, compression

    def _usage(self, kind: str, input_tokens: int, output_tokens: int) -> UsageOperation:
        calculation = calculate_cost(self.model_name, input_tokens, output_tokens)
        return UsageOperation(
            kind=kind,
            model=calculation.model,
            provider=calculation.provider,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=calculation.total_cost
        )
