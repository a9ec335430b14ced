"""
Tests for the composed enhancement flow.

AI collaborators are replaced by in-process fakes; persistence is a real
DuckDB file in a temporary directory.
"""

import asyncio
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from continuum.agents.base import TextGenerator, TextSummarizer
from continuum.compression import CompressionPolicy
from continuum.continuity import ReportContinuityStore
from continuum.database import DatabaseManager
from continuum.engine import ContinuityEngine
from continuum.entities import EntityExtractor
from continuum.errors import (
    ConcurrentModification,
    GeneratorError,
    InvalidArgument,
    NotFound,
    SummarizerError,
    ThreadArchived,
)
from continuum.models import EntityMention, SessionPolicy, UsageOperation
from continuum.versioning import SnapshotManager


class FakeGenerator(TextGenerator):
    """Returns queued responses and records what it was asked."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    async def generate(self, context, instruction):
        self.calls.append((context, instruction))
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


class BlockingGenerator(TextGenerator):
    """Never returns until cancelled."""

    def __init__(self):
        self.started = asyncio.Event()

    async def generate(self, context, instruction):
        self.started.set()
        await asyncio.Event().wait()


class FakeSummarizer(TextSummarizer):
    def __init__(self, response="compressed report", error=None):
        self.response = response
        self.error = error
        self.calls = 0

    async def summarize(self, text):
        self.calls += 1
        if self.error:
            raise self.error
        return self.response


class EngineTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db = DatabaseManager(str(Path(self.temp_dir) / "test.db"))
        self.db.connect()
        self.db.initialize_database()
        self.store = ReportContinuityStore(self.db)

    def tearDown(self):
        self.db.disconnect()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def make_engine(self, generator, summarizer=None, **kwargs):
        return ContinuityEngine(
            store=self.store,
            generator=generator,
            summarizer=summarizer or FakeSummarizer(),
            model_name="gpt-4",
            default_policy=SessionPolicy(),
            **kwargs
        )


class TestEnhance(EngineTestCase):
    """Test one user turn end to end."""

    async def test_first_turn_creates_fresh_report(self):
        generator = FakeGenerator("<h1>NVDA</h1>")
        engine = self.make_engine(generator)
        thread = await self.store.create_thread("alice", "Chip makers")

        result = await engine.enhance(thread.thread_id, "Cover NVDA")

        self.assertEqual(result.plan.mode, "fresh")
        self.assertEqual(result.revision.version, 1)
        self.assertEqual(result.revision.title, "Chip makers")
        self.assertIsNone(generator.calls[0][0])
        self.assertEqual(result.errors, [])

        messages = await self.store.list_messages(thread.thread_id)
        self.assertEqual([m.role for m in messages], ["user", "assistant"])
        self.assertEqual(messages[1].report_id, result.revision.revision_id)

        ledger = result.revision.usage
        self.assertEqual([op.kind for op in ledger.operations], ["generation"])
        self.assertEqual(ledger.operations[0].provider, "openai")
        self.assertGreater(ledger.total_cost, 0)

    async def test_second_turn_builds_on_first(self):
        generator = FakeGenerator("<h1>NVDA</h1>", "<h1>NVDA</h1><h2>Risks</h2>")
        engine = self.make_engine(generator)
        thread = await self.store.create_thread("alice", "Chip makers")

        first = await engine.enhance(thread.thread_id, "Cover NVDA")
        second = await engine.enhance(thread.thread_id, "Add a risks section")

        self.assertEqual(second.plan.mode, "incremental")
        self.assertEqual(generator.calls[1][0], "<h1>NVDA</h1>")
        self.assertEqual(second.revision.version, 2)
        self.assertEqual(second.revision.parent_version, 1)
        self.assertEqual(second.revision.parent_revision_id, first.revision.revision_id)
        self.assertEqual(len(second.revision.usage.operations), 2)

    async def test_policy_forces_fresh_report(self):
        generator = FakeGenerator("one", "two")
        engine = self.make_engine(generator)
        thread = await self.store.create_thread("alice", "Chip makers")

        await engine.enhance(thread.thread_id, "Cover NVDA")
        result = await engine.enhance(thread.thread_id, "Start again", policy=SessionPolicy(incremental=False))

        self.assertEqual(result.plan.mode, "fresh")
        self.assertEqual(result.revision.version, 2)
        self.assertIsNone(result.revision.parent_version)
        self.assertIsNone(generator.calls[1][0])

    async def test_large_context_is_compressed(self):
        generator = FakeGenerator("x" * 800, "updated")
        summarizer = FakeSummarizer(response="y" * 100)
        engine = self.make_engine(generator, summarizer, compression=CompressionPolicy(threshold_tokens=100))
        thread = await self.store.create_thread("alice", "Chip makers")

        await engine.enhance(thread.thread_id, "Cover NVDA")
        result = await engine.enhance(thread.thread_id, "Tighten the summary")

        self.assertEqual(summarizer.calls, 1)
        self.assertEqual(generator.calls[1][0], "y" * 100)
        self.assertEqual(result.compression.compression_ratio, 88)
        kinds = [op.kind for op in result.revision.usage.operations]
        self.assertEqual(kinds, ["generation", "compression", "generation"])

    async def test_summarizer_failure_aborts_turn(self):
        generator = FakeGenerator("x" * 800)
        engine = self.make_engine(generator, FakeSummarizer(error=SummarizerError("down")),
                                  compression=CompressionPolicy(threshold_tokens=100))
        thread = await self.store.create_thread("alice", "Chip makers")
        await engine.enhance(thread.thread_id, "Cover NVDA")

        with self.assertRaises(SummarizerError):
            await engine.enhance(thread.thread_id, "Add risks")

        self.assertEqual(await self.store.head_version(thread.thread_id), 1)
        self.assertEqual(len(generator.calls), 1)

    async def test_generator_failure_marks_message(self):
        engine = self.make_engine(FakeGenerator(GeneratorError("timeout")))
        thread = await self.store.create_thread("alice", "Chip makers")

        with self.assertRaises(GeneratorError):
            await engine.enhance(thread.thread_id, "Cover NVDA")

        messages = await self.store.list_messages(thread.thread_id)
        self.assertEqual([(m.role, m.status) for m in messages], [("user", "error")])
        self.assertEqual(await self.store.list_revisions(thread.thread_id), [])

    async def test_empty_generation_is_an_error(self):
        engine = self.make_engine(FakeGenerator("   "))
        thread = await self.store.create_thread("alice", "Chip makers")

        with self.assertRaises(GeneratorError):
            await engine.enhance(thread.thread_id, "Cover NVDA")

    async def test_unexpected_generator_exception_is_wrapped(self):
        engine = self.make_engine(FakeGenerator(ConnectionResetError("reset")))
        thread = await self.store.create_thread("alice", "Chip makers")

        with self.assertRaises(GeneratorError):
            await engine.enhance(thread.thread_id, "Cover NVDA")

    async def test_empty_instruction(self):
        engine = self.make_engine(FakeGenerator("unused"))
        thread = await self.store.create_thread("alice", "Chip makers")

        with self.assertRaises(InvalidArgument):
            await engine.enhance(thread.thread_id, "  ")
        self.assertEqual(await self.store.list_messages(thread.thread_id), [])

    async def test_archived_thread(self):
        engine = self.make_engine(FakeGenerator("unused"))
        thread = await self.store.create_thread("alice", "Chip makers")
        await self.store.archive_thread(thread.thread_id)

        with self.assertRaises(ThreadArchived):
            await engine.enhance(thread.thread_id, "Cover NVDA")

    async def test_cancellation_commits_nothing(self):
        generator = BlockingGenerator()
        engine = self.make_engine(generator)
        thread = await self.store.create_thread("alice", "Chip makers")

        task = asyncio.create_task(engine.enhance(thread.thread_id, "Cover NVDA"))
        await generator.started.wait()
        task.cancel()

        with self.assertRaises(asyncio.CancelledError):
            await task

        self.assertEqual(await self.store.list_revisions(thread.thread_id), [])

    async def test_concurrent_turns_conflict(self):
        class SlowGenerator(TextGenerator):
            def __init__(self):
                self.arrived = 0
                self.both_started = asyncio.Event()

            async def generate(self, context, instruction):
                self.arrived += 1
                if self.arrived == 2:
                    self.both_started.set()
                await self.both_started.wait()
                return f"report for {instruction[-20:]}"

        engine = self.make_engine(SlowGenerator())
        thread = await self.store.create_thread("alice", "Chip makers")

        results = await asyncio.gather(
            engine.enhance(thread.thread_id, "Cover NVDA"),
            engine.enhance(thread.thread_id, "Cover AMD"),
            return_exceptions=True
        )

        self.assertEqual(sum(isinstance(r, ConcurrentModification) for r in results), 1)
        self.assertEqual(await self.store.head_version(thread.thread_id), 1)

    async def test_revision_stored_during_compression_conflicts(self):
        store = self.store

        class InterleavingSummarizer(TextSummarizer):
            """Another writer stores v2 while this turn is compressing v1."""

            def __init__(self):
                self.thread_id = None

            async def summarize(self, text):
                await store.append_revision(self.thread_id, 1, "second writer's v2", parent_version=1)
                return "short"

        summarizer = InterleavingSummarizer()
        generator = FakeGenerator("x" * 800, "built from stale context")
        engine = self.make_engine(generator, summarizer, compression=CompressionPolicy(threshold_tokens=100))
        thread = await self.store.create_thread("alice", "Chip makers")
        summarizer.thread_id = thread.thread_id
        await engine.enhance(thread.thread_id, "Cover NVDA")

        with self.assertRaises(ConcurrentModification):
            await engine.enhance(thread.thread_id, "Add risks")

        revisions = await self.store.list_revisions(thread.thread_id)
        self.assertEqual([(r.version, r.body) for r in revisions],
                         [(1, "x" * 800), (2, "second writer's v2")])


class TestEntities(EngineTestCase):
    """Test entity ingestion through the engine."""

    async def test_enhance_records_entities(self):
        generator = FakeGenerator("<p>$NVDA keeps gaining on Intel Corp.</p>")
        engine = self.make_engine(generator, extractor=EntityExtractor())
        thread = await self.store.create_thread("alice", "Chip makers")

        result = await engine.enhance(thread.thread_id, "Cover NVDA")

        names = sorted(e.name for e in result.entities)
        self.assertEqual(names, ["Intel Corp", "NVDA"])
        self.assertEqual(len(self.db.get_mentions(source_id=result.revision.revision_id)), 2)

    async def test_extraction_failure_is_not_fatal(self):
        class BrokenExtractor(EntityExtractor):
            async def extract(self, *args, **kwargs):
                raise GeneratorError("extractor offline")

        engine = self.make_engine(FakeGenerator("<p>report</p>"), extractor=BrokenExtractor())
        thread = await self.store.create_thread("alice", "Chip makers")

        result = await engine.enhance(thread.thread_id, "Cover NVDA")

        self.assertEqual(result.revision.version, 1)
        self.assertEqual(result.errors, ["entities: E_GENERATOR"])

    async def test_storage_failure_while_recording_is_not_fatal(self):
        engine = self.make_engine(FakeGenerator("<p>$NVDA keeps gaining.</p>"), extractor=EntityExtractor())
        thread = await self.store.create_thread("alice", "Chip makers")
        self.db.connection.execute("DROP TABLE entity_mentions")

        result = await engine.enhance(thread.thread_id, "Cover NVDA")

        self.assertEqual(result.errors, ["entities: E_STORAGE"])
        self.assertEqual(result.revision.version, 1)
        messages = await self.store.list_messages(thread.thread_id)
        self.assertEqual([m.role for m in messages], ["user", "assistant"])

    async def test_entity_digest(self):
        engine = self.make_engine(FakeGenerator())
        recorded = await engine.record_entities([
            EntityMention(name="Apple", entity_type="company", ticker="AAPL", sentiment=s, source_id=f"r{i}")
            for i, s in enumerate([0.6, 0.7, 0.8, 0.6, 0.7])
        ])

        digest = await engine.entity_digest(recorded[0].entity_id)

        self.assertEqual(digest.entity.mention_count, 5)
        self.assertEqual(digest.sentiment.samples, 5)
        self.assertEqual(digest.frequency.last_day, 5)
        self.assertEqual([i.insight_type for i in digest.insights], ["trend", "opportunity"])
        self.assertEqual(len(digest.insights[1].mention_ids), 5)

        with self.assertRaises(NotFound):
            await engine.entity_digest("missing")

    async def test_record_entities_resolves_across_calls(self):
        engine = self.make_engine(FakeGenerator())

        await engine.record_entities([EntityMention(name="Apple", entity_type="company", ticker="AAPL", sentiment=0.5)])
        await engine.record_entities([EntityMention(name="Apple Inc.", entity_type="company", ticker="AAPL", sentiment=-0.5)])

        entities = self.db.list_entities()
        self.assertEqual(len(entities), 1)
        self.assertEqual(entities[0].mention_count, 2)
        self.assertEqual(entities[0].sentiment_score, 0.0)

    def test_aggregate_entities(self):
        engine = self.make_engine(FakeGenerator())
        merged = engine.aggregate_entities([
            EntityMention(name="A", entity_type="company", relevance=0.5),
            EntityMention(name="C", entity_type="company", relevance=0.95),
        ])
        self.assertEqual([m.name for m in merged], ["C", "A"])


class TestSnapshots(EngineTestCase):
    """Test the snapshot step of a turn."""

    async def test_snapshot_written_for_each_revision(self):
        snapshots = mock.Mock(spec=SnapshotManager)
        snapshots.write_snapshot.return_value = True
        engine = self.make_engine(FakeGenerator("<h1>v1</h1>"), snapshots=snapshots)
        thread = await self.store.create_thread("alice", "Chip makers")

        result = await engine.enhance(thread.thread_id, "Cover NVDA")

        snapshots.write_snapshot.assert_called_once()
        written_thread, written_revision = snapshots.write_snapshot.call_args[0]
        self.assertEqual(written_thread.thread_id, thread.thread_id)
        self.assertEqual(written_revision.revision_id, result.revision.revision_id)
        self.assertEqual(result.errors, [])

    async def test_failed_snapshot_is_reported(self):
        snapshots = mock.Mock(spec=SnapshotManager)
        snapshots.write_snapshot.return_value = False
        engine = self.make_engine(FakeGenerator("<h1>v1</h1>"), snapshots=snapshots)
        thread = await self.store.create_thread("alice", "Chip makers")

        result = await engine.enhance(thread.thread_id, "Cover NVDA")

        self.assertEqual(result.errors, ["snapshot: failed"])
        self.assertEqual(result.revision.version, 1)


class TestFacadeOperations(EngineTestCase):
    """Test the thin component operations exposed by the engine."""

    async def test_append_revision_and_usage(self):
        engine = self.make_engine(FakeGenerator())
        thread = await self.store.create_thread("alice", "Chip makers")

        revision = await engine.append_revision(thread.thread_id, 0, "<h1>manual</h1>", title="Manual")
        ledger = await engine.append_usage(revision.revision_id, UsageOperation(kind="edit", input_tokens=3, output_tokens=4))

        self.assertEqual(revision.version, 1)
        self.assertEqual(ledger.total_tokens, 7)

    async def test_maybe_compress_uses_injected_summarizer(self):
        summarizer = FakeSummarizer(response="short")
        engine = self.make_engine(FakeGenerator(), summarizer, compression=CompressionPolicy(threshold_tokens=1))

        result = await engine.maybe_compress("a long enough text", kind="thread")

        self.assertTrue(result.was_compressed)
        self.assertEqual(result.text, "short")
        self.assertEqual(summarizer.calls, 1)

    def test_auto_reply(self):
        engine = self.make_engine(FakeGenerator())
        self.assertIsNone(engine.auto_reply("Let me gather the data."))
        self.assertIsNotNone(engine.auto_reply("Let me gather the data.", SessionPolicy(auto_approve=True)))


if __name__ == '__main__':
    unittest.main(verbosity=2)
