#!/usr/bin/env python3
"""
Continuum - Context & Report Continuity Engine

Command line entry point. Each command opens the database, runs one engine
operation and prints a short summary.
"""

import asyncio
import logging
import sys
import argparse
from pathlib import Path

from continuum.agents import AgentRunner
from continuum.compression import CompressionPolicy
from continuum.config import config
from continuum.continuity import ReportContinuityStore
from continuum.database import DatabaseManager
from continuum.engine import ContinuityEngine
from continuum.entities import EntityAggregator, EntityExtractor
from continuum.errors import ContinuumError, public_error
from continuum.models import SessionPolicy
from continuum.pricing import format_cost, format_tokens
from continuum.versioning import SnapshotManager


def setup_logging():
    """Configure logging for the application."""
    level = getattr(logging, config.get("logging.level", "INFO").upper())
    format_str = config.get("logging.format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    log_file = config.log_filename

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file)
        ]
    )


def open_database(path: str) -> DatabaseManager:
    db = DatabaseManager(path)
    db.connect()
    db.initialize_database()
    return db


async def run_enhance(db: DatabaseManager, args) -> None:
    """Run one enhancement turn against a thread."""
    policy = SessionPolicy(
        incremental=not args.fresh,
        auto_approve=args.auto_approve or config.default_session_policy["auto_approve"]
    )
    snapshots = SnapshotManager() if (args.snapshot or config.snapshots_enabled) else None

    async with AgentRunner(database_manager=db) as runner:
        extractor = EntityExtractor(runner.generator_for("entity_extractor")) if args.entities else None
        engine = ContinuityEngine(
            store=ReportContinuityStore(db),
            generator=runner,
            summarizer=runner,
            model_name=runner.model,
            extractor=extractor,
            snapshots=snapshots
        )
        result = await engine.enhance(args.thread_id, args.instruction, policy=policy)

    revision = result.revision
    print(f"\n{result.plan.mode.title()} report v{revision.version} ({revision.revision_id})")
    if result.compression:
        print(f"Context compressed {result.compression.original_tokens} -> "
              f"{result.compression.new_token_count} tokens ({result.compression.compression_ratio}%)")
    print(f"Usage: {format_tokens(revision.usage.total_tokens)} tokens, {format_cost(revision.usage.total_cost)}")
    for entity in result.entities:
        print(f"  - {entity.name} ({entity.entity_type}) x{entity.mention_count}")
    for error in result.errors:
        print(f"  ! {error}")
    print("\n" + revision.body)


async def run_compress(args) -> None:
    """Compress a text file and print the result."""
    text = Path(args.file).read_text(encoding="utf-8")
    policy = CompressionPolicy(args.threshold)

    async with AgentRunner() as runner:
        if args.force:
            result = await policy.compress(text, runner, args.kind)
            compressed, metrics = result.compressed_text, result
        else:
            outcome = await policy.maybe_compress(text, runner, args.kind)
            compressed, metrics = outcome.text, outcome.metrics

    if metrics:
        print(f"Compressed {metrics.original_tokens} -> {metrics.new_token_count} tokens "
              f"({metrics.compression_ratio}% smaller)\n")
    else:
        print("Text is within budget, left unchanged\n")
    print(compressed)


async def run_command(db: DatabaseManager, args) -> None:
    store = ReportContinuityStore(db)

    if args.command == "new-thread":
        thread = await store.create_thread(args.owner, args.title)
        print(f"Created thread {thread.thread_id}")

    elif args.command == "enhance":
        await run_enhance(db, args)

    elif args.command == "publish":
        revision = await store.publish(args.revision_id)
        print(f"Revision v{revision.version} is now {revision.status}")

    elif args.command == "archive-revision":
        revision = await store.archive(args.revision_id)
        print(f"Revision v{revision.version} is now {revision.status}")

    elif args.command == "archive-thread":
        thread = await store.archive_thread(args.thread_id)
        print(f"Thread {thread.thread_id} is now {thread.status}")

    elif args.command == "history":
        thread = await store.get_thread(args.thread_id)
        print(f"{thread.title} [{thread.status}] - {await store.thread_state(thread.thread_id)}")
        for revision in await store.list_revisions(thread.thread_id):
            parent = f"<- v{revision.parent_version}" if revision.parent_version else ""
            print(f"  v{revision.version} {revision.status:<9} {parent:<7} "
                  f"{format_tokens(revision.usage.total_tokens):>7} tokens "
                  f"{format_cost(revision.usage.total_cost)}  {revision.revision_id}")

    elif args.command == "entities":
        entities = await asyncio.to_thread(db.list_entities, args.type, args.limit)
        for entity in entities:
            sentiment = f"{entity.sentiment_score:+.2f}" if entity.sentiment_score is not None else "n/a"
            print(f"  {entity.name:<30} {entity.entity_type:<8} {entity.ticker or '':<6} "
                  f"x{entity.mention_count} sentiment {sentiment}  {entity.entity_id}")

    elif args.command == "entity":
        digest = await asyncio.to_thread(EntityAggregator(db).digest, args.entity_id)
        trend = digest.sentiment
        average = f"{trend.average:+.2f}" if trend.average is not None else "n/a"
        print(digest.summary)
        print(f"  Sentiment {average} over {trend.samples} scored mentions, change {trend.change:+.2f}")
        print(f"  Mentions: {digest.frequency.last_day} in the last day, {digest.frequency.last_week} in the last week "
              f"({digest.frequency.change:+d} on the week before)")
        for insight in digest.insights:
            print(f"  [{insight.priority}] {insight.title}: {insight.content}")


def parse_arguments():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Continuum - Context & Report Continuity Engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py init-db
  python main.py new-thread --owner alice --title "Semiconductor outlook"
  python main.py enhance <thread-id> "Add a section on NVDA margins" --entities
  python main.py history <thread-id>
  python main.py entity <entity-id>
  python main.py compress notes.md --kind thread --force
        """
    )

    parser.add_argument(
        "--database",
        default=config.database_filename,
        help=f"DuckDB file to use (default: {config.database_filename})"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="Continuum 0.1.0"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create the database schema")

    new_thread = subparsers.add_parser("new-thread", help="Start a conversation thread")
    new_thread.add_argument("--owner", required=True, help="Owning user id")
    new_thread.add_argument("--title", required=True, help="Thread title")

    enhance = subparsers.add_parser("enhance", help="Create or extend a thread's report")
    enhance.add_argument("thread_id")
    enhance.add_argument("instruction")
    enhance.add_argument("--fresh", action="store_true", help="Start a new report instead of extending")
    enhance.add_argument("--auto-approve", action="store_true", help="Answer confirmation requests automatically")
    enhance.add_argument("--entities", action="store_true", help="Extract and record entities from the new report")
    enhance.add_argument("--snapshot", action="store_true", help="Commit a markdown snapshot of the new report")

    compress = subparsers.add_parser("compress", help="Compress a text file with the summarizer")
    compress.add_argument("file")
    compress.add_argument("--kind", choices=["report", "thread"], default="report")
    compress.add_argument("--threshold", type=int, default=None, help="Token budget (default: from config)")
    compress.add_argument("--force", action="store_true", help="Compress even when within budget")

    publish = subparsers.add_parser("publish", help="Publish or restore a revision")
    publish.add_argument("revision_id")

    archive_revision = subparsers.add_parser("archive-revision", help="Archive a revision")
    archive_revision.add_argument("revision_id")

    archive_thread = subparsers.add_parser("archive-thread", help="Archive a thread")
    archive_thread.add_argument("thread_id")

    history = subparsers.add_parser("history", help="Show a thread's revisions and usage")
    history.add_argument("thread_id")

    entities = subparsers.add_parser("entities", help="List tracked entities")
    entities.add_argument("--type", choices=["company", "asset", "person", "sector", "other"])
    entities.add_argument("--limit", type=int, default=20)

    entity = subparsers.add_parser("entity", help="Show an entity's sentiment trend and insights")
    entity.add_argument("entity_id")

    return parser.parse_args()


def main():
    """Main entry point."""
    args = parse_arguments()
    setup_logging()

    logging.info(f"Continuum - running {args.command}")

    try:
        if args.command == "compress":
            asyncio.run(run_compress(args))
            return

        db = open_database(args.database)
        try:
            if args.command == "init-db":
                print(f"Database ready at {args.database}")
            else:
                asyncio.run(run_command(db, args))
        finally:
            db.disconnect()

    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        print("\nInterrupted.")

    except ContinuumError as e:
        logging.error(f"{args.command} failed: {e}")
        payload = public_error(e)
        print(f"\n{payload['error']} ({payload['code']})")
        sys.exit(1)

    except Exception as e:
        logging.error(f"{args.command} failed: {e}")
        print(f"\n{args.command} failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
