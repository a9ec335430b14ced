"""
Database manager for Continuum.

This module handles all persistence using DuckDB: threads, messages, report
revisions with their usage ledgers, entities and mentions, and a log of
every AI call for reproducibility.
"""

import duckdb
import functools
import json
import logging
import re
import threading
import uuid
from typing import Any, Dict, List, Optional, Tuple
from datetime import datetime

from ..errors import (
    ConcurrentModification,
    ConflictRetryable,
    InvalidArgument,
    NotFound,
    StorageError,
    ThreadArchived,
)
from ..entities.aggregator import fold_average
from ..models import (
    Entity,
    EntityKey,
    EntityMention,
    Message,
    ReportRevision,
    SharedUser,
    Thread,
    UsageLedger,
    UsageOperation,
)


def slugify(text: str) -> str:
    """Lower-case text and collapse everything but letters and digits into dashes."""
    return re.sub(r'[^a-z0-9]+', '-', text.lower()).strip('-')


def generate_entity_slug(name: str, entity_type: str, ticker: Optional[str] = None) -> str:
    """
    Build the slug for an entity.

    Args:
        name: Canonical entity name
        entity_type: Entity type
        ticker: Optional market symbol

    Returns:
        "<name>-<ticker>" when a ticker is known, "<name>-<type>" otherwise
    """
    base = slugify(name) or "entity"
    if ticker:
        return f"{base}-{ticker.lower()}"
    return f"{base}-{entity_type}"


def _synchronized(method):
    """Serialize access to the shared DuckDB connection."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)
    return wrapper


class DatabaseManager:
    """
    Manages the DuckDB database holding threads, revisions and entities.

    Every public method is safe to call from worker threads; calls are
    serialized on one connection.
    """

    def __init__(self, db_path: str = "continuum.db"):
        """
        Initialize the database manager.

        Args:
            db_path: Path to the DuckDB database file (":memory:" for a transient one)
        """
        self.db_path = db_path
        self.connection = None
        self._lock = threading.RLock()

    def connect(self):
        """Establish connection to the database."""
        self.connection = duckdb.connect(self.db_path)

    def disconnect(self):
        """Close the database connection."""
        if self.connection:
            self.connection.close()
            self.connection = None

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()

    def _require_connection(self):
        if not self.connection:
            raise RuntimeError("Database connection not established")
        return self.connection

    @_synchronized
    def initialize_database(self):
        """
        Create all necessary tables if they don't exist.
        """
        conn = self._require_connection()

        conn.execute("""
            CREATE TABLE IF NOT EXISTS threads (
                thread_id VARCHAR PRIMARY KEY,
                owner_id VARCHAR NOT NULL,
                title VARCHAR NOT NULL,
                status VARCHAR NOT NULL DEFAULT 'active',
                shared_with TEXT NOT NULL DEFAULT '[]',
                metadata TEXT NOT NULL DEFAULT '{}',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        conn.execute("CREATE SEQUENCE IF NOT EXISTS message_seq;")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                message_id VARCHAR PRIMARY KEY,
                seq BIGINT NOT NULL DEFAULT nextval('message_seq'),
                thread_id VARCHAR NOT NULL,
                role VARCHAR NOT NULL,
                content TEXT NOT NULL,
                report_id VARCHAR,
                status VARCHAR NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # The unique version per thread is what rejects a sibling revision
        conn.execute("""
            CREATE TABLE IF NOT EXISTS report_revisions (
                revision_id VARCHAR PRIMARY KEY,
                thread_id VARCHAR NOT NULL,
                title VARCHAR NOT NULL,
                body TEXT NOT NULL,
                version INTEGER NOT NULL,
                status VARCHAR NOT NULL DEFAULT 'draft',
                parent_revision_id VARCHAR,
                parent_version INTEGER,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (thread_id, version)
            )
        """)

        conn.execute("CREATE SEQUENCE IF NOT EXISTS usage_operation_seq;")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS usage_operations (
                operation_id BIGINT PRIMARY KEY DEFAULT nextval('usage_operation_seq'),
                revision_id VARCHAR NOT NULL,
                kind VARCHAR NOT NULL,
                model VARCHAR NOT NULL,
                provider VARCHAR NOT NULL,
                input_tokens BIGINT NOT NULL,
                output_tokens BIGINT NOT NULL,
                cost DOUBLE NOT NULL,
                recorded_at TIMESTAMP NOT NULL
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS entities (
                entity_id VARCHAR PRIMARY KEY,
                name VARCHAR NOT NULL,
                slug VARCHAR NOT NULL UNIQUE,
                entity_type VARCHAR NOT NULL,
                ticker VARCHAR UNIQUE,
                mention_count INTEGER NOT NULL DEFAULT 0,
                sentiment_score DOUBLE,
                sentiment_samples INTEGER NOT NULL DEFAULT 0,
                relevance_score DOUBLE,
                relevance_samples INTEGER NOT NULL DEFAULT 0,
                first_mentioned TIMESTAMP,
                last_mentioned TIMESTAMP,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        conn.execute("CREATE SEQUENCE IF NOT EXISTS mention_seq;")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS entity_mentions (
                mention_id VARCHAR PRIMARY KEY,
                seq BIGINT NOT NULL DEFAULT nextval('mention_seq'),
                entity_id VARCHAR NOT NULL,
                source_id VARCHAR,
                source_type VARCHAR NOT NULL,
                thread_id VARCHAR,
                sentiment DOUBLE,
                relevance DOUBLE,
                mention_type VARCHAR NOT NULL,
                context TEXT NOT NULL,
                created_at TIMESTAMP NOT NULL
            )
        """)

        conn.execute("CREATE SEQUENCE IF NOT EXISTS call_id_seq;")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS ai_agent_calls (
                call_id BIGINT PRIMARY KEY DEFAULT nextval('call_id_seq'),
                agent_name VARCHAR NOT NULL,
                input_data TEXT NOT NULL,
                system_prompt TEXT,
                user_prompt TEXT NOT NULL,
                model_name VARCHAR NOT NULL,
                raw_response TEXT NOT NULL,
                success BOOLEAN NOT NULL,
                error_message TEXT,
                execution_time_ms INTEGER,
                thread_id VARCHAR,
                called_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

    # Threads

    @_synchronized
    def create_thread(self, owner_id: str, title: str,
                      metadata: Optional[Dict[str, Any]] = None) -> Thread:
        """
        Create a new active thread.

        Args:
            owner_id: The user creating the thread
            title: Thread title
            metadata: Optional free-form metadata (e.g. source template)

        Returns:
            The stored thread
        """
        conn = self._require_connection()
        thread_id = str(uuid.uuid4())
        now = datetime.now()

        conn.execute("""
            INSERT INTO threads (thread_id, owner_id, title, status, shared_with, metadata, created_at, updated_at)
            VALUES (?, ?, ?, 'active', '[]', ?, ?, ?)
        """, [thread_id, owner_id, title, json.dumps(metadata or {}), now, now])

        logging.info(f"Created thread {thread_id} for {owner_id}")
        return self.get_thread(thread_id)

    @_synchronized
    def get_thread(self, thread_id: str) -> Optional[Thread]:
        """
        Retrieve a thread with its report versions and current report.

        Args:
            thread_id: The thread to retrieve

        Returns:
            The thread if found, None otherwise
        """
        conn = self._require_connection()

        row = conn.execute("""
            SELECT thread_id, owner_id, title, status, shared_with, metadata, created_at, updated_at
            FROM threads
            WHERE thread_id = ?
        """, [thread_id]).fetchone()

        if not row:
            return None

        versions = [r[0] for r in conn.execute("""
            SELECT revision_id FROM report_revisions
            WHERE thread_id = ?
            ORDER BY version
        """, [thread_id]).fetchall()]

        current = conn.execute("""
            SELECT revision_id FROM report_revisions
            WHERE thread_id = ? AND status != 'archived'
            ORDER BY version DESC
            LIMIT 1
        """, [thread_id]).fetchone()

        return Thread(
            thread_id=row[0],
            owner_id=row[1],
            title=row[2],
            status=row[3],
            shared_with=[SharedUser(**item) for item in json.loads(row[4])],
            metadata=json.loads(row[5]),
            created_at=row[6],
            updated_at=row[7],
            report_versions=versions,
            current_report_id=current[0] if current else None
        )

    @_synchronized
    def list_threads(self, owner_id: str, status: Optional[str] = None) -> List[Thread]:
        """
        List a user's threads, newest first.

        Args:
            owner_id: Owner to filter by
            status: Optional status filter ("active" or "archived")

        Returns:
            List of threads
        """
        conn = self._require_connection()

        query = "SELECT thread_id FROM threads WHERE owner_id = ?"
        params: List[Any] = [owner_id]
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC"

        return [self.get_thread(row[0]) for row in conn.execute(query, params).fetchall()]

    @_synchronized
    def archive_thread(self, thread_id: str) -> Thread:
        """
        Archive a thread. Archiving an archived thread is a no-op.

        Args:
            thread_id: The thread to archive

        Returns:
            The archived thread
        """
        conn = self._require_connection()
        self._get_thread_or_raise(thread_id)

        conn.execute("""
            UPDATE threads SET status = 'archived', updated_at = ?
            WHERE thread_id = ?
        """, [datetime.now(), thread_id])

        logging.info(f"Archived thread {thread_id}")
        return self.get_thread(thread_id)

    @_synchronized
    def share_thread(self, thread_id: str, user_id: str, permission: str = "view") -> Thread:
        """
        Grant or change a principal's access to a thread.

        Args:
            thread_id: The thread to share
            user_id: The principal receiving access
            permission: "view", "comment" or "edit"

        Returns:
            The updated thread
        """
        conn = self._require_connection()
        thread = self._get_thread_or_raise(thread_id, mutable=True)

        shared = [s for s in thread.shared_with if s.user_id != user_id]
        shared.append(SharedUser(user_id=user_id, permission=permission))

        conn.execute("""
            UPDATE threads SET shared_with = ?, updated_at = ?
            WHERE thread_id = ?
        """, [json.dumps([s.model_dump(mode="json") for s in shared]), datetime.now(), thread_id])

        return self.get_thread(thread_id)

    def _get_thread_or_raise(self, thread_id: str, mutable: bool = False) -> Thread:
        thread = self.get_thread(thread_id)
        if thread is None:
            raise NotFound(f"Thread {thread_id} not found")
        if mutable and thread.is_archived:
            raise ThreadArchived(thread_id)
        return thread

    # Messages

    @_synchronized
    def add_message(self, thread_id: str, role: str, content: str,
                    report_id: Optional[str] = None, status: str = "sent") -> Message:
        """
        Append a message to a thread.

        Args:
            thread_id: The owning thread
            role: "user", "assistant" or "system"
            content: Message text
            report_id: Revision produced by this message, if any
            status: Delivery status

        Returns:
            The stored message
        """
        conn = self._require_connection()
        self._get_thread_or_raise(thread_id, mutable=True)

        message = Message(
            message_id=str(uuid.uuid4()),
            thread_id=thread_id,
            role=role,
            content=content,
            report_id=report_id,
            status=status
        )

        conn.execute("""
            INSERT INTO messages (message_id, thread_id, role, content, report_id, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            message.message_id, thread_id, role, content, report_id, status,
            message.created_at, message.updated_at
        ])
        return message

    @_synchronized
    def update_message_status(self, message_id: str, status: str) -> None:
        """
        Change a message's delivery status.

        Args:
            message_id: The message to update
            status: New delivery status
        """
        conn = self._require_connection()
        conn.execute("""
            UPDATE messages SET status = ?, updated_at = ? WHERE message_id = ?
        """, [status, datetime.now(), message_id])

    @_synchronized
    def list_messages(self, thread_id: str) -> List[Message]:
        """
        List a thread's messages in conversation order.

        Args:
            thread_id: The thread

        Returns:
            List of messages, oldest first
        """
        conn = self._require_connection()

        results = conn.execute("""
            SELECT message_id, thread_id, role, content, report_id, status, created_at, updated_at
            FROM messages
            WHERE thread_id = ?
            ORDER BY seq
        """, [thread_id]).fetchall()

        return [
            Message(
                message_id=row[0], thread_id=row[1], role=row[2], content=row[3],
                report_id=row[4], status=row[5], created_at=row[6], updated_at=row[7]
            )
            for row in results
        ]

    # Report revisions

    @_synchronized
    def get_head_version(self, thread_id: str) -> int:
        """
        Get the highest revision version of a thread.

        Args:
            thread_id: The thread

        Returns:
            The latest version, 0 when the thread has no report yet
        """
        conn = self._require_connection()
        row = conn.execute("""
            SELECT COALESCE(MAX(version), 0) FROM report_revisions WHERE thread_id = ?
        """, [thread_id]).fetchone()
        return int(row[0])

    @_synchronized
    def persist_revision(self, thread_id: str, expected_version: int, body: str,
                         title: str = "", parent_version: Optional[int] = None,
                         operations: Optional[List[UsageOperation]] = None) -> ReportRevision:
        """
        Store a new revision if the thread is still at the expected version.

        The check and the write happen in one transaction. A revision built on a
        parent starts with a copy of the parent's usage ledger.

        Args:
            thread_id: The owning thread
            expected_version: Head version the caller derived its context from (0 for none)
            body: Report body
            title: Report title
            parent_version: Version this revision was built upon, if any
            operations: Usage of the step that produced the body, stored alongside it

        Returns:
            The stored revision with its assigned version

        Raises:
            NotFound: If the thread or the parent revision does not exist
            ThreadArchived: If the thread is archived
            ConcurrentModification: If another revision was appended first
        """
        conn = self._require_connection()
        self._get_thread_or_raise(thread_id, mutable=True)

        conn.begin()
        try:
            head = self.get_head_version(thread_id)
            if head != expected_version:
                raise ConcurrentModification(thread_id, expected_version, head)

            parent = None
            if parent_version is not None:
                parent = self.get_revision_by_version(thread_id, parent_version)
                if parent is None:
                    raise NotFound(f"Thread {thread_id} has no revision v{parent_version}")

            revision_id = str(uuid.uuid4())
            conn.execute("""
                INSERT INTO report_revisions (
                    revision_id, thread_id, title, body, version, status,
                    parent_revision_id, parent_version, created_at
                ) VALUES (?, ?, ?, ?, ?, 'draft', ?, ?, ?)
            """, [
                revision_id, thread_id, title, body, head + 1,
                parent.revision_id if parent else None, parent_version, datetime.now()
            ])

            if parent is not None:
                for operation in self.get_usage(parent.revision_id).operations:
                    self._insert_usage_operation(revision_id, operation)
            for operation in operations or []:
                self._insert_usage_operation(revision_id, operation)

            conn.execute("UPDATE threads SET updated_at = ? WHERE thread_id = ?",
                         [datetime.now(), thread_id])
            conn.commit()

        except duckdb.IntegrityError as e:
            conn.rollback()
            logging.warning(f"Revision append for thread {thread_id} lost a race: {e}")
            raise ConcurrentModification(thread_id, expected_version, self.get_head_version(thread_id)) from e
        except BaseException:
            conn.rollback()
            raise

        logging.info(f"Stored revision v{head + 1} for thread {thread_id}")
        return self.get_revision(revision_id)

    @_synchronized
    def get_revision(self, revision_id: str) -> Optional[ReportRevision]:
        """
        Retrieve a revision by id.

        Args:
            revision_id: The revision to retrieve

        Returns:
            The revision with its usage ledger if found, None otherwise
        """
        conn = self._require_connection()
        row = conn.execute("""
            SELECT revision_id, thread_id, title, body, version, status,
                   parent_revision_id, parent_version, created_at
            FROM report_revisions
            WHERE revision_id = ?
        """, [revision_id]).fetchone()
        return self._row_to_revision(row) if row else None

    @_synchronized
    def get_revision_by_version(self, thread_id: str, version: int) -> Optional[ReportRevision]:
        """
        Retrieve a thread's revision by version number.

        Args:
            thread_id: The owning thread
            version: Version number

        Returns:
            The revision if found, None otherwise
        """
        conn = self._require_connection()
        row = conn.execute("""
            SELECT revision_id, thread_id, title, body, version, status,
                   parent_revision_id, parent_version, created_at
            FROM report_revisions
            WHERE thread_id = ? AND version = ?
        """, [thread_id, version]).fetchone()
        return self._row_to_revision(row) if row else None

    @_synchronized
    def list_revisions(self, thread_id: str) -> List[ReportRevision]:
        """
        List a thread's revisions in version order, archived ones included.

        Args:
            thread_id: The owning thread

        Returns:
            List of revisions
        """
        conn = self._require_connection()
        results = conn.execute("""
            SELECT revision_id, thread_id, title, body, version, status,
                   parent_revision_id, parent_version, created_at
            FROM report_revisions
            WHERE thread_id = ?
            ORDER BY version
        """, [thread_id]).fetchall()
        return [self._row_to_revision(row) for row in results]

    @_synchronized
    def get_current_revision(self, thread_id: str) -> Optional[ReportRevision]:
        """
        Resolve the thread's current revision: the latest one not archived.

        Args:
            thread_id: The owning thread

        Returns:
            The current revision, None when there is none
        """
        thread = self.get_thread(thread_id)
        if thread is None or thread.current_report_id is None:
            return None
        return self.get_revision(thread.current_report_id)

    @_synchronized
    def get_revision_state(self, thread_id: str) -> Tuple[int, Optional[ReportRevision]]:
        """
        Read the head version and the current revision under one lock.

        Args:
            thread_id: The owning thread

        Returns:
            (head version, current revision or None)
        """
        return self.get_head_version(thread_id), self.get_current_revision(thread_id)

    @_synchronized
    def update_revision_status(self, revision_id: str, status: str) -> ReportRevision:
        """
        Set a revision's status flag. Content is never changed.

        Args:
            revision_id: The revision
            status: "draft", "published" or "archived"

        Returns:
            The updated revision
        """
        conn = self._require_connection()
        conn.execute("UPDATE report_revisions SET status = ? WHERE revision_id = ?",
                     [status, revision_id])
        revision = self.get_revision(revision_id)
        if revision is None:
            raise NotFound(f"Revision {revision_id} not found")
        return revision

    def _row_to_revision(self, row) -> ReportRevision:
        return ReportRevision(
            revision_id=row[0],
            thread_id=row[1],
            title=row[2],
            body=row[3],
            version=row[4],
            status=row[5],
            parent_revision_id=row[6],
            parent_version=row[7],
            created_at=row[8],
            usage=self.get_usage(row[0])
        )

    # Usage ledger

    @_synchronized
    def append_usage_operation(self, revision_id: str, operation: UsageOperation) -> UsageLedger:
        """
        Append one operation to a revision's usage ledger.

        Totals are derived from the operations, so concurrent appends commute.

        Args:
            revision_id: The revision charged
            operation: The operation to record

        Returns:
            The updated ledger
        """
        self._require_connection()
        self._insert_usage_operation(revision_id, operation)
        return self.get_usage(revision_id)

    def _insert_usage_operation(self, revision_id: str, operation: UsageOperation) -> None:
        self.connection.execute("""
            INSERT INTO usage_operations (
                revision_id, kind, model, provider, input_tokens, output_tokens, cost, recorded_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            revision_id, operation.kind, operation.model, operation.provider,
            operation.input_tokens, operation.output_tokens, operation.cost, operation.timestamp
        ])

    @_synchronized
    def get_usage(self, revision_id: str) -> UsageLedger:
        """
        Get a revision's usage ledger.

        Args:
            revision_id: The revision

        Returns:
            Ledger with operations in the order they were appended
        """
        conn = self._require_connection()
        results = conn.execute("""
            SELECT kind, model, provider, input_tokens, output_tokens, cost, recorded_at
            FROM usage_operations
            WHERE revision_id = ?
            ORDER BY operation_id
        """, [revision_id]).fetchall()

        ledger = UsageLedger()
        for row in results:
            ledger = ledger.appended(UsageOperation(
                kind=row[0], model=row[1], provider=row[2], input_tokens=row[3],
                output_tokens=row[4], cost=row[5], timestamp=row[6]
            ))
        return ledger

    # Entities

    @_synchronized
    def get_entity(self, entity_id: str) -> Optional[Entity]:
        """
        Retrieve an entity by id.

        Args:
            entity_id: The entity to retrieve

        Returns:
            The entity if found, None otherwise
        """
        conn = self._require_connection()
        row = conn.execute(f"""
            SELECT {self._ENTITY_COLUMNS} FROM entities WHERE entity_id = ?
        """, [entity_id]).fetchone()
        return self._row_to_entity(row) if row else None

    @_synchronized
    def find_entity(self, key: EntityKey) -> Optional[Entity]:
        """
        Resolve a key without creating anything.

        A ticker resolves by exact ticker only. Otherwise the name is matched
        case-insensitively within the same type (or by its slug).

        Args:
            key: What is known about the entity

        Returns:
            The entity if found, None otherwise
        """
        conn = self._require_connection()

        if key.ticker:
            row = conn.execute(f"""
                SELECT {self._ENTITY_COLUMNS} FROM entities WHERE ticker = ?
            """, [key.ticker.upper()]).fetchone()
            return self._row_to_entity(row) if row else None

        if not key.name or not key.entity_type:
            raise InvalidArgument("Entity key needs a ticker or a name and type")

        row = conn.execute(f"""
            SELECT {self._ENTITY_COLUMNS} FROM entities
            WHERE entity_type = ? AND (lower(name) = lower(?) OR slug = ?)
            ORDER BY created_at
            LIMIT 1
        """, [key.entity_type, key.name.strip(), generate_entity_slug(key.name, key.entity_type)]).fetchone()
        return self._row_to_entity(row) if row else None

    @_synchronized
    def create_entity(self, key: EntityKey) -> Entity:
        """
        Insert a new entity.

        Args:
            key: Name and type, optionally a ticker

        Returns:
            The stored entity

        Raises:
            ConflictRetryable: If the slug or ticker is already taken
        """
        conn = self._require_connection()

        ticker = key.ticker.upper() if key.ticker else None
        name = (key.name or ticker or "").strip()
        entity_type = key.entity_type or "asset"
        if not name:
            raise InvalidArgument("Cannot create an entity without a name or ticker")

        entity_id = str(uuid.uuid4())
        try:
            conn.execute("""
                INSERT INTO entities (entity_id, name, slug, entity_type, ticker, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, [entity_id, name, generate_entity_slug(name, entity_type, ticker), entity_type, ticker, datetime.now()])
        except duckdb.IntegrityError as e:
            raise ConflictRetryable(f"Entity {name} ({entity_type}) already exists: {e}") from e

        logging.info(f"Created entity {name} ({entity_type})")
        return self.get_entity(entity_id)

    @_synchronized
    def resolve_or_create_entity(self, key: EntityKey) -> Entity:
        """
        Find the entity for a key, creating it when nothing matches.

        Args:
            key: What is known about the entity

        Returns:
            The existing or newly created entity

        Raises:
            ConflictRetryable: If creation collided with an existing row
            StorageError: If the database fails otherwise
        """
        try:
            existing = self.find_entity(key)
            if existing:
                return existing
            return self.create_entity(key)
        except duckdb.Error as e:
            logging.error(f"Failed to resolve entity {key.name or key.ticker}: {e}")
            raise StorageError(f"Failed to resolve entity: {e}") from e

    @_synchronized
    def record_mention(self, mention: EntityMention) -> EntityMention:
        """
        Store a mention and fold it into the entity's running statistics.

        Args:
            mention: A mention whose entity_id is resolved

        Returns:
            The stored mention with its id

        Raises:
            StorageError: If the database rejects the write
        """
        conn = self._require_connection()

        if not mention.entity_id:
            raise InvalidArgument("Mentions must be resolved to an entity before recording")
        entity = self.get_entity(mention.entity_id)
        if entity is None:
            raise NotFound(f"Entity {mention.entity_id} not found")

        stored = mention.model_copy(update={"mention_id": str(uuid.uuid4())})
        now = datetime.now()

        sentiment, sentiment_samples = fold_average(
            entity.sentiment_score, entity.sentiment_samples, mention.sentiment)
        relevance, relevance_samples = fold_average(
            entity.relevance_score, entity.relevance_samples, mention.relevance)

        conn.begin()
        try:
            conn.execute("""
                INSERT INTO entity_mentions (
                    mention_id, entity_id, source_id, source_type, thread_id,
                    sentiment, relevance, mention_type, context, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, [
                stored.mention_id, stored.entity_id, stored.source_id, stored.source_type,
                stored.thread_id, stored.sentiment, stored.relevance, stored.mention_type,
                stored.context, stored.created_at
            ])
            conn.execute("""
                UPDATE entities SET
                    mention_count = mention_count + 1,
                    sentiment_score = ?, sentiment_samples = ?,
                    relevance_score = ?, relevance_samples = ?,
                    first_mentioned = COALESCE(first_mentioned, ?),
                    last_mentioned = ?
                WHERE entity_id = ?
            """, [sentiment, sentiment_samples, relevance, relevance_samples, now, now, entity.entity_id])
            conn.commit()
        except duckdb.Error as e:
            conn.rollback()
            logging.error(f"Failed to record mention of {entity.name}: {e}")
            raise StorageError(f"Failed to record mention: {e}") from e
        except BaseException:
            conn.rollback()
            raise

        return stored

    @_synchronized
    def list_entities(self, entity_type: Optional[str] = None, limit: Optional[int] = None) -> List[Entity]:
        """
        List entities, most mentioned first.

        Args:
            entity_type: Optional filter by entity type
            limit: Limit number of results

        Returns:
            List of entities
        """
        conn = self._require_connection()

        query = f"SELECT {self._ENTITY_COLUMNS} FROM entities"
        params: List[Any] = []
        if entity_type:
            query += " WHERE entity_type = ?"
            params.append(entity_type)
        query += " ORDER BY mention_count DESC, name"
        if limit:
            query += " LIMIT ?"
            params.append(int(limit))

        return [self._row_to_entity(row) for row in conn.execute(query, params).fetchall()]

    @_synchronized
    def get_mentions(self, entity_id: Optional[str] = None,
                     source_id: Optional[str] = None) -> List[EntityMention]:
        """
        List recorded mentions in the order they were recorded.

        Args:
            entity_id: Filter by entity (optional)
            source_id: Filter by source report or message (optional)

        Returns:
            List of mentions
        """
        conn = self._require_connection()

        query = """
            SELECT m.mention_id, m.entity_id, e.name, e.entity_type, e.ticker, m.source_id,
                   m.source_type, m.thread_id, m.sentiment, m.relevance, m.context, m.created_at
            FROM entity_mentions m
            JOIN entities e ON e.entity_id = m.entity_id
            WHERE 1=1
        """
        params: List[Any] = []
        if entity_id:
            query += " AND m.entity_id = ?"
            params.append(entity_id)
        if source_id:
            query += " AND m.source_id = ?"
            params.append(source_id)
        query += " ORDER BY m.seq"

        return [
            EntityMention(
                mention_id=row[0], entity_id=row[1], name=row[2], entity_type=row[3],
                ticker=row[4], source_id=row[5], source_type=row[6], thread_id=row[7],
                sentiment=row[8], relevance=row[9], context=row[10], created_at=row[11]
            )
            for row in conn.execute(query, params).fetchall()
        ]

    _ENTITY_COLUMNS = """entity_id, name, slug, entity_type, ticker, mention_count,
        sentiment_score, sentiment_samples, relevance_score, relevance_samples,
        first_mentioned, last_mentioned"""

    def _row_to_entity(self, row) -> Entity:
        return Entity(
            entity_id=row[0], name=row[1], slug=row[2], entity_type=row[3], ticker=row[4],
            mention_count=row[5], sentiment_score=row[6], sentiment_samples=row[7],
            relevance_score=row[8], relevance_samples=row[9],
            first_mentioned=row[10], last_mentioned=row[11]
        )

    # AI call log

    @_synchronized
    def log_ai_agent_call(
        self,
        agent_name: str,
        input_data: str,
        system_prompt: Optional[str],
        user_prompt: str,
        model_name: str,
        raw_response: str,
        success: bool = True,
        error_message: Optional[str] = None,
        execution_time_ms: Optional[int] = None,
        thread_id: Optional[str] = None
    ) -> Optional[int]:
        """
        Log an AI agent call to the database for reproducibility.
        """
        conn = self._require_connection()

        result = conn.execute("""
            INSERT INTO ai_agent_calls (
                agent_name, input_data, system_prompt, user_prompt, model_name,
                raw_response, success, error_message, execution_time_ms, thread_id
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING call_id
        """, [
            agent_name, input_data, system_prompt, user_prompt, model_name,
            raw_response, success, error_message, execution_time_ms, thread_id
        ]).fetchone()
        return result[0] if result else None

    @_synchronized
    def get_ai_agent_calls(
        self,
        agent_name: Optional[str] = None,
        thread_id: Optional[str] = None,
        success_only: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict]:
        """
        Retrieve AI agent calls from the database.

        Args:
            agent_name: Filter by agent name (optional)
            thread_id: Filter by thread (optional)
            success_only: Only return successful calls
            limit: Limit number of results

        Returns:
            List of AI agent call records, newest first
        """
        conn = self._require_connection()

        query = """
            SELECT call_id, agent_name, input_data, system_prompt, user_prompt,
                   model_name, raw_response, success, error_message,
                   execution_time_ms, thread_id, called_at
            FROM ai_agent_calls
            WHERE 1=1
        """
        params: List[Any] = []

        if agent_name:
            query += " AND agent_name = ?"
            params.append(agent_name)

        if thread_id:
            query += " AND thread_id = ?"
            params.append(thread_id)

        if success_only:
            query += " AND success = true"

        query += " ORDER BY call_id DESC"

        if limit:
            query += " LIMIT ?"
            params.append(int(limit))

        results = conn.execute(query, params).fetchall()

        return [
            {
                "call_id": row[0],
                "agent_name": row[1],
                "input_data": row[2],
                "system_prompt": row[3],
                "user_prompt": row[4],
                "model_name": row[5],
                "raw_response": row[6],
                "success": row[7],
                "error_message": row[8],
                "execution_time_ms": row[9],
                "thread_id": row[10],
                "called_at": row[11]
            }
            for row in results
        ]
