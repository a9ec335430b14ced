"""
Report continuity for Continuum.

Tracks, per thread, which revision is current, what it was built from and
what it cost. Per-thread states are:

    no-report -> draft -> published <-> archived

Every write goes through the database in a worker thread so the event loop
keeps serving other requests while DuckDB works.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..database import DatabaseManager
from ..errors import InvalidArgument, InvalidTransition, NotFound, ThreadArchived
from ..models import Message, ReportRevision, Thread, UsageLedger, UsageOperation


NO_REPORT = "no-report"

# Target status -> statuses it may be entered from
_TRANSITIONS = {
    "published": ("draft", "archived"),
    "archived": ("draft", "published"),
}


class ReportContinuityStore:
    """
    Async state machine over a thread's report revisions.
    """

    def __init__(self, db: DatabaseManager):
        """
        Initialize the store.

        Args:
            db: Connected and initialized database manager
        """
        self.db = db

    async def _run(self, func, *args, **kwargs):
        return await asyncio.to_thread(func, *args, **kwargs)

    # Threads and messages

    async def create_thread(self, owner_id: str, title: str,
                            metadata: Optional[Dict[str, Any]] = None) -> Thread:
        """Create a thread; it starts in the no-report state."""
        return await self._run(self.db.create_thread, owner_id, title, metadata)

    async def get_thread(self, thread_id: str) -> Thread:
        """
        Get a thread.

        Raises:
            NotFound: If the thread does not exist
        """
        thread = await self._run(self.db.get_thread, thread_id)
        if thread is None:
            raise NotFound(f"Thread {thread_id} not found")
        return thread

    async def archive_thread(self, thread_id: str) -> Thread:
        """Archive a thread. All later revision transitions are rejected."""
        return await self._run(self.db.archive_thread, thread_id)

    async def add_message(self, thread_id: str, role: str, content: str,
                          report_id: Optional[str] = None, status: str = "sent") -> Message:
        """Append a message to an active thread."""
        return await self._run(self.db.add_message, thread_id, role, content, report_id, status)

    async def set_message_status(self, message_id: str, status: str) -> None:
        """Update a message's delivery status."""
        await self._run(self.db.update_message_status, message_id, status)

    async def list_messages(self, thread_id: str) -> List[Message]:
        """List a thread's messages, oldest first."""
        return await self._run(self.db.list_messages, thread_id)

    # Revisions

    async def head_version(self, thread_id: str) -> int:
        """Latest version in the thread, archived revisions included; 0 when none."""
        return await self._run(self.db.get_head_version, thread_id)

    async def current_revision(self, thread_id: str) -> Optional[ReportRevision]:
        """The latest revision that is not archived."""
        return await self._run(self.db.get_current_revision, thread_id)

    async def revision_state(self, thread_id: str) -> Tuple[int, Optional[ReportRevision]]:
        """Head version and current revision read together, for optimistic appends."""
        return await self._run(self.db.get_revision_state, thread_id)

    async def get_revision(self, revision_id: str) -> ReportRevision:
        """
        Get a revision, archived ones included.

        Raises:
            NotFound: If the revision does not exist
        """
        revision = await self._run(self.db.get_revision, revision_id)
        if revision is None:
            raise NotFound(f"Revision {revision_id} not found")
        return revision

    async def list_revisions(self, thread_id: str) -> List[ReportRevision]:
        """All revisions of a thread in version order."""
        return await self._run(self.db.list_revisions, thread_id)

    async def thread_state(self, thread_id: str) -> str:
        """
        Get the thread's position in the state machine.

        Returns:
            "no-report", or the status of the thread's latest revision
        """
        revisions = await self.list_revisions(thread_id)
        if not revisions:
            return NO_REPORT
        return revisions[-1].status

    async def lineage(self, revision_id: str) -> List[ReportRevision]:
        """
        Follow parent links back to the first revision.

        Args:
            revision_id: Starting revision

        Returns:
            The revision followed by its ancestors, newest first
        """
        chain = []
        current: Optional[ReportRevision] = await self.get_revision(revision_id)
        while current is not None:
            chain.append(current)
            if current.parent_revision_id is None:
                break
            current = await self._run(self.db.get_revision, current.parent_revision_id)
        return chain

    async def append_revision(self, thread_id: str, expected_current_version: int, content: str,
                              parent_version: Optional[int] = None, title: str = "",
                              operations: Sequence[UsageOperation] = ()) -> ReportRevision:
        """
        Create revision v(n+1) if the thread is still at v(n).

        Args:
            thread_id: The owning thread
            expected_current_version: Head version the caller built its context from (0 for none)
            content: The new report body
            parent_version: Version the content was built upon, if any
            title: Report title
            operations: Usage operations of the step that produced the content,
                stored in the same transaction as the revision

        Returns:
            The stored draft revision

        Raises:
            InvalidArgument: If the versions or the content are malformed
            ThreadArchived: If the thread is archived
            ConcurrentModification: If the thread moved past expected_current_version
        """
        if not isinstance(expected_current_version, int) or expected_current_version < 0:
            raise InvalidArgument("expected_current_version must be a non-negative integer")
        if parent_version is not None and not 1 <= parent_version <= expected_current_version:
            raise InvalidArgument(
                f"Parent version {parent_version} cannot precede version {expected_current_version + 1}"
            )
        if not isinstance(content, str) or not content.strip():
            raise InvalidArgument("Revision content must be non-empty text")

        revision = await self._run(
            self.db.persist_revision, thread_id, expected_current_version, content,
            title, parent_version, list(operations)
        )
        logging.info(
            f"Thread {thread_id} advanced to v{revision.version}"
            + (f" (built upon v{parent_version})" if parent_version else "")
        )
        return revision

    async def append_usage(self, revision_id: str, operation: UsageOperation) -> UsageLedger:
        """
        Append a usage operation to a revision's ledger.

        Appends to the same revision commute, so no version check is made.

        Raises:
            NotFound: If the revision does not exist
            ThreadArchived: If the owning thread is archived
        """
        revision = await self.get_revision(revision_id)
        await self._require_active_thread(revision.thread_id)
        return await self._run(self.db.append_usage_operation, revision_id, operation)

    async def publish(self, revision_id: str) -> ReportRevision:
        """Mark a revision published. Also restores an archived revision."""
        return await self._transition(revision_id, "published")

    async def archive(self, revision_id: str) -> ReportRevision:
        """Archive a revision. It stays readable but is never current."""
        return await self._transition(revision_id, "archived")

    async def _transition(self, revision_id: str, target: str) -> ReportRevision:
        revision = await self.get_revision(revision_id)
        await self._require_active_thread(revision.thread_id)

        if revision.status == target:
            return revision
        if revision.status not in _TRANSITIONS[target]:
            raise InvalidTransition(f"Cannot move revision {revision_id} from {revision.status} to {target}")

        updated = await self._run(self.db.update_revision_status, revision_id, target)
        logging.info(f"Revision v{updated.version} of thread {updated.thread_id} is now {target}")
        return updated

    async def _require_active_thread(self, thread_id: str) -> Thread:
        thread = await self.get_thread(thread_id)
        if thread.is_archived:
            raise ThreadArchived(thread_id)
        return thread
