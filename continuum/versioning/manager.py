"""
Git snapshots for Continuum.

Each stored revision can be written out as a markdown file and committed to
a Git repository, giving an external audit trail of every report state and
the usage it carried.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from datetime import datetime

import git
from git import Repo, InvalidGitRepositoryError

from ..config import config
from ..models import ReportRevision, Thread
from ..pricing import format_cost, format_tokens


class SnapshotManager:
    """
    Writes report revisions to a Git repository.

    The working tree holds one file per thread, overwritten by every new
    revision; Git history holds the versions.
    """

    def __init__(self, repo_path: Optional[str] = None,
                 author_name: Optional[str] = None, author_email: Optional[str] = None):
        """
        Initialize the snapshot manager.

        Args:
            repo_path: Path to the Git repository (defaults to config value)
            author_name: Commit author (defaults to config value)
            author_email: Commit author email (defaults to config value)
        """
        self.repo_path = Path(repo_path or config.snapshot_directory)
        self.author = git.Actor(
            author_name or config.get("snapshots.author_name", "Continuum"),
            author_email or config.get("snapshots.author_email", "continuum@localhost")
        )
        self.repo: Optional[Any] = None

        logging.info(f"Initialized SnapshotManager for: {self.repo_path}")

    def initialize_repository(self) -> bool:
        """
        Initialize the Git repository if it doesn't exist.

        Returns:
            True if the repository is ready, False on error
        """
        try:
            if self._is_git_repository():
                self.repo = Repo(self.repo_path)
                return True

            self.repo_path.mkdir(parents=True, exist_ok=True)
            self.repo = Repo.init(self.repo_path)

            gitignore_path = self.repo_path / ".gitignore"
            if not gitignore_path.exists():
                gitignore_path.write_text("*.tmp\n.DS_Store\n", encoding="utf-8")
                self.repo.index.add([".gitignore"])
                self.repo.index.commit(
                    "Initial commit: Add .gitignore",
                    author=self.author,
                    committer=self.author
                )

            logging.info("Snapshot repository initialized")
            return True

        except (OSError, git.GitError) as e:
            logging.error(f"Failed to initialize snapshot repository: {e}")
            return False

    def _is_git_repository(self) -> bool:
        if not self.repo_path.exists():
            return False
        try:
            Repo(self.repo_path)
            return True
        except InvalidGitRepositoryError:
            return False

    def snapshot_path(self, thread_id: str) -> Path:
        """Relative path of a thread's report file inside the repository."""
        return Path("threads") / thread_id / "report.md"

    def render_revision(self, thread: Thread, revision: ReportRevision) -> str:
        """
        Render a revision as markdown with a metadata header.

        Args:
            thread: The owning thread
            revision: The revision to render

        Returns:
            Markdown document
        """
        lineage = f"v{revision.parent_version}" if revision.parent_version else "none"
        header = [
            f"# {revision.title or thread.title}",
            "",
            f"- Thread: {thread.thread_id}",
            f"- Version: v{revision.version} ({revision.status})",
            f"- Built upon: {lineage}",
            f"- Tokens: {format_tokens(revision.usage.total_tokens)}",
            f"- Cost: {format_cost(revision.usage.total_cost)}",
            f"- Created: {revision.created_at.isoformat()}",
            "",
            "---",
            "",
        ]
        return "\n".join(header) + revision.body.rstrip() + "\n"

    def write_snapshot(self, thread: Thread, revision: ReportRevision) -> bool:
        """
        Write a revision to the working tree and commit it.

        Args:
            thread: The owning thread
            revision: The revision to snapshot

        Returns:
            True if the snapshot was committed (or unchanged), False on error
        """
        if not self.repo and not self.initialize_repository():
            return False

        rel_path = self.snapshot_path(thread.thread_id)
        try:
            target = self.repo_path / rel_path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(self.render_revision(thread, revision), encoding="utf-8")
        except OSError as e:
            logging.error(f"Failed to write snapshot for thread {thread.thread_id}: {e}")
            return False

        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        action = "Enhance" if revision.parent_version else "Create"
        message = f"""AI: {action} report v{revision.version} for {thread.title}

Written by Continuum on {timestamp}
Thread: {thread.thread_id}
Revision: {revision.revision_id}"""

        return self.commit_files([str(rel_path)], message)

    def commit_files(self, file_paths: List[str], message: str) -> bool:
        """
        Stage files and commit them in one operation.

        Args:
            file_paths: Paths relative to the repository root
            message: Commit message

        Returns:
            True if the commit succeeded or there was nothing to commit
        """
        if not self.repo:
            logging.error("Snapshot repository not initialized")
            return False

        try:
            self.repo.index.add(file_paths)
            if not self.repo.index.diff("HEAD"):
                logging.info("No snapshot changes to commit")
                return True

            commit = self.repo.index.commit(message, author=self.author, committer=self.author)
            logging.info(f"Created snapshot commit: {commit.hexsha[:8]}")
            return True

        except (OSError, ValueError, git.GitError) as e:
            logging.error(f"Failed to commit snapshot: {e}")
            return False

    def get_history(self, limit: int = 10) -> List[Dict[str, Any]]:
        """
        Get the snapshot commit history.

        Args:
            limit: Maximum number of commits to return

        Returns:
            List of commit information dictionaries, newest first
        """
        if not self.repo and not self.initialize_repository():
            return []

        return [
            {
                "hash": commit.hexsha,
                "short_hash": commit.hexsha[:8],
                "message": commit.message.strip(),
                "author": str(commit.author),
                "date": commit.committed_datetime.isoformat(),
            }
            for commit in self.repo.iter_commits(max_count=limit)
        ]
