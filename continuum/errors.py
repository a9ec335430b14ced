"""
Error taxonomy for Continuum.

Every engine failure is a subclass of ContinuumError and carries a stable
error code. The request-handling layer should show users only the generic
message from public_error() and keep the code for support lookups.
"""

from typing import Any, Dict


class ContinuumError(Exception):
    """Base class for all engine errors."""

    code = "E_CONTINUUM"
    retryable = False


class InvalidArgument(ContinuumError):
    """Malformed input to a pure function. Caller bug, never retried."""

    code = "E_INVALID_ARGUMENT"


class EmptyInput(ContinuumError):
    """Nothing to compress or aggregate. Caller should skip the operation."""

    code = "E_EMPTY_INPUT"


class NotFound(ContinuumError):
    """A thread, revision or entity does not exist."""

    code = "E_NOT_FOUND"


class GeneratorError(ContinuumError):
    """The text generator failed, timed out or returned unusable output."""

    code = "E_GENERATOR"


class SummarizerError(ContinuumError):
    """The summarizer failed, timed out or returned unusable output."""

    code = "E_SUMMARIZER"


class ConcurrentModification(ContinuumError):
    """
    Optimistic-lock conflict on revision append.

    The caller should re-fetch the thread state and retry the whole
    enhancement decision.
    """

    code = "E_CONCURRENT_MODIFICATION"

    def __init__(self, thread_id: str, expected_version: int, actual_version: int):
        self.thread_id = thread_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Thread {thread_id} is at version {actual_version}, expected {expected_version}"
        )


class ConflictRetryable(ContinuumError):
    """Entity creation lost a uniqueness race. Retried once by the aggregator."""

    code = "E_CONFLICT_RETRYABLE"
    retryable = True


class StorageError(ContinuumError):
    """The database rejected a read or write."""

    code = "E_STORAGE"


class ThreadArchived(ContinuumError):
    """Attempted mutation on an archived thread."""

    code = "E_THREAD_ARCHIVED"

    def __init__(self, thread_id: str):
        self.thread_id = thread_id
        super().__init__(f"Thread {thread_id} is archived")


class InvalidTransition(ContinuumError):
    """Revision status change not allowed by the state machine."""

    code = "E_INVALID_TRANSITION"


class InvalidMention(ContinuumError):
    """
    A mention has neither a resolvable identity nor a name and type.

    The caller should drop the offending mention, not abort the batch.
    """

    code = "E_INVALID_MENTION"


GENERIC_FAILURE_MESSAGE = "Something went wrong while updating your report. Please try again."

_PUBLIC_MESSAGES = {
    ConcurrentModification: "This report was updated elsewhere. Please refresh and try again.",
    ThreadArchived: "This thread is archived and can no longer be changed.",
    NotFound: "The requested item could not be found.",
}


def public_error(exc: BaseException) -> Dict[str, Any]:
    """
    Map any exception to a user-safe payload.

    Args:
        exc: The exception raised by the engine or a collaborator

    Returns:
        Dictionary with a generic message and the internal error code
    """
    if isinstance(exc, ContinuumError):
        for error_cls, message in _PUBLIC_MESSAGES.items():
            if isinstance(exc, error_cls):
                return {"error": message, "code": exc.code}
        return {"error": GENERIC_FAILURE_MESSAGE, "code": exc.code}
    return {"error": GENERIC_FAILURE_MESSAGE, "code": ContinuumError.code}
