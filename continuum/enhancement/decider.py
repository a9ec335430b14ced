"""
Incremental enhancement decisions for Continuum.

Every user turn either extends the thread's current report or starts a new
one. The decision and the directive handed to the generator are a pure
function of the thread, the prior report and the instruction.
"""

from typing import Iterable, Optional

from ..errors import InvalidArgument
from ..models import EnhancementPlan, Message, ReportRevision, SessionPolicy, Thread
from .auto_continue import detect_data_requests


FRESH_DIRECTIVE = """Create a complete, well-structured report for the following request.

REQUEST:
{instruction}

Output the full report."""

INCREMENTAL_DIRECTIVE = """You are enhancing the existing report shown above. Apply the new request to it.

Rules:
1. Preserve every previously added section unless the new request explicitly contradicts it.
2. Add or modify only what the new request asks for.
3. Never regenerate unrelated sections from scratch.

NEW REQUEST:
{instruction}

Output the complete updated report."""


class EnhancementDecider:
    """
    Chooses between a fresh report and an incremental enhancement.
    """

    def decide(self, thread: Thread, prior_report: Optional[ReportRevision], new_instruction: str,
               messages: Optional[Iterable[Message]] = None,
               policy: Optional[SessionPolicy] = None) -> EnhancementPlan:
        """
        Plan one user turn.

        Args:
            thread: The thread the turn belongs to
            prior_report: The thread's current revision, if any
            new_instruction: The user's request
            messages: Thread history; when given, a thread without any
                assistant-produced report is treated as fresh
            policy: Session policy (defaults to incremental enabled)

        Returns:
            The plan, with the prior body as context when incremental

        Raises:
            InvalidArgument: If the thread has no identifier or the instruction is empty
        """
        if thread is None or not getattr(thread, "thread_id", None):
            raise InvalidArgument("Thread has no identifier")
        if not isinstance(new_instruction, str) or not new_instruction.strip():
            raise InvalidArgument("Instruction must be a non-empty string")

        policy = policy or SessionPolicy()
        data_requests = detect_data_requests(new_instruction)

        if (prior_report is None
                or not policy.incremental
                or (messages is not None and not any(m.produced_report for m in messages))):
            return EnhancementPlan(
                mode="fresh",
                instruction=new_instruction,
                directive=FRESH_DIRECTIVE.format(instruction=new_instruction),
                data_requests=data_requests
            )

        return EnhancementPlan(
            mode="incremental",
            instruction=new_instruction,
            directive=INCREMENTAL_DIRECTIVE.format(instruction=new_instruction),
            context=prior_report.body,
            parent_revision=prior_report,
            data_requests=data_requests
        )
