"""
Context compression for Continuum.

Long threads accumulate report text faster than any context window grows.
When the text handed to the generator is over budget, it is summarized by
a language model under a fixed set of instructions.
"""

import logging
import math
from typing import Optional

from ..agents.base import TextSummarizer
from ..config import config
from ..errors import ContinuumError, EmptyInput, InvalidArgument, SummarizerError
from ..models import CompressionResult, MaybeCompressResult


CHARS_PER_TOKEN = 4

_INSTRUCTIONS = {
    "report": """You are an expert at compressing and summarizing report content while preserving all critical information.

Your task is to compress the following report while maintaining:
1. All key findings, insights, decisions, and recommendations
2. Important data points and metrics
3. Critical analysis and conclusions
4. Structural organization and flow

Remove:
1. Redundant explanations and prose
2. Verbose padding that can be condensed
3. Repeated data
4. Decorative formatting

Provide the compressed version in the same format as the input.

Here is the report to compress:""",

    "thread": """You are an expert at compressing and summarizing conversation context while preserving all critical information.

Your task is to compress the following context while maintaining:
1. All key findings, decisions, outcomes, and action items
2. Important data points and technical details
3. Context needed to continue the conversation
4. Structural organization and chronological flow

Remove:
1. Redundant information and prose
2. Verbose padding that can be condensed
3. Repeated data and exchanges
4. Decorative formatting and pleasantries

Provide the compressed version in the same format as the input.

Here is the context to compress:""",
}


def estimate_tokens(text: Optional[str]) -> int:
    """
    Estimate the token count of a text at four characters per token.

    Args:
        text: Any text; None counts as empty

    Returns:
        ceil(len(text) / 4)
    """
    return math.ceil(len(text or "") / CHARS_PER_TOKEN)


def compression_ratio(original_tokens: int, new_tokens: int) -> int:
    """
    Percentage of tokens removed, rounded to the nearest integer with halves up.

    Args:
        original_tokens: Estimated tokens before compression (must be positive)
        new_tokens: Estimated tokens after compression

    Returns:
        round(100 * (original - new) / original)
    """
    return math.floor(100 * (original_tokens - new_tokens) / original_tokens + 0.5)


class CompressionPolicy:
    """
    Decides when text is over budget and compresses it.
    """

    def __init__(self, threshold_tokens: Optional[int] = None):
        """
        Initialize the policy.

        Args:
            threshold_tokens: Estimated-token budget (defaults to config value)
        """
        self.threshold_tokens = threshold_tokens if threshold_tokens is not None else config.compression_threshold

    def should_compress(self, text: Optional[str]) -> bool:
        """Check whether text exceeds the budget."""
        return estimate_tokens(text) > self.threshold_tokens

    def build_request(self, text: str, kind: str = "report") -> str:
        """
        Build the full summarization request for a text.

        Args:
            text: The text to compress
            kind: "report" or "thread"

        Returns:
            Instructions followed by the text
        """
        instructions = _INSTRUCTIONS.get(kind)
        if instructions is None:
            raise InvalidArgument(f"Unknown compression kind: {kind}")
        return f"{instructions}\n\n{text}\n\nCompressed version:"

    async def compress(self, text: Optional[str], summarizer: TextSummarizer,
                       kind: str = "report") -> CompressionResult:
        """
        Compress text with exactly one summarizer call.

        Args:
            text: The text to compress
            summarizer: Summarization collaborator
            kind: "report" or "thread" wording of the instructions

        Returns:
            The compressed text with token estimates and compression ratio

        Raises:
            EmptyInput: If there is nothing to compress
            InvalidArgument: If kind is not "report" or "thread"
            SummarizerError: If the summarizer fails or returns no text
        """
        if text is None or not text.strip():
            raise EmptyInput("Nothing to compress")

        request = self.build_request(text, kind)

        try:
            compressed = await summarizer.summarize(request)
        except ContinuumError:
            raise
        except Exception as e:
            logging.error(f"Summarizer call failed: {e}")
            raise SummarizerError(f"Summarizer call failed: {e}") from e

        if not isinstance(compressed, str):
            raise SummarizerError(f"Summarizer returned {type(compressed).__name__}, expected text")
        if not compressed.strip():
            raise SummarizerError("Summarizer returned empty text")

        original_tokens = estimate_tokens(text)
        new_token_count = estimate_tokens(compressed)
        result = CompressionResult(
            compressed_text=compressed,
            original_tokens=original_tokens,
            new_token_count=new_token_count,
            compression_ratio=compression_ratio(original_tokens, new_token_count)
        )

        logging.info(
            f"Compressed {kind} context from {original_tokens} to {new_token_count} tokens "
            f"({result.compression_ratio}% smaller)"
        )
        return result

    async def maybe_compress(self, text: str, summarizer: TextSummarizer,
                             kind: str = "report") -> MaybeCompressResult:
        """
        Compress text only when it is over budget.

        Args:
            text: Candidate context
            summarizer: Summarization collaborator
            kind: "report" or "thread"

        Returns:
            The text to use, whether it was compressed and the metrics if so
        """
        if not self.should_compress(text):
            return MaybeCompressResult(text=text, was_compressed=False)

        result = await self.compress(text, summarizer, kind)
        return MaybeCompressResult(text=result.compressed_text, was_compressed=True, metrics=result)
