"""
Collaborator interfaces for the language-model calls.

The engine never constructs a client itself. Whatever implements these
interfaces is injected at construction time, so tests can pass
deterministic fakes.
"""

from abc import ABC, abstractmethod
from typing import Optional


class TextGenerator(ABC):
    """
    Produces report text from optional prior context and an instruction.
    """

    @abstractmethod
    async def generate(self, context: Optional[str], instruction: str) -> str:
        """
        Generate text.

        Args:
            context: Prior report body (possibly compressed), or None for a fresh report
            instruction: The directive built for this turn

        Returns:
            The generated text

        Raises:
            GeneratorError: If the call fails or times out
        """
        pass


class TextSummarizer(ABC):
    """
    Shortens text while preserving its salient content.
    """

    @abstractmethod
    async def summarize(self, text: str) -> str:
        """
        Summarize text.

        Args:
            text: The full summarization request

        Returns:
            The summarized text

        Raises:
            SummarizerError: If the call fails or times out
        """
        pass
