"""Language-model collaborators used by the engine."""

from .base import TextGenerator, TextSummarizer
from .runner import AgentRunner, strip_code_fences
from .registry import agent_registry, AgentRegistry, AgentConfig

__all__ = [
    "TextGenerator",
    "TextSummarizer",
    "AgentRunner",
    "strip_code_fences",
    "agent_registry",
    "AgentRegistry",
    "AgentConfig",
]
