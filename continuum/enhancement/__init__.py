"""Enhancement planning."""

from .decider import EnhancementDecider, FRESH_DIRECTIVE, INCREMENTAL_DIRECTIVE
from .auto_continue import (
    APPROVAL_REPLY,
    AutoContinueHandler,
    IntentClassifier,
    PatternIntentClassifier,
    detect_data_requests,
)

__all__ = [
    "EnhancementDecider",
    "FRESH_DIRECTIVE",
    "INCREMENTAL_DIRECTIVE",
    "APPROVAL_REPLY",
    "AutoContinueHandler",
    "IntentClassifier",
    "PatternIntentClassifier",
    "detect_data_requests",
]
