"""
Continuum: context and report continuity for conversational research threads.

Keeps every thread's report building on its previous version, compresses
context that outgrows the model budget, and aggregates the entities the
reports talk about.
"""

__version__ = "0.1.0"
__author__ = "Continuum Project"

# Import main components
from .database import DatabaseManager
from .models import (
    Thread,
    Message,
    ReportRevision,
    UsageLedger,
    UsageOperation,
    EntityMention,
    AggregatedEntity,
    SessionPolicy,
)
from .agents import AgentRunner, TextGenerator, TextSummarizer
from .compression import CompressionPolicy
from .continuity import ReportContinuityStore
from .enhancement import EnhancementDecider
from .entities import EntityAggregator, EntityExtractor
from .versioning import SnapshotManager
from .engine import ContinuityEngine

__all__ = [
    "DatabaseManager",
    "Thread",
    "Message",
    "ReportRevision",
    "UsageLedger",
    "UsageOperation",
    "EntityMention",
    "AggregatedEntity",
    "SessionPolicy",
    "AgentRunner",
    "TextGenerator",
    "TextSummarizer",
    "CompressionPolicy",
    "ReportContinuityStore",
    "EnhancementDecider",
    "EntityAggregator",
    "EntityExtractor",
    "SnapshotManager",
    "ContinuityEngine",
]
