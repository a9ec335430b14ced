"""
Decision and result models passed between the engine and its callers.
"""

from typing import List, Literal, Optional
from pydantic import BaseModel, Field

from .entities import AggregatedEntity
from .reports import ReportRevision


EnhancementMode = Literal["fresh", "incremental"]


class SessionPolicy(BaseModel):
    """
    Per-session switches that used to be process-wide flags.
    """

    incremental: bool = Field(
        True,
        description="Build upon the prior report when one exists"
    )

    auto_approve: bool = Field(
        False,
        description="Answer assistant confirmation requests automatically"
    )


class EnhancementPlan(BaseModel):
    """
    What the generator should be asked to do for one user turn.
    """

    mode: EnhancementMode
    instruction: str
    directive: str = Field(..., description="Full instruction text sent to the generator")
    context: Optional[str] = None
    parent_revision: Optional[ReportRevision] = None
    data_requests: List[str] = Field(default_factory=list)


class CompressionResult(BaseModel):
    """
    Output and metrics of one summarizer call.
    """

    compressed_text: str
    original_tokens: int
    new_token_count: int
    compression_ratio: int


class MaybeCompressResult(BaseModel):
    """
    Text to use as context, compressed only when it was over budget.
    """

    text: str
    was_compressed: bool
    metrics: Optional[CompressionResult] = None


class EnhancementResult(BaseModel):
    """
    Everything one composed enhancement produced.
    """

    plan: EnhancementPlan
    revision: ReportRevision
    compression: Optional[CompressionResult] = None
    entities: List[AggregatedEntity] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
