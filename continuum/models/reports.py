"""
Report revision models for Continuum.

Revisions are immutable snapshots. A new report state is always a new
revision, persisted through an explicit call that stamps its version.
"""

from typing import List, Literal, Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, model_validator


RevisionStatus = Literal["draft", "published", "archived"]
UsageKind = Literal["generation", "edit", "section_add", "suggestion", "compression"]


class UsageOperation(BaseModel):
    """
    One token/cost-incurring operation against a revision.
    """

    model_config = ConfigDict(frozen=True)

    kind: UsageKind = Field(..., description="What the tokens were spent on")
    model: str = Field("", description="Model that served the call")
    provider: str = Field("", description="Provider inferred from the model name")
    input_tokens: int = Field(0, ge=0)
    output_tokens: int = Field(0, ge=0)
    cost: float = Field(0.0, ge=0.0, description="Cost in USD")
    timestamp: datetime = Field(default_factory=datetime.now)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class UsageLedger(BaseModel):
    """
    Append-only usage record with running totals.
    """

    model_config = ConfigDict(frozen=True)

    total_tokens: int = 0
    total_cost: float = 0.0
    operations: List[UsageOperation] = Field(default_factory=list)

    def appended(self, operation: UsageOperation) -> "UsageLedger":
        """Return a new ledger with the operation added after the existing history."""
        return UsageLedger(
            total_tokens=self.total_tokens + operation.total_tokens,
            total_cost=self.total_cost + operation.cost,
            operations=[*self.operations, operation],
        )


class ReportRevision(BaseModel):
    """
    One generated document state within a thread.
    """

    model_config = ConfigDict(frozen=True)

    revision_id: str = Field(..., description="Unique identifier of the revision")
    thread_id: str = Field(..., description="The owning thread")
    title: str = Field("", description="Report title")
    body: str = Field(..., description="HTML or markdown body")

    version: int = Field(
        ...,
        ge=1,
        description="Strictly increasing within a thread"
    )

    status: RevisionStatus = Field("draft")
    usage: UsageLedger = Field(default_factory=UsageLedger)

    parent_revision_id: Optional[str] = Field(
        None,
        description="The revision this one was built upon"
    )

    parent_version: Optional[int] = Field(None, ge=1)
    created_at: datetime = Field(default_factory=datetime.now)

    @model_validator(mode="after")
    def _parent_precedes_child(self) -> "ReportRevision":
        if self.parent_version is not None and self.parent_version >= self.version:
            raise ValueError(
                f"parent version {self.parent_version} must be lower than version {self.version}"
            )
        return self
