"""
Thread and message models for Continuum.

A thread is the persistent conversation that owns messages and report
revisions. Threads are archived, never deleted.
"""

from typing import Any, Dict, List, Literal, Optional
from datetime import datetime
from pydantic import BaseModel, Field, model_validator


ThreadStatus = Literal["active", "archived"]
MessageRole = Literal["user", "assistant", "system"]
MessageStatus = Literal["sending", "sent", "delivered", "streaming", "complete", "error"]
SharePermission = Literal["view", "comment", "edit"]


class SharedUser(BaseModel):
    """
    A principal the thread has been shared with.
    """

    user_id: str = Field(..., description="The principal the thread is shared with")
    permission: SharePermission = Field("view", description="Access level granted")
    shared_at: datetime = Field(default_factory=datetime.now)


class Thread(BaseModel):
    """
    An ordered conversation container.
    """

    thread_id: str = Field(
        ...,
        description="Unique identifier of the thread"
    )

    owner_id: str = Field(
        ...,
        description="The user who created the thread"
    )

    title: str = Field(
        ...,
        max_length=200,
        description="Human-readable thread title"
    )

    status: ThreadStatus = Field(
        "active",
        description="Archived threads reject every mutation"
    )

    report_versions: List[str] = Field(
        default_factory=list,
        description="Revision ids in version order"
    )

    current_report_id: Optional[str] = Field(
        None,
        description="The revision currently shown for the thread"
    )

    shared_with: List[SharedUser] = Field(default_factory=list)

    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        description="Free-form data such as template lineage"
    )

    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @model_validator(mode="after")
    def _current_report_is_a_version(self) -> "Thread":
        if self.current_report_id is not None and self.current_report_id not in self.report_versions:
            raise ValueError(
                f"current_report_id {self.current_report_id} is not one of the thread's report versions"
            )
        return self

    @property
    def is_archived(self) -> bool:
        return self.status == "archived"


class Message(BaseModel):
    """
    One conversational turn.
    """

    message_id: str = Field(..., description="Unique identifier of the message")
    thread_id: str = Field(..., description="The owning thread")
    role: MessageRole = Field(..., description="Who authored the message")
    content: str = Field(..., description="Text content of the turn")

    report_id: Optional[str] = Field(
        None,
        description="Revision produced or modified by this message"
    )

    status: MessageStatus = Field("sent", description="Delivery status")
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def produced_report(self) -> bool:
        return self.role == "assistant" and self.report_id is not None
