"""
Data models for conversation state, stored context records and policy decisions.
"""

from typing import List, Optional, Literal
from pydantic import Field, BaseModel, ConfigDict

# 'active' is reserved for records of the live window; nothing writes it today
CONTEXT_TYPES = Literal["active", "archived", "summary", "memory"]


def count_words(text: str) -> int:
    """Number of whitespace-delimited words in text."""
    return len(text.split())


class ContextRecord(BaseModel):
    """Schema for a stored document: archived message, summary or memory log entry."""
    model_config = ConfigDict(validate_assignment=True)

    id: str
    context_type: CONTEXT_TYPES
    memories: List[str] = Field(default_factory=list)
    timestamp: str
    llm_tag: str
    user_tag: Optional[str] = None
    conversation_id: Optional[str] = None
    relevance_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    tags: List[str] = Field(default_factory=list)
    parent_context_id: Optional[str] = None
    message_index: Optional[int] = Field(default=None, ge=0)
    word_count: int = Field(default=0, ge=0)
    summary_text: Optional[str] = None

    @property
    def content(self) -> str:
        return " ".join(self.memories)


class ConversationState(BaseModel):
    """In-memory state of one live conversation."""

    conversation_id: str
    active_window: List[str] = Field(default_factory=list)
    total_word_count: int = 0
    max_word_count: int = Field(..., gt=0)
    llm_tag: str
    user_tag: Optional[str] = None

    @property
    def usage_ratio(self) -> float:
        return self.total_word_count / self.max_word_count


class ArchiveDecision(BaseModel):
    """Outcome of the archive policy; applied by ConversationOrchestrator.execute_archive."""

    should_archive: bool
    messages_to_archive: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    reason: str


class RetrieveDecision(BaseModel):
    """Outcome of the retrieve policy; applied by ConversationOrchestrator.execute_retrieve."""

    should_retrieve: bool
    context_to_retrieve: List[ContextRecord] = Field(default_factory=list)
    reason: str


class MessageOutcome(BaseModel):
    state: ConversationState
    archive_decision: ArchiveDecision
    retrieve_decision: RetrieveDecision


class ConversationStatus(BaseModel):
    state: ConversationState
    archived_count: int = 0
    recommendations: List[str] = Field(default_factory=list)
