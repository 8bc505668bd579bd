"""
Context Window MCP Server

This MCP server manages the bounded context window of conversational agents:
it archives the oldest messages when a conversation's window fills up, scores
archived content against the live window and pulls relevant content back in
when the window runs low, and links archived messages to summaries.

Tool set:
- Conversation: add_message, get_conversation_status, create_conversation_summary,
                list_conversations, remove_conversation
- Context store: archive_context, retrieve_context, score_relevance,
                 get_conversation_summaries, search_context_by_tags
- Memory log: save_memories, add_memories, get_memories, clear_memories
"""

from fastmcp import FastMCP
from typing import List, Dict, Optional, Any
from pydantic import Field, BaseModel, ConfigDict

from audit_log import AuditLog
from context_store import ContextStore, JsonCollection
from models import ContextRecord
from orchestrator import ConversationOrchestrator
from settings import (
    AUDIT_LOG_PATH,
    CONTEXT_COLLECTION_PATH,
    CONTEXT_CONFIG,
    SERVER_HOST,
    SERVER_PORT,
    SERVER_TRANSPORT,
)

# Initialize FastMCP server
mcp = FastMCP("context_window_mcp")

audit_log = AuditLog(AUDIT_LOG_PATH)
store = ContextStore(JsonCollection(CONTEXT_COLLECTION_PATH), audit_log=audit_log)
orchestrator = ConversationOrchestrator(store, audit_log=audit_log)


# ============================================================================
# Input Models for Tools
# ============================================================================

class AddMessageInput(BaseModel):
    """Input for adding a message to a conversation."""
    model_config = ConfigDict(str_strip_whitespace=True, extra='forbid')

    conversation_id: str = Field(..., description="Conversation identifier", min_length=1, max_length=200)
    message: str = Field(..., description="Message text to append to the active window", min_length=1)
    llm: str = Field(..., description="Name of the LLM (e.g., 'chatgpt', 'claude')", min_length=1, max_length=100)
    user_id: Optional[str] = Field(None, description="Optional user identifier")
    apply_decisions: bool = Field(
        default=True,
        description="Apply archive/retrieve decisions (True) or only report them (False)"
    )


class ConversationInput(BaseModel):
    """Input for operations addressing a single conversation."""
    model_config = ConfigDict(str_strip_whitespace=True, extra='forbid')

    conversation_id: str = Field(..., description="Conversation identifier", min_length=1, max_length=200)


class CreateSummaryInput(BaseModel):
    """Input for summarizing a conversation's archived content."""
    model_config = ConfigDict(str_strip_whitespace=True, extra='forbid')

    conversation_id: str = Field(..., description="Conversation identifier", min_length=1, max_length=200)
    summary_text: str = Field(..., description="Condensed text replacing the archived messages", min_length=1)
    llm: str = Field(..., description="Name of the LLM that wrote the summary", min_length=1, max_length=100)
    user_id: Optional[str] = Field(None, description="Optional user identifier")


class ArchiveContextInput(BaseModel):
    """Input for archiving messages directly."""
    model_config = ConfigDict(str_strip_whitespace=True, extra='forbid')

    conversation_id: str = Field(..., description="Conversation identifier", min_length=1, max_length=200)
    context_messages: List[str] = Field(..., description="Messages to archive, oldest first", min_length=1)
    tags: List[str] = Field(default_factory=list, description="Tags for categorization and filtering", max_length=50)
    llm: str = Field(..., description="Name of the LLM (e.g., 'chatgpt', 'claude')", min_length=1, max_length=100)
    user_id: Optional[str] = Field(None, description="Optional user identifier")


class RetrieveContextInput(BaseModel):
    """Input for retrieving archived context."""
    model_config = ConfigDict(str_strip_whitespace=True, extra='forbid')

    conversation_id: str = Field(..., description="Conversation identifier", min_length=1, max_length=200)
    tags: Optional[List[str]] = Field(None, description="Only items carrying any of these tags")
    min_relevance_score: Optional[float] = Field(
        None,
        description="Minimum relevance score; unscored items are excluded when set",
        ge=0.0,
        le=1.0
    )
    limit: int = Field(default=10, description="Maximum results to return", ge=1, le=100)


class ScoreRelevanceInput(BaseModel):
    """Input for scoring archived context against current text."""
    model_config = ConfigDict(str_strip_whitespace=True, extra='forbid')

    conversation_id: str = Field(..., description="Conversation identifier", min_length=1, max_length=200)
    current_context: str = Field(..., description="Text of the current context to score against")


class SearchContextByTagsInput(BaseModel):
    """Input for searching archived context and summaries by tag."""
    model_config = ConfigDict(str_strip_whitespace=True, extra='forbid')

    tags: List[str] = Field(..., description="Tags to search for", min_length=1, max_length=50)


class MemoriesInput(BaseModel):
    """Input for writing memory log entries."""
    model_config = ConfigDict(str_strip_whitespace=True, extra='forbid')

    memories: List[str] = Field(..., description="Memory strings to store", min_length=1)
    llm: str = Field(..., description="Name of the LLM (e.g., 'chatgpt', 'claude')", min_length=1, max_length=100)
    user_id: Optional[str] = Field(None, description="Optional user identifier")


# ============================================================================
# Helper Functions
# ============================================================================

def format_record(record: ContextRecord) -> Dict[str, Any]:
    """Client-facing view of a stored record."""
    return {
        "id": record.id,
        "type": record.context_type,
        "content": record.content,
        "tags": record.tags,
        "relevance_score": record.relevance_score,
        "word_count": record.word_count,
        "timestamp": record.timestamp,
        "parent_context_id": record.parent_context_id,
        "llm": record.llm_tag,
        "user_id": record.user_tag
    }


# ============================================================================
# Conversation Tools
# ============================================================================

@mcp.tool(
    name="add_message",
    annotations={
        "title": "Add Conversation Message",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": False,
        "openWorldHint": False
    }
)
async def add_message(params: AddMessageInput) -> Dict[str, Any]:
    """Add a message to a conversation and manage its context window.

    Archives the oldest messages when the window is nearly full and pulls
    relevant archived content back when it runs low. With apply_decisions
    False the decisions are reported but the window is left as it is.

    Args:
        params: AddMessageInput with conversation_id, message, llm, user_id and
                apply_decisions.

    Returns:
        Dict with the window usage after the call and both decisions.
    """
    if params.apply_decisions:
        outcome = await orchestrator.process_message(
            params.conversation_id, params.message, params.llm, params.user_id
        )
    else:
        outcome = await orchestrator.add_message(
            params.conversation_id, params.message, params.llm, params.user_id
        )

    state = outcome.state
    return {
        "conversation_id": state.conversation_id,
        "applied": params.apply_decisions,
        "message_count": len(state.active_window),
        "total_word_count": state.total_word_count,
        "max_word_count": state.max_word_count,
        "usage_percent": round(state.usage_ratio * 100, 1),
        "archive": {
            "should_archive": outcome.archive_decision.should_archive,
            "messages": outcome.archive_decision.messages_to_archive,
            "tags": outcome.archive_decision.tags,
            "reason": outcome.archive_decision.reason
        },
        "retrieve": {
            "should_retrieve": outcome.retrieve_decision.should_retrieve,
            "items": [format_record(r) for r in outcome.retrieve_decision.context_to_retrieve],
            "reason": outcome.retrieve_decision.reason
        }
    }


@mcp.tool(
    name="get_conversation_status",
    annotations={
        "title": "Get Conversation Status",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False
    }
)
async def get_conversation_status(params: ConversationInput) -> Dict[str, Any]:
    """Report window usage and advisory recommendations for a conversation."""
    status = await orchestrator.get_status(params.conversation_id)
    state = status.state
    return {
        "conversation_id": state.conversation_id,
        "active_window": state.active_window,
        "message_count": len(state.active_window),
        "total_word_count": state.total_word_count,
        "max_word_count": state.max_word_count,
        "usage_percent": round(state.usage_ratio * 100, 1),
        "archived_count": status.archived_count,
        "recommendations": status.recommendations
    }


@mcp.tool(
    name="create_conversation_summary",
    annotations={
        "title": "Summarize Archived Context",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": False,
        "openWorldHint": False
    }
)
async def create_conversation_summary(params: CreateSummaryInput) -> Dict[str, Any]:
    """Store a summary of a conversation's relevant archived content.

    Links up to the configured number of archived items (those meeting the
    summary relevance floor) to the new summary. Fails when the conversation
    is unknown or has nothing qualifying to summarize.
    """
    summary_id = await orchestrator.create_summary(
        params.conversation_id, params.summary_text, params.llm, params.user_id
    )
    return {
        "success": True,
        "summary_id": summary_id,
        "conversation_id": params.conversation_id
    }


@mcp.tool(
    name="list_conversations",
    annotations={
        "title": "List Active Conversations",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False
    }
)
async def list_conversations() -> Dict[str, Any]:
    """List the conversations held in memory by this server."""
    conversations = orchestrator.list_active_conversations()
    return {"conversations": conversations, "count": len(conversations)}


@mcp.tool(
    name="remove_conversation",
    annotations={
        "title": "Remove Conversation",
        "readOnlyHint": False,
        "destructiveHint": True,
        "idempotentHint": True,
        "openWorldHint": False
    }
)
async def remove_conversation(params: ConversationInput) -> Dict[str, Any]:
    """Forget a conversation's live window. Archived context and summaries are kept."""
    removed = orchestrator.remove_conversation(params.conversation_id)
    await audit_log.record(params.conversation_id, "remove_conversation", f"removed={removed}")
    return {"conversation_id": params.conversation_id, "removed": removed}


# ============================================================================
# Context Store Tools
# ============================================================================

@mcp.tool(
    name="archive_context",
    annotations={
        "title": "Archive Context Messages",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": False,
        "openWorldHint": False
    }
)
async def archive_context(params: ArchiveContextInput) -> Dict[str, Any]:
    """Archive messages for a conversation without touching its live window."""
    archived = await store.archive(
        params.conversation_id, params.context_messages, params.tags, params.llm, params.user_id
    )
    return {
        "success": True,
        "conversation_id": params.conversation_id,
        "archived_count": archived,
        "tags": params.tags
    }


@mcp.tool(
    name="retrieve_context",
    annotations={
        "title": "Retrieve Archived Context",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False
    }
)
async def retrieve_context(params: RetrieveContextInput) -> Dict[str, Any]:
    """Retrieve archived context, most relevant first, optionally filtered by tags and score."""
    items = await store.retrieve(
        params.conversation_id, params.tags, params.min_relevance_score, params.limit
    )
    return {
        "conversation_id": params.conversation_id,
        "items": [format_record(item) for item in items],
        "count": len(items)
    }


@mcp.tool(
    name="score_relevance",
    annotations={
        "title": "Score Archived Context Relevance",
        "readOnlyHint": False,  # Overwrites stored scores
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False
    }
)
async def score_relevance(params: ScoreRelevanceInput) -> Dict[str, Any]:
    """Rescore all archived context of a conversation against the given text."""
    scored = await store.rescore(params.conversation_id, params.current_context)
    return {"conversation_id": params.conversation_id, "scored_count": scored}


@mcp.tool(
    name="get_conversation_summaries",
    annotations={
        "title": "Get Conversation Summaries",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False
    }
)
async def get_conversation_summaries(params: ConversationInput) -> Dict[str, Any]:
    """List a conversation's summaries, newest first."""
    summaries = await store.list_summaries(params.conversation_id)
    return {
        "conversation_id": params.conversation_id,
        "summaries": [format_record(s) for s in summaries],
        "count": len(summaries)
    }


@mcp.tool(
    name="search_context_by_tags",
    annotations={
        "title": "Search Context By Tags",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False
    }
)
async def search_context_by_tags(params: SearchContextByTagsInput) -> Dict[str, Any]:
    """Search archived context and summaries across all conversations by tag."""
    items = await store.search_by_tags(params.tags)
    return {
        "tags": params.tags,
        "items": [format_record(item) for item in items],
        "count": len(items)
    }


# ============================================================================
# Memory Log Tools
# ============================================================================

@mcp.tool(
    name="save_memories",
    annotations={
        "title": "Save Memories",
        "readOnlyHint": False,
        "destructiveHint": True,  # Replaces the existing log
        "idempotentHint": False,
        "openWorldHint": False
    }
)
async def save_memories(params: MemoriesInput) -> Dict[str, Any]:
    """Save memories to the log, overwriting existing ones."""
    record = await store.save_memories(params.memories, params.llm, params.user_id, replace=True)
    return {
        "success": True,
        "memory_id": record.id,
        "saved_count": len(record.memories),
        "llm": record.llm_tag,
        "timestamp": record.timestamp
    }


@mcp.tool(
    name="add_memories",
    annotations={
        "title": "Add Memories",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": False,
        "openWorldHint": False
    }
)
async def add_memories(params: MemoriesInput) -> Dict[str, Any]:
    """Add memories to the log without overwriting existing ones."""
    record = await store.save_memories(params.memories, params.llm, params.user_id)
    return {
        "success": True,
        "memory_id": record.id,
        "added_count": len(record.memories),
        "llm": record.llm_tag,
        "timestamp": record.timestamp
    }


@mcp.tool(
    name="get_memories",
    annotations={
        "title": "Get Memories",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False
    }
)
async def get_memories() -> Dict[str, Any]:
    """Retrieve all memory log entries, newest first."""
    records = await store.get_memories()
    return {
        "entries": [
            {
                "id": r.id,
                "llm": r.llm_tag,
                "user_id": r.user_tag,
                "timestamp": r.timestamp,
                "memories": r.memories
            }
            for r in records
        ],
        "count": len(records)
    }


@mcp.tool(
    name="clear_memories",
    annotations={
        "title": "Clear Memories",
        "readOnlyHint": False,
        "destructiveHint": True,
        "idempotentHint": True,
        "openWorldHint": False
    }
)
async def clear_memories() -> Dict[str, Any]:
    """Clear all memory log entries. Conversation context is not affected."""
    deleted = await store.clear_memories()
    return {"success": True, "deleted_count": deleted}


# ============================================================================
# MCP Resources
# ============================================================================

@mcp.resource("context://{conversation_id}/status")
async def conversation_status_summary(conversation_id: str) -> str:
    """Provides a summary of a conversation's context window.

    Use this to quickly check window usage without loading the messages.
    """
    status = await orchestrator.get_status(conversation_id)
    state = status.state

    summary = f"""# Context Window: {conversation_id}

- Messages: {len(state.active_window)}
- Words: {state.total_word_count} / {state.max_word_count}
- Usage: {round(state.usage_ratio * 100, 1)}%
- Archived Items: {status.archived_count}
"""
    if status.recommendations:
        summary += "\n## Recommendations\n"
        for recommendation in status.recommendations:
            summary += f"- {recommendation}\n"

    return summary


@mcp.resource("context://config")
def context_config() -> str:
    """Provides the current context window configuration."""
    window = CONTEXT_CONFIG["window"]
    retrieval = CONTEXT_CONFIG["retrieval"]
    summary = CONTEXT_CONFIG["summary"]
    status = CONTEXT_CONFIG["status"]

    return f"""# Context Window Configuration

## Window

- Max Words: {orchestrator.max_word_count}
- Archive At: {int(window['archive_threshold'] * 100)}% usage (oldest {int(window['archive_fraction'] * 100)}% of messages)
- Retrieve At: {int(window['retrieve_threshold'] * 100)}% usage or below

## Retrieval

- Minimum Relevance: {retrieval['min_relevance']}
- Items Per Retrieval: {retrieval['limit']}

## Summaries

- Minimum Relevance: {summary['min_relevance']}
- Items Per Summary: {summary['limit']}
- Suggested After: {status['summarize_after_archived']} archived items

## Relevance Scoring

Archived items are scored by token overlap (Jaccard similarity of lowercase
word sets) against the whole active window, every time retrieval is checked.
"""


# ============================================================================
# Server Entry Point
# ============================================================================

if __name__ == "__main__":
    if SERVER_TRANSPORT == "stdio":
        mcp.run()
    else:
        mcp.run(
            transport=SERVER_TRANSPORT,
            host=SERVER_HOST,
            port=SERVER_PORT
        )
