"""Tests for the MCP server surface."""

from __future__ import annotations

import pytest
from fastmcp import Client
from fastmcp.exceptions import ToolError
from pydantic import ValidationError

import server
from models import ContextRecord


class TestToolRegistration:
    """The server registers every tool and resource."""

    @pytest.mark.asyncio
    async def test_tools_are_registered(self):
        async with Client(server.mcp) as client:
            tools = await client.list_tools()

        assert {tool.name for tool in tools} == {
            "add_message",
            "get_conversation_status",
            "create_conversation_summary",
            "list_conversations",
            "remove_conversation",
            "archive_context",
            "retrieve_context",
            "score_relevance",
            "get_conversation_summaries",
            "search_context_by_tags",
            "save_memories",
            "add_memories",
            "get_memories",
            "clear_memories",
        }

    @pytest.mark.asyncio
    async def test_config_resource_is_registered(self):
        async with Client(server.mcp) as client:
            resources = await client.list_resources()

        assert any(str(resource.uri).startswith("context://config") for resource in resources)


class TestInputModels:
    """Tool inputs are validated strictly."""

    def test_strips_whitespace_and_defaults(self):
        params = server.AddMessageInput(conversation_id="  conv-1 ", message=" hi ", llm="claude")
        assert params.conversation_id == "conv-1"
        assert params.message == "hi"
        assert params.apply_decisions is True
        assert params.user_id is None

    def test_rejects_unknown_fields(self):
        with pytest.raises(ValidationError):
            server.ConversationInput(conversation_id="conv-1", extra="nope")

    def test_rejects_out_of_range_score(self):
        with pytest.raises(ValidationError):
            server.RetrieveContextInput(conversation_id="conv-1", min_relevance_score=1.5)

    def test_requires_messages_to_archive(self):
        with pytest.raises(ValidationError):
            server.ArchiveContextInput(conversation_id="conv-1", context_messages=[], llm="claude")


class TestFormatRecord:
    def test_joins_memories_into_content(self):
        record = ContextRecord(
            id="ctx_1",
            context_type="archived",
            memories=["first", "second"],
            timestamp="2024-05-01T10:00:00",
            llm_tag="claude",
            conversation_id="conv-1",
            relevance_score=0.5,
            tags=["api"],
            word_count=2,
        )
        formatted = server.format_record(record)
        assert formatted["content"] == "first second"
        assert formatted["type"] == "archived"
        assert formatted["relevance_score"] == 0.5
        assert formatted["llm"] == "claude"


# ── Tool calls against a temporary store ───────────────────────────────────


@pytest.fixture
def server_state(monkeypatch, store, audit_log, make_orchestrator):
    """Point the server's module globals at a store under tmp_path."""
    orchestrator = make_orchestrator(100)
    monkeypatch.setattr(server, "audit_log", audit_log)
    monkeypatch.setattr(server, "store", store)
    monkeypatch.setattr(server, "orchestrator", orchestrator)
    return orchestrator


def words(count: int, word: str = "alpha") -> str:
    return " ".join([word] * count)


class TestAddMessageTool:
    """add_message over MCP."""

    @pytest.mark.asyncio
    async def test_reports_without_applying(self, server_state, store):
        async with Client(server.mcp) as client:
            for word in ("alpha", "beta", "gamma"):
                await client.call_tool("add_message", {"params": {
                    "conversation_id": "conv-1",
                    "message": words(20, word),
                    "llm": "claude",
                    "apply_decisions": False,
                }})
            result = await client.call_tool("add_message", {"params": {
                "conversation_id": "conv-1",
                "message": words(20, "delta"),
                "llm": "claude",
                "apply_decisions": False,
            }})

        data = result.data
        assert data["applied"] is False
        assert data["archive"]["should_archive"] is True
        assert data["archive"]["messages"] == [words(20, "alpha")]
        # Nothing was evicted or persisted
        assert data["message_count"] == 4
        assert data["total_word_count"] == 80
        assert data["usage_percent"] == 80.0
        assert await store.count_archived("conv-1") == 0

    @pytest.mark.asyncio
    async def test_applies_by_default(self, server_state, store):
        async with Client(server.mcp) as client:
            for word in ("alpha", "beta", "gamma", "delta"):
                result = await client.call_tool("add_message", {"params": {
                    "conversation_id": "conv-1",
                    "message": words(20, word),
                    "llm": "claude",
                }})

        data = result.data
        assert data["applied"] is True
        assert data["message_count"] == 3
        assert data["total_word_count"] == 60
        assert await store.count_archived("conv-1") == 1


class TestCreateSummaryTool:
    """create_conversation_summary surfaces orchestrator errors as tool errors."""

    @pytest.mark.asyncio
    async def test_unknown_conversation(self, server_state):
        async with Client(server.mcp) as client:
            with pytest.raises(ToolError, match="not found"):
                await client.call_tool("create_conversation_summary", {"params": {
                    "conversation_id": "missing",
                    "summary_text": "nothing here",
                    "llm": "claude",
                }})

    @pytest.mark.asyncio
    async def test_nothing_archived(self, server_state):
        await server_state.initialize("conv-1", "claude")
        async with Client(server.mcp) as client:
            with pytest.raises(ToolError, match="No archived items"):
                await client.call_tool("create_conversation_summary", {"params": {
                    "conversation_id": "conv-1",
                    "summary_text": "nothing here",
                    "llm": "claude",
                }})


class TestMemoryTools:
    """Memory log tools leave archived context alone."""

    @pytest.mark.asyncio
    async def test_clear_memories_keeps_archived_context(self, server_state, store):
        async with Client(server.mcp) as client:
            await client.call_tool("archive_context", {"params": {
                "conversation_id": "conv-1",
                "context_messages": ["archived message"],
                "llm": "claude",
            }})
            await client.call_tool("add_memories", {"params": {
                "memories": ["likes tea"],
                "llm": "claude",
            }})
            result = await client.call_tool("clear_memories", {})
            memories = await client.call_tool("get_memories", {})

        assert result.data["deleted_count"] == 1
        assert memories.data["count"] == 0
        assert await store.count_archived("conv-1") == 1
