"""
Conversation orchestration for a bounded context window.

Each new message updates the window's word accounting and runs two policies:
archive (evict the oldest messages when the window is nearly full) and
retrieve (pull relevant archived content back when the window runs low).
Policies only describe what should happen; execute_archive and
execute_retrieve apply a decision, so callers can inspect or veto it first.
"""

from typing import List, Dict, Optional
from collections import defaultdict
import asyncio
import math

from audit_log import AuditLog
from context_store import ContextError, ContextStore
from models import (
    ArchiveDecision,
    ConversationState,
    ConversationStatus,
    MessageOutcome,
    RetrieveDecision,
    count_words,
)
from settings import CONTEXT_CONFIG
from tagging import generate_tags


class ConversationNotFound(ContextError):
    """The conversation id was never initialized (or has been removed)."""

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation {conversation_id} not found")
        self.conversation_id = conversation_id


class NothingToSummarize(ContextError):
    """No archived items meet the relevance floor for a summary."""

    def __init__(self, conversation_id: str):
        super().__init__(f"No archived items to summarize for conversation {conversation_id}")
        self.conversation_id = conversation_id


class ConversationOrchestrator:
    """Owns the live state of every conversation and applies the window policies.

    Operations on one conversation are serialized with a per-conversation lock;
    different conversations run independently.
    """

    def __init__(
        self,
        store: ContextStore,
        max_word_count: Optional[int] = None,
        config: Optional[Dict] = None,
        audit_log: Optional[AuditLog] = None
    ):
        self.store = store
        self.config = config or CONTEXT_CONFIG
        self.max_word_count = max_word_count or self.config["window"]["max_word_count"]
        self.audit_log = audit_log
        self._conversations: Dict[str, ConversationState] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def _audit(self, conversation_id: str, action: str, details: str = "") -> None:
        if self.audit_log is not None:
            await self.audit_log.record(conversation_id, action, details)

    def _get_state(self, conversation_id: str) -> ConversationState:
        state = self._conversations.get(conversation_id)
        if state is None:
            raise ConversationNotFound(conversation_id)
        return state

    # ------------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------------

    def _initialize_unlocked(
        self,
        conversation_id: str,
        llm_tag: str,
        user_tag: Optional[str] = None
    ) -> ConversationState:
        if conversation_id not in self._conversations:
            self._conversations[conversation_id] = ConversationState(
                conversation_id=conversation_id,
                max_word_count=self.max_word_count,
                llm_tag=llm_tag,
                user_tag=user_tag
            )
        return self._conversations[conversation_id]

    async def initialize(
        self,
        conversation_id: str,
        llm_tag: str,
        user_tag: Optional[str] = None
    ) -> ConversationState:
        """Create the conversation state if missing; an existing state is returned untouched."""
        async with self._locks[conversation_id]:
            return self._initialize_unlocked(conversation_id, llm_tag, user_tag)

    def remove_conversation(self, conversation_id: str) -> bool:
        """Drop the in-memory state. Archived records stay in the store.

        A lock held by an in-flight operation stays registered so later calls
        for the same id still queue behind it.
        """
        lock = self._locks.get(conversation_id)
        if lock is not None and not lock.locked():
            del self._locks[conversation_id]
        return self._conversations.pop(conversation_id, None) is not None

    def list_active_conversations(self) -> List[str]:
        return list(self._conversations.keys())

    # ------------------------------------------------------------------------
    # Messages and policies
    # ------------------------------------------------------------------------

    async def _add_message_unlocked(
        self,
        conversation_id: str,
        message: str,
        llm_tag: str,
        user_tag: Optional[str] = None
    ) -> MessageOutcome:
        state = self._initialize_unlocked(conversation_id, llm_tag, user_tag)

        state.active_window.append(message)
        state.total_word_count += count_words(message)

        archive_decision = self.evaluate_archive(state)
        retrieve_decision = await self.evaluate_retrieve(state)

        return MessageOutcome(
            state=state,
            archive_decision=archive_decision,
            retrieve_decision=retrieve_decision
        )

    async def add_message(
        self,
        conversation_id: str,
        message: str,
        llm_tag: str,
        user_tag: Optional[str] = None
    ) -> MessageOutcome:
        """Append a message and evaluate both policies without applying them.

        The returned state is the live object; pass it together with the
        decisions to execute_archive / execute_retrieve.
        """
        async with self._locks[conversation_id]:
            return await self._add_message_unlocked(conversation_id, message, llm_tag, user_tag)

    def evaluate_archive(self, state: ConversationState) -> ArchiveDecision:
        """Select the oldest share of the window for eviction once usage reaches the threshold.

        The batch is always a prefix of the window. Small windows can yield an
        empty batch while should_archive is still True.
        """
        window_config = self.config["window"]
        usage_ratio = state.usage_ratio

        if usage_ratio < window_config["archive_threshold"]:
            return ArchiveDecision(should_archive=False, reason="Below archive threshold")

        batch_size = math.floor(len(state.active_window) * window_config["archive_fraction"])
        messages_to_archive = state.active_window[:batch_size]

        return ArchiveDecision(
            should_archive=True,
            messages_to_archive=messages_to_archive,
            tags=generate_tags(messages_to_archive),
            reason=f"Context usage at {usage_ratio * 100:.1f}%, archiving oldest {len(messages_to_archive)} messages"
        )

    async def evaluate_retrieve(self, state: ConversationState) -> RetrieveDecision:
        """Rescore archived content and pick what is relevant once usage drops to the threshold.

        Rescoring writes scores to the store; the window itself is not touched.
        """
        retrieval_config = self.config["retrieval"]
        usage_ratio = state.usage_ratio

        if usage_ratio > self.config["window"]["retrieve_threshold"]:
            return RetrieveDecision(should_retrieve=False, reason="Above retrieve threshold")

        await self.store.rescore(state.conversation_id, " ".join(state.active_window))

        relevant = await self.store.retrieve(
            state.conversation_id,
            min_score=retrieval_config["min_relevance"],
            limit=retrieval_config["limit"]
        )

        if not relevant:
            return RetrieveDecision(should_retrieve=False, reason="No relevant archived content found")

        return RetrieveDecision(
            should_retrieve=True,
            context_to_retrieve=relevant,
            reason=f"Context usage at {usage_ratio * 100:.1f}%, retrieving {len(relevant)} relevant archived items"
        )

    # ------------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------------

    async def _execute_archive_unlocked(self, decision: ArchiveDecision, state: ConversationState) -> int:
        if not decision.should_archive:
            return 0

        archived_count = await self.store.archive(
            state.conversation_id,
            decision.messages_to_archive,
            decision.tags,
            state.llm_tag,
            state.user_tag
        )

        # The batch is a prefix of the window, so eviction goes by count
        archived_words = sum(count_words(m) for m in decision.messages_to_archive)
        del state.active_window[:len(decision.messages_to_archive)]
        state.total_word_count -= archived_words

        await self._audit(
            state.conversation_id,
            "execute_archive",
            f"archived={archived_count} | words={archived_words} | total_words={state.total_word_count}"
        )
        return archived_count

    async def execute_archive(self, decision: ArchiveDecision, state: ConversationState) -> int:
        """Persist the decision's batch and evict it from the front of the window.

        Returns the number of records archived (0 when the decision is a no-op).
        """
        async with self._locks[state.conversation_id]:
            return await self._execute_archive_unlocked(decision, state)

    async def _execute_retrieve_unlocked(self, decision: RetrieveDecision, state: ConversationState) -> int:
        if not decision.should_retrieve:
            return 0

        for item in decision.context_to_retrieve:
            content = item.content
            state.active_window.insert(0, content)
            state.total_word_count += count_words(content)

        await self._audit(
            state.conversation_id,
            "execute_retrieve",
            f"retrieved={len(decision.context_to_retrieve)} | total_words={state.total_word_count}"
        )
        return len(decision.context_to_retrieve)

    async def execute_retrieve(self, decision: RetrieveDecision, state: ConversationState) -> int:
        """Prepend each retrieved item to the window, in the order given.

        Items are inserted one at a time at position 0, so the last item of the
        decision ends up first in the window.
        """
        async with self._locks[state.conversation_id]:
            return await self._execute_retrieve_unlocked(decision, state)

    async def process_message(
        self,
        conversation_id: str,
        message: str,
        llm_tag: str,
        user_tag: Optional[str] = None
    ) -> MessageOutcome:
        """add_message followed by both executions, all under one lock."""
        async with self._locks[conversation_id]:
            outcome = await self._add_message_unlocked(conversation_id, message, llm_tag, user_tag)
            await self._execute_archive_unlocked(outcome.archive_decision, outcome.state)
            await self._execute_retrieve_unlocked(outcome.retrieve_decision, outcome.state)
            return outcome

    # ------------------------------------------------------------------------
    # Summaries and status
    # ------------------------------------------------------------------------

    async def create_summary(
        self,
        conversation_id: str,
        summary_text: str,
        llm_tag: str,
        user_tag: Optional[str] = None
    ) -> str:
        """Summarize the conversation's relevant archived items and link them to the summary.

        Raises:
            ConversationNotFound: the conversation was never initialized
            NothingToSummarize: no archived item meets the relevance floor
        """
        summary_config = self.config["summary"]
        self._get_state(conversation_id)

        async with self._locks[conversation_id]:
            items = await self.store.retrieve(
                conversation_id,
                min_score=summary_config["min_relevance"],
                limit=summary_config["limit"]
            )
            if not items:
                raise NothingToSummarize(conversation_id)

            summary_id = await self.store.summarize_and_link(
                conversation_id, items, summary_text, llm_tag, user_tag
            )

        await self._audit(conversation_id, "summary_created", f"summary_id={summary_id} | items={len(items)}")
        return summary_id

    async def get_status(self, conversation_id: str) -> ConversationStatus:
        """Current state plus advisory recommendations. Never changes state."""
        status_config = self.config["status"]
        state = self._get_state(conversation_id)

        async with self._locks[conversation_id]:
            archived_count = await self.store.count_archived(conversation_id)

        usage_ratio = state.usage_ratio
        recommendations = []

        if usage_ratio > status_config["nearly_full"]:
            recommendations.append("Context window nearly full - consider archiving more content")
        elif usage_ratio > status_config["consider_archiving"]:
            recommendations.append("Consider archiving older messages to free up space")
        elif usage_ratio < status_config["consider_retrieving"]:
            recommendations.append("Context window has space - consider retrieving relevant archived content")

        if archived_count > status_config["summarize_after_archived"]:
            recommendations.append("Consider creating summaries of archived content")

        return ConversationStatus(
            state=state,
            archived_count=archived_count,
            recommendations=recommendations
        )
