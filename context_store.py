"""
Persistence for archived context, summaries and memory logs.

JsonCollection is a small document collection kept in one JSON file.
ContextStore maps the operations the orchestrator needs onto filtered
queries and field updates against that collection.
"""

from typing import List, Dict, Optional, Any, Tuple
from datetime import datetime
from pathlib import Path
import json
import uuid
import asyncio

import aiofiles
import aiofiles.os

from audit_log import AuditLog
from models import ContextRecord, count_words
from relevance import RelevanceScorer, JaccardScorer

ASCENDING = 1
DESCENDING = -1

NEWEST_FIRST = [("timestamp", DESCENDING)]
MOST_RELEVANT_FIRST = [("relevance_score", DESCENDING), ("timestamp", DESCENDING)]


class ContextError(RuntimeError):
    """Base class for context window errors."""


class StoreError(ContextError):
    """The backing collection could not be read or written."""


def generate_context_id(prefix: str = "ctx") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


# ============================================================================
# Document Collection
# ============================================================================

def _matches_condition(value: Any, condition: Any) -> bool:
    if not isinstance(condition, dict):
        return value == condition

    for operator, operand in condition.items():
        if operator == "$gte":
            if value is None or value < operand:
                return False
        elif operator == "$in":
            if isinstance(value, list):
                if not any(v in operand for v in value):
                    return False
            elif value not in operand:
                return False
        elif operator == "$exists":
            if (value is not None) != operand:
                return False
        elif operator == "$ne":
            if value == operand:
                return False
        else:
            raise ValueError(f"Unsupported query operator: {operator}")
    return True


def matches(document: Dict[str, Any], query: Dict[str, Any]) -> bool:
    """Check a document against an equality/operator filter.

    Supported operators: $gte, $in (any overlap for list fields), $exists, $ne.
    Missing fields compare as None.
    """
    return all(
        _matches_condition(document.get(field), condition)
        for field, condition in query.items()
    )


def _sort_key(value: Any) -> Tuple[bool, Any]:
    # None sorts below every value
    return (value is not None, value)


class JsonCollection:
    """A document collection persisted as a JSON list in a single file.

    Every operation loads the file, applies the change and writes it back
    atomically through a temp file. Access is serialized with one lock.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def _load_unlocked(self) -> List[Dict[str, Any]]:
        """Load documents without acquiring lock (caller must hold lock)."""
        if not await aiofiles.os.path.exists(self.path):
            return []

        try:
            async with aiofiles.open(self.path, 'r') as f:
                content = await f.read()
        except OSError as e:
            raise StoreError(f"Failed to read collection {self.path}: {e}") from e

        if not content.strip():
            return []
        try:
            documents = json.loads(content)
        except json.JSONDecodeError as e:
            raise StoreError(f"Corrupted collection file {self.path}: {e}") from e
        if not isinstance(documents, list):
            raise StoreError(f"Corrupted collection file {self.path}: expected a list of documents")
        return documents

    async def _save_unlocked(self, documents: List[Dict[str, Any]]) -> None:
        """Save documents without acquiring lock (caller must hold lock)."""
        try:
            await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
            temp_file = self.path.with_suffix('.tmp')
            async with aiofiles.open(temp_file, 'w') as f:
                await f.write(json.dumps(documents, indent=2))
            await aiofiles.os.replace(temp_file, self.path)
        except OSError as e:
            raise StoreError(f"Failed to save collection {self.path}: {e}") from e

    async def insert_many(self, documents: List[Dict[str, Any]]) -> int:
        if not documents:
            return 0
        async with self._lock:
            stored = await self._load_unlocked()
            stored.extend(documents)
            await self._save_unlocked(stored)
        return len(documents)

    async def find(
        self,
        query: Dict[str, Any],
        sort: Optional[List[Tuple[str, int]]] = None,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Return documents matching query, sorted by (field, direction) keys and capped at limit."""
        async with self._lock:
            stored = await self._load_unlocked()

        results = [doc for doc in stored if matches(doc, query)]

        # Stable sorts applied from the least significant key
        for field, direction in reversed(sort or []):
            results.sort(key=lambda doc: _sort_key(doc.get(field)), reverse=direction == DESCENDING)

        if limit is not None:
            results = results[:limit]
        return results

    async def count(self, query: Dict[str, Any]) -> int:
        async with self._lock:
            stored = await self._load_unlocked()
        return sum(1 for doc in stored if matches(doc, query))

    async def update_many(self, query: Dict[str, Any], fields: Dict[str, Any]) -> int:
        """Set fields on every matching document. Returns the number updated."""
        return await self.bulk_update([(query, fields)])

    async def bulk_update(self, updates: List[Tuple[Dict[str, Any], Dict[str, Any]]]) -> int:
        """Apply several (query, fields) updates in one load/save cycle."""
        if not updates:
            return 0
        modified = 0
        async with self._lock:
            stored = await self._load_unlocked()
            for query, fields in updates:
                for doc in stored:
                    if matches(doc, query):
                        doc.update(fields)
                        modified += 1
            if modified:
                await self._save_unlocked(stored)
        return modified

    async def replace_many(self, query: Dict[str, Any], documents: List[Dict[str, Any]]) -> int:
        """Delete documents matching query and insert documents in one load/save cycle.

        Returns the number of documents deleted.
        """
        async with self._lock:
            stored = await self._load_unlocked()
            kept = [doc for doc in stored if not matches(doc, query)]
            deleted = len(stored) - len(kept)
            kept.extend(documents)
            await self._save_unlocked(kept)
        return deleted

    async def delete_many(self, query: Dict[str, Any]) -> int:
        async with self._lock:
            stored = await self._load_unlocked()
            kept = [doc for doc in stored if not matches(doc, query)]
            deleted = len(stored) - len(kept)
            if deleted:
                await self._save_unlocked(kept)
        return deleted


# ============================================================================
# Context Store
# ============================================================================

class ContextStore:
    """Archive, score, retrieve and summarize conversation context."""

    def __init__(
        self,
        collection: JsonCollection,
        scorer: Optional[RelevanceScorer] = None,
        audit_log: Optional[AuditLog] = None
    ):
        self.collection = collection
        self.scorer = scorer or JaccardScorer()
        self.audit_log = audit_log

    async def _audit(self, conversation_id: str, action: str, details: str = "") -> None:
        if self.audit_log is not None:
            await self.audit_log.record(conversation_id, action, details)

    async def archive(
        self,
        conversation_id: str,
        messages: List[str],
        tags: List[str],
        llm_tag: str,
        user_tag: Optional[str] = None
    ) -> int:
        """Store each message as its own archived record.

        Records of one batch share a timestamp and keep their order in
        message_index. Returns the number of records inserted.
        """
        if not messages:
            return 0

        timestamp = datetime.now().isoformat()
        records = [
            ContextRecord(
                id=generate_context_id(),
                context_type="archived",
                memories=[message],
                timestamp=timestamp,
                llm_tag=llm_tag,
                user_tag=user_tag,
                conversation_id=conversation_id,
                tags=list(tags),
                message_index=index,
                word_count=count_words(message)
            )
            for index, message in enumerate(messages)
        ]
        inserted = await self.collection.insert_many([r.model_dump() for r in records])

        await self._audit(conversation_id, "archive", f"count={inserted} | tags={','.join(tags)}")
        return inserted

    async def retrieve(
        self,
        conversation_id: str,
        tags: Optional[List[str]] = None,
        min_score: Optional[float] = None,
        limit: int = 10
    ) -> List[ContextRecord]:
        """Archived records, most relevant first and newest first among equal scores.

        With min_score set, records never scored are excluded. With tags set,
        a record qualifies when it carries any of them.
        """
        query: Dict[str, Any] = {"conversation_id": conversation_id, "context_type": "archived"}
        if tags:
            query["tags"] = {"$in": tags}
        if min_score is not None:
            query["relevance_score"] = {"$gte": min_score}

        documents = await self.collection.find(query, sort=MOST_RELEVANT_FIRST, limit=limit)
        return [ContextRecord(**doc) for doc in documents]

    async def rescore(self, conversation_id: str, query_text: str) -> int:
        """Score every archived record of the conversation against query_text.

        Previous scores are overwritten. Returns the number of records scored.
        Every score is validated before any is written, so a scorer returning
        a value outside [0, 1] raises ValidationError and leaves the store as it was.
        """
        documents = await self.collection.find(
            {"conversation_id": conversation_id, "context_type": "archived"}
        )
        if not documents:
            return 0

        updates = []
        for doc in documents:
            record = ContextRecord(**doc)
            record.relevance_score = self.scorer.score(query_text, record.content)
            updates.append(({"id": record.id}, {"relevance_score": record.relevance_score}))

        scored = await self.collection.bulk_update(updates)
        await self._audit(conversation_id, "rescore", f"scored={scored}")
        return scored

    async def summarize_and_link(
        self,
        conversation_id: str,
        items: List[ContextRecord],
        summary_text: str,
        llm_tag: str,
        user_tag: Optional[str] = None
    ) -> str:
        """Store a summary and point each item's parent_context_id at it.

        The summary carries the union of the items' tags. Returns its id.
        """
        tags: List[str] = []
        for item in items:
            for tag in item.tags:
                if tag not in tags:
                    tags.append(tag)

        summary = ContextRecord(
            id=generate_context_id("sum"),
            context_type="summary",
            memories=[summary_text],
            timestamp=datetime.now().isoformat(),
            llm_tag=llm_tag,
            user_tag=user_tag,
            conversation_id=conversation_id,
            tags=tags,
            word_count=count_words(summary_text),
            summary_text=summary_text
        )
        await self.collection.insert_many([summary.model_dump()])

        linked = await self.collection.update_many(
            {"id": {"$in": [item.id for item in items]}},
            {"parent_context_id": summary.id}
        )

        await self._audit(conversation_id, "create_summary", f"summary_id={summary.id} | linked={linked}")
        return summary.id

    async def list_summaries(self, conversation_id: str) -> List[ContextRecord]:
        documents = await self.collection.find(
            {"conversation_id": conversation_id, "context_type": "summary"},
            sort=NEWEST_FIRST
        )
        return [ContextRecord(**doc) for doc in documents]

    async def search_by_tags(self, tags: List[str]) -> List[ContextRecord]:
        """Archived and summary records across all conversations carrying any of tags."""
        if not tags:
            return []
        documents = await self.collection.find(
            {"context_type": {"$in": ["archived", "summary"]}, "tags": {"$in": tags}},
            sort=NEWEST_FIRST
        )
        return [ContextRecord(**doc) for doc in documents]

    async def count_archived(self, conversation_id: str) -> int:
        return await self.collection.count(
            {"conversation_id": conversation_id, "context_type": "archived"}
        )

    # Memory log -------------------------------------------------------------

    async def save_memories(
        self,
        memories: List[str],
        llm_tag: str,
        user_tag: Optional[str] = None,
        replace: bool = False
    ) -> ContextRecord:
        """Store a batch of memory strings, optionally replacing the whole log.

        A replacement deletes the old log and inserts the new entry in one write.
        """
        record = ContextRecord(
            id=generate_context_id("mem"),
            context_type="memory",
            memories=memories,
            timestamp=datetime.now().isoformat(),
            llm_tag=llm_tag,
            user_tag=user_tag,
            word_count=sum(count_words(m) for m in memories)
        )
        if replace:
            await self.collection.replace_many({"context_type": "memory"}, [record.model_dump()])
        else:
            await self.collection.insert_many([record.model_dump()])

        action = "save_memories" if replace else "add_memories"
        await self._audit("-", action, f"count={len(memories)} | llm={llm_tag}")
        return record

    async def get_memories(self) -> List[ContextRecord]:
        documents = await self.collection.find({"context_type": "memory"}, sort=NEWEST_FIRST)
        return [ContextRecord(**doc) for doc in documents]

    async def clear_memories(self) -> int:
        """Delete every memory log entry. Conversation context is left alone."""
        deleted = await self.collection.delete_many({"context_type": "memory"})
        await self._audit("-", "clear_memories", f"deleted={deleted}")
        return deleted
