"""Shared fixtures: a context store on a temporary JSON collection and an orchestrator over it."""

from __future__ import annotations

import pytest

from audit_log import AuditLog
from context_store import ContextStore, JsonCollection
from orchestrator import ConversationOrchestrator


@pytest.fixture
def audit_log(tmp_path) -> AuditLog:
    return AuditLog(tmp_path / "audit.log")


@pytest.fixture
def collection(tmp_path) -> JsonCollection:
    return JsonCollection(tmp_path / "contexts.json")


@pytest.fixture
def store(collection, audit_log) -> ContextStore:
    return ContextStore(collection, audit_log=audit_log)


@pytest.fixture
def make_orchestrator(store, audit_log):
    """Build an orchestrator with a given window capacity."""

    def _make(max_word_count: int = 100) -> ConversationOrchestrator:
        return ConversationOrchestrator(store, max_word_count=max_word_count, audit_log=audit_log)

    return _make
