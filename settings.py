"""
Configuration for the context window server.

Paths and server options come from the environment; policy thresholds live in
CONTEXT_CONFIG.
"""

from pathlib import Path
import os

CONTEXT_BASE_PATH = Path(os.getenv("CONTEXT_BASE_PATH", ".claude/context"))

CONTEXT_COLLECTION_PATH = CONTEXT_BASE_PATH / "contexts.json"
AUDIT_LOG_PATH = CONTEXT_BASE_PATH / "audit.log"

SERVER_TRANSPORT = os.getenv("CONTEXT_TRANSPORT", "stdio")
SERVER_HOST = os.getenv("CONTEXT_HOST", "0.0.0.0")
SERVER_PORT = int(os.getenv("CONTEXT_PORT", "8080"))

CONTEXT_CONFIG = {
    "window": {
        "max_word_count": int(os.getenv("CONTEXT_MAX_WORDS", "8000")),
        "archive_threshold": 0.8,
        "retrieve_threshold": 0.3,
        "archive_fraction": 0.3
    },
    "retrieval": {
        "min_relevance": 0.2,
        "limit": 5
    },
    "summary": {
        "min_relevance": 0.1,
        "limit": 10
    },
    "status": {
        "nearly_full": 0.9,
        "consider_archiving": 0.7,
        "consider_retrieving": 0.2,
        "summarize_after_archived": 20
    }
}
