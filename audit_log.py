"""Append-only audit log for context operations."""

from datetime import datetime
from pathlib import Path
import asyncio
import sys

import aiofiles
import aiofiles.os


class AuditLog:
    """Writes one line per operation: timestamp | conversation_id | action | details."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def record(self, conversation_id: str, action: str, details: str = "") -> None:
        """Record an operation.

        Args:
            conversation_id: Conversation the operation touched ('-' when global)
            action: Type of action (e.g., 'archive', 'create_summary')
            details: Additional context about the operation
        """
        timestamp = datetime.now().isoformat()
        entry = f"{timestamp} | {conversation_id} | {action} | {details}\n"

        async with self._lock:
            try:
                await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
                async with aiofiles.open(self.path, 'a') as f:
                    await f.write(entry)
            except OSError as e:
                # The operation itself already succeeded
                print(f"Audit log write failed: {e}", file=sys.stderr, flush=True)
