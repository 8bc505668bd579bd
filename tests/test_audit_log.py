"""Tests for the audit log."""

from __future__ import annotations

import pytest

from audit_log import AuditLog


class TestAuditLog:
    @pytest.mark.asyncio
    async def test_appends_pipe_separated_lines(self, tmp_path):
        log = AuditLog(tmp_path / "logs" / "audit.log")
        await log.record("conv-1", "execute_archive", "archived=2")
        await log.record("conv-2", "execute_retrieve")

        lines = log.path.read_text().splitlines()
        assert len(lines) == 2
        timestamp, conversation_id, action, details = lines[0].split(" | ")
        assert timestamp
        assert (conversation_id, action, details) == ("conv-1", "execute_archive", "archived=2")
        assert lines[1].endswith("| conv-2 | execute_retrieve | ")

    @pytest.mark.asyncio
    async def test_write_failure_does_not_raise(self, tmp_path, capsys):
        # A directory in place of the log file makes the open fail
        target = tmp_path / "audit.log"
        target.mkdir()
        log = AuditLog(target)

        await log.record("conv-1", "archive")
        assert "Audit log write failed" in capsys.readouterr().err
