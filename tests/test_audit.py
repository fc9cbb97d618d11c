"""Tests for audit records."""

from __future__ import annotations

import json
import logging

import pytest

from dnsdeck.services.audit import AuditLogger


class TestAuditLogger:
    def test_success_entry(self, caplog):
        with caplog.at_level(logging.INFO, logger="dnsdeck.audit"):
            entry = AuditLogger(actor="tester").record("config_apply", True, {"mode": "dot"})

        assert entry["result"] == "success"
        assert entry["actor"] == "tester"
        logged = json.loads(caplog.records[-1].getMessage())
        assert logged["event"] == "config_apply"
        assert logged["details"] == {"mode": "dot"}
        assert caplog.records[-1].levelno == logging.INFO

    def test_failure_entry(self, caplog):
        with caplog.at_level(logging.INFO, logger="dnsdeck.audit"):
            entry = AuditLogger().record("service_reload", False, error="timed out")

        assert entry["result"] == "failure"
        assert entry["error"] == "timed out"
        assert "details" not in entry
        assert caplog.records[-1].levelno == logging.WARNING

    def test_unknown_event(self):
        with pytest.raises(ValueError):
            AuditLogger().record("drop_database", True)
