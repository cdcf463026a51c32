"""Tests for settings and log formatting."""

from __future__ import annotations

import json
import logging

from graphmode.config import Settings
from graphmode.logging_config import CorrelationJsonFormatter, ctx_node_type, ctx_run_id, setup_logger


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("GRAPHMODE_MAX_STEPS", raising=False)
        settings = Settings()
        assert settings.max_steps == 100
        assert settings.retry_max_attempts == 3
        assert settings.db_path == "graph-mode.db"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("GRAPHMODE_MAX_STEPS", "7")
        monkeypatch.setenv("GRAPHMODE_RETRY_BASE_DELAY", "0.5")
        settings = Settings()
        assert settings.max_steps == 7
        assert settings.retry_base_delay == 0.5


class TestJsonLogging:
    def test_correlation_fields_injected(self):
        formatter = CorrelationJsonFormatter("%(levelname)s %(name)s %(message)s")
        record = logging.LogRecord("graphmode.engine", logging.INFO, __file__, 1, "node done", None, None)
        run_token = ctx_run_id.set("run-123")
        node_token = ctx_node_type.set("Start")
        try:
            payload = json.loads(formatter.format(record))
        finally:
            ctx_node_type.reset(node_token)
            ctx_run_id.reset(run_token)
        assert payload["run_id"] == "run-123"
        assert payload["node_type"] == "Start"
        assert payload["message"] == "node done"

    def test_setup_logger_sets_level(self):
        root = setup_logger("json", "warning")
        try:
            assert root.level == logging.WARNING
            assert isinstance(root.handlers[0].formatter, CorrelationJsonFormatter)
        finally:
            setup_logger("text", "INFO")
