"""
Tests for structured logging setup and context.
"""

import logging

import structlog
from structlog.testing import capture_logs

from sitefeed.logging_conf import get_logger, setup_logging, source_context
from sitefeed.pipeline import FetchPipeline

from conftest import html_transport, make_source, run


class TestSourceContext:
    """Tests for per-source log context."""

    def test_source_id_bound_inside_block(self):
        with source_context("s1", mode="static"):
            inside = structlog.contextvars.get_contextvars()
        outside = structlog.contextvars.get_contextvars()

        assert inside["source_id"] == "s1"
        assert inside["mode"] == "static"
        assert "source_id" not in outside

    def test_logger_tagged_with_module(self):
        with capture_logs() as logs:
            get_logger("sitefeed.test").info("tagged", n=1)

        assert logs == [{"event": "tagged", "module": "sitefeed.test", "n": 1, "log_level": "info"}]

    def test_package_imports_with_module_loggers(self):
        """Every module builds its logger at import time."""
        import sitefeed

        assert sitefeed.__version__
        assert callable(sitefeed.get_logger("sitefeed.extra").info)

    def test_failed_fetch_logged(self, settings):
        pipeline = FetchPipeline(settings, transport=html_transport({}))

        with capture_logs() as logs:
            outcome = run(pipeline.fetch_outcome(make_source(id="gone", url="https://gone.example/")))

        assert outcome.ok is False
        failed = [e for e in logs if e["event"] == "source_fetch_failed"]
        assert failed[0]["source"] == "gone"
        assert failed[0]["log_level"] == "error"


class TestSetupLogging:
    """Tests for logging configuration."""

    def test_noisy_loggers_silenced(self):
        try:
            setup_logging(level="DEBUG", json_output=True, run_id="run-1")

            assert logging.getLogger("httpx").level == logging.WARNING
            assert logging.getLogger("playwright").level == logging.WARNING
            assert structlog.contextvars.get_contextvars()["run_id"] == "run-1"
        finally:
            structlog.contextvars.clear_contextvars()
            structlog.reset_defaults()
