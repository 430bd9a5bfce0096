"""
Tests for logger.py - Structured logging and match metrics.
"""

import logging

import pytest

from leadstitch.logger import MatchMetrics, StructuredLogger, get_logger, reset_logger


class TestStructuredLogger:
    """Test StructuredLogger functionality."""

    def test_logger_initialization(self, tmp_path):
        """Logger should initialize with correct settings."""
        logger = StructuredLogger(
            name="test",
            level="DEBUG",
            log_dir=tmp_path,
            enable_console=False,
        )

        assert logger.logger.name == "test"
        assert logger.logger.level == logging.DEBUG

    def test_logging_with_context(self, tmp_path):
        """Context should be appended as JSON."""
        logger = StructuredLogger(
            name="test-context",
            log_dir=tmp_path,
            enable_console=False,
        )

        logger.info("Linked to existing lead", event_id=7, match_pass="P1")

        content = next(tmp_path.glob("*.log")).read_text()
        assert 'Linked to existing lead | Context: {"event_id": 7, "match_pass": "P1"}' in content

    def test_context_with_non_json_values(self, tmp_path):
        """Datetimes and other objects are stringified, not rejected."""
        from datetime import datetime

        logger = StructuredLogger(name="test-str", log_dir=tmp_path, enable_console=False)
        logger.info("Job started", started_at=datetime(2024, 3, 15, 12, 0))

        content = next(tmp_path.glob("*.log")).read_text()
        assert "2024-03-15 12:00:00" in content

    def test_metrics_summary_logged(self, tmp_path):
        logger = StructuredLogger(name="test-summary", log_dir=tmp_path, enable_console=False)
        metrics = MatchMetrics()
        metrics.record_event_processed()
        metrics.record_link("P3")

        logger.log_metrics_summary(metrics)

        content = next(tmp_path.glob("*.log")).read_text()
        assert "=== Match Job Metrics ===" in content
        assert "Events: 1 (100.0% success)" in content
        assert "P3: 1" in content

    def test_log_file_creation(self, tmp_path):
        """Log file should be created in specified directory."""
        logger = StructuredLogger(
            name="test",
            log_dir=tmp_path,
            enable_console=False,
        )

        logger.info("Test message")

        # Check that a log file was created
        log_files = list(tmp_path.glob("*.log"))
        assert len(log_files) == 1
        assert log_files[0].name.startswith("leadstitch_")

        # Check that message was written
        log_content = log_files[0].read_text()
        assert "Test message" in log_content


class TestMatchMetrics:
    """Test per-job match counters."""

    def test_metrics_tracking(self):
        """Metrics should be tracked correctly."""
        metrics = MatchMetrics()

        for _ in range(3):
            metrics.record_event_processed()
        metrics.record_lead_created()
        metrics.record_link("NEW")
        metrics.record_link("P1")
        metrics.record_event_failure("UsageLimitExceeded")

        snapshot = metrics.as_dict()

        assert snapshot["events_processed"] == 3
        assert snapshot["leads_created"] == 1
        assert snapshot["links_created"] == 2
        assert snapshot["links_by_pass"] == {"NEW": 1, "P1": 1}
        assert snapshot["events_failed"] == 1
        assert snapshot["errors_by_type"]["UsageLimitExceeded"] == 1

    def test_success_rate_calculation(self):
        """Success rate should be calculated correctly."""
        metrics = MatchMetrics()

        # 3 events, 1 failure = 66.7% success rate
        for _ in range(3):
            metrics.record_event_processed()
        metrics.record_event_failure("PersistenceError")

        assert metrics.as_dict()["success_rate"] == pytest.approx(0.667, rel=0.01)

    def test_no_success_rate_without_events(self):
        assert "success_rate" not in MatchMetrics().as_dict()

    def test_instances_are_independent(self):
        """Two jobs never share counters."""
        first, second = MatchMetrics(), MatchMetrics()
        first.record_event_processed()
        first.record_link("P2")

        assert second.as_dict()["events_processed"] == 0
        assert second.as_dict()["links_by_pass"] == {}

    def test_snapshot_is_a_copy(self):
        metrics = MatchMetrics()
        metrics.record_link("P1")
        snapshot = metrics.as_dict()
        metrics.record_link("P1")

        assert snapshot["links_by_pass"] == {"P1": 1}


class TestGlobalLogger:
    """Test global logger singleton."""

    def test_get_logger_singleton(self, tmp_path):
        """get_logger should return same instance."""
        reset_logger()  # Start fresh

        logger1 = get_logger(log_dir=tmp_path, enable_console=False)
        logger2 = get_logger()

        assert logger1 is logger2

    def test_reset_logger(self, tmp_path):
        """reset_logger should create new instance."""
        reset_logger()

        logger1 = get_logger(log_dir=tmp_path, enable_console=False)
        reset_logger()

        logger2 = get_logger(log_dir=tmp_path, enable_console=False)

        assert logger2 is not logger1
