"""
Structured logging system for LeadStitch.

Provides centralized logging with console and file outputs, plus
metrics tracking for match jobs (events, leads, links, failures).
"""

import logging
import sys
from pathlib import Path
from typing import Optional
from datetime import datetime
import json


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Summarizes per-job MatchMetrics.
    """

    def __init__(
        self,
        name: str = "leadstitch",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize the structured logger.

        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (default: logs/)
            enable_file: Write logs to file
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.logger.handlers.clear()

        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"leadstitch_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    def debug(self, message: str, **kwargs):
        """Log debug message with optional context."""
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        """Log info message with optional context."""
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with optional context."""
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with optional context."""
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message with optional context."""
        self._log(logging.CRITICAL, message, kwargs)

    def _log(self, level: int, message: str, context: dict):
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message)

    def log_metrics_summary(self, metrics: "MatchMetrics"):
        """Log a summary of one job's metrics."""
        snapshot = metrics.as_dict()

        rate = snapshot.get("success_rate", 0) * 100

        self.info("=== Match Job Metrics ===")
        self.info(f"Events: {snapshot['events_processed']} ({rate:.1f}% success)")
        self.info(f"New leads: {snapshot['leads_created']}")
        self.info(f"Links: {snapshot['links_created']}")

        if snapshot["links_by_pass"]:
            self.info("Links by pass:")
            for match_pass, count in sorted(snapshot["links_by_pass"].items()):
                self.info(f"  {match_pass}: {count}")

        if snapshot["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in snapshot["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")


class MatchMetrics:
    """
    Counters for a single match job.

    Owned by one job; never shared between concurrent jobs.
    """

    def __init__(self):
        self.events_processed = 0
        self.leads_created = 0
        self.links_created = 0
        self.events_failed = 0
        self.errors_by_type = {}
        self.links_by_pass = {}

    def record_event_processed(self):
        self.events_processed += 1

    def record_lead_created(self):
        self.leads_created += 1

    def record_link(self, match_pass: str):
        """Record a link and the pass that produced it."""
        self.links_created += 1
        self.links_by_pass[match_pass] = self.links_by_pass.get(match_pass, 0) + 1

    def record_event_failure(self, error_type: str):
        """Record a per-event failure by exception type."""
        self.events_failed += 1
        self.errors_by_type[error_type] = self.errors_by_type.get(error_type, 0) + 1

    def as_dict(self) -> dict:
        """Return current metrics with a derived success rate."""
        snapshot = {
            "events_processed": self.events_processed,
            "leads_created": self.leads_created,
            "links_created": self.links_created,
            "events_failed": self.events_failed,
            "errors_by_type": dict(self.errors_by_type),
            "links_by_pass": dict(self.links_by_pass),
        }
        if self.events_processed > 0:
            ok = self.events_processed - self.events_failed
            snapshot["success_rate"] = round(ok / self.events_processed, 3)
        return snapshot


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "leadstitch",
    level: str = "INFO",
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        **kwargs: Additional arguments passed to StructuredLogger

    Returns:
        StructuredLogger instance
    """
    global _global_logger

    if _global_logger is None:
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
