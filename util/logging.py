"""
Structured logging for run record store operations.
"""

import json
import logging
from typing import Any, Dict


class StructuredLogger:
    """Structured logger for record writes, lookups and retention passes."""

    def __init__(self, name: str = "run_records"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def set_debug(self, enabled: bool):
        self.logger.setLevel(logging.DEBUG if enabled else logging.INFO)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_record_operation(self, operation: str, run_key: str, payload: Any = None, status: str = "success"):
        """Log a record-level operation with a truncated payload preview."""
        details = {"run_key": run_key}
        if payload is not None:
            details["payload"] = preview_payload(payload)

        self.log_operation(f"record.{operation}", status, details, level=logging.DEBUG)

    def log_cleanup(self, report, trigger: str = "timer"):
        """Log a retention pass. Passes that deleted nothing only show at DEBUG."""
        details = dict(report.to_dict())
        details["trigger"] = trigger
        level = logging.INFO if report.total_deleted > 0 else logging.DEBUG

        self.log_operation("retention.cleanup", "success", details, level=level)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


def preview_payload(payload: Any, max_length: int = 50) -> str:
    """Render a payload as compact JSON, truncated for log lines."""
    try:
        text = json.dumps(payload, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        text = repr(payload)
    return text[:max_length] + "..." if len(text) > max_length else text


# Global logger instance
logger = StructuredLogger()
