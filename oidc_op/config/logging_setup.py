"""
Logging setup for the provider process
"""

import json
import logging
import logging.handlers
from pathlib import Path

from .provider_config import LoggingConfig


class JSONFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, separators=(',', ':'))


def configure_logging(config: LoggingConfig) -> None:
    """
    Install root handlers according to configuration

    Args:
        config: Logging configuration
    """
    if config.format == "json":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    handlers = [logging.StreamHandler()]
    if config.file_path:
        Path(config.file_path).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            config.file_path,
            maxBytes=config.max_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
        ))

    root = logging.getLogger()
    root.setLevel(config.level.upper())
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    # Audit lines are already JSON; keep them out of the way when disabled
    logging.getLogger("security_audit").disabled = not config.audit_logging_enabled
