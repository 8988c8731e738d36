"""
Structured logging configuration for production use.

Provides JSON-formatted logs for better parsing and aggregation, plus
channel helpers for auth, security and integration events.
"""
import logging
import sys
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from core.config import settings

auth_logger = logging.getLogger("olotrainer.auth")
security_logger = logging.getLogger("olotrainer.security")
integration_logger = logging.getLogger("olotrainer.integrations")


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "service": "olotrainer-api",
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add extra fields if present
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


def setup_logging():
    """
    Configure application-wide logging.

    Uses JSON format in production, text format in development.
    """
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    # Create formatter
    if settings.LOG_FORMAT == "json" or settings.is_production:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers
    root_logger.handlers.clear()

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Set levels for noisy libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    return root_logger


def log_auth(action: str, user_id: Optional[str], ip: Optional[str], success: bool = True):
    """Record an authentication event (login, register, password change...)."""
    auth_logger.log(
        logging.INFO if success else logging.WARNING,
        f"Auth {action} {'succeeded' if success else 'failed'}",
        extra={
            "extra_fields": {
                "type": "auth",
                "action": action,
                "user_id": user_id,
                "ip": ip,
                "success": success,
            }
        },
    )


def log_security(event: str, details: Optional[Dict[str, Any]] = None, severity: str = "medium"):
    """Record a security-relevant event such as a denied cross-user access."""
    level = logging.ERROR if severity == "high" else logging.WARNING
    security_logger.log(
        level,
        f"Security event: {event}",
        extra={
            "extra_fields": {
                "type": "security",
                "event": event,
                "severity": severity,
                **(details or {}),
            }
        },
    )


def log_integration(provider: str, action: str, user_id: str, success: bool = True,
                    details: Optional[Dict[str, Any]] = None):
    integration_logger.log(
        logging.INFO if success else logging.ERROR,
        f"Integration {provider} {action}",
        extra={
            "extra_fields": {
                "type": "integration",
                "provider": provider,
                "action": action,
                "user_id": user_id,
                "success": success,
                **(details or {}),
            }
        },
    )


# Initialize logging on import
setup_logging()
