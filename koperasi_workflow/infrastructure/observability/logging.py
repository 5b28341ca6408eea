"""Structured JSON logging for workflow transitions"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

from koperasi_workflow.config import settings

logger = logging.getLogger("koperasi_workflow")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging on the root logger"""
    root = logging.getLogger()
    root.setLevel(level)

    # Remove existing handlers
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s"))
    root.addHandler(handler)


def log_transition(
    request_id: str,
    request_number: str,
    request_type: str,
    action: str,
    actor_id: str,
    status: str,
    current_step: Optional[str],
    duration_ms: float,
) -> None:
    """Log a committed state change for audit and analysis"""
    logger.info(
        "Transition committed",
        extra={
            "request_id": request_id,
            "request_number": request_number,
            "request_type": request_type,
            "action": action,
            "actor_id": actor_id,
            "status": status,
            "current_step": current_step,
            "duration_ms": duration_ms,
        },
    )


def log_rejected_operation(operation: str, request_id: Optional[str], actor_id: Optional[str], error: Exception) -> None:
    """Log an operation refused by a domain rule"""
    logger.warning(
        "Operation rejected",
        extra={
            "operation": operation,
            "request_id": request_id,
            "actor_id": actor_id,
            "error_code": getattr(error, "code", type(error).__name__),
            "error": str(error),
        },
    )
