"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = "lending-gateway"


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_fund_movement(
    step: str,
    operation: str,
    idempotency_key: str,
    subject_id: str,
    transfer_reference: Optional[str] = None,
    level: int = logging.INFO,
    **extra: Any,
) -> None:
    """Log one step of a disbursement or settlement for reconciliation"""
    logging.log(
        level,
        f"{operation} {step}",
        extra={
            "step": step,
            "operation": operation,
            "idempotency_key": idempotency_key,
            "subject_id": subject_id,
            "transfer_reference": transfer_reference,
            **extra,
        },
    )
