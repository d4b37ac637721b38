"""
Logging configuration for BunkerNote.

Provides structured JSON logging for audit trails and debugging.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Optional

# Context variable for ledger transaction tracking
transaction_id_var: ContextVar[str] = ContextVar('transaction_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in a consistent JSON format suitable for
    log aggregation systems like ELK, Splunk, or CloudWatch.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        transaction_id = transaction_id_var.get()
        if transaction_id:
            log_data["transaction_id"] = transaction_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=_json_default)


def _json_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return str(value)


class AuditLogger:
    """
    Specialized logger for audit events.

    Provides methods for logging intent validation, controller
    rotation, delivery note transitions and rejected calls.
    """

    def __init__(self, name: str = "bunkernote.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        """Internal logging method with extra fields."""
        if not self._logger.isEnabledFor(level):
            return
        extra = {
            "event_type": event_type,
            "transaction_id": transaction_id_var.get(),
            **kwargs
        }

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "",
            0,
            f"{event_type}: {kwargs.get('message', '')}",
            (),
            None
        )
        record.extra_fields = extra
        self._logger.handle(record)

    def intent_validated(
        self,
        gateway: str,
        replay_value: int,
        prefund_paid: int
    ) -> None:
        """Log an accepted intent."""
        self._log(
            logging.INFO,
            "INTENT_VALIDATED",
            gateway=gateway,
            replay_value=replay_value,
            prefund_paid=prefund_paid,
            message=f"Intent {replay_value} accepted by {gateway}"
        )

    def intent_rejected(
        self,
        gateway: str,
        code: str,
        replay_value: Optional[int] = None
    ) -> None:
        """Log a rejected intent."""
        self._log(
            logging.WARNING,
            "INTENT_REJECTED",
            gateway=gateway,
            code=code,
            replay_value=replay_value,
            message=f"Intent rejected by {gateway}: {code}"
        )

    def prefund_shortfall(
        self,
        gateway: str,
        required: int,
        paid: int
    ) -> None:
        """Log a partially paid prefund."""
        self._log(
            logging.WARNING,
            "PREFUND_SHORTFALL",
            gateway=gateway,
            required=required,
            paid=paid,
            deficiency=required - paid,
            message=f"Prefund short by {required - paid}"
        )

    def forwarded_call_failed(
        self,
        gateway: str,
        replay_value: int,
        code: str
    ) -> None:
        """Log a forwarded call that failed after its intent was validated."""
        self._log(
            logging.ERROR,
            "FORWARDED_CALL_FAILED",
            gateway=gateway,
            replay_value=replay_value,
            code=code,
            message=f"Forwarded call {replay_value} from {gateway} failed: {code}"
        )

    def controller_rotated(
        self,
        gateway: str,
        previous: str,
        new: str
    ) -> None:
        """Log a controller rotation."""
        self._log(
            logging.WARNING,
            "CONTROLLER_ROTATED",
            gateway=gateway,
            previous_controller=previous,
            new_controller=new,
            message=f"Controller of {gateway} rotated"
        )

    def note_transition(
        self,
        delivery_id: bytes,
        status: str,
        actor: str
    ) -> None:
        """Log a delivery note status change."""
        self._log(
            logging.INFO,
            "NOTE_TRANSITION",
            delivery_id=delivery_id,
            status=status,
            actor=actor,
            message=f"Delivery note moved to {status}"
        )

    def access_denied(
        self,
        operation: str,
        caller: str
    ) -> None:
        """Log a call from an unauthorized identity."""
        self._log(
            logging.WARNING,
            "ACCESS_DENIED",
            operation=operation,
            caller=caller,
            message=f"{caller} may not call {operation}"
        )

    def signature_rejected(
        self,
        subject: str,
        expected: str,
        recovered: str
    ) -> None:
        """Log a signature that did not match the required controller."""
        self._log(
            logging.WARNING,
            "SIGNATURE_REJECTED",
            subject=subject,
            expected=expected,
            recovered=recovered,
            message=f"Signature for {subject} not attributable to current controller"
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting (recommended for production)
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def set_transaction_id(transaction_id: Optional[str] = None) -> str:
    """
    Set the ledger transaction ID for the current context.

    Args:
        transaction_id: ID to set, or None to generate one

    Returns:
        The transaction ID that was set
    """
    if transaction_id is None:
        transaction_id = f"tx-{uuid.uuid4().hex[:16]}"
    transaction_id_var.set(transaction_id)
    return transaction_id


def clear_transaction_id() -> None:
    transaction_id_var.set('')


def get_transaction_id() -> str:
    """Get the current ledger transaction ID."""
    return transaction_id_var.get()


# Global audit logger instance
audit_log = AuditLogger()
