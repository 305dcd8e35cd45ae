"""
Logging configuration for the AIProof service.

Provides structured JSON logging for provenance audit trails and debugging.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import List, Optional

# Context variable for request ID tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Library modules attach fields through ``extra={"extra_fields": {...}}``;
    they are merged into the top-level object.
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

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class AuditLogger:
    """
    Logger for provenance lifecycle events.

    Every record built, envelope published and verification run produces
    one event carrying the hashes and cids needed to trace it.
    """

    def __init__(self, name: str = "aiproof.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        extra = {
            "event_type": event_type,
            "request_id": request_id_var.get(),
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

    def provenance_constructed(
        self,
        output_hash: str,
        model_id: str,
        provider: str,
        attestation_mode: str,
        warnings: Optional[List[str]] = None
    ) -> None:
        """Log a newly built (unsigned) provenance record."""
        self._log(
            logging.INFO,
            "PROVENANCE_CONSTRUCTED",
            output_hash=output_hash,
            model_id=model_id,
            provider=provider,
            attestation_mode=attestation_mode,
            warnings=warnings or [],
            message=f"Provenance built with {provider}"
        )

    def provenance_published(
        self,
        signed_provenance_cid: str,
        output_hash: str,
        signer: Optional[str],
        warnings: Optional[List[str]] = None
    ) -> None:
        self._log(
            logging.INFO,
            "PROVENANCE_PUBLISHED",
            signed_provenance_cid=signed_provenance_cid,
            output_hash=output_hash,
            signer=signer,
            warnings=warnings or [],
            message=f"Envelope stored as {signed_provenance_cid}"
        )

    def publish_rejected(self, reason: str) -> None:
        self._log(
            logging.WARNING,
            "PUBLISH_REJECTED",
            reason=reason,
            message=f"Publish rejected: {reason}"
        )

    def verification_completed(
        self,
        signed_provenance_cid: str,
        ok: bool,
        issues: List[str],
        warnings: List[str]
    ) -> None:
        """Log a verification report. Failing reports log at WARNING."""
        level = logging.INFO if ok else logging.WARNING
        self._log(
            level,
            "VERIFICATION_COMPLETED",
            signed_provenance_cid=signed_provenance_cid,
            ok=ok,
            issues=issues,
            warnings=warnings,
            message=f"Verification {'passed' if ok else 'failed'} for {signed_provenance_cid}"
        )

    def fallback_fired(self, component: str, detail: str) -> None:
        """Log a degraded path: provider, storage or attestation fallback."""
        self._log(
            logging.WARNING,
            "FALLBACK_FIRED",
            component=component,
            detail=detail,
            message=f"{component} fallback: {detail}"
        )

    def security_event(
        self,
        event: str,
        severity: str = "medium",
        **details
    ) -> None:
        """Log a security-relevant event."""
        level = {
            "low": logging.INFO,
            "medium": logging.WARNING,
            "high": logging.ERROR,
            "critical": logging.CRITICAL
        }.get(severity, logging.WARNING)

        self._log(
            level,
            "SECURITY_EVENT",
            security_event=event,
            severity=severity,
            **details,
            message=f"Security event: {event}"
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
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

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


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set the request ID for the current context.

    Returns:
        The request ID that was set
    """
    if not request_id:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def get_request_id() -> str:
    return request_id_var.get()


audit_log = AuditLogger()
