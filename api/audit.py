"""
Audit trail for uploads and draft creation.

Each event is one JSON object per line in a rotating file (``TUBELY_AUDIT_LOG_PATH``),
separate from the application log. When the file can not be opened the
lines go to stderr instead.
"""

import json
import logging
import os
from datetime import datetime, timezone
from enum import Enum
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

from fastapi import Request

from api.common import get_real_ip, get_request_id
from api.errors import truncate_string
from config import (
    AUDIT_LOG_BACKUP_COUNT,
    AUDIT_LOG_ENABLED,
    AUDIT_LOG_LEVEL,
    AUDIT_LOG_MAX_BYTES,
    AUDIT_LOG_PATH,
    ERROR_DETAIL_MAX_LENGTH,
)

# Ensure log directory exists (skip in test mode)
if not os.environ.get("TUBELY_TEST_MODE") and AUDIT_LOG_ENABLED:
    try:
        AUDIT_LOG_PATH.parent.mkdir(parents=True, exist_ok=True)
    except PermissionError:
        pass  # Will fall back to console logging

# Free-form values that end up in entries verbatim
TRUNCATED_FIELDS = ("user_agent", "error")


class AuditAction(str, Enum):
    VIDEO_CREATE = "video_create"
    THUMBNAIL_UPLOAD = "thumbnail_upload"
    VIDEO_UPLOAD = "video_upload"


class AuditLogger:
    """Writes audit entries as JSON lines to the ``tubely.audit`` logger."""

    def __init__(self):
        self.logger = logging.getLogger("tubely.audit")
        self.logger.setLevel(getattr(logging, AUDIT_LOG_LEVEL, logging.INFO))
        self.logger.propagate = False

        if not self.logger.handlers:
            self.logger.addHandler(self._make_handler())

    def _make_handler(self) -> logging.Handler:
        if not AUDIT_LOG_ENABLED:
            return logging.NullHandler()
        try:
            handler = RotatingFileHandler(
                AUDIT_LOG_PATH,
                maxBytes=AUDIT_LOG_MAX_BYTES,
                backupCount=AUDIT_LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
        except OSError:
            handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        return handler

    def log(
        self,
        action: AuditAction,
        user_id: Optional[str] = None,
        resource_id: Optional[Any] = None,
        details: Optional[dict] = None,
        success: bool = True,
        **context: Optional[str],
    ):
        """
        Write one audit entry.

        Args:
            action: What happened
            user_id: Authenticated user that did it
            resource_id: ID of the affected video
            details: Action-specific values (storage key, sizes, ...)
            success: Whether the action succeeded
            **context: Optional ``client_ip``, ``user_agent``, ``request_id``
                and ``error`` strings; empty values are left out
        """
        if not AUDIT_LOG_ENABLED:
            return

        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "action": action.value,
            "success": success,
        }
        if user_id:
            entry["user_id"] = user_id
        if resource_id is not None:
            entry["resource_type"] = "video"
            entry["resource_id"] = resource_id
        if details:
            entry["details"] = details
        for name, value in context.items():
            if not value:
                continue
            entry[name] = truncate_string(value, ERROR_DETAIL_MAX_LENGTH) if name in TRUNCATED_FIELDS else value

        try:
            self.logger.info(json.dumps(entry, default=str))
        except Exception:
            # Never let audit logging break the application
            pass


audit_logger = AuditLogger()


def request_context(request: Optional[Request]) -> dict:
    """Client IP, user agent and request ID of the request being audited."""
    if request is None:
        return {}
    return {
        "client_ip": get_real_ip(request),
        "user_agent": request.headers.get("user-agent"),
        "request_id": get_request_id(request),
    }


def log_audit(
    action: AuditAction,
    request: Optional[Request] = None,
    user_id: Optional[str] = None,
    resource_id: Optional[Any] = None,
    details: Optional[dict] = None,
    success: bool = True,
    error: Optional[str] = None,
):
    """
    Record an audit event for ``request``.

    Example:
        log_audit(AuditAction.VIDEO_UPLOAD, request, user_id=user_id, resource_id=video.id, details={"key": key})
    """
    audit_logger.log(
        action,
        user_id=user_id,
        resource_id=resource_id,
        details=details,
        success=success,
        error=error,
        **request_context(request),
    )
