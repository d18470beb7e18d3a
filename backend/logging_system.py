"""
CA Practice Portal — Request context for logging and auditing

The correlation middleware stores the request id in a context variable; the
logging filter stamps it on every record emitted while the request runs, and
audit rows written during the request carry the same id.
"""

import logging
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from models import AuditLog, AuditEventType

_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s [rid=%(request_id)s] %(message)s"


def set_request_id(request_id: str):
    return _request_id.set(request_id)


def reset_request_id(token) -> None:
    _request_id.reset(token)


def get_request_id() -> Optional[str]:
    return _request_id.get()


class RequestContextFilter(logging.Filter):
    """Attach the current request id (or '-') to each log record"""

    def filter(self, record: logging.LogRecord) -> bool:
        rid = _request_id.get()
        record.request_id = rid[:8] if rid else "-"
        return True


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    context_filter = RequestContextFilter()
    for handler in logging.getLogger().handlers:
        handler.addFilter(context_filter)


def add_audit(
    db: AsyncSession,
    event_type: AuditEventType,
    user_id: Optional[str],
    firm_id: Optional[str],
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """Stage an audit row on the session; it commits with the change it describes"""
    entry = AuditLog(
        event_type=event_type.value,
        user_id=user_id,
        firm_id=firm_id,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details or {},
        request_id=get_request_id() or str(uuid.uuid4()),
    )
    db.add(entry)
    return entry
