import json
import logging
from datetime import UTC, datetime

from app.infrastructure.logging.context import get_request_id, get_tenant_id


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line, tagged with the request and tenant in scope."""

    def __init__(self, service: str = "magazinify", **kwargs) -> None:
        super().__init__(**kwargs)
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "service": self.service,
            "logger": record.name,
            "event": message.split(" ", 1)[0],
            "message": message,
            "request_id": get_request_id(),
            "tenant_id": get_tenant_id(),
        }
        if record.exc_info:
            payload["exc_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)
