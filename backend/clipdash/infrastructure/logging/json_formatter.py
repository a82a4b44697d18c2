import json
import logging
from datetime import UTC, datetime

from clipdash.infrastructure.logging.context import get_invocation_id, get_request_id

SERVICE_NAME = "clipdash-scheduler"


class JsonLogFormatter(logging.Formatter):
    """
    One JSON object per line.

    Messages follow the ``event_name key=value ...`` convention; the leading
    token is lifted into ``event`` so log queries can filter on it directly.
    Correlation ids are only emitted when a request or worker invocation is
    in scope.
    """

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "service": SERVICE_NAME,
            "logger": record.name,
            "event": message.split(" ", 1)[0] if message else None,
            "message": message,
        }
        request_id = get_request_id()
        if request_id:
            payload["request_id"] = request_id
        invocation_id = get_invocation_id()
        if invocation_id:
            payload["invocation_id"] = invocation_id
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)
