from __future__ import annotations

import logging

from chat_memory.core.security import redact_secrets


class RedactionFilter(logging.Filter):
    """Redact API keys from the rendered log message."""

    def filter(self, record: logging.LogRecord) -> bool:
        # Render first so numeric placeholders still see numbers.
        record.msg = redact_secrets(record.getMessage())
        record.args = None
        return True


def setup_logging(level: str) -> None:
    """Configure root logging for the memory service with secret redaction."""

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    root = logging.getLogger()
    root.setLevel(numeric_level)
    # Filters on a logger skip records propagated from its children; handler filters do not.
    for handler in root.handlers:
        if not any(isinstance(item, RedactionFilter) for item in handler.filters):
            handler.addFilter(RedactionFilter())
