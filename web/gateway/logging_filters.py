"""Logging filter stamping records with the current request id.

Installed on the handlers in ``settings.LOGGING`` so every JSON log line
carries ``request_id`` (``-`` outside a request, e.g. in the event relay
thread).
"""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Attach a ``request_id`` attribute to log records.

    The value comes from the ``REQUEST_ID_CTX`` ContextVar set by
    ``RequestIdMiddleware``; a hyphen ("-") is used when no request is in
    flight. Records that already carry ``request_id`` are left alone.
    """

    def filter(self, record: LogRecord) -> bool:
        """Populate ``record.request_id`` and let the record through.

        Args:
            record: The log record to enrich.

        Returns:
            bool: Always True so the record is processed.
        """
        if not hasattr(record, "request_id"):
            record.request_id = REQUEST_ID_CTX.get()
        return True
