"""Logging filters for enriching log records with request context.

The filter here copies the request id set by ``RequestIdMiddleware`` onto
every log record, so JSON log lines from views, the order service and the
notification worker can be correlated per request without changing the
individual log calls.
"""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Attach ``record.request_id`` from ``REQUEST_ID_CTX``.

    Records emitted outside a request (worker threads, management commands)
    get ``"-"`` so formatters can always reference ``%(request_id)s``.
    """

    def filter(self, record: LogRecord) -> bool:
        """Populate ``record.request_id`` and let the record through.

        A ``request_id`` already present on the record (passed via
        ``extra``) is kept as is.

        Args:
            record: The log record to enrich.

        Returns:
            bool: Always True so the record is processed.
        """
        if not getattr(record, "request_id", None):
            record.request_id = REQUEST_ID_CTX.get()
        return True
