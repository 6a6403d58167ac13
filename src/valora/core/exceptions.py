"""Custom exception hierarchy for valora."""

from typing import Any


class ValoraError(Exception):
    """Base exception for all valora errors.

    All exceptions carry an optional `context` dict for structured error
    metadata that can be logged or serialized without parsing the message.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigError(ValoraError):
    """Invalid or missing configuration.

    Raised by load_config() during startup. Should be treated as fatal.

    Context keys:
        field: str, the config field that failed validation
        value: Any, the invalid value (redacted for secrets)
    """


class SourceError(ValoraError):
    """An upstream provider could not deliver usable data.

    Policy: caught at the orchestrator boundary. Triggers the FX fallback,
    or marks the category refresh as failed. Never crashes the scheduler.

    Context keys:
        source: str, the adapter's source tag
        url: str, the URL that was being fetched
    """


class TransportError(SourceError):
    """Timeout, connection failure, or non-2xx response.

    Context keys:
        status_code: int | None, HTTP status if a response was received
    """


class RateLimitError(TransportError):
    """Provider returned HTTP 429 after retry exhaustion.

    Context keys:
        retry_after: int | None, seconds to wait
    """


class ParsingError(SourceError):
    """Payload did not have the expected shape.

    Raised for whole-batch failures only (e.g. the top-level array is
    missing). Single unparseable rows are skipped and logged instead.

    Context keys:
        reason: str, what could not be located or parsed
    """


class NoDataAvailable(SourceError):
    """Provider has no data for the requested date (weekend/holiday 404).

    Not a failure: callers must not retry and must not count it towards
    the consecutive-failure counter.

    Context keys:
        date: str, the requested date, if any
    """


class StorageError(ValoraError):
    """Database operation failed.

    Policy: propagate to the orchestrator, which records a category error.

    Context keys:
        operation: str, "insert", "upsert", "query", "migrate", etc.
        table: str, the table involved
    """


class RefreshError(ValoraError):
    """A category refresh could not produce any quotes.

    Context keys:
        category: str, "metals" or "fx"
    """
