"""valora.core: Foundation types, config, and exceptions."""

from valora.core.config import (
    APIConfig,
    BackfillConfig,
    RefreshConfig,
    SourcesConfig,
    StorageConfig,
    ValoraConfig,
    load_config,
)
from valora.core.exceptions import (
    ConfigError,
    NoDataAvailable,
    ParsingError,
    RateLimitError,
    RefreshError,
    SourceError,
    StorageError,
    TransportError,
    ValoraError,
)
from valora.core.models import (
    ArchiveTransport,
    BackfillSummary,
    Category,
    FetchState,
    FetchStatus,
    HistoryPoint,
    Instrument,
    InstrumentId,
    LatestItem,
    LatestSnapshot,
    LatestView,
    NormalizedQuote,
    RefreshResult,
    SourceTag,
    UnixTs,
)

__all__ = [
    # Type aliases
    "InstrumentId",
    "SourceTag",
    "UnixTs",
    # Enums
    "ArchiveTransport",
    "Category",
    "FetchStatus",
    # Models
    "BackfillSummary",
    "FetchState",
    "HistoryPoint",
    "Instrument",
    "LatestItem",
    "LatestSnapshot",
    "LatestView",
    "NormalizedQuote",
    "RefreshResult",
    # Config
    "APIConfig",
    "BackfillConfig",
    "RefreshConfig",
    "SourcesConfig",
    "StorageConfig",
    "ValoraConfig",
    "load_config",
    # Exceptions
    "ConfigError",
    "NoDataAvailable",
    "ParsingError",
    "RateLimitError",
    "RefreshError",
    "SourceError",
    "StorageError",
    "TransportError",
    "ValoraError",
]
