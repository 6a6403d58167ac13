"""valora.sources: Upstream provider adapters."""

from valora.sources.altinin import AltinInSource
from valora.sources.base import CurrentSource, HistorySource, HttpSource
from valora.sources.exchangerate import ExchangeRateSource
from valora.sources.haremaltin import (
    CurlTransport,
    FormTransport,
    HaremAltinSource,
    HttpxTransport,
    create_transport,
)
from valora.sources.tcmb import TcmbSource
from valora.sources.truncgil import TruncgilSource

__all__ = [
    "AltinInSource",
    "CurlTransport",
    "CurrentSource",
    "ExchangeRateSource",
    "FormTransport",
    "HaremAltinSource",
    "HistorySource",
    "HttpSource",
    "HttpxTransport",
    "TcmbSource",
    "TruncgilSource",
    "create_transport",
]
