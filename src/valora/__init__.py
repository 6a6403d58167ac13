"""valora: precious-metals and FX quote ingestion backend."""

__version__ = "0.1.0"
