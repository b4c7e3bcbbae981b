"""DeepTicker: quote and insight aggregation for portfolio tracking."""

__version__ = "0.1.0"
