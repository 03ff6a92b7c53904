"""Caching for computed signal series."""

from ranking_backtester.caching.signal_cache import SignalCache

__all__ = ["SignalCache"]
