"""REST API for the ranking backtester service."""

from ranking_backtester.api.app import create_app

__all__ = ["create_app"]
