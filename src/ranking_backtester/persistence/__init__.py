"""Persistence — SQLite job store and saved condition store."""

from ranking_backtester.persistence.condition_store import SavedConditionStore
from ranking_backtester.persistence.job_store import JobStore

__all__ = ["JobStore", "SavedConditionStore"]
