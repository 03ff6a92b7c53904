"""
Ranking Backtester — backtesting and parameter search for a ranking-signal trading rule.

Provides:
- MACD, RSI, AO, Disparity and RTI indicator series
- Composite z-score ranking signal (full-range or sliding window)
- FLAT/HOLDING decision policy with lookback-relative thresholds
- Grid simulation with integer-scaled threshold stepping
- Process worker pool with ordered merge, progress and cancellation
- Progressive search (symmetric baseline, buy/sell refinement, compare)
- SQLite-backed saved conditions and job tracking
- FastAPI REST service
"""

__version__ = "1.0.0"
