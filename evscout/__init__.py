"""
EV Scout - value bet detection and alert lifecycle engine.

Compares a fair probability for each betting proposition against the best
price at the bookmakers we can actually bet with, and alerts on the ones
with enough expected value.

Architecture:
- feeds/: Upstream data sources (OpticOdds odds/fixtures, football-data.org stats)
- engine/: Proposition parsing, fair probability (de-vig / forecast), EV evaluation
- cache/: Per-sport snapshots and the staggered refresh scheduler
- alerts/: Telegram alerts, operator actions and the tracked bet ledger
- models/: Shared data schemas

Two fair-probability strategies:
- De-vig: strip the margin from reference bookmakers' two-sided prices
- Forecast: Poisson / Normal models over historical team averages
"""

__version__ = "0.1.0"
