"""Post-session analytics over the trade ledger."""

from .round_analysis import RoundAnalysis, RoundMetrics, analyze_round, calculate_round_metrics, last_round_trades

__all__ = ["RoundAnalysis", "RoundMetrics", "analyze_round", "calculate_round_metrics", "last_round_trades"]
