"""Adaptive risk parameters."""

from .adaptive import AdaptiveRiskParams, adaptive_params, adjustment_summary, has_mode_changed, tier_for

__all__ = ["AdaptiveRiskParams", "adaptive_params", "adjustment_summary", "has_mode_changed", "tier_for"]
