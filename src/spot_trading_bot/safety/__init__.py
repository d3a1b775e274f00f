"""Capital protection: the circuit breaker."""

from .circuit_breaker import CircuitBreaker, OperationStats, PauseDecision, compute_stats, should_pause

__all__ = ["CircuitBreaker", "OperationStats", "PauseDecision", "compute_stats", "should_pause"]
