from coco.analysis.breaker import BreakerState, CircuitBreaker
from coco.analysis.client import AnalysisBackend, AnalysisClient
from coco.analysis.insights import parse_insights

__all__ = ["AnalysisBackend", "AnalysisClient", "BreakerState", "CircuitBreaker", "parse_insights"]
