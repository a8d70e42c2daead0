"""
Engine services.

This package contains metric derivation, threshold evaluation, the session and
alert lifecycles, ingestion and time-range queries, plus the facade that wires
them together.
"""

from .ingestion import IngestionPipeline, IngestionWorkerPool, Result
from .metric_deriver import MetricDeriver
from .monitoring_engine import PressureMonitoringEngine
from .query_engine import TimeRangeQueryEngine
from .store import PressureStore, StoreTransaction
from .threshold_evaluator import StaticThresholdSource, ThresholdEvaluator, ThresholdSource

__all__ = [
    "PressureMonitoringEngine",
    "IngestionPipeline",
    "IngestionWorkerPool",
    "MetricDeriver",
    "PressureStore",
    "Result",
    "StaticThresholdSource",
    "StoreTransaction",
    "ThresholdEvaluator",
    "ThresholdSource",
    "TimeRangeQueryEngine",
]
