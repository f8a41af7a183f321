"""Timeslice metrics and transaction name normalization."""

from apmagent.metrics.collection import MetricCollection, Metrics, MetricStats
from apmagent.metrics.normalizer import NormalizationResult, TxSegmentNormalizer

__all__ = [
    "MetricCollection",
    "Metrics",
    "MetricStats",
    "NormalizationResult",
    "TxSegmentNormalizer",
]
