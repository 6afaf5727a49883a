#!/usr/bin/env python3
"""
AI4K8s Percentile Predictor
===========================

Feeds usage time series into per-resource decaying histograms and turns a
percentile query into a margined recommendation:

    estimate = percentile(config.percentile) * (1 + config.margin_fraction)

With an aggregated config every dimension of a resource (for example each
pod of a workload) is folded into one histogram; otherwise each dimension
keeps its own histogram and the caller picks which one to read.

Author: Pedram Nikjooy
Thesis: AI Agent for Kubernetes Management
"""

import logging
import math
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from decaying_histogram import DecayingHistogram
from percentile_config import PercentileEstimatorConfig

logger = logging.getLogger(__name__)

AGGREGATED_DIMENSION = ""


class PercentilePredictor:
    """Percentile estimator over decaying histograms, one per resource key."""

    def __init__(self, config: PercentileEstimatorConfig):
        self.config = config
        self._histograms: Dict[Tuple[str, str], DecayingHistogram] = {}

    def _key(self, resource_key: str, dimension: Optional[str]) -> Tuple[str, str]:
        if self.config.aggregated:
            return resource_key, AGGREGATED_DIMENSION
        return resource_key, dimension or AGGREGATED_DIMENSION

    def add_historical_sample(self, resource_key: str, value: float, timestamp: datetime,
                              dimension: Optional[str] = None, weight: float = 1.0) -> bool:
        """Route one sample to its histogram; returns False if the sample was rejected."""
        if value is None or not math.isfinite(value) or value < 0.0:
            logger.debug(f"Skipping invalid sample {value!r} for {resource_key} at {timestamp}")
            return False
        if not math.isfinite(weight) or weight < 0.0:
            logger.debug(f"Skipping sample with invalid weight {weight!r} for {resource_key}")
            return False

        key = self._key(resource_key, dimension)
        histogram = self._histograms.get(key)
        if histogram is None:
            histogram = self.config.new_histogram()
            self._histograms[key] = histogram
        histogram.add_sample(value, weight, timestamp)
        return True

    def add_time_series(self, resource_key: str, samples: Iterable[Tuple[datetime, float]],
                        dimension: Optional[str] = None) -> int:
        accepted = 0
        for timestamp, value in samples:
            if self.add_historical_sample(resource_key, value, timestamp, dimension=dimension):
                accepted += 1
        return accepted

    def dimensions(self, resource_key: str) -> List[str]:
        return sorted(dim for key, dim in self._histograms if key == resource_key)

    def histogram(self, resource_key: str, dimension: Optional[str] = None) -> Optional[DecayingHistogram]:
        return self._histograms.get(self._key(resource_key, dimension))

    def estimate(self, resource_key: str, dimension: Optional[str] = None,
                 now: Optional[datetime] = None) -> Optional[float]:
        """
        Margined percentile of the resource's histogram, or None when the
        decayed weight is below min_sample_weight.
        """
        histogram = self.histogram(resource_key, dimension)
        if histogram is None:
            return None

        value = histogram.percentile(self.config.percentile, now=now)
        if value is None:
            logger.debug(f"Not enough weight to estimate {resource_key} "
                         f"(total={histogram.total_weight:.6g}, min={self.config.min_sample_weight})")
            return None
        return value * (1.0 + self.config.margin_fraction)
