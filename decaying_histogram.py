#!/usr/bin/env python3
"""
AI4K8s Decaying Histogram
=========================

Memory-bounded, time-decayed distribution of a non-negative quantity
(CPU cores, memory bytes) used by the percentile predictor.

- Bucket boundaries are fixed at construction by a linear or an
  exponential layout; values at or above max_value land in the overflow
  bucket.
- Every sample carries a weight. Existing weight halves every half-life:
  before any read or write the histogram decays all buckets to the
  requested time, so bucket weights always mean "weight as of now".
- Percentile queries walk the cumulative weight and interpolate linearly
  inside the enclosing bucket.

Author: Pedram Nikjooy
Thesis: AI Agent for Kubernetes Management
"""

import logging
import math
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import numpy as np

logger = logging.getLogger(__name__)


class HistogramOptionsError(ValueError):
    """Raised for a bucket layout that cannot be built."""


class HistogramOptions:
    """Bucket layout shared by every histogram built from one config."""

    layout = "base"

    def __init__(self, max_value: float, epsilon: float):
        if not math.isfinite(max_value) or max_value <= 0.0:
            raise HistogramOptionsError(f"max value must be a positive number, got {max_value}")
        if not math.isfinite(epsilon) or epsilon < 0.0:
            raise HistogramOptionsError(f"epsilon must be a non-negative number, got {epsilon}")
        self.max_value = float(max_value)
        self.epsilon = float(epsilon)
        self.num_buckets = 0

    def find_bucket(self, value: float) -> int:
        raise NotImplementedError

    def bucket_start(self, bucket: int) -> float:
        raise NotImplementedError

    def bucket_end(self, bucket: int) -> float:
        return self.bucket_start(bucket + 1)

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and vars(self) == vars(other)

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={v}" for k, v in vars(self).items() if not k.startswith("_"))
        return f"{type(self).__name__}({fields})"


class LinearHistogramOptions(HistogramOptions):
    """Buckets of equal size; bucket i spans [i * size, (i + 1) * size)."""

    layout = "linear"

    def __init__(self, max_value: float, bucket_size: float, epsilon: float):
        super().__init__(max_value, epsilon)
        if not math.isfinite(bucket_size) or bucket_size <= 0.0:
            raise HistogramOptionsError(f"bucket size must be a positive number, got {bucket_size}")
        self.bucket_size = float(bucket_size)
        self.num_buckets = int(math.ceil(self.max_value / self.bucket_size)) + 1

    def find_bucket(self, value: float) -> int:
        bucket = int(value // self.bucket_size)
        return min(max(bucket, 0), self.num_buckets - 1)

    def bucket_start(self, bucket: int) -> float:
        return bucket * self.bucket_size


class ExponentialHistogramOptions(HistogramOptions):
    """
    Bucket sizes grow geometrically: bucket 0 is [0, first_bucket_size) and
    bucket i starts at first_bucket_size * (ratio^i - 1) / (ratio - 1).
    """

    layout = "exponential"

    def __init__(self, max_value: float, first_bucket_size: float, ratio: float, epsilon: float):
        super().__init__(max_value, epsilon)
        if not math.isfinite(first_bucket_size) or first_bucket_size <= 0.0:
            raise HistogramOptionsError(f"first bucket size must be a positive number, got {first_bucket_size}")
        if not math.isfinite(ratio) or ratio <= 1.0:
            raise HistogramOptionsError(f"bucket size growth ratio must be greater than 1, got {ratio}")
        self.first_bucket_size = float(first_bucket_size)
        self.ratio = float(ratio)
        self.num_buckets = int(math.ceil(math.log(
            self.max_value * (self.ratio - 1) / self.first_bucket_size + 1, self.ratio))) + 1
        self._starts = self.first_bucket_size * (
            np.power(self.ratio, np.arange(self.num_buckets)) - 1) / (self.ratio - 1)

    def find_bucket(self, value: float) -> int:
        bucket = int(np.searchsorted(self._starts, value, side="right")) - 1
        return min(max(bucket, 0), self.num_buckets - 1)

    def bucket_start(self, bucket: int) -> float:
        if bucket < self.num_buckets:
            return float(self._starts[bucket])
        return self.first_bucket_size * (self.ratio ** bucket - 1) / (self.ratio - 1)

    def __eq__(self, other: object) -> bool:
        return (
            isinstance(other, ExponentialHistogramOptions)
            and self.max_value == other.max_value
            and self.first_bucket_size == other.first_bucket_size
            and self.ratio == other.ratio
            and self.epsilon == other.epsilon
        )


class DecayingHistogram:
    """
    Weighted histogram whose weights halve every half_life.

    The histogram is emptied of meaning, not of memory: weight that decays
    below min_sample_weight makes the histogram report no data, but the
    buckets are kept so new samples restore it.
    """

    def __init__(self, options: HistogramOptions, half_life: timedelta,
                 min_sample_weight: float = 0.0):
        if half_life.total_seconds() <= 0:
            raise ValueError(f"half life must be positive, got {half_life}")
        self.options = options
        self.half_life = half_life
        self.min_sample_weight = min_sample_weight
        self.total_weight = 0.0
        self.reference_time: Optional[datetime] = None
        self._weights = np.zeros(options.num_buckets, dtype=float)
        # decay-then-read/write must not interleave between producers
        self._lock = threading.RLock()

    def _decay_factor(self, elapsed: timedelta) -> float:
        return 0.5 ** (elapsed.total_seconds() / self.half_life.total_seconds())

    def decay_to(self, timestamp: datetime):
        """Decay all weight to timestamp and make it the new reference time."""
        with self._lock:
            if self.reference_time is None:
                self.reference_time = timestamp
                return
            if timestamp <= self.reference_time:
                return
            self._weights *= self._decay_factor(timestamp - self.reference_time)
            np.maximum(self._weights, 0.0, out=self._weights)
            self.total_weight = max(float(self._weights.sum()), 0.0)
            self.reference_time = timestamp

    def add_sample(self, value: float, weight: float, timestamp: datetime):
        """
        Add weight to the bucket containing value.

        Negative weights and NaN or negative values are dropped; callers are
        expected to validate samples before feeding them in. A sample older
        than the reference time is added with its own weight already decayed.
        """
        if math.isnan(value) or value < 0.0 or math.isnan(weight) or weight < 0.0:
            logger.debug(f"Dropping invalid sample value={value} weight={weight}")
            return

        with self._lock:
            if self.reference_time is None or timestamp >= self.reference_time:
                self.decay_to(timestamp)
            else:
                weight *= self._decay_factor(self.reference_time - timestamp)

            bucket = self.options.find_bucket(value)
            self._weights[bucket] += weight
            self.total_weight += weight

    def is_empty(self, now: Optional[datetime] = None) -> bool:
        """
        True when the weight is too small to answer a percentile query.

        Reads are taken as of `now`: the histogram decays to it first. Without
        `now` the read is as of the reference time (the newest sample or the
        last decay), and nothing is decayed.
        """
        with self._lock:
            if now is not None:
                self.decay_to(now)
            if self.total_weight <= 0.0 or self.total_weight < self.min_sample_weight:
                return True
            return float(self._weights.max()) < self.options.epsilon

    def percentile(self, percentile: float, now: Optional[datetime] = None) -> Optional[float]:
        """
        Return the value below which `percentile` of the weight lies.

        Decays to `now` first; callers that want a current answer must pass
        it, otherwise the read is as of the reference time. Returns None when
        the histogram holds too little weight to answer.
        """
        if not 0.0 <= percentile <= 1.0:
            raise ValueError(f"percentile must be within [0, 1], got {percentile}")

        with self._lock:
            if self.is_empty(now):
                return None

            weights = np.where(self._weights >= self.options.epsilon, self._weights, 0.0)
            cumulative = np.cumsum(weights)
            threshold = percentile * float(cumulative[-1])

            if threshold <= 0.0:
                bucket = int(np.flatnonzero(weights)[0])
            else:
                bucket = int(np.searchsorted(cumulative, threshold, side="left"))
                bucket = min(bucket, int(np.flatnonzero(weights)[-1]))

            below = float(cumulative[bucket] - weights[bucket])
            fraction = (threshold - below) / float(weights[bucket])
            fraction = min(max(fraction, 0.0), 1.0)
            lower = self.options.bucket_start(bucket)
            upper = self.options.bucket_end(bucket)
            return lower + fraction * (upper - lower)

    def bucket_weights(self) -> np.ndarray:
        """Copy of the per-bucket weights as of the reference time."""
        with self._lock:
            return self._weights.copy()

    def save_checkpoint(self) -> Dict[str, Any]:
        """Serializable snapshot; buckets below epsilon are left out."""
        with self._lock:
            return {
                "referenceTime": self.reference_time.isoformat() if self.reference_time else None,
                "totalWeight": self.total_weight,
                "bucketWeights": {
                    str(i): float(w) for i, w in enumerate(self._weights) if w > self.options.epsilon
                },
            }

    def load_checkpoint(self, checkpoint: Dict[str, Any]):
        """Merge a snapshot taken with the same bucket layout into this histogram."""
        total_weight = float(checkpoint.get("totalWeight", 0.0))
        if total_weight < 0.0:
            raise ValueError(f"Invalid checkpoint data with negative weight {total_weight}")

        bucket_weights = {}
        for bucket_str, weight in checkpoint.get("bucketWeights", {}).items():
            bucket = int(bucket_str)
            if not 0 <= bucket < self.options.num_buckets:
                raise ValueError(f"Invalid checkpoint bucket {bucket} for {self.options.num_buckets} buckets")
            if weight < 0.0:
                raise ValueError(f"Invalid checkpoint data with negative weight {weight} in bucket {bucket}")
            bucket_weights[bucket] = float(weight)

        reference = checkpoint.get("referenceTime")
        checkpoint_time = datetime.fromisoformat(reference) if reference else None

        with self._lock:
            factor = 1.0
            if checkpoint_time is not None:
                if self.reference_time is None or checkpoint_time > self.reference_time:
                    self.decay_to(checkpoint_time)
                else:
                    factor = self._decay_factor(self.reference_time - checkpoint_time)
            for bucket, weight in bucket_weights.items():
                self._weights[bucket] += weight * factor
            self.total_weight = float(self._weights.sum())

    def __repr__(self) -> str:
        return (f"DecayingHistogram(options={self.options!r}, half_life={self.half_life}, "
                f"total_weight={self.total_weight:.6g}, reference_time={self.reference_time})")
