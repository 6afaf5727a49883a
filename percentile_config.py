#!/usr/bin/env python3
"""
AI4K8s Percentile Estimator Config
==================================

Turns the string-valued percentile predictor properties into a validated,
immutable PercentileEstimatorConfig.

Bucket layout selection, first match wins:
1. growth ratio + first bucket size + max value -> exponential buckets
2. bucket size + max value                      -> linear buckets
3. otherwise                                    -> default linear layout

Only an absent (empty) field is defaulted. A field that is present but does
not parse fails the whole construction.

Author: Pedram Nikjooy
Thesis: AI Agent for Kubernetes Management
"""

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from decaying_histogram import (
    DecayingHistogram,
    ExponentialHistogramOptions,
    HistogramOptions,
    LinearHistogramOptions,
)

logger = logging.getLogger(__name__)

DEFAULT_MIN_SAMPLE_WEIGHT = 1e-5
DEFAULT_MARGIN_FRACTION = 0.25
DEFAULT_PERCENTILE = 0.99
DEFAULT_EPSILON = 1e-10
DEFAULT_MAX_VALUE = 100.0
DEFAULT_BUCKET_SIZE = 0.1
HISTORY_LENGTH = timedelta(days=7)

LAYOUT_EXPONENTIAL = "exponential"
LAYOUT_LINEAR = "linear"
LAYOUT_DEFAULT = "default"

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h|d)")


class PercentileConfigError(ValueError):
    """Base class for predictor configuration failures."""


class DurationParseError(PercentileConfigError):
    pass


class FloatParseError(PercentileConfigError):
    pass


def parse_duration(value: Optional[str]) -> timedelta:
    """Parse durations such as "30s", "1m", "1h30m" or "7d"."""
    text = (value or "").strip()
    if not text:
        raise DurationParseError("duration is required")
    if text == "0":
        return timedelta(0)

    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    seconds = 0.0
    position = 0
    while position < len(text):
        match = _DURATION_PART.match(text, position)
        if not match:
            raise DurationParseError(f"invalid duration {value!r}")
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()

    if position == 0:
        raise DurationParseError(f"invalid duration {value!r}")
    return timedelta(seconds=sign * seconds)


def parse_float(value: Optional[str], default: float) -> float:
    """Parse a float field, returning default only when the field is empty."""
    text = (value or "").strip()
    if not text:
        return default
    try:
        parsed = float(text)
    except ValueError:
        raise FloatParseError(f"invalid float {value!r}")
    if not math.isfinite(parsed):
        raise FloatParseError(f"float must be finite, got {value!r}")
    return parsed


def default_histogram_options() -> HistogramOptions:
    return LinearHistogramOptions(DEFAULT_MAX_VALUE, DEFAULT_BUCKET_SIZE, DEFAULT_EPSILON)


@dataclass
class HistogramSpec:
    """User-supplied histogram fields, all kept in their string form."""
    half_life: str = ""
    max_value: str = ""
    epsilon: str = ""
    bucket_size: str = ""
    first_bucket_size: str = ""
    bucket_size_growth_ratio: str = ""


@dataclass
class PercentileSpec:
    aggregated: bool = False
    sample_interval: str = ""
    percentile: str = ""
    margin_fraction: str = ""
    min_sample_weight: str = ""
    histogram: HistogramSpec = field(default_factory=HistogramSpec)


@dataclass(frozen=True)
class PercentileEstimatorConfig:
    aggregated: bool
    history_length: timedelta
    sample_interval: timedelta
    histogram_options: HistogramOptions
    histogram_layout: str
    decay_half_life: timedelta
    min_sample_weight: float
    margin_fraction: float
    percentile: float

    def new_histogram(self) -> DecayingHistogram:
        return DecayingHistogram(self.histogram_options, self.decay_half_life, self.min_sample_weight)

    def __str__(self) -> str:
        return (
            f"{{aggregated: {self.aggregated}, historyLength: {self.history_length}, "
            f"sampleInterval: {self.sample_interval}, histogramLayout: {self.histogram_layout}, "
            f"histogramOptions: {self.histogram_options!r}, histogramDecayHalfLife: {self.decay_half_life}, "
            f"minSampleWeight: {self.min_sample_weight}, marginFraction: {self.margin_fraction}, "
            f"percentile: {self.percentile}}}"
        )


def _present(*values: str) -> bool:
    return all(v is not None and len(v) > 0 for v in values)


def _make_histogram_options(histogram: HistogramSpec):
    if _present(histogram.bucket_size_growth_ratio, histogram.first_bucket_size, histogram.max_value):
        growth_ratio = parse_float(histogram.bucket_size_growth_ratio, 0)
        first_bucket_size = parse_float(histogram.first_bucket_size, 0)
        max_value = parse_float(histogram.max_value, 0)
        epsilon = parse_float(histogram.epsilon, DEFAULT_EPSILON)
        options = ExponentialHistogramOptions(max_value, first_bucket_size, 1.0 + growth_ratio, epsilon)
        return options, LAYOUT_EXPONENTIAL

    if _present(histogram.bucket_size, histogram.max_value):
        bucket_size = parse_float(histogram.bucket_size, 0)
        max_value = parse_float(histogram.max_value, 0)
        epsilon = parse_float(histogram.epsilon, DEFAULT_EPSILON)
        return LinearHistogramOptions(max_value, bucket_size, epsilon), LAYOUT_LINEAR

    return default_histogram_options(), LAYOUT_DEFAULT


def make_percentile_config(spec: PercentileSpec) -> PercentileEstimatorConfig:
    """Build a config from spec; raises a ValueError subclass on any bad field."""
    sample_interval = parse_duration(spec.sample_interval)
    if sample_interval <= timedelta(0):
        raise DurationParseError(f"sample interval must be positive, got {spec.sample_interval!r}")

    half_life = parse_duration(spec.histogram.half_life)
    if half_life <= timedelta(0):
        raise DurationParseError(f"histogram half life must be positive, got {spec.histogram.half_life!r}")

    options, layout = _make_histogram_options(spec.histogram)

    percentile = parse_float(spec.percentile, DEFAULT_PERCENTILE)
    if not 0.0 <= percentile <= 1.0:
        raise PercentileConfigError(f"percentile must be within [0, 1], got {percentile}")

    margin_fraction = parse_float(spec.margin_fraction, DEFAULT_MARGIN_FRACTION)
    if margin_fraction < 0.0:
        raise PercentileConfigError(f"margin fraction must not be negative, got {margin_fraction}")

    min_sample_weight = parse_float(spec.min_sample_weight, DEFAULT_MIN_SAMPLE_WEIGHT)
    if min_sample_weight < 0.0:
        raise PercentileConfigError(f"min sample weight must not be negative, got {min_sample_weight}")

    config = PercentileEstimatorConfig(
        aggregated=spec.aggregated,
        history_length=HISTORY_LENGTH,
        sample_interval=sample_interval,
        histogram_options=options,
        histogram_layout=layout,
        decay_half_life=half_life,
        min_sample_weight=min_sample_weight,
        margin_fraction=margin_fraction,
        percentile=percentile,
    )
    logger.info(f"Made an internal config: {config}")
    return config
