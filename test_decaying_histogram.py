#!/usr/bin/env python3
"""
Tests for the decaying histogram
================================

Author: Pedram Nikjooy
Thesis: AI Agent for Kubernetes Management
"""

import math
from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from decaying_histogram import (
    DecayingHistogram,
    ExponentialHistogramOptions,
    HistogramOptionsError,
    LinearHistogramOptions,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
HALF_LIFE = timedelta(hours=1)


def make_linear(min_sample_weight: float = 1e-5) -> DecayingHistogram:
    return DecayingHistogram(LinearHistogramOptions(10.0, 1.0, 1e-10), HALF_LIFE, min_sample_weight)


def test_linear_layout_has_overflow_bucket():
    options = LinearHistogramOptions(10.0, 1.0, 1e-10)
    assert options.num_buckets == 11
    assert options.find_bucket(0.0) == 0
    assert options.find_bucket(3.4) == 3
    assert options.find_bucket(10.0) == 10
    assert options.find_bucket(1e9) == 10
    assert options.bucket_start(3) == 3.0
    assert options.bucket_end(3) == 4.0


def test_exponential_layout_bucket_lookup():
    options = ExponentialHistogramOptions(100.0, 1.0, 2.0, 1e-10)
    assert options.num_buckets == 8
    assert [options.bucket_start(i) for i in range(8)] == [0.0, 1.0, 3.0, 7.0, 15.0, 31.0, 63.0, 127.0]
    assert options.find_bucket(0.5) == 0
    assert options.find_bucket(1.0) == 1
    assert options.find_bucket(5.0) == 2
    assert options.find_bucket(100.0) == 6
    assert options.find_bucket(1000.0) == 7
    assert options.bucket_end(7) == 255.0


@pytest.mark.parametrize("factory", [
    lambda: LinearHistogramOptions(10.0, 0.0, 1e-10),
    lambda: LinearHistogramOptions(0.0, 1.0, 1e-10),
    lambda: LinearHistogramOptions(10.0, 1.0, -1.0),
    lambda: ExponentialHistogramOptions(10.0, 1.0, 1.0, 1e-10),
    lambda: ExponentialHistogramOptions(10.0, 0.0, 1.5, 1e-10),
    lambda: ExponentialHistogramOptions(-5.0, 1.0, 1.5, 1e-10),
])
def test_invalid_layouts_are_rejected(factory):
    with pytest.raises(HistogramOptionsError):
        factory()


@pytest.mark.parametrize("p", [0.0, 0.25, 0.5, 0.9, 0.99, 1.0])
def test_single_sample_percentile_within_one_bucket(p):
    histogram = make_linear()
    histogram.add_sample(3.4, 1.0, T0)
    value = histogram.percentile(p)
    assert value is not None
    assert abs(value - 3.4) <= 1.0


def test_percentile_interpolates_within_bucket():
    histogram = make_linear()
    for _ in range(10):
        histogram.add_sample(0.5, 1.0, T0)
        histogram.add_sample(1.5, 1.0, T0)

    assert histogram.percentile(0.5) == pytest.approx(1.0)
    assert histogram.percentile(0.75) == pytest.approx(1.5)
    assert histogram.percentile(1.0) == pytest.approx(2.0)


def test_overflow_values_land_in_last_bucket():
    histogram = make_linear()
    histogram.add_sample(1000.0, 1.0, T0)
    value = histogram.percentile(0.5)
    assert 10.0 <= value <= 11.0


def test_one_half_life_halves_weight_and_keeps_shape():
    histogram = make_linear()
    histogram.add_sample(1.5, 2.0, T0)
    histogram.add_sample(5.5, 1.0, T0)
    before = histogram.bucket_weights()
    shape_before = before / before.sum()

    histogram.decay_to(T0 + HALF_LIFE)

    assert histogram.total_weight == pytest.approx(1.5)
    after = histogram.bucket_weights()
    np.testing.assert_allclose(after / after.sum(), shape_before)
    assert histogram.reference_time == T0 + HALF_LIFE


def test_repeated_decay_without_elapsed_time_does_not_drift():
    histogram = make_linear()
    histogram.add_sample(2.5, 1.0, T0)
    histogram.decay_to(T0 + HALF_LIFE)
    weights = histogram.bucket_weights()
    total = histogram.total_weight

    for _ in range(100):
        histogram.decay_to(T0 + HALF_LIFE)
        histogram.decay_to(T0)

    np.testing.assert_array_equal(histogram.bucket_weights(), weights)
    assert histogram.total_weight == total


def test_long_decay_never_goes_negative():
    histogram = make_linear(min_sample_weight=0.0)
    histogram.add_sample(2.5, 1.0, T0)
    histogram.decay_to(T0 + timedelta(days=3650))
    assert (histogram.bucket_weights() >= 0.0).all()
    assert histogram.total_weight >= 0.0


def test_weight_below_min_sample_weight_reports_no_data():
    histogram = make_linear(min_sample_weight=0.6)
    histogram.add_sample(2.5, 1.0, T0)
    assert histogram.percentile(0.5) is not None

    assert histogram.percentile(0.5, now=T0 + HALF_LIFE) is None
    assert histogram.is_empty()


def test_empty_histogram_reports_no_data():
    histogram = make_linear()
    assert histogram.is_empty()
    assert histogram.percentile(0.99) is None


def test_invalid_samples_are_ignored():
    histogram = make_linear()
    histogram.add_sample(float("nan"), 1.0, T0)
    histogram.add_sample(-1.0, 1.0, T0)
    histogram.add_sample(1.0, -1.0, T0)
    assert histogram.total_weight == 0.0
    assert histogram.reference_time is None


def test_sample_older_than_reference_time_is_pre_decayed():
    histogram = make_linear()
    histogram.add_sample(1.0, 1.0, T0 + HALF_LIFE)
    histogram.add_sample(1.0, 1.0, T0)
    assert histogram.total_weight == pytest.approx(1.5)
    assert histogram.reference_time == T0 + HALF_LIFE


def test_percentile_outside_unit_interval_is_rejected():
    histogram = make_linear()
    histogram.add_sample(1.0, 1.0, T0)
    with pytest.raises(ValueError):
        histogram.percentile(1.5)


def test_checkpoint_restores_distribution():
    histogram = make_linear()
    histogram.add_sample(1.5, 2.0, T0)
    histogram.add_sample(7.5, 1.0, T0)
    checkpoint = histogram.save_checkpoint()
    assert set(checkpoint["bucketWeights"]) == {"1", "7"}

    restored = make_linear()
    restored.load_checkpoint(checkpoint)
    np.testing.assert_allclose(restored.bucket_weights(), histogram.bucket_weights())
    assert restored.reference_time == T0
    assert restored.percentile(0.9) == pytest.approx(histogram.percentile(0.9))


def test_checkpoint_older_than_histogram_is_decayed_on_load():
    checkpoint = {"referenceTime": T0.isoformat(), "totalWeight": 1.0, "bucketWeights": {"2": 1.0}}
    histogram = make_linear()
    histogram.add_sample(2.5, 1.0, T0 + HALF_LIFE)
    histogram.load_checkpoint(checkpoint)
    assert histogram.total_weight == pytest.approx(1.5)


def test_checkpoint_with_negative_weight_is_rejected():
    histogram = make_linear()
    with pytest.raises(ValueError):
        histogram.load_checkpoint({"referenceTime": None, "totalWeight": -1.0, "bucketWeights": {}})
    with pytest.raises(ValueError):
        histogram.load_checkpoint({"referenceTime": None, "totalWeight": 1.0, "bucketWeights": {"1": -1.0}})


def test_non_positive_half_life_is_rejected():
    with pytest.raises(ValueError):
        DecayingHistogram(LinearHistogramOptions(10.0, 1.0, 1e-10), timedelta(0))


def test_decay_factor_matches_half_life_formula():
    histogram = make_linear(min_sample_weight=0.0)
    histogram.add_sample(2.5, 1.0, T0)
    histogram.decay_to(T0 + timedelta(minutes=90))
    assert histogram.total_weight == pytest.approx(math.pow(0.5, 1.5))


def test_reads_without_now_are_as_of_reference_time():
    histogram = make_linear(min_sample_weight=0.6)
    histogram.add_sample(2.5, 1.0, T0)

    assert not histogram.is_empty()
    assert histogram.reference_time == T0
    assert histogram.total_weight == pytest.approx(1.0)

    assert histogram.is_empty(now=T0 + HALF_LIFE)
    assert histogram.reference_time == T0 + HALF_LIFE
    assert histogram.total_weight == pytest.approx(0.5)
