#!/usr/bin/env python3
"""
Tests for percentile estimator config construction
==================================================

Author: Pedram Nikjooy
Thesis: AI Agent for Kubernetes Management
"""

import dataclasses
from datetime import timedelta

import pytest

from decaying_histogram import ExponentialHistogramOptions, HistogramOptionsError, LinearHistogramOptions
from percentile_config import (
    DEFAULT_MARGIN_FRACTION,
    DEFAULT_MIN_SAMPLE_WEIGHT,
    DEFAULT_PERCENTILE,
    HISTORY_LENGTH,
    DurationParseError,
    FloatParseError,
    HistogramSpec,
    PercentileConfigError,
    PercentileSpec,
    make_percentile_config,
    parse_duration,
    parse_float,
)


def spec(**histogram_fields) -> PercentileSpec:
    histogram = HistogramSpec(half_life="24h", **histogram_fields)
    return PercentileSpec(sample_interval="1m", histogram=histogram)


@pytest.mark.parametrize("text,expected", [
    ("30s", timedelta(seconds=30)),
    ("1m", timedelta(minutes=1)),
    ("1h30m", timedelta(minutes=90)),
    ("24h", timedelta(hours=24)),
    ("7d", timedelta(days=7)),
    ("500ms", timedelta(milliseconds=500)),
    ("1.5h", timedelta(minutes=90)),
    ("0", timedelta(0)),
])
def test_parse_duration(text, expected):
    assert parse_duration(text) == expected


@pytest.mark.parametrize("text", ["", None, "abc", "10", "5x", "1h 30m", "h"])
def test_parse_duration_rejects_bad_input(text):
    with pytest.raises(DurationParseError):
        parse_duration(text)


def test_parse_float_defaults_only_when_absent():
    assert parse_float("", 0.5) == 0.5
    assert parse_float(None, 0.5) == 0.5
    assert parse_float("0.75", 0.5) == 0.75
    with pytest.raises(FloatParseError):
        parse_float("not-a-number", 0.5)
    with pytest.raises(FloatParseError):
        parse_float("nan", 0.5)


def test_missing_sample_interval_fails():
    with pytest.raises(DurationParseError):
        make_percentile_config(PercentileSpec(histogram=HistogramSpec(half_life="24h")))


def test_missing_half_life_fails():
    with pytest.raises(DurationParseError):
        make_percentile_config(PercentileSpec(sample_interval="1m"))


def test_unparseable_sample_interval_fails():
    with pytest.raises(DurationParseError):
        make_percentile_config(PercentileSpec(sample_interval="often", histogram=HistogramSpec(half_life="24h")))


def test_zero_half_life_fails():
    with pytest.raises(DurationParseError):
        make_percentile_config(PercentileSpec(sample_interval="1m", histogram=HistogramSpec(half_life="0")))


def test_exponential_layout_wins_over_linear():
    config = make_percentile_config(spec(
        bucket_size_growth_ratio="0.05", first_bucket_size="0.01", max_value="1000", bucket_size="1"))
    assert config.histogram_layout == "exponential"
    assert isinstance(config.histogram_options, ExponentialHistogramOptions)
    assert config.histogram_options.ratio == pytest.approx(1.05)
    assert config.histogram_options.first_bucket_size == 0.01
    assert config.histogram_options.epsilon == 1e-10


def test_linear_layout_when_bucket_size_and_max_value_present():
    config = make_percentile_config(spec(bucket_size="0.5", max_value="50", epsilon="0.001"))
    assert config.histogram_layout == "linear"
    assert config.histogram_options == LinearHistogramOptions(50.0, 0.5, 0.001)


def test_partial_exponential_fields_fall_through_to_linear():
    config = make_percentile_config(spec(first_bucket_size="0.01", max_value="10", bucket_size="1"))
    assert config.histogram_layout == "linear"


def test_default_layout_when_nothing_is_configured():
    config = make_percentile_config(spec(max_value="50"))
    assert config.histogram_layout == "default"
    assert config.histogram_options == LinearHistogramOptions(100.0, 0.1, 1e-10)


def test_scalar_defaults():
    config = make_percentile_config(spec())
    assert config.percentile == DEFAULT_PERCENTILE == 0.99
    assert config.margin_fraction == DEFAULT_MARGIN_FRACTION == 0.25
    assert config.min_sample_weight == DEFAULT_MIN_SAMPLE_WEIGHT == 1e-5
    assert config.sample_interval == timedelta(minutes=1)
    assert config.decay_half_life == timedelta(hours=24)
    assert config.aggregated is False


def test_history_length_is_fixed():
    config = make_percentile_config(spec())
    assert config.history_length == HISTORY_LENGTH == timedelta(days=7)


def test_present_but_unparseable_field_is_fatal():
    bad = spec()
    bad.percentile = "high"
    with pytest.raises(FloatParseError):
        make_percentile_config(bad)

    with pytest.raises(FloatParseError):
        make_percentile_config(spec(bucket_size="small", max_value="10"))


@pytest.mark.parametrize("fields", [
    {"bucket_size": "0", "max_value": "10"},
    {"bucket_size": "1", "max_value": "-10"},
    {"bucket_size_growth_ratio": "0", "first_bucket_size": "1", "max_value": "10"},
    {"bucket_size_growth_ratio": "0.5", "first_bucket_size": "-1", "max_value": "10"},
])
def test_invalid_histogram_options_are_fatal(fields):
    with pytest.raises(HistogramOptionsError):
        make_percentile_config(spec(**fields))


def test_out_of_range_percentile_is_fatal():
    bad = spec()
    bad.percentile = "1.5"
    with pytest.raises(PercentileConfigError):
        make_percentile_config(bad)


def test_config_is_immutable():
    config = make_percentile_config(spec())
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.percentile = 0.5


def test_config_builds_matching_histograms():
    config = make_percentile_config(spec(bucket_size="1", max_value="10"))
    histogram = config.new_histogram()
    assert histogram.options is config.histogram_options
    assert histogram.half_life == config.decay_half_life
    assert histogram.min_sample_weight == config.min_sample_weight
    assert "percentile: 0.99" in str(config)
