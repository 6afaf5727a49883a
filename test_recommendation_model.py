#!/usr/bin/env python3
"""
Tests for the Recommendation data model and ConditionSet
========================================================

Author: Pedram Nikjooy
Thesis: AI Agent for Kubernetes Management
"""

from datetime import datetime, timedelta, timezone

from recommendation_model import (
    CONDITION_FALSE,
    CONDITION_TRUE,
    CompletionStrategy,
    ConditionSet,
    Recommendation,
    RecommendationStatus,
    format_time,
    parse_time,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_upsert_appends_new_types_in_order():
    conditions = ConditionSet()
    conditions.upsert("Ready", CONDITION_TRUE, "RecommendationReady", "ok", now=T0)
    conditions.upsert("Degraded", CONDITION_FALSE, "Fine", "", now=T0)
    assert [c.type for c in conditions] == ["Ready", "Degraded"]
    assert len(conditions) == 2


def test_upsert_refreshes_transition_time_even_if_status_is_unchanged():
    conditions = ConditionSet()
    conditions.upsert("Ready", CONDITION_TRUE, "RecommendationReady", "ok", now=T0)
    conditions.upsert("Degraded", CONDITION_FALSE, "Fine", "", now=T0)
    later = T0 + timedelta(minutes=5)

    conditions.upsert("Ready", CONDITION_TRUE, "RecommendationReady", "still ok", now=later)

    ready = conditions.get("Ready")
    assert len(conditions) == 2
    assert [c.type for c in conditions] == ["Ready", "Degraded"]
    assert ready.status == CONDITION_TRUE
    assert ready.message == "still ok"
    assert ready.last_transition_time == later
    assert conditions.get("Degraded").last_transition_time == T0


def test_status_wire_format_field_names():
    status = RecommendationStatus(last_update_time=T0, recommended_value="resourceRequest: {}\n")
    status.conditions.upsert("Ready", CONDITION_TRUE, "RecommendationReady", "Recommendation is ready", now=T0)

    data = status.to_dict()

    assert data == {
        "conditions": [{
            "type": "Ready",
            "status": "True",
            "reason": "RecommendationReady",
            "message": "Recommendation is ready",
            "lastTransitionTime": "2024-01-01T00:00:00Z",
        }],
        "lastUpdateTime": "2024-01-01T00:00:00Z",
        "recommendedValue": "resourceRequest: {}\n",
    }
    assert RecommendationStatus.from_dict(data) == status


def test_status_equality_is_deep():
    status = RecommendationStatus()
    status.conditions.upsert("Ready", CONDITION_TRUE, "RecommendationReady", "ok", now=T0)
    copy = status.deep_copy()
    assert copy == status

    copy.conditions.upsert("Ready", CONDITION_FALSE, "FailedOfferRecommend", "boom", now=T0)
    assert copy != status
    assert status.conditions.get("Ready").status == CONDITION_TRUE


def test_time_round_trip():
    assert parse_time(format_time(T0)) == T0
    assert parse_time(None) is None
    assert parse_time("2024-01-01T00:00:00") == T0


def test_completion_strategy_validation():
    assert CompletionStrategy("Once").validate() is None
    assert CompletionStrategy("Periodical", 300).validate() is None
    assert CompletionStrategy("Periodical").validate() is not None
    assert CompletionStrategy("Periodical", 0).validate() is not None
    assert CompletionStrategy("Sometimes").validate() is not None


def test_recommendation_from_dict_and_back_keeps_spec():
    obj = {
        "apiVersion": "analysis.crane.io/v1alpha1",
        "kind": "Recommendation",
        "metadata": {"name": "web", "namespace": "shop", "resourceVersion": "7", "uid": "abc"},
        "spec": {
            "targetRef": {"apiVersion": "apps/v1", "kind": "Deployment", "name": "web"},
            "type": "Resource",
            "completionStrategy": {"completionStrategyType": "Periodical", "periodSeconds": 300},
        },
    }

    recommendation = Recommendation.from_dict(obj)

    assert recommendation.key == "shop/web"
    assert recommendation.target_ref.namespace == ""
    assert recommendation.completion_strategy == CompletionStrategy("Periodical", 300)
    assert recommendation.status.last_update_time is None
    assert recommendation.deletion_timestamp is None

    recommendation.target_ref.namespace = "shop"
    data = recommendation.to_dict()
    assert data["spec"] == obj["spec"]
    assert data["metadata"]["resourceVersion"] == "7"
    assert data["status"] == {"conditions": []}


def test_completion_strategy_defaults_to_once():
    recommendation = Recommendation.from_dict({
        "metadata": {"name": "web", "namespace": "shop", "deletionTimestamp": "2024-01-01T00:00:00Z"},
        "spec": {"targetRef": {"kind": "Deployment", "name": "web"}},
    })
    assert recommendation.completion_strategy.strategy_type == "Once"
    assert recommendation.deletion_timestamp == T0
