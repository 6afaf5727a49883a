#!/usr/bin/env python3
"""
AI4K8s Recommendation Controller
================================

Reconciles Recommendation objects. For each object key the controller:

1. loads the object (gone or being deleted -> nothing to do)
2. checks the completion strategy to decide whether a recommendation is due
3. runs the recommender pipeline (create -> offer -> apply)
4. writes the Ready condition and recommended value back to status, only
   when the status actually changed
5. asks to be run again after periodSeconds for periodical strategies

Failures never raise out of reconcile: each one is recorded as an event,
logged, and reflected in the Ready condition with a stable reason.

Author: Pedram Nikjooy
Thesis: AI Agent for Kubernetes Management
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Protocol

from recommendation_configset import ConfigSet
from recommendation_model import (
    CONDITION_FALSE,
    CONDITION_READY,
    CONDITION_TRUE,
    Recommendation,
    RecommendationStatus,
    now_utc,
)
from recommender import HistoryProvider, TargetResolver, apply_proposed, create_recommender

logger = logging.getLogger(__name__)

EVENT_NORMAL = "Normal"
EVENT_WARNING = "Warning"

REASON_READY = "RecommendationReady"
REASON_FAILED_CREATE_RECOMMENDER = "FailedCreateRecommender"
REASON_FAILED_OFFER = "FailedOfferRecommend"
REASON_FAILED_OFFER_EVENT = "FailedOfferRecommendation"
REASON_FAILED_UPDATE_VALUE = "FailedUpdateRecommendationValue"
REASON_FAILED_UPDATE_STATUS = "FailedUpdateStatus"
REASON_INVALID_COMPLETION_STRATEGY = "InvalidCompletionStrategy"


class RecommendationStore(Protocol):
    def get(self, namespace: str, name: str) -> Dict[str, Any]:
        """{'success': True, 'recommendation': Recommendation}, or a failure with 'not_found' or 'error'."""
        ...

    def update_status(self, recommendation: Recommendation) -> Dict[str, Any]:
        """{'success': True, 'resource_version': str}, or a failure with 'error' and 'conflict'."""
        ...


class EventRecorder(Protocol):
    def record(self, recommendation: Recommendation, event_type: str, reason: str, message: str) -> None:
        ...


@dataclass
class ReconcileResult:
    """What the dispatcher should do next with this key."""
    requeue_after: Optional[timedelta] = None
    error: Optional[str] = None

    @property
    def requeue(self) -> bool:
        return self.requeue_after is not None or self.error is not None


def set_ready_condition(status: RecommendationStatus, condition_status: str, reason: str,
                        message: str, now: Optional[datetime] = None):
    status.conditions.upsert(CONDITION_READY, condition_status, reason, message, now=now)


class RecommendationController:
    """Reconciliation entry point for Recommendation objects."""

    def __init__(self, store: RecommendationStore, recorder: EventRecorder,
                 target_resolver: TargetResolver, history: HistoryProvider,
                 config_set: Optional[ConfigSet] = None,
                 clock: Callable[[], datetime] = now_utc,
                 recommender_factory: Callable[..., Dict[str, Any]] = create_recommender):
        self.store = store
        self.recorder = recorder
        self.target_resolver = target_resolver
        self.history = history
        self.config_set = config_set or ConfigSet()
        self.clock = clock
        self.recommender_factory = recommender_factory

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        key = f"{namespace}/{name}"
        logger.debug(f"Got Recommendation {key}")

        loaded = self.store.get(namespace, name)
        if not loaded.get('success'):
            if loaded.get('not_found'):
                return ReconcileResult()
            logger.error(f"❌ Failed to get Recommendation {key}: {loaded.get('error')}")
            return ReconcileResult(error=loaded.get('error'))

        recommendation: Recommendation = loaded['recommendation']
        if recommendation.deletion_timestamp is not None:
            return ReconcileResult()

        invalid = recommendation.completion_strategy.validate()
        if invalid:
            return self._reject_completion_strategy(recommendation, invalid)

        if not self.should_recommend(recommendation):
            logger.debug(f"Nothing happens for Recommendation {key}")
            return ReconcileResult()

        if not recommendation.target_ref.namespace:
            recommendation.target_ref.namespace = recommendation.namespace

        error = self.do_recommend(recommendation)

        strategy = recommendation.completion_strategy
        if strategy.is_periodical and strategy.period_seconds:
            delay = timedelta(seconds=strategy.period_seconds)
            logger.debug(f"Will re-sync Recommendation {key} after {delay}")
            return ReconcileResult(requeue_after=delay, error=error)
        return ReconcileResult(error=error)

    def should_recommend(self, recommendation: Recommendation, now: Optional[datetime] = None) -> bool:
        """Decide from the completion strategy and last update time whether a recommendation is due."""
        last_update_time = recommendation.status.last_update_time
        if last_update_time is None:
            return True

        strategy = recommendation.completion_strategy
        if not strategy.is_periodical:
            # already finished recommendation
            return False

        planning_time = last_update_time + timedelta(seconds=strategy.period_seconds or 0)
        return (now or self.clock()) >= planning_time

    def do_recommend(self, recommendation: Recommendation) -> Optional[str]:
        """Run the pipeline and persist the outcome; returns the persistence error, if any."""
        key = recommendation.key
        logger.debug(f"Starting to process Recommendation {key}")
        new_status = recommendation.status.deep_copy()

        created = self.recommender_factory(recommendation, self.target_resolver, self.history,
                                           self.config_set, clock=self.clock)
        if not created.get('success'):
            return self._fail(recommendation, new_status, REASON_FAILED_CREATE_RECOMMENDER,
                              REASON_FAILED_CREATE_RECOMMENDER, created.get('error'),
                              f"Failed to create recommender, Recommendation {key} error {created.get('error')}")

        offered = created['recommender'].offer()
        if not offered.get('success'):
            return self._fail(recommendation, new_status, REASON_FAILED_OFFER_EVENT, REASON_FAILED_OFFER,
                              offered.get('error'),
                              f"Failed to offer recommend, Recommendation {key}: {offered.get('error')}")

        applied = apply_proposed(new_status, offered.get('proposed'))
        if not applied.get('success'):
            return self._fail(recommendation, new_status, REASON_FAILED_UPDATE_VALUE, REASON_FAILED_UPDATE_VALUE,
                              applied.get('error'),
                              f"Failed to update recommendation value, Recommendation {key}: {applied.get('error')}")

        set_ready_condition(new_status, CONDITION_TRUE, REASON_READY, "Recommendation is ready", now=self.clock())
        error = self.update_status(recommendation, new_status)
        if error is None:
            self.recorder.record(recommendation, EVENT_NORMAL, REASON_READY, "Recommendation is ready")
        return error

    def _fail(self, recommendation: Recommendation, new_status: RecommendationStatus, event_reason: str,
              condition_reason: str, error: Optional[str], message: str) -> Optional[str]:
        self.recorder.record(recommendation, EVENT_WARNING, event_reason, str(error))
        logger.error(f"❌ {message}")
        set_ready_condition(new_status, CONDITION_FALSE, condition_reason, message, now=self.clock())
        return self.update_status(recommendation, new_status)

    def _reject_completion_strategy(self, recommendation: Recommendation, problem: str) -> ReconcileResult:
        message = f"Invalid completion strategy, Recommendation {recommendation.key}: {problem}"
        ready = recommendation.status.conditions.get(CONDITION_READY)
        if (ready is not None and ready.status == CONDITION_FALSE
                and ready.reason == REASON_INVALID_COMPLETION_STRATEGY and ready.message == message):
            return ReconcileResult()

        new_status = recommendation.status.deep_copy()
        error = self._fail(recommendation, new_status, REASON_INVALID_COMPLETION_STRATEGY,
                           REASON_INVALID_COMPLETION_STRATEGY, problem, message)
        return ReconcileResult(error=error)

    def update_status(self, recommendation: Recommendation, new_status: RecommendationStatus) -> Optional[str]:
        """
        Write new_status if it differs from the stored one, stamping
        lastUpdateTime. Returns None on success or no-op, the error otherwise.
        """
        if recommendation.status == new_status:
            logger.debug(f"Status of Recommendation {recommendation.key} unchanged, skipping update")
            return None

        new_status.last_update_time = self.clock()
        recommendation.status = new_status

        result = self.store.update_status(recommendation)
        if not result.get('success'):
            error = result.get('error') or "status update failed"
            self.recorder.record(recommendation, EVENT_WARNING, REASON_FAILED_UPDATE_STATUS, error)
            logger.error(f"❌ Failed to update status, Recommendation {recommendation.key} error {error}")
            return error

        if result.get('resource_version'):
            recommendation.resource_version = result['resource_version']
        logger.info(f"✅ Update Recommendation status successful, Recommendation {recommendation.key}")
        return None
