#!/usr/bin/env python3
"""
AI4K8s Resource Recommender
===========================

The recommendation pipeline run by the controller for one Recommendation:

1. create_recommender  - build the per-resource percentile configs
2. Recommender.offer   - resolve the target's containers, read their usage
                         history and estimate cpu/memory per container
3. apply_proposed      - render the estimates into status.recommendedValue

Each stage returns a result dictionary with 'success' and, on failure,
'error', so the controller can stop at the first failing stage.

Author: Pedram Nikjooy
Thesis: AI Agent for Kubernetes Management
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

import yaml

from percentile_config import PercentileEstimatorConfig, make_percentile_config
from percentile_predictor import PercentilePredictor
from recommendation_configset import RESOURCE_CPU, RESOURCE_MEMORY, RESOURCES, ConfigSet
from recommendation_model import Recommendation, RecommendationStatus, TargetRef, now_utc

logger = logging.getLogger(__name__)

RECOMMENDATION_TYPE_RESOURCE = "Resource"
MEBIBYTE = 1024 * 1024


@dataclass
class TimeSeries:
    """One series of (timestamp, value) samples and the labels identifying it."""
    labels: Dict[str, str] = field(default_factory=dict)
    samples: List[Tuple[datetime, float]] = field(default_factory=list)

    @property
    def dimension(self) -> str:
        return self.labels.get("pod", "")


class HistoryProvider(Protocol):
    def query(self, target_ref: TargetRef, container: str, resource: str,
              start: datetime, end: datetime, step: timedelta) -> Dict[str, Any]:
        """Return {'success': True, 'series': [TimeSeries, ...]} or {'success': False, 'error': str}."""
        ...


class TargetResolver(Protocol):
    def resolve(self, target_ref: TargetRef) -> Dict[str, Any]:
        """Return {'success': True, 'containers': [name, ...]} or {'success': False, 'error': str}."""
        ...


@dataclass
class ContainerRecommendation:
    container_name: str
    cpu: float  # cores
    memory: float  # bytes


@dataclass
class ProposedRecommendation:
    containers: List[ContainerRecommendation] = field(default_factory=list)


def format_cpu(cores: float) -> str:
    return f"{int(math.ceil(cores * 1000))}m"


def format_memory(num_bytes: float) -> str:
    return f"{int(math.ceil(num_bytes / MEBIBYTE))}Mi"


class ResourceRecommender:
    """Percentile-based cpu/memory recommender for the containers of one workload."""

    def __init__(self, target_ref: TargetRef, configs: Dict[str, PercentileEstimatorConfig],
                 target_resolver: TargetResolver, history: HistoryProvider,
                 clock: Callable[[], datetime] = now_utc):
        self.target_ref = target_ref
        self.configs = configs
        self.target_resolver = target_resolver
        self.history = history
        self.clock = clock

    def _estimate(self, container: str, resource: str, now: datetime) -> Dict[str, Any]:
        config = self.configs[resource]
        result = self.history.query(self.target_ref, container, resource,
                                    now - config.history_length, now, config.sample_interval)
        if not result.get('success'):
            return {
                'success': False,
                'error': f"failed to query {resource} history for container {container}: {result.get('error')}"
            }

        predictor = PercentilePredictor(config)
        accepted = 0
        for series in result.get('series', []):
            accepted += predictor.add_time_series(container, series.samples, dimension=series.dimension)

        # Non-aggregated histograms are sized for their largest dimension.
        estimates = [
            value for value in (predictor.estimate(container, dim, now=now)
                                for dim in predictor.dimensions(container))
            if value is not None
        ]
        if not estimates:
            return {
                'success': False,
                'error': f"no usable {resource} estimate for container {container} ({accepted} samples)"
            }

        logger.debug(f"{self.target_ref.kind}/{self.target_ref.namespace}/{self.target_ref.name} "
                     f"container {container} {resource}={max(estimates):.6g} from {accepted} samples")
        return {'success': True, 'value': max(estimates)}

    def offer(self) -> Dict[str, Any]:
        ref = self.target_ref
        resolved = self.target_resolver.resolve(ref)
        if not resolved.get('success'):
            return {
                'success': False,
                'error': f"failed to resolve target {ref.kind}/{ref.namespace}/{ref.name}: {resolved.get('error')}"
            }

        containers = resolved.get('containers', [])
        if not containers:
            return {'success': False, 'error': f"target {ref.kind}/{ref.namespace}/{ref.name} has no containers"}

        now = self.clock()
        proposed = ProposedRecommendation()
        for container in containers:
            values = {}
            for resource in RESOURCES:
                estimate = self._estimate(container, resource, now)
                if not estimate['success']:
                    return estimate
                values[resource] = estimate['value']
            proposed.containers.append(ContainerRecommendation(
                container_name=container,
                cpu=values[RESOURCE_CPU],
                memory=values[RESOURCE_MEMORY],
            ))

        return {'success': True, 'proposed': proposed}


def create_recommender(recommendation: Recommendation, target_resolver: TargetResolver,
                       history: HistoryProvider, config_set: ConfigSet,
                       clock: Callable[[], datetime] = now_utc) -> Dict[str, Any]:
    if recommendation.recommendation_type != RECOMMENDATION_TYPE_RESOURCE:
        return {'success': False, 'error': f"unsupported recommendation type {recommendation.recommendation_type!r}"}

    target_ref = recommendation.target_ref
    if not target_ref.kind or not target_ref.name:
        return {'success': False, 'error': "targetRef must name a kind and a name"}

    configs = {}
    for resource in RESOURCES:
        try:
            configs[resource] = make_percentile_config(config_set.percentile_spec(target_ref, resource))
        except ValueError as e:
            return {'success': False, 'error': f"invalid {resource} predictor config: {e}"}

    return {
        'success': True,
        'recommender': ResourceRecommender(target_ref, configs, target_resolver, history, clock=clock)
    }


def apply_proposed(status: RecommendationStatus, proposed: Optional[ProposedRecommendation]) -> Dict[str, Any]:
    """Render the proposal as the recommendedValue YAML document of status."""
    if proposed is None or not proposed.containers:
        return {'success': False, 'error': "proposed recommendation is empty"}

    containers = []
    for container in proposed.containers:
        for resource, value in ((RESOURCE_CPU, container.cpu), (RESOURCE_MEMORY, container.memory)):
            if value is None or not math.isfinite(value) or value < 0:
                return {
                    'success': False,
                    'error': f"invalid {resource} value {value!r} for container {container.container_name}"
                }
        containers.append({
            'containerName': container.container_name,
            'target': {
                'cpu': format_cpu(container.cpu),
                'memory': format_memory(container.memory),
            },
        })

    try:
        value = yaml.safe_dump({'resourceRequest': {'containers': containers}},
                               default_flow_style=False, sort_keys=False)
    except yaml.YAMLError as e:
        return {'success': False, 'error': f"failed to render recommended value: {e}"}

    status.recommended_value = value
    return {'success': True}
