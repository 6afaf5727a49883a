#!/usr/bin/env python3
"""
Kubernetes Adapters
===================

Kubernetes API implementations of the collaborators the recommendation
controller consumes:

- KubernetesRecommendationStore: loads Recommendation objects and writes
  their status subresource
- KubernetesEventRecorder: records events against a Recommendation
- KubernetesTargetResolver: resolves a targetRef to its container names
- watch_recommendations: streams Recommendation keys to a callback

Author: Pedram Nikjooy
Thesis: AI Agent for Kubernetes Management
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException

from config import (
    EVENT_SOURCE_COMPONENT,
    RECOMMENDATION_API_GROUP,
    RECOMMENDATION_API_VERSION,
    RECOMMENDATION_KIND,
    RECOMMENDATION_PLURAL,
)
from recommendation_model import Recommendation, TargetRef

logger = logging.getLogger(__name__)


def load_api_client(kubeconfig_path: Optional[str] = None) -> client.ApiClient:
    """In-cluster config first, then the given or default kubeconfig."""
    if kubeconfig_path:
        logger.info(f"Loading kubeconfig from: {kubeconfig_path}")
        config.load_kube_config(config_file=kubeconfig_path)
    else:
        try:
            config.load_incluster_config()
            logger.info("Using in-cluster config")
        except config.ConfigException:
            config.load_kube_config()
            logger.info("Using default kubeconfig")
    return client.ApiClient()


def _api_error(e: ApiException) -> str:
    return f"{e.status} {e.reason}: {e.body}" if e.body else f"{e.status} {e.reason}"


class KubernetesRecommendationStore:
    """Recommendation objects through the CustomObjects API."""

    def __init__(self, api_client: Optional[client.ApiClient] = None,
                 custom_api: Optional[client.CustomObjectsApi] = None):
        self.custom_api = custom_api or client.CustomObjectsApi(api_client)

    def get(self, namespace: str, name: str) -> Dict[str, Any]:
        try:
            obj = self.custom_api.get_namespaced_custom_object(
                RECOMMENDATION_API_GROUP, RECOMMENDATION_API_VERSION, namespace,
                RECOMMENDATION_PLURAL, name)
        except ApiException as e:
            if e.status == 404:
                return {'success': False, 'not_found': True, 'error': f'Recommendation {namespace}/{name} not found'}
            return {'success': False, 'error': _api_error(e)}

        try:
            return {'success': True, 'recommendation': Recommendation.from_dict(obj)}
        except (KeyError, TypeError, ValueError) as e:
            return {'success': False, 'error': f'Malformed Recommendation {namespace}/{name}: {e}'}

    def update_status(self, recommendation: Recommendation) -> Dict[str, Any]:
        try:
            updated = self.custom_api.replace_namespaced_custom_object_status(
                RECOMMENDATION_API_GROUP, RECOMMENDATION_API_VERSION, recommendation.namespace,
                RECOMMENDATION_PLURAL, recommendation.name, recommendation.to_dict())
        except ApiException as e:
            return {'success': False, 'conflict': e.status == 409, 'error': _api_error(e)}

        resource_version = (updated or {}).get('metadata', {}).get('resourceVersion', '')
        return {'success': True, 'resource_version': resource_version}


class KubernetesEventRecorder:
    """Fire-and-forget event recording; API failures are only logged."""

    def __init__(self, api_client: Optional[client.ApiClient] = None,
                 core_api: Optional[client.CoreV1Api] = None,
                 component: str = EVENT_SOURCE_COMPONENT):
        self.core_api = core_api or client.CoreV1Api(api_client)
        self.component = component

    def build_event(self, recommendation: Recommendation, event_type: str, reason: str,
                    message: str) -> client.CoreV1Event:
        now = datetime.now(timezone.utc)
        return client.CoreV1Event(
            metadata=client.V1ObjectMeta(
                name=f"{recommendation.name}.{uuid.uuid4().hex[:16]}",
                namespace=recommendation.namespace,
            ),
            involved_object=client.V1ObjectReference(
                api_version=f"{RECOMMENDATION_API_GROUP}/{RECOMMENDATION_API_VERSION}",
                kind=RECOMMENDATION_KIND,
                name=recommendation.name,
                namespace=recommendation.namespace,
                uid=recommendation.uid or None,
                resource_version=recommendation.resource_version or None,
            ),
            type=event_type,
            reason=reason,
            message=message,
            source=client.V1EventSource(component=self.component),
            first_timestamp=now,
            last_timestamp=now,
            count=1,
        )

    def record(self, recommendation: Recommendation, event_type: str, reason: str, message: str) -> None:
        event = self.build_event(recommendation, event_type, reason, message)
        try:
            self.core_api.create_namespaced_event(recommendation.namespace, event)
        except ApiException as e:
            logger.warning(f"⚠️ Failed to record event {reason} for Recommendation {recommendation.key}: "
                           f"{_api_error(e)}")


class KubernetesTargetResolver:
    """Resolves Deployment, StatefulSet and DaemonSet targets to their container names."""

    def __init__(self, api_client: Optional[client.ApiClient] = None,
                 apps_api: Optional[client.AppsV1Api] = None):
        self.apps_api = apps_api or client.AppsV1Api(api_client)
        self._readers: Dict[str, Callable[..., Any]] = {
            'Deployment': self.apps_api.read_namespaced_deployment,
            'StatefulSet': self.apps_api.read_namespaced_stateful_set,
            'DaemonSet': self.apps_api.read_namespaced_daemon_set,
        }

    def resolve(self, target_ref: TargetRef) -> Dict[str, Any]:
        reader = self._readers.get(target_ref.kind)
        if reader is None:
            return {'success': False, 'error': f'unsupported target kind {target_ref.kind!r}'}

        try:
            workload = reader(target_ref.name, target_ref.namespace)
        except ApiException as e:
            return {'success': False, 'error': _api_error(e)}

        template_spec = workload.spec.template.spec if workload.spec and workload.spec.template else None
        containers = [c.name for c in (template_spec.containers if template_spec else None) or []]
        if not containers:
            return {'success': False, 'error': f'No containers found in {target_ref.kind} {target_ref.name}'}
        return {'success': True, 'containers': containers}


def watch_recommendations(on_change: Callable[[str, str], None],
                          api_client: Optional[client.ApiClient] = None,
                          namespace: Optional[str] = None,
                          timeout_seconds: int = 300):
    """Call on_change(namespace, name) for every added or modified Recommendation until the watch ends."""
    custom_api = client.CustomObjectsApi(api_client)
    watcher = watch.Watch()
    if namespace:
        stream = watcher.stream(custom_api.list_namespaced_custom_object, RECOMMENDATION_API_GROUP,
                                RECOMMENDATION_API_VERSION, namespace, RECOMMENDATION_PLURAL,
                                timeout_seconds=timeout_seconds)
    else:
        stream = watcher.stream(custom_api.list_cluster_custom_object, RECOMMENDATION_API_GROUP,
                                RECOMMENDATION_API_VERSION, RECOMMENDATION_PLURAL,
                                timeout_seconds=timeout_seconds)

    for event in stream:
        if event.get('type') not in ('ADDED', 'MODIFIED'):
            continue
        metadata = event.get('object', {}).get('metadata', {})
        on_change(metadata.get('namespace', ''), metadata.get('name', ''))
