#!/usr/bin/env python3
"""
Prometheus-backed usage history for the resource recommender.

Returns one TimeSeries per pod of the target workload; cpu is reported in
cores, memory in bytes.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import requests

from config import PROMETHEUS_BASE_URL, PROMETHEUS_TIMEOUT_SECONDS
from recommendation_configset import RESOURCE_CPU, RESOURCE_MEMORY
from recommender import TimeSeries
from recommendation_model import TargetRef

logger = logging.getLogger(__name__)

CPU_QUERY = ('rate(container_cpu_usage_seconds_total{{namespace="{namespace}",'
             'pod=~"{pod_pattern}",container="{container}"}}[{rate_window}])')
MEMORY_QUERY = ('container_memory_working_set_bytes{{namespace="{namespace}",'
                'pod=~"{pod_pattern}",container="{container}"}}')


# Pod names a controller generates for its workload, without sibling workloads
# that share the name as a prefix (web vs web-api).
POD_NAME_PATTERNS = {
    "Deployment": "{name}-[a-z0-9]{{1,10}}-[a-z0-9]{{5}}",
    "StatefulSet": "{name}-[0-9]+",
    "DaemonSet": "{name}-[a-z0-9]{{5}}",
}


def pod_pattern(target_ref: TargetRef) -> str:
    # dots are the only regex metacharacter a workload name can contain
    name = target_ref.name.replace(".", "\\\\.")
    template = POD_NAME_PATTERNS.get(target_ref.kind)
    if template is None:
        raise ValueError(f"unsupported target kind {target_ref.kind!r}")
    return template.format(name=name)


def _seconds(step: timedelta) -> str:
    return f"{int(max(step.total_seconds(), 1))}s"


class PrometheusHistory:
    def __init__(self, base_url: str = PROMETHEUS_BASE_URL, timeout: int = PROMETHEUS_TIMEOUT_SECONDS,
                 session: Optional[requests.Session] = None, rate_window: str = "5m"):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.rate_window = rate_window

    def build_query(self, target_ref: TargetRef, container: str, resource: str) -> str:
        params = {
            "namespace": target_ref.namespace,
            "pod_pattern": pod_pattern(target_ref),
            "container": container,
            "rate_window": self.rate_window,
        }
        if resource == RESOURCE_CPU:
            return CPU_QUERY.format(**params)
        if resource == RESOURCE_MEMORY:
            return MEMORY_QUERY.format(**params)
        raise ValueError(f"unsupported resource {resource!r}")

    def query(self, target_ref: TargetRef, container: str, resource: str,
              start: datetime, end: datetime, step: timedelta) -> Dict[str, Any]:
        try:
            promql = self.build_query(target_ref, container, resource)
        except ValueError as e:
            return {'success': False, 'error': str(e)}

        try:
            response = self.session.get(
                f"{self.base_url}/api/v1/query_range",
                params={
                    "query": promql,
                    "start": start.timestamp(),
                    "end": end.timestamp(),
                    "step": _seconds(step),
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            return {'success': False, 'error': f"Prometheus request failed: {e}"}

        if response.status_code != 200:
            return {'success': False, 'error': f"Prometheus returned HTTP {response.status_code}: {response.text[:200]}"}

        try:
            payload = response.json()
        except ValueError as e:
            return {'success': False, 'error': f"Invalid Prometheus response: {e}"}

        if payload.get("status") != "success":
            return {'success': False, 'error': f"Prometheus query failed: {payload.get('error', 'unknown error')}"}

        series = []
        for result in payload.get("data", {}).get("result", []):
            samples = []
            for timestamp, value in result.get("values", []):
                try:
                    samples.append((datetime.fromtimestamp(float(timestamp), tz=timezone.utc), float(value)))
                except (TypeError, ValueError):
                    continue
            series.append(TimeSeries(labels=dict(result.get("metric", {})), samples=samples))

        logger.debug(f"Fetched {len(series)} {resource} series for "
                     f"{target_ref.namespace}/{target_ref.name}/{container}")
        return {'success': True, 'series': series}
