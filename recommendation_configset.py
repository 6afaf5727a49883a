#!/usr/bin/env python3
"""
Per-target predictor properties.

A ConfigSet is a YAML document of entries, each naming the targets it
applies to and the string properties of the percentile predictor:

    configs:
    - targets:
      - kind: Deployment
        namespace: production
      properties:
        cpu.percentile: "0.95"
        memory.histogram.half-life: "72h"

The most specific matching entry is overlaid on the built-in defaults.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from percentile_config import HistogramSpec, PercentileSpec
from recommendation_model import TargetRef

logger = logging.getLogger(__name__)

RESOURCE_CPU = "cpu"
RESOURCE_MEMORY = "memory"
RESOURCES = (RESOURCE_CPU, RESOURCE_MEMORY)

DEFAULT_PROPERTIES: Dict[str, str] = {
    "cpu.aggregated": "true",
    "cpu.sample-interval": "1m",
    "cpu.histogram.half-life": "24h",
    "cpu.histogram.max-value": "100",
    "cpu.histogram.bucket-size": "0.1",
    "memory.aggregated": "true",
    "memory.sample-interval": "1m",
    "memory.histogram.half-life": "48h",
    "memory.histogram.max-value": "104857600000",
    "memory.histogram.bucket-size": "104857600",
}


@dataclass
class ConfigTarget:
    kind: str = ""
    namespace: str = ""
    name: str = ""

    def matches(self, ref: TargetRef) -> bool:
        return ((not self.kind or self.kind == ref.kind)
                and (not self.namespace or self.namespace == ref.namespace)
                and (not self.name or self.name == ref.name))

    @property
    def specificity(self) -> int:
        return (4 if self.name else 0) + (2 if self.namespace else 0) + (1 if self.kind else 0)


@dataclass
class ConfigEntry:
    targets: List[ConfigTarget] = field(default_factory=list)
    properties: Dict[str, str] = field(default_factory=dict)

    def match_score(self, ref: TargetRef) -> Optional[int]:
        """Specificity of the best matching target, 0 for a catch-all entry, None if no match."""
        if not self.targets:
            return 0
        scores = [t.specificity for t in self.targets if t.matches(ref)]
        return max(scores) if scores else None


class ConfigSet:
    def __init__(self, entries: Optional[List[ConfigEntry]] = None):
        self.entries = list(entries or [])

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ConfigSet":
        entries = []
        for item in (data or {}).get("configs", []) or []:
            targets = [ConfigTarget(kind=t.get("kind", ""), namespace=t.get("namespace", ""),
                                    name=t.get("name", ""))
                       for t in item.get("targets", []) or []]
            properties = {str(k): str(v) for k, v in (item.get("properties") or {}).items()}
            entries.append(ConfigEntry(targets=targets, properties=properties))
        return cls(entries)

    @classmethod
    def from_yaml(cls, text: str) -> "ConfigSet":
        return cls.from_dict(yaml.safe_load(text))

    @classmethod
    def load(cls, path: str) -> "ConfigSet":
        with open(path, "r") as f:
            config_set = cls.from_yaml(f.read())
        logger.info(f"Loaded {len(config_set.entries)} config entries from {path}")
        return config_set

    def properties_for(self, ref: TargetRef) -> Dict[str, str]:
        best: Optional[ConfigEntry] = None
        best_score = -1
        for entry in self.entries:
            score = entry.match_score(ref)
            if score is not None and score > best_score:
                best, best_score = entry, score

        properties = dict(DEFAULT_PROPERTIES)
        if best is not None:
            properties.update(best.properties)
        return properties

    def percentile_spec(self, ref: TargetRef, resource: str) -> PercentileSpec:
        properties = self.properties_for(ref)

        def prop(name: str) -> str:
            return properties.get(f"{resource}.{name}", "")

        return PercentileSpec(
            aggregated=prop("aggregated").strip().lower() == "true",
            sample_interval=prop("sample-interval"),
            percentile=prop("percentile"),
            margin_fraction=prop("margin-fraction"),
            min_sample_weight=prop("min-sample-weight"),
            histogram=HistogramSpec(
                half_life=prop("histogram.half-life"),
                max_value=prop("histogram.max-value"),
                epsilon=prop("histogram.epsilon"),
                bucket_size=prop("histogram.bucket-size"),
                first_bucket_size=prop("histogram.first-bucket-size"),
                bucket_size_growth_ratio=prop("histogram.bucket-size-growth-ratio"),
            ),
        )
