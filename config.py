#!/usr/bin/env python3
"""
Central runtime configuration defaults for the AI4K8s recommendation controller.
"""

import os

# Recommendation custom resource
RECOMMENDATION_API_GROUP = os.getenv("RECOMMENDATION_API_GROUP", "analysis.crane.io")
RECOMMENDATION_API_VERSION = os.getenv("RECOMMENDATION_API_VERSION", "v1alpha1")
RECOMMENDATION_PLURAL = os.getenv("RECOMMENDATION_PLURAL", "recommendations")
RECOMMENDATION_KIND = "Recommendation"

# Event source reported on recorded events
EVENT_SOURCE_COMPONENT = os.getenv("EVENT_SOURCE_COMPONENT", "recommendation-controller")

# History provider
PROMETHEUS_BASE_URL = os.getenv("PROMETHEUS_BASE_URL", "http://prometheus-server.monitoring:9090")
PROMETHEUS_TIMEOUT_SECONDS = int(os.getenv("PROMETHEUS_TIMEOUT_SECONDS", "30"))

# Predictor properties per target
CONFIGSET_PATH = os.getenv("CONFIGSET_PATH", "")

# Dispatch
RECOMMENDATION_WORKERS = int(os.getenv("RECOMMENDATION_WORKERS", "4"))
CONFLICT_RETRY_SECONDS = int(os.getenv("CONFLICT_RETRY_SECONDS", "5"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", "")
