#!/usr/bin/env python3
"""
AI4K8s Recommendation Dispatcher
================================

Runs RecommendationController.reconcile on a pool of worker threads.

- Keys are "namespace/name"; a key is reconciled by at most one worker at a
  time. A key enqueued while it is being reconciled runs again afterwards.
- Immediate enqueues (watch events) go to the ready queue, deduplicated
  among ready keys.
- Requeue requests are timers, not sleeps: a key asking to run again after D
  waits on a delay heap and moves to the ready queue when D has passed. An
  immediate enqueue of the same key never cancels its timer; of several
  timers for one key the earliest is kept.
- A reconcile that reports a retryable error (store conflict or failure) is
  retried after the conflict retry delay.

Author: Pedram Nikjooy
Thesis: AI Agent for Kubernetes Management
"""

import heapq
import itertools
import logging
import threading
import time
from collections import deque
from datetime import timedelta
from typing import Callable, Deque, Dict, List, Optional, Set, Tuple

from config import CONFLICT_RETRY_SECONDS, RECOMMENDATION_WORKERS
from recommendation_controller import ReconcileResult, RecommendationController

logger = logging.getLogger(__name__)


def split_key(key: str) -> Tuple[str, str]:
    namespace, _, name = key.partition("/")
    return namespace, name


class RecommendationDispatcher:
    def __init__(self, controller: RecommendationController, workers: int = RECOMMENDATION_WORKERS,
                 conflict_retry: timedelta = timedelta(seconds=CONFLICT_RETRY_SECONDS),
                 time_func: Callable[[], float] = time.monotonic):
        self.controller = controller
        self.workers = max(1, workers)
        self.conflict_retry = conflict_retry
        self.time_func = time_func

        self._cond = threading.Condition()
        # ready queue; _dirty holds every key that needs a run, queued or not
        self._ready: Deque[str] = deque()
        self._dirty: Set[str] = set()
        self._processing: Set[str] = set()
        # delay heap; _waiting holds the live (earliest) timer per key
        self._heap: List[Tuple[float, int, str]] = []
        self._seq = itertools.count()
        self._waiting: Dict[str, float] = {}
        self._threads: List[threading.Thread] = []
        self.is_running = False

    def enqueue(self, namespace: str, name: str, delay: Optional[timedelta] = None):
        self._enqueue_key(f"{namespace}/{name}", delay)

    def _enqueue_key(self, key: str, delay: Optional[timedelta] = None):
        with self._cond:
            if delay is None or delay.total_seconds() <= 0:
                self._add(key)
            else:
                self._add_after(key, self.time_func() + delay.total_seconds())

    def _add(self, key: str):
        if key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._ready.append(key)
        self._cond.notify()

    def _add_after(self, key: str, due: float):
        current = self._waiting.get(key)
        if current is not None and current <= due:
            return
        self._waiting[key] = due
        heapq.heappush(self._heap, (due, next(self._seq), key))
        self._cond.notify()

    def _fire_timers(self) -> Optional[float]:
        """Move due timers to the ready queue; return seconds until the next one."""
        now = self.time_func()
        while self._heap:
            due, _, key = self._heap[0]
            if self._waiting.get(key) != due:
                heapq.heappop(self._heap)
                continue
            if due > now:
                return due - now
            heapq.heappop(self._heap)
            del self._waiting[key]
            self._add(key)
        return None

    def _pop_ready(self) -> Tuple[Optional[str], Optional[float]]:
        """Return (key, None) for a ready key, or (None, seconds until the next timer)."""
        wait = self._fire_timers()
        if not self._ready:
            return None, wait
        key = self._ready.popleft()
        self._dirty.discard(key)
        self._processing.add(key)
        return key, None

    def waiting(self) -> Dict[str, float]:
        """Keys with a pending timer and when it fires, on the dispatcher's clock."""
        with self._cond:
            return dict(self._waiting)

    def ready(self) -> List[str]:
        """Keys ready to run, in order."""
        with self._cond:
            return list(self._ready)

    def _done(self, key: str):
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._ready.append(key)
                self._cond.notify()

    def _next_delay(self, result: ReconcileResult) -> Optional[timedelta]:
        delays = []
        if result.requeue_after is not None:
            delays.append(result.requeue_after)
        if result.error is not None:
            delays.append(self.conflict_retry)
        return min(delays) if delays else None

    def _process(self, key: str):
        namespace, name = split_key(key)
        try:
            result = self.controller.reconcile(namespace, name)
        except Exception as e:
            logger.error(f"❌ Unexpected error reconciling Recommendation {key}: {e}")
            result = ReconcileResult(error=str(e))
        finally:
            self._done(key)

        delay = self._next_delay(result)
        if result.error is not None:
            logger.warning(f"⚠️ Reconcile of Recommendation {key} failed, retrying after {delay}: {result.error}")
        if delay is not None:
            self._enqueue_key(key, delay)

    def process_next(self) -> bool:
        """Reconcile one ready key on the calling thread; False if nothing is ready."""
        with self._cond:
            key, _ = self._pop_ready()
        if key is None:
            return False
        self._process(key)
        return True

    def _worker_loop(self):
        while True:
            with self._cond:
                while self.is_running:
                    key, wait = self._pop_ready()
                    if key is not None:
                        break
                    self._cond.wait(timeout=wait)
                else:
                    return
            self._process(key)

    def start(self):
        if self.is_running:
            logger.warning("Dispatcher is already running")
            return
        self.is_running = True
        for i in range(self.workers):
            thread = threading.Thread(target=self._worker_loop, name=f"recommendation-worker-{i}", daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info(f"✅ Started recommendation dispatcher with {self.workers} workers")

    def stop(self):
        with self._cond:
            self.is_running = False
            self._cond.notify_all()
        for thread in self._threads:
            thread.join(timeout=5)
        self._threads = []
        logger.info("🛑 Stopped recommendation dispatcher")


if __name__ == "__main__":
    from config import CONFIGSET_PATH, LOG_FILE, LOG_LEVEL
    from kubernetes_adapters import (
        KubernetesEventRecorder,
        KubernetesRecommendationStore,
        KubernetesTargetResolver,
        load_api_client,
        watch_recommendations,
    )
    from logging_utils import setup_logging
    from prometheus_history import PrometheusHistory
    from recommendation_configset import ConfigSet

    setup_logging(LOG_LEVEL, LOG_FILE or None)

    api_client = load_api_client()
    controller = RecommendationController(
        store=KubernetesRecommendationStore(api_client),
        recorder=KubernetesEventRecorder(api_client),
        target_resolver=KubernetesTargetResolver(api_client),
        history=PrometheusHistory(),
        config_set=ConfigSet.load(CONFIGSET_PATH) if CONFIGSET_PATH else ConfigSet(),
    )
    dispatcher = RecommendationDispatcher(controller)
    dispatcher.start()
    try:
        while True:
            try:
                watch_recommendations(dispatcher.enqueue, api_client)
            except Exception as e:
                logger.error(f"❌ Recommendation watch failed: {e}")
                time.sleep(CONFLICT_RETRY_SECONDS)
    except KeyboardInterrupt:
        dispatcher.stop()
