"""CloudWatch custom metrics emitter with background batching.

Records one data point set per external call the chatbot makes — LLM
calls (``llm``), tool invocations (``tool``) and session store access
(``session_store``) — plus named turn events such as a degraded intent
classification or an approval request.

Design
------
* Metrics are collected in a thread-safe in-memory buffer.
* A daemon thread flushes the buffer to CloudWatch every
  ``FLUSH_INTERVAL_SECONDS`` (default 60 s).
* When running locally (``METRICS_ENABLED != "true"``), metrics are
  logged at DEBUG level but **not** pushed to CloudWatch.

Usage
-----
>>> from chatbot.services.metrics import metrics
>>> metrics.record_call("llm", "answer_question", latency_ms=812.0)
>>> metrics.record_call("tool", "get_weather", latency_ms=5003.1, error_type="TimeoutError")
>>> metrics.record_event("ClassificationDegraded")
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "LangGraphChatbot"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch API limit per PutMetricData call


def _dims(**pairs: str) -> list[dict[str, str]]:
    return [{"Name": name, "Value": value} for name, value in pairs.items()]


class MetricsClient:
    """Batched CloudWatch metrics publisher."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._cw_client = None

        if self._enabled:
            self._start_flush_thread()

    def _get_cw_client(self):
        """Create the boto3 CloudWatch client on first use."""
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── Public API ────────────────────────────────────────────────────

    def record_call(
        self,
        component: str,
        operation: str,
        latency_ms: float,
        error_type: str | None = None,
    ) -> None:
        """Record one external call.  ``error_type`` marks it as failed."""
        now = datetime.now(UTC)
        status = "failure" if error_type else "success"

        self._append(
            {
                "MetricName": "Calls/Count",
                "Dimensions": _dims(Component=component, Status=status),
                "Timestamp": now,
                "Value": 1,
                "Unit": "Count",
            }
        )
        self._append(
            {
                "MetricName": "Calls/Latency",
                "Dimensions": _dims(Component=component, Operation=operation),
                "Timestamp": now,
                "Value": latency_ms,
                "Unit": "Milliseconds",
            }
        )
        if error_type:
            self._append(
                {
                    "MetricName": "Calls/Errors",
                    "Dimensions": _dims(Component=component, ErrorType=error_type),
                    "Timestamp": now,
                    "Value": 1,
                    "Unit": "Count",
                }
            )
        logger.debug(
            "Metric: %s %s %s latency=%.1fms%s",
            component, operation, status, latency_ms,
            f" error={error_type}" if error_type else "",
        )

    def record_event(self, name: str) -> None:
        """Count a named turn event (e.g. ``ApprovalRequested``)."""
        self._append(
            {
                "MetricName": f"Turn/{name}",
                "Timestamp": datetime.now(UTC),
                "Value": 1,
                "Unit": "Count",
            }
        )
        logger.debug("Metric: turn event %s", name)

    def flush(self) -> int:
        """Send buffered metrics to CloudWatch.  Returns count sent."""
        with self._lock:
            if not self._buffer:
                return 0
            batch = self._buffer[:]
            self._buffer.clear()

        if not self._enabled:
            logger.debug("Metrics flush skipped (not enabled): %d items", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for i in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[i : i + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
            logger.info("Flushed %d metrics to CloudWatch", sent)
        except Exception:
            logger.exception("Failed to flush metrics to CloudWatch")
        return sent

    # ── Internal ──────────────────────────────────────────────────────

    def _append(self, metric_data: dict[str, Any]) -> None:
        with self._lock:
            self._buffer.append(metric_data)

    def _start_flush_thread(self) -> None:
        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        t = threading.Thread(target=_loop, daemon=True, name="metrics-flush")
        t.start()
        atexit.register(self.flush)
        logger.info(
            "Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS,
        )


metrics = MetricsClient()
