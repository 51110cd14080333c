"""Custom metrics for the booking agent, batched and flushed to CloudWatch.

Two families of metrics are recorded:

* **External calls** — count, latency and errors for every dependency the
  orchestrator talks to (``anthropic``, ``openai``, ``tool_server``).
* **Turns** — one data point per orchestration turn with its outcome
  (``final``, ``round_limit``, ``timeout``, ``degraded``) and the number
  of tool-calling rounds it took.

Metrics are buffered in memory.  When ``METRICS_ENABLED=true`` a daemon
thread pushes the buffer to CloudWatch every ``FLUSH_INTERVAL_SECONDS``;
otherwise they are only logged at DEBUG level.

>>> from src.services.metrics import metrics
>>> metrics.record_success("tool_server", "tools/call", latency_ms=42.0)
>>> metrics.record_turn("final", rounds=1, latency_ms=1830.0)
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

NAMESPACE = "BeautiBukAgent"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch API limit per PutMetricData call


class MetricsClient:
    """Batched CloudWatch metrics publisher."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._cw_client = None  # lazy-init

        if self._enabled:
            self._start_flush_thread()

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── External calls ───────────────────────────────────────────────

    def record_success(
        self,
        service: str,
        operation: str,
        latency_ms: float,
    ) -> None:
        """Record a successful call to an external dependency."""
        dims = [{"Name": "Service", "Value": service}]
        self._put("ExternalCall/Count", dims + [{"Name": "Status", "Value": "success"}], 1, "Count")
        self._put(
            "ExternalCall/Latency",
            dims + [{"Name": "Operation", "Value": operation}],
            latency_ms,
            "Milliseconds",
        )
        logger.debug(
            "Metric: %s %s success latency=%.1fms", service, operation, latency_ms,
        )

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        """Record a failed call to an external dependency."""
        dims = [{"Name": "Service", "Value": service}]
        self._put("ExternalCall/Count", dims + [{"Name": "Status", "Value": "failure"}], 1, "Count")
        self._put(
            "ExternalCall/ErrorCount",
            dims + [{"Name": "ErrorType", "Value": error_type}],
            1,
            "Count",
        )
        if latency_ms > 0:
            self._put(
                "ExternalCall/Latency",
                dims + [{"Name": "Operation", "Value": operation}],
                latency_ms,
                "Milliseconds",
            )
        logger.debug(
            "Metric: %s %s failure error=%s latency=%.1fms",
            service, operation, error_type, latency_ms,
        )

    # ── Turns ────────────────────────────────────────────────────────

    def record_turn(self, outcome: str, rounds: int, latency_ms: float) -> None:
        """Record the outcome of one orchestration turn."""
        dims = [{"Name": "Outcome", "Value": outcome}]
        self._put("Turn/Count", dims, 1, "Count")
        self._put("Turn/ToolRounds", dims, rounds, "Count")
        self._put("Turn/Latency", dims, latency_ms, "Milliseconds")
        logger.debug(
            "Metric: turn outcome=%s rounds=%d latency=%.1fms", outcome, rounds, latency_ms,
        )

    # ── Flushing ─────────────────────────────────────────────────────

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

    def _put(
        self,
        name: str,
        dimensions: list[dict[str, str]],
        value: float,
        unit: str,
    ) -> None:
        data_point = {
            "MetricName": name,
            "Dimensions": dimensions,
            "Timestamp": datetime.now(UTC),
            "Value": value,
            "Unit": unit,
        }
        with self._lock:
            self._buffer.append(data_point)

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


# ── Module-level singleton ──────────────────────────────────────────
metrics = MetricsClient()
