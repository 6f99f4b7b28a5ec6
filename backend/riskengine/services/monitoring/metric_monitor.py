"""Bounded per-metric history with anomaly alerting."""

from __future__ import annotations

import math
import threading
from collections import deque
from typing import Deque, Dict, Iterable, List, Mapping, Optional

from riskengine.infrastructure.logging.logging import get_logger
from riskengine.infrastructure.utils.config import MonitoringConfig
from riskengine.infrastructure.utils.timeutils import utc_now
from riskengine.models.monitoring_models import MetricPoint
from riskengine.models.trade_models import Alert, AlertType, Severity
from riskengine.services.monitoring.anomaly import (
    AnomalyDetector,
    Bounds,
    CompositeDetector,
    ThresholdDetector,
    ZScoreDetector,
)
from riskengine.services.notification.notifier import AlertSink

MAX_METRICS_LENGTH = 1000


class MetricMonitor:
    def __init__(
        self,
        notifier: AlertSink,
        detector: Optional[AnomalyDetector] = None,
        *,
        max_length: int = MAX_METRICS_LENGTH,
    ) -> None:
        if max_length < 1:
            raise ValueError("max_length must be >= 1")
        self._log = get_logger("metric_monitor")
        self.notifier = notifier
        self.detector: AnomalyDetector = detector or ZScoreDetector()
        self.max_length = max_length
        self._series: Dict[str, Deque[MetricPoint]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, notifier: AlertSink, config: MonitoringConfig) -> "MetricMonitor":
        detectors: List[AnomalyDetector] = [
            ZScoreDetector(
                window=config.zscore_window,
                min_samples=config.zscore_min_samples,
                threshold=config.zscore_threshold,
                flat_tolerance=config.zscore_flat_tolerance,
            )
        ]
        if config.thresholds:
            detectors.append(
                ThresholdDetector({name: Bounds(b.min, b.max) for name, b in config.thresholds.items()})
            )
        return cls(notifier, CompositeDetector(detectors), max_length=config.max_series_length)

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._series)

    def series(self, name: str) -> List[MetricPoint]:
        with self._lock:
            return list(self._series.get(name, ()))

    def latest(self, name: str) -> Optional[MetricPoint]:
        with self._lock:
            points = self._series.get(name)
            return points[-1] if points else None

    def snapshot(self, names: Optional[Iterable[str]] = None) -> Dict[str, List[MetricPoint]]:
        with self._lock:
            if names is None:
                return {name: list(points) for name, points in self._series.items()}
            return {name: list(self._series[name]) for name in names if name in self._series}

    async def record(self, observations: Mapping[str, float]) -> List[str]:
        """Append observations, then analyze the series they touched. Returns the anomalies found.

        Raises ValueError before anything is stored if any value is not a finite number.
        """
        now = utc_now()
        points_by_name: Dict[str, MetricPoint] = {}
        for name, value in observations.items():
            try:
                v = float(value)
            except (TypeError, ValueError) as e:
                raise ValueError(f"metric {name!r} is not a number: {value!r}") from e
            if not math.isfinite(v):
                raise ValueError(f"metric {name!r} is not finite: {v}")
            points_by_name[name] = MetricPoint(value=v, timestamp=now)

        with self._lock:
            for name, point in points_by_name.items():
                points = self._series.get(name)
                if points is None:
                    # deque maxlen evicts the oldest entry (FIFO)
                    points = deque(maxlen=self.max_length)
                    self._series[name] = points
                points.append(point)

        if not points_by_name:
            return []
        return await self.analyze_metrics(list(points_by_name))

    def detect_anomalies(self, names: Optional[Iterable[str]] = None) -> List[str]:
        """Check the latest point of the named series (all series when names is None)."""
        return self.detector.detect(self.snapshot(names))

    async def analyze_metrics(self, names: Optional[Iterable[str]] = None) -> List[str]:
        anomalies = [a for a in self.detect_anomalies(names) if a]
        if anomalies:
            self._log.warning("anomalies_detected", anomalies=anomalies)
            await self.notifier.send_alert(
                Alert(
                    type=AlertType.SYSTEM_ALERT,
                    severity=Severity.MEDIUM,
                    message=f"Anomalies detected: {', '.join(anomalies)}",
                    data={"anomalies": anomalies},
                )
            )
        return anomalies


def finite_observations(observations: Mapping[str, Optional[float]]) -> Dict[str, float]:
    """Drop None/NaN/inf readings before they reach a series."""
    return {
        name: float(v)
        for name, v in observations.items()
        if v is not None and math.isfinite(float(v))
    }
