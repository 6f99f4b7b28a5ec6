"""Anomaly detectors over metric series snapshots.

A detector is any object with detect(series) -> list of human-readable
descriptors. It must be a pure function of the snapshot it is given.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Protocol, Sequence

from riskengine.models.monitoring_models import MetricPoint

SeriesSnapshot = Mapping[str, Sequence[MetricPoint]]


class AnomalyDetector(Protocol):
    def detect(self, series: SeriesSnapshot) -> List[str]:
        ...


class NullDetector:
    def detect(self, series: SeriesSnapshot) -> List[str]:
        return []


@dataclass(frozen=True)
class ZScoreDetector:
    """Flag the latest value when it sits too many stddevs from its trailing window.

    A flat window (stddev 0) flags values further than flat_tolerance
    (relative to the baseline, absolute below 1.0) from it.
    """

    window: int = 50
    min_samples: int = 10
    threshold: float = 4.0
    flat_tolerance: float = 0.0

    def detect(self, series: SeriesSnapshot) -> List[str]:
        out: List[str] = []
        for name in sorted(series):
            points = series[name]
            if len(points) < self.min_samples + 1:
                continue
            latest = points[-1].value
            trailing = [p.value for p in points[-(self.window + 1):-1]]
            mean = sum(trailing) / len(trailing)
            sd = math.sqrt(sum((v - mean) ** 2 for v in trailing) / len(trailing))
            if sd == 0.0:
                if abs(latest - mean) > self.flat_tolerance * max(1.0, abs(mean)):
                    out.append(f"{name}={latest:g} deviates from flat baseline {mean:g}")
                continue
            z = (latest - mean) / sd
            if abs(z) >= self.threshold:
                out.append(f"{name}={latest:g} z={z:.2f} (mean={mean:g}, std={sd:g})")
        return out


@dataclass(frozen=True)
class Bounds:
    min: Optional[float] = None
    max: Optional[float] = None


@dataclass(frozen=True)
class ThresholdDetector:
    bounds: Dict[str, Bounds] = field(default_factory=dict)

    def detect(self, series: SeriesSnapshot) -> List[str]:
        out: List[str] = []
        for name in sorted(self.bounds):
            points = series.get(name)
            if not points:
                continue
            latest = points[-1].value
            b = self.bounds[name]
            if b.min is not None and latest < b.min:
                out.append(f"{name}={latest:g} below min {b.min:g}")
            if b.max is not None and latest > b.max:
                out.append(f"{name}={latest:g} above max {b.max:g}")
        return out


class CompositeDetector:
    def __init__(self, detectors: Sequence[AnomalyDetector]) -> None:
        self.detectors = list(detectors)

    def detect(self, series: SeriesSnapshot) -> List[str]:
        out: List[str] = []
        for d in self.detectors:
            for descriptor in d.detect(series):
                if descriptor not in out:
                    out.append(descriptor)
        return out
