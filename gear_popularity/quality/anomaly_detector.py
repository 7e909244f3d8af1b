"""
Anomaly Detection Module

Batch anomaly detection for popularity metrics.
Implements:
- Z-score outliers
- Day-over-day spikes and drops
- Dead days (no traffic between active days)
- Rule-based anomaly triggers

Used by the daily rollup to flag suspicious view traffic (crawler bursts,
broken tracking) before it shows up in trending lists.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import numpy as np
import polars as pl
import structlog

from gear_popularity.clock import utc_now
from gear_popularity.config import get_settings

logger = structlog.get_logger(__name__)
settings = get_settings()


class AnomalyType(str, Enum):
    """Types of anomalies detected"""
    SPIKE = "spike"  # Sudden increase
    DROP = "drop"  # Sudden decrease
    PATTERN = "pattern"  # Rule violation
    MISSING = "missing"  # No traffic recorded


class AnomalySeverity(str, Enum):
    """Severity levels for anomalies"""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class AnomalyResult:
    """Single anomaly detection result"""
    metric_name: str
    anomaly_type: AnomalyType
    severity: AnomalySeverity
    detected_at: datetime
    value: float
    expected_value: float
    deviation: float  # Z-score, percentage or absolute deviation
    threshold: float
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_critical(self) -> bool:
        return self.severity in [AnomalySeverity.CRITICAL, AnomalySeverity.HIGH]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.metric_name,
            "type": self.anomaly_type.value,
            "severity": self.severity.value,
            "value": self.value,
            "expected": self.expected_value,
            "message": self.message,
        }


@dataclass
class AnomalyReport:
    """Complete anomaly detection report"""
    started_at: datetime
    completed_at: datetime
    metrics_checked: int
    anomalies_found: int
    critical_count: int
    anomalies: List[AnomalyResult] = field(default_factory=list)

    @property
    def has_critical_anomalies(self) -> bool:
        return self.critical_count > 0


class AnomalyDetector:
    """
    Anomaly detector for daily popularity series.

    Detection methods:
    - Z-score: Detects values far from mean
    - Percentage change: Sudden spikes/drops
    - Gaps: Zero or absent days after the series has started
    - Rule-based: Custom checks

    Example:
        detector = AnomalyDetector(z_threshold=3.0)
        detector.add_metric("daily_views", totals_df["views"].to_numpy())
        report = detector.detect(methods=["zscore", "pct_change"])
    """

    def __init__(
        self,
        z_threshold: float = 3.0,
        pct_change_threshold: float = 200.0,
    ):
        self.z_threshold = z_threshold
        self.pct_change_threshold = pct_change_threshold

        self._metrics: Dict[str, np.ndarray] = {}
        self._baselines: Dict[str, Dict[str, float]] = {}
        self._rules: List[Dict[str, Any]] = []

    def add_metric(self, name: str, values: np.ndarray) -> "AnomalyDetector":
        """Add metric for anomaly detection"""
        values = np.asarray(values, dtype=float)
        self._metrics[name] = values

        values_clean = values[~np.isnan(values)]
        if len(values_clean) > 0:
            self._baselines[name] = {
                "mean": float(np.mean(values_clean)),
                "std": float(np.std(values_clean)),
            }

        return self

    def add_rule(
        self,
        name: str,
        check_func: Callable[[float], bool],
        message: str,
        severity: AnomalySeverity = AnomalySeverity.MEDIUM,
    ) -> "AnomalyDetector":
        """Add custom rule-based check"""
        self._rules.append({
            "name": name,
            "check": check_func,
            "message": message,
            "severity": severity,
        })
        return self

    def _detect_zscore_anomalies(
        self,
        name: str,
        values: np.ndarray,
    ) -> List[AnomalyResult]:
        """Detect anomalies using Z-score method"""
        anomalies = []
        baseline = self._baselines.get(name, {})

        mean = baseline.get("mean", np.nanmean(values))
        std = baseline.get("std", np.nanstd(values))

        if std == 0:
            return anomalies

        z_scores = np.abs((values - mean) / std)

        for i, (value, z_score) in enumerate(zip(values, z_scores)):
            if z_score > self.z_threshold:
                severity = (
                    AnomalySeverity.CRITICAL if z_score > self.z_threshold * 2
                    else AnomalySeverity.HIGH if z_score > self.z_threshold * 1.5
                    else AnomalySeverity.MEDIUM
                )

                anomaly_type = AnomalyType.SPIKE if value > mean else AnomalyType.DROP

                anomalies.append(AnomalyResult(
                    metric_name=name,
                    anomaly_type=anomaly_type,
                    severity=severity,
                    detected_at=utc_now(),
                    value=float(value),
                    expected_value=float(mean),
                    deviation=float(z_score),
                    threshold=self.z_threshold,
                    message=f"{name} value {value:.2f} is {z_score:.2f} standard deviations from mean {mean:.2f}",
                    details={"index": i, "method": "z-score"},
                ))

        return anomalies

    def _detect_pct_change_anomalies(
        self,
        name: str,
        values: np.ndarray,
    ) -> List[AnomalyResult]:
        """Detect sudden spikes/drops based on percentage change"""
        anomalies = []

        if len(values) < 2:
            return anomalies

        for i in range(1, len(values)):
            prev_value = values[i - 1]
            curr_value = values[i]

            if prev_value == 0 or np.isnan(prev_value) or np.isnan(curr_value):
                continue

            pct_change = ((curr_value - prev_value) / abs(prev_value)) * 100

            if abs(pct_change) > self.pct_change_threshold:
                anomaly_type = AnomalyType.SPIKE if pct_change > 0 else AnomalyType.DROP
                severity = (
                    AnomalySeverity.CRITICAL if abs(pct_change) > self.pct_change_threshold * 2
                    else AnomalySeverity.HIGH if abs(pct_change) > self.pct_change_threshold * 1.5
                    else AnomalySeverity.MEDIUM
                )

                anomalies.append(AnomalyResult(
                    metric_name=name,
                    anomaly_type=anomaly_type,
                    severity=severity,
                    detected_at=utc_now(),
                    value=float(curr_value),
                    expected_value=float(prev_value),
                    deviation=float(pct_change),
                    threshold=self.pct_change_threshold,
                    message=f"{name} changed by {pct_change:.1f}% from {prev_value:.2f} to {curr_value:.2f}",
                    details={"index": i, "method": "pct_change"},
                ))

        return anomalies

    def _detect_gaps(
        self,
        name: str,
        values: np.ndarray,
    ) -> List[AnomalyResult]:
        """
        Detect dead days: zero or missing values once the series has started.

        Leading empty days are a catalog that had no traffic yet, not an
        outage, and are skipped.
        """
        anomalies = []
        active = np.flatnonzero(np.nan_to_num(values) > 0)

        if len(active) == 0:
            return anomalies

        for i in range(int(active[0]) + 1, len(values)):
            value = values[i]
            if np.isnan(value) or value == 0:
                anomalies.append(AnomalyResult(
                    metric_name=name,
                    anomaly_type=AnomalyType.MISSING,
                    severity=AnomalySeverity.HIGH,
                    detected_at=utc_now(),
                    value=0.0,
                    expected_value=float(self._baselines.get(name, {}).get("mean", 0.0)),
                    deviation=0.0,
                    threshold=0.0,
                    message=f"{name} has no traffic at position {i}",
                    details={"index": i, "method": "gaps"},
                ))

        return anomalies

    def _check_rules(
        self,
        name: str,
        values: np.ndarray,
    ) -> List[AnomalyResult]:
        """Run rule-based anomaly checks"""
        anomalies = []

        for rule in self._rules:
            for i, value in enumerate(values):
                if rule["check"](value):
                    anomalies.append(AnomalyResult(
                        metric_name=name,
                        anomaly_type=AnomalyType.PATTERN,
                        severity=rule["severity"],
                        detected_at=utc_now(),
                        value=float(value),
                        expected_value=0.0,
                        deviation=0.0,
                        threshold=0.0,
                        message=rule["message"].format(value=value),
                        details={"index": i, "rule_name": rule["name"]},
                    ))

        return anomalies

    def detect(
        self,
        methods: Optional[List[str]] = None,
    ) -> AnomalyReport:
        """
        Run anomaly detection on all registered metrics.

        Args:
            methods: Detection methods to use (default: all)
                    Options: "zscore", "pct_change", "gaps", "rules"

        Returns:
            AnomalyReport with all detected anomalies
        """
        started_at = utc_now()
        all_anomalies = []

        if methods is None:
            methods = ["zscore", "pct_change", "gaps", "rules"]

        for name, values in self._metrics.items():
            logger.debug("Checking metric", metric=name, points=len(values))

            if "zscore" in methods:
                all_anomalies.extend(self._detect_zscore_anomalies(name, values))

            if "pct_change" in methods:
                all_anomalies.extend(self._detect_pct_change_anomalies(name, values))

            if "gaps" in methods:
                all_anomalies.extend(self._detect_gaps(name, values))

            if "rules" in methods:
                all_anomalies.extend(self._check_rules(name, values))

        completed_at = utc_now()

        # One finding per metric, type and position
        unique_anomalies = []
        seen = set()
        for anomaly in all_anomalies:
            key = (anomaly.metric_name, anomaly.anomaly_type, anomaly.details.get("index"))
            if key not in seen:
                seen.add(key)
                unique_anomalies.append(anomaly)

        critical_count = sum(1 for a in unique_anomalies if a.is_critical)

        report = AnomalyReport(
            started_at=started_at,
            completed_at=completed_at,
            metrics_checked=len(self._metrics),
            anomalies_found=len(unique_anomalies),
            critical_count=critical_count,
            anomalies=unique_anomalies,
        )

        if report.has_critical_anomalies:
            logger.warning(
                "Critical anomalies detected",
                critical=critical_count,
                total_anomalies=len(unique_anomalies),
            )
        else:
            logger.info("Anomaly detection complete", total_anomalies=len(unique_anomalies))

        return report


def detect_view_anomalies(
    daily_totals: pl.DataFrame,
    z_threshold: Optional[float] = None,
) -> AnomalyReport:
    """
    Check site-wide daily totals for traffic spikes and drops.

    Args:
        daily_totals: One row per day with ``day``, ``views`` and ``score`` columns

    Checks:
    - View and score z-score outliers
    - Day-over-day view spikes/drops
    - Dead days inside the range (rows are zero-filled by the rollup, so
      an empty day after traffic started means tracking was down)
    - Negative counts
    """
    detector = AnomalyDetector(
        z_threshold=z_threshold or settings.monitoring.anomaly_alert_threshold,
    )

    if daily_totals.is_empty():
        return detector.detect()

    ordered = daily_totals.sort("day")

    if "views" in ordered.columns:
        detector.add_metric("daily_views", ordered["views"].cast(pl.Float64).to_numpy())

    if "score" in ordered.columns:
        detector.add_metric("daily_score", ordered["score"].cast(pl.Float64).to_numpy())

    detector.add_rule(
        name="negative_count",
        check_func=lambda x: x < 0,
        message="Negative daily total detected: {value}",
        severity=AnomalySeverity.CRITICAL,
    )

    return detector.detect()
