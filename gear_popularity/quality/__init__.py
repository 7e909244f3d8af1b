"""
Data Quality Module
"""
from .anomaly_detector import (
    AnomalyDetector,
    AnomalyReport,
    AnomalyResult,
    AnomalySeverity,
    AnomalyType,
    detect_view_anomalies,
)

__all__ = [
    "AnomalyDetector",
    "AnomalyReport",
    "AnomalyResult",
    "AnomalySeverity",
    "AnomalyType",
    "detect_view_anomalies",
]
