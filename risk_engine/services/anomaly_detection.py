"""
Anomaly Detection Service

Statistical tests for single observations of a business metric against its
history, plus severity grading and anomaly record construction.

Detection methods:
1. Z-score: anomaly when |x - mean| / std > threshold (default 2.0).
   Population standard deviation (ddof=0); std == 0 gives zScore 0.
2. IQR: Q1 = s[floor(0.25 n)], Q3 = s[floor(0.75 n)] over the sorted series;
   anomaly when x is outside [Q1 - k*IQR, Q3 + k*IQR] (k default 1.5).
   The median is s[floor(n / 2)]; no interpolation.
3. Percentage change: anomaly when |(x - prev) / prev| * 100 > threshold
   (default 30). A previous value of 0 or None is never anomalous.

Severity score (points):
    |zScore|           > 3: 40, > 2: 30, > 1.5: 20, else 10   (only if non-zero)
    |percentageChange| > 50: 30, > 30: 20, > 15: 10, else 5   (only if non-zero)
    business impact    high-impact types 30, medium 20, others 10
    level: >= 80 critical, >= 60 high, >= 40 medium, else low
    confidence = min(score, 100)

Divide-by-zero cases (std 0, mean 0, median 0, previous 0) resolve to 0 and
never raise. Empty or non-finite input raises InvalidNumericInputError.
"""

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Sequence, Tuple

import numpy as np

from risk_engine.core.exceptions import InvalidNumericInputError
from risk_engine.models.enums import AnomalySeverity, AnomalyType, DetectionMethod
from risk_engine.models.schemas import AnomalyRecord, AnomalyStatistics
from risk_engine.services.indicators import anomaly_context
from risk_engine.services.scoring_config import AnomalyConfig, get_anomaly_config


logger = logging.getLogger(__name__)


# =============================================================================
# Result Type
# =============================================================================


@dataclass
class DetectionResult:
    is_anomaly: bool
    statistics: AnomalyStatistics = field(default_factory=AnomalyStatistics)
    expected_value: Optional[float] = None


# =============================================================================
# Input Validation
# =============================================================================


def _validate_value(value: Optional[float], name: str) -> float:
    if value is None or not math.isfinite(value):
        raise InvalidNumericInputError(f"{name} must be a finite number, got {value!r}")
    return float(value)


def validate_series(series: Sequence[float]) -> np.ndarray:
    """
    Convert a historical series to a float64 array.

    Raises:
        InvalidNumericInputError: Empty series or any NaN / infinite value.
    """
    values = np.asarray(list(series), dtype=np.float64)

    if values.size == 0:
        raise InvalidNumericInputError("Historical series is empty")

    if not np.all(np.isfinite(values)):
        raise InvalidNumericInputError("Historical series contains non-finite values")

    return values


def _percent_from(value: float, baseline: float) -> float:
    if baseline == 0:
        return 0.0
    return (value - baseline) / baseline * 100


# =============================================================================
# Detection Methods
# =============================================================================


def detect_with_zscore(
    value: float,
    series: Sequence[float],
    threshold: Optional[float] = None,
    config: Optional[AnomalyConfig] = None,
) -> DetectionResult:
    """
    Z-score test of `value` against the population statistics of `series`.

    Example:
        >>> result = detect_with_zscore(10.0, [10.0, 10.0, 10.0])
        >>> result.is_anomaly, result.statistics.zScore
        (False, 0.0)
    """
    config = config or get_anomaly_config()
    threshold = config.zscore_threshold if threshold is None else threshold

    current = _validate_value(value, "value")
    values = validate_series(series)

    mean = float(np.mean(values))
    std = float(np.std(values))  # population std (ddof=0)
    z_score = (current - mean) / std if std > 0 else 0.0

    statistics = AnomalyStatistics(
        mean=mean,
        stdDev=std,
        zScore=z_score,
        percentageChange=_percent_from(current, mean),
    )

    return DetectionResult(
        is_anomaly=abs(z_score) > threshold,
        statistics=statistics,
        expected_value=mean,
    )


def detect_with_iqr(
    value: float,
    series: Sequence[float],
    multiplier: Optional[float] = None,
    config: Optional[AnomalyConfig] = None,
) -> DetectionResult:
    """
    Interquartile-range fence test.

    Example:
        series [1, 2, ..., 9, 100] (n = 10): Q1 = 3, Q3 = 8, IQR = 5,
        fences [-4.5, 15.5]; value 100 is anomalous, value 5 is not.
    """
    config = config or get_anomaly_config()
    k = config.iqr_multiplier if multiplier is None else multiplier

    current = _validate_value(value, "value")
    ordered = np.sort(validate_series(series))
    n = ordered.size

    q1 = float(ordered[int(math.floor(n * 0.25))])
    q3 = float(ordered[int(math.floor(n * 0.75))])
    iqr = q3 - q1
    lower = q1 - k * iqr
    upper = q3 + k * iqr
    median = float(ordered[n // 2])

    statistics = AnomalyStatistics(
        median=median,
        percentageChange=_percent_from(current, median),
        lowerBound=lower,
        upperBound=upper,
    )

    return DetectionResult(
        is_anomaly=current < lower or current > upper,
        statistics=statistics,
        expected_value=median,
    )


def detect_with_percentage_change(
    value: float,
    previous_value: Optional[float],
    threshold: Optional[float] = None,
    config: Optional[AnomalyConfig] = None,
) -> DetectionResult:
    config = config or get_anomaly_config()
    threshold = config.percentage_change_threshold if threshold is None else threshold

    current = _validate_value(value, "value")

    if previous_value is None or previous_value == 0:
        return DetectionResult(is_anomaly=False, expected_value=previous_value)

    previous = _validate_value(previous_value, "previous_value")
    change = (current - previous) / previous * 100

    return DetectionResult(
        is_anomaly=abs(change) > threshold,
        statistics=AnomalyStatistics(percentageChange=change),
        expected_value=previous,
    )


# =============================================================================
# Severity & Description
# =============================================================================


def score_severity(
    statistics: AnomalyStatistics,
    anomaly_type: AnomalyType,
    config: Optional[AnomalyConfig] = None,
) -> Tuple[int, AnomalySeverity, float]:
    """
    Grade an anomaly.

    Returns:
        (severity_score, severity, confidence) where confidence is
        min(severity_score, 100).

    Example:
        zScore 3.5 (+40), percentageChange -60 (+30), revenue_drop (+30)
        -> (100, AnomalySeverity.CRITICAL, 100.0)
    """
    config = config or get_anomaly_config()
    score = 0.0

    if statistics.zScore:
        score += config.zscore_points.fraction_for(abs(statistics.zScore))

    if statistics.percentageChange:
        score += config.percentage_change_points.fraction_for(abs(statistics.percentageChange))

    score += config.impact_points(anomaly_type)

    severity_score = int(score)
    return severity_score, config.severity.level_for(severity_score), float(min(severity_score, 100))


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def describe_anomaly(
    severity: AnomalySeverity,
    metric_name: str,
    value: float,
    statistics: AnomalyStatistics,
    expected_value: Optional[float],
) -> str:
    description = f"Detected {severity.value} severity anomaly in {metric_name}. "

    change = statistics.percentageChange
    if change:
        direction = "increase" if change > 0 else "decrease"
        description += f"{abs(change):.1f}% {direction} from expected. "

    if expected_value:
        description += f"Current value: {_format_number(value)}, Expected: {_format_number(expected_value)}. "

    if statistics.zScore:
        description += f"Statistical significance: {abs(statistics.zScore):.2f} standard deviations. "

    return description.strip()


# =============================================================================
# Public API
# =============================================================================


def run_detection(
    method: DetectionMethod,
    value: float,
    series: Sequence[float],
    previous_value: Optional[float] = None,
    threshold: Optional[float] = None,
    config: Optional[AnomalyConfig] = None,
) -> DetectionResult:
    """
    Dispatch to one detection method.

    For percentage_change the previous value defaults to the last element of
    `series` when not given explicitly. A non-empty series is validated for
    every method.
    """
    if method == DetectionMethod.Z_SCORE:
        return detect_with_zscore(value, series, threshold=threshold, config=config)

    if method == DetectionMethod.IQR:
        return detect_with_iqr(value, series, multiplier=threshold, config=config)

    if len(series) > 0:
        values = validate_series(series)
        if previous_value is None:
            previous_value = float(values[-1])
    return detect_with_percentage_change(value, previous_value, threshold=threshold, config=config)


def detect_anomaly(
    metric_name: str,
    value: float,
    series: Sequence[float],
    method: DetectionMethod = DetectionMethod.Z_SCORE,
    anomaly_type: AnomalyType = AnomalyType.CUSTOM,
    previous_value: Optional[float] = None,
    threshold: Optional[float] = None,
    unit: str = "count",
    data_point_date: Optional[datetime] = None,
    time_window: Optional[str] = None,
    now: Optional[datetime] = None,
    config: Optional[AnomalyConfig] = None,
) -> Optional[AnomalyRecord]:
    """
    Test one observation and build an AnomalyRecord when it is anomalous.

    Args:
        metric_name: Name of the metric (e.g. "daily_revenue").
        value: Current observation.
        series: Historical values for the same metric.
        method: Detection method.
        anomaly_type: Drives business impact and context lookup.
        previous_value: Comparison point for percentage_change.
        threshold: Overrides the configured threshold (k for IQR).

    Returns:
        AnomalyRecord with status NEW, or None when the value is normal.

    Raises:
        InvalidNumericInputError: Empty or non-finite series / value.
    """
    config = config or get_anomaly_config()

    result = run_detection(
        method,
        value,
        series,
        previous_value=previous_value,
        threshold=threshold,
        config=config,
    )
    if not result.is_anomaly:
        return None

    severity_score, severity, confidence = score_severity(result.statistics, anomaly_type, config)
    causes, recommendations = anomaly_context(anomaly_type)

    if previous_value is None and method == DetectionMethod.PERCENTAGE_CHANGE:
        previous_value = result.expected_value

    record = AnomalyRecord(
        id=str(uuid.uuid4()),
        anomalyType=anomaly_type,
        metricName=metric_name,
        value=float(value),
        expectedValue=result.expected_value,
        previousValue=previous_value,
        unit=unit,
        statistics=result.statistics,
        detectionMethod=method,
        severity=severity,
        severityScore=severity_score,
        confidence=confidence,
        description=describe_anomaly(severity, metric_name, value, result.statistics, result.expected_value),
        possibleCauses=causes,
        recommendations=recommendations,
        detectedAt=now or datetime.now(timezone.utc),
        dataPointDate=data_point_date,
        timeWindow=time_window,
    )

    logger.info(
        f"Detected {severity.value} anomaly in {metric_name} "
        f"(method={method.value}, score={severity_score})"
    )
    return record
