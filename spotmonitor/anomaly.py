# spotmonitor/anomaly.py
import math
from dataclasses import dataclass

from spotmonitor.models import AnomalyEvent, PricePoint, Severity

SIGNIFICANT_SCORE = 0.7

# (exclusive lower bound on percent change, score), checked in order
RISE_BANDS = [
    (50, 0.9),
    (30, 0.8),
    (20, 0.7),
    (10, 0.5),
]
DROP_BAND = (-20, 0.3)


@dataclass(frozen=True)
class Score:
    percent_change: float
    anomaly_score: float


def _as_float(value):
    try:
        number = float(value)
    except (TypeError, ValueError, ArithmeticError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def classify(percent_change) -> float:
    pct = _as_float(percent_change)
    for bound, band_score in RISE_BANDS:
        if pct > bound:
            return band_score
    if pct < DROP_BAND[0]:
        return DROP_BAND[1]
    return 0.0


def score(current, previous) -> Score:
    """
    Percent change of `current` over `previous` and its anomaly score.
    A non-positive or unusable `previous` scores as no change.
    """
    cur = _as_float(current)
    prev = _as_float(previous)
    pct = (cur - prev) / prev * 100 if prev > 0 else 0.0
    return Score(percent_change=pct, anomaly_score=classify(pct))


def is_significant(anomaly_score) -> bool:
    return anomaly_score > SIGNIFICANT_SCORE


def severity_for(anomaly_score) -> Severity:
    if anomaly_score >= 0.9:
        return Severity.CRITICAL
    if anomaly_score >= 0.8:
        return Severity.ERROR
    return Severity.WARNING


def detect(point: PricePoint, previous: PricePoint | None) -> AnomalyEvent:
    baseline = previous.price if previous is not None else point.price
    result = score(point.price, baseline)
    return AnomalyEvent(
        instance_family=point.instance_family,
        region=point.region,
        zone=point.zone,
        current_price=point.price,
        previous_price=baseline,
        percent_change=result.percent_change,
        anomaly_score=result.anomaly_score,
    )
