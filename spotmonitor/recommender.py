# spotmonitor/recommender.py
import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from spotmonitor.catalog import (
    DEFAULT_PERFORMANCE_WEIGHT,
    PERFORMANCE_WEIGHTS,
    list_supported_instance_families,
    validate_region,
)
from spotmonitor.utils import utcnow

log = logging.getLogger(__name__)

_XLARGE = re.compile(r"^(\d*)xlarge$")


@dataclass(frozen=True)
class Recommendation:
    instance_family: str
    region: str
    zone: str
    price: Decimal
    performance_weight: float
    score: float


def size_factor(size: str) -> float:
    """Smaller sizes get a slight boost: 1 - 0.02 per xlarge multiple, floored at 0.8."""
    match = _XLARGE.match(size or "")
    if not match:
        return 1.0
    multiple = int(match.group(1) or 1)
    return max(0.8, 1.0 - multiple * 0.02)


def rank(points, max_price=None, limit=5):
    scored = []
    for point in points:
        if point.price <= 0:
            continue
        if max_price is not None and point.price > Decimal(str(max_price)):
            continue
        generation, _, size = point.instance_family.partition(".")
        weight = PERFORMANCE_WEIGHTS.get(generation, DEFAULT_PERFORMANCE_WEIGHT)
        scored.append(Recommendation(
            instance_family=point.instance_family,
            region=point.region,
            zone=point.zone,
            price=point.price,
            performance_weight=weight,
            score=weight * size_factor(size) / float(point.price),
        ))
    scored.sort(key=lambda r: r.score, reverse=True)
    return scored[:limit]


class InstanceRecommender:
    def __init__(self, history, window=timedelta(hours=1), clock=utcnow):
        self.history = history
        self.window = window
        self.clock = clock

    def recommend_current(self, region=None, max_price=None, limit=5):
        """Rank the latest stored price of every family observed within the window."""
        if region:
            validate_region(region)
        points = self.history.current_prices(
            list_supported_instance_families(), self.clock() - self.window, region=region
        )
        recommendations = rank(points, max_price=max_price, limit=limit)
        log.info("Generated %s recommendations (region=%s max_price=%s)", len(recommendations), region, max_price)
        return recommendations
