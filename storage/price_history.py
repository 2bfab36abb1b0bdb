# storage/price_history.py
import logging
from decimal import Decimal

from spotmonitor.errors import ConflictError
from spotmonitor.models import PricePoint
from spotmonitor.utils import from_epoch, to_epoch
from storage import schema

log = logging.getLogger(__name__)


def point_id(point: PricePoint) -> str:
    return f"{point.instance_family}#{point.zone}#{to_epoch(point.observed_at)}"


def _to_point(item) -> PricePoint:
    return PricePoint(
        instance_family=item["instance_family"],
        region=item["region"],
        zone=item["zone"],
        price=Decimal(str(item["price"])),
        observed_at=from_epoch(item["observed_at"]),
    )


class PriceHistoryStore:
    """
    Append-only price samples keyed by (instance family, zone, observation time).
    Re-appending an observation already stored is a no-op.
    """

    def __init__(self, store):
        self.store = store

    def append(self, point: PricePoint) -> bool:
        item = {
            "id": point_id(point),
            "instance_family": point.instance_family,
            "region": point.region,
            "zone": point.zone,
            "price": Decimal(str(point.price)),
            "observed_at": to_epoch(point.observed_at),
        }
        try:
            self.store.put(schema.PRICE_HISTORY, item, if_absent=True)
        except ConflictError:
            log.debug("Price sample %s already stored", item["id"])
            return False
        return True

    def history(self, instance_family, since, until=None, region=None):
        items = self.store.query(
            schema.PRICE_HISTORY,
            schema.PRICE_INDEX,
            "instance_family",
            instance_family,
            range_name="observed_at",
            lower=to_epoch(since),
            upper=to_epoch(until) if until else None,
            filters={"region": region} if region else None,
        )
        return sorted((_to_point(i) for i in items), key=lambda p: p.observed_at)

    def latest_before(self, instance_family, region, zone, since, before):
        """Most recent sample for (family, region, zone) in [since, before)."""
        items = self.store.query(
            schema.PRICE_HISTORY,
            schema.PRICE_INDEX,
            "instance_family",
            instance_family,
            range_name="observed_at",
            lower=to_epoch(since),
            upper=to_epoch(before) - 1,
            filters={"region": region, "zone": zone},
            descending=True,
            limit=1,
        )
        return _to_point(items[0]) if items else None

    def current_prices(self, instance_families, since, region=None):
        """Latest sample per (family, zone) observed since `since`."""
        latest = {}
        for family in instance_families:
            for point in self.history(family, since, region=region):
                key = (point.instance_family, point.zone)
                if key not in latest or point.observed_at > latest[key].observed_at:
                    latest[key] = point
        return list(latest.values())
