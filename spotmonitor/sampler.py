# spotmonitor/sampler.py
import logging
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from datetime import timedelta

from spotmonitor import anomaly
from spotmonitor.catalog import validate_instance_family, validate_region, validate_selection
from spotmonitor.models import PricePoint, SampleResult
from spotmonitor.utils import utcnow

log = logging.getLogger(__name__)


def latest_per_zone(observations):
    """Keep only the newest observation for each (family, zone)."""
    latest = {}
    for obs in observations:
        key = (obs["family"], obs["zone"])
        if key not in latest or obs["observed_at"] > latest[key]["observed_at"]:
            latest[key] = obs
    return list(latest.values())


class PriceSampler:
    def __init__(
        self,
        providers,
        history,
        dispatcher=None,
        product_description="Linux/UNIX",
        sample_window=timedelta(hours=1),
        reference_window=timedelta(hours=24),
        max_workers=4,
        region_timeout=30,
        clock=utcnow,
    ):
        self.providers = providers
        self.history_store = history
        self.dispatcher = dispatcher
        self.product_description = product_description
        self.sample_window = sample_window
        self.reference_window = reference_window
        self.max_workers = max_workers
        self.region_timeout = region_timeout
        self.clock = clock

    def _fetch_region(self, region, families, since):
        source = self.providers.price_source(region)
        observations = source.describe_prices(families, self.product_description, since)
        return [
            PricePoint(
                instance_family=obs["family"],
                region=region,
                zone=obs["zone"],
                price=obs["price"],
                observed_at=obs["observed_at"],
            )
            for obs in latest_per_zone(observations)
        ]

    def _fetch_all(self, regions, families, since):
        """
        Fetch regions concurrently with at most max_workers live fetches.
        Each region's timeout starts when its own fetch starts; a region that
        overruns is abandoned and its slot goes to the next waiting region.
        Returns ({region: [PricePoint]}, {region: error}).
        """
        points, errors = {}, {}
        waiting = list(regions)
        limit = max(1, self.max_workers)
        running = {}  # future -> (region, deadline)
        # one thread per region so an abandoned fetch never holds a slot
        executor = ThreadPoolExecutor(max_workers=max(1, len(regions)))
        try:
            while waiting or running:
                while waiting and len(running) < limit:
                    region = waiting.pop(0)
                    future = executor.submit(self._fetch_region, region, families, since)
                    running[future] = (region, time.monotonic() + self.region_timeout)

                next_deadline = min(deadline for _, deadline in running.values())
                wait(running, timeout=max(0, next_deadline - time.monotonic()), return_when=FIRST_COMPLETED)

                now = time.monotonic()
                for future, (region, deadline) in list(running.items()):
                    if future.done():
                        del running[future]
                        try:
                            points[region] = future.result()
                        except Exception as e:
                            log.warning("Price fetch failed for %s: %s", region, e)
                            errors[region] = str(e)
                    elif now >= deadline:
                        del running[future]
                        log.warning("Price fetch timed out for %s after %ss", region, self.region_timeout)
                        errors[region] = f"timed out after {self.region_timeout}s"
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        return points, errors

    def sample(self, regions=None, families=None) -> SampleResult:
        """
        Fetch current prices, persist them, score each against its prior
        sample and alert on significant moves. An observation already in the
        store is still reported in points but is not scored again.
        """
        regions, families = validate_selection(regions, families)
        now = self.clock()
        log.info("Sampling %s families across %s regions", len(families), len(regions))

        by_region, errors = self._fetch_all(regions, families, now - self.sample_window)
        result = SampleResult(errors=errors)
        reference_start = now - self.reference_window

        for region in regions:
            for point in by_region.get(region, []):
                previous = self.history_store.latest_before(
                    point.instance_family, point.region, point.zone, reference_start, point.observed_at
                )
                result.points.append(point)
                if not self.history_store.append(point):
                    # already scored and alerted when first stored
                    continue
                event = anomaly.detect(point, previous)
                if anomaly.is_significant(event.anomaly_score):
                    result.anomalies.append(event)

        if result.anomalies:
            log.warning("Spot price anomalies detected: %s", len(result.anomalies))
            self._alert(result.anomalies)
        log.info(
            "Sampled %s prices, %s anomalies, %s failed regions",
            len(result.points), len(result.anomalies), len(result.errors),
        )
        return result

    def _alert(self, anomalies):
        if self.dispatcher is None:
            return
        for event in anomalies:
            pct = event.percent_change
            subject = f"Spot price anomaly: {event.instance_family} in {event.zone}"
            message = (
                f"{event.instance_family} in {event.zone} moved {pct:+.2f}% "
                f"({event.previous_price} -> {event.current_price})"
            )
            try:
                self.dispatcher.notify_system(
                    subject, message, anomaly.severity_for(event.anomaly_score), event.as_metadata()
                )
            except Exception:
                log.exception("System alert failed for %s/%s", event.instance_family, event.zone)

    def history(self, instance_family, region=None, days=7, default_region="us-east-1"):
        """
        Stored history for a family; when nothing is stored yet the window is
        fetched from the provider, stored and returned.
        """
        validate_instance_family(instance_family)
        if region:
            validate_region(region)
        since = self.clock() - timedelta(days=days)
        points = self.history_store.history(instance_family, since, region=region)
        if points:
            return points

        fetch_region = region or default_region
        source = self.providers.price_source(fetch_region)
        observations = source.describe_prices([instance_family], self.product_description, since)
        points = [
            PricePoint(
                instance_family=obs["family"],
                region=obs.get("region") or fetch_region,
                zone=obs["zone"],
                price=obs["price"],
                observed_at=obs["observed_at"],
            )
            for obs in observations
        ]
        for point in points:
            self.history_store.append(point)
        log.info("Fetched and stored %s history points for %s", len(points), instance_family)
        return sorted(points, key=lambda p: p.observed_at)
