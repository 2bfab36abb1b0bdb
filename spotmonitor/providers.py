# spotmonitor/providers.py
import base64
import logging
from decimal import Decimal
from threading import Lock

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from spotmonitor.errors import UpstreamError
from spotmonitor.utils import region_from_zone

log = logging.getLogger(__name__)


def _upstream(operation, region, exc):
    return UpstreamError(f"{operation} failed in {region}: {exc}", operation=operation, region=region)


class EC2PriceSource:
    """Spot price history for one region."""

    def __init__(self, ec2, region):
        self.ec2 = ec2
        self.region = region

    def describe_prices(self, families, product_description, since):
        """
        Returns [{family, zone, region, price, observed_at}] for every
        observation since `since`.
        """
        observations = []
        try:
            paginator = self.ec2.get_paginator("describe_spot_price_history")
            pages = paginator.paginate(
                InstanceTypes=list(families),
                ProductDescriptions=[product_description],
                StartTime=since,
            )
            for page in pages:
                for entry in page.get("SpotPriceHistory", []):
                    zone = entry["AvailabilityZone"]
                    observations.append({
                        "family": entry["InstanceType"],
                        "zone": zone,
                        "region": region_from_zone(zone) or self.region,
                        "price": Decimal(entry["SpotPrice"]),
                        "observed_at": entry["Timestamp"],
                    })
        except (ClientError, BotoCoreError) as e:
            raise _upstream("describe_spot_price_history", self.region, e) from e
        return observations


class EC2ResourceProvider:
    """Spot instance request lifecycle calls for one region."""

    def __init__(self, ec2, region):
        self.ec2 = ec2
        self.region = region

    @staticmethod
    def _request_summary(req):
        status = req.get("Status") or {}
        return {
            "request_id": req.get("SpotInstanceRequestId"),
            "state": req.get("State"),
            "status_code": status.get("Code"),
            "status_message": status.get("Message"),
            "resource_id": req.get("InstanceId"),
        }

    def create_request(self, family, max_price, launch_spec):
        spec = {k: v for k, v in dict(launch_spec, InstanceType=family).items() if v is not None}
        if spec.get("UserData"):
            spec["UserData"] = base64.b64encode(spec["UserData"].encode()).decode()
        try:
            resp = self.ec2.request_spot_instances(
                InstanceCount=1,
                SpotPrice=str(max_price),
                Type="one-time",
                LaunchSpecification=spec,
            )
        except (ClientError, BotoCoreError) as e:
            raise _upstream("request_spot_instances", self.region, e) from e
        requests = resp.get("SpotInstanceRequests") or []
        if not requests:
            raise UpstreamError(
                f"request_spot_instances returned no request in {self.region}",
                operation="request_spot_instances",
                region=self.region,
            )
        return self._request_summary(requests[0])

    def describe_request(self, request_id):
        try:
            resp = self.ec2.describe_spot_instance_requests(SpotInstanceRequestIds=[request_id])
        except (ClientError, BotoCoreError) as e:
            raise _upstream("describe_spot_instance_requests", self.region, e) from e
        requests = resp.get("SpotInstanceRequests") or []
        if not requests:
            raise UpstreamError(
                f"Spot request not found: {request_id}",
                operation="describe_spot_instance_requests",
                region=self.region,
            )
        return self._request_summary(requests[0])

    def describe_resource(self, resource_id):
        try:
            resp = self.ec2.describe_instances(InstanceIds=[resource_id])
        except (ClientError, BotoCoreError) as e:
            raise _upstream("describe_instances", self.region, e) from e
        reservations = resp.get("Reservations") or []
        if not reservations or not reservations[0].get("Instances"):
            return {}
        inst = reservations[0]["Instances"][0]
        return {
            "public_address": inst.get("PublicIpAddress"),
            "public_dns_name": inst.get("PublicDnsName"),
        }

    def cancel_request(self, request_id):
        try:
            self.ec2.cancel_spot_instance_requests(SpotInstanceRequestIds=[request_id])
        except (ClientError, BotoCoreError) as e:
            raise _upstream("cancel_spot_instance_requests", self.region, e) from e
        return True

    def terminate_resource(self, resource_id):
        try:
            self.ec2.terminate_instances(InstanceIds=[resource_id])
        except (ClientError, BotoCoreError) as e:
            raise _upstream("terminate_instances", self.region, e) from e
        return True

    def tag_request(self, request_id, tags):
        try:
            self.ec2.create_tags(
                Resources=[request_id],
                Tags=[{"Key": k, "Value": v} for k, v in tags.items()],
            )
        except (ClientError, BotoCoreError) as e:
            raise _upstream("create_tags", self.region, e) from e
        return True


class EC2ProviderFactory:
    """
    Per-region EC2 clients with bounded timeouts and no automatic retries.
    Clients are created lazily and cached.
    """

    def __init__(self, timeout_seconds=10, profile=None, session=None):
        self.session = session or (boto3.Session(profile_name=profile) if profile else boto3.Session())
        self.client_config = Config(
            connect_timeout=timeout_seconds,
            read_timeout=timeout_seconds,
            retries={"max_attempts": 1, "mode": "standard"},
        )
        self._clients = {}
        self._lock = Lock()

    def _ec2(self, region):
        with self._lock:
            if region not in self._clients:
                log.debug("Creating EC2 client for %s", region)
                self._clients[region] = self.session.client("ec2", region_name=region, config=self.client_config)
            return self._clients[region]

    def price_source(self, region):
        return EC2PriceSource(self._ec2(region), region)

    def resource_provider(self, region):
        return EC2ResourceProvider(self._ec2(region), region)
