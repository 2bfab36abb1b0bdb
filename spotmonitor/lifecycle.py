# spotmonitor/lifecycle.py
import logging
from dataclasses import replace
from decimal import Decimal, InvalidOperation

from spotmonitor.catalog import validate_instance_family, validate_region
from spotmonitor.errors import NotFoundError, OwnershipError, PartialFailure, ValidationError
from spotmonitor.models import LaunchOptions, Resource, ResourceState, can_transition
from spotmonitor.utils import new_id, utcnow

log = logging.getLogger(__name__)

MANAGED_BY = "spot-monitor"


def state_from_provider(request_state, resource_id, current=ResourceState.REQUESTED):
    """
    Map an EC2 spot request state onto the resource lifecycle.

    open                         -> evaluating
    active + instance id         -> fulfilled
    failed                       -> failed
    closed/cancelled             -> terminated once fulfilled, failed before
    anything else                -> unchanged
    """
    if request_state == "open":
        return ResourceState.EVALUATING
    if request_state == "active":
        return ResourceState.FULFILLED if resource_id else ResourceState.EVALUATING
    if request_state == "failed":
        return ResourceState.FAILED
    if request_state in ("closed", "cancelled"):
        if current == ResourceState.FULFILLED:
            return ResourceState.TERMINATED
        return ResourceState.FAILED
    return current


def _parse_price(max_price):
    try:
        price = Decimal(str(max_price))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid max price: {max_price}", field="max_price", value=max_price)
    if not price.is_finite() or price <= 0:
        raise ValidationError(f"Invalid max price: {max_price}", field="max_price", value=max_price)
    return price


class ResourceLifecycleManager:
    """
    Drives a spot request from creation through polling to termination.

    Every mutation is a versioned write: two concurrent polls or terminates
    on the same resource cannot both commit; the loser gets ConflictError.
    """

    def __init__(self, providers, repository, default_image_id=None, clock=utcnow):
        self.providers = providers
        self.repository = repository
        self.default_image_id = default_image_id
        self.clock = clock

    def _load(self, resource_id, caller_id=None) -> Resource:
        resource = self.repository.get(resource_id)
        if resource is None:
            raise NotFoundError("Resource", resource_id)
        if caller_id is not None and resource.owner_id != caller_id:
            raise OwnershipError("Resource", resource_id, caller_id)
        return resource

    def _launch_spec(self, options: LaunchOptions):
        return {
            "ImageId": options.image_id or self.default_image_id,
            "KeyName": options.key_name,
            "SecurityGroupIds": [options.security_group_id] if options.security_group_id else None,
            "SubnetId": options.subnet_id,
            "UserData": options.user_data,
        }

    def create(self, owner_id, instance_family, region, max_price, options=None, workload_config=None) -> Resource:
        validate_instance_family(instance_family)
        validate_region(region)
        price = _parse_price(max_price)
        if not owner_id:
            raise ValidationError("owner_id is required", field="owner_id", value=owner_id)
        if workload_config is not None and not isinstance(workload_config, dict):
            raise ValidationError("workload_config must be an object", field="workload_config", value=workload_config)
        options = options or LaunchOptions()

        provider = self.providers.resource_provider(region)
        request = provider.create_request(instance_family, price, self._launch_spec(options))

        tags = {"Name": f"Spot-{owner_id[:8]}", "OwnerId": owner_id, "ManagedBy": MANAGED_BY}
        try:
            provider.tag_request(request["request_id"], tags)
        except Exception:
            # The request already exists provider-side; keep tracking it untagged.
            log.exception("Tagging spot request %s failed", request["request_id"])

        now = self.clock()
        state = state_from_provider(request.get("state"), request.get("resource_id"))
        resource = Resource(
            id=new_id(),
            owner_id=owner_id,
            provider_request_id=request["request_id"],
            region=region,
            instance_family=instance_family,
            max_price=price,
            state=state,
            created_at=now,
            updated_at=now,
            request_state=request.get("state"),
            status_code=request.get("status_code"),
            status_message=request.get("status_message"),
            provider_resource_id=request.get("resource_id") or None,
            workload_config=workload_config,
        )
        self.repository.add(resource)
        log.info(
            "Spot request created: resource=%s request=%s owner=%s region=%s family=%s state=%s",
            resource.id, resource.provider_request_id, owner_id, region, instance_family, state.value,
        )
        return resource

    def get(self, resource_id, caller_id=None) -> Resource:
        return self._load(resource_id, caller_id)

    def list_for_owner(self, owner_id):
        return self.repository.list_for_owner(owner_id)

    def poll(self, resource_id, caller_id=None) -> Resource:
        resource = self._load(resource_id, caller_id)
        if resource.state.terminal or not resource.provider_request_id:
            return resource

        provider = self.providers.resource_provider(resource.region)
        status = provider.describe_request(resource.provider_request_id)

        updated = replace(
            resource,
            request_state=status.get("state"),
            status_code=status.get("status_code"),
            status_message=status.get("status_message"),
            updated_at=self.clock(),
        )
        # Learned provider fields are only ever overwritten by a non-empty, different value.
        reported_id = status.get("resource_id")
        if reported_id and reported_id != resource.provider_resource_id:
            updated.provider_resource_id = reported_id

        target = state_from_provider(status.get("state"), updated.provider_resource_id, resource.state)
        if can_transition(resource.state, target):
            updated.state = target
        else:
            log.warning(
                "Ignoring provider transition %s -> %s for resource %s",
                resource.state.value, target.value, resource.id,
            )

        if updated.state == ResourceState.FULFILLED and updated.provider_resource_id:
            details = provider.describe_resource(updated.provider_resource_id)
            if details.get("public_address"):
                updated.public_address = details["public_address"]
            if details.get("public_dns_name"):
                updated.public_dns_name = details["public_dns_name"]

        saved = self.repository.save(updated)
        log.info(
            "Polled resource %s: state=%s code=%s instance=%s",
            saved.id, saved.state.value, saved.status_code, saved.provider_resource_id,
        )
        return saved

    def terminate(self, resource_id, caller_id=None) -> Resource:
        """
        Cancel the spot request and terminate the instance, each when known.
        Both calls are always attempted; the resource only becomes terminated
        when neither failed, otherwise PartialFailure is raised and nothing
        is written.
        """
        resource = self._load(resource_id, caller_id)
        if resource.state.terminal:
            return resource

        provider = self.providers.resource_provider(resource.region)
        outcomes = {}
        if resource.provider_request_id:
            try:
                provider.cancel_request(resource.provider_request_id)
                outcomes["cancel_request"] = None
                log.info("Cancelled spot request %s for resource %s", resource.provider_request_id, resource.id)
            except Exception as e:
                outcomes["cancel_request"] = e
        if resource.provider_resource_id:
            try:
                provider.terminate_resource(resource.provider_resource_id)
                outcomes["terminate_resource"] = None
                log.info("Terminated instance %s for resource %s", resource.provider_resource_id, resource.id)
            except Exception as e:
                outcomes["terminate_resource"] = e

        failed = {step: err for step, err in outcomes.items() if err is not None}
        if failed:
            for step, err in failed.items():
                log.error("Terminate step %s failed for resource %s: %s", step, resource.id, err)
            raise PartialFailure(
                f"Termination of resource {resource.id} incomplete: "
                + "; ".join(f"{step}: {err}" for step, err in failed.items()),
                outcomes,
                operation="terminate",
                region=resource.region,
            ) from next(iter(failed.values()))

        updated = replace(
            resource,
            state=ResourceState.TERMINATED,
            request_state="cancelled",
            status_code="terminated-by-user",
            status_message="Resource terminated by user",
            updated_at=self.clock(),
        )
        saved = self.repository.save(updated)
        log.info("Resource %s terminated", saved.id)
        return saved
