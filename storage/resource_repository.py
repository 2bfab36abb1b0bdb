# storage/resource_repository.py
import json
from decimal import Decimal

from spotmonitor.models import Resource, ResourceState
from spotmonitor.utils import from_iso, to_iso
from storage import schema


def serialize_workload_config(config):
    if config is None:
        return None
    return json.dumps(config, sort_keys=True)


def deserialize_workload_config(blob):
    if not blob:
        return None
    return json.loads(blob)


def to_item(resource: Resource) -> dict:
    return {
        "id": resource.id,
        "owner_id": resource.owner_id,
        "provider_request_id": resource.provider_request_id,
        "region": resource.region,
        "instance_family": resource.instance_family,
        "max_price": Decimal(str(resource.max_price)),
        "state": resource.state.value,
        "provider_resource_id": resource.provider_resource_id,
        "public_address": resource.public_address,
        "public_dns_name": resource.public_dns_name,
        "request_state": resource.request_state,
        "status_code": resource.status_code,
        "status_message": resource.status_message,
        "workload_config": serialize_workload_config(resource.workload_config),
        "created_at": to_iso(resource.created_at),
        "updated_at": to_iso(resource.updated_at),
        "version": resource.version,
    }


def from_item(item: dict) -> Resource:
    return Resource(
        id=item["id"],
        owner_id=item["owner_id"],
        provider_request_id=item.get("provider_request_id"),
        region=item["region"],
        instance_family=item["instance_family"],
        max_price=Decimal(str(item["max_price"])),
        state=ResourceState(item["state"]),
        created_at=from_iso(item["created_at"]),
        updated_at=from_iso(item["updated_at"]),
        provider_resource_id=item.get("provider_resource_id"),
        public_address=item.get("public_address"),
        public_dns_name=item.get("public_dns_name"),
        request_state=item.get("request_state"),
        status_code=item.get("status_code"),
        status_message=item.get("status_message"),
        workload_config=deserialize_workload_config(item.get("workload_config")),
        version=int(item.get("version") or 0),
    )


class ResourceRepository:
    def __init__(self, store):
        self.store = store

    def add(self, resource: Resource) -> Resource:
        self.store.put(schema.RESOURCES, to_item(resource), if_absent=True)
        return resource

    def get(self, resource_id) -> Resource | None:
        item = self.store.get(schema.RESOURCES, {"id": resource_id})
        return from_item(item) if item else None

    def save(self, resource: Resource) -> Resource:
        """
        Write back every mutable field, conditional on the version the
        resource was loaded with. Returns the stored record.
        """
        attrs = to_item(resource)
        for immutable in ("id", "owner_id", "created_at", "version"):
            attrs.pop(immutable)
        item = self.store.update(
            schema.RESOURCES, {"id": resource.id}, attrs, expected_version=resource.version
        )
        return from_item(item)

    def list_for_owner(self, owner_id):
        items = self.store.query(schema.RESOURCES, schema.OWNER_INDEX, "owner_id", owner_id)
        return sorted((from_item(i) for i in items), key=lambda r: r.created_at)
