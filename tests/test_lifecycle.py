import os
import tempfile
import unittest
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

from spotmonitor.errors import (
    ConflictError,
    NotFoundError,
    OwnershipError,
    PartialFailure,
    UpstreamError,
    ValidationError,
)
from spotmonitor.lifecycle import ResourceLifecycleManager, state_from_provider
from spotmonitor.models import LaunchOptions, ResourceState
from storage import schema
from storage.json_store import JsonDocumentStore
from storage.resource_repository import ResourceRepository

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def open_request(request_id="sir-1"):
    return {
        "request_id": request_id,
        "state": "open",
        "status_code": "pending-evaluation",
        "status_message": "Your Spot request has been submitted for review, and is pending evaluation.",
        "resource_id": None,
    }


def active_request(resource_id="i-1"):
    return {
        "request_id": "sir-1",
        "state": "active",
        "status_code": "fulfilled",
        "status_message": "Your Spot request is fulfilled.",
        "resource_id": resource_id,
    }


class TestStateFromProvider(unittest.TestCase):
    def test_mapping(self):
        self.assertEqual(state_from_provider("open", None), ResourceState.EVALUATING)
        self.assertEqual(state_from_provider("active", "i-1"), ResourceState.FULFILLED)
        self.assertEqual(state_from_provider("active", None), ResourceState.EVALUATING)
        self.assertEqual(state_from_provider("failed", None), ResourceState.FAILED)
        self.assertEqual(state_from_provider("closed", "i-1", ResourceState.FULFILLED), ResourceState.TERMINATED)
        self.assertEqual(state_from_provider("cancelled", None, ResourceState.EVALUATING), ResourceState.FAILED)
        self.assertEqual(state_from_provider(None, None), ResourceState.REQUESTED)


class TestResourceLifecycleManager(unittest.TestCase):
    def setUp(self):
        self.temp_file = tempfile.NamedTemporaryFile(mode='w', delete=False, suffix='.json')
        self.temp_file.close()
        self.store = JsonDocumentStore(self.temp_file.name)
        self.repo = ResourceRepository(self.store)
        self.providers = MagicMock()
        self.provider = self.providers.resource_provider.return_value
        self.provider.create_request.return_value = open_request()
        self.provider.describe_resource.return_value = {}
        self.manager = ResourceLifecycleManager(
            self.providers, self.repo, default_image_id="ami-123", clock=lambda: NOW
        )

    def tearDown(self):
        if os.path.exists(self.temp_file.name):
            os.unlink(self.temp_file.name)

    def _create(self, **kwargs):
        return self.manager.create("user-12345678-abcd", "g5.xlarge", "us-east-1", "1.25", **kwargs)

    def _fulfil(self, resource):
        self.provider.describe_request.return_value = active_request()
        self.provider.describe_resource.return_value = {"public_address": "203.0.113.7", "public_dns_name": "ec2.example"}
        return self.manager.poll(resource.id)

    # create

    def test_create_persists_and_tags(self):
        resource = self._create(workload_config={"team": "0", "power": "full"})
        self.assertEqual(resource.state, ResourceState.EVALUATING)
        self.assertEqual(resource.provider_request_id, "sir-1")
        self.assertEqual(resource.max_price, Decimal("1.25"))
        self.assertEqual(resource.status_code, "pending-evaluation")

        stored = self.repo.get(resource.id)
        self.assertEqual(stored.owner_id, "user-12345678-abcd")
        self.assertEqual(stored.workload_config, {"team": "0", "power": "full"})

        self.providers.resource_provider.assert_called_with("us-east-1")
        family, price, spec = self.provider.create_request.call_args.args
        self.assertEqual(family, "g5.xlarge")
        self.assertEqual(price, Decimal("1.25"))
        self.assertEqual(spec["ImageId"], "ami-123")
        tags = self.provider.tag_request.call_args.args[1]
        self.assertEqual(tags["OwnerId"], "user-12345678-abcd")
        self.assertEqual(tags["Name"], "Spot-user-123")
        self.assertEqual(tags["ManagedBy"], "spot-monitor")

    def test_create_passes_launch_options(self):
        self._create(options=LaunchOptions(image_id="ami-9", key_name="k", security_group_id="sg-1", user_data="#!/bin/sh"))
        spec = self.provider.create_request.call_args.args[2]
        self.assertEqual(spec["ImageId"], "ami-9")
        self.assertEqual(spec["SecurityGroupIds"], ["sg-1"])
        self.assertEqual(spec["UserData"], "#!/bin/sh")

    def test_create_unknown_family_persists_nothing(self):
        with self.assertRaises(ValidationError) as ctx:
            self.manager.create("user-1", "not-a-real-type", "us-east-1", "1.0")
        self.assertIn("not-a-real-type", str(ctx.exception))
        self.provider.create_request.assert_not_called()
        self.assertEqual(self.store.scan(schema.RESOURCES), [])

    def test_create_unknown_region(self):
        with self.assertRaises(ValidationError) as ctx:
            self.manager.create("user-1", "g5.xlarge", "moon-1", "1.0")
        self.assertEqual(ctx.exception.field, "region")
        self.provider.create_request.assert_not_called()

    def test_create_invalid_price(self):
        for price in ("abc", "0", "-1"):
            with self.subTest(price=price):
                with self.assertRaises(ValidationError):
                    self.manager.create("user-1", "g5.xlarge", "us-east-1", price)

    def test_create_provider_failure_persists_nothing(self):
        self.provider.create_request.side_effect = UpstreamError("InsufficientInstanceCapacity")
        with self.assertRaises(UpstreamError):
            self._create()
        self.assertEqual(self.store.scan(schema.RESOURCES), [])

    def test_create_survives_tagging_failure(self):
        self.provider.tag_request.side_effect = UpstreamError("tagging throttled")
        resource = self._create()
        self.assertIsNotNone(self.repo.get(resource.id))

    def test_create_rejected_request_is_failed(self):
        self.provider.create_request.return_value = dict(open_request(), state="failed", status_code="bad-parameters")
        self.assertEqual(self._create().state, ResourceState.FAILED)

    # poll

    def test_poll_fulfils_and_learns_address(self):
        resource = self._fulfil(self._create())
        self.assertEqual(resource.state, ResourceState.FULFILLED)
        self.assertEqual(resource.provider_resource_id, "i-1")
        self.assertEqual(resource.public_address, "203.0.113.7")
        self.assertEqual(resource.public_dns_name, "ec2.example")
        self.provider.describe_resource.assert_called_with("i-1")

    def test_poll_never_clears_learned_fields(self):
        resource = self._fulfil(self._create())
        self.provider.describe_request.return_value = dict(active_request(), resource_id=None, status_code="fulfilled")
        self.provider.describe_resource.return_value = {}
        polled = self.manager.poll(resource.id)
        self.assertEqual(polled.provider_resource_id, "i-1")
        self.assertEqual(polled.public_address, "203.0.113.7")
        self.assertEqual(self.repo.get(resource.id).public_address, "203.0.113.7")

    def test_poll_refreshes_status_without_new_instance(self):
        resource = self._create()
        self.provider.describe_request.return_value = dict(open_request(), status_code="capacity-not-available")
        polled = self.manager.poll(resource.id)
        self.assertEqual(polled.status_code, "capacity-not-available")
        self.assertEqual(polled.state, ResourceState.EVALUATING)
        self.assertEqual(polled.version, 1)
        self.provider.describe_resource.assert_not_called()

    def test_poll_missing_resource(self):
        with self.assertRaises(NotFoundError):
            self.manager.poll("nope")

    def test_poll_checks_ownership(self):
        resource = self._create()
        with self.assertRaises(PermissionError):
            self.manager.poll(resource.id, caller_id="someone-else")
        self.provider.describe_request.assert_not_called()
        self.assertEqual(self.repo.get(resource.id).version, 0)

    def test_poll_terminal_resource_is_noop(self):
        resource = self.manager.terminate(self._create().id)
        polled = self.manager.poll(resource.id)
        self.assertEqual(polled.state, ResourceState.TERMINATED)
        self.provider.describe_request.assert_not_called()

    def test_poll_upstream_failure_leaves_record(self):
        resource = self._create()
        self.provider.describe_request.side_effect = UpstreamError("timeout")
        with self.assertRaises(UpstreamError):
            self.manager.poll(resource.id)
        self.assertEqual(self.repo.get(resource.id).version, 0)

    def test_provider_close_after_fulfilment_terminates(self):
        resource = self._fulfil(self._create())
        self.provider.describe_request.return_value = dict(
            active_request(), state="closed", status_code="instance-terminated-by-price"
        )
        self.assertEqual(self.manager.poll(resource.id).state, ResourceState.TERMINATED)

    # terminate

    def test_terminate_cancels_and_terminates(self):
        resource = self._fulfil(self._create())
        terminated = self.manager.terminate(resource.id, caller_id="user-12345678-abcd")
        self.assertEqual(terminated.state, ResourceState.TERMINATED)
        self.assertEqual(terminated.status_code, "terminated-by-user")
        self.provider.cancel_request.assert_called_once_with("sir-1")
        self.provider.terminate_resource.assert_called_once_with("i-1")

    def test_terminate_unfulfilled_only_cancels(self):
        resource = self._create()
        self.assertEqual(self.manager.terminate(resource.id).state, ResourceState.TERMINATED)
        self.provider.terminate_resource.assert_not_called()

    def test_terminate_failure_after_cancel_keeps_state(self):
        resource = self._fulfil(self._create())
        self.provider.terminate_resource.side_effect = UpstreamError("UnauthorizedOperation")
        with self.assertRaises(PartialFailure) as ctx:
            self.manager.terminate(resource.id)
        self.assertEqual(ctx.exception.failed, ["terminate_resource"])
        self.assertIsNone(ctx.exception.outcomes["cancel_request"])
        stored = self.repo.get(resource.id)
        self.assertEqual(stored.state, ResourceState.FULFILLED)
        self.assertEqual(stored.version, resource.version)

    def test_terminate_attempts_both_when_cancel_fails(self):
        resource = self._fulfil(self._create())
        self.provider.cancel_request.side_effect = UpstreamError("throttled")
        with self.assertRaises(UpstreamError):
            self.manager.terminate(resource.id)
        self.provider.terminate_resource.assert_called_once_with("i-1")
        self.assertEqual(self.repo.get(resource.id).state, ResourceState.FULFILLED)

    def test_terminate_twice_short_circuits(self):
        resource = self._fulfil(self._create())
        self.manager.terminate(resource.id)
        again = self.manager.terminate(resource.id)
        self.assertEqual(again.state, ResourceState.TERMINATED)
        self.assertEqual(self.provider.cancel_request.call_count, 1)
        self.assertEqual(self.provider.terminate_resource.call_count, 1)

    def test_terminate_checks_ownership(self):
        resource = self._create()
        with self.assertRaises(OwnershipError):
            self.manager.terminate(resource.id, caller_id="intruder")
        self.provider.cancel_request.assert_not_called()

    def test_concurrent_writers_conflict(self):
        resource = self._create()
        stale = self.repo.get(resource.id)
        self.provider.describe_request.return_value = open_request()
        self.manager.poll(resource.id)
        with self.assertRaises(ConflictError):
            self.repo.save(stale)

    # queries

    def test_get_and_list(self):
        first = self._create()
        self.provider.create_request.return_value = open_request("sir-2")
        second = self._create()
        self.assertEqual(self.manager.get(first.id).id, first.id)
        self.assertEqual(
            {r.id for r in self.manager.list_for_owner("user-12345678-abcd")}, {first.id, second.id}
        )
        with self.assertRaises(OwnershipError):
            self.manager.get(first.id, caller_id="other")


if __name__ == '__main__':
    unittest.main()
