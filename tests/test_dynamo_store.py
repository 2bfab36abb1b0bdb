import unittest
from unittest.mock import MagicMock

from botocore.exceptions import ClientError

from spotmonitor.errors import ConflictError, NotFoundError, UpstreamError
from storage import schema
from storage.dynamo_store import DynamoDocumentStore


def client_error(code):
    return ClientError({"Error": {"Code": code, "Message": code}}, "Op")


class TestDynamoDocumentStore(unittest.TestCase):
    def setUp(self):
        self.session = MagicMock()
        self.table = self.session.resource.return_value.Table.return_value
        self.store = DynamoDocumentStore("spot-monitor-test", region_name="us-east-1", session=self.session)

    def test_table_names_are_prefixed(self):
        self.store.get(schema.RESOURCES, {"id": "r-1"})
        self.session.resource.return_value.Table.assert_called_with("spot-monitor-test-resources")

    def test_get_returns_item_or_none(self):
        self.table.get_item.return_value = {"Item": {"id": "r-1"}}
        self.assertEqual(self.store.get(schema.RESOURCES, {"id": "r-1"}), {"id": "r-1"})
        self.table.get_item.return_value = {}
        self.assertIsNone(self.store.get(schema.RESOURCES, {"id": "r-1"}))

    def test_get_failure_is_upstream_error(self):
        self.table.get_item.side_effect = client_error("ProvisionedThroughputExceededException")
        with self.assertRaises(UpstreamError):
            self.store.get(schema.RESOURCES, {"id": "r-1"})

    def test_put_if_absent_conflict(self):
        self.table.put_item.side_effect = client_error("ConditionalCheckFailedException")
        with self.assertRaises(ConflictError):
            self.store.put(schema.RESOURCES, {"id": "r-1"}, if_absent=True)
        kwargs = self.table.put_item.call_args.kwargs
        self.assertEqual(kwargs["ConditionExpression"], "attribute_not_exists(id)")

    def test_update_is_conditional_on_version(self):
        self.table.update_item.return_value = {"Attributes": {"id": "r-1", "version": 4}}
        item = self.store.update(schema.RESOURCES, {"id": "r-1"}, {"state": "fulfilled"}, expected_version=3)
        self.assertEqual(item["version"], 4)
        kwargs = self.table.update_item.call_args.kwargs
        self.assertEqual(kwargs["ExpressionAttributeValues"][":expected"], 3)
        self.assertEqual(kwargs["ExpressionAttributeValues"][":version"], 4)
        self.assertIn("fulfilled", kwargs["ExpressionAttributeValues"].values())
        self.table.get_item.assert_not_called()

    def test_update_reads_version_when_not_given(self):
        self.table.get_item.return_value = {"Item": {"id": "r-1", "version": 2}}
        self.table.update_item.return_value = {"Attributes": {"id": "r-1", "version": 3}}
        self.store.update(schema.RESOURCES, {"id": "r-1"}, {"state": "fulfilled"})
        kwargs = self.table.update_item.call_args.kwargs
        self.assertEqual(kwargs["ExpressionAttributeValues"][":expected"], 2)

    def test_update_missing_item(self):
        self.table.get_item.return_value = {}
        with self.assertRaises(NotFoundError):
            self.store.update(schema.RESOURCES, {"id": "r-1"}, {"state": "fulfilled"})

    def test_update_conflict(self):
        self.table.update_item.side_effect = client_error("ConditionalCheckFailedException")
        with self.assertRaises(ConflictError):
            self.store.update(schema.RESOURCES, {"id": "r-1"}, {"state": "fulfilled"}, expected_version=1)

    def test_query_pages_until_limit(self):
        self.table.query.side_effect = [
            {"Items": [], "LastEvaluatedKey": {"id": "a"}},
            {"Items": [{"id": "p-1"}, {"id": "p-2"}], "LastEvaluatedKey": {"id": "b"}},
        ]
        items = self.store.query(
            schema.PRICE_HISTORY, schema.PRICE_INDEX, "instance_family", "g5.xlarge",
            range_name="observed_at", lower=1, filters={"zone": "us-east-1a"}, descending=True, limit=1,
        )
        self.assertEqual(items, [{"id": "p-1"}])
        self.assertEqual(self.table.query.call_count, 2)
        first = self.table.query.call_args_list[0].kwargs
        self.assertEqual(first["IndexName"], schema.PRICE_INDEX)
        self.assertFalse(first["ScanIndexForward"])
        self.assertIn("FilterExpression", first)

    def test_scan_paginates(self):
        self.table.scan.side_effect = [
            {"Items": [{"id": "1"}], "LastEvaluatedKey": {"id": "1"}},
            {"Items": [{"id": "2"}]},
        ]
        self.assertEqual(self.store.scan(schema.NOTIFICATION_PREFERENCES), [{"id": "1"}, {"id": "2"}])


if __name__ == '__main__':
    unittest.main()
