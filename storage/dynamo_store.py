import logging

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import BotoCoreError, ClientError

from spotmonitor.errors import ConflictError, NotFoundError, UpstreamError
from storage.schema import key_name, table_name

log = logging.getLogger(__name__)


def _filter_expression(filters):
    expr = None
    for attr, value in (filters or {}).items():
        cond = Attr(attr).eq(value)
        expr = cond if expr is None else expr & cond
    return expr


class DynamoDocumentStore:
    """
    DynamoDB-backed document store.

    Tables are created by scripts/create_tables.py from storage/schema.py.
    Versioned updates follow the same optimistic-lock scheme for every table:
    a numeric `version` attribute bumped on each update.
    """

    def __init__(self, table_prefix: str | None = None, region_name: str | None = None, session=None):
        self.table_prefix = table_prefix
        session = session or boto3.Session(region_name=region_name)
        self.dynamodb = session.resource("dynamodb", region_name=region_name)
        self._tables = {}

    def _table(self, table):
        if table not in self._tables:
            self._tables[table] = self.dynamodb.Table(table_name(self.table_prefix, table))
        return self._tables[table]

    def get(self, table, key):
        try:
            resp = self._table(table).get_item(Key=key)
        except (ClientError, BotoCoreError) as e:
            raise UpstreamError(f"Dynamo get failed: {e}", operation="get_item") from e
        return resp.get("Item")

    def put(self, table, item, if_absent=False):
        kwargs = {"Item": item}
        if if_absent:
            kwargs["ConditionExpression"] = f"attribute_not_exists({key_name(table)})"
        try:
            self._table(table).put_item(**kwargs)
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                raise ConflictError(f"{table} item {item[key_name(table)]} already exists") from e
            raise UpstreamError(f"Dynamo put failed: {e}", operation="put_item") from e
        except BotoCoreError as e:
            raise UpstreamError(f"Dynamo put failed: {e}", operation="put_item") from e
        return item

    def _current_version(self, table, key):
        item = self.get(table, key)
        if item is None:
            raise NotFoundError(table, key[key_name(table)])
        return item.get("version", 0)

    def update(self, table, key, attrs, expected_version=None):
        """
        Update attributes with optimistic locking (version check).
        If expected_version is None, it reads the current version first.
        """
        current_version = expected_version
        if current_version is None:
            current_version = self._current_version(table, key)
        new_version = int(current_version or 0) + 1

        names = {"#version": "version", "#pk": key_name(table)}
        values = {":version": new_version, ":expected": current_version}
        expr_parts = ["#version = :version"]
        for i, (k, v) in enumerate(attrs.items()):
            names[f"#a{i}"] = k
            values[f":a{i}"] = v
            expr_parts.append(f"#a{i} = :a{i}")

        if current_version:
            condition = "attribute_exists(#pk) AND #version = :expected"
        else:
            condition = "attribute_exists(#pk) AND (attribute_not_exists(#version) OR #version = :expected)"

        try:
            resp = self._table(table).update_item(
                Key=key,
                UpdateExpression="SET " + ", ".join(expr_parts),
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ConditionExpression=condition,
                ReturnValues="ALL_NEW",
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                raise ConflictError(f"Optimistic lock failed for {table} item {key[key_name(table)]}") from e
            raise UpstreamError(f"Dynamo update failed: {e}", operation="update_item") from e
        except BotoCoreError as e:
            raise UpstreamError(f"Dynamo update failed: {e}", operation="update_item") from e
        return resp["Attributes"]

    def delete(self, table, key):
        try:
            self._table(table).delete_item(Key=key)
        except (ClientError, BotoCoreError) as e:
            raise UpstreamError(f"Dynamo delete failed: {e}", operation="delete_item") from e

    def query(self, table, index, hash_key, hash_value, range_name=None, lower=None, upper=None,
              filters=None, descending=False, limit=None):
        cond = Key(hash_key).eq(hash_value)
        if range_name and lower is not None and upper is not None:
            cond = cond & Key(range_name).between(lower, upper)
        elif range_name and lower is not None:
            cond = cond & Key(range_name).gte(lower)
        elif range_name and upper is not None:
            cond = cond & Key(range_name).lte(upper)

        kwargs = {"IndexName": index, "KeyConditionExpression": cond, "ScanIndexForward": not descending}
        filter_expr = _filter_expression(filters)
        if filter_expr is not None:
            kwargs["FilterExpression"] = filter_expr

        # Dynamo applies Limit before FilterExpression, so page until enough items match.
        items = []
        try:
            while True:
                resp = self._table(table).query(**kwargs)
                items.extend(resp.get("Items", []))
                if limit and len(items) >= limit:
                    break
                if "LastEvaluatedKey" in resp:
                    kwargs["ExclusiveStartKey"] = resp["LastEvaluatedKey"]
                else:
                    break
        except (ClientError, BotoCoreError) as e:
            raise UpstreamError(f"Dynamo query failed: {e}", operation="query") from e
        return items[:limit] if limit else items

    def scan(self, table, filters=None):
        """
        Full table scan with an optional equality filter.
        """
        items = []
        scan_kwargs = {}
        filter_expr = _filter_expression(filters)
        if filter_expr is not None:
            scan_kwargs["FilterExpression"] = filter_expr
        try:
            while True:
                resp = self._table(table).scan(**scan_kwargs)
                items.extend(resp.get("Items", []))
                if "LastEvaluatedKey" in resp:
                    scan_kwargs["ExclusiveStartKey"] = resp["LastEvaluatedKey"]
                else:
                    break
        except (ClientError, BotoCoreError) as e:
            raise UpstreamError(f"Dynamo scan failed: {e}", operation="scan") from e
        log.debug("Scanned %s items from %s", len(items), table)
        return items
