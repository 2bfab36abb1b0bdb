import argparse

import boto3
from botocore.exceptions import ClientError

from storage.schema import NUMERIC_ATTRIBUTES, TABLES, table_name


def _attr_type(name):
    return "N" if name in NUMERIC_ATTRIBUTES else "S"


def table_definition(prefix, base):
    hash_key, indexes = TABLES[base]
    attributes = {hash_key}
    gsis = []
    for index_name, index_hash, index_range in indexes:
        key_schema = [{"AttributeName": index_hash, "KeyType": "HASH"}]
        attributes.add(index_hash)
        if index_range:
            key_schema.append({"AttributeName": index_range, "KeyType": "RANGE"})
            attributes.add(index_range)
        gsis.append({"IndexName": index_name, "KeySchema": key_schema, "Projection": {"ProjectionType": "ALL"}})

    definition = {
        "TableName": table_name(prefix, base),
        "KeySchema": [{"AttributeName": hash_key, "KeyType": "HASH"}],
        "AttributeDefinitions": [
            {"AttributeName": a, "AttributeType": _attr_type(a)} for a in sorted(attributes)
        ],
        "BillingMode": "PAY_PER_REQUEST",
    }
    if gsis:
        definition["GlobalSecondaryIndexes"] = gsis
    return definition


def create_tables(prefix, region, profile=None):
    session = boto3.Session(profile_name=profile, region_name=region) if profile else boto3.Session(region_name=region)
    dynamodb = session.client("dynamodb", region_name=region)

    created = []
    for base in TABLES:
        definition = table_definition(prefix, base)
        name = definition["TableName"]
        try:
            dynamodb.create_table(**definition)
        except ClientError as e:
            if e.response["Error"]["Code"] == "ResourceInUseException":
                print(f"Table exists: {name}")
                continue
            raise
        print(f"Creating table {name}...")
        created.append(name)

    waiter = dynamodb.get_waiter("table_exists")
    for name in created:
        waiter.wait(TableName=name)
        print(f"✅ Table ready: {name}")
    return created


def main():
    parser = argparse.ArgumentParser(description="Create the DynamoDB tables used by the dynamo store backend.")
    parser.add_argument("--prefix", default="spot-monitor-dev", help="Table name prefix")
    parser.add_argument("--region", required=True, help="AWS region for the tables")
    parser.add_argument("--profile", default=None, help="Optional AWS CLI profile")
    args = parser.parse_args()

    create_tables(args.prefix, args.region, profile=args.profile)


if __name__ == "__main__":
    main()
