# storage/schema.py
"""
Table layout shared by both document store backends and scripts/create_tables.py.

Each entry: base table name -> (hash key, [(index name, index hash key, index range key | None)]).
Physical DynamoDB tables are named "<prefix>-<base name>".
"""

PRICE_HISTORY = "price-history"
RESOURCES = "resources"
NOTIFICATION_PREFERENCES = "notification-preferences"
NOTIFICATION_LOGS = "notification-logs"

PRICE_INDEX = "InstanceFamilyObservedAtIndex"
OWNER_INDEX = "OwnerIdIndex"
LOG_OWNER_INDEX = "OwnerIdLoggedAtIndex"

TABLES = {
    PRICE_HISTORY: ("id", [(PRICE_INDEX, "instance_family", "observed_at")]),
    RESOURCES: ("id", [(OWNER_INDEX, "owner_id", None)]),
    NOTIFICATION_PREFERENCES: ("owner_id", []),
    NOTIFICATION_LOGS: ("id", [(LOG_OWNER_INDEX, "owner_id", "logged_at")]),
}

# Attribute types for keys used in the table/index definitions.
NUMERIC_ATTRIBUTES = {"observed_at"}


def key_name(table):
    return TABLES[table][0]


def table_name(prefix, table):
    return f"{prefix}-{table}" if prefix else table
