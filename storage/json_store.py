# storage/json_store.py
import json
import os
from decimal import Decimal
from threading import Lock

from spotmonitor.errors import ConflictError, NotFoundError
from storage.schema import key_name


def _encode(value):
    if isinstance(value, Decimal):
        return {"__decimal__": str(value)}
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _decode(obj):
    if set(obj) == {"__decimal__"}:
        return Decimal(obj["__decimal__"])
    return obj


def _matches(item, filters):
    return all(item.get(k) == v for k, v in (filters or {}).items())


class JsonDocumentStore:
    """
    File-backed document store with the same surface as DynamoDocumentStore.
    Intended for local runs and tests; every call reads and rewrites the file.
    """

    def __init__(self, path="storage/spot_monitor.json"):
        self.path = path
        self.lock = Lock()

    def _load(self):
        if not os.path.exists(self.path) or os.path.getsize(self.path) == 0:
            return {}
        with open(self.path) as f:
            return json.load(f, object_hook=_decode)

    def _save(self, data):
        with open(self.path, "w") as f:
            json.dump(data, f, indent=2, default=_encode)

    def get(self, table, key):
        with self.lock:
            return self._load().get(table, {}).get(str(key[key_name(table)]))

    def put(self, table, item, if_absent=False):
        with self.lock:
            data = self._load()
            rows = data.setdefault(table, {})
            k = str(item[key_name(table)])
            if if_absent and k in rows:
                raise ConflictError(f"{table} item {k} already exists")
            rows[k] = dict(item)
            self._save(data)
        return item

    def update(self, table, key, attrs, expected_version=None):
        """
        Set `attrs` on an existing item and bump its version.
        With `expected_version`, fail with ConflictError if the stored version differs.
        """
        with self.lock:
            data = self._load()
            rows = data.get(table, {})
            k = str(key[key_name(table)])
            if k not in rows:
                raise NotFoundError(table, k)
            item = rows[k]
            current_version = item.get("version", 0)
            if expected_version is not None and current_version != expected_version:
                raise ConflictError(f"Optimistic lock failed for {table} item {k}")
            item.update(attrs)
            item["version"] = current_version + 1
            self._save(data)
            return dict(item)

    def delete(self, table, key):
        with self.lock:
            data = self._load()
            data.get(table, {}).pop(str(key[key_name(table)]), None)
            self._save(data)

    def query(self, table, index, hash_key, hash_value, range_name=None, lower=None, upper=None,
              filters=None, descending=False, limit=None):
        with self.lock:
            rows = list(self._load().get(table, {}).values())
        items = [r for r in rows if r.get(hash_key) == hash_value and _matches(r, filters)]
        if range_name:
            if lower is not None:
                items = [r for r in items if r.get(range_name) >= lower]
            if upper is not None:
                items = [r for r in items if r.get(range_name) <= upper]
            items.sort(key=lambda r: r.get(range_name), reverse=descending)
        return items[:limit] if limit else items

    def scan(self, table, filters=None):
        with self.lock:
            rows = list(self._load().get(table, {}).values())
        return [r for r in rows if _matches(r, filters)]
