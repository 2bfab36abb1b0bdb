# storage/notification_repository.py
import json

from spotmonitor.models import CHANNEL_TYPES, NotificationLogEntry, NotificationPreference
from spotmonitor.utils import from_iso, to_iso
from storage import schema


def channel_to_dict(channel):
    _, field_name = CHANNEL_TYPES[channel.kind]
    return {"kind": channel.kind, field_name: getattr(channel, field_name)}


def channel_from_dict(data):
    cls, field_name = CHANNEL_TYPES[data["kind"]]
    return cls(data[field_name])


class NotificationPreferenceRepository:
    """One preference record per owner, keyed by owner id."""

    def __init__(self, store):
        self.store = store

    @staticmethod
    def _from_item(item):
        return NotificationPreference(
            owner_id=item["owner_id"],
            channels=[channel_from_dict(c) for c in item.get("channels") or []],
            severities=list(item.get("severities") or []),
            tags=list(item.get("tags") or []),
            created_at=from_iso(item.get("created_at")),
            updated_at=from_iso(item.get("updated_at")),
        )

    def get(self, owner_id):
        item = self.store.get(schema.NOTIFICATION_PREFERENCES, {"owner_id": owner_id})
        return self._from_item(item) if item else None

    def save(self, pref: NotificationPreference):
        self.store.put(schema.NOTIFICATION_PREFERENCES, {
            "owner_id": pref.owner_id,
            "channels": [channel_to_dict(c) for c in pref.channels],
            "severities": list(pref.severities),
            "tags": list(pref.tags),
            "created_at": to_iso(pref.created_at),
            "updated_at": to_iso(pref.updated_at),
        })
        return pref

    def delete(self, owner_id):
        self.store.delete(schema.NOTIFICATION_PREFERENCES, {"owner_id": owner_id})

    def all(self):
        return [self._from_item(i) for i in self.store.scan(schema.NOTIFICATION_PREFERENCES)]


class NotificationLogRepository:
    """Append-only delivery log."""

    def __init__(self, store):
        self.store = store

    def append(self, entry: NotificationLogEntry):
        self.store.put(schema.NOTIFICATION_LOGS, {
            "id": entry.id,
            "owner_id": entry.owner_id,
            "subject": entry.subject,
            "message": entry.message,
            "severity": entry.severity,
            "metadata": json.dumps(entry.metadata, default=str),
            "results": json.dumps([r.as_dict() for r in entry.results], default=str),
            "logged_at": to_iso(entry.logged_at),
        }, if_absent=True)
        return entry

    def list_for_owner(self, owner_id, limit=50, start=None, end=None):
        items = self.store.query(
            schema.NOTIFICATION_LOGS,
            schema.LOG_OWNER_INDEX,
            "owner_id",
            owner_id,
            range_name="logged_at",
            lower=to_iso(start),
            upper=to_iso(end),
            descending=True,
            limit=limit,
        )
        return [
            {
                **item,
                "metadata": json.loads(item["metadata"]) if item.get("metadata") else {},
                "results": json.loads(item["results"]) if item.get("results") else [],
            }
            for item in items
        ]
