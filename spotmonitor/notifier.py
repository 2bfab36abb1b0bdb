# spotmonitor/notifier.py
import logging
from concurrent.futures import ThreadPoolExecutor

from spotmonitor.errors import NotFoundError, ValidationError
from spotmonitor.models import (
    CHANNEL_TYPES,
    ChannelResult,
    DispatchResult,
    NotificationLogEntry,
    NotificationPreference,
    Severity,
)
from spotmonitor.utils import new_id, utcnow

log = logging.getLogger(__name__)

ALL_SEVERITIES = [s.value for s in Severity.ordered()]


def _severity(value, field="severity"):
    try:
        return Severity(value).value
    except ValueError:
        raise ValidationError(f"Invalid severity: {value}", field=field, value=value)


def parse_channel(raw):
    """
    Build a channel variant from {"kind": ..., <required field>: ...}.
    Raises ValidationError for unknown kinds or a missing required field.
    """
    if not isinstance(raw, dict):
        raise ValidationError(f"Invalid notification channel entry: {raw!r}", field="channels", value=raw)
    kind = raw.get("kind")
    if kind not in CHANNEL_TYPES:
        raise ValidationError(f"Invalid notification channel: {kind}", field="kind", value=kind)
    cls, field_name = CHANNEL_TYPES[kind]
    value = raw.get(field_name)
    if not value:
        raise ValidationError(
            f"{field_name} is required for {kind} notifications", field=field_name, value=value
        )
    return cls(value)


class NotificationDispatcher:
    def __init__(self, preferences, logs, adapters, max_workers=3, clock=utcnow):
        self.preferences = preferences
        self.logs = logs
        self.adapters = adapters
        self.max_workers = max_workers
        self.clock = clock

    # preferences

    def get_preferences(self, owner_id) -> NotificationPreference:
        """Stored preferences, or a default with no channels and every severity allowed."""
        pref = self.preferences.get(owner_id)
        if pref is None:
            return NotificationPreference(owner_id=owner_id, channels=[], severities=list(ALL_SEVERITIES))
        return pref

    def save_preferences(self, owner_id, channels=None, severities=None, min_severity=None, tags=None):
        parsed = [parse_channel(c) for c in channels or []]
        if severities is not None and min_severity is not None:
            raise ValidationError("Pass either severities or min_severity, not both", field="severities")
        if min_severity is not None:
            allowed = [s.value for s in Severity.at_least(_severity(min_severity, "min_severity"))]
        elif severities is not None:
            allowed = [_severity(s, "severities") for s in severities]
        else:
            allowed = list(ALL_SEVERITIES)

        existing = self.preferences.get(owner_id)
        now = self.clock()
        pref = NotificationPreference(
            owner_id=owner_id,
            channels=parsed,
            severities=allowed,
            tags=sorted(set(tags or [])),
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        self.preferences.save(pref)
        log.info("Saved notification preferences for %s (%s channels)", owner_id, len(parsed))
        return pref

    def delete_preferences(self, owner_id):
        if self.preferences.get(owner_id) is None:
            raise NotFoundError("NotificationPreference", owner_id)
        self.preferences.delete(owner_id)
        log.info("Deleted notification preferences for %s", owner_id)

    # delivery

    def _send(self, channel, subject, message, severity, metadata) -> ChannelResult:
        adapter = self.adapters.get(channel.kind)
        if adapter is None:
            return ChannelResult(kind=channel.kind, success=False, error=f"no adapter for {channel.kind}")
        try:
            payload = adapter.send(channel, subject, message, severity, metadata)
        except Exception as e:
            log.error("Error sending %s notification: %s", channel.kind, e)
            return ChannelResult(kind=channel.kind, success=False, error=str(e))
        return ChannelResult(kind=channel.kind, success=True, payload=payload)

    def notify(self, owner_id, subject, message, severity=Severity.INFO, metadata=None) -> DispatchResult:
        severity = _severity(severity)
        metadata = metadata or {}
        pref = self.get_preferences(owner_id)

        if not pref.allows(severity):
            log.info("Owner %s does not accept %s notifications", owner_id, severity)
            return DispatchResult(accepted=False, reason=f"owner does not accept {severity} notifications")
        if not pref.channels:
            log.warning("No notification channels configured for %s", owner_id)
            return DispatchResult(accepted=False, reason="no notification channels configured")

        workers = max(1, min(self.max_workers, len(pref.channels)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [
                executor.submit(self._send, channel, subject, message, severity, metadata)
                for channel in pref.channels
            ]
            results = [f.result() for f in futures]

        self._log(owner_id, subject, message, severity, metadata, results)
        return DispatchResult(accepted=True, results=results)

    def _log(self, owner_id, subject, message, severity, metadata, results):
        entry = NotificationLogEntry(
            id=new_id(),
            owner_id=owner_id,
            subject=subject,
            message=message,
            severity=severity,
            metadata=metadata,
            results=results,
            logged_at=self.clock(),
        )
        try:
            self.logs.append(entry)
        except Exception:
            log.exception("Error logging notification for %s", owner_id)

    def notify_system(self, subject, message, severity=Severity.INFO, metadata=None, tags=None):
        """
        Notify every owner whose preferences accept `severity` and, when tags
        are given, carry at least one of them.
        """
        severity = _severity(severity)
        prefs = self.preferences.all()
        eligible = [p for p in prefs if p.allows(severity) and p.matches_tags(tags)]
        log.info(
            "Sending system notification %r (%s) to %s of %s owners", subject, severity, len(eligible), len(prefs)
        )
        results = {}
        for pref in eligible:
            try:
                results[pref.owner_id] = self.notify(pref.owner_id, subject, message, severity, metadata)
            except Exception as e:
                log.error("System notification to %s failed: %s", pref.owner_id, e)
                results[pref.owner_id] = DispatchResult(accepted=False, reason=str(e))
        return {
            "total": len(eligible),
            "success_count": sum(1 for r in results.values() if r.accepted),
            "failure_count": sum(1 for r in results.values() if not r.accepted),
            "results": results,
        }

    def get_logs(self, owner_id, limit=50, start=None, end=None):
        return self.logs.list_for_owner(owner_id, limit=limit, start=start, end=end)
