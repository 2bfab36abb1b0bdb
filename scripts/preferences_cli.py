import argparse
import json

from spotmonitor.config_loader import load_runtime_config
from spotmonitor.errors import SpotMonitorError
from spotmonitor.main import build_store
from spotmonitor.notifier import NotificationDispatcher
from storage.notification_repository import (
    NotificationLogRepository,
    NotificationPreferenceRepository,
    channel_to_dict,
)


def make_dispatcher(cfg):
    store = build_store(cfg)
    # Preference management never delivers, so no channel adapters are needed.
    return NotificationDispatcher(NotificationPreferenceRepository(store), NotificationLogRepository(store), {})


def parse_channel_arg(value):
    """kind=address, e.g. email=ops@example.com, sms=+15550100, chat=https://hooks..."""
    kind, sep, target = value.partition("=")
    if not sep:
        raise argparse.ArgumentTypeError(f"Expected kind=target, got {value}")
    field_name = "webhook_url" if kind == "chat" else "address"
    return {"kind": kind, field_name: target}


def main():
    parser = argparse.ArgumentParser(description="Manage notification preferences of an owner.")
    parser.add_argument("--config", default=None, help="Runtime config path")
    subparsers = parser.add_subparsers(dest="command", required=True)

    save = subparsers.add_parser("save", help="Create or replace preferences")
    save.add_argument("--owner", required=True)
    save.add_argument("--channel", action="append", type=parse_channel_arg, default=[],
                      help="kind=target; repeatable")
    group = save.add_mutually_exclusive_group()
    group.add_argument("--severities", help="Comma-separated allowed severities")
    group.add_argument("--min-severity", help="Lowest severity to receive")
    save.add_argument("--tags", help="Comma-separated tags for targeted system alerts")

    show = subparsers.add_parser("show", help="Show preferences (defaults if none saved)")
    show.add_argument("--owner", required=True)

    delete = subparsers.add_parser("delete", help="Delete preferences")
    delete.add_argument("--owner", required=True)

    args = parser.parse_args()
    dispatcher = make_dispatcher(load_runtime_config(args.config))

    try:
        if args.command == "save":
            severities = [s.strip() for s in args.severities.split(",")] if args.severities else None
            tags = [t.strip() for t in args.tags.split(",") if t.strip()] if args.tags else None
            pref = dispatcher.save_preferences(
                args.owner, args.channel, severities=severities, min_severity=args.min_severity, tags=tags
            )
            print(f"Saved preferences for {pref.owner_id}")
        elif args.command == "show":
            pref = dispatcher.get_preferences(args.owner)
            print(json.dumps({
                "owner_id": pref.owner_id,
                "channels": [channel_to_dict(c) for c in pref.channels],
                "severities": pref.severities,
                "tags": pref.tags,
            }, indent=2))
        elif args.command == "delete":
            dispatcher.delete_preferences(args.owner)
            print(f"Deleted preferences for {args.owner}")
    except SpotMonitorError as e:
        raise SystemExit(f"❌ {e}")


if __name__ == "__main__":
    main()
