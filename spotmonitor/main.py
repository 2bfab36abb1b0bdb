# spotmonitor/main.py
import argparse
import dataclasses
import json
import logging
import logging.config
import sys
from dataclasses import dataclass
from datetime import timedelta

import boto3
import yaml

from spotmonitor.catalog import list_supported_instance_families, list_supported_regions
from spotmonitor.channels import build_adapters
from spotmonitor.config_loader import load_runtime_config
from spotmonitor.errors import SpotMonitorError, ValidationError
from spotmonitor.lifecycle import ResourceLifecycleManager
from spotmonitor.models import LaunchOptions
from spotmonitor.notifier import NotificationDispatcher
from spotmonitor.providers import EC2ProviderFactory
from spotmonitor.recommender import InstanceRecommender
from spotmonitor.sampler import PriceSampler
from storage.dynamo_store import DynamoDocumentStore
from storage.json_store import JsonDocumentStore
from storage.notification_repository import NotificationLogRepository, NotificationPreferenceRepository
from storage.price_history import PriceHistoryStore
from storage.resource_repository import ResourceRepository

log = logging.getLogger("spotmonitor.main")


def load_logging_config(path="config/logging.yaml"):
    try:
        with open(path) as f:
            cfg = yaml.safe_load(f)
        logging.config.dictConfig(cfg)
    except (OSError, ValueError, TypeError, yaml.YAMLError):
        logging.basicConfig(
            level=logging.INFO,
            format='{"time":"%(asctime)s","level":"%(levelname)s","name":"%(name)s","msg":"%(message)s"}',
        )


@dataclass
class Services:
    config: dict
    history: PriceHistoryStore
    resources: ResourceRepository
    sampler: PriceSampler
    lifecycle: ResourceLifecycleManager
    dispatcher: NotificationDispatcher
    recommender: InstanceRecommender


def build_store(cfg):
    if cfg["store_backend"] == "dynamo":
        log.info("Using DynamoDB store: prefix=%s region=%s", cfg["table_prefix"], cfg["dynamodb_region"])
        return DynamoDocumentStore(cfg["table_prefix"], region_name=cfg["dynamodb_region"])
    log.info("Using JSON store: %s", cfg["json_store_path"])
    return JsonDocumentStore(cfg["json_store_path"])


def build_services(cfg, store=None, providers=None, adapters=None) -> Services:
    store = store or build_store(cfg)
    providers = providers or EC2ProviderFactory(
        timeout_seconds=cfg["provider_timeout_seconds"], profile=cfg.get("aws_profile")
    )
    if adapters is None:
        session = boto3.Session(profile_name=cfg["aws_profile"]) if cfg.get("aws_profile") else boto3.Session()
        adapters = build_adapters(
            session, cfg["default_region"], cfg["notification_email_from"], cfg["webhook_timeout_seconds"]
        )

    history = PriceHistoryStore(store)
    resources = ResourceRepository(store)
    dispatcher = NotificationDispatcher(
        NotificationPreferenceRepository(store),
        NotificationLogRepository(store),
        adapters,
        max_workers=cfg["max_channel_workers"],
    )
    sample_window = timedelta(minutes=cfg["sample_window_minutes"])
    sampler = PriceSampler(
        providers,
        history,
        dispatcher=dispatcher,
        product_description=cfg["product_description"],
        sample_window=sample_window,
        reference_window=timedelta(hours=cfg["reference_window_hours"]),
        max_workers=cfg["max_region_workers"],
        region_timeout=cfg["region_timeout_seconds"],
    )
    lifecycle = ResourceLifecycleManager(providers, resources, default_image_id=cfg.get("default_image_id"))
    return Services(
        config=cfg,
        history=history,
        resources=resources,
        sampler=sampler,
        lifecycle=lifecycle,
        dispatcher=dispatcher,
        recommender=InstanceRecommender(history, window=sample_window),
    )


def _plain(obj):
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {k: _plain(v) for k, v in dataclasses.asdict(obj).items()}
    if isinstance(obj, dict):
        return {k: _plain(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_plain(v) for v in obj]
    return obj


def emit(obj):
    print(json.dumps(_plain(obj), indent=2, default=str))


def _csv(value):
    return [v.strip() for v in value.split(",") if v.strip()] if value else None


def build_parser():
    parser = argparse.ArgumentParser(description="Spot price monitoring, spot resource lifecycle and alerts.")
    parser.add_argument("--config", default=None, help="Runtime config path (default config/runtime.yaml)")
    parser.add_argument("--logging-config", default="config/logging.yaml", help="Logging config path")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("regions", help="List supported regions")
    sub.add_parser("families", help="List supported instance families")

    p = sub.add_parser("sample", help="Sample current spot prices and detect anomalies")
    p.add_argument("--regions", help="Comma-separated regions (default: all supported)")
    p.add_argument("--families", help="Comma-separated instance families (default: all supported)")

    p = sub.add_parser("history", help="Show stored price history for a family")
    p.add_argument("--family", required=True)
    p.add_argument("--region")
    p.add_argument("--days", type=int, default=7)

    p = sub.add_parser("recommend", help="Rank instance families by price/performance")
    p.add_argument("--region")
    p.add_argument("--max-price")
    p.add_argument("--limit", type=int, default=5)

    p = sub.add_parser("create", help="Request a spot resource")
    p.add_argument("--owner", required=True)
    p.add_argument("--family", required=True)
    p.add_argument("--region", required=True)
    p.add_argument("--max-price", required=True)
    p.add_argument("--image-id")
    p.add_argument("--key-name")
    p.add_argument("--security-group-id")
    p.add_argument("--subnet-id")
    p.add_argument("--user-data-file", help="Path to a user-data script")
    p.add_argument("--workload-config", help="JSON object stored with the resource")

    for name, help_text in (
        ("poll", "Refresh a resource from the provider"),
        ("terminate", "Cancel and terminate a resource"),
        ("show", "Show a stored resource"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("resource_id")
        p.add_argument("--caller", help="Caller identity; must own the resource")

    p = sub.add_parser("list", help="List resources of an owner")
    p.add_argument("--owner", required=True)

    p = sub.add_parser("notify", help="Send a notification to an owner")
    p.add_argument("--owner", required=True)
    p.add_argument("--subject", required=True)
    p.add_argument("--message", required=True)
    p.add_argument("--severity", default="info")

    p = sub.add_parser("logs", help="Show notification logs of an owner")
    p.add_argument("--owner", required=True)
    p.add_argument("--limit", type=int, default=50)
    return parser


def run(args, services: Services):
    cmd = args.command
    if cmd == "regions":
        return list_supported_regions()
    if cmd == "families":
        return list_supported_instance_families()
    if cmd == "sample":
        return services.sampler.sample(_csv(args.regions), _csv(args.families))
    if cmd == "history":
        return services.sampler.history(
            args.family, args.region, args.days, default_region=services.config["default_region"]
        )
    if cmd == "recommend":
        return services.recommender.recommend_current(args.region, args.max_price, args.limit)
    if cmd == "create":
        user_data = None
        if args.user_data_file:
            with open(args.user_data_file) as f:
                user_data = f.read()
        options = LaunchOptions(
            image_id=args.image_id,
            key_name=args.key_name,
            security_group_id=args.security_group_id,
            subnet_id=args.subnet_id,
            user_data=user_data,
        )
        workload = None
        if args.workload_config:
            try:
                workload = json.loads(args.workload_config)
            except ValueError as e:
                raise ValidationError(f"Invalid workload config JSON: {e}", field="workload_config") from e
        return services.lifecycle.create(args.owner, args.family, args.region, args.max_price, options, workload)
    if cmd == "poll":
        return services.lifecycle.poll(args.resource_id, args.caller)
    if cmd == "terminate":
        return services.lifecycle.terminate(args.resource_id, args.caller)
    if cmd == "show":
        return services.lifecycle.get(args.resource_id, args.caller)
    if cmd == "list":
        return services.lifecycle.list_for_owner(args.owner)
    if cmd == "notify":
        return services.dispatcher.notify(args.owner, args.subject, args.message, args.severity)
    if cmd == "logs":
        return services.dispatcher.get_logs(args.owner, limit=args.limit)
    raise SystemExit(f"Unknown command {cmd}")


def main(argv=None):
    args = build_parser().parse_args(argv)
    load_logging_config(args.logging_config)
    try:
        services = build_services(load_runtime_config(args.config))
        emit(run(args, services))
    except SpotMonitorError as e:
        log.error("%s failed: %s", args.command, e)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
