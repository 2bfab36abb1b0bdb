# spotmonitor/config_loader.py
import os
from pathlib import Path

import yaml

from spotmonitor.errors import ValidationError

RUNTIME_CONFIG_PATH = Path("config/runtime.yaml")

# key -> (env var, default)
SETTINGS = {
    "store_backend": ("STORE_BACKEND", "json"),
    "json_store_path": ("JSON_STORE_PATH", "storage/spot_monitor.json"),
    "table_prefix": ("DYNAMODB_TABLE_PREFIX", "spot-monitor-dev"),
    "default_region": ("AWS_REGION", "us-east-1"),
    "dynamodb_region": ("DYNAMO_REGION", None),
    "aws_profile": ("AWS_PROFILE", None),
    "product_description": ("PRODUCT_DESCRIPTION", "Linux/UNIX"),
    "default_image_id": ("DEFAULT_IMAGE_ID", None),
    "notification_email_from": ("NOTIFICATION_EMAIL_FROM", "no-reply@spot-monitor.local"),
}

INT_SETTINGS = {
    "provider_timeout_seconds": ("PROVIDER_TIMEOUT_SECONDS", 10),
    "region_timeout_seconds": ("REGION_TIMEOUT_SECONDS", 30),
    "max_region_workers": ("MAX_REGION_WORKERS", 4),
    "max_channel_workers": ("MAX_CHANNEL_WORKERS", 3),
    "sample_window_minutes": ("SAMPLE_WINDOW_MINUTES", 60),
    "reference_window_hours": ("REFERENCE_WINDOW_HOURS", 24),
    "webhook_timeout_seconds": ("WEBHOOK_TIMEOUT_SECONDS", 5),
}


def _as_int(key, value):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an integer, got {value!r}", field=key, value=value)


def load_runtime_config(path=None):
    """
    Loads runtime configuration.
    Priority:
      1) Environment variables
      2) config/runtime.yaml (if present)
      3) built-in defaults
    """
    path = Path(path) if path else RUNTIME_CONFIG_PATH
    cfg = {}

    if path.exists():
        with open(path) as f:
            cfg = yaml.safe_load(f) or {}

    result = {}
    for key, (env, default) in SETTINGS.items():
        result[key] = os.getenv(env) or cfg.get(key) or default
    for key, (env, default) in INT_SETTINGS.items():
        raw = os.getenv(env)
        if raw is None:
            raw = cfg.get(key, default)
        result[key] = _as_int(key, raw)

    result["dynamodb_region"] = result["dynamodb_region"] or result["default_region"]
    result["raw"] = cfg
    return result
