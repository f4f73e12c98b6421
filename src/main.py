"""
People counter entrypoint.

Loads layered configuration, detects the resource tier and serves the REST
API, WebSocket events and the live feed from one uvicorn process.

Usage:
    python src/main.py --config config/config.yaml

Arguments:
    --config: Path to configuration file
    --tier: Force the resource tier (constrained|standard)
    --low-power: Start in low-power mode
    --no-autostart: Serve the API without opening the camera
"""

import argparse
import logging
import os
import sys
from typing import Any, Dict, Optional, Tuple

import uvicorn
import yaml

from models.config import Config
from models.tier import ResourceTier, detect_resource_tier
from ops.logging import setup_logging
from web.app import create_app
from web.state import state as web_state

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into base and return base."""
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v
    return base


def _read_yaml(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load configuration with layering:
    - `config/default.yaml` (checked in)
    - `config/config.yaml` (local overrides)
    - plus any explicitly provided `--config` path (treated as overrides)
    """
    config_dir = os.path.dirname(config_path)
    local_overrides_path = os.path.join(config_dir, "config.yaml")
    try:
        merged = _deep_merge(
            _read_yaml(os.path.join(config_dir, "default.yaml")),
            _read_yaml(local_overrides_path),
        )
        if os.path.abspath(config_path) != os.path.abspath(local_overrides_path):
            merged = _deep_merge(merged, _read_yaml(config_path))
        return merged
    except (OSError, yaml.YAMLError) as e:
        logging.error(f"Failed to load configuration: {e}")
        sys.exit(1)


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def validate_config(config: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate configuration structure and values.

    Args:
        config: Configuration dictionary

    Returns:
        Tuple of (is_valid, error_message)
    """
    camera = config.get("camera", {}) or {}
    if camera.get("backend", "opencv") not in ("opencv", "picamera2"):
        return False, "camera.backend must be one of: opencv, picamera2"
    device_id = camera.get("device_id")
    if device_id is not None:
        if not isinstance(device_id, (int, str)) or isinstance(device_id, bool):
            return False, "camera.device_id must be an integer (index) or string (path/URL)"
        if isinstance(device_id, int) and device_id < 0:
            return False, "camera.device_id integer must be non-negative"
    if "acquire_timeout_s" in camera and (not _is_number(camera["acquire_timeout_s"]) or camera["acquire_timeout_s"] <= 0):
        return False, "camera.acquire_timeout_s must be a positive number"

    tier = config.get("tier", {}) or {}
    if tier.get("override", "auto") not in ("auto", ResourceTier.CONSTRAINED.value, ResourceTier.STANDARD.value):
        return False, "tier.override must be one of: auto, constrained, standard"

    models = config.get("models", {}) or {}
    for key in ("score_threshold", "iou_threshold"):
        if key in models and (not _is_number(models[key]) or not (0 <= models[key] <= 1)):
            return False, f"models.{key} must be between 0 and 1"
    if "load_timeout_s" in models and (not _is_number(models["load_timeout_s"]) or models["load_timeout_s"] <= 0):
        return False, "models.load_timeout_s must be a positive number"
    if "count_labels" in models and not isinstance(models["count_labels"], list):
        return False, "models.count_labels must be a list of labels"

    pump = config.get("pump", {}) or {}
    quality = pump.get("jpeg_quality", 80)
    if not isinstance(quality, int) or not (1 <= quality <= 100):
        return False, "pump.jpeg_quality must be an integer between 1 and 100"

    aggregator = config.get("aggregator", {}) or {}
    sink = aggregator.get("sink", "database")
    if sink not in ("database", "http"):
        return False, "aggregator.sink must be one of: database, http"
    if sink == "http" and not aggregator.get("api_url"):
        return False, "aggregator.api_url is required when aggregator.sink is 'http'"

    locations = config.get("locations") or []
    if not isinstance(locations, list):
        return False, "locations must be a list"
    for loc in locations:
        if not isinstance(loc, dict) or not loc.get("id") or not loc.get("name"):
            return False, "each location needs an id and a name"
        capacity = loc.get("capacity")
        if not isinstance(capacity, int) or capacity <= 0:
            return False, f"location '{loc.get('id')}' capacity must be a positive integer"
    location_id = aggregator.get("location_id", "default")
    if locations and location_id not in [loc["id"] for loc in locations]:
        return False, f"aggregator.location_id '{location_id}' is not a configured location"

    storage = config.get("storage", {}) or {}
    if "local_database_path" in storage and not isinstance(storage["local_database_path"], str):
        return False, "storage.local_database_path must be a string"
    if "retention_days" in storage:
        if not isinstance(storage["retention_days"], int) or storage["retention_days"] <= 0:
            return False, "storage.retention_days must be a positive integer"

    if config.get("log_level", "INFO") not in VALID_LOG_LEVELS:
        return False, f"log_level must be one of: {', '.join(VALID_LOG_LEVELS)}"

    return True, None


def main():
    """Parse arguments, configure logging and serve the app until interrupted."""
    parser = argparse.ArgumentParser(description="People Counter")
    parser.add_argument("--config", type=str, default="config/config.yaml",
                        help="Path to configuration file")
    parser.add_argument("--tier", choices=[t.value for t in ResourceTier],
                        help="Force the resource tier")
    parser.add_argument("--low-power", action="store_true",
                        help="Start in low-power mode")
    parser.add_argument("--no-autostart", action="store_true",
                        help="Serve the API without opening the camera")
    args = parser.parse_args()

    raw = load_config(args.config)
    is_valid, error_msg = validate_config(raw)
    if not is_valid:
        logging.error(f"Configuration validation failed: {error_msg}")
        sys.exit(1)

    config = Config.from_dict(raw)
    if args.tier:
        config.tier.override = args.tier
    if args.low_power:
        config.tier.low_power = True
    if args.no_autostart:
        config.web.autostart = False

    setup_logging(config.log_path, config.log_level)

    data_dir = os.path.dirname(config.storage.local_database_path)
    if data_dir and not os.path.exists(data_dir):
        os.makedirs(data_dir)

    logging.info("Starting People Counter")
    web_state.set_config(config, args.config)
    web_state.tier = detect_resource_tier(override=config.tier.override)

    uvicorn.run(
        create_app(),
        host=config.web.host,
        port=config.web.port,
        log_level=config.log_level.lower(),
    )
    logging.info("People Counter stopped")


if __name__ == "__main__":
    main()
