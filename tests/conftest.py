"""
Pytest configuration and shared fixtures.
"""

import os
import sys

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from models.count_event import Location  # noqa: E402
from storage.database import Database  # noqa: E402


@pytest.fixture
def temp_config_dir(tmp_path):
    """Create a temporary config directory with default.yaml."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()

    default_yaml = config_dir / "default.yaml"
    default_yaml.write_text("""
camera:
  backend: "opencv"
  device_id: null
  acquire_timeout_s: 10

tier:
  override: "auto"
  low_power: false

models:
  score_threshold: 0.5
  count_labels: ["person", "face"]

aggregator:
  location_id: "default"
  sink: "database"

locations:
  - id: "default"
    name: "Main Room"
    capacity: 50

storage:
  local_database_path: "data/test.sqlite"
  retention_days: 7

log_path: "logs/test.log"
log_level: "INFO"
""")

    return config_dir


@pytest.fixture
def valid_config():
    """Return a valid configuration dictionary."""
    return {
        "camera": {
            "backend": "opencv",
            "device_id": 0,
            "acquire_timeout_s": 10,
        },
        "tier": {"override": "auto", "low_power": False},
        "models": {
            "score_threshold": 0.5,
            "iou_threshold": 0.45,
            "load_timeout_s": 60,
            "count_labels": ["person", "face"],
        },
        "pump": {"jpeg_quality": 80},
        "aggregator": {"location_id": "lobby", "sink": "database"},
        "locations": [
            {"id": "lobby", "name": "Lobby", "capacity": 20},
        ],
        "storage": {
            "local_database_path": "data/test.sqlite",
            "retention_days": 30,
        },
        "log_path": "logs/test.log",
        "log_level": "INFO",
    }


@pytest.fixture
def memory_db():
    """An initialized in-memory database with a 'lobby' location (capacity 20)."""
    db = Database(":memory:")
    db.initialize([Location(id="lobby", name="Lobby", capacity=20)])
    yield db
    db.close()
