"""
Tests for configuration loading, validation and the typed config models.
"""

import pytest

from main import _deep_merge, load_config, validate_config
from models.config import Config


class TestDeepMerge:
    def test_nested_values_are_merged(self):
        base = {"camera": {"backend": "opencv", "acquire_timeout_s": 10}, "log_level": "INFO"}
        merged = _deep_merge(base, {"camera": {"acquire_timeout_s": 5}})
        assert merged == {"camera": {"backend": "opencv", "acquire_timeout_s": 5}, "log_level": "INFO"}

    def test_lists_are_replaced(self):
        merged = _deep_merge({"models": {"count_labels": ["person", "face"]}}, {"models": {"count_labels": ["face"]}})
        assert merged["models"]["count_labels"] == ["face"]


class TestLoadConfig:
    def test_defaults_only(self, temp_config_dir):
        cfg = load_config(str(temp_config_dir / "config.yaml"))
        assert cfg["camera"]["backend"] == "opencv"
        assert cfg["storage"]["retention_days"] == 7

    def test_local_overrides(self, temp_config_dir):
        (temp_config_dir / "config.yaml").write_text("tier:\n  low_power: true\n")
        cfg = load_config(str(temp_config_dir / "config.yaml"))
        assert cfg["tier"]["low_power"] is True
        assert cfg["tier"]["override"] == "auto"

    def test_explicit_config_applied_last(self, temp_config_dir):
        (temp_config_dir / "config.yaml").write_text("log_level: DEBUG\n")
        explicit = temp_config_dir / "site.yaml"
        explicit.write_text("log_level: WARNING\naggregator:\n  sink: http\n  api_url: http://backend\n")
        cfg = load_config(str(explicit))
        assert cfg["log_level"] == "WARNING"
        assert cfg["aggregator"]["sink"] == "http"
        assert cfg["aggregator"]["location_id"] == "default"

    def test_invalid_yaml_exits(self, temp_config_dir):
        (temp_config_dir / "config.yaml").write_text("camera: [unclosed\n")
        with pytest.raises(SystemExit):
            load_config(str(temp_config_dir / "config.yaml"))


class TestValidateConfig:
    def test_valid(self, valid_config):
        assert validate_config(valid_config) == (True, None)

    def test_empty_config_uses_defaults(self):
        assert validate_config({}) == (True, None)

    @pytest.mark.parametrize("mutate,fragment", [
        (lambda c: c["camera"].update(backend="v4l"), "camera.backend"),
        (lambda c: c["camera"].update(device_id=-1), "non-negative"),
        (lambda c: c["tier"].update(override="fast"), "tier.override"),
        (lambda c: c["models"].update(score_threshold=1.5), "models.score_threshold"),
        (lambda c: c["pump"].update(jpeg_quality=0), "pump.jpeg_quality"),
        (lambda c: c["aggregator"].update(sink="http"), "aggregator.api_url"),
        (lambda c: c["aggregator"].update(location_id="attic"), "aggregator.location_id"),
        (lambda c: c["locations"][0].update(capacity=0), "capacity"),
        (lambda c: c["storage"].update(retention_days=0), "storage.retention_days"),
        (lambda c: c.update(log_level="LOUD"), "log_level"),
    ])
    def test_invalid(self, valid_config, mutate, fragment):
        mutate(valid_config)
        ok, message = validate_config(valid_config)
        assert not ok
        assert fragment in message

    def test_string_device_id_allowed(self, valid_config):
        valid_config["camera"]["device_id"] = "/dev/video2"
        assert validate_config(valid_config)[0]


class TestTypedConfig:
    def test_defaults(self):
        cfg = Config.from_dict({})
        assert cfg.camera.acquire_timeout_s == 10.0
        assert cfg.models.count_labels == ["person", "face"]
        assert cfg.pump.motion_gate.enabled is False
        assert cfg.location("default").capacity == 50

    def test_from_dict(self, valid_config):
        cfg = Config.from_dict(valid_config)
        assert cfg.aggregator.location_id == "lobby"
        assert cfg.location("lobby").name == "Lobby"
        assert cfg.location("attic") is None
        assert cfg.camera.device_id == 0

    def test_to_dict_round_trips(self, valid_config):
        cfg = Config.from_dict(valid_config)
        assert Config.from_dict(cfg.to_dict()) == cfg
