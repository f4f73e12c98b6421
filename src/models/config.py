"""
Typed configuration models matching the YAML config structure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .count_event import Location


@dataclass
class CameraConfig:
    """Camera configuration."""
    backend: str = "opencv"
    device_id: Optional[Union[int, str]] = None
    acquire_timeout_s: float = 10.0
    swap_rb: bool = False
    flip_horizontal: bool = False
    exclude_labels: List[str] = field(default_factory=lambda: ["built-in", "internal", "facetime"])

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CameraConfig":
        """Adapter: Create from config dictionary."""
        return cls(
            backend=d.get("backend", "opencv"),
            device_id=d.get("device_id"),
            acquire_timeout_s=float(d.get("acquire_timeout_s", 10.0)),
            swap_rb=d.get("swap_rb", False),
            flip_horizontal=d.get("flip_horizontal", False),
            exclude_labels=d.get("exclude_labels", ["built-in", "internal", "facetime"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backend": self.backend,
            "device_id": self.device_id,
            "acquire_timeout_s": self.acquire_timeout_s,
            "swap_rb": self.swap_rb,
            "flip_horizontal": self.flip_horizontal,
            "exclude_labels": self.exclude_labels,
        }


@dataclass
class TierConfig:
    """Resource tier override and persisted low-power preference."""
    override: str = "auto"
    low_power: bool = False

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TierConfig":
        return cls(
            override=d.get("override", "auto"),
            low_power=d.get("low_power", False),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"override": self.override, "low_power": self.low_power}


@dataclass
class ModelsConfig:
    """
    Detection model variants and load behaviour.

    object_detector/light_object_detector/classifier are ultralytics weight
    files; the face detector uses the Haar cascade bundled with OpenCV.
    """
    object_detector: str = "yolov8s.pt"
    light_object_detector: str = "yolov8n.pt"
    classifier: str = "yolov8n-cls.pt"
    face_cascade: str = "haarcascade_frontalface_default.xml"
    load_timeout_s: float = 60.0
    score_threshold: float = 0.5
    iou_threshold: float = 0.45
    max_detections: int = 20
    count_labels: List[str] = field(default_factory=lambda: ["person", "face"])
    device: str = "cpu"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ModelsConfig":
        return cls(
            object_detector=d.get("object_detector", "yolov8s.pt"),
            light_object_detector=d.get("light_object_detector", "yolov8n.pt"),
            classifier=d.get("classifier", "yolov8n-cls.pt"),
            face_cascade=d.get("face_cascade", "haarcascade_frontalface_default.xml"),
            load_timeout_s=float(d.get("load_timeout_s", 60.0)),
            score_threshold=float(d.get("score_threshold", 0.5)),
            iou_threshold=float(d.get("iou_threshold", 0.45)),
            max_detections=int(d.get("max_detections", 20)),
            count_labels=d.get("count_labels", ["person", "face"]),
            device=d.get("device", "cpu"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "object_detector": self.object_detector,
            "light_object_detector": self.light_object_detector,
            "classifier": self.classifier,
            "face_cascade": self.face_cascade,
            "load_timeout_s": self.load_timeout_s,
            "score_threshold": self.score_threshold,
            "iou_threshold": self.iou_threshold,
            "max_detections": self.max_detections,
            "count_labels": self.count_labels,
            "device": self.device,
        }


@dataclass
class MotionGateConfig:
    """Skip detection when consecutive frames barely differ."""
    enabled: bool = False
    threshold: float = 4.0
    sample_size: int = 64

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "MotionGateConfig":
        return cls(
            enabled=d.get("enabled", False),
            threshold=float(d.get("threshold", 4.0)),
            sample_size=int(d.get("sample_size", 64)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"enabled": self.enabled, "threshold": self.threshold, "sample_size": self.sample_size}


@dataclass
class PumpConfig:
    """Frame pump behaviour."""
    slow_detection_s: float = 0.5
    jpeg_quality: int = 80
    motion_gate: MotionGateConfig = field(default_factory=MotionGateConfig)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PumpConfig":
        return cls(
            slow_detection_s=float(d.get("slow_detection_s", 0.5)),
            jpeg_quality=int(d.get("jpeg_quality", 80)),
            motion_gate=MotionGateConfig.from_dict(d.get("motion_gate", {}) or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slow_detection_s": self.slow_detection_s,
            "jpeg_quality": self.jpeg_quality,
            "motion_gate": self.motion_gate.to_dict(),
        }


@dataclass
class AggregatorConfig:
    """Count aggregator and sink configuration."""
    location_id: str = "default"
    max_log_entries: int = 1000
    sink: str = "database"
    api_url: Optional[str] = None
    http_retries: int = 2
    http_retry_delay_s: float = 1.0
    offline_store_path: str = "data/offline_store.json"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AggregatorConfig":
        return cls(
            location_id=d.get("location_id", "default"),
            max_log_entries=int(d.get("max_log_entries", 1000)),
            sink=d.get("sink", "database"),
            api_url=d.get("api_url"),
            http_retries=int(d.get("http_retries", 2)),
            http_retry_delay_s=float(d.get("http_retry_delay_s", 1.0)),
            offline_store_path=d.get("offline_store_path", "data/offline_store.json"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location_id": self.location_id,
            "max_log_entries": self.max_log_entries,
            "sink": self.sink,
            "api_url": self.api_url,
            "http_retries": self.http_retries,
            "http_retry_delay_s": self.http_retry_delay_s,
            "offline_store_path": self.offline_store_path,
        }


@dataclass
class StorageConfig:
    """Storage configuration."""
    local_database_path: str = "data/people_counter.sqlite"
    retention_days: int = 30

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "StorageConfig":
        return cls(
            local_database_path=d.get("local_database_path", "data/people_counter.sqlite"),
            retention_days=int(d.get("retention_days", 30)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "local_database_path": self.local_database_path,
            "retention_days": self.retention_days,
        }


@dataclass
class WebConfig:
    host: str = "0.0.0.0"
    port: int = 5000
    autostart: bool = True

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "WebConfig":
        return cls(
            host=d.get("host", "0.0.0.0"),
            port=int(d.get("port", 5000)),
            autostart=d.get("autostart", True),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"host": self.host, "port": self.port, "autostart": self.autostart}


def _default_locations() -> List[Location]:
    return [Location(id="default", name="Main Room", capacity=50, description="Default location")]


@dataclass
class Config:
    """
    Complete application configuration.

    This is a typed representation of the YAML config structure.
    """
    camera: CameraConfig = field(default_factory=CameraConfig)
    tier: TierConfig = field(default_factory=TierConfig)
    models: ModelsConfig = field(default_factory=ModelsConfig)
    pump: PumpConfig = field(default_factory=PumpConfig)
    aggregator: AggregatorConfig = field(default_factory=AggregatorConfig)
    locations: List[Location] = field(default_factory=_default_locations)
    storage: StorageConfig = field(default_factory=StorageConfig)
    web: WebConfig = field(default_factory=WebConfig)
    log_path: str = "logs/people_counter.log"
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Config":
        """Adapter: Create Config from raw dictionary (e.g., from load_config)."""
        locations_raw = d.get("locations")
        locations = [Location.from_dict(x) for x in locations_raw] if locations_raw else _default_locations()
        return cls(
            camera=CameraConfig.from_dict(d.get("camera", {}) or {}),
            tier=TierConfig.from_dict(d.get("tier", {}) or {}),
            models=ModelsConfig.from_dict(d.get("models", {}) or {}),
            pump=PumpConfig.from_dict(d.get("pump", {}) or {}),
            aggregator=AggregatorConfig.from_dict(d.get("aggregator", {}) or {}),
            locations=locations,
            storage=StorageConfig.from_dict(d.get("storage", {}) or {}),
            web=WebConfig.from_dict(d.get("web", {}) or {}),
            log_path=d.get("log_path", "logs/people_counter.log"),
            log_level=d.get("log_level", "INFO"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert back to dictionary (for saving or passing to existing code)."""
        return {
            "camera": self.camera.to_dict(),
            "tier": self.tier.to_dict(),
            "models": self.models.to_dict(),
            "pump": self.pump.to_dict(),
            "aggregator": self.aggregator.to_dict(),
            "locations": [loc.to_dict() for loc in self.locations],
            "storage": self.storage.to_dict(),
            "web": self.web.to_dict(),
            "log_path": self.log_path,
            "log_level": self.log_level,
        }

    def location(self, location_id: str) -> Optional[Location]:
        for loc in self.locations:
            if loc.id == location_id:
                return loc
        return None
