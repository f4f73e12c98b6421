from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class LocationResponse(BaseModel):
    id: str
    name: str
    capacity: int
    description: Optional[str] = None


class CountRecord(BaseModel):
    id: int
    location_id: str
    count: int
    status: str
    message: Optional[str] = None
    timestamp: str


class EntryExitRecord(BaseModel):
    id: int
    location_id: str
    type: str
    count: int
    current_occupancy: int
    timestamp: str


class CountCreateRequest(BaseModel):
    count: Optional[int] = Field(None, ge=0)
    status: Optional[str] = None
    message: Optional[str] = None
    timestamp: Optional[str] = None


class EntryExitCreateRequest(BaseModel):
    type: Optional[str] = None
    count: int = Field(1, ge=1)
    current_occupancy: Optional[int] = Field(None, ge=0)
    timestamp: Optional[str] = None


class LowPowerRequest(BaseModel):
    enabled: bool


class ModelStatus(BaseModel):
    ready: bool
    loading: bool
    name: Optional[str] = None
    variant: Optional[str] = None


class LiveStatusResponse(BaseModel):
    state: str = Field(..., description="idle|streaming|detecting|stopped")
    streaming: bool
    paused: bool
    tier: str
    low_power: bool
    count: int
    model: ModelStatus
    camera: Optional[Dict[str, Any]] = None
    pump: Optional[Dict[str, Any]] = None
    last_error: Optional[Dict[str, str]] = None


class CameraDevice(BaseModel):
    device_id: Any
    label: str
    kind: str


class CompactStatusResponse(BaseModel):
    """
    Compact status response optimized for frontend polling.
    """
    running: bool = Field(..., description="True if the live feed is streaming")
    last_frame_age_s: Optional[float] = Field(None, description="Seconds since last painted frame")
    fps: Optional[float] = Field(None, description="Effective render FPS")
    last_detection_ms: Optional[float] = Field(None, description="Latency of the last detection")
    current_count: int = Field(0, description="Latest people count")
    occupancy_status: Optional[str] = Field(None, description="normal|near_capacity|over_capacity")
    tier: Optional[str] = None
    low_power: bool = False
    cpu_temp_c: Optional[float] = Field(None, description="CPU temperature in Celsius")
    disk_free_pct: Optional[float] = Field(None, description="Disk free percentage")
    warnings: List[str] = Field(default_factory=list, description="Active warnings")
