"""
Health summary for the /api/health and /api/status endpoints.

Everything here is best effort: a missing sensor or an unreadable path
yields None rather than failing the request.
"""

from __future__ import annotations

import logging
import os
import platform
import shutil
import sqlite3
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from models.config import Config

THERMAL_PATHS = (
    "/sys/class/thermal/thermal_zone0/temp",
    "/sys/class/hwmon/hwmon0/temp1_input",
)


@dataclass
class HealthService:
    cfg: Config
    db: Any = None
    sink: Any = None
    session: Any = None

    def get_health_summary(self) -> Dict[str, Any]:
        db_path = self.cfg.storage.local_database_path
        return {
            "timestamp": time.time(),
            "system": {
                "platform": platform.platform(),
                "python": platform.python_version(),
                "cpu_count": os.cpu_count(),
                "cpu_temp_c": self.read_cpu_temp_c(),
            },
            "camera_backend": self.cfg.camera.backend,
            "storage": {
                "db_path": db_path,
                "rows": self._row_counts(),
                "disk": self.disk_usage(os.path.dirname(db_path) or "."),
            },
            "sink": self._sink_summary(),
            "live": self._live_summary(),
            "log_path": self.cfg.log_path,
        }

    def _row_counts(self) -> Optional[Dict[str, int]]:
        if self.db is None:
            return None
        try:
            return self.db.row_counts()
        except sqlite3.Error as e:
            logging.warning(f"Health check could not read row counts: {e}")
            return None

    def _sink_summary(self) -> Optional[Dict[str, Any]]:
        if self.sink is None:
            return None
        return {
            "kind": self.cfg.aggregator.sink,
            "online": getattr(self.sink, "online", True),
            "pending": getattr(self.sink, "pending_count", 0),
        }

    def _live_summary(self) -> Optional[Dict[str, Any]]:
        if self.session is None:
            return None
        status = self.session.status()
        return {
            "streaming": status["streaming"],
            "model_ready": status["model"]["ready"],
            "model": status["model"]["name"],
            "last_error": status["last_error"],
        }

    @staticmethod
    def disk_usage(path: Optional[str] = None) -> Dict[str, Any]:
        try:
            usage = shutil.disk_usage(path or ".")
        except OSError:
            return {"total_bytes": None, "free_bytes": None, "pct_free": None, "error": "disk_usage_failed"}
        return {
            "total_bytes": usage.total,
            "free_bytes": usage.free,
            "pct_free": (usage.free / usage.total * 100) if usage.total else None,
        }

    @staticmethod
    def read_cpu_temp_c() -> Optional[float]:
        # Pi and most SBCs report millidegrees
        for path in THERMAL_PATHS:
            try:
                with open(path, "r") as f:
                    raw = f.read().strip()
                value = float(raw)
            except (OSError, ValueError):
                continue
            return value / 1000.0 if value > 200 else value
        return None
