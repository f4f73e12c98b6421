import threading
import time


class SharedState:
    """
    Singleton class to share state between the live feed session and the
    FastAPI routes.
    """
    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super(SharedState, cls).__new__(cls)
                    cls._instance._reset()
        return cls._instance

    def _reset(self):
        self.database = None
        self.config = None
        self.config_path = None
        self.session = None
        self.events = None
        self.sink = None
        self.tier = None
        self.start_time = time.time()

    def reset(self):
        """Drop every reference (used between app instances and in tests)."""
        self._reset()

    def set_database(self, db):
        self.database = db

    def set_config(self, config, config_path=None):
        self.config = config
        self.config_path = config_path

    def set_session(self, session):
        self.session = session

    def set_sink(self, sink):
        self.sink = sink

    def set_events(self, events):
        self.events = events

    @property
    def uptime_seconds(self) -> int:
        return int(time.time() - self.start_time)


# Global instance
state = SharedState()
