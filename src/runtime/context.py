from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from analytics.aggregator import CountAggregator
from analytics.sinks import DatabaseSink, FallbackSink, HttpSink, OfflineStore
from camera.negotiator import CameraNegotiator, create_backend
from inference.loader import ModelLoader
from models.config import Config
from models.count_event import Location
from models.tier import ResourceTier
from pipeline.canvas import Canvas
from pipeline.session import LiveFeedSession
from storage.database import Database


@dataclass
class RuntimeContext:
    """Holds the wired-up services for one process; avoids global singletons."""

    config: Config
    tier: ResourceTier
    db: Database
    store: OfflineStore
    sink: Any
    canvas: Canvas
    negotiator: CameraNegotiator
    loader: ModelLoader
    aggregator: CountAggregator
    session: LiveFeedSession
    http_sink: Optional[HttpSink] = None

    async def close(self) -> None:
        await self.session.shutdown()
        if self.http_sink is not None:
            await self.http_sink.aclose()
        self.db.close()


def build_runtime(
    config: Config,
    tier: ResourceTier,
    events=None,
    backend=None,
    loader: Optional[ModelLoader] = None,
    db: Optional[Database] = None,
) -> RuntimeContext:
    """
    Wire storage, sinks, camera, model loader and the live feed session.

    Args:
        config: Typed app config.
        tier: Resource tier detected at startup.
        events: Optional EventHub for count broadcasts.
        backend: Capture backend override (defaults to config.camera.backend).
        loader: ModelLoader override.
        db: Database override (defaults to config.storage.local_database_path).
    """
    if db is None:
        db = Database(config.storage.local_database_path)
        db.initialize(config.locations)

    agg_cfg = config.aggregator
    store = OfflineStore(agg_cfg.offline_store_path)

    http_sink = None
    if agg_cfg.sink == "http":
        if not agg_cfg.api_url:
            raise ValueError("aggregator.api_url is required when aggregator.sink is 'http'")
        http_sink = HttpSink(agg_cfg.api_url, retries=agg_cfg.http_retries, retry_delay_s=agg_cfg.http_retry_delay_s)
        primary = http_sink
    else:
        primary = DatabaseSink(db, events)
    sink = FallbackSink(primary, store, max_entries=agg_cfg.max_log_entries)

    canvas = Canvas()
    if backend is None:
        backend = create_backend(
            config.camera.backend,
            swap_rb=config.camera.swap_rb,
            flip_horizontal=config.camera.flip_horizontal,
        )
    negotiator = CameraNegotiator(
        backend,
        canvas=canvas,
        acquire_timeout_s=config.camera.acquire_timeout_s,
        exclude_labels=config.camera.exclude_labels,
    )
    loader = loader or ModelLoader(config.models)

    location = config.location(agg_cfg.location_id) or db.get_location(agg_cfg.location_id)
    if location is None:
        logging.warning(f"Location '{agg_cfg.location_id}' not configured, using defaults")
        location = Location(id=agg_cfg.location_id, name=agg_cfg.location_id, capacity=50)
    aggregator = CountAggregator(location, sink=sink, max_log_entries=agg_cfg.max_log_entries)

    session = LiveFeedSession(
        config=config,
        tier=tier,
        negotiator=negotiator,
        loader=loader,
        canvas=canvas,
        aggregator=aggregator,
        store=store,
    )
    logging.info(f"Runtime ready (tier={tier.value}, sink={agg_cfg.sink}, location={location.id})")
    return RuntimeContext(
        config=config,
        tier=tier,
        db=db,
        store=store,
        sink=sink,
        canvas=canvas,
        negotiator=negotiator,
        loader=loader,
        aggregator=aggregator,
        session=session,
        http_sink=http_sink,
    )
