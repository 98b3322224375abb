"""Asynchronous click recording, decoupled from the redirect response.

Pipeline Diagram
================
::
    redirect handler                       worker tasks (RECORDER_WORKERS)
    ────────────────                       ───────────────────────────────
    ┌──────────────┐   put_nowait   ┌───────────────┐
    │ record(link, │──────────────▶│ bounded queue │
    │   raw visit) │  full → drop   └───────┬───────┘
    └──────┬───────┘                        ▼
           │ returns at once        ┌───────────────┐
           ▼                        │ enrich        │
    302 response                    │  ├─ geo lookup│ (Unknown on failure)
                                    │  └─ UA parse  │ (Unknown on failure)
                                    └───────┬───────┘
                                            ▼
                                    ┌───────────────┐
                                    │ sink.append() │ database | kafka | memory
                                    └───────┬───────┘
                                            ▼
                                    ┌───────────────┐
                                    │ on_recorded() │ visit counter + cache invalidation
                                    └───────────────┘

How to Use
===========
**Step 1 — Build and start**::
    recorder = ClickRecorder(DatabaseVisitSink(async_session), GeoLocator())
    await recorder.start()

**Step 2 — Record from a request handler**::
    recorder.record(link, RawVisit(ip_address=ip, user_agent=ua, referer=ref))

**Step 3 — Shut down**::
    await recorder.stop()   # drains queued visits first

Key Behaviours
===============
- ``record`` never awaits and never raises; a full queue drops the visit.
- Enrichment steps fall back to Unknown values independently.
- Sink and counter failures are logged and counted, then dropped.
- No ordering is guaranteed between visits of the same link.
"""

import abc
import asyncio
import logging
from collections.abc import Awaitable, Callable

from prometheus_client import Counter, Gauge
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortlinks.geo import GeoLocation, GeoLocator
from shortlinks.kafka import publish_visit_event
from shortlinks.models import VisitEvent
from shortlinks.schemas import CachedLink, RawVisit, VisitRecord
from shortlinks.useragent import ParsedUserAgent, parse_user_agent

__all__ = [
    "ClickRecorder",
    "DatabaseVisitSink",
    "KafkaVisitSink",
    "MemoryVisitSink",
    "VisitSink",
]

logger = logging.getLogger("shortlinks")

VISITS_RECORDED_TOTAL = Counter(
    "shortlinks_visits_recorded_total",
    "Visit events appended to the sink",
)
VISITS_DROPPED_TOTAL = Counter(
    "shortlinks_visits_dropped_total",
    "Visit events lost before reaching the sink",
    ["reason"],
)
RECORDER_QUEUE_DEPTH = Gauge(
    "shortlinks_recorder_queue_depth",
    "Visits waiting for enrichment",
)


class VisitSink(abc.ABC):
    @abc.abstractmethod
    async def append(self, record: VisitRecord) -> None:
        """Persist one enriched visit."""


class DatabaseVisitSink(VisitSink):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(self, record: VisitRecord) -> None:
        async with self._session_factory() as session:
            session.add(VisitEvent(**record.model_dump()))
            await session.commit()


class KafkaVisitSink(VisitSink):
    async def append(self, record: VisitRecord) -> None:
        if not await publish_visit_event(record):
            raise RuntimeError("Kafka producer is not running")


class MemoryVisitSink(VisitSink):
    def __init__(self) -> None:
        self.events: list[VisitRecord] = []

    async def append(self, record: VisitRecord) -> None:
        self.events.append(record)


class ClickRecorder:
    def __init__(
        self,
        sink: VisitSink,
        geo: GeoLocator,
        *,
        on_recorded: Callable[[str], Awaitable[None]] | None = None,
        workers: int = 2,
        queue_size: int = 10_000,
    ) -> None:
        assert workers > 0, f"workers must be positive, got {workers!r}"
        self._sink = sink
        self._geo = geo
        self._on_recorded = on_recorded
        self._worker_count = workers
        self._queue: asyncio.Queue[tuple[CachedLink, RawVisit]] = asyncio.Queue(maxsize=queue_size)
        self._workers: list[asyncio.Task] = []

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def record(self, link: CachedLink, visit: RawVisit) -> bool:
        """Queue a visit for background enrichment; False when it had to be dropped."""
        self._ensure_started()
        try:
            self._queue.put_nowait((link, visit))
        except asyncio.QueueFull:
            VISITS_DROPPED_TOTAL.labels(reason="queue_full").inc()
            logger.warning(f"Visit queue full, dropping visit for {link.short_code}")
            return False
        RECORDER_QUEUE_DEPTH.set(self._queue.qsize())
        return True

    async def start(self) -> None:
        self._ensure_started()

    async def drain(self) -> None:
        await self._queue.join()

    async def stop(self) -> None:
        if not self._workers:
            return
        await self.drain()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

    async def enrich(self, link: CachedLink, visit: RawVisit) -> VisitRecord:
        try:
            location = await self._geo.lookup(visit.ip_address)
        except Exception as exc:
            logger.warning(f"Geolocation enrichment failed for {visit.ip_address}: {exc}")
            location = GeoLocation.unknown()

        try:
            client = parse_user_agent(visit.user_agent)
        except Exception as exc:
            logger.warning(f"User-agent enrichment failed: {exc}")
            client = ParsedUserAgent.unknown()

        return VisitRecord(
            link_id=link.id,
            short_code=link.short_code,
            owner_id=link.owner_id,
            ip_address=visit.ip_address,
            user_agent=visit.user_agent,
            referer=visit.referer,
            **location.model_dump(),
            browser=client.browser,
            browser_version=client.browser_version,
            operating_system=client.operating_system,
            os_version=client.os_version,
            device_type=client.device_type.value,
            is_mobile=client.is_mobile,
            is_bot=client.is_bot,
            timestamp=visit.timestamp,
        )

    def _ensure_started(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._run(), name=f"click-recorder-{index}")
            for index in range(self._worker_count)
        ]

    async def _run(self) -> None:
        while True:
            link, visit = await self._queue.get()
            try:
                await self._process(link, visit)
            except Exception as exc:
                VISITS_DROPPED_TOTAL.labels(reason="sink_error").inc()
                logger.error(f"Failed to record visit for {link.short_code}: {exc}")
            finally:
                self._queue.task_done()
                RECORDER_QUEUE_DEPTH.set(self._queue.qsize())

    async def _process(self, link: CachedLink, visit: RawVisit) -> None:
        record = await self.enrich(link, visit)
        await self._sink.append(record)
        VISITS_RECORDED_TOTAL.inc()
        logger.debug(f"Visit recorded for {link.short_code}")

        if self._on_recorded is not None:
            try:
                await self._on_recorded(link.short_code)
            except Exception as exc:
                logger.error(f"Visit counter update failed for {link.short_code}: {exc}")
