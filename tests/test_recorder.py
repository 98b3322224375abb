"""Click recorder pipeline: queueing, enrichment and sinks."""

import asyncio

import pytest
from sqlalchemy import select

from shortlinks.geo import GeoLocation, GeoLocator
from shortlinks.models import ShortLink, VisitEvent
from shortlinks.recorder import ClickRecorder, DatabaseVisitSink, MemoryVisitSink, VisitSink
from shortlinks.schemas import CachedLink, RawVisit

CHROME_MAC = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class StaticGeo(GeoLocator):
    def __init__(self, location: GeoLocation | None = None, error: Exception | None = None) -> None:
        super().__init__(enabled=False)
        self.location = location or GeoLocation.unknown()
        self.error = error
        self.calls = 0

    async def lookup(self, ip):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.location


class SlowSink(VisitSink):
    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.events = []

    async def append(self, record) -> None:
        await self.release.wait()
        self.events.append(record)


class FailingSink(VisitSink):
    async def append(self, record) -> None:
        raise RuntimeError("sink down")


@pytest.mark.asyncio
async def test_every_visit_becomes_one_event(make_link) -> None:
    sink = MemoryVisitSink()
    recorder = ClickRecorder(sink, StaticGeo())
    link = make_link()

    ips = ["203.0.113.1", "203.0.113.1", "203.0.113.2", "203.0.113.3", "203.0.113.3"]
    for ip in ips:
        assert recorder.record(link, RawVisit(ip_address=ip, user_agent=CHROME_MAC))
    await recorder.stop()

    assert len(sink.events) == 5
    assert sorted(e.ip_address for e in sink.events) == sorted(ips)
    assert all(e.short_code == "abc1234" and e.link_id == 1 for e in sink.events)


@pytest.mark.asyncio
async def test_record_returns_before_sink_completes(make_link) -> None:
    sink = SlowSink()
    recorder = ClickRecorder(sink, StaticGeo(), workers=1)

    assert recorder.record(make_link(), RawVisit(ip_address="203.0.113.1"))
    await asyncio.sleep(0.01)
    assert sink.events == []

    sink.release.set()
    await recorder.stop()
    assert len(sink.events) == 1


@pytest.mark.asyncio
async def test_enrichment_fills_geo_and_client_fields(make_link) -> None:
    geo = StaticGeo(GeoLocation(country="Japan", country_code="JP", city="Tokyo"))
    recorder = ClickRecorder(MemoryVisitSink(), geo)

    record = await recorder.enrich(
        make_link(owner_id="owner-1"),
        RawVisit(ip_address="203.0.113.9", user_agent=CHROME_MAC, referer="https://news.example"),
    )

    assert record.country_code == "JP"
    assert record.city == "Tokyo"
    assert record.region == "Unknown"
    assert record.browser == "Chrome"
    assert record.device_type == "Desktop"
    assert record.owner_id == "owner-1"
    assert record.referer == "https://news.example"


@pytest.mark.asyncio
async def test_geo_failure_still_records_with_unknown_location(make_link) -> None:
    sink = MemoryVisitSink()
    recorder = ClickRecorder(sink, StaticGeo(error=RuntimeError("geo down")))

    recorder.record(make_link(), RawVisit(ip_address="203.0.113.1", user_agent=CHROME_MAC))
    await recorder.stop()

    (event,) = sink.events
    assert event.country == "Unknown"
    assert event.country_code == "XX"
    assert event.browser == "Chrome"


@pytest.mark.asyncio
async def test_missing_user_agent_records_unknown_client(make_link) -> None:
    sink = MemoryVisitSink()
    recorder = ClickRecorder(sink, StaticGeo())

    recorder.record(make_link(), RawVisit(ip_address="203.0.113.1"))
    await recorder.stop()

    (event,) = sink.events
    assert event.browser == "Unknown"
    assert event.device_type == "Unknown"


@pytest.mark.asyncio
async def test_full_queue_drops_visit(make_link) -> None:
    sink = SlowSink()
    recorder = ClickRecorder(sink, StaticGeo(), workers=1, queue_size=1)
    link = make_link()

    assert recorder.record(link, RawVisit(ip_address="203.0.113.1"))
    assert not recorder.record(link, RawVisit(ip_address="203.0.113.2"))

    sink.release.set()
    await recorder.stop()
    assert len(sink.events) == 1


@pytest.mark.asyncio
async def test_sink_failure_does_not_stop_workers(make_link) -> None:
    counted: list[str] = []

    async def on_recorded(short_code: str) -> None:
        counted.append(short_code)

    recorder = ClickRecorder(FailingSink(), StaticGeo(), on_recorded=on_recorded, workers=1)
    recorder.record(make_link(), RawVisit(ip_address="203.0.113.1"))
    recorder.record(make_link(), RawVisit(ip_address="203.0.113.2"))
    await recorder.drain()

    assert recorder.pending == 0
    assert counted == []
    await recorder.stop()


@pytest.mark.asyncio
async def test_counter_callback_runs_after_append(make_link) -> None:
    counted: list[str] = []

    async def on_recorded(short_code: str) -> None:
        counted.append(short_code)

    recorder = ClickRecorder(MemoryVisitSink(), StaticGeo(), on_recorded=on_recorded)
    for _ in range(3):
        recorder.record(make_link(), RawVisit(ip_address="203.0.113.1"))
    await recorder.stop()

    assert counted == ["abc1234"] * 3


@pytest.mark.asyncio
async def test_database_sink_persists_events(session_factory, db_session) -> None:
    row = ShortLink(short_code="dbsink1", original_url="https://example.com", visit_count=0)
    db_session.add(row)
    await db_session.commit()
    await db_session.refresh(row)

    recorder = ClickRecorder(DatabaseVisitSink(session_factory), StaticGeo())
    recorder.record(CachedLink.model_validate(row), RawVisit(ip_address="203.0.113.1", user_agent=CHROME_MAC))
    await recorder.stop()

    result = await db_session.execute(select(VisitEvent).where(VisitEvent.short_code == "dbsink1"))
    (event,) = result.scalars().all()
    assert event.link_id == row.id
    assert event.browser == "Chrome"
    assert event.country_code == "XX"
