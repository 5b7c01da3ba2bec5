import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from main import app
from routers.audit import get_audit_pipeline
from services.audit_insights import AuditInsightsService
from services.audit_pipeline import AuditPipeline
from services.audit_store import AuditStore
from services.channel_cache import ChannelDataCache
from services.peer_benchmark import PeerBenchmarkService
from services.series_detection import SeriesDetectionService
from ingestion.youtube import YouTubeAPIError
from fakes import channel_info, video_item


@pytest_asyncio.fixture
async def api(session_factory, youtube):
    videos = [video_item(f"v{i}", f"Weekly Vlog #{i}", 1000 + i * 200, days_ago=i * 7) for i in range(1, 7)]
    youtube.add_channel(channel_info("UC_API", "API Channel", 12_000), videos, "https://youtube.com/@apichannel")

    pipeline = AuditPipeline(
        store=AuditStore(session_factory),
        cache=ChannelDataCache(session_factory, youtube.client),
        peers=PeerBenchmarkService(session_factory, min_peers=3),
        series=SeriesDetectionService(None, session_factory),
        insights=AuditInsightsService(None),
    )
    app.dependency_overrides[get_audit_pipeline] = lambda: pipeline
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.pop(get_audit_pipeline, None)


async def _wait_for_terminal(client, audit_id):
    payload = {}
    for _ in range(20):
        resp = await client.get(f"/audits/{audit_id}")
        assert resp.status_code == 200
        payload = resp.json()
        if payload["status"] in ("completed", "failed"):
            break
    return payload


@pytest.mark.asyncio
async def test_create_audit_runs_in_background(api):
    resp = await api.post("/audits", json={"channel_reference": "https://youtube.com/@apichannel"})
    assert resp.status_code == 202
    created = resp.json()
    assert created["youtube_channel_id"] == "UC_API"
    assert created["execution"] == "background"

    payload = await _wait_for_terminal(api, created["audit_id"])
    assert payload["status"] == "completed"
    assert payload["progress"]["pct"] == 100
    assert payload["audit_type"] == "prospect"
    assert [s["section_key"] for s in payload["sections"]][0] == "ingestion"
    assert all(s["status"] == "completed" for s in payload["sections"])
    assert payload["series_summary"]["series"][0]["name"] == "Weekly Vlog"
    assert payload["benchmark_data"]["has_benchmarks"] is False
    assert payload["executive_summary"]
    assert payload["youtube_api_calls"] == 3

    sections = await api.get(f"/audits/{created['audit_id']}/sections")
    assert sections.status_code == 200
    assert len(sections.json()) == 7


@pytest.mark.asyncio
async def test_unknown_channel_returns_404_and_creates_nothing(api):
    resp = await api.post("/audits", json={"channel_reference": "@nobody"})
    assert resp.status_code == 404

    listing = await api.get("/audits")
    assert listing.status_code == 200
    assert listing.json() == []


@pytest.mark.asyncio
async def test_bad_input_returns_422(api):
    resp = await api.post("/audits", json={"channel_reference": "UC_API", "audit_type": "competitor"})
    assert resp.status_code == 422

    resp = await api.post("/audits", json={"channel_reference": ""})
    assert resp.status_code == 422

    resp = await api.post(
        "/audits",
        json={"channel_reference": "UC_API", "config": {"peer_scope": {"kind": "nearby"}}},
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_unknown_audit_returns_404(api):
    assert (await api.get("/audits/missing")).status_code == 404
    assert (await api.get("/audits/missing/sections")).status_code == 404
    assert (await api.post("/audits/missing/retry")).status_code == 404
    assert (await api.delete("/audits/missing")).status_code == 404


@pytest.mark.asyncio
async def test_list_filters_and_delete(api):
    first = (await api.post("/audits", json={"channel_reference": "UC_API"})).json()
    await api.post("/audits", json={"channel_reference": "UC_API", "audit_type": "client_baseline"})

    listing = (await api.get("/audits", params={"audit_type": "client_baseline"})).json()
    assert len(listing) == 1
    assert listing[0]["audit_type"] == "client_baseline"
    assert "sections" not in listing[0]

    await _wait_for_terminal(api, first["audit_id"])
    resp = await api.delete(f"/audits/{first['audit_id']}")
    assert resp.status_code == 200
    assert (await api.get(f"/audits/{first['audit_id']}")).status_code == 404
    assert len((await api.get("/audits")).json()) == 1


@pytest.mark.asyncio
async def test_retry_only_failed_audits(api, youtube):
    youtube.error = YouTubeAPIError("quotaExceeded")
    created = (await api.post("/audits", json={"channel_reference": "UC_API"})).json()
    failed = await _wait_for_terminal(api, created["audit_id"])
    assert failed["status"] == "failed"
    assert failed["sections"][0]["status"] == "failed"
    assert "quotaExceeded" in failed["error_message"]

    youtube.error = None
    resp = await api.post(f"/audits/{created['audit_id']}/retry")
    assert resp.status_code == 202
    retried = resp.json()
    assert retried["retry_of"] == created["audit_id"]

    completed = await _wait_for_terminal(api, retried["audit_id"])
    assert completed["status"] == "completed"

    conflict = await api.post(f"/audits/{retried['audit_id']}/retry")
    assert conflict.status_code == 409


@pytest.mark.asyncio
async def test_health_probes(api):
    ready = await api.get("/health/ready")
    assert ready.status_code == 200
    assert ready.json() == {"ready": True, "llm": "heuristic"}

    assert (await api.get("/health/live")).json() == {"alive": True}

    health = (await api.get("/health")).json()
    assert health["redis"] == "not_used"
    assert health["youtube_api_key"] == "configured"
