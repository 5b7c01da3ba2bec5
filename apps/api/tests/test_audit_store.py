from datetime import timedelta

import pytest
from sqlalchemy import update

from analysis.dates import utc_now
from analysis.models import AuditConfig, SECTION_ORDER, ScopedPeers
from models.audit import Audit
from services.audit_store import AuditNotFoundError, AuditStateError, AuditStore


async def _new_audit(store, **kwargs):
    return await store.create_audit(
        channel_reference=kwargs.get("channel_reference", "@someone"),
        youtube_channel_id=kwargs.get("youtube_channel_id", "UC_SOMEONE"),
        audit_type=kwargs.get("audit_type", "prospect"),
        config=kwargs.get("config"),
    )


@pytest.mark.asyncio
async def test_create_audit_has_pending_sections_in_order(session_factory):
    store = AuditStore(session_factory)
    config = AuditConfig(force_refresh=True, peer_scope=ScopedPeers(category_ids=["gaming", "gaming", "tech"]))

    audit = await _new_audit(store, config=config)

    assert audit.status == "created"
    assert audit.progress["pct"] == 0
    assert audit.config["peer_scope"] == {"kind": "scoped", "category_ids": ["gaming", "tech"]}
    assert [s.section_key for s in audit.sections] == [k.value for k in SECTION_ORDER]
    assert all(s.status == "pending" for s in audit.sections)
    assert audit.youtube_api_calls == 0
    assert float(audit.total_cost) == 0.0


@pytest.mark.asyncio
async def test_missing_audit_raises_not_found(session_factory):
    store = AuditStore(session_factory)
    with pytest.raises(AuditNotFoundError):
        await store.get_audit("nope")
    with pytest.raises(AuditNotFoundError):
        await store.get_audit_sections("nope")
    with pytest.raises(AuditNotFoundError):
        await store.delete_audit("nope")


@pytest.mark.asyncio
async def test_progress_is_clamped_and_never_lowered(session_factory):
    store = AuditStore(session_factory)
    audit = await _new_audit(store)
    await store.set_audit_status(audit.id, "running")

    assert (await store.update_audit_progress(audit.id, "ingestion", 30, "a"))["pct"] == 30
    assert (await store.update_audit_progress(audit.id, "ingestion", 10, "b"))["pct"] == 30
    assert (await store.update_audit_progress(audit.id, "done", 250, "c"))["pct"] == 100
    assert (await store.update_audit_progress(audit.id, "neg", -5, "d"))["pct"] == 100

    stored = await store.get_audit(audit.id)
    assert stored.progress == {"step": "neg", "pct": 100, "message": "d"}


@pytest.mark.asyncio
async def test_status_transitions_are_enforced(session_factory):
    store = AuditStore(session_factory)
    audit = await _new_audit(store)

    with pytest.raises(AuditStateError):
        await store.set_audit_status(audit.id, "completed")

    await store.set_audit_status(audit.id, "running")
    await store.set_audit_status(audit.id, "completed")
    completed = await store.get_audit(audit.id)
    assert completed.completed_at is not None

    # Terminal audits reject every further write.
    with pytest.raises(AuditStateError):
        await store.set_audit_status(audit.id, "failed")
    with pytest.raises(AuditStateError):
        await store.update_audit_progress(audit.id, "x", 50)
    with pytest.raises(AuditStateError):
        await store.add_audit_cost(audit.id, api_calls=1)


@pytest.mark.asyncio
async def test_sections_run_one_at_a_time_in_order(session_factory):
    store = AuditStore(session_factory)
    audit = await _new_audit(store)
    await store.set_audit_status(audit.id, "running")

    with pytest.raises(AuditStateError):
        await store.update_audit_section(audit.id, "series_detection", "running")

    await store.update_audit_section(audit.id, "ingestion", "running")
    with pytest.raises(AuditStateError):
        await store.update_audit_section(audit.id, "ingestion", "running")

    await store.complete_stage(
        audit.id,
        "ingestion",
        {"videos_fetched": 3},
        {"channel_snapshot": {"name": "Someone"}},
    )
    await store.update_audit_section(audit.id, "series_detection", "running")
    await store.update_audit_section(audit.id, "series_detection", "failed", error_message="boom")

    sections = {s.section_key: s for s in await store.get_audit_sections(audit.id)}
    assert sections["ingestion"].status == "completed"
    assert sections["ingestion"].result_data == {"videos_fetched": 3}
    assert sections["ingestion"].started_at is not None
    assert sections["series_detection"].status == "failed"
    assert sections["series_detection"].error_message == "boom"
    assert (await store.get_audit(audit.id)).channel_snapshot == {"name": "Someone"}


@pytest.mark.asyncio
async def test_complete_stage_rejects_unknown_fields(session_factory):
    store = AuditStore(session_factory)
    audit = await _new_audit(store)
    await store.set_audit_status(audit.id, "running")
    await store.update_audit_section(audit.id, "ingestion", "running")

    with pytest.raises(ValueError):
        await store.complete_stage(audit.id, "ingestion", {}, {"status": "completed"})


@pytest.mark.asyncio
async def test_cost_accumulates_and_rejects_negative_deltas(session_factory):
    store = AuditStore(session_factory)
    audit = await _new_audit(store)
    await store.set_audit_status(audit.id, "running")

    await store.add_audit_cost(audit.id, api_calls=3)
    await store.add_audit_cost(audit.id, llm_cost=0.0125, llm_tokens=1500)
    await store.add_audit_cost(audit.id, api_calls=2, llm_cost=0.0025, llm_tokens=500)

    with pytest.raises(ValueError):
        await store.add_audit_cost(audit.id, api_calls=-1)

    stored = await store.get_audit(audit.id)
    assert stored.youtube_api_calls == 5
    assert stored.total_tokens == 2000
    assert float(stored.total_cost) == pytest.approx(0.015)


@pytest.mark.asyncio
async def test_running_audit_cannot_be_deleted(session_factory):
    store = AuditStore(session_factory)
    audit = await _new_audit(store)
    await store.set_audit_status(audit.id, "running")

    with pytest.raises(AuditStateError):
        await store.delete_audit(audit.id)

    await store.set_audit_status(audit.id, "failed", error_message="stopped")
    await store.delete_audit(audit.id)
    with pytest.raises(AuditNotFoundError):
        await store.get_audit(audit.id)


@pytest.mark.asyncio
async def test_list_audits_filters(session_factory):
    store = AuditStore(session_factory)
    first = await _new_audit(store, audit_type="prospect")
    await _new_audit(store, audit_type="client_baseline")
    await store.set_audit_status(first.id, "running")

    assert len(await store.list_audits()) == 2
    baselines = await store.list_audits(audit_type="client_baseline")
    assert [a.audit_type for a in baselines] == ["client_baseline"]
    running = await store.list_audits(status="running")
    assert [a.id for a in running] == [first.id]
    assert len(await store.list_audits(limit=1)) == 1


@pytest.mark.asyncio
async def test_fail_stalled_audits(session_factory):
    store = AuditStore(session_factory)
    stalled = await _new_audit(store)
    recent = await _new_audit(store)
    long_queued = await _new_audit(store)
    never_started = await _new_audit(store)
    for audit in (stalled, recent, long_queued):
        await store.set_audit_status(audit.id, "running")
    await store.update_audit_section(stalled.id, "ingestion", "running")

    hours_ago = utc_now() - timedelta(hours=5)
    async with session_factory() as db:
        await db.execute(
            update(Audit).where(Audit.id == stalled.id).values(created_at=hours_ago, updated_at=hours_ago)
        )
        # Waited in the queue for hours, but a worker is making progress on it now.
        await db.execute(
            update(Audit).where(Audit.id == long_queued.id).values(created_at=hours_ago, updated_at=utc_now())
        )
        await db.execute(
            update(Audit).where(Audit.id == never_started.id).values(created_at=hours_ago, updated_at=None)
        )
        await db.commit()

    assert await store.fail_stalled_audits(max_age_minutes=120) == 2

    failed = await store.get_audit(stalled.id)
    assert failed.status == "failed"
    assert failed.progress["step"] == "failed"
    assert failed.sections[0].status == "failed"
    assert (await store.get_audit(never_started.id)).status == "failed"
    assert (await store.get_audit(long_queued.id)).status == "running"
    assert (await store.get_audit(recent.id)).status == "running"
