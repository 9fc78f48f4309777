import asyncio
import json
from datetime import timedelta

import pytest

from supportassist.services.job_store import (
    JobRecord,
    JobStatus,
    JobStore,
    JobType,
    TRUNCATION_MARKER,
    fingerprint_prompt,
    prepare_auxiliary_data,
)


async def _collect(aiter):
    return [item async for item in aiter]


# ─── Create / Get ────────────────────────────────────────────────────────────

def test_create_sets_expiry_and_empty_ledger(store, clock, redis_client):
    record = asyncio.run(store.create(
        job_id="resp_1",
        job_type="response",
        invoker={"siteId": "site-1", "environment": "prod"},
        prompt_length=120,
        system_prompt_length=40,
        prompt_fingerprint=fingerprint_prompt("prompt", "system"),
        logs=["submitted"],
    ))

    assert record.status == JobStatus.QUEUED
    assert record.job_type == JobType.RESPONSE
    assert record.created_at == clock.now
    assert record.expires_at == clock.now + timedelta(days=14)
    assert record.processed_webhook_ids == []
    assert record.result is None and record.error is None
    assert record.request.prompt_length == 120
    assert "async-job:resp_1" in redis_client.keys_snapshot()

    loaded = asyncio.run(store.get("resp_1"))
    assert loaded == record


def test_get_missing_returns_none(store):
    assert asyncio.run(store.get("nope")) is None


def test_auxiliary_strings_truncated_before_persistence(store):
    long_text = "x" * 5000
    record = asyncio.run(store.create(
        job_id="resp_2",
        job_type="analysis",
        auxiliary_data={
            "agentName": "Dana",
            "ticketBody": long_text,
            "nested": {"notes": [long_text]},
            "searchResults": [
                {"metadata": {"title": "T" * 400, "link": "https://kb/1", "content": long_text, "embedding": [0.1] * 8}},
            ],
        },
    ))

    aux = record.auxiliary_data
    assert aux["agentName"] == "Dana"
    assert aux["ticketBody"] == "x" * 1024 + TRUNCATION_MARKER
    assert aux["nested"]["notes"][0].endswith(TRUNCATION_MARKER)
    assert aux["searchResults"] == [{
        "title": "T" * 256 + TRUNCATION_MARKER,
        "link": "https://kb/1",
        "contentSnippet": "x" * 1024 + TRUNCATION_MARKER,
    }]


def test_prepare_auxiliary_data_does_not_mutate_input():
    original = {"a": "y" * 2000}
    prepare_auxiliary_data(original)
    assert len(original["a"]) == 2000


def test_fingerprint_is_stable_and_order_sensitive():
    assert fingerprint_prompt("a", "b") == fingerprint_prompt("a", "b")
    assert fingerprint_prompt("a", "b") != fingerprint_prompt("b", "a")
    assert len(fingerprint_prompt({"role": "user"}, None)) == 64


# ─── Update ──────────────────────────────────────────────────────────────────

def test_update_merges_and_bumps_updated_at(store, clock):
    created = asyncio.run(store.create(
        job_id="resp_3", job_type="response", auxiliary_data={"agentName": "Dana", "caseStatus": "open"},
    ))
    clock.advance(minutes=5)

    updated = asyncio.run(store.update("resp_3", {
        "status": JobStatus.IN_PROGRESS,
        "auxiliary_data": {"caseStatus": "pending"},
        "vector_stats": {"hits": 3},
    }))

    assert updated.status == JobStatus.IN_PROGRESS
    assert updated.auxiliary_data == {"agentName": "Dana", "caseStatus": "pending"}
    assert updated.vector_stats == {"hits": 3}
    assert updated.updated_at == created.updated_at + timedelta(minutes=5)
    assert updated.created_at == created.created_at


def test_update_keeps_status_when_not_supplied(store):
    asyncio.run(store.create(job_id="resp_4", job_type="response", status="in_progress"))
    updated = asyncio.run(store.update("resp_4", {"status": None, "logs": ["x"]}))
    assert updated.status == JobStatus.IN_PROGRESS
    assert updated.logs == ["x"]


def test_update_replaces_result_and_error(store):
    asyncio.run(store.create(job_id="resp_5", job_type="response"))
    asyncio.run(store.update("resp_5", {"error": {"reason": "x", "message": "m"}}))
    updated = asyncio.run(store.update("resp_5", {"status": "completed", "result": {"rawText": "hi"}, "error": None}))
    assert updated.result == {"rawText": "hi"}
    assert updated.error is None


def test_update_result_is_a_copy(store):
    asyncio.run(store.create(job_id="resp_6", job_type="response"))
    result = {"rawText": "hi", "items": [1]}
    asyncio.run(store.update("resp_6", {"result": result}))
    result["items"].append(2)
    assert asyncio.run(store.get("resp_6")).result == {"rawText": "hi", "items": [1]}


def test_update_ignores_immutable_fields(store):
    created = asyncio.run(store.create(job_id="resp_7", job_type="analysis"))
    updated = asyncio.run(store.update("resp_7", {
        "job_id": "other",
        "job_type": "response",
        "expires_at": created.expires_at + timedelta(days=30),
    }))
    assert updated.job_id == "resp_7"
    assert updated.job_type == JobType.ANALYSIS
    assert updated.expires_at == created.expires_at


def test_update_missing_job_synthesises_shell(store, clock):
    updated = asyncio.run(store.update("ghost", {"status": "failed", "processed_webhook_ids": ["wh_1"]}))
    assert updated.job_id == "ghost"
    assert updated.status == JobStatus.FAILED
    assert updated.job_type is None
    assert updated.processed_webhook_ids == ["wh_1"]
    assert updated.expires_at == clock.now + timedelta(days=14)
    assert asyncio.run(store.get("ghost")) is not None


# ─── Expiry / Delete ─────────────────────────────────────────────────────────

def test_list_expired_respects_retention(store, clock):
    asyncio.run(store.create(job_id="short", job_type="response", retention_days=1))
    asyncio.run(store.create(job_id="long", job_type="response", retention_days=3))

    clock.advance(days=1, seconds=-1)
    assert asyncio.run(_collect(store.list_expired())) == []

    clock.advance(seconds=1)
    assert [j.job_id for j in asyncio.run(_collect(store.list_expired()))] == ["short"]

    clock.advance(days=2)
    assert sorted(j.job_id for j in asyncio.run(_collect(store.list_expired()))) == ["long", "short"]


def test_list_expired_pages_through_namespace(store, clock, redis_client):
    for i in range(7):
        asyncio.run(store.create(job_id=f"job_{i}", job_type="response", retention_days=0))
    # Keys outside the namespace are never touched
    asyncio.run(redis_client.set("other:thing", json.dumps({"x": 1})))

    expired = asyncio.run(_collect(store.list_expired()))
    assert sorted(j.job_id for j in expired) == [f"job_{i}" for i in range(7)]
    assert all(isinstance(j, JobRecord) for j in expired)


def test_list_expired_survives_deletes_between_pages(store):
    for job_id in ("a", "b", "c", "d", "e"):
        asyncio.run(store.create(job_id=job_id, job_type="response", retention_days=0))

    async def drain():
        seen = []
        async for job in store.list_expired():
            seen.append(job.job_id)
            await store.delete(job.job_id)
        return seen

    assert asyncio.run(drain()) == ["a", "b", "c", "d", "e"]


def test_list_expired_yields_each_job_once_when_scan_repeats_keys(store, redis_client, monkeypatch):
    for i in range(5):
        asyncio.run(store.create(job_id=f"job_{i}", job_type="response", retention_days=0))
    original_scan = redis_client.scan

    async def repeating_scan(cursor=0, match=None, count=None):
        next_cursor, page = await original_scan(cursor=cursor, match=match, count=count)
        # Re-send the first key of the scan and repeat within the page
        return next_cursor, page + page[:1] + redis_client._scan_snapshot[:1]

    monkeypatch.setattr(redis_client, "scan", repeating_scan)

    expired = [j.job_id for j in asyncio.run(_collect(store.list_expired()))]
    assert sorted(expired) == [f"job_{i}" for i in range(5)]


def test_zero_retention_is_honoured(redis_client, clock):
    store = JobStore(redis_client, retention_days=0, clock=clock)
    record = asyncio.run(store.create(job_id="now", job_type="response"))
    assert record.expires_at == record.created_at
    assert store.scan_page_size == 100


def test_list_expired_skips_unreadable_documents(store, redis_client):
    asyncio.run(redis_client.set("async-job:broken", "{not json"))
    asyncio.run(store.create(job_id="ok", job_type="response", retention_days=0))
    assert [j.job_id for j in asyncio.run(_collect(store.list_expired()))] == ["ok"]


def test_delete_is_idempotent(store):
    asyncio.run(store.create(job_id="resp_8", job_type="response"))
    asyncio.run(store.delete("resp_8"))
    asyncio.run(store.delete("resp_8"))
    assert asyncio.run(store.get("resp_8")) is None


def test_sanitized_view_hides_ledger(store):
    asyncio.run(store.create(job_id="resp_9", job_type="response"))
    record = asyncio.run(store.update("resp_9", {"processed_webhook_ids": ["wh_1"]}))
    view = record.sanitized()
    assert "processed_webhook_ids" not in view
    assert view["status"] == "queued"


def test_invalid_job_type_rejected(store):
    with pytest.raises(ValueError):
        asyncio.run(store.create(job_id="bad", job_type="translation"))
