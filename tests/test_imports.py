"""
End-to-end tests for the import API.

Covers:
  - validate previews classification without writing or logging
  - unresolved operators are counted, not fatal
  - commit writes, is idempotent and is logged
  - 422 for unusable documents, 400 for conflicts, oversize and unknown actors
  - resolutions and overrideConflicts
  - file uploads in every accepted format
  - import history
"""

import json
import uuid

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy import func, select

from fleetsync.core.config import settings
from fleetsync.models import Aircraft, ImportLogEntry
from tests.fixtures.document_factory import (
    AIRCRAFT_ROWS,
    aircraft_csv,
    customer_csv,
    make_json,
    make_workbook,
)

BASE = "/api/v1/import"


async def _count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


@pytest_asyncio.fixture
async def actor(make_user):
    return await make_user("Dana Reyes", "dana@example.com")


@pytest_asyncio.fixture
async def customers(make_customer):
    atlas = await make_customer("Atlas Air", color="#EF4444")
    kalitta = await make_customer("Kalitta Air", color="#F97316")
    return {"atlas": atlas, "kalitta": kalitta}


# ─── Validate ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_validate_unknown_operator_and_mapped_type(
    client: AsyncClient, db_session, make_mapping
):
    """A new aircraft with an unknown operator is still an add, with its canonical type."""
    await make_mapping("*737*", "B737", priority=50)
    resp = await client.post(f"{BASE}/aircraft/validate", json={
        "content": "registration,rawType,operator\nN12345,B737-800 WL,AirCo\n",
        "format": "csv",
    })
    assert resp.status_code == 200
    body = resp.json()
    assert body["valid"] is True
    assert body["summary"]["toAdd"] == 1
    assert body["summary"]["invalidOperators"] == 1
    assert body["summary"]["conflicts"] == 0

    [added] = body["records"]["add"]
    assert added["key"] == "N12345"
    assert added["aircraftType"] == "B737"
    assert added["typePattern"] == "*737*"
    assert added["operatorId"] is None
    assert any("AirCo" in w for w in body["warnings"])

    assert await _count(db_session, Aircraft) == 0
    assert await _count(db_session, ImportLogEntry) == 0


@pytest.mark.asyncio
async def test_validate_reports_updates_and_conflicts(
    client: AsyncClient, customers, make_aircraft, make_mapping
):
    await make_mapping("*747*", "B747")
    await make_aircraft("N408MC", raw_type="B747-47UF", operator=customers["atlas"])
    content = (
        "registration,rawType,operator\n"
        "N408MC,B747-47UF,Kalitta Air\n"
        "N408MG,B747-47UF,Atlas Air\n"
    )
    resp = await client.post(f"{BASE}/aircraft/validate", json={"content": content})
    assert resp.status_code == 200
    body = resp.json()
    assert body["summary"]["toUpdate"] == 1
    assert body["summary"]["conflicts"] == 1

    [update] = body["records"]["update"]
    assert {c["field"] for c in update["changes"]} == {"operator", "operatorId"}
    [conflict] = body["records"]["conflicts"]
    assert conflict["key"] == "N408MG"
    assert conflict["matchedKey"] == "N408MC"
    assert conflict["score"] == pytest.approx(0.8333)

    fuzzy = body["records"]["fuzzyMatches"]
    assert [(m["field"], m["input"], m["matched"]) for m in fuzzy] == [
        ("registration", "N408MG", "N408MC"),
    ]


@pytest.mark.asyncio
async def test_validate_override_policy(client: AsyncClient, customers, make_aircraft):
    await make_aircraft("N408MC", operator=customers["atlas"])
    resp = await client.post(f"{BASE}/aircraft/validate", json={
        "content": "registration,rawType,operator\nN408MG,B747-400F,Atlas Air\n",
        "conflictPolicy": "override",
    })
    body = resp.json()
    assert body["summary"]["conflicts"] == 0
    assert body["summary"]["toAdd"] == 1


@pytest.mark.asyncio
async def test_validate_fuzzy_operator_match(client: AsyncClient, customers):
    resp = await client.post(f"{BASE}/aircraft/validate", json={
        "content": "registration,rawType,operator\nN12345,B737-800,Kalita Air\n",
    })
    body = resp.json()
    assert body["summary"]["invalidOperators"] == 0
    [match] = body["records"]["fuzzyMatches"]
    assert match["field"] == "operator"
    assert match["matched"] == "Kalitta Air"
    assert match["matchedId"] == str(customers["kalitta"].id)
    assert body["records"]["add"][0]["operatorName"] == "Kalitta Air"


@pytest.mark.asyncio
async def test_validate_json_document(client: AsyncClient, customers):
    resp = await client.post(f"{BASE}/aircraft/validate", json={
        "content": make_json(AIRCRAFT_ROWS, wrapper="value"),
        "format": "json",
    })
    assert resp.status_code == 200
    assert resp.json()["summary"]["toAdd"] == 3


@pytest.mark.asyncio
async def test_validate_missing_required_column_is_422(client: AsyncClient):
    resp = await client.post(f"{BASE}/aircraft/validate", json={
        "content": "registration,operator\nN1,Atlas Air\n",
    })
    assert resp.status_code == 422
    body = resp.json()
    assert body["valid"] is False
    assert "rawType" in body["errors"][0]


@pytest.mark.asyncio
async def test_validate_all_rows_invalid_is_422(client: AsyncClient):
    resp = await client.post(f"{BASE}/aircraft/validate", json={
        "content": "registration,rawType,operator\nN1,,Atlas Air\n",
    })
    assert resp.status_code == 422
    assert resp.json()["errors"] == ["Row 2: rawType is required"]


@pytest.mark.asyncio
async def test_validate_unknown_format_is_422(client: AsyncClient):
    resp = await client.post(f"{BASE}/customers/validate", json={
        "content": "name\nAtlas Air\n",
        "format": "yaml",
    })
    assert resp.status_code == 422
    assert "Unsupported format" in resp.json()["errors"][0]


@pytest.mark.asyncio
async def test_validate_oversize_is_400(client: AsyncClient, monkeypatch):
    monkeypatch.setattr(settings, "MAX_IMPORT_SIZE_MB", 0.0001)
    resp = await client.post(f"{BASE}/customers/validate", json={
        "content": "name\n" + "A" * 500 + "\n",
    })
    assert resp.status_code == 400
    assert "limit" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_unknown_entity_is_404(client: AsyncClient):
    resp = await client.post(f"{BASE}/engines/validate", json={"content": "x\n1\n"})
    assert resp.status_code == 404


# ─── Commit ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_commit_then_recommit_is_noop(client: AsyncClient, db_session, actor, customers):
    payload = {"content": aircraft_csv(), "actorId": str(actor.id), "fileName": "fleet.csv"}
    first = await client.post(f"{BASE}/aircraft/commit", json=payload)
    assert first.status_code == 200
    assert first.json()["added"] == 3
    assert first.json()["status"] == "success"

    second = await client.post(f"{BASE}/aircraft/commit", json=payload)
    assert second.status_code == 200
    body = second.json()
    assert (body["added"], body["updated"], body["skipped"]) == (0, 0, 3)

    assert await _count(db_session, Aircraft) == 3
    assert await _count(db_session, ImportLogEntry) == 2


@pytest.mark.asyncio
async def test_commit_conflict_is_400_and_logged(
    client: AsyncClient, db_session, actor, customers, make_aircraft
):
    await make_aircraft("N408MC", operator=customers["atlas"])
    resp = await client.post(f"{BASE}/aircraft/commit", json={
        "content": "registration,rawType,operator\nN408MG,B747-400F,Atlas Air\n",
        "actorId": str(actor.id),
    })
    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["conflicts"][0]["key"] == "N408MG"
    assert body["conflicts"][0]["matched"] == "N408MC"
    assert body["importLogId"] is not None

    assert await _count(db_session, Aircraft) == 1
    entry = await db_session.get(ImportLogEntry, uuid.UUID(body["importLogId"]))
    assert entry.status == "failed"


@pytest.mark.asyncio
async def test_commit_with_merge_resolution(
    client: AsyncClient, db_session, actor, customers, make_aircraft
):
    aircraft = await make_aircraft("N408MC", operator=customers["atlas"])
    resp = await client.post(f"{BASE}/aircraft/commit", json={
        "content": "registration,rawType,operator,lessor\nN408MG,B747-400F,Atlas Air,GECAS\n",
        "actorId": str(actor.id),
        "resolutions": {"N408MG": "merge"},
    })
    assert resp.status_code == 200
    assert resp.json()["updated"] == 1

    await db_session.refresh(aircraft)
    assert aircraft.registration == "N408MC"
    assert aircraft.lessor == "GECAS"


@pytest.mark.asyncio
async def test_commit_invalid_resolution_is_422(client: AsyncClient, actor):
    resp = await client.post(f"{BASE}/aircraft/commit", json={
        "content": aircraft_csv(),
        "actorId": str(actor.id),
        "resolutions": {"N408MG": "replace"},
    })
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_commit_unparseable_document_is_422_and_logged(
    client: AsyncClient, db_session, actor
):
    resp = await client.post(f"{BASE}/customers/commit", json={
        "content": "{not json",
        "format": "json",
        "actorId": str(actor.id),
    })
    assert resp.status_code == 422
    body = resp.json()
    assert body["status"] == "failed"
    assert "Invalid JSON" in body["errors"][0]

    entries = (await db_session.execute(select(ImportLogEntry))).scalars().all()
    assert [(e.entity, e.status) for e in entries] == [("customer", "failed")]


@pytest.mark.asyncio
async def test_commit_oversize_is_400_and_logged(
    client: AsyncClient, db_session, actor, monkeypatch
):
    monkeypatch.setattr(settings, "MAX_IMPORT_SIZE_MB", 0.0001)
    resp = await client.post(f"{BASE}/customers/commit", json={
        "content": "name\n" + "A" * 500 + "\n",
        "actorId": str(actor.id),
    })
    assert resp.status_code == 400
    assert "limit" in resp.json()["errors"][0]
    assert await _count(db_session, ImportLogEntry) == 1


@pytest.mark.asyncio
async def test_commit_unknown_actor_is_400(client: AsyncClient, db_session):
    resp = await client.post(f"{BASE}/customers/commit", json={
        "content": customer_csv(),
        "actorId": str(uuid.uuid4()),
    })
    assert resp.status_code == 400
    assert "Unknown actor" in resp.json()["detail"]
    assert await _count(db_session, ImportLogEntry) == 0


@pytest.mark.asyncio
async def test_commit_partial_reports_row_errors(client: AsyncClient, actor):
    resp = await client.post(f"{BASE}/customers/commit", json={
        "content": "name,iataCode\nAeroLogic,3S\nBad Codes,XYZ1\n",
        "actorId": str(actor.id),
    })
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "partial"
    assert body["added"] == 1
    assert body["errors"] == ["Row 3: iataCode has an invalid format: 'XYZ1'"]


# ─── Uploads ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_upload_validate_csv(client: AsyncClient, customers):
    resp = await client.post(
        f"{BASE}/aircraft/upload/validate",
        files={"file": ("fleet.csv", aircraft_csv().encode("utf-8"), "text/csv")},
    )
    assert resp.status_code == 200
    assert resp.json()["summary"]["toAdd"] == 3


@pytest.mark.asyncio
async def test_upload_validate_bad_policy_is_400(client: AsyncClient):
    resp = await client.post(
        f"{BASE}/aircraft/upload/validate",
        data={"conflictPolicy": "ignore"},
        files={"file": ("fleet.csv", aircraft_csv().encode("utf-8"), "text/csv")},
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_upload_commit_workbook(client: AsyncClient, db_session, actor, customers):
    resp = await client.post(
        f"{BASE}/aircraft/upload/commit",
        data={"actorId": str(actor.id)},
        files={"file": ("fleet.xlsx", make_workbook(AIRCRAFT_ROWS), "application/octet-stream")},
    )
    assert resp.status_code == 200
    assert resp.json()["added"] == 3

    entry = (await db_session.execute(select(ImportLogEntry))).scalar_one()
    assert entry.format == "spreadsheet"
    assert entry.source == "file"
    assert entry.file_name == "fleet.xlsx"


@pytest.mark.asyncio
async def test_upload_commit_json_with_resolutions(
    client: AsyncClient, db_session, actor, customers, make_aircraft
):
    await make_aircraft("N408MC", operator=customers["atlas"])
    rows = [{"registration": "N408MG", "rawType": "B747-400F", "operator": "Atlas Air"}]
    resp = await client.post(
        f"{BASE}/aircraft/upload/commit",
        data={"actorId": str(actor.id), "resolutions": json.dumps({"N408MG": "skip"})},
        files={"file": ("fleet.json", make_json(rows).encode("utf-8"), "application/json")},
    )
    assert resp.status_code == 200
    assert resp.json()["skipped"] == 1
    assert await _count(db_session, Aircraft) == 1


@pytest.mark.asyncio
async def test_upload_commit_override(client: AsyncClient, db_session, actor, customers, make_aircraft):
    await make_aircraft("N408MC", operator=customers["atlas"])
    content = "registration,rawType,operator\nN408MG,B747-400F,Atlas Air\n"
    resp = await client.post(
        f"{BASE}/aircraft/upload/commit",
        data={"actorId": str(actor.id), "overrideConflicts": "true"},
        files={"file": ("fleet.csv", content.encode("utf-8"), "text/csv")},
    )
    assert resp.status_code == 200
    assert resp.json()["added"] == 1


@pytest.mark.asyncio
async def test_upload_commit_bad_actor_id_is_400(client: AsyncClient):
    resp = await client.post(
        f"{BASE}/aircraft/upload/commit",
        data={"actorId": "not-a-uuid"},
        files={"file": ("fleet.csv", aircraft_csv().encode("utf-8"), "text/csv")},
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_upload_commit_bad_resolutions_is_400(client: AsyncClient, actor):
    resp = await client.post(
        f"{BASE}/aircraft/upload/commit",
        data={"actorId": str(actor.id), "resolutions": "{oops"},
        files={"file": ("fleet.csv", aircraft_csv().encode("utf-8"), "text/csv")},
    )
    assert resp.status_code == 400


# ─── History ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_history_newest_first_with_names(client: AsyncClient, actor, customers):
    await client.post(f"{BASE}/customers/commit", json={
        "content": "name\nAeroLogic\n", "actorId": str(actor.id),
    })
    await client.post(f"{BASE}/aircraft/commit", json={
        "content": aircraft_csv(), "actorId": str(actor.id),
    })

    resp = await client.get(f"{BASE}/history", params={"page": 1, "pageSize": 1})
    assert resp.status_code == 200
    body = resp.json()
    assert body["pagination"] == {"page": 1, "pageSize": 1, "total": 2, "totalPages": 2}
    [entry] = body["data"]
    assert entry["entity"] == "aircraft"
    assert entry["importedByName"] == "Dana Reyes"
    assert entry["recordsAdded"] == 3


@pytest.mark.asyncio
async def test_history_page_size_bounded(client: AsyncClient):
    resp = await client.get(f"{BASE}/history", params={"pageSize": 100000})
    assert resp.status_code == 422
