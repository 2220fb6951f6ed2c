"""
Tests for the serialized commit path.

Covers:
  - adds and updates land in the database with derived columns
  - unresolved conflicts block every write but are still logged
  - a merge onto a record another row already writes is a conflict
  - a storage failure mid-batch rolls back the whole batch
  - a second identical commit is a no-op
  - confirmed records are protected unless overrideConflicts
  - provenance only strengthens
  - reconciliation runs under the commit lock
"""

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from fleetsync.core.config import settings
from fleetsync.core.entity_config import get_entity_config
from fleetsync.models import Aircraft, Customer, ImportLogEntry
from fleetsync.services.committer import CommitOptions, Committer, column_values
from fleetsync.services.field_validator import validate_records
from fleetsync.services.format_parser import parse_document
from fleetsync.services.type_normalizer import TypeNormalizer, install_default_mappings
from tests.fixtures.document_factory import aircraft_csv, customer_csv

AIRCRAFT = get_entity_config("aircraft")
CUSTOMER = get_entity_config("customer")


def _records(text: str, config=AIRCRAFT):
    return validate_records(parse_document(text, "csv", config).data, config)


async def _count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


@pytest_asyncio.fixture
async def fleet(db_session, make_user, make_customer):
    """A user, two customers and the default type mappings."""
    user = await make_user("Import Bot")
    atlas = await make_customer("Atlas Air", color="#EF4444")
    kalitta = await make_customer("Kalitta Air", color="#F97316")
    await install_default_mappings(db_session)
    return {"user": user, "atlas": atlas, "kalitta": kalitta}


# ─── Writes ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_commit_adds_records_with_derived_columns(db_session, committer, fleet):
    result = await committer.commit(
        db_session, AIRCRAFT, _records(aircraft_csv()), CommitOptions(user_id=fleet["user"].id)
    )
    assert result.success is True
    assert result.status == "success"
    assert (result.added, result.updated, result.skipped) == (3, 0, 0)

    row = (await db_session.execute(
        select(Aircraft).where(Aircraft.registration == "N322AS")
    )).scalar_one()
    assert row.aircraft_type == "B767"
    assert row.raw_type == "B767-300ER(BCF)"
    assert row.operator_raw == "Atlas Air"
    assert row.operator_id == fleet["atlas"].id
    assert row.operator_match_confidence == 1.0
    assert row.source == "imported"
    assert row.created_by == fleet["user"].id


@pytest.mark.asyncio
async def test_commit_logs_one_entry(db_session, committer, fleet):
    result = await committer.commit(
        db_session, AIRCRAFT, _records(aircraft_csv()),
        CommitOptions(user_id=fleet["user"].id, fmt="delimited-text", file_name="fleet.csv"),
    )
    entries = (await db_session.execute(select(ImportLogEntry))).scalars().all()
    assert len(entries) == 1
    entry = entries[0]
    assert entry.id == result.import_log_id
    assert entry.entity == "aircraft"
    assert entry.file_name == "fleet.csv"
    assert entry.status == "success"
    assert (entry.record_count, entry.records_added) == (3, 3)


@pytest.mark.asyncio
async def test_commit_updates_changed_fields(db_session, committer, fleet, make_aircraft):
    aircraft = await make_aircraft("N408MC", raw_type="B747-47UF", operator=fleet["atlas"],
                                   manufacturer="Boeing")
    text = "registration,rawType,operator,manufacturer\nN408MC,B747-47UF,Kalitta Air,Boeing\n"
    result = await committer.commit(
        db_session, AIRCRAFT, _records(text), CommitOptions(user_id=fleet["user"].id)
    )
    assert (result.added, result.updated) == (0, 1)

    await db_session.refresh(aircraft)
    assert aircraft.operator_raw == "Kalitta Air"
    assert aircraft.operator_id == fleet["kalitta"].id
    assert aircraft.source == "imported"
    assert aircraft.updated_by == fleet["user"].id


@pytest.mark.asyncio
async def test_commit_twice_is_idempotent(db_session, committer, fleet):
    options = CommitOptions(user_id=fleet["user"].id)
    await committer.commit(db_session, AIRCRAFT, _records(aircraft_csv()), options)
    second = await committer.commit(db_session, AIRCRAFT, _records(aircraft_csv()), options)

    assert second.success is True
    assert (second.added, second.updated, second.skipped) == (0, 0, 3)
    assert await _count(db_session, Aircraft) == 3
    assert await _count(db_session, ImportLogEntry) == 2


@pytest.mark.asyncio
async def test_new_customers_get_palette_colours(db_session, committer, fleet):
    text = "name,country\nAeroLogic,Germany\n"
    await committer.commit(db_session, CUSTOMER, _records(text, CUSTOMER),
                           CommitOptions(user_id=fleet["user"].id))
    row = (await db_session.execute(
        select(Customer).where(Customer.name == "AeroLogic")
    )).scalar_one()
    assert row.color not in ("#EF4444", "#F97316")
    assert row.color_text == "#ffffff"


# ─── Conflicts ────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_conflict_blocks_every_write(db_session, committer, fleet, make_aircraft):
    await make_aircraft("N408MC", operator=fleet["atlas"])
    text = (
        "registration,rawType,operator\n"
        "N999ZZ,B737-800,Atlas Air\n"
        "N408MG,B747-400F,Atlas Air\n"
    )
    result = await committer.commit(
        db_session, AIRCRAFT, _records(text), CommitOptions(user_id=fleet["user"].id)
    )
    assert result.success is False
    assert result.status == "failed"
    assert result.conflicts == [{"row": 3, "key": "N408MG", "matched": "N408MC", "score": 0.8333}]
    assert await _count(db_session, Aircraft) == 1

    entry = await db_session.get(ImportLogEntry, result.import_log_id)
    assert entry.status == "failed"
    assert entry.records_added == 0
    assert "N408MG" in entry.errors[0]


@pytest.mark.asyncio
async def test_override_commits_near_duplicate(db_session, committer, fleet, make_aircraft):
    await make_aircraft("N408MC", operator=fleet["atlas"])
    text = "registration,rawType,operator\nN408MG,B747-400F,Atlas Air\n"
    result = await committer.commit(
        db_session, AIRCRAFT, _records(text),
        CommitOptions(user_id=fleet["user"].id, override_conflicts=True),
    )
    assert result.success is True
    assert result.added == 1
    assert await _count(db_session, Aircraft) == 2


@pytest.mark.asyncio
async def test_merge_onto_record_already_in_batch_blocks_commit(
    db_session, committer, fleet, make_aircraft
):
    stored = await make_aircraft("N408MC", operator=fleet["atlas"], manufacturer="Boeing")
    text = (
        "registration,rawType,operator,manufacturer\n"
        "N408MC,B747-400F,Atlas Air,Boeing A\n"
        "N408MG,B747-400F,Atlas Air,Boeing B\n"
    )
    result = await committer.commit(
        db_session, AIRCRAFT, _records(text),
        CommitOptions(user_id=fleet["user"].id, resolutions={"n408mg": "merge"}),
    )
    assert result.success is False
    assert result.conflicts == [{"row": 3, "key": "N408MG", "matched": "N408MC", "score": 0.8333}]

    await db_session.refresh(stored)
    assert stored.manufacturer == "Boeing"
    entry = await db_session.get(ImportLogEntry, result.import_log_id)
    assert entry.status == "failed"
    assert entry.records_updated == 0


@pytest.mark.asyncio
async def test_skip_resolution_counts_as_skipped(db_session, committer, fleet, make_aircraft):
    await make_aircraft("N408MC", operator=fleet["atlas"])
    text = "registration,rawType,operator\nN408MG,B747-400F,Atlas Air\nN999ZZ,B737,Atlas Air\n"
    result = await committer.commit(
        db_session, AIRCRAFT, _records(text),
        CommitOptions(user_id=fleet["user"].id, resolutions={"N408MG": "skip"}),
    )
    assert result.success is True
    assert (result.added, result.skipped) == (1, 1)


# ─── Atomicity ────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_storage_failure_rolls_back_batch(db_session, committer, fleet, monkeypatch):
    original_apply = Committer._apply

    async def failing_apply(self, db, config, adds, updates, user_id):
        await original_apply(self, db, config, adds, updates, user_id)
        raise OperationalError("INSERT INTO aircraft", {}, Exception("disk I/O error"))

    monkeypatch.setattr(Committer, "_apply", failing_apply)
    result = await committer.commit(
        db_session, AIRCRAFT, _records(aircraft_csv()), CommitOptions(user_id=fleet["user"].id)
    )

    assert result.success is False
    assert result.status == "failed"
    assert "rolled back" in result.errors[0]
    assert await _count(db_session, Aircraft) == 0

    entries = (await db_session.execute(select(ImportLogEntry))).scalars().all()
    assert [e.status for e in entries] == ["failed"]


@pytest.mark.asyncio
async def test_invalid_rows_make_partial_commit(db_session, committer, fleet):
    text = "registration,rawType,operator\nN1,,Atlas Air\nN2,B737-800,Atlas Air\n"
    result = await committer.commit(
        db_session, AIRCRAFT, _records(text), CommitOptions(user_id=fleet["user"].id)
    )
    assert result.success is True
    assert result.status == "partial"
    assert result.added == 1
    assert result.errors == ["Row 2: rawType is required"]


# ─── Provenance ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_confirmed_record_protected_without_override(
    db_session, committer, fleet, make_aircraft
):
    aircraft = await make_aircraft("N408MC", raw_type="B747-47UF", operator=fleet["atlas"],
                                   source="confirmed")
    text = "registration,rawType,operator\nN408MC,B747-47UF,Kalitta Air\n"
    result = await committer.commit(
        db_session, AIRCRAFT, _records(text), CommitOptions(user_id=fleet["user"].id)
    )
    assert result.success is True
    assert result.status == "partial"
    assert (result.updated, result.skipped) == (0, 1)

    await db_session.refresh(aircraft)
    assert aircraft.operator_raw == "Atlas Air"


@pytest.mark.asyncio
async def test_confirmed_record_updated_with_override_keeps_source(
    db_session, committer, fleet, make_aircraft
):
    aircraft = await make_aircraft("N408MC", raw_type="B747-47UF", operator=fleet["atlas"],
                                   source="confirmed")
    text = "registration,rawType,operator\nN408MC,B747-47UF,Kalitta Air\n"
    result = await committer.commit(
        db_session, AIRCRAFT, _records(text),
        CommitOptions(user_id=fleet["user"].id, override_conflicts=True),
    )
    assert result.updated == 1

    await db_session.refresh(aircraft)
    assert aircraft.operator_raw == "Kalitta Air"
    assert aircraft.source == "confirmed"


# ─── Serialization ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_reconcile_runs_under_commit_lock(db_session, committer, fleet, monkeypatch):
    seen: list[bool] = []
    original = Committer.build_reconciler

    async def recording(self, db, config):
        seen.append(self._lock.locked())
        return await original(self, db, config)

    monkeypatch.setattr(Committer, "build_reconciler", recording)
    await committer.commit(db_session, CUSTOMER, _records(customer_csv(), CUSTOMER),
                           CommitOptions(user_id=fleet["user"].id))
    assert seen == [True]
    assert committer._lock.locked() is False


# ─── Thresholds ───────────────────────────────────────────────


def test_thresholds_default_from_settings(monkeypatch):
    monkeypatch.setattr(settings, "FUZZY_MATCH_THRESHOLD", 0.9)
    monkeypatch.setattr(settings, "OPERATOR_MATCH_THRESHOLD", 0.6)
    committer = Committer(TypeNormalizer())
    assert committer.matcher.threshold == 0.9
    assert committer.operator_matcher.threshold == 0.6


def test_explicit_thresholds_are_not_replaced_by_defaults():
    committer = Committer(TypeNormalizer(), fuzzy_threshold=1.0, operator_threshold=0.5)
    assert committer.matcher.threshold == 1.0
    assert committer.operator_matcher.threshold == 0.5
    with pytest.raises(ValueError):
        Committer(TypeNormalizer(), fuzzy_threshold=0.0)


# ─── Column Mapping ───────────────────────────────────────────


def test_column_values_maps_fields_and_drops_informational():
    values = {
        "registration": "N1",
        "rawType": "B737-800",
        "aircraftType": "B737",
        "operator": "Atlas Air",
        "isActive": "false",
    }
    assert column_values(AIRCRAFT, values) == {
        "registration": "N1",
        "raw_type": "B737-800",
        "aircraft_type": "B737",
        "operator_raw": "Atlas Air",
    }
