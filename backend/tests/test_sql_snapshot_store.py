import os
from pathlib import Path

import pytest
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

import district_analytics.core.db as db_module  # noqa: E402
import district_analytics.models  # noqa: E402,F401
from district_analytics.core.errors import CorruptionDetected, ValidationError  # noqa: E402
from district_analytics.models.snapshots import SnapshotUnit  # noqa: E402
from district_analytics.schemas.snapshots import (  # noqa: E402
    SnapshotFilter,
    SnapshotMetadata,
    SnapshotStatus,
    UnitError,
    WriteOutcome,
)
from district_analytics.storage.snapshot_store import load_unit_history  # noqa: E402
from district_analytics.storage.sql_snapshot_store import SqlSnapshotStore  # noqa: E402
from tests.factories import fixed_clock, make_club, make_ranking_input, make_unit  # noqa: E402


def _setup_db(db_url: str):
    engine = create_engine(
        db_url,
        connect_args={"check_same_thread": False},
        future=True,
    )
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    db_module.Base.metadata.create_all(bind=engine)
    return engine, SessionLocal


@pytest.fixture
def session_factory(tmp_path):
    _, SessionLocal = _setup_db(f"sqlite:///{tmp_path / 'snapshots.db'}")
    return SessionLocal


@pytest.fixture
def store(session_factory):
    return SqlSnapshotStore(session_factory, clock=fixed_clock())


def test_empty_database_has_no_latest(store):
    assert store.get_latest_successful() is None
    assert store.list_snapshots() == []
    assert store.read_unit_data("2024-01-31", "42") is None
    assert store.read_rankings("2024-01-31") is None


def test_write_read_and_list_units(store):
    data = make_unit("2024-01-31", [make_club("1"), make_club("2")])
    assert store.write_unit_data("2024-01-31", "42", data) == WriteOutcome.WRITTEN
    store.write_unit_data("2024-01-31", "61", make_unit("2024-01-31", unit_id="61"))
    assert store.read_unit_data("2024-01-31", "42") == data
    assert store.list_units_in_snapshot("2024-01-31") == ["42", "61"]
    snapshot = store.get_snapshot("2024-01-31")
    assert snapshot.unit_ids == ["42", "61"]
    assert snapshot.metadata is None


def test_rejects_date_like_unit_id(store):
    with pytest.raises(ValidationError):
        store.write_unit_data("2024-01-31", "20240131", make_unit("2024-01-31"))


def test_newer_data_wins_for_closing_period(store):
    first = make_unit("2024-12-31", [make_club("1", membership=20)])
    store.write_unit_data("2024-12-31", "42", first, collection_date="2025-01-03", is_closing_period=True)
    stale = make_unit("2024-12-31", [make_club("1", membership=5)])
    assert (
        store.write_unit_data("2024-12-31", "42", stale, collection_date="2025-01-03", is_closing_period=True)
        == WriteOutcome.SKIPPED_STALE
    )
    assert store.read_unit_data("2024-12-31", "42") == first

    newer = make_unit("2024-12-31", [make_club("1", membership=22)])
    assert (
        store.write_unit_data("2024-12-31", "42", newer, collection_date="2025-01-05", is_closing_period=True)
        == WriteOutcome.WRITTEN
    )
    assert store.read_unit_data("2024-12-31", "42") == newer


def test_identical_write_keeps_row(store, session_factory):
    data = make_unit("2024-01-31")
    store.write_unit_data("2024-01-31", "42", data)
    with session_factory() as db:
        before = db.query(SnapshotUnit).one()
        before_state = (before.id, before.sha256, before.updated_at)
    assert store.write_unit_data("2024-01-31", "42", data) == WriteOutcome.WRITTEN
    with session_factory() as db:
        after = db.query(SnapshotUnit).one()
        assert (after.id, after.sha256, after.updated_at) == before_state


def test_metadata_status_and_latest(store):
    for snapshot_id in ("2024-01-31", "2024-02-29"):
        store.write_unit_data(snapshot_id, "42", make_unit(snapshot_id))
    store.write_snapshot_metadata(
        SnapshotMetadata(
            snapshot_id="2024-01-31",
            created_at="2024-02-01T00:00:00",
            successful_units=["42"],
        )
    )
    store.write_snapshot_metadata(
        SnapshotMetadata(
            snapshot_id="2024-02-29",
            created_at="2024-03-01T00:00:00",
            status=SnapshotStatus.PARTIAL,
            successful_units=["42"],
            failed_units=["61"],
            unit_errors=[UnitError(unit_id="61", error="boom")],
            is_closing_period_data=True,
            collection_date="2024-03-02",
            logical_date="2024-02-29",
            data_month="2024-02",
        )
    )
    assert store.get_latest_successful().snapshot_id == "2024-01-31"
    metadata = store.get_snapshot_metadata("2024-02-29")
    assert metadata.status == SnapshotStatus.PARTIAL
    assert metadata.unit_errors == [UnitError(unit_id="61", error="boom")]
    assert metadata.collection_date == "2024-03-02"
    assert metadata.data_month == "2024-02"
    assert [s.snapshot_id for s in store.list_snapshots(SnapshotFilter(status=SnapshotStatus.PARTIAL))] == [
        "2024-02-29"
    ]
    assert [s.snapshot_id for s in store.list_snapshots(SnapshotFilter(limit=1))] == ["2024-02-29"]
    assert [s.snapshot_date for s in load_unit_history(store, "42")] == ["2024-01-31", "2024-02-29"]


def test_delete_removes_units_and_rankings(store, session_factory):
    from district_analytics.analytics.rankings import RankingCalculator

    store.write_unit_data("2024-01-31", "42", make_unit("2024-01-31"))
    store.write_rankings(
        "2024-01-31",
        RankingCalculator(fixed_clock()).build_rankings_artifact("2024-01-31", [make_ranking_input("42")]),
    )
    assert store.read_rankings("2024-01-31").metadata.total_units == 1
    assert store.delete_snapshot("2024-01-31") is True
    assert store.get_snapshot("2024-01-31") is None
    assert store.read_rankings("2024-01-31") is None
    with session_factory() as db:
        assert db.query(SnapshotUnit).count() == 0
    assert store.delete_snapshot("2024-01-31") is False


def test_tampered_payload_is_corruption(store, session_factory):
    store.write_unit_data("2024-01-31", "42", make_unit("2024-01-31"))
    with session_factory() as db:
        row = db.query(SnapshotUnit).one()
        payload = dict(row.payload)
        payload["total_payments"] = 999
        row.payload = payload
        db.commit()
    with pytest.raises(CorruptionDetected):
        store.read_unit_data("2024-01-31", "42")


def test_migration_creates_snapshot_tables(tmp_path, monkeypatch):
    from alembic import command
    from alembic.config import Config

    db_url = f"sqlite:///{tmp_path / 'migrated.db'}"
    monkeypatch.setenv("DATABASE_URL", db_url)
    backend_dir = Path(__file__).resolve().parents[1]
    config = Config(str(backend_dir / "alembic.ini"))
    config.set_main_option("script_location", str(backend_dir / "alembic"))
    config.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(config, "head")

    tables = set(inspect(create_engine(db_url)).get_table_names())
    assert {"snapshots", "snapshot_units", "snapshot_rankings"} <= tables

    SessionLocal = sessionmaker(bind=create_engine(db_url, future=True), future=True)
    migrated = SqlSnapshotStore(SessionLocal, clock=fixed_clock())
    assert migrated.write_unit_data("2024-01-31", "42", make_unit("2024-01-31")) == WriteOutcome.WRITTEN
    assert migrated.read_unit_data("2024-01-31", "42") is not None

    command.downgrade(config, "base")
    assert "snapshot_units" not in set(inspect(create_engine(db_url)).get_table_names())
