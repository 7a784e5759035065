import json
import logging

import pytest

from district_analytics.analytics.computer import AnalyticsComputer
from district_analytics.core.config import Settings
from district_analytics.jobs import compute_analytics
from district_analytics.jobs.compute_analytics import (
    Services,
    delete_snapshot_cascade,
    run_compute_analytics_job,
)
from district_analytics.schemas.snapshots import SnapshotStatus
from district_analytics.storage.analytics_writer import ARTIFACT_KINDS, AnalyticsWriter
from district_analytics.storage.snapshot_store import FileSnapshotStore
from district_analytics.storage.time_series import TimeSeriesIndexService
from tests.factories import fixed_clock, make_club, make_ranking_input, make_unit


@pytest.fixture
def services(tmp_path):
    clock = fixed_clock()
    return Services(
        store=FileSnapshotStore(tmp_path, clock=clock),
        time_series=TimeSeriesIndexService(tmp_path, clock=clock),
        writer=AnalyticsWriter(tmp_path),
    )


def _units(day):
    return {
        "42": make_unit(day, [make_club("1", membership=24, goals_met=4), make_club("2", membership=10, membership_base=12, goals_met=0)]),
        "61": make_unit(day, [make_club("7", membership=30, goals_met=6)], unit_id="61"),
    }


def _ranking_inputs():
    return [
        make_ranking_input("42", club_growth=2.0, payment_growth=1.0, distinguished=40),
        make_ranking_input("61", club_growth=1.0, payment_growth=3.0, distinguished=50, region="02"),
    ]


def _run(services, collection_date, units=None, **kwargs):
    return run_compute_analytics_job(
        services,
        collection_date=collection_date,
        units=units if units is not None else _units(collection_date),
        ranking_inputs=kwargs.pop("ranking_inputs", _ranking_inputs()),
        clock=fixed_clock(),
        max_workers=2,
        **kwargs,
    )


def test_job_writes_snapshot_rankings_analytics_and_time_series(services, tmp_path):
    summary = _run(services, "2024-01-31")

    assert summary.status == SnapshotStatus.SUCCESS
    assert summary.written_units == ["42", "61"]
    assert sorted(summary.computed_units) == ["42", "61"]
    assert summary.rankings_written is True

    latest = services.store.get_latest_successful()
    assert latest.snapshot_id == "2024-01-31"
    assert latest.metadata.successful_units == ["42", "61"]
    assert services.store.read_rankings("2024-01-31").metadata.total_units == 2

    for kind in ARTIFACT_KINDS:
        assert (tmp_path / "analytics" / "2024-01-31" / f"district_42_{kind}.json").is_file()
    analytics = services.writer.read_artifact("2024-01-31", "42", "analytics")
    assert analytics.club_count == 2
    assert analytics.intervention_required_count == 1
    targets = services.writer.read_artifact("2024-01-31", "42", "performance-targets")
    assert targets.data_available is True
    yoy = services.writer.read_artifact("2024-01-31", "42", "year-over-year")
    assert yoy.data_available is False

    points = services.time_series.get_trend_data("42", "2023-07-01", "2024-06-30")
    assert [p.snapshot_id for p in points] == ["2024-01-31"]
    assert points[0].metric_values["membership"] == 34
    assert points[0].metric_values["club_count"] == 2


def test_year_over_year_available_after_a_year_of_snapshots(services):
    _run(services, "2023-01-31")
    _run(services, "2024-01-31")
    yoy = services.writer.read_artifact("2024-01-31", "61", "year-over-year")
    assert yoy.data_available is True
    assert yoy.previous_year_date == "2023-01-31"
    assert yoy.metrics.membership.absolute_change == 0


def test_unit_failure_marks_snapshot_partial(services, monkeypatch, caplog):
    original = AnalyticsComputer.compute

    def flaky(self, unit_id, snapshots, rankings=None):
        if unit_id == "61":
            raise RuntimeError("boom")
        return original(self, unit_id, snapshots, rankings)

    monkeypatch.setattr(AnalyticsComputer, "compute", flaky)
    compute_analytics.logger.addHandler(caplog.handler)
    caplog.set_level(logging.ERROR)
    try:
        summary = _run(services, "2024-01-31")
    finally:
        compute_analytics.logger.removeHandler(caplog.handler)

    assert summary.status == SnapshotStatus.PARTIAL
    assert summary.failed_units == ["61"]
    assert summary.computed_units == ["42"]
    metadata = services.store.get_snapshot_metadata("2024-01-31")
    assert metadata.status == SnapshotStatus.PARTIAL
    assert metadata.successful_units == ["42"]
    assert metadata.failed_units == ["61"]
    assert metadata.unit_errors[0].error == "boom"
    assert services.store.get_latest_successful() is None
    assert any(r.getMessage() == "compute.unit_failed" for r in caplog.records)


def test_invalid_unit_id_is_recorded_not_raised(services):
    units = _units("2024-01-31")
    units["2024-01-31"] = make_unit("2024-01-31", unit_id="x")
    summary = _run(services, "2024-01-31", units=units)
    assert summary.status == SnapshotStatus.PARTIAL
    assert summary.failed_units == ["2024-01-31"]
    assert services.store.get_snapshot("2024-01-31").unit_ids == ["42", "61"]


def test_every_unit_failing_marks_snapshot_failed(services, monkeypatch):
    def broken(self, unit_id, snapshots, rankings=None):
        raise RuntimeError("boom")

    monkeypatch.setattr(AnalyticsComputer, "compute", broken)
    summary = _run(services, "2024-01-31")
    assert summary.status == SnapshotStatus.FAILED


def test_closing_period_runs_keep_newest_collection(services):
    closing = {"isClosingPeriod": True, "dataMonth": "2024-12"}
    first = _run(services, "2025-01-03", units=_units("2025-01-03"), cache_metadata=closing)
    assert first.snapshot_id == "2024-12-31"
    assert first.status == SnapshotStatus.SUCCESS
    metadata = services.store.get_snapshot_metadata("2024-12-31")
    assert metadata.is_closing_period_data is True
    assert metadata.collection_date == "2025-01-03"
    assert metadata.data_month == "2024-12"
    stored = services.store.read_unit_data("2024-12-31", "42")
    assert stored.snapshot_date == "2024-12-31"

    stale = _run(services, "2025-01-02", units=_units("2025-01-02"), cache_metadata=closing)
    assert stale.skipped_units == ["42", "61"]
    assert stale.written_units == []
    assert stale.status is None

    newer = _run(services, "2025-01-05", units=_units("2025-01-05"), cache_metadata=closing)
    assert newer.written_units == ["42", "61"]
    assert services.store.get_snapshot_metadata("2024-12-31").collection_date == "2025-01-05"


def test_rankings_reused_when_none_supplied(services):
    _run(services, "2024-01-31")
    summary = _run(
        services,
        "2024-01-31",
        units={"42": make_unit("2024-01-31", [make_club("1", membership=25, goals_met=4)])},
        ranking_inputs=(),
    )
    assert summary.rankings_written is False
    targets = services.writer.read_artifact("2024-01-31", "42", "performance-targets")
    assert targets.data_available is True


def test_delete_snapshot_cascade(services, tmp_path):
    _run(services, "2024-01-31")
    _run(services, "2024-02-29")

    result = delete_snapshot_cascade(services, "2024-01-31")
    assert result["deleted"] is True
    assert result["analytics_removed"] is True
    assert result["time_series_points_removed"] == 2
    assert services.store.get_snapshot("2024-01-31") is None
    assert not (tmp_path / "analytics" / "2024-01-31").exists()
    points = services.time_series.get_trend_data("42", "2023-07-01", "2024-06-30")
    assert [p.snapshot_id for p in points] == ["2024-02-29"]

    again = delete_snapshot_cascade(services, "2024-01-31")
    assert again["deleted"] is False
    assert again["time_series_points_removed"] == 0


def test_main_runs_from_input_file_and_deletes(tmp_path, monkeypatch):
    monkeypatch.setattr(
        compute_analytics,
        "default_settings",
        Settings(_env_file=None, CACHE_DIR=str(tmp_path), COMPUTE_UNIT_IDS=[]),
    )
    input_path = tmp_path / "input.json"
    input_path.write_text(
        json.dumps(
            {
                "units": {
                    "42": {
                        "clubs": [
                            {"Club Number": "0001", "Active Members": "22", "Goals Met": "4", "Division": "A"},
                            {"Club Number": "0002", "Active Members": "9", "Goals Met": "0", "Division": "A"},
                        ]
                    },
                    "61": {"clubs": [{"Club Number": "5", "Active Members": "30"}]},
                },
                "rankings": [
                    {"DISTRICT": "42", "Paid Clubs": "2", "Paid Club Base": "2", "% Club Growth": "0%"},
                    {"DISTRICT": "61", "Paid Clubs": "1", "Paid Club Base": "1", "% Club Growth": "0%"},
                ],
            }
        ),
        encoding="utf-8",
    )

    compute_analytics.main(
        ["--collection-date", "2024-01-31", "--input", str(input_path), "--units", "42"]
    )
    snapshot_dir = tmp_path / "snapshots" / "2024-01-31"
    assert (snapshot_dir / "district_42.json").is_file()
    assert not (snapshot_dir / "district_61.json").exists()
    assert (tmp_path / "analytics" / "2024-01-31" / "district_42_club-trends-index.json").is_file()

    compute_analytics.main(["--delete", "2024-01-31"])
    assert not snapshot_dir.exists()


def test_main_requires_inputs(tmp_path, monkeypatch):
    monkeypatch.setattr(
        compute_analytics, "default_settings", Settings(_env_file=None, CACHE_DIR=str(tmp_path))
    )
    with pytest.raises(SystemExit):
        compute_analytics.main(["--collection-date", "2024-01-31"])


def test_build_services_picks_backend(tmp_path):
    from district_analytics.storage.sql_snapshot_store import SqlSnapshotStore

    file_services = compute_analytics.build_services(Settings(_env_file=None, CACHE_DIR=str(tmp_path)))
    assert isinstance(file_services.store, FileSnapshotStore)
    sql_services = compute_analytics.build_services(
        Settings(
            _env_file=None,
            CACHE_DIR=str(tmp_path),
            SNAPSHOT_BACKEND="sql",
            DATABASE_URL=f"sqlite:///{tmp_path / 'snapshots.db'}",
        )
    )
    assert isinstance(sql_services.store, SqlSnapshotStore)
    assert sql_services.store.backend_name == "sql"
