from __future__ import annotations

import argparse
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from district_analytics.analytics.closing_period import ClosingPeriodDetector, read_cache_metadata
from district_analytics.analytics.computer import AnalyticsComputer
from district_analytics.analytics.rankings import RankingCalculator
from district_analytics.core.config import Settings, settings as default_settings
from district_analytics.core.errors import AnalyticsError
from district_analytics.core.logging import configure_logging
from district_analytics.core.time import Clock, utcnow
from district_analytics.schemas.analytics import ClosingPeriodResult, ComputationResult
from district_analytics.schemas.rankings import RankingsArtifact
from district_analytics.schemas.snapshots import SnapshotMetadata, SnapshotStatus, UnitError, WriteOutcome
from district_analytics.schemas.statistics import RankingInput, UnitStatistics
from district_analytics.schemas.time_series import TimeSeriesDataPoint
from district_analytics.storage.analytics_writer import AnalyticsWriter
from district_analytics.storage.snapshot_store import (
    FileSnapshotStore,
    SnapshotStore,
    load_unit_history,
)
from district_analytics.storage.time_series import TimeSeriesIndexService


logger = logging.getLogger(__name__)


@dataclass
class ComputeSummary:
    snapshot_id: str
    closing_period: ClosingPeriodResult
    status: Optional[SnapshotStatus] = None
    written_units: List[str] = field(default_factory=list)
    skipped_units: List[str] = field(default_factory=list)
    computed_units: List[str] = field(default_factory=list)
    unit_errors: List[UnitError] = field(default_factory=list)
    rankings_written: bool = False

    @property
    def failed_units(self) -> List[str]:
        return [error.unit_id for error in self.unit_errors]


@dataclass
class Services:
    store: SnapshotStore
    time_series: TimeSeriesIndexService
    writer: AnalyticsWriter


def build_services(config: Settings, *, clock: Clock = utcnow) -> Services:
    cache_dir = Path(config.CACHE_DIR)
    if config.SNAPSHOT_BACKEND == "sql":
        from district_analytics.core.db import build_engine, build_session_factory
        from district_analytics.storage.sql_snapshot_store import SqlSnapshotStore

        store: SnapshotStore = SqlSnapshotStore(
            build_session_factory(build_engine(config.DATABASE_URL)), clock=clock
        )
    else:
        store = FileSnapshotStore(cache_dir, clock=clock, read_retries=config.CORRUPTION_READ_RETRIES)
    return Services(
        store=store,
        time_series=TimeSeriesIndexService(cache_dir, clock=clock),
        writer=AnalyticsWriter(cache_dir),
    )


def time_series_point(snapshot_id: str, unit: UnitStatistics, result: ComputationResult) -> TimeSeriesDataPoint:
    summary = result.unit_analytics
    return TimeSeriesDataPoint(
        date=snapshot_id,
        snapshot_id=snapshot_id,
        metric_values={
            "membership": unit.total_membership,
            "payments": unit.effective_payments,
            "dcp_goals": unit.total_goals,
            "club_count": unit.club_count,
            "distinguished_clubs": summary.distinguished_clubs.total,
            "thriving_clubs": summary.thriving_count,
            "vulnerable_clubs": summary.vulnerable_count,
            "intervention_required_clubs": summary.intervention_required_count,
        },
    )


def _compute_unit(
    services: Services,
    computer: AnalyticsComputer,
    snapshot_id: str,
    unit_id: str,
    rankings: Optional[RankingsArtifact],
) -> None:
    history = load_unit_history(services.store, unit_id, end_date=snapshot_id)
    if not history:
        raise AnalyticsError(
            "No stored snapshot data", operation="compute_unit", snapshot_id=snapshot_id, unit_id=unit_id
        )
    result = computer.compute(unit_id, history, rankings)
    services.writer.write_results(snapshot_id, unit_id, result)
    services.time_series.append_data_point(
        unit_id, time_series_point(snapshot_id, history[-1], result)
    )


def _merged_metadata(
    existing: Optional[SnapshotMetadata],
    summary: ComputeSummary,
    created_at: str,
) -> SnapshotMetadata:
    closing = summary.closing_period
    failed = set(summary.failed_units)
    successful = set(summary.written_units) | set(summary.skipped_units)
    collection_date = closing.collection_date
    errors = list(summary.unit_errors)
    if existing is not None:
        successful |= set(existing.successful_units)
        errors.extend(e for e in existing.unit_errors if e.unit_id not in successful | failed)
        failed |= {e.unit_id for e in errors}
        if existing.collection_date and existing.collection_date > collection_date:
            collection_date = existing.collection_date
    successful -= failed
    return SnapshotMetadata(
        snapshot_id=summary.snapshot_id,
        created_at=existing.created_at if existing else created_at,
        status=SnapshotMetadata.status_for(len(successful), len(failed)),
        successful_units=sorted(successful),
        failed_units=sorted(failed),
        unit_errors=sorted(errors, key=lambda e: e.unit_id),
        is_closing_period_data=closing.is_closing_period,
        collection_date=collection_date,
        logical_date=closing.logical_date,
        data_month=closing.data_month,
    )


def run_compute_analytics_job(
    services: Services,
    *,
    collection_date: str,
    units: Mapping[str, UnitStatistics],
    ranking_inputs: Sequence[RankingInput] = (),
    cache_metadata: Optional[Mapping[str, Any]] = None,
    clock: Clock = utcnow,
    max_workers: int = 4,
    max_day_difference: int = 180,
    multi_year_lookback: int = 5,
) -> ComputeSummary:
    closing = ClosingPeriodDetector().detect(collection_date, cache_metadata)
    snapshot_id = closing.snapshot_date
    summary = ComputeSummary(snapshot_id=snapshot_id, closing_period=closing)
    store = services.store

    for unit_id, data in sorted(units.items()):
        try:
            outcome = store.write_unit_data(
                snapshot_id,
                unit_id,
                data.model_copy(update={"unit_id": unit_id, "snapshot_date": snapshot_id}),
                collection_date=closing.collection_date,
                is_closing_period=closing.is_closing_period,
            )
        except AnalyticsError as exc:
            logger.error("snapshot.write.failed", extra=exc.context())
            summary.unit_errors.append(UnitError(unit_id=unit_id, error=exc.message))
            continue
        if outcome == WriteOutcome.SKIPPED_STALE:
            summary.skipped_units.append(unit_id)
        else:
            summary.written_units.append(unit_id)

    if not summary.written_units and not summary.unit_errors:
        logger.info(
            "compute.nothing_new",
            extra={"operation": "run_compute_analytics_job", "snapshot_id": snapshot_id},
        )
        return summary

    # Every unit reads the rankings artifact, so it is finished before any unit starts.
    rankings: Optional[RankingsArtifact] = None
    if ranking_inputs and summary.written_units:
        rankings = RankingCalculator(clock).build_rankings_artifact(snapshot_id, ranking_inputs)
        store.write_rankings(snapshot_id, rankings)
        summary.rankings_written = True
    else:
        rankings = store.read_rankings(snapshot_id)
        if rankings is None:
            logger.warning(
                "rankings.unavailable",
                extra={"operation": "run_compute_analytics_job", "snapshot_id": snapshot_id},
            )

    computer = AnalyticsComputer(
        clock, max_day_difference=max_day_difference, multi_year_lookback=multi_year_lookback
    )
    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
        futures = {
            unit_id: pool.submit(_compute_unit, services, computer, snapshot_id, unit_id, rankings)
            for unit_id in summary.written_units
        }
        for unit_id, future in futures.items():
            try:
                future.result()
            except Exception as exc:
                logger.exception(
                    "compute.unit_failed",
                    extra={
                        "operation": "compute_unit",
                        "snapshot_id": snapshot_id,
                        "unit_id": unit_id,
                    },
                )
                summary.unit_errors.append(UnitError(unit_id=unit_id, error=str(exc)))
            else:
                summary.computed_units.append(unit_id)

    metadata = _merged_metadata(
        store.get_snapshot_metadata(snapshot_id), summary, clock().isoformat()
    )
    store.write_snapshot_metadata(metadata)
    summary.status = metadata.status
    logger.info(
        "compute.completed",
        extra={
            "operation": "run_compute_analytics_job",
            "snapshot_id": snapshot_id,
            "status": metadata.status.value,
            "written": len(summary.written_units),
            "skipped": len(summary.skipped_units),
            "failed": len(summary.unit_errors),
        },
    )
    return summary


def delete_snapshot_cascade(services: Services, snapshot_id: str) -> Dict[str, Any]:
    """Delete a snapshot with its analytics artifacts and time-series points."""
    deleted = services.store.delete_snapshot(snapshot_id)
    analytics_removed = services.writer.delete_snapshot(snapshot_id)
    points_removed = services.time_series.delete_snapshot_entries(snapshot_id)
    logger.info(
        "snapshot.cascade_deleted",
        extra={
            "operation": "delete_snapshot_cascade",
            "snapshot_id": snapshot_id,
            "deleted": deleted,
            "points_removed": points_removed,
        },
    )
    return {
        "snapshot_id": snapshot_id,
        "deleted": deleted,
        "analytics_removed": analytics_removed,
        "time_series_points_removed": points_removed,
    }


def load_input_file(path: Path, collection_date: str) -> tuple:
    """Read already-parsed source records: ``{"units": {...}, "rankings": [...]}``."""
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    units = {}
    for unit_id, body in (payload.get("units") or {}).items():
        units[unit_id] = UnitStatistics.from_source_records(
            unit_id,
            collection_date,
            body.get("clubs") or [],
            membership_base=body.get("membership_base"),
            total_payments=body.get("total_payments"),
        )
    rankings = [RankingInput.from_source_record(row) for row in payload.get("rankings") or []]
    return units, rankings


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compute per-unit analytics for one collection.")
    parser.add_argument("--collection-date", help="Date the source data was collected (YYYY-MM-DD).")
    parser.add_argument("--input", type=Path, help="JSON file of parsed source records.")
    parser.add_argument(
        "--units",
        default="",
        help="Comma separated unit ids to compute (default: COMPUTE_UNIT_IDS or every unit in the input).",
    )
    parser.add_argument("--delete", metavar="SNAPSHOT_ID", help="Delete a snapshot and its derived data.")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = _parse_args(argv)
    config = default_settings
    configure_logging(config.LOG_LEVEL, json_format=config.LOG_JSON)
    services = build_services(config)

    if args.delete:
        result = delete_snapshot_cascade(services, args.delete)
        logger.info("Snapshot delete complete. result=%s", result)
        return

    if not args.collection_date or not args.input:
        raise SystemExit("--collection-date and --input are required unless --delete is given")

    units, ranking_inputs = load_input_file(args.input, args.collection_date)
    selected = [u.strip() for u in args.units.split(",") if u.strip()] or config.COMPUTE_UNIT_IDS
    if selected:
        units = {unit_id: data for unit_id, data in units.items() if unit_id in selected}

    summary = run_compute_analytics_job(
        services,
        collection_date=args.collection_date,
        units=units,
        ranking_inputs=ranking_inputs,
        cache_metadata=read_cache_metadata(Path(config.CACHE_DIR), args.collection_date),
        max_workers=config.COMPUTE_MAX_WORKERS,
        max_day_difference=config.YOY_MAX_DAY_DIFFERENCE,
        multi_year_lookback=config.MULTI_YEAR_LOOKBACK,
    )
    logger.info(
        "Compute run complete. snapshot_id=%s status=%s written=%s skipped=%s failed=%s",
        summary.snapshot_id,
        summary.status.value if summary.status else None,
        len(summary.written_units),
        len(summary.skipped_units),
        len(summary.failed_units),
    )


if __name__ == "__main__":
    main()
