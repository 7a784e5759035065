"""Per-unit time-series indices partitioned by program year.

Layout under ``{cache_dir}/time-series``::

    district_{unit_id}/
        2023-2024.json          one ProgramYearIndex per program year
        index-metadata.json     which program years exist

Appends to one (unit, program year) partition are serialized by a lock held
by the service instance; different partitions proceed in parallel.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from district_analytics.analytics.utils import (
    format_date,
    parse_date,
    program_year_bounds,
    program_year_for,
    program_year_start,
)
from district_analytics.core.errors import CorruptionDetected
from district_analytics.core.files import atomic_write_json, read_json
from district_analytics.core.locks import KeyedLocks
from district_analytics.core.time import Clock, utcnow
from district_analytics.schemas.time_series import (
    PartitionSummary,
    ProgramYearIndex,
    TimeSeriesDataPoint,
    UnitIndexMetadata,
)
from district_analytics.storage.snapshot_store import validate_unit_id


logger = logging.getLogger(__name__)

INDEX_METADATA_FILE = "index-metadata.json"


def summarize(points: List[TimeSeriesDataPoint]) -> PartitionSummary:
    memberships = [p.membership for p in points if p.membership is not None]
    if not memberships:
        return PartitionSummary(total_data_points=len(points))
    return PartitionSummary(
        total_data_points=len(points),
        membership_start=memberships[0],
        membership_end=memberships[-1],
        membership_peak=max(memberships),
        membership_low=min(memberships),
    )


def get_program_years_in_range(start_date: str, end_date: str) -> List[str]:
    start = program_year_start(parse_date(start_date))
    end = program_year_start(parse_date(end_date))
    return [f"{year}-{year + 1}" for year in range(start, end + 1)]


class TimeSeriesIndexService:
    def __init__(self, cache_dir: Path, *, clock: Clock = utcnow) -> None:
        self.root = Path(cache_dir) / "time-series"
        self.clock = clock
        self._locks = KeyedLocks()

    def _unit_dir(self, unit_id: str) -> Path:
        return self.root / f"district_{validate_unit_id(unit_id)}"

    def _partition_path(self, unit_id: str, program_year: str) -> Path:
        return self._unit_dir(unit_id) / f"{program_year}.json"

    def _load_partition(self, unit_id: str, program_year: str) -> Optional[ProgramYearIndex]:
        path = self._partition_path(unit_id, program_year)
        try:
            payload = read_json(path)
            if payload is None:
                return None
            return ProgramYearIndex.model_validate(payload)
        except (ValueError, PydanticValidationError) as exc:
            raise CorruptionDetected(
                f"Invalid time-series partition {path.name}: {exc}",
                operation="load_time_series_partition",
                unit_id=unit_id,
            ) from exc

    def _save_partition(self, index: ProgramYearIndex) -> None:
        index.summary = summarize(index.data_points)
        index.last_updated = self.clock().isoformat()
        atomic_write_json(
            self._partition_path(index.unit_id, index.program_year), index.model_dump(mode="json")
        )

    def _new_partition(self, unit_id: str, program_year: str) -> ProgramYearIndex:
        start, end = program_year_bounds(program_year)
        return ProgramYearIndex(
            unit_id=unit_id,
            program_year=program_year,
            start_date=format_date(start),
            end_date=format_date(end),
            last_updated=self.clock().isoformat(),
        )

    def _update_unit_metadata(self, unit_id: str) -> None:
        with self._locks.hold((unit_id, INDEX_METADATA_FILE)):
            years = self.list_program_years(unit_id)
            total = 0
            for year in years:
                partition = self._load_partition(unit_id, year)
                total += len(partition.data_points) if partition else 0
            metadata = UnitIndexMetadata(
                unit_id=unit_id,
                last_updated=self.clock().isoformat(),
                available_program_years=years,
                total_data_points=total,
            )
            atomic_write_json(self._unit_dir(unit_id) / INDEX_METADATA_FILE, metadata.model_dump())

    def list_program_years(self, unit_id: str) -> List[str]:
        directory = self._unit_dir(unit_id)
        if not directory.is_dir():
            return []
        years = []
        for path in directory.glob("*.json"):
            if path.name == INDEX_METADATA_FILE:
                continue
            try:
                program_year_bounds(path.stem)
            except ValueError:
                continue
            years.append(path.stem)
        return sorted(years)

    def get_unit_metadata(self, unit_id: str) -> Optional[UnitIndexMetadata]:
        payload = read_json(self._unit_dir(unit_id) / INDEX_METADATA_FILE)
        return UnitIndexMetadata.model_validate(payload) if payload is not None else None

    def append_data_point(self, unit_id: str, point: TimeSeriesDataPoint) -> None:
        """Add ``point`` to its program-year partition.

        Re-appending the same date and snapshot id replaces the earlier point.
        """
        unit_id = validate_unit_id(unit_id)
        program_year = program_year_for(parse_date(point.date))
        with self._locks.hold((unit_id, program_year)):
            index = self._load_partition(unit_id, program_year) or self._new_partition(
                unit_id, program_year
            )
            points = [
                p
                for p in index.data_points
                if not (p.date == point.date and p.snapshot_id == point.snapshot_id)
            ]
            points.append(point)
            points.sort(key=lambda p: (p.date, p.snapshot_id))
            index.data_points = points
            self._save_partition(index)
        self._update_unit_metadata(unit_id)
        logger.debug(
            "time_series.appended",
            extra={
                "operation": "append_data_point",
                "unit_id": unit_id,
                "snapshot_id": point.snapshot_id,
                "program_year": program_year,
            },
        )

    def get_trend_data(self, unit_id: str, start_date: str, end_date: str) -> List[TimeSeriesDataPoint]:
        """Points with ``start_date <= date <= end_date`` across every spanned partition."""
        if parse_date(start_date) > parse_date(end_date):
            return []
        points: List[TimeSeriesDataPoint] = []
        for program_year in get_program_years_in_range(start_date, end_date):
            index = self._load_partition(unit_id, program_year)
            if index is None:
                continue
            points.extend(p for p in index.data_points if start_date <= p.date <= end_date)
        points.sort(key=lambda p: (p.date, p.snapshot_id))
        return points

    def get_program_year_data(self, unit_id: str, program_year: str) -> Optional[ProgramYearIndex]:
        program_year_bounds(program_year)
        return self._load_partition(unit_id, program_year)

    def delete_snapshot_entries(self, snapshot_id: str) -> int:
        """Drop every point tagged ``snapshot_id`` from every partition of every unit."""
        if not self.root.is_dir():
            return 0
        removed = 0
        for unit_dir in sorted(self.root.glob("district_*")):
            if not unit_dir.is_dir():
                continue
            unit_id = unit_dir.name[len("district_"):]
            touched = False
            for program_year in self.list_program_years(unit_id):
                with self._locks.hold((unit_id, program_year)):
                    index = self._load_partition(unit_id, program_year)
                    if index is None:
                        continue
                    kept = [p for p in index.data_points if p.snapshot_id != snapshot_id]
                    dropped = len(index.data_points) - len(kept)
                    if not dropped:
                        continue
                    index.data_points = kept
                    self._save_partition(index)
                    removed += dropped
                    touched = True
            if touched:
                self._update_unit_metadata(unit_id)
        logger.info(
            "time_series.snapshot_pruned",
            extra={
                "operation": "delete_snapshot_entries",
                "snapshot_id": snapshot_id,
                "removed": removed,
            },
        )
        return removed

    def program_year_summaries(self, unit_id: str) -> Dict[str, PartitionSummary]:
        summaries = {}
        for program_year in self.list_program_years(unit_id):
            index = self._load_partition(unit_id, program_year)
            if index is not None:
                summaries[program_year] = index.summary
        return summaries

