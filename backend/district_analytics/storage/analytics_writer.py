from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Type

from pydantic import BaseModel

from district_analytics.analytics.utils import is_date_string
from district_analytics.core.errors import StorageError, ValidationError
from district_analytics.core.files import atomic_write_json, read_json
from district_analytics.schemas.analytics import (
    ClubTrendsIndex,
    ComputationResult,
    DistinguishedClubAnalytics,
    LeadershipInsights,
    MembershipAnalytics,
    PerformanceTargets,
    UnitAnalytics,
    VulnerableClubsReport,
    YearOverYearComparison,
)
from district_analytics.storage.snapshot_store import validate_unit_id


logger = logging.getLogger(__name__)

# Artifact kind -> (ComputationResult field, schema)
ARTIFACT_KINDS: Dict[str, tuple] = {
    "analytics": ("unit_analytics", UnitAnalytics),
    "membership": ("membership", MembershipAnalytics),
    "vulnerable-clubs": ("vulnerable_clubs", VulnerableClubsReport),
    "leadership-insights": ("leadership", LeadershipInsights),
    "distinguished-analytics": ("distinguished", DistinguishedClubAnalytics),
    "year-over-year": ("year_over_year", YearOverYearComparison),
    "performance-targets": ("performance_targets", PerformanceTargets),
    "club-trends-index": ("club_trends", ClubTrendsIndex),
}


class AnalyticsWriter:
    """Writes per-unit analytics artifacts for the read-only serving layer."""

    def __init__(self, cache_dir: Path) -> None:
        self.root = Path(cache_dir) / "analytics"

    def _path(self, snapshot_id: str, unit_id: str, kind: str) -> Path:
        if not is_date_string(snapshot_id):
            raise ValidationError("Snapshot id must be a YYYY-MM-DD date", snapshot_id=snapshot_id)
        if kind not in ARTIFACT_KINDS:
            raise ValidationError(f"Unknown analytics artifact: {kind}")
        return self.root / snapshot_id / f"district_{validate_unit_id(unit_id)}_{kind}.json"

    def write_results(self, snapshot_id: str, unit_id: str, result: ComputationResult) -> List[Path]:
        written = []
        for kind, (field, _) in ARTIFACT_KINDS.items():
            path = self._path(snapshot_id, unit_id, kind)
            artifact = getattr(result, field)
            try:
                atomic_write_json(path, artifact.model_dump(mode="json"))
            except OSError as exc:
                raise StorageError(
                    str(exc),
                    operation="write_analytics",
                    snapshot_id=snapshot_id,
                    unit_id=unit_id,
                ) from exc
            written.append(path)
        logger.info(
            "analytics.written",
            extra={
                "operation": "write_analytics",
                "snapshot_id": snapshot_id,
                "unit_id": unit_id,
                "artifacts": len(written),
            },
        )
        return written

    def read_artifact(self, snapshot_id: str, unit_id: str, kind: str) -> Optional[BaseModel]:
        path = self._path(snapshot_id, unit_id, kind)
        payload = read_json(path)
        if payload is None:
            return None
        schema: Type[BaseModel] = ARTIFACT_KINDS[kind][1]
        return schema.model_validate(payload)

    def delete_snapshot(self, snapshot_id: str) -> bool:
        directory = self.root / snapshot_id
        if not is_date_string(snapshot_id) or not directory.is_dir():
            return False
        shutil.rmtree(directory)
        return True
