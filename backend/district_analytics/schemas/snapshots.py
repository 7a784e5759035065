from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class SnapshotStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class WriteOutcome(str, Enum):
    WRITTEN = "written"
    SKIPPED_STALE = "skipped_stale"


class UnitError(BaseModel):
    unit_id: str
    error: str


class SnapshotMetadata(BaseModel):
    snapshot_id: str
    created_at: str
    status: SnapshotStatus = SnapshotStatus.SUCCESS
    successful_units: List[str] = Field(default_factory=list)
    failed_units: List[str] = Field(default_factory=list)
    unit_errors: List[UnitError] = Field(default_factory=list)
    is_closing_period_data: bool = False
    collection_date: Optional[str] = None
    logical_date: Optional[str] = None
    data_month: Optional[str] = None

    @staticmethod
    def status_for(successful: int, failed: int) -> SnapshotStatus:
        if failed and not successful:
            return SnapshotStatus.FAILED
        if failed:
            return SnapshotStatus.PARTIAL
        return SnapshotStatus.SUCCESS


class ManifestEntry(BaseModel):
    unit_id: str
    file_name: str
    sha256: str
    club_count: int = 0
    collection_date: Optional[str] = None
    is_closing_period_data: bool = False


class SnapshotManifest(BaseModel):
    snapshot_id: str
    updated_at: str
    units: Dict[str, ManifestEntry] = Field(default_factory=dict)


class Snapshot(BaseModel):
    snapshot_id: str
    metadata: Optional[SnapshotMetadata] = None
    unit_ids: List[str] = Field(default_factory=list)

    @property
    def status(self) -> Optional[SnapshotStatus]:
        return self.metadata.status if self.metadata else None


class SnapshotFilter(BaseModel):
    status: Optional[SnapshotStatus] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    limit: Optional[int] = None

    def matches(self, snapshot_id: str, metadata: Optional[SnapshotMetadata]) -> bool:
        if self.start_date and snapshot_id < self.start_date:
            return False
        if self.end_date and snapshot_id > self.end_date:
            return False
        if self.status is not None:
            if metadata is None or metadata.status != self.status:
                return False
        return True
