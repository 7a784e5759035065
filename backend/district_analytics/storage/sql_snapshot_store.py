"""Snapshot store on SQLAlchemy. Each write runs in a single transaction."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from district_analytics.core.errors import CorruptionDetected, StorageError
from district_analytics.core.files import dumps_canonical, sha256_text
from district_analytics.core.time import Clock, utcnow
from district_analytics.models.snapshots import SnapshotRanking, SnapshotRecord, SnapshotUnit
from district_analytics.schemas.rankings import RankingsArtifact
from district_analytics.schemas.snapshots import (
    ManifestEntry,
    Snapshot,
    SnapshotFilter,
    SnapshotMetadata,
    SnapshotStatus,
    UnitError,
    WriteOutcome,
)
from district_analytics.schemas.statistics import UnitStatistics
from district_analytics.storage.snapshot_store import (
    should_overwrite,
    validate_snapshot_id,
    validate_unit_id,
)


logger = logging.getLogger(__name__)


def _metadata_from_row(row: SnapshotRecord) -> Optional[SnapshotMetadata]:
    if row.status is None:
        return None
    return SnapshotMetadata(
        snapshot_id=row.snapshot_id,
        created_at=row.metadata_created_at or row.created_at.isoformat(),
        status=SnapshotStatus(row.status),
        successful_units=list(row.successful_units or []),
        failed_units=list(row.failed_units or []),
        unit_errors=[UnitError(**item) for item in (row.unit_errors or [])],
        is_closing_period_data=bool(row.is_closing_period_data),
        collection_date=row.collection_date,
        logical_date=row.logical_date,
        data_month=row.data_month,
    )


class SqlSnapshotStore:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        clock: Clock = utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.clock = clock

    @property
    def backend_name(self) -> str:
        return "sql"

    def _fail(self, exc: Exception, operation: str, snapshot_id=None, unit_id=None):
        return StorageError(
            str(exc), operation=operation, snapshot_id=snapshot_id, unit_id=unit_id
        )

    def _ensure_snapshot(self, db: Session, snapshot_id: str) -> SnapshotRecord:
        row = db.get(SnapshotRecord, snapshot_id)
        if row is None:
            row = SnapshotRecord(snapshot_id=snapshot_id)
            db.add(row)
            db.flush()
        return row

    def _unit_row(self, db: Session, snapshot_id: str, unit_id: str) -> Optional[SnapshotUnit]:
        return (
            db.query(SnapshotUnit)
            .filter(SnapshotUnit.snapshot_id == snapshot_id, SnapshotUnit.unit_id == unit_id)
            .one_or_none()
        )

    def write_unit_data(
        self,
        snapshot_id: str,
        unit_id: str,
        data: UnitStatistics,
        *,
        collection_date: Optional[str] = None,
        is_closing_period: bool = False,
    ) -> WriteOutcome:
        validate_snapshot_id(snapshot_id)
        unit_id = validate_unit_id(unit_id)
        payload = data.model_dump(mode="json")
        digest = sha256_text(dumps_canonical(payload))
        try:
            with self.session_factory() as db:
                self._ensure_snapshot(db, snapshot_id)
                row = self._unit_row(db, snapshot_id, unit_id)
                existing = None
                if row is not None:
                    existing = ManifestEntry(
                        unit_id=unit_id,
                        file_name="",
                        sha256=row.sha256,
                        collection_date=row.collection_date,
                        is_closing_period_data=bool(row.is_closing_period_data),
                    )
                if not should_overwrite(existing, snapshot_id, collection_date, is_closing_period):
                    db.rollback()
                    logger.warning(
                        "snapshot.write.skipped_stale",
                        extra={
                            "operation": "write_unit_data",
                            "snapshot_id": snapshot_id,
                            "unit_id": unit_id,
                            "existing_collection_date": row.collection_date,
                            "candidate_collection_date": collection_date,
                        },
                    )
                    return WriteOutcome.SKIPPED_STALE
                if row is None:
                    row = SnapshotUnit(snapshot_id=snapshot_id, unit_id=unit_id)
                    db.add(row)
                elif (
                    row.sha256 == digest
                    and row.collection_date == collection_date
                    and bool(row.is_closing_period_data) == is_closing_period
                ):
                    db.commit()
                    return WriteOutcome.WRITTEN
                row.payload = payload
                row.sha256 = digest
                row.club_count = data.club_count
                row.collection_date = collection_date
                row.is_closing_period_data = is_closing_period
                db.commit()
        except SQLAlchemyError as exc:
            raise self._fail(exc, "write_unit_data", snapshot_id, unit_id) from exc
        logger.info(
            "snapshot.write.unit",
            extra={"operation": "write_unit_data", "snapshot_id": snapshot_id, "unit_id": unit_id},
        )
        return WriteOutcome.WRITTEN

    def read_unit_data(self, snapshot_id: str, unit_id: str) -> Optional[UnitStatistics]:
        validate_snapshot_id(snapshot_id)
        unit_id = validate_unit_id(unit_id)
        try:
            with self.session_factory() as db:
                row = self._unit_row(db, snapshot_id, unit_id)
                if row is None:
                    return None
                payload, stored_digest = row.payload, row.sha256
        except SQLAlchemyError as exc:
            raise self._fail(exc, "read_unit_data", snapshot_id, unit_id) from exc
        if sha256_text(dumps_canonical(payload)) != stored_digest:
            raise CorruptionDetected(
                "Unit payload does not match its checksum",
                operation="read_unit_data",
                snapshot_id=snapshot_id,
                unit_id=unit_id,
            )
        return UnitStatistics.model_validate(payload)

    def list_units_in_snapshot(self, snapshot_id: str) -> List[str]:
        validate_snapshot_id(snapshot_id)
        with self.session_factory() as db:
            rows = (
                db.query(SnapshotUnit.unit_id)
                .filter(SnapshotUnit.snapshot_id == snapshot_id)
                .order_by(SnapshotUnit.unit_id.asc())
                .all()
            )
        return [row.unit_id for row in rows]

    def write_snapshot_metadata(self, metadata: SnapshotMetadata) -> None:
        validate_snapshot_id(metadata.snapshot_id)
        try:
            with self.session_factory() as db:
                row = self._ensure_snapshot(db, metadata.snapshot_id)
                row.status = metadata.status.value
                row.metadata_created_at = metadata.created_at
                row.successful_units = list(metadata.successful_units)
                row.failed_units = list(metadata.failed_units)
                row.unit_errors = [e.model_dump() for e in metadata.unit_errors]
                row.is_closing_period_data = metadata.is_closing_period_data
                row.collection_date = metadata.collection_date
                row.logical_date = metadata.logical_date
                row.data_month = metadata.data_month
                db.commit()
        except SQLAlchemyError as exc:
            raise self._fail(exc, "write_snapshot_metadata", metadata.snapshot_id) from exc

    def get_snapshot_metadata(self, snapshot_id: str) -> Optional[SnapshotMetadata]:
        validate_snapshot_id(snapshot_id)
        with self.session_factory() as db:
            row = db.get(SnapshotRecord, snapshot_id)
            return _metadata_from_row(row) if row is not None else None

    def get_snapshot(self, snapshot_id: str) -> Optional[Snapshot]:
        validate_snapshot_id(snapshot_id)
        with self.session_factory() as db:
            row = db.get(SnapshotRecord, snapshot_id)
            if row is None:
                return None
            metadata = _metadata_from_row(row)
        return Snapshot(
            snapshot_id=snapshot_id,
            metadata=metadata,
            unit_ids=self.list_units_in_snapshot(snapshot_id),
        )

    def get_latest_successful(self) -> Optional[Snapshot]:
        with self.session_factory() as db:
            row = (
                db.query(SnapshotRecord)
                .filter(SnapshotRecord.status == SnapshotStatus.SUCCESS.value)
                .order_by(SnapshotRecord.snapshot_id.desc())
                .first()
            )
            snapshot_id = row.snapshot_id if row is not None else None
        if snapshot_id is None:
            return None
        return self.get_snapshot(snapshot_id)

    def list_snapshots(self, filter: Optional[SnapshotFilter] = None) -> List[Snapshot]:
        filter = filter or SnapshotFilter()
        with self.session_factory() as db:
            query = db.query(SnapshotRecord)
            if filter.start_date:
                query = query.filter(SnapshotRecord.snapshot_id >= filter.start_date)
            if filter.end_date:
                query = query.filter(SnapshotRecord.snapshot_id <= filter.end_date)
            if filter.status is not None:
                query = query.filter(SnapshotRecord.status == filter.status.value)
            query = query.order_by(SnapshotRecord.snapshot_id.desc())
            if filter.limit is not None:
                query = query.limit(filter.limit)
            rows = [(row.snapshot_id, _metadata_from_row(row)) for row in query.all()]
        return [
            Snapshot(
                snapshot_id=snapshot_id,
                metadata=metadata,
                unit_ids=self.list_units_in_snapshot(snapshot_id),
            )
            for snapshot_id, metadata in rows
        ]

    def delete_snapshot(self, snapshot_id: str) -> bool:
        validate_snapshot_id(snapshot_id)
        try:
            with self.session_factory() as db:
                row = db.get(SnapshotRecord, snapshot_id)
                if row is None:
                    return False
                # SQLite does not enforce ON DELETE CASCADE without a pragma.
                db.query(SnapshotUnit).filter(SnapshotUnit.snapshot_id == snapshot_id).delete()
                db.query(SnapshotRanking).filter(
                    SnapshotRanking.snapshot_id == snapshot_id
                ).delete()
                db.delete(row)
                db.commit()
        except SQLAlchemyError as exc:
            raise self._fail(exc, "delete_snapshot", snapshot_id) from exc
        logger.info(
            "snapshot.deleted", extra={"operation": "delete_snapshot", "snapshot_id": snapshot_id}
        )
        return True

    def write_rankings(self, snapshot_id: str, artifact: RankingsArtifact) -> None:
        validate_snapshot_id(snapshot_id)
        try:
            with self.session_factory() as db:
                self._ensure_snapshot(db, snapshot_id)
                row = db.get(SnapshotRanking, snapshot_id)
                if row is None:
                    row = SnapshotRanking(snapshot_id=snapshot_id)
                    db.add(row)
                row.ranking_version = artifact.metadata.ranking_version
                row.payload = artifact.model_dump(mode="json")
                db.commit()
        except SQLAlchemyError as exc:
            raise self._fail(exc, "write_rankings", snapshot_id) from exc

    def read_rankings(self, snapshot_id: str) -> Optional[RankingsArtifact]:
        validate_snapshot_id(snapshot_id)
        with self.session_factory() as db:
            row = db.get(SnapshotRanking, snapshot_id)
            payload = row.payload if row is not None else None
        if payload is None:
            return None
        return RankingsArtifact.model_validate(payload)
