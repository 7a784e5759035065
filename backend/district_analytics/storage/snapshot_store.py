from __future__ import annotations

import json
import logging
import re
import shutil
from pathlib import Path
from typing import List, Optional, Protocol

from pydantic import ValidationError as PydanticValidationError

from district_analytics.analytics.utils import is_date_string
from district_analytics.core.errors import CorruptionDetected, StorageError, ValidationError
from district_analytics.core.files import atomic_write_json, dumps_canonical, read_json, sha256_text
from district_analytics.core.locks import KeyedLocks
from district_analytics.core.time import Clock, utcnow
from district_analytics.schemas.rankings import RankingsArtifact
from district_analytics.schemas.snapshots import (
    ManifestEntry,
    Snapshot,
    SnapshotFilter,
    SnapshotManifest,
    SnapshotMetadata,
    SnapshotStatus,
    WriteOutcome,
)
from district_analytics.schemas.statistics import UnitStatistics


logger = logging.getLogger(__name__)

_UNIT_ID_RE = re.compile(r"^[A-Za-z0-9]+$")
_COMPACT_DATE_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")

METADATA_FILE = "metadata.json"
MANIFEST_FILE = "manifest.json"
RANKINGS_FILE = "all-districts-rankings.json"
CURRENT_POINTER = "current.json"


def validate_unit_id(unit_id: str) -> str:
    if not isinstance(unit_id, str) or not unit_id.strip():
        raise ValidationError("Unit id must be a non-empty string", unit_id=str(unit_id))
    value = unit_id.strip()
    compact = _COMPACT_DATE_RE.match(value)
    if is_date_string(value) or (
        compact and is_date_string("-".join(compact.groups()))
    ):
        raise ValidationError("Unit id looks like a date", unit_id=value)
    if not _UNIT_ID_RE.match(value):
        raise ValidationError("Unit id must be alphanumeric", unit_id=value)
    return value


def validate_snapshot_id(snapshot_id: str) -> str:
    if not is_date_string(snapshot_id):
        raise ValidationError("Snapshot id must be a YYYY-MM-DD date", snapshot_id=str(snapshot_id))
    return snapshot_id


def should_overwrite(
    existing: Optional[ManifestEntry],
    snapshot_id: str,
    collection_date: Optional[str],
    is_closing_period: bool,
) -> bool:
    """Newer-data-wins for closing-period data.

    Applies when either side is closing-period data. The stored collection
    date falls back to the snapshot date for regular collections.
    """
    if existing is None:
        return True
    if not (is_closing_period or existing.is_closing_period_data):
        return True
    stored = existing.collection_date or snapshot_id
    candidate = collection_date or snapshot_id
    return candidate > stored


class SnapshotStore(Protocol):
    @property
    def backend_name(self) -> str:
        ...

    def write_unit_data(
        self,
        snapshot_id: str,
        unit_id: str,
        data: UnitStatistics,
        *,
        collection_date: Optional[str] = None,
        is_closing_period: bool = False,
    ) -> WriteOutcome:
        ...

    def read_unit_data(self, snapshot_id: str, unit_id: str) -> Optional[UnitStatistics]:
        ...

    def write_snapshot_metadata(self, metadata: SnapshotMetadata) -> None:
        ...

    def get_snapshot_metadata(self, snapshot_id: str) -> Optional[SnapshotMetadata]:
        ...

    def get_snapshot(self, snapshot_id: str) -> Optional[Snapshot]:
        ...

    def get_latest_successful(self) -> Optional[Snapshot]:
        ...

    def list_snapshots(self, filter: Optional[SnapshotFilter] = None) -> List[Snapshot]:
        ...

    def list_units_in_snapshot(self, snapshot_id: str) -> List[str]:
        ...

    def delete_snapshot(self, snapshot_id: str) -> bool:
        ...

    def write_rankings(self, snapshot_id: str, artifact: RankingsArtifact) -> None:
        ...

    def read_rankings(self, snapshot_id: str) -> Optional[RankingsArtifact]:
        ...


def load_unit_history(
    store: SnapshotStore, unit_id: str, *, end_date: Optional[str] = None
) -> List[UnitStatistics]:
    """Every stored snapshot of one unit up to ``end_date``, oldest first."""
    history = []
    for snapshot in store.list_snapshots(SnapshotFilter(end_date=end_date)):
        if unit_id not in snapshot.unit_ids:
            continue
        data = store.read_unit_data(snapshot.snapshot_id, unit_id)
        if data is not None:
            history.append(data)
    history.sort(key=lambda s: s.snapshot_date)
    return history


class FileSnapshotStore:
    """Snapshots as directories of JSON files, one file per unit.

    Every file is replaced atomically, so a concurrent reader sees either the
    previous or the new version of each file.
    """

    def __init__(
        self,
        cache_dir: Path,
        *,
        clock: Clock = utcnow,
        read_retries: int = 3,
    ) -> None:
        self.root = Path(cache_dir) / "snapshots"
        self.clock = clock
        self.read_retries = max(1, read_retries)
        self._locks = KeyedLocks()

    @property
    def backend_name(self) -> str:
        return "file"

    # Paths

    def _snapshot_dir(self, snapshot_id: str) -> Path:
        return self.root / validate_snapshot_id(snapshot_id)

    def _unit_file_name(self, unit_id: str) -> str:
        return f"district_{unit_id}.json"

    def _read_model(self, path: Path, model, *, snapshot_id: str, operation: str):
        try:
            payload = read_json(path)
        except (OSError, json.JSONDecodeError) as exc:
            raise CorruptionDetected(
                f"Unreadable {path.name}: {exc}", operation=operation, snapshot_id=snapshot_id
            ) from exc
        if payload is None:
            return None
        try:
            return model.model_validate(payload)
        except PydanticValidationError as exc:
            raise CorruptionDetected(
                f"Invalid {path.name}: {exc}", operation=operation, snapshot_id=snapshot_id
            ) from exc

    def _load_manifest(self, snapshot_id: str) -> Optional[SnapshotManifest]:
        path = self._snapshot_dir(snapshot_id) / MANIFEST_FILE
        return self._read_model(
            path, SnapshotManifest, snapshot_id=snapshot_id, operation="read_manifest"
        )

    def _read_manifest(self, snapshot_id: str, *, locked: bool = False) -> Optional[SnapshotManifest]:
        """Load the manifest, rebuilding it from the unit files when it is unreadable.

        Callers already holding the snapshot lock pass ``locked=True``.
        """
        try:
            return self._load_manifest(snapshot_id)
        except CorruptionDetected as exc:
            if locked:
                return self._rebuild_manifest(snapshot_id, exc)
            with self._locks.hold(snapshot_id):
                try:
                    return self._load_manifest(snapshot_id)
                except CorruptionDetected as again:
                    return self._rebuild_manifest(snapshot_id, again)

    def _rebuild_manifest(self, snapshot_id: str, cause: CorruptionDetected) -> SnapshotManifest:
        directory = self._snapshot_dir(snapshot_id)
        try:
            metadata = self.get_snapshot_metadata(snapshot_id)
        except CorruptionDetected:
            metadata = None
        manifest = SnapshotManifest(snapshot_id=snapshot_id, updated_at=self.clock().isoformat())
        for path in sorted(directory.glob("district_*.json")):
            unit_id = path.stem[len("district_"):]
            try:
                text = path.read_text(encoding="utf-8")
                data = UnitStatistics.model_validate(json.loads(text))
            except (OSError, json.JSONDecodeError, PydanticValidationError) as exc:
                raise cause from exc
            manifest.units[unit_id] = ManifestEntry(
                unit_id=unit_id,
                file_name=path.name,
                sha256=sha256_text(text),
                club_count=data.club_count,
                collection_date=metadata.collection_date if metadata else None,
                is_closing_period_data=metadata.is_closing_period_data if metadata else False,
            )
        self._write_manifest(manifest)
        logger.warning(
            "snapshot.manifest.rebuilt",
            extra={
                "operation": "read_manifest",
                "snapshot_id": snapshot_id,
                "units": len(manifest.units),
            },
        )
        return manifest

    def _write_manifest(self, manifest: SnapshotManifest) -> None:
        path = self._snapshot_dir(manifest.snapshot_id) / MANIFEST_FILE
        atomic_write_json(path, manifest.model_dump(mode="json"))

    # Unit data

    def write_unit_data(
        self,
        snapshot_id: str,
        unit_id: str,
        data: UnitStatistics,
        *,
        collection_date: Optional[str] = None,
        is_closing_period: bool = False,
    ) -> WriteOutcome:
        unit_id = validate_unit_id(unit_id)
        directory = self._snapshot_dir(snapshot_id)
        with self._locks.hold(snapshot_id):
            manifest = self._read_manifest(snapshot_id, locked=True) or SnapshotManifest(
                snapshot_id=snapshot_id, updated_at=self.clock().isoformat()
            )
            existing = manifest.units.get(unit_id)
            if not should_overwrite(existing, snapshot_id, collection_date, is_closing_period):
                logger.warning(
                    "snapshot.write.skipped_stale",
                    extra={
                        "operation": "write_unit_data",
                        "snapshot_id": snapshot_id,
                        "unit_id": unit_id,
                        "existing_collection_date": existing.collection_date,
                        "candidate_collection_date": collection_date,
                    },
                )
                return WriteOutcome.SKIPPED_STALE

            file_name = self._unit_file_name(unit_id)
            if (
                existing is not None
                and existing.sha256 == snapshot_content_digest(data)
                and existing.collection_date == collection_date
                and existing.is_closing_period_data == is_closing_period
                and (directory / file_name).is_file()
            ):
                return WriteOutcome.WRITTEN
            try:
                digest = atomic_write_json(directory / file_name, data.model_dump(mode="json"))
            except OSError as exc:
                raise StorageError(
                    str(exc), operation="write_unit_data", snapshot_id=snapshot_id, unit_id=unit_id
                ) from exc
            manifest.units[unit_id] = ManifestEntry(
                unit_id=unit_id,
                file_name=file_name,
                sha256=digest,
                club_count=data.club_count,
                collection_date=collection_date,
                is_closing_period_data=is_closing_period,
            )
            manifest.updated_at = self.clock().isoformat()
            self._write_manifest(manifest)
        logger.info(
            "snapshot.write.unit",
            extra={"operation": "write_unit_data", "snapshot_id": snapshot_id, "unit_id": unit_id},
        )
        return WriteOutcome.WRITTEN

    def read_unit_data(self, snapshot_id: str, unit_id: str) -> Optional[UnitStatistics]:
        unit_id = validate_unit_id(unit_id)
        path = self._snapshot_dir(snapshot_id) / self._unit_file_name(unit_id)
        last_error: Optional[str] = None
        for attempt in range(1, self.read_retries + 1):
            try:
                text = path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return None
            manifest = self._read_manifest(snapshot_id)
            entry = manifest.units.get(unit_id) if manifest else None
            try:
                data = UnitStatistics.model_validate(json.loads(text))
            except (json.JSONDecodeError, PydanticValidationError) as exc:
                last_error = str(exc)
                logger.warning(
                    "snapshot.read.corrupt",
                    extra={
                        "operation": "read_unit_data",
                        "snapshot_id": snapshot_id,
                        "unit_id": unit_id,
                        "attempt": attempt,
                    },
                )
                continue
            if entry is None or entry.sha256 == sha256_text(text):
                return data
            last_error = "checksum mismatch"
            if attempt == self.read_retries:
                recounted = self._recount_manifest_entry(snapshot_id, unit_id)
                if recounted is not None:
                    return recounted
        raise CorruptionDetected(
            f"Unit data failed integrity checks: {last_error}",
            operation="read_unit_data",
            snapshot_id=snapshot_id,
            unit_id=unit_id,
        )

    def _recount_manifest_entry(
        self, snapshot_id: str, unit_id: str
    ) -> Optional[UnitStatistics]:
        """The unit file parses but disagrees with the manifest: trust the file.

        The file is re-read under the snapshot lock so the recorded checksum
        always matches what a concurrent writer left behind.
        """
        path = self._snapshot_dir(snapshot_id) / self._unit_file_name(unit_id)
        with self._locks.hold(snapshot_id):
            try:
                text = path.read_text(encoding="utf-8")
                data = UnitStatistics.model_validate(json.loads(text))
            except (OSError, json.JSONDecodeError, PydanticValidationError):
                return None
            manifest = self._read_manifest(snapshot_id, locked=True)
            if manifest is None or unit_id not in manifest.units:
                return data
            entry = manifest.units[unit_id]
            if entry.sha256 == sha256_text(text):
                return data
            entry.sha256 = sha256_text(text)
            entry.club_count = data.club_count
            manifest.updated_at = self.clock().isoformat()
            self._write_manifest(manifest)
        logger.warning(
            "snapshot.manifest.recounted",
            extra={"operation": "read_unit_data", "snapshot_id": snapshot_id, "unit_id": unit_id},
        )
        return data

    def list_units_in_snapshot(self, snapshot_id: str) -> List[str]:
        directory = self._snapshot_dir(snapshot_id)
        if not directory.is_dir():
            return []
        manifest = self._read_manifest(snapshot_id)
        if manifest is not None:
            return sorted(manifest.units)
        units = []
        for path in directory.glob("district_*.json"):
            units.append(path.stem[len("district_"):])
        return sorted(units)

    # Metadata

    def write_snapshot_metadata(self, metadata: SnapshotMetadata) -> None:
        directory = self._snapshot_dir(metadata.snapshot_id)
        atomic_write_json(directory / METADATA_FILE, metadata.model_dump(mode="json"))
        if metadata.status == SnapshotStatus.SUCCESS:
            self._advance_current_pointer(metadata.snapshot_id)
        logger.info(
            "snapshot.metadata.written",
            extra={
                "operation": "write_snapshot_metadata",
                "snapshot_id": metadata.snapshot_id,
                "status": metadata.status.value,
            },
        )

    def get_snapshot_metadata(self, snapshot_id: str) -> Optional[SnapshotMetadata]:
        path = self._snapshot_dir(snapshot_id) / METADATA_FILE
        return self._read_model(
            path, SnapshotMetadata, snapshot_id=snapshot_id, operation="get_snapshot_metadata"
        )

    def _advance_current_pointer(self, snapshot_id: str) -> None:
        with self._locks.hold(CURRENT_POINTER):
            pointer = read_json(self.root / CURRENT_POINTER) or {}
            current = pointer.get("snapshot_id")
            if current and current > snapshot_id and (self.root / current).is_dir():
                return
            atomic_write_json(
                self.root / CURRENT_POINTER,
                {"snapshot_id": snapshot_id, "updated_at": self.clock().isoformat()},
            )

    # Snapshots

    def get_snapshot(self, snapshot_id: str) -> Optional[Snapshot]:
        directory = self._snapshot_dir(snapshot_id)
        if not directory.is_dir():
            return None
        return Snapshot(
            snapshot_id=snapshot_id,
            metadata=self.get_snapshot_metadata(snapshot_id),
            unit_ids=self.list_units_in_snapshot(snapshot_id),
        )

    def _snapshot_ids(self) -> List[str]:
        if not self.root.is_dir():
            return []
        return sorted(
            (p.name for p in self.root.iterdir() if p.is_dir() and is_date_string(p.name)),
            reverse=True,
        )

    def get_latest_successful(self) -> Optional[Snapshot]:
        try:
            pointer = read_json(self.root / CURRENT_POINTER)
        except json.JSONDecodeError:
            pointer = None
            logger.warning(
                "snapshot.current_pointer.invalid", extra={"operation": "get_latest_successful"}
            )
        if isinstance(pointer, dict) and is_date_string(pointer.get("snapshot_id", "")):
            snapshot = self.get_snapshot(pointer["snapshot_id"])
            if snapshot is not None and snapshot.status == SnapshotStatus.SUCCESS:
                return snapshot
        for snapshot_id in self._snapshot_ids():
            snapshot = self.get_snapshot(snapshot_id)
            if snapshot is not None and snapshot.status == SnapshotStatus.SUCCESS:
                return snapshot
        return None

    def list_snapshots(self, filter: Optional[SnapshotFilter] = None) -> List[Snapshot]:
        filter = filter or SnapshotFilter()
        snapshots = []
        for snapshot_id in self._snapshot_ids():
            metadata = self.get_snapshot_metadata(snapshot_id)
            if not filter.matches(snapshot_id, metadata):
                continue
            snapshots.append(
                Snapshot(
                    snapshot_id=snapshot_id,
                    metadata=metadata,
                    unit_ids=self.list_units_in_snapshot(snapshot_id),
                )
            )
            if filter.limit is not None and len(snapshots) >= filter.limit:
                break
        return snapshots

    def delete_snapshot(self, snapshot_id: str) -> bool:
        directory = self._snapshot_dir(snapshot_id)
        with self._locks.hold(snapshot_id):
            if not directory.is_dir():
                return False
            try:
                shutil.rmtree(directory)
            except OSError as exc:
                raise StorageError(
                    str(exc), operation="delete_snapshot", snapshot_id=snapshot_id
                ) from exc
        with self._locks.hold(CURRENT_POINTER):
            pointer = read_json(self.root / CURRENT_POINTER) or {}
            if pointer.get("snapshot_id") == snapshot_id:
                (self.root / CURRENT_POINTER).unlink(missing_ok=True)
        logger.info(
            "snapshot.deleted", extra={"operation": "delete_snapshot", "snapshot_id": snapshot_id}
        )
        return True

    # Rankings

    def write_rankings(self, snapshot_id: str, artifact: RankingsArtifact) -> None:
        path = self._snapshot_dir(snapshot_id) / RANKINGS_FILE
        atomic_write_json(path, artifact.model_dump(mode="json"))

    def read_rankings(self, snapshot_id: str) -> Optional[RankingsArtifact]:
        path = self._snapshot_dir(snapshot_id) / RANKINGS_FILE
        return self._read_model(
            path, RankingsArtifact, snapshot_id=snapshot_id, operation="read_rankings"
        )


def snapshot_content_digest(data: UnitStatistics) -> str:
    return sha256_text(dumps_canonical(data.model_dump(mode="json")))
