from .snapshots import SnapshotRanking, SnapshotRecord, SnapshotUnit
