from signal_engine.storage.snapshot import Snapshot, SnapshotStore

__all__ = ["Snapshot", "SnapshotStore"]
