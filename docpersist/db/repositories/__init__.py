from docpersist.db.repositories.snapshot_repository import SnapshotRepository
from docpersist.db.repositories.node_repository import NodeRepository

__all__ = [
    "SnapshotRepository",
    "NodeRepository"
]
