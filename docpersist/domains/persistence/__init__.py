from docpersist.domains.persistence.entities import (
    DocumentState, NodeCandidate, SnapshotJob, SnapshotResult
)
from docpersist.domains.persistence.schemas import (
    ConnectEvent, DisconnectEvent, DestroyEvent, LifecycleEvent, EventResult
)

__all__ = [
    "DocumentState", "NodeCandidate", "SnapshotJob", "SnapshotResult",
    "ConnectEvent", "DisconnectEvent", "DestroyEvent", "LifecycleEvent", "EventResult"
]
