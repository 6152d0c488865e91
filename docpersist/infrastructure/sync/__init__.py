from docpersist.infrastructure.sync.engine import SyncEngine, PycrdtSyncEngine

__all__ = ["SyncEngine", "PycrdtSyncEngine"]
