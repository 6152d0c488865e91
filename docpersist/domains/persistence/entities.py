import base64
import time
from dataclasses import dataclass, field
from typing import Optional, Dict, Any


def page_id_from_name(document_name: str, prefix: str = "page:") -> str:
    """Извлечение идентификатора страницы из имени документа"""
    if document_name.startswith(prefix):
        return document_name[len(prefix):]
    return document_name


def document_name_for(page_id: str, prefix: str = "page:") -> str:
    return f"{prefix}{page_id}"


@dataclass(frozen=True)
class DocumentState:
    """Полное бинарное состояние документа на момент времени"""
    document_id: str
    data: bytes

    @property
    def length(self) -> int:
        return len(self.data)


@dataclass
class NodeCandidate:
    """Узел, полученный декодированием состояния документа"""
    id: str
    type: str
    content: Dict[str, Any]
    order: int
    parent_id: Optional[str] = None


@dataclass
class SnapshotJob:
    """Задание на сохранение снимка страницы"""
    page_id: str
    document_state: bytes
    triggered_by: str
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    @property
    def version(self) -> int:
        # версия снимка: секунды эпохи
        return self.timestamp // 1000

    def to_payload(self) -> Dict[str, Any]:
        return {
            "pageId": self.page_id,
            "documentState": base64.b64encode(self.document_state).decode("ascii"),
            "triggeredBy": self.triggered_by,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "SnapshotJob":
        return cls(
            page_id=payload["pageId"],
            document_state=base64.b64decode(payload["documentState"]),
            triggered_by=payload["triggeredBy"],
            timestamp=int(payload["timestamp"]),
        )


@dataclass
class SnapshotResult:
    """Итог обработки задания"""
    page_id: str
    snapshot_id: int
    inserted: int = 0
    updated: int = 0
    deleted: int = 0

    @property
    def nodes_processed(self) -> int:
        return self.inserted + self.updated

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "pageId": self.page_id,
            "snapshotId": self.snapshot_id,
            "inserted": self.inserted,
            "updated": self.updated,
            "deleted": self.deleted,
            "blocksProcessed": self.nodes_processed,
        }
