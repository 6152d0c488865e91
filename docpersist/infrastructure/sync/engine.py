"""Адаптер движка совместного редактирования (Yjs через pycrdt).

Сам алгоритм слияния CRDT остаётся внешним: здесь только получение
текущего состояния, декодирование и кодирование документов.
"""

import logging
from typing import Dict, Optional, Protocol, TYPE_CHECKING

from pycrdt import Doc

from docpersist.core.exceptions import DocumentDecodeError

if TYPE_CHECKING:
    from docpersist.domains.persistence.document_store import DocumentStore

logger = logging.getLogger(__name__)


class SyncEngine(Protocol):
    async def current_state(self, document_name: str) -> Optional[bytes]: ...

    async def open_document(self, document_name: str) -> Doc: ...

    def close_document(self, document_name: str) -> bool: ...

    def decode(self, state: bytes) -> Doc: ...

    def encode(self, doc: Doc) -> bytes: ...


class PycrdtSyncEngine:
    """Реестр открытых документов pycrdt внутри процесса"""

    def __init__(self, store: Optional["DocumentStore"] = None):
        self.store = store
        self.documents: Dict[str, Doc] = {}

    def decode(self, state: bytes) -> Doc:
        """Декодирование бинарного состояния в документ"""
        doc = Doc()
        try:
            doc.apply_update(bytes(state))
        except Exception as e:
            raise DocumentDecodeError(f"Cannot decode document state ({len(state)} bytes): {e}") from e
        return doc

    def encode(self, doc: Doc) -> bytes:
        return doc.get_update()

    async def current_state(self, document_name: str) -> Optional[bytes]:
        doc = self.documents.get(document_name)
        if doc is None:
            return None
        return self.encode(doc)

    async def open_document(self, document_name: str) -> Doc:
        """Загрузка документа: кэш, затем журнал снимков"""
        doc = self.documents.get(document_name)
        if doc is not None:
            return doc

        state = await self.store.fetch(document_name) if self.store else None
        loaded = self.decode(state) if state else Doc()
        # параллельное открытие того же документа не должно его подменить
        doc = self.documents.setdefault(document_name, loaded)
        logger.info(f"Loaded document {document_name} ({len(state) if state else 0} bytes)")
        return doc

    async def apply_update(self, document_name: str, update: bytes) -> bytes:
        """Применение обновления и запись состояния в кэш"""
        doc = await self.open_document(document_name)
        try:
            doc.apply_update(bytes(update))
        except Exception as e:
            raise DocumentDecodeError(f"Cannot apply update to {document_name}: {e}") from e

        state = self.encode(doc)
        if self.store:
            await self.store.store(document_name, state)
        return state

    def close_document(self, document_name: str) -> bool:
        return self.documents.pop(document_name, None) is not None
