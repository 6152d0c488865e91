import hashlib
from typing import Dict, Optional


class ChangeDetector:
    """Отпечатки последних сохранённых состояний документов"""

    def __init__(self):
        self._fingerprints: Dict[str, str] = {}

    @staticmethod
    def fingerprint(state: bytes) -> str:
        return hashlib.sha256(bytes(state)).hexdigest()

    def should_persist(self, document_id: str, state: bytes) -> bool:
        """True и запоминание отпечатка, если состояние изменилось"""
        digest = self.fingerprint(state)
        if self._fingerprints.get(document_id) == digest:
            return False
        self._fingerprints[document_id] = digest
        return True

    def get(self, document_id: str) -> Optional[str]:
        return self._fingerprints.get(document_id)

    def forget(self, document_id: str, fingerprint: Optional[str] = None) -> None:
        """Удаление отпечатка; с fingerprint только если он не был заменён"""
        if fingerprint is not None and self._fingerprints.get(document_id) != fingerprint:
            return
        self._fingerprints.pop(document_id, None)

    def __contains__(self, document_id: str) -> bool:
        return document_id in self._fingerprints

    def __len__(self) -> int:
        return len(self._fingerprints)
