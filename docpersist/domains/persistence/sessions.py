import asyncio
import logging
from collections import Counter
from typing import Dict, Optional

from docpersist.domains.persistence.change_detector import ChangeDetector

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Активные сессии, таймеры снимков и отпечатки по документам.

    Используется только из одного цикла событий, поэтому блокировки не нужны.
    Состояние локально для процесса и не разделяется между экземплярами.
    """

    def __init__(self, detector: Optional[ChangeDetector] = None):
        self.detector = detector or ChangeDetector()
        self._sessions: Dict[str, Counter] = {}
        self._timers: Dict[str, asyncio.Task] = {}

    def open(self, document_id: str, user_id: str) -> int:
        """Регистрация сессии; возвращает число активных сессий"""
        sessions = self._sessions.setdefault(document_id, Counter())
        sessions[user_id] += 1
        return self.active_count(document_id)

    def close(self, document_id: str, user_id: str) -> Optional[int]:
        """Снятие сессии; None, если документ не отслеживается"""
        sessions = self._sessions.get(document_id)
        if sessions is None or sessions[user_id] <= 0:
            return None

        sessions[user_id] -= 1
        if sessions[user_id] <= 0:
            del sessions[user_id]
        if not sessions:
            del self._sessions[document_id]
        return self.active_count(document_id)

    def active_count(self, document_id: str) -> int:
        sessions = self._sessions.get(document_id)
        return sum(sessions.values()) if sessions else 0

    def set_timer(self, document_id: str, task: asyncio.Task) -> None:
        self.cancel_timer(document_id)
        self._timers[document_id] = task

    def has_timer(self, document_id: str) -> bool:
        return document_id in self._timers

    def pop_timer(self, document_id: str) -> Optional[asyncio.Task]:
        """Отмена таймера и снятие его с документа; задачу можно дождаться"""
        task = self._timers.pop(document_id, None)
        if task is not None:
            task.cancel()
        return task

    def cancel_timer(self, document_id: str) -> bool:
        return self.pop_timer(document_id) is not None

    def release(self, document_id: str) -> bool:
        """Освобождение всех ресурсов документа"""
        had_timer = self.cancel_timer(document_id)
        self._sessions.pop(document_id, None)
        self.detector.forget(document_id)
        return had_timer

    def release_all(self) -> None:
        for document_id in set(self._sessions) | set(self._timers):
            self.release(document_id)
