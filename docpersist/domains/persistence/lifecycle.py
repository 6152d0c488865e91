import asyncio
import logging
from typing import Optional

from docpersist.core import telemetry
from docpersist.core.exceptions import DocumentDecodeError, InvalidEventError
from docpersist.core.telemetry import TelemetryEvent
from docpersist.domains.persistence.entities import SnapshotJob
from docpersist.domains.persistence.schemas import (
    ConnectEvent, DisconnectEvent, DestroyEvent, EventResult
)
from docpersist.domains.persistence.services import SnapshotPersister
from docpersist.domains.persistence.sessions import SessionRegistry

logger = logging.getLogger(__name__)

PERIODIC_TRIGGER = "periodic"


class LifecycleHandler:
    """Обработка подключений, отключений и периодических снимков"""

    def __init__(
        self,
        registry: SessionRegistry,
        engine,
        persister: SnapshotPersister,
        snapshot_interval: float = 300.0
    ):
        self.registry = registry
        self.engine = engine
        self.persister = persister
        self.snapshot_interval = snapshot_interval

    async def handle(self, event) -> EventResult:
        """Единая точка входа для событий жизненного цикла"""
        if isinstance(event, ConnectEvent):
            return await self.on_connect(event)
        if isinstance(event, DisconnectEvent):
            return await self.on_disconnect(event)
        if isinstance(event, DestroyEvent):
            return await self.on_destroy(event)
        raise InvalidEventError(f"Unsupported lifecycle event: {type(event).__name__}")

    async def on_connect(self, event: ConnectEvent) -> EventResult:
        page_id = event.page_id
        try:
            # кэш, затем последний снимок из журнала
            await self.engine.open_document(event.document_name)
        except DocumentDecodeError as e:
            logger.error(f"Cannot load document {event.document_name}: {e}")
            return EventResult(event=event.type, page_id=page_id, action="load_failed", error=str(e))

        active = self.registry.open(page_id, event.user_id)
        telemetry.emit(TelemetryEvent.SESSION_OPENED, page=page_id, user=event.user_id, active=active)

        action = "tracked"
        if not self.registry.has_timer(page_id):
            task = asyncio.create_task(self._periodic_snapshots(page_id, event.document_name))
            self.registry.set_timer(page_id, task)
            telemetry.emit(TelemetryEvent.TIMER_STARTED, page=page_id, interval_s=self.snapshot_interval)
            action = "timer_started"

        return EventResult(event=event.type, page_id=page_id, action=action, active_sessions=active)

    async def on_disconnect(self, event: DisconnectEvent) -> EventResult:
        page_id = event.page_id
        remaining = self.registry.close(page_id, event.user_id)
        if remaining is None:
            return EventResult(event=event.type, page_id=page_id, action="ignored")

        telemetry.emit(TelemetryEvent.SESSION_CLOSED, page=page_id, user=event.user_id, remaining=remaining)
        if remaining > 0:
            return EventResult(event=event.type, page_id=page_id, action="tracked", active_sessions=remaining)

        # последняя сессия: таймер снимается до первого await
        timer = self.registry.pop_timer(page_id)
        if timer is not None:
            telemetry.emit(TelemetryEvent.TIMER_STOPPED, page=page_id)
            # прерванный тик сам сбрасывает свой отпечаток
            await asyncio.gather(timer, return_exceptions=True)

        try:
            action, ref = await self.snapshot(page_id, event.document_name, event.user_id)
            result = EventResult(event=event.type, page_id=page_id, action=action, snapshot_ref=ref)
        except Exception as e:
            telemetry.emit(TelemetryEvent.SNAPSHOT_FAILED, logging.ERROR, page=page_id,
                           trigger="disconnect", mode=self.persister.mode, error=str(e))
            result = EventResult(event=event.type, page_id=page_id, action="snapshot_failed", error=str(e))
        finally:
            self._release_if_idle(page_id, event.document_name)

        return result

    async def on_destroy(self, event: DestroyEvent) -> EventResult:
        page_id = event.page_id
        if self.registry.release(page_id):
            telemetry.emit(TelemetryEvent.TIMER_STOPPED, page=page_id)
        self.engine.close_document(event.document_name)
        logger.info(f"Document destroyed: {page_id}")
        return EventResult(event=event.type, page_id=page_id, action="released")

    async def snapshot(self, page_id: str, document_name: str, triggered_by: str):
        """Снимок текущего состояния, если оно изменилось"""
        state: Optional[bytes] = await self.engine.current_state(document_name)
        if state is None:
            return "no_state", None

        detector = self.registry.detector
        if not detector.should_persist(page_id, state):
            telemetry.emit(TelemetryEvent.SNAPSHOT_UNCHANGED, logging.DEBUG, page=page_id, trigger=triggered_by)
            return "unchanged", None

        fingerprint = detector.get(page_id)
        job = SnapshotJob(page_id=page_id, document_state=state, triggered_by=triggered_by)
        try:
            ref = await self.persister.persist(job)
        except BaseException:
            # в том числе отмена тика: следующий триггер должен повторить попытку
            detector.forget(page_id, fingerprint)
            raise

        action = "snapshot_queued" if self.persister.mode == "queued" else "snapshot_saved"
        return action, ref

    def _release_if_idle(self, page_id: str, document_name: str) -> None:
        # за время сохранения мог подключиться новый пользователь
        if self.registry.active_count(page_id) > 0 or self.registry.has_timer(page_id):
            return
        self.registry.release(page_id)
        self.engine.close_document(document_name)

    async def _periodic_snapshots(self, page_id: str, document_name: str) -> None:
        while True:
            await asyncio.sleep(self.snapshot_interval)
            try:
                await self.snapshot(page_id, document_name, PERIODIC_TRIGGER)
            except Exception as e:
                telemetry.emit(TelemetryEvent.SNAPSHOT_FAILED, logging.ERROR, page=page_id,
                               trigger=PERIODIC_TRIGGER, mode=self.persister.mode, error=str(e))
