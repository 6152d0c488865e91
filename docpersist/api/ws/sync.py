import json
import logging
from typing import Dict, List, Tuple

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from docpersist.core.exceptions import DocumentDecodeError
from docpersist.domains.persistence.schemas import ConnectEvent, DisconnectEvent

logger = logging.getLogger(__name__)

router = APIRouter()


class ConnectionManager:
    """Открытые соединения по документам: {document_name: [(user_id, websocket)]}"""

    def __init__(self):
        self.active_connections: Dict[str, List[Tuple[str, WebSocket]]] = {}

    def add(self, document_name: str, user_id: str, websocket: WebSocket) -> None:
        self.active_connections.setdefault(document_name, []).append((user_id, websocket))

    def remove(self, document_name: str, websocket: WebSocket) -> None:
        connections = self.active_connections.get(document_name, [])
        self.active_connections[document_name] = [c for c in connections if c[1] is not websocket]
        if not self.active_connections[document_name]:
            del self.active_connections[document_name]

    async def broadcast_update(self, document_name: str, update: bytes, sender: WebSocket) -> None:
        """Рассылка обновления остальным участникам документа"""
        for _, websocket in list(self.active_connections.get(document_name, [])):
            if websocket is sender:
                continue
            try:
                await websocket.send_bytes(update)
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.warning(f"Dropping connection on {document_name}: {e}")
                self.remove(document_name, websocket)


manager = ConnectionManager()


@router.websocket("/documents/{document_name}/ws/{user_id}")
async def sync_endpoint(websocket: WebSocket, document_name: str, user_id: str):
    """Обмен бинарными обновлениями документа"""
    lifecycle = websocket.app.state.lifecycle
    engine = lifecycle.engine

    try:
        event = ConnectEvent(document_name=document_name, user_id=user_id)
    except ValidationError as e:
        logger.warning(f"Rejected connection to {document_name}: {e.errors(include_url=False)}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    result = await lifecycle.handle(event)
    if not result.ok:
        await websocket.send_text(json.dumps({"type": "error", "data": {"error": result.error}}))
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    manager.add(document_name, user_id, websocket)
    logger.info(f"User {user_id} connected to {document_name}")
    try:
        # начальное состояние для клиента
        await websocket.send_bytes(await engine.current_state(document_name) or b"")
        while True:
            update = await websocket.receive_bytes()
            try:
                await engine.apply_update(document_name, update)
            except DocumentDecodeError as e:
                logger.warning(f"Rejected update from {user_id} on {document_name}: {e}")
                await websocket.send_text(json.dumps({"type": "error", "data": {"error": str(e)}}))
                continue
            await manager.broadcast_update(document_name, update, sender=websocket)
    except WebSocketDisconnect:
        logger.info(f"User {user_id} disconnected from {document_name}")
    finally:
        manager.remove(document_name, websocket)
        await lifecycle.handle(DisconnectEvent(document_name=document_name, user_id=user_id))
