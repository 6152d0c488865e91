from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Request
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from docpersist.domains.persistence.lifecycle import LifecycleHandler
from docpersist.domains.persistence.schemas import EventResult, parse_event

router = APIRouter(prefix="/events", tags=["events"])


def get_lifecycle_handler(request: Request) -> LifecycleHandler:
    return request.app.state.lifecycle


@router.post("", response_model=EventResult)
async def handle_event(
    payload: Dict[str, Any] = Body(...),
    handler: LifecycleHandler = Depends(get_lifecycle_handler)
):
    """Прием события жизненного цикла от движка синхронизации

    Авторизация выполняется до этой точки; некорректные события
    отклоняются со статусом 422.
    """
    try:
        event = parse_event(payload)
    except ValidationError as e:
        raise RequestValidationError(e.errors(include_url=False))

    return await handler.handle(event)
