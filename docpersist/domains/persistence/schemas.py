from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from docpersist.core.config import settings


class LifecycleEventBase(BaseModel):
    """Базовая схема события жизненного цикла документа"""
    document_name: str = Field(..., min_length=1, max_length=512)

    @field_validator("document_name")
    @classmethod
    def validate_document_name(cls, v):
        if not v.startswith(settings.document_prefix) or len(v) == len(settings.document_prefix):
            raise ValueError(f"Document name must look like '{settings.document_prefix}<pageId>'")
        return v

    @property
    def page_id(self) -> str:
        return self.document_name[len(settings.document_prefix):]


class ConnectEvent(LifecycleEventBase):
    """Пользователь подключился к документу"""
    type: Literal["connect"] = "connect"
    user_id: str = Field(..., min_length=1)


class DisconnectEvent(LifecycleEventBase):
    """Пользователь отключился от документа"""
    type: Literal["disconnect"] = "disconnect"
    user_id: str = Field(..., min_length=1)


class DestroyEvent(LifecycleEventBase):
    """Движок выгрузил документ из памяти"""
    type: Literal["destroy"] = "destroy"


LifecycleEvent = Annotated[
    Union[ConnectEvent, DisconnectEvent, DestroyEvent],
    Field(discriminator="type")
]


class EventResult(BaseModel):
    """Схема результата обработки события"""
    event: str
    page_id: str
    action: str
    active_sessions: int = 0
    snapshot_ref: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


lifecycle_event_adapter = TypeAdapter(LifecycleEvent)


def parse_event(payload: Dict[str, Any]):
    """Проверка события на границе; ValidationError для некорректных данных"""
    return lifecycle_event_adapter.validate_python(payload)
