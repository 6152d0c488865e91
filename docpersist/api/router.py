from fastapi import APIRouter

from docpersist.api.http import events_router
from docpersist.api.ws import sync_router

api_router = APIRouter()
api_router.include_router(events_router)
api_router.include_router(sync_router)
