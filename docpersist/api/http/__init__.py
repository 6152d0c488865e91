from docpersist.api.http.events import router as events_router

__all__ = ["events_router"]
