import logging
from enum import Enum
from typing import Any, Callable, Dict, List

logger = logging.getLogger("docpersist.telemetry")

TelemetrySink = Callable[[str, int, Dict[str, Any]], None]

_sinks: List[TelemetrySink] = []


class TelemetryEvent(str, Enum):
    """Именованные события конвейера сохранения"""
    CACHE_HIT = "cache.hit"
    CACHE_MISS = "cache.miss"
    CACHE_ERROR = "cache.error"
    CACHE_RESTORED = "cache.restored"
    SNAPSHOT_FALLBACK_ERROR = "snapshot.fallback_error"
    SESSION_OPENED = "session.opened"
    SESSION_CLOSED = "session.closed"
    TIMER_STARTED = "timer.started"
    TIMER_STOPPED = "timer.stopped"
    SNAPSHOT_UNCHANGED = "snapshot.unchanged"
    SNAPSHOT_QUEUED = "snapshot.queued"
    SNAPSHOT_SAVED = "snapshot.saved"
    SNAPSHOT_FAILED = "snapshot.failed"
    JOB_COMPLETED = "job.completed"
    JOB_RETRY = "job.retry"
    JOB_FAILED = "job.failed"
    JOB_RECOVERED = "job.recovered"


def add_sink(sink: TelemetrySink) -> None:
    """Подключение внешнего получателя событий"""
    _sinks.append(sink)


def remove_sink(sink: TelemetrySink) -> None:
    if sink in _sinks:
        _sinks.remove(sink)


def emit(event: TelemetryEvent, level: int = logging.INFO, **fields: Any) -> None:
    """Публикация структурированного события"""
    name = event.value
    if logger.isEnabledFor(level):
        details = " ".join(f"{key}={value}" for key, value in fields.items())
        logger.log(level, f"{name} {details}".rstrip(), extra={"event": name, "fields": fields})

    for sink in list(_sinks):
        try:
            sink(name, level, fields)
        except Exception:
            logger.exception(f"Telemetry sink failed for {name}")
