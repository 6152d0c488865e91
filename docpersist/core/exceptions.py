class PersistenceError(Exception):
    """Базовая ошибка конвейера сохранения"""


class DocumentDecodeError(PersistenceError):
    """Бинарное состояние документа не удалось декодировать"""


class ProjectionError(PersistenceError):
    """Декодированные узлы не образуют корректное дерево"""


class InvalidEventError(PersistenceError):
    """Событие жизненного цикла не прошло проверку"""


class JobLockLostError(PersistenceError):
    """Блокировка задания истекла или перехвачена другим обработчиком"""
