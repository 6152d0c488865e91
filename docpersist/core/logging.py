import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Настройка корневого логгера процесса"""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # SQL-эхо управляется отдельно через sql_echo
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
