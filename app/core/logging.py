import logging
import logging.config

from app.core.request_context import request_id_ctx_var

LOG_FORMAT = "%(asctime)s %(levelname)s request_id=%(request_id)s %(name)s %(message)s"


class RequestIdFilter(logging.Filter):
    """Stamps every record with the id of the request being served, or ``-``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_ctx_var.get()
        return True


def setup_logging(level: str | int = "INFO") -> None:
    if logging.getLogger().handlers:
        return

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"request_id": {"()": RequestIdFilter}},
            "formatters": {"plain": {"format": LOG_FORMAT, "datefmt": "%Y-%m-%dT%H:%M:%S"}},
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "filters": ["request_id"],
                    "formatter": "plain",
                }
            },
            "root": {"level": level, "handlers": ["console"]},
            # the observability middleware already logs one line per request
            "loggers": {"uvicorn.access": {"level": "WARNING"}},
        }
    )
