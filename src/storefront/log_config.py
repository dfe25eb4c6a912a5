"""
Structured logging configuration for the storefront service
"""
import logging
import sys

from pythonjsonlogger import jsonlogger


class ServiceFilter(logging.Filter):
    """Stamp every record with the owning service name"""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service_name
        return True


def setup_logging(service_name: str, log_level: str = "INFO", log_format: str = "json") -> logging.Logger:
    """
    Configure the root logger for the service

    Args:
        service_name: Name attached to every record as ``service``
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: ``json`` for production, anything else for plain text
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ServiceFilter(service_name))

    if log_format.lower() == "json":
        formatter = jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(name)s %(levelname)s %(service)s %(message)s",
            rename_fields={
                "asctime": "timestamp",
                "name": "logger",
                "levelname": "level"
            }
        )
        formatter.default_time_format = "%Y-%m-%dT%H:%M:%S"
        formatter.default_msec_format = "%s.%03dZ"
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(service)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

    handler.setFormatter(formatter)
    root.addHandler(handler)

    # uvicorn installs its own handlers; route them through ours
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers.clear()
        uv_logger.propagate = True

    logging.getLogger(__name__).info(f"Logging initialized for {service_name} at level {log_level}")

    return root
