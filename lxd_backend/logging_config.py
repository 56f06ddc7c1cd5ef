import logging

from lxd_backend.config import get_settings


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(threadName)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    resolved = (level or get_settings().log_level).upper()
    numeric = logging.getLevelName(resolved)
    if not isinstance(numeric, int):
        raise ValueError(f"unsupported log level {resolved}")
    logging.basicConfig(level=numeric, format=LOG_FORMAT, force=True)
    # httpx logs every request at INFO; the backend logs its own requests.
    logging.getLogger("httpx").setLevel(max(numeric, logging.WARNING))
