from __future__ import annotations

import logging
from typing import Callable, Final, Optional

LOGGER_NAME: Final[str] = "omnibridge"
_LOG_FORMAT: Final[str] = "[%(asctime)s] %(levelname)s %(message)s"
_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"


def get_logger(suffix: Optional[str] = None) -> logging.Logger:
    """Return a shared logger under the ``omnibridge`` namespace.

    The handler lives on the package root logger; child loggers propagate to it.
    """

    root = logging.getLogger(LOGGER_NAME)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT, _DATE_FORMAT))
        root.addHandler(handler)
        root.setLevel(logging.INFO)
        root.propagate = False
    if not suffix:
        return root
    return root.getChild(suffix)


def compose_log(
    logger: logging.Logger, log_callback: Optional[Callable[[str], None]]
) -> Callable[[str], None]:
    """Fan a progress message out to ``logger`` and an optional caller callback."""

    def _log(message: str) -> None:
        text = str(message)
        if log_callback is not None:
            try:
                log_callback(text)
            except Exception:
                logger.exception("Bridge log callback raised an error.")
        logger.info(text)

    return _log
