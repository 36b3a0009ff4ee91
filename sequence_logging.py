# sequence_logging.py

import logging
import time

# --- Logging Setup ---
logger = logging.getLogger("SequenceRunner")
if not logger.hasHandlers():
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    formatter = logging.Formatter('%(asctime)sZ - %(levelname)s - %(name)s - %(message)s')
    formatter.converter = time.gmtime # UTC timestamps
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)
    logger.setLevel(logging.INFO)
logger.propagate = False # Prevent duplicate logs if root logger is configured

__all__ = ["logger", "configure_logging", "mask_headers"]

_SENSITIVE_HEADERS = ('authorization', 'cookie', 'set-cookie')


def configure_logging(debug: bool):
    """Configures the logger level based on the debug flag."""
    log_level = logging.DEBUG if debug else logging.INFO
    logger.setLevel(log_level)
    for handler in logger.handlers:
        handler.setLevel(log_level)
    logger.debug(f"Sequence runner logging level set to {logging.getLevelName(log_level)}")


def mask_headers(headers):
    """Returns a copy of the headers with credential values masked for logging."""
    return {
        k: ('********' if isinstance(v, str) and v and k.lower() in _SENSITIVE_HEADERS else v)
        for k, v in (headers or {}).items()
    }
