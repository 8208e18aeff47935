import logging
import os
import sys
from typing import Optional

from .config import Config


LOGGER_NAME = "marginalia.autonomy"
LOG_FORMAT = "%(asctime)sZ %(levelname)s %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

_RESET = "\033[0m"
_BOLD = "\033[1m"
_DIM = "\033[2m"
_RED = "\033[31m"
_GREEN = "\033[32m"
_YELLOW = "\033[33m"
_MAGENTA = "\033[35m"
_CYAN = "\033[36m"

_LEVEL_COLORS = {
    "DEBUG": _CYAN,
    "INFO": _GREEN,
    "WARNING": _YELLOW,
    "ERROR": _RED,
    "CRITICAL": _RED,
}

# (message fragment, tag, style); first match wins.
_PHASE_TAGS = (
    ("LLM request", "[LLM REQUEST]", _BOLD + _CYAN),
    ("LLM response", "[LLM RESPONSE]", _BOLD + _MAGENTA),
    ("cycle start", "[CYCLE]", _BOLD + _CYAN),
    ("cycle success", "[SUCCESS]", _BOLD + _GREEN),
    ("cycle skipped", "[SKIPPED]", _BOLD + _YELLOW),
    ("cycle failed", "[FAILED]", _BOLD + _RED),
)

_QUIET_FRAGMENTS = ("Sleeping seconds=", "Poll cycle=")


def _stream_supports_color() -> bool:
    if os.getenv("NO_COLOR"):
        return False
    force = os.getenv("FORCE_COLOR", "").strip().lower()
    if force in {"1", "true", "yes"}:
        return True
    return bool(sys.stderr.isatty())


def phase_tag(message: str) -> Optional[tuple]:
    for fragment, tag, style in _PHASE_TAGS:
        if fragment in message:
            return tag, style
    return None


class ColorFormatter(logging.Formatter):
    """Colours records by level and tags scheduler cycle phases."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = _LEVEL_COLORS.get(record.levelname.upper())
        if not color:
            return message

        tagged = phase_tag(message)
        if tagged:
            tag, style = tagged
            return f"{style}{tag} {message}{_RESET}"
        if any(fragment in message for fragment in _QUIET_FRAGMENTS):
            return f"{_DIM}{color}{message}{_RESET}"
        return f"{color}{message}{_RESET}"


def setup_logging(cfg: Config) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, cfg.log_level, logging.INFO))
    logger.handlers.clear()
    logger.propagate = False

    plain = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    stream_handler = logging.StreamHandler()
    if _stream_supports_color():
        stream_handler.setFormatter(ColorFormatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    else:
        stream_handler.setFormatter(plain)
    logger.addHandler(stream_handler)

    if cfg.log_path:
        cfg.log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(cfg.log_path, encoding="utf-8")
        file_handler.setFormatter(plain)
        logger.addHandler(file_handler)

    return logger
