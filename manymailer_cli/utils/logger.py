import json
import logging
import os
import sys
from enum import Enum

# Define the parent logger name for the whole package
PARENT_LOGGER = "manymailer_cli"


class LogFormat(str, Enum):
    text = "text"
    json = "json"


# --- Formatters ---
class JSONFormatter(logging.Formatter):
    """Outputs logs as JSON for CloudWatch/Lambda."""

    def format(self, record):
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "location": f"{record.pathname}:{record.lineno}",
            "service": os.environ.get("SERVICE_NAME", "many-mailer"),
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_record)


class HumanReadableFormatter(logging.Formatter):
    """Outputs logs as clean text for CLI users."""

    def format(self, record):
        return f"[{record.levelname}] {record.getMessage()}"


# --- Internal Helper ---
def _configure_handler(logger_instance, fmt_type):
    """Clears existing handlers and adds the correct one."""
    if logger_instance.handlers:
        for h in logger_instance.handlers[:]:
            logger_instance.removeHandler(h)

    # stderr keeps report rows on stdout clean for piping
    handler = logging.StreamHandler(sys.stderr)
    if fmt_type == LogFormat.text.value:
        handler.setFormatter(HumanReadableFormatter())
    else:
        handler.setFormatter(JSONFormatter())

    logger_instance.addHandler(handler)
    logger_instance.propagate = False


# --- Public API ---
def get_logger(name: str):
    """
    Returns a logger for the specific module.
    Ensures the PARENT logger is configured once.
    """
    logger = logging.getLogger(name)

    parent_logger = logging.getLogger(PARENT_LOGGER)
    if not parent_logger.handlers:
        # Lambda runtime gets JSON unless told otherwise
        default_fmt = os.environ.get("LOG_FORMAT", LogFormat.json.value).lower()
        _configure_handler(parent_logger, default_fmt)
        parent_logger.setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())

    return logger


def set_log_format(fmt_type: str):
    """
    Reconfigures ONLY the parent logger.
    Child loggers will naturally bubble up to this one.
    """
    fmt_type = fmt_type.lower()
    os.environ["LOG_FORMAT"] = fmt_type

    parent_logger = logging.getLogger(PARENT_LOGGER)
    _configure_handler(parent_logger, fmt_type)
    parent_logger.setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())


def set_debug():
    """Drops the package logger to DEBUG for the current run."""
    logging.getLogger(PARENT_LOGGER).setLevel(logging.DEBUG)


# --- Output Helpers ---
def print_lines(lines):
    for line in lines:
        print(line)


def print_raw_json(data):
    """Passthrough printer used by --json."""
    print(json.dumps(data, indent=2, default=str))
