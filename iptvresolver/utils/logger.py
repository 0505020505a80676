import logging
import re
import sys
from typing import Any, Callable, Dict, Union

from loguru import logger


# ===========================
# Log Contexts
# ===========================
DEFAULT_CONTEXT = "ADDON"

CONTEXT_COLORS = {
    "ADDON": "green",
    "API": "cyan",
    "RESOLVER": "yellow",
    "CATALOG": "blue",
    "EPISODE": "magenta",
    "PROVIDER": "white",
    "CACHE": "white",
    "DATABASE": "yellow",
}


# ===========================
# Credential Redaction
# ===========================
# Provider URLs carry credentials either as query parameters or as path
# segments of stream URLs.
CREDENTIAL_QUERY_PATTERN = re.compile(r"\b(username|user|uname|password|pass|pwd)=([^&\s]+)", re.IGNORECASE)
CREDENTIAL_PATH_PATTERN = re.compile(r"/(live|movie|series)/[^/\s]+/[^/\s]+/")


def redact(text: str) -> str:
    text = CREDENTIAL_QUERY_PATTERN.sub(r"\1=***", text)
    return CREDENTIAL_PATH_PATTERN.sub(r"/\1/***/***/", text)


# ===========================
# Log Formatter
# ===========================
def format_log(record: Dict[str, Any]) -> str:
    context = record["extra"].setdefault("context", DEFAULT_CONTEXT)
    color = CONTEXT_COLORS.get(context, "white")
    record["extra"]["safe_message"] = redact(record["message"])

    return (
        "<white>{time:YYYY-MM-DD}</white> "
        "<magenta>{time:HH:mm:ss}</magenta> | "
        "<level>{level: <8}</level> | "
        f"<{color}>{{extra[context]: <9}}</{color}> | "
        "<level>{extra[safe_message]}</level>\n{exception}"
    )


# ===========================
# Logger Setup Function
# ===========================
def setup_logger(level: str = "INFO", sink: Union[Callable[[str], Any], Any] = sys.stderr,
                 colorize: bool = True):
    logger.remove()
    logger.add(
        sink,
        level=level,
        format=format_log,
        colorize=colorize,
        backtrace=True,
        diagnose=False,
    )


def get_logger(context: str):
    return logger.bind(context=context)


# ===========================
# Logger Instances
# ===========================
addon_logger = get_logger("ADDON")
api_logger = get_logger("API")
resolver_logger = get_logger("RESOLVER")
catalog_logger = get_logger("CATALOG")
episode_logger = get_logger("EPISODE")
provider_logger = get_logger("PROVIDER")
cache_logger = get_logger("CACHE")
database_logger = get_logger("DATABASE")


# ===========================
# External Loggers Suppression
# ===========================
logging.getLogger("uvicorn.access").disabled = True
logging.getLogger("uvicorn.error").setLevel(logging.CRITICAL)
logging.getLogger("fastapi").setLevel(logging.CRITICAL)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("databases").setLevel(logging.WARNING)
