# ticketpass/core/logging.py
"""Configuración de logging a stdout con filtro de secretos.

Ningún registro debe contener material de la credencial: el filtro limpia
bloques PEM de clave privada, valores ``private_key`` y tokens bearer antes de
formatear.
"""
from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any

_PEM_BLOCK = re.compile(
    r"-----BEGIN [A-Z ]*PRIVATE KEY-----.*?-----END [A-Z ]*PRIVATE KEY-----", re.DOTALL
)
_PRIVATE_KEY_FIELD = re.compile(r"""(["']?private_key["']?\s*[:=]\s*)(["']).*?\2""", re.DOTALL)
_BEARER = re.compile(r"(Bearer\s+)[A-Za-z0-9._\-~+/]+=*")

REDACTED = "[REDACTED]"


def redact(text: str) -> str:
    text = _PEM_BLOCK.sub(REDACTED, text)
    text = _PRIVATE_KEY_FIELD.sub(lambda m: f"{m.group(1)}{m.group(2)}{REDACTED}{m.group(2)}", text)
    return _BEARER.sub(lambda m: f"{m.group(1)}{REDACTED}", text)


class RedactSecretsFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = redact(self.formatException(record.exc_info))
        return json.dumps(payload, default=str, separators=(",", ":"))


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Un único handler stdout en el root logger; idempotente."""
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level.upper())

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level.upper())
    handler.addFilter(RedactSecretsFilter())
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(name)s] %(levelname)s: %(message)s",
                "%Y-%m-%d %H:%M:%S %z",
            )
        )
    root.addHandler(handler)
