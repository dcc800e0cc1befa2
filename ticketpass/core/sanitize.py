import html
import re

_TAGS = re.compile(r"<[^>]*>")
_CONTROL = re.compile(r"[\x00-\x1f\x7f]")
_SPACES = re.compile(r"\s+")
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_ID_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")


def sanitize_string(value: str | None) -> str:
    """Texto plano de una línea: sin etiquetas HTML ni caracteres de control."""
    if not value:
        return ""
    text = _TAGS.sub("", str(value))
    text = html.unescape(text)
    text = _TAGS.sub("", text)
    text = _CONTROL.sub(" ", text)
    return _SPACES.sub(" ", text).strip()


def sanitize_email(value: str | None) -> str:
    """Email normalizado (minúsculas, sin espacios) o "" si no tiene forma de email."""
    text = sanitize_string(value).replace(" ", "").lower()
    return text if _EMAIL.match(text) else ""


def sanitize_identifier(value: str | None) -> str:
    """Segmento apto para ids de clase/objeto del backend ([A-Za-z0-9_.-])."""
    return _ID_UNSAFE.sub("_", sanitize_string(value))
