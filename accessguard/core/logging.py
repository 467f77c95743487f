from __future__ import annotations

import contextvars
import logging
import re
import sys
from typing_extensions import override


request_id_ctx_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")


class RequestIdFilter(logging.Filter):
    @override
    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.request_id = request_id_ctx_var.get()
        return True


_RE_BEARER = re.compile(
    r"(?i)(authorization\s*[:=]\s*bearer\s+)([\w.~+/=-]+)",
)

# API secrets keep their environment prefix so operators can still tell live from test.
_RE_API_SECRET = re.compile(r"\b(iso_(?:live|test)_sk_)([A-Za-z0-9]+)")

_RE_KV_API_KEY = re.compile(
    r"(?i)\b(x-api-key|api_key)\b(\s*[:=]\s*)(['\"]?)([^'\"\s,;]+)\3",
)
_RE_JSON_SECRET = re.compile(r'("secret"\s*:\s*")([^"]+)(")', re.IGNORECASE)
_RE_PY_SECRET = re.compile(r"('secret'\s*:\s*')([^']+)(')", re.IGNORECASE)


def _redact_value(raw: str) -> str:
    return f"[REDACTED len={len(raw)}]"


class RedactingFormatter(logging.Formatter):
    @override
    def format(self, record: logging.LogRecord) -> str:
        out = super().format(record)

        out = _RE_BEARER.sub(r"\1[REDACTED]", out)
        out = _RE_KV_API_KEY.sub(
            lambda m: f"{m.group(1)}{m.group(2)}{m.group(3)}[REDACTED]{m.group(3)}", out
        )
        out = _RE_API_SECRET.sub(lambda m: f"{m.group(1)}{_redact_value(m.group(2))}", out)
        out = _RE_JSON_SECRET.sub(
            lambda m: f"{m.group(1)}{_redact_value(m.group(2))}{m.group(3)}", out
        )
        out = _RE_PY_SECRET.sub(
            lambda m: f"{m.group(1)}{_redact_value(m.group(2))}{m.group(3)}", out
        )

        return out


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(
        RedactingFormatter(
            fmt="%(asctime)s %(levelname)s [%(name)s] [rid=%(request_id)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    # Avoid duplicate handlers when app reloads in dev.
    root.handlers = [handler]
