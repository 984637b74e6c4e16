"""
certnet Observability

Structured logging on top of the standard `logging` module.

    get_logger("runtime", Layer.SIGNER)          logger "certnet.signer.runtime"
        .info("New beacon", beacon=str(b))       keyword args become `context`
        .error("...", error_code="register")     error codes are first-class

Records propagate to the "certnet" logger; `configure_logging` installs one
handler there, either JSON lines (`StructuredHandler`) or single-line text.
Each record carries the correlation id of the current context, which the
signer runtime sets per tick.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import contextvars
import functools
import json
import logging
import sys
import time
import traceback
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, MutableMapping, Optional, Tuple, TypeVar

ROOT_LOGGER_NAME = "certnet"

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "certnet_correlation_id", default=""
)


class LogLevel(Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class Layer(Enum):
    """Component a record comes from."""
    PROOF = "proof"
    SIGNER = "signer"
    CERTIFICATE_HANDLER = "certificate_handler"
    CONFIG = "config"
    CLI = "cli"


# =============================================================================
# RECORD FORMATTING
# =============================================================================

@dataclass
class LogEvent:
    """One JSON log line."""
    timestamp: str
    level: str
    logger: str
    message: str
    correlation_id: str = ""
    layer: str = ""
    operation: str = ""
    duration_ms: Optional[float] = None
    error_code: str = ""
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    @classmethod
    def from_record(cls, record: logging.LogRecord) -> "LogEvent":
        event = cls(
            timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            level=record.levelname.lower(),
            logger=record.name,
            message=record.getMessage(),
            correlation_id=getattr(record, "correlation_id", "") or correlation_id_var.get(),
            layer=getattr(record, "layer", ""),
            operation=getattr(record, "operation", ""),
            duration_ms=getattr(record, "duration_ms", None),
            error_code=getattr(record, "error_code", ""),
            context=dict(getattr(record, "context", None) or {}),
        )
        if record.exc_info:
            event.exception = "".join(traceback.format_exception(*record.exc_info))
        return event

    def to_dict(self) -> Dict[str, Any]:
        """Fields with a value; empty strings, None and {} are dropped."""
        return {k: v for k, v in asdict(self).items() if v not in (None, "", {})}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return LogEvent.from_record(record).to_json()


class StructuredHandler(logging.StreamHandler):
    """Stream handler writing one JSON object per line."""

    def __init__(self, stream: Any = None):
        super().__init__(stream or sys.stderr)
        self.setFormatter(JsonFormatter())


class TextFormatter(logging.Formatter):
    """`<asctime> <LEVEL> <logger> <message> k=v ...`"""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)s %(name)s %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = getattr(record, "context", None) or {}
        if context:
            line += " " + " ".join(f"{k}={v}" for k, v in context.items())
        return line


def configure_logging(level: str = "info", fmt: str = "json", stream: Any = None) -> logging.Logger:
    """Install the single output handler of the certnet logger tree."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(LogLevel(level.lower()).value.upper())
    for handler in list(root.handlers):
        root.removeHandler(handler)

    if fmt == "json":
        handler: logging.Handler = StructuredHandler(stream)
    else:
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(TextFormatter())
    root.addHandler(handler)
    return root


# =============================================================================
# LOGGER
# =============================================================================

class CertnetLogger(logging.LoggerAdapter):
    """
    Adapter tagging records with a layer, an optional error code and keyword
    context. Extra keywords are never interpreted by `logging` itself.
    """

    def __init__(self, name: str, layer: Layer):
        super().__init__(logging.getLogger(f"{ROOT_LOGGER_NAME}.{layer.value}.{name}"), {})
        self.layer = layer

    @property
    def std_logger(self) -> logging.Logger:
        return self.logger

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = kwargs.pop("extra", None) or {}
        extra.setdefault("layer", self.layer.value)
        extra.setdefault("correlation_id", correlation_id_var.get())
        kwargs["extra"] = extra
        return msg, kwargs

    def _emit(
        self,
        level: int,
        message: str,
        *,
        operation: str = "",
        error_code: str = "",
        duration_ms: Optional[float] = None,
        exc_info: bool = False,
        context: Dict[str, Any],
    ) -> None:
        if not self.isEnabledFor(level):
            return
        self.log(
            level,
            message,
            exc_info=exc_info,
            extra={
                "operation": operation,
                "error_code": error_code,
                "duration_ms": duration_ms,
                "context": context,
            },
        )

    def debug(self, message: str, **context: Any) -> None:
        self._emit(logging.DEBUG, message, context=context)

    def info(self, message: str, **context: Any) -> None:
        self._emit(logging.INFO, message, context=context)

    def warning(self, message: str, **context: Any) -> None:
        self._emit(logging.WARNING, message, context=context)

    def error(self, message: str, error_code: str = "", exc_info: bool = False, **context: Any) -> None:
        self._emit(logging.ERROR, message, error_code=error_code, exc_info=exc_info, context=context)

    def operation(self, name: str, duration_ms: float, success: bool = True, **context: Any) -> None:
        """Completion record of a timed operation: debug on success, warning on failure."""
        self._emit(
            logging.DEBUG if success else logging.WARNING,
            f"Operation {name} {'completed' if success else 'failed'}",
            operation=name,
            duration_ms=round(duration_ms, 3),
            context=context,
        )


def get_logger(name: str, layer: Layer) -> CertnetLogger:
    return CertnetLogger(name, layer)


# =============================================================================
# CORRELATION
# =============================================================================

def generate_correlation_id() -> str:
    return f"corr-{uuid.uuid4().hex[:12]}"


def set_correlation_id(correlation_id: str) -> contextvars.Token:
    return correlation_id_var.set(correlation_id)


def reset_correlation_id(token: contextvars.Token) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> str:
    """Correlation id of the current context; one is created when unset."""
    cid = correlation_id_var.get()
    if not cid:
        cid = generate_correlation_id()
        correlation_id_var.set(cid)
    return cid


T = TypeVar("T")


def timed_operation(logger: CertnetLogger, operation_name: str) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Log the wall time of every call of the decorated function."""
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            start = time.monotonic()
            ok = False
            try:
                result = func(*args, **kwargs)
                ok = True
                return result
            finally:
                logger.operation(operation_name, (time.monotonic() - start) * 1000, ok)
        return wrapper
    return decorator
