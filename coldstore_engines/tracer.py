"""
Invocation tracing for the pure costing engines.

``@traced_engine`` wraps an engine function and, after each successful call,
emits one ``COLDSTORE_ENGINE_TRACE`` debug record carrying the engine name
and version, a fingerprint of the identifying inputs, an optional summary of
the result and the duration.  Two calls with equal identifying inputs get the
same fingerprint, which lets a reviewer line up a transaction's layer
selection with its balance movement in the log.

Failed calls are not traced here; the caller logs the exception.
"""

from __future__ import annotations

import functools
import hashlib
import logging
import time
from collections.abc import Callable, Mapping
from decimal import Decimal
from typing import Any

from coldstore_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")

TRACE_MESSAGE = "COLDSTORE_ENGINE_TRACE"


def _token(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, Decimal):
        # 10, 10.0 and 10.000 fingerprint alike
        return str(value.normalize())
    if isinstance(value, Mapping):
        return "{" + ",".join(f"{k}:{_token(value[k])}" for k in sorted(value)) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_token(v) for v in value) + "]"
    canonical = getattr(value, "canonical", None)
    if isinstance(canonical, str):
        return canonical
    return str(value)


def input_fingerprint(names: tuple[str, ...], arguments: Mapping[str, Any]) -> str:
    """First 16 hex digits of SHA-256 over ``name=value`` pairs; absent names count as null."""
    joined = "|".join(f"{name}={_token(arguments.get(name))}" for name in names)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
    summarize: Callable[[Any], Mapping[str, Any]] | None = None,
) -> Callable:
    """
    Decorate a keyword-argument engine function with trace logging.

    ``fingerprint_fields`` names the keyword arguments that identify the
    call.  ``summarize`` maps the result to a few extra log fields.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.monotonic()
            result = func(*args, **kwargs)
            elapsed_ms = round((time.monotonic() - started) * 1000, 2)

            if _logger.isEnabledFor(logging.DEBUG):
                extra: dict[str, Any] = {
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": input_fingerprint(fingerprint_fields, kwargs),
                    "duration_ms": elapsed_ms,
                }
                if summarize is not None:
                    extra.update(summarize(result))
                _logger.debug(TRACE_MESSAGE, extra=extra)
            return result

        wrapper.engine_name = engine_name  # type: ignore[attr-defined]
        wrapper.engine_version = engine_version  # type: ignore[attr-defined]
        return wrapper

    return decorator
