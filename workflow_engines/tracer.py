"""
Trace records for pure engine calls.

``@traced_engine`` logs one ``WORKFLOW_ENGINE_TRACE`` record at DEBUG per
call, naming the engine, its version, how long the call took and a short
fingerprint of the inputs that decide the outcome. Two calls that saw the
same subject, chain and actor produce the same fingerprint, which is how a
surprising transition is matched back to the state it was computed from.

The decorator reads arguments and logs; it never changes what the engine
returns.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import inspect
import logging
import time
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

# Engines log under the kernel namespace without importing kernel services.
_logger = logging.getLogger("workflow_kernel.engines.tracer")

TRACE_MESSAGE = "WORKFLOW_ENGINE_TRACE"


def _canonical(value: Any) -> str:
    """Stable text for ``value``: mapping keys and set members are sorted."""
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return _canonical(value.value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        fields = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
        return f"{type(value).__name__}{_canonical(fields)}"
    if isinstance(value, Mapping):
        body = sorted(f"{k}:{_canonical(v)}" for k, v in value.items())
        return "{" + ",".join(body) + "}"
    if isinstance(value, (set, frozenset)):
        return "{" + ",".join(sorted(_canonical(v) for v in value)) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonical(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: Mapping[str, Any],
) -> str:
    """16 hex chars identifying the named arguments; absent ones count as null."""
    digest = hashlib.blake2b(digest_size=8)
    for name in fingerprint_fields:
        digest.update(f"{name}={_canonical(arguments.get(name))};".encode())
    return digest.hexdigest()


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)
        static = {
            "trace_type": TRACE_MESSAGE,
            "engine_name": engine_name,
            "engine_version": engine_version,
            "function": func.__qualname__,
        }

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.perf_counter()
            result = func(*args, **kwargs)
            elapsed = time.perf_counter() - started

            if _logger.isEnabledFor(logging.DEBUG):
                fingerprint = ""
                if fingerprint_fields:
                    bound = signature.bind_partial(*args, **kwargs)
                    fingerprint = compute_input_fingerprint(
                        fingerprint_fields, bound.arguments
                    )
                _logger.debug(
                    TRACE_MESSAGE,
                    extra={
                        **static,
                        "input_fingerprint": fingerprint,
                        "duration_ms": round(elapsed * 1000, 3),
                    },
                )
            return result

        return wrapper

    return decorator
