"""
fees_engines.tracer -- FEES_ENGINE_TRACE records for pure engine calls.

``@traced_engine`` wraps an engine function and logs one record per call:

    engine_name, engine_version   which calculation ran
    input_fingerprint             16-hex SHA-256 prefix of the selected
                                  keyword inputs, so two runs over the same
                                  obligations and amount can be matched in
                                  the logs without logging the inputs
    outcome                       "ok" or "error" (the exception type)
    duration_ms
    plus whatever ``summarize(result)`` returns (for the waterfall:
    total_applied, leftover, targets_reached)

The wrapped engine stays pure; the decorator only logs.  Exceptions are
logged and re-raised unchanged.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import time
from collections.abc import Callable, Mapping
from decimal import Decimal
from typing import Any

from fees_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")


def _canonicalize(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, Decimal):
        # 500 and 500.00 are the same balance
        return str(value.normalize()) if value.is_finite() else str(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        fields = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
        return _canonicalize(fields)
    if isinstance(value, Mapping):
        return "{" + ",".join(
            f"{k}:{_canonicalize(v)}" for k, v in sorted(value.items())
        ) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: dict[str, Any],
) -> str:
    """Fingerprint of the named keyword inputs; absent ones count as null."""
    canonical = "|".join(
        f"{name}={_canonicalize(kwargs.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
    summarize: Callable[[Any], dict[str, Any]] | None = None,
) -> Callable:
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            record: dict[str, Any] = {
                "trace_type": "FEES_ENGINE_TRACE",
                "engine_name": engine_name,
                "engine_version": engine_version,
                "input_fingerprint": compute_input_fingerprint(fingerprint_fields, kwargs)
                if fingerprint_fields else "",
            }
            started = time.monotonic()
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                record["outcome"] = f"error:{type(exc).__name__}"
                record["duration_ms"] = round((time.monotonic() - started) * 1000, 2)
                _logger.warning("FEES_ENGINE_TRACE", extra=record)
                raise

            record["outcome"] = "ok"
            record["duration_ms"] = round((time.monotonic() - started) * 1000, 2)
            if summarize is not None:
                record.update(summarize(result))
            _logger.info("FEES_ENGINE_TRACE", extra=record)
            return result

        return wrapper

    return decorator
