"""
YAML loader for the fees configuration.

* ``load_yaml_file`` reads one file with ``yaml.safe_load``.
* ``parse_configuration`` turns the document into a ``FeesConfiguration``.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  document for the FEES_CONFIG_TRACE audit record.

Failure modes:
    Every structural problem (unknown section, missing required key,
    malformed value) raises ``ConfigurationError`` naming the file and the
    offending key.  Malformed YAML is re-raised as ``ConfigurationError``
    too, chained to the ``yaml.YAMLError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from fees_config.schema import (
    ConcurrencyConfig,
    DatabaseConfig,
    FeesConfiguration,
    MpesaConfig,
    NotificationsConfig,
    SchoolConfig,
)
from fees_kernel.exceptions import ConfigurationError

KNOWN_SECTIONS = frozenset({"school", "mpesa", "concurrency", "notifications", "database"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        ConfigurationError: invalid YAML or a top level that is not a mapping.
    """
    with open(path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(str(path), f"invalid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top level must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _section(data: dict[str, Any], name: str, source: str, required: bool) -> dict[str, Any]:
    value = data.get(name)
    if value is None:
        if required:
            raise ConfigurationError(source, f"missing required section '{name}'")
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(source, f"section '{name}' must be a mapping")
    return value


def _require(section: dict[str, Any], key: str, source: str, prefix: str) -> Any:
    value = section.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ConfigurationError(source, f"missing required key '{prefix}.{key}'")
    return value


def _decimal(value: Any, key: str, source: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except InvalidOperation as exc:
        raise ConfigurationError(source, f"'{key}' is not a number: {value!r}") from exc
    if not result.is_finite() or result < 0:
        raise ConfigurationError(source, f"'{key}' must be a non-negative number")
    return result


def _positive_number(value: Any, key: str, source: str, kind: type) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(source, f"'{key}' must be a number, got {value!r}")
    if kind is int and not isinstance(value, int):
        raise ConfigurationError(source, f"'{key}' must be an integer, got {value!r}")
    if value < 0:
        raise ConfigurationError(source, f"'{key}' must not be negative")
    return kind(value)


def _bool(value: Any, key: str, source: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigurationError(source, f"'{key}' must be true or false, got {value!r}")
    return value


def parse_school(data: dict[str, Any], source: str) -> SchoolConfig:
    section = _section(data, "school", source, required=True)
    currency = str(section.get("currency", "KES")).strip().upper()
    if len(currency) != 3:
        raise ConfigurationError(source, "'school.currency' must be a 3-letter code")
    return SchoolConfig(name=str(_require(section, "name", source, "school")), currency=currency)


def parse_mpesa(data: dict[str, Any], source: str) -> MpesaConfig:
    section = _section(data, "mpesa", source, required=True)
    return MpesaConfig(
        business_short_code=str(_require(section, "business_short_code", source, "mpesa")),
        minimum_amount=_decimal(
            section.get("minimum_amount", "1"), "mpesa.minimum_amount", source
        ),
    )


def parse_concurrency(data: dict[str, Any], source: str) -> ConcurrencyConfig:
    section = _section(data, "concurrency", source, required=False)
    defaults = ConcurrencyConfig()
    timeout = _positive_number(
        section.get("student_lock_timeout_seconds", defaults.student_lock_timeout_seconds),
        "concurrency.student_lock_timeout_seconds",
        source,
        float,
    )
    if timeout == 0:
        raise ConfigurationError(
            source, "'concurrency.student_lock_timeout_seconds' must be positive"
        )
    return ConcurrencyConfig(
        student_lock_timeout_seconds=timeout,
        max_conflict_retries=_positive_number(
            section.get("max_conflict_retries", defaults.max_conflict_retries),
            "concurrency.max_conflict_retries",
            source,
            int,
        ),
    )


def parse_notifications(data: dict[str, Any], source: str) -> NotificationsConfig:
    section = _section(data, "notifications", source, required=False)
    defaults = NotificationsConfig()

    recipients = section.get("operator_recipients") or []
    if not isinstance(recipients, list):
        raise ConfigurationError(source, "'notifications.operator_recipients' must be a list")

    batch_size = _positive_number(
        section.get("dispatch_batch_size", defaults.dispatch_batch_size),
        "notifications.dispatch_batch_size",
        source,
        int,
    )
    if batch_size == 0:
        raise ConfigurationError(source, "'notifications.dispatch_batch_size' must be positive")

    return NotificationsConfig(
        operator_recipients=tuple(str(r) for r in recipients),
        notify_operator_on_payment=_bool(
            section.get("notify_operator_on_payment", defaults.notify_operator_on_payment),
            "notifications.notify_operator_on_payment",
            source,
        ),
        dispatch_batch_size=batch_size,
    )


def parse_database(data: dict[str, Any], source: str) -> DatabaseConfig:
    section = _section(data, "database", source, required=False)
    url = section.get("url")
    return DatabaseConfig(url=str(url) if url else None)


def parse_configuration(data: dict[str, Any], source: str = "<memory>") -> FeesConfiguration:
    unknown = sorted(set(data) - KNOWN_SECTIONS)
    if unknown:
        raise ConfigurationError(source, f"unknown section(s): {', '.join(unknown)}")

    return FeesConfiguration(
        school=parse_school(data, source),
        mpesa=parse_mpesa(data, source),
        concurrency=parse_concurrency(data, source),
        notifications=parse_notifications(data, source),
        database=parse_database(data, source),
        checksum=compute_checksum(data),
        source=source,
    )
