"""
fees_config -- single public entrypoint for fees engine configuration.

Responsibility:
    ``get_active_config()`` is the only way to obtain configuration at
    runtime.  It reads one YAML file (the packaged
    ``fees_config/sets/default.yaml`` unless a path is given), validates it
    and returns a frozen ``FeesConfiguration``.

Architecture position:
    Configuration.  Sits above ``fees_kernel`` and below ``fees_services``
    / ``fees_ingestion``.  The kernel MUST NEVER import from
    ``fees_config``; ``fees_config.bridges`` translates configuration into
    kernel value objects.

Failure modes:
    - ``FileNotFoundError`` -- the given path does not exist.
    - ``ConfigurationError`` -- malformed YAML, unknown sections, missing
      required keys or malformed values.

Audit relevance:
    Every successful call emits a ``FEES_CONFIG_TRACE`` log entry with the
    source path and the document checksum.
"""

from __future__ import annotations

import logging
from pathlib import Path

from fees_config.loader import load_yaml_file, parse_configuration
from fees_config.schema import FeesConfiguration

_logger = logging.getLogger("fees_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | str | None = None) -> FeesConfiguration:
    """Load, validate and trace the active configuration."""
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    config = parse_configuration(load_yaml_file(path), source=str(path))

    _logger.info(
        "FEES_CONFIG_TRACE",
        extra={
            "trace_type": "FEES_CONFIG_TRACE",
            "source": config.source,
            "checksum": config.checksum,
            "school": config.school.name,
            "currency": config.school.currency,
            "operator_recipient_count": len(config.notifications.operator_recipients),
        },
    )
    return config


__all__ = ["FeesConfiguration", "get_active_config"]
