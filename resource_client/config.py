"""
Normalized config access for resources, plus the logging bootstrap.
Config is a plain dict (e.g. loaded from YAML); the "resource" section holds the
timeout and retry settings, with environment overrides for the common knobs.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Callable

import yaml

from resource_client.resource import DEFAULT_TIMEOUT_SEC, Resource, ResourceConfig
from resource_client.retry import (
    DEFAULT_JITTER,
    DEFAULT_MAX_TRIES,
    DEFAULT_RETRYABLE_CODES,
    ExponentialRetryPolicy,
)
from resource_client.serializers import JsonSerializer, Serializer
from resource_client.transport import RequestsTransport, Transport

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

RESOURCE_DEFAULTS: dict[str, Any] = {
    "timeout_sec": DEFAULT_TIMEOUT_SEC,
    "max_tries": DEFAULT_MAX_TRIES,
    "retryable_codes": list(DEFAULT_RETRYABLE_CODES),
    "jitter": DEFAULT_JITTER,
    "log_level": "INFO",
}


def get_section(
    raw_config: dict,
    section: str,
    defaults: dict[str, Any],
    validators: dict[str, Callable[[Any], Any]] | None = None,
) -> dict[str, Any]:
    """
    Return a normalized config section by merging raw section with defaults and applying validators.

    Args:
        raw_config: Full config dict.
        section: Top-level key (e.g. "resource").
        defaults: Default values for the section; unknown keys in the raw section are dropped.
        validators: Optional dict mapping section key -> callable(value) -> value.
                    A validator raising TypeError/ValueError restores the default.

    Returns:
        New dict with all keys from defaults, overridden by raw section, then validated.
    """
    validators = validators or {}
    raw_section = dict(raw_config.get(section) or {})
    out = dict(defaults)
    for k, v in raw_section.items():
        if k in defaults:
            out[k] = v
    for k, validator in validators.items():
        if k in out:
            try:
                out[k] = validator(out[k])
            except (TypeError, ValueError):
                logger.debug("Invalid %s.%s=%r, using default", section, k, out[k])
                out[k] = validator(defaults[k])
    return out


def _timeout(value: Any) -> float:
    return max(0.0, float(value))


def _max_tries(value: Any) -> int:
    return max(1, min(10, int(value)))


def _retryable_codes(value: Any) -> list[int]:
    if isinstance(value, (str, bytes)):
        value = str(value).split(",")
    codes = [int(code) for code in value]
    if not codes:
        raise ValueError("retryable_codes cannot be empty")
    return codes


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _log_level(value: Any) -> str:
    level = str(value).strip().upper()
    if not isinstance(getattr(logging, level, None), int):
        raise ValueError(f"Unknown log level: {value}")
    return level


def get_resource_section(raw_config: dict) -> dict[str, Any]:
    """
    Return normalized resource config from full raw config.
    RESOURCE_CLIENT_TIMEOUT_SEC and RESOURCE_CLIENT_MAX_TRIES override the file values.
    """
    raw = dict(raw_config)
    section = dict(raw.get("resource") or {})
    timeout_env = os.environ.get("RESOURCE_CLIENT_TIMEOUT_SEC")
    if timeout_env:
        section["timeout_sec"] = timeout_env
    tries_env = os.environ.get("RESOURCE_CLIENT_MAX_TRIES")
    if tries_env:
        section["max_tries"] = tries_env
    raw["resource"] = section
    return get_section(
        raw,
        "resource",
        RESOURCE_DEFAULTS,
        validators={
            "timeout_sec": _timeout,
            "max_tries": _max_tries,
            "retryable_codes": _retryable_codes,
            "jitter": _flag,
            "log_level": _log_level,
        },
    )


def load_yaml_file(path: str | Path) -> dict[str, Any]:
    """Load a YAML mapping from path. Returns {} if the file is missing, invalid, or not a mapping."""
    path = Path(path)
    if not path.is_file():
        return {}
    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Could not load config %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def build_resource(
    endpoint: str | None,
    raw_config: dict | None = None,
    transport: Transport | None = None,
    serializer: Serializer | None = None,
) -> Resource:
    """
    Build a resource for endpoint using the "resource" config section.

    Raises:
        ConfigurationError: If endpoint is missing
    """
    section = get_resource_section(raw_config or {})
    policy = ExponentialRetryPolicy(
        max_tries=section["max_tries"],
        retryable_codes=section["retryable_codes"],
        jitter=section["jitter"],
    )
    return Resource.from_config(
        ResourceConfig(
            endpoint=endpoint,
            transport=transport if transport is not None else RequestsTransport(),
            serializer=serializer if serializer is not None else JsonSerializer(),
            retry_policy=policy,
            timeout_sec=section["timeout_sec"],
        )
    )


def configure_logging(level: str = "INFO", log_path: str | Path | None = None) -> None:
    """Set up root logging with the standard format, plus an optional UTF-8 log file."""
    numeric = getattr(logging, str(level).upper(), logging.INFO)
    logging.basicConfig(level=numeric, format=LOG_FORMAT)
    if log_path:
        path = Path(log_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(path, encoding="utf-8")
        fh.setLevel(numeric)
        fh.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(fh)
    logger.debug("Logging configured at %s", logging.getLevelName(numeric))


def configure_logging_from_config(
    raw_config: dict | None, log_path: str | Path | None = None
) -> str:
    """
    Set up logging at the "resource" section's log_level.

    Returns:
        The level that was applied
    """
    level = get_resource_section(raw_config or {})["log_level"]
    configure_logging(level, log_path)
    return level
