"""
Configuration Loader (``firestock_config.loader``).

Responsibility
--------------
Loads a check policy YAML file and parses it into the frozen
``firestock_config.schema`` dataclasses.  Runtime callers go through
``firestock_config.get_check_policy()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required sections are never silently defaulted.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  parsed document for change detection in logs.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing section  -> ``KeyError`` propagates.
* Non-positive durations, threshold outside [0, 1], unknown log level
  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import logging
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from firestock_config.schema import (
    CheckPolicyConfig,
    CheckTimingDef,
    LoggingDef,
    VerificationRulesDef,
)

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 over the canonical JSON form of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _positive_int(section: str, data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{section}.{key} must be a positive integer, got {value!r}")
    return value


def parse_check_timing(data: dict[str, Any]) -> CheckTimingDef:
    timing = CheckTimingDef(
        max_check_duration_minutes=_positive_int(
            "check_timing", data, "max_check_duration_minutes", 240
        ),
        resume_window_minutes=_positive_int(
            "check_timing", data, "resume_window_minutes", 30
        ),
        sweep_interval_seconds=_positive_int(
            "check_timing", data, "sweep_interval_seconds", 300
        ),
    )
    if timing.sweep_interval_seconds >= timing.max_check_duration_minutes * 60:
        raise ValueError(
            "check_timing.sweep_interval_seconds must be shorter than "
            "max_check_duration_minutes"
        )
    return timing


def parse_verification_rules(data: dict[str, Any]) -> VerificationRulesDef:
    raw = data.get("quantity_discrepancy_threshold", "0.20")
    try:
        threshold = Decimal(str(raw))
    except InvalidOperation:
        raise ValueError(
            f"verification.quantity_discrepancy_threshold is not a number: {raw!r}"
        ) from None
    if not (Decimal("0") <= threshold <= Decimal("1")):
        raise ValueError(
            f"verification.quantity_discrepancy_threshold must be in [0, 1], got {threshold}"
        )
    return VerificationRulesDef(quantity_discrepancy_threshold=threshold)


def parse_logging(data: dict[str, Any]) -> LoggingDef:
    level = str(data.get("level", "INFO")).upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"logging.level must be one of {sorted(_LOG_LEVELS)}, got {level!r}")
    return LoggingDef(level=level)


def parse_check_policy_config(data: dict[str, Any]) -> CheckPolicyConfig:
    """
    Parse a ``CheckPolicyConfig`` from a dict.

    Preconditions:
        - ``data`` contains ``config_id`` and the ``check_timing`` and
          ``verification`` sections.  ``logging`` is optional.
    Raises:
        KeyError: if required keys are missing.
        ValueError: if a value is out of range.
    """
    return CheckPolicyConfig(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        check_timing=parse_check_timing(data["check_timing"] or {}),
        verification=parse_verification_rules(data["verification"] or {}),
        logging=parse_logging(data.get("logging") or {}),
        checksum=compute_checksum(data),
    )


def load_check_policy_config(path: Path) -> CheckPolicyConfig:
    return parse_check_policy_config(load_yaml_file(path))


def log_level_number(config: CheckPolicyConfig) -> int:
    return logging.getLevelName(config.logging.level)
