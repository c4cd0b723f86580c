"""
firestock_config -- single public entrypoint for shift check configuration.

Responsibility:
    Provides the way to obtain the check policy at runtime through
    ``get_check_policy()``.  The YAML file is parsed into frozen schema
    dataclasses and bridged into the kernel's ``CheckPolicy``.

Architecture position:
    Configuration -- sits above ``firestock_kernel`` and below
    ``firestock_services``.  The kernel MUST NEVER import from
    ``firestock_config``.

Failure modes:
    - ``FileNotFoundError`` -- the requested config file does not exist.
    - ``KeyError`` / ``ValueError`` -- missing sections or invalid values.

Every successful load emits a ``FIRESTOCK_CONFIG_TRACE`` log entry with
the config_id, version and checksum.
"""

from __future__ import annotations

import logging
from pathlib import Path

from firestock_config.bridges import build_check_policy
from firestock_config.loader import load_check_policy_config, log_level_number
from firestock_config.schema import CheckPolicyConfig
from firestock_kernel.domain.policy import CheckPolicy
from firestock_kernel.logging_config import configure_logging

_logger = logging.getLogger("firestock_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_check_policy_config(config_path: Path | str | None = None) -> CheckPolicyConfig:
    """Load and validate the check policy configuration file."""
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    config = load_check_policy_config(path)
    _logger.info(
        "FIRESTOCK_CONFIG_TRACE",
        extra={
            "trace_type": "FIRESTOCK_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "config_path": str(path),
        },
    )
    return config


def get_check_policy(config_path: Path | str | None = None) -> CheckPolicy:
    """
    The public configuration entrypoint.

    Args:
        config_path: YAML file to load.  Defaults to the packaged
            ``defaults.yaml``.

    Returns:
        The kernel ``CheckPolicy``.
    """
    return build_check_policy(get_check_policy_config(config_path))


def configure_check_logging(config: CheckPolicyConfig) -> None:
    """Configure kernel logging at the level named in the config (idempotent)."""
    configure_logging(level=log_level_number(config))


__all__ = [
    "CheckPolicyConfig",
    "DEFAULT_CONFIG_PATH",
    "build_check_policy",
    "configure_check_logging",
    "get_check_policy",
    "get_check_policy_config",
]
