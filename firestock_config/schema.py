"""
Check policy configuration schema.

Defines the human-authored, reviewable source artifact for shift check
tuning.  YAML files are parsed into these types by the loader and bridged
into the kernel's ``CheckPolicy`` by ``bridges.build_check_policy``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CheckTimingDef:
    """When checks go stale and how long an abandoned check stays resumable."""

    max_check_duration_minutes: int = 240
    resume_window_minutes: int = 30
    sweep_interval_seconds: int = 300


@dataclass(frozen=True)
class VerificationRulesDef:
    quantity_discrepancy_threshold: Decimal = Decimal("0.20")


@dataclass(frozen=True)
class LoggingDef:
    level: str = "INFO"


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CheckPolicyConfig:
    """Complete shift check configuration as loaded from YAML."""

    config_id: str
    version: int
    check_timing: CheckTimingDef
    verification: VerificationRulesDef
    logging: LoggingDef
    checksum: str = ""
