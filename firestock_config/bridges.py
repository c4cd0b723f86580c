"""
Config -> Kernel bridge.

Converts a parsed ``CheckPolicyConfig`` into the kernel's ``CheckPolicy``.
This lives in firestock_config (the producer) because the kernel must
never import firestock_config.
"""

from __future__ import annotations

from datetime import timedelta

from firestock_config.schema import CheckPolicyConfig
from firestock_kernel.domain.policy import CheckPolicy


def build_check_policy(config: CheckPolicyConfig) -> CheckPolicy:
    timing = config.check_timing
    return CheckPolicy(
        max_check_duration=timedelta(minutes=timing.max_check_duration_minutes),
        resume_window=timedelta(minutes=timing.resume_window_minutes),
        sweep_interval=timedelta(seconds=timing.sweep_interval_seconds),
        quantity_discrepancy_threshold=config.verification.quantity_discrepancy_threshold,
    )
