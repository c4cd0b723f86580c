"""
Tests for check policy configuration: YAML loading, validation and the
bridge into the kernel's CheckPolicy.
"""

import logging
from datetime import timedelta
from decimal import Decimal

import pytest
import yaml

from firestock_config import (
    DEFAULT_CONFIG_PATH,
    build_check_policy,
    get_check_policy,
    get_check_policy_config,
)
from firestock_config.loader import (
    compute_checksum,
    log_level_number,
    parse_check_policy_config,
    parse_check_timing,
    parse_verification_rules,
)


def _valid_data(**overrides) -> dict:
    data = {
        "config_id": "station-7",
        "version": 2,
        "check_timing": {
            "max_check_duration_minutes": 120,
            "resume_window_minutes": 15,
            "sweep_interval_seconds": 60,
        },
        "verification": {"quantity_discrepancy_threshold": "0.10"},
        "logging": {"level": "debug"},
    }
    data.update(overrides)
    return data


class TestDefaults:

    def test_default_file_is_packaged(self):
        assert DEFAULT_CONFIG_PATH.exists()

    def test_default_policy_matches_kernel_defaults(self):
        policy = get_check_policy()
        assert policy.max_check_duration == timedelta(hours=4)
        assert policy.resume_window == timedelta(minutes=30)
        assert policy.sweep_interval == timedelta(minutes=5)
        assert policy.quantity_discrepancy_threshold == Decimal("0.20")

    def test_load_emits_config_trace(self, captured_logs):
        config = get_check_policy_config()
        traces = [r for r in captured_logs() if r["message"] == "FIRESTOCK_CONFIG_TRACE"]
        assert len(traces) == 1
        assert traces[0]["config_id"] == "firestock-default"
        assert traces[0]["checksum"] == config.checksum


class TestParsing:

    def test_full_document(self):
        config = parse_check_policy_config(_valid_data())
        assert config.config_id == "station-7"
        assert config.version == 2
        assert config.check_timing.resume_window_minutes == 15
        assert config.verification.quantity_discrepancy_threshold == Decimal("0.10")
        assert config.logging.level == "DEBUG"
        assert log_level_number(config) == logging.DEBUG

    def test_bridge_builds_kernel_policy(self):
        policy = build_check_policy(parse_check_policy_config(_valid_data()))
        assert policy.max_check_duration == timedelta(minutes=120)
        assert policy.resume_window == timedelta(minutes=15)
        assert policy.sweep_interval == timedelta(seconds=60)
        assert policy.quantity_discrepancy_threshold == Decimal("0.10")

    def test_logging_section_optional(self):
        data = _valid_data()
        del data["logging"]
        assert parse_check_policy_config(data).logging.level == "INFO"

    @pytest.mark.parametrize("missing", ["config_id", "check_timing", "verification"])
    def test_required_keys(self, missing):
        data = _valid_data()
        del data[missing]
        with pytest.raises(KeyError):
            parse_check_policy_config(data)

    def test_checksum_is_deterministic(self):
        a = compute_checksum(_valid_data())
        b = compute_checksum(dict(reversed(list(_valid_data().items()))))
        assert a == b
        assert a != compute_checksum(_valid_data(version=3))


class TestValidation:

    @pytest.mark.parametrize("value", [0, -5, "30", True, 1.5])
    def test_resume_window_must_be_positive_int(self, value):
        with pytest.raises(ValueError, match="resume_window_minutes"):
            parse_check_timing({"resume_window_minutes": value})

    def test_sweep_interval_must_be_shorter_than_duration(self):
        with pytest.raises(ValueError, match="sweep_interval_seconds"):
            parse_check_timing(
                {"max_check_duration_minutes": 10, "sweep_interval_seconds": 600}
            )

    @pytest.mark.parametrize("value", ["-0.1", "1.5", "abc"])
    def test_threshold_range(self, value):
        with pytest.raises(ValueError):
            parse_verification_rules({"quantity_discrepancy_threshold": value})

    def test_unknown_log_level(self):
        with pytest.raises(ValueError, match="logging.level"):
            parse_check_policy_config(_valid_data(logging={"level": "LOUD"}))


class TestLoadFromFile:

    def test_round_trip_through_yaml(self, tmp_path):
        path = tmp_path / "check_policy.yaml"
        path.write_text(yaml.safe_dump(_valid_data()))
        policy = get_check_policy(path)
        assert policy.resume_window == timedelta(minutes=15)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_check_policy(tmp_path / "nope.yaml")
