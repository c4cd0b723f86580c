"""
Tests for AutoAbandonSweeper: stale detection, per-check isolation and the
background thread lifecycle.
"""

import time
from datetime import timedelta

import pytest

from firestock_kernel.domain.events import CheckAbandonedEvent
from firestock_kernel.domain.policy import CheckPolicy
from firestock_kernel.domain.values import AbandonReason, CheckStatus
from firestock_services.auto_abandon_sweeper import AutoAbandonSweeper


class TestTick:

    def test_fresh_check_left_alone(self, orchestrator, sweeper, apparatus, user_id, deterministic_clock):
        check = orchestrator.start_check(apparatus.id, user_id).check
        deterministic_clock.advance(timedelta(hours=4))

        assert sweeper.tick() == 0
        assert orchestrator.get_check(check.id).status == CheckStatus.IN_PROGRESS

    def test_stale_check_abandoned(
        self, orchestrator, sweeper, apparatus, user_id, deterministic_clock, broadcaster, events
    ):
        check = orchestrator.start_check(apparatus.id, user_id).check
        orchestrator.start_checking_compartment(
            apparatus.id, apparatus.compartments[0].id, user_id, "FF Rivera"
        )
        deterministic_clock.advance(timedelta(hours=4, seconds=1))

        assert sweeper.tick() == 1
        broadcaster.drain()

        swept = orchestrator.get_check(check.id)
        assert swept.status == CheckStatus.ABANDONED
        assert swept.abandon_reason == AbandonReason.AUTO_TIMEOUT
        assert swept.abandoned_at == deterministic_clock.now()
        assert orchestrator.lock_manager.locks_for_apparatus(apparatus.id) == {}
        [event] = events.of_type(CheckAbandonedEvent)
        assert event.reason == "AUTO_TIMEOUT"

    def test_activity_postpones_timeout(self, orchestrator, sweeper, apparatus, user_id, deterministic_clock):
        check = orchestrator.start_check(apparatus.id, user_id).check
        deterministic_clock.advance(timedelta(hours=3))
        compartment = apparatus.compartments[0]
        orchestrator.verify_item(
            check.id, compartment.id, "PRESENT", user_id, target=compartment.items[0].target
        )
        deterministic_clock.advance(timedelta(hours=2))

        assert sweeper.tick() == 0

        deterministic_clock.advance(timedelta(hours=2, seconds=1))
        assert sweeper.tick() == 1

    def test_terminal_checks_ignored(self, orchestrator, sweeper, apparatus, empty_apparatus, user_id, deterministic_clock):
        done = orchestrator.start_check(apparatus.id, user_id).check
        orchestrator.complete_check(done.id, user_id)
        dropped = orchestrator.start_check(empty_apparatus.id, user_id).check
        orchestrator.abandon_check(dropped.id, user_id)
        deterministic_clock.advance(timedelta(days=1))

        assert sweeper.tick() == 0
        assert orchestrator.get_check(done.id).status == CheckStatus.COMPLETED
        assert orchestrator.get_check(dropped.id).abandon_reason == AbandonReason.USER_ABANDONED

    def test_sweeps_every_stale_check(self, orchestrator, sweeper, apparatus, empty_apparatus, user_id, deterministic_clock):
        orchestrator.start_check(apparatus.id, user_id)
        orchestrator.start_check(empty_apparatus.id, user_id)
        deterministic_clock.advance(timedelta(hours=5))
        assert sweeper.tick() == 2
        assert sweeper.tick() == 0

    def test_failure_on_one_check_does_not_stop_others(
        self, orchestrator, session_factory, deterministic_clock, policy,
        apparatus, empty_apparatus, user_id, captured_logs,
    ):
        first = orchestrator.start_check(apparatus.id, user_id).check
        orchestrator.start_check(empty_apparatus.id, user_id)
        deterministic_clock.advance(timedelta(hours=5))

        def _service_factory(session):
            service = orchestrator.service_for(session)
            real = service.abandon_if_stale

            def _abandon(check_id, cutoff):
                if check_id == first.id:
                    raise RuntimeError("lost connection")
                return real(check_id, cutoff)

            service.abandon_if_stale = _abandon
            return service

        sweeper = AutoAbandonSweeper(
            session_factory, _service_factory, clock=deterministic_clock, policy=policy
        )

        assert sweeper.tick() == 1
        assert orchestrator.get_check(first.id).status == CheckStatus.IN_PROGRESS
        failures = [r for r in captured_logs() if r["message"] == "sweep_check_failed"]
        assert failures and failures[0]["failed_check_id"] == str(first.id)

    def test_custom_duration(self, orchestrator, session_factory, deterministic_clock, apparatus, user_id):
        policy = CheckPolicy(max_check_duration=timedelta(minutes=30))
        sweeper = AutoAbandonSweeper(
            session_factory, orchestrator.service_for, clock=deterministic_clock, policy=policy
        )
        orchestrator.start_check(apparatus.id, user_id)
        deterministic_clock.advance(timedelta(minutes=31))
        assert sweeper.tick() == 1


class TestBackgroundThread:

    def test_start_and_stop(self, orchestrator, session_factory, deterministic_clock, apparatus, user_id):
        policy = CheckPolicy(sweep_interval=timedelta(milliseconds=20))
        sweeper = AutoAbandonSweeper(
            session_factory, orchestrator.service_for, clock=deterministic_clock, policy=policy
        )
        check = orchestrator.start_check(apparatus.id, user_id).check
        deterministic_clock.advance(timedelta(hours=5))

        sweeper.start()
        try:
            assert sweeper.is_running
            deadline = time.monotonic() + 5
            while time.monotonic() < deadline:
                if orchestrator.get_check(check.id).status == CheckStatus.ABANDONED:
                    break
                time.sleep(0.02)
        finally:
            sweeper.stop(timeout=5)

        assert not sweeper.is_running
        assert orchestrator.get_check(check.id).status == CheckStatus.ABANDONED

    def test_start_twice_is_noop(self, sweeper):
        sweeper.start()
        try:
            thread = sweeper._thread
            sweeper.start()
            assert sweeper._thread is thread
        finally:
            sweeper.stop(timeout=5)


@pytest.mark.parametrize("hours,expected", [(3, 0), (4, 0), (5, 1)])
def test_threshold_boundaries(orchestrator, sweeper, apparatus, user_id, deterministic_clock, hours, expected):
    orchestrator.start_check(apparatus.id, user_id)
    deterministic_clock.advance(timedelta(hours=hours))
    assert sweeper.tick() == expected
