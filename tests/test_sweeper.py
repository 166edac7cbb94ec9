import logging
import threading

import pytest

from passkey_server import sweeper
from passkey_server.challenges import CHALLENGE_TTL


@pytest.fixture(autouse=True)
def _stop_background_sweeper():
    yield
    sweeper.stop_sweeper()


class _Target:
    def __init__(self):
        self.swept = threading.Event()

    def sweep_expired(self, now=None):
        self.swept.set()
        return 0


class _BrokenTarget:
    def sweep_expired(self, now=None):
        raise RuntimeError("store offline")


def test_run_sweep_counts_reclaimed_entries(challenges, sessions, clock):
    challenges.issue("session_a")
    challenges.issue("session_b")
    sessions.issue_step_up(sessions.issue_session("user_1").token)
    clock.advance(CHALLENGE_TTL + 1)

    removed = sweeper.run_sweep((challenges, sessions), logging.getLogger("test"))

    assert removed == 3
    assert len(challenges) == 0
    assert len(sessions) == 1


def test_run_sweep_survives_failing_target(challenges, clock, caplog):
    challenges.issue("session_a")
    clock.advance(CHALLENGE_TTL + 1)

    with caplog.at_level(logging.ERROR):
        removed = sweeper.run_sweep((_BrokenTarget(), challenges), logging.getLogger("test"))

    assert removed == 1
    assert "_BrokenTarget" in caplog.text


def test_start_sweeper_runs_in_background():
    target = _Target()

    sweeper.start_sweeper((target,), logging.getLogger("test"), interval=0.01)

    assert target.swept.wait(timeout=5)
    assert sweeper.is_running()

    sweeper.stop_sweeper()
    assert not sweeper.is_running()


def test_start_sweeper_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        sweeper.start_sweeper((), logging.getLogger("test"), interval=0)
