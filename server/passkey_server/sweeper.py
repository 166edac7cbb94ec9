"""Background thread reclaiming expired challenges and tokens."""
from __future__ import annotations

import logging
import threading
from typing import Optional, Protocol, Sequence

__all__ = [
    "DEFAULT_SWEEP_INTERVAL",
    "Sweepable",
    "is_running",
    "run_sweep",
    "start_sweeper",
    "stop_sweeper",
]

DEFAULT_SWEEP_INTERVAL = 60.0

_sweeper_thread: Optional[threading.Thread] = None
_stop_event = threading.Event()
_state_lock = threading.Lock()


class Sweepable(Protocol):
    def sweep_expired(self, now: Optional[float] = None) -> int:
        ...


def run_sweep(targets: Sequence[Sweepable], logger: logging.Logger) -> int:
    """Sweep every target once and return the number of reclaimed entries."""

    removed = 0
    for target in targets:
        try:
            removed += target.sweep_expired()
        except Exception:  # pylint: disable=broad-except
            logger.exception("Expiry sweep failed for %s.", type(target).__name__)
    if removed:
        logger.info("Expiry sweep reclaimed %d entries.", removed)
    return removed


def _sweeper_loop(targets: Sequence[Sweepable], interval: float, logger: logging.Logger) -> None:
    logger.info("Starting expiry sweeper (every %.0f seconds).", interval)
    while not _stop_event.wait(interval):
        run_sweep(targets, logger)
    logger.info("Stopping expiry sweeper.")


def start_sweeper(
    targets: Sequence[Sweepable],
    logger: logging.Logger,
    interval: float = DEFAULT_SWEEP_INTERVAL,
) -> None:
    """Launch the background sweeper thread if not already running."""

    global _sweeper_thread

    if interval <= 0:
        raise ValueError("sweep interval must be positive")

    with _state_lock:
        if _sweeper_thread and _sweeper_thread.is_alive():
            return

        _stop_event.clear()
        _sweeper_thread = threading.Thread(
            target=_sweeper_loop,
            args=(tuple(targets), interval, logger),
            name="passkey-expiry-sweeper",
            daemon=True,
        )
        _sweeper_thread.start()


def stop_sweeper() -> None:
    """Request the sweeper thread to stop (primarily for tests)."""

    _stop_event.set()
    with _state_lock:
        if _sweeper_thread and _sweeper_thread.is_alive():
            _sweeper_thread.join(timeout=5)


def is_running() -> bool:
    with _state_lock:
        return bool(_sweeper_thread and _sweeper_thread.is_alive())
