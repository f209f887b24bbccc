"""The true-up cycle and the loop that schedules it.

One cycle: snapshot -> zones -> desired RRsets -> reconcile -> notify.

The loop runs cycles one at a time on a single thread. It wakes up on a
timer or on demand; an on-demand request is buffered (at most one) and a
request made while a cycle is running is refused so the caller can back off.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Callable, List, Optional, Sequence, Set

import requests

from powerdns_manager.config import Config
from powerdns_manager.inventory import (
    InventoryError,
    InventorySource,
    LiveStateSource,
    load_snapshot,
)
from powerdns_manager.models import Zone
from powerdns_manager.powerdns import DNSServer, PowerDNSError
from powerdns_manager.reconcile import Reconciler
from powerdns_manager.synth import RRSetSynthesizer
from powerdns_manager.zones import ZoneManager

logger = logging.getLogger(__name__)


# =============================================================================
# True-up Cycle
# =============================================================================


class TrueUp:
    """Runs one full convergence pass."""

    def __init__(
        self,
        *,
        config: Config,
        server: DNSServer,
        inventory: InventorySource,
        live_state: LiveStateSource,
        zone_manager: ZoneManager,
    ):
        self.config = config
        self.server = server
        self.inventory = inventory
        self.live_state = live_state
        self.zone_manager = zone_manager
        self.synthesizer = RRSetSynthesizer(config)
        self.reconciler = Reconciler(server)

    def run_once(self) -> Set[str]:
        """Run a pass and return the zones that were patched.

        Raises InventoryError when the topology cannot be fetched; nothing
        has been touched on the DNS server at that point.
        """
        snapshot = load_snapshot(self.inventory, self.live_state, self.config.ignore_networks)

        forward_zones, reverse_zones = self.zone_manager.ensure_all(snapshot.networks)
        all_zones: List[Zone] = forward_zones + reverse_zones

        desired = self.synthesizer.build(snapshot, reverse_zones)
        changed = self.reconciler.reconcile(desired, all_zones)

        if changed:
            self.notify(all_zones)
        else:
            logger.info("All zones already at desired configuration")
        return changed

    def notify(self, zones: Sequence[Zone]) -> None:
        """Ask secondaries to re-transfer every managed zone."""
        for zone in zones:
            try:
                result = self.server.notify_zone(zone.name)
            except (PowerDNSError, requests.exceptions.RequestException) as e:
                logger.error(f"Failed to notify secondary server(s) for zone {zone.name}: {e}")
                continue
            logger.info(f"Notified secondary server(s) for zone {zone.name}: {result}")


# =============================================================================
# Convergence Loop
# =============================================================================


class LoopState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    SHUTDOWN = "shutdown"


class ConvergenceLoop:
    """Single-owner scheduler for true-up cycles.

    All state sits behind one condition variable. ``request_run`` and
    ``shutdown`` may be called from any thread; only the loop thread runs
    cycles.
    """

    def __init__(
        self,
        cycle: Callable[[], object],
        interval_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._cycle = cycle
        self._interval = interval_seconds
        self._clock = clock
        self._cond = threading.Condition()
        self._state = LoopState.IDLE
        self._run_pending = False
        self._stopping = False

    @property
    def state(self) -> LoopState:
        with self._cond:
            return self._state

    @property
    def in_progress(self) -> bool:
        with self._cond:
            return self._state is LoopState.RUNNING

    def request_run(self) -> bool:
        """Ask for an immediate cycle.

        Returns False if a cycle is running right now. A second request
        while one is already pending is absorbed by the pending one.
        """
        with self._cond:
            if self._state is not LoopState.IDLE:
                return False
            if self._run_pending:
                logger.debug("Run already pending, dropping duplicate request")
            self._run_pending = True
            self._cond.notify_all()
            return True

    def shutdown(self) -> None:
        """Stop at the next iteration boundary. An in-flight cycle finishes first."""
        with self._cond:
            self._stopping = True
            self._cond.notify_all()

    def _wait_for_trigger(self) -> bool:
        """Block until shutdown (False), a run request or the interval (True)."""
        deadline = self._clock() + self._interval
        with self._cond:
            while True:
                if self._stopping:
                    self._state = LoopState.SHUTDOWN
                    return False
                if self._run_pending:
                    self._run_pending = False
                    self._state = LoopState.RUNNING
                    return True
                remaining = deadline - self._clock()
                if remaining <= 0:
                    logger.debug("Running true up loop")
                    self._state = LoopState.RUNNING
                    return True
                self._cond.wait(remaining)

    def run_forever(self) -> None:
        logger.info(f"Running true up loop at interval {self._interval}s")
        while self._wait_for_trigger():
            try:
                self._cycle()
            except Exception as e:
                logger.error(f"True up cycle failed: {e}", exc_info=True)
            finally:
                with self._cond:
                    if self._state is LoopState.RUNNING:
                        self._state = LoopState.IDLE
        logger.info("True up loop shutdown")

    def start(self, name: str = "true-up") -> threading.Thread:
        thread = threading.Thread(target=self.run_forever, name=name, daemon=True)
        thread.start()
        return thread


def run_cycle_logged(true_up: TrueUp) -> Optional[Set[str]]:
    """Cycle wrapper that turns a failed topology fetch into a log line."""
    try:
        return true_up.run_once()
    except InventoryError as e:
        logger.error(f"Failed to load topology, abandoning cycle: {e}")
        return None
