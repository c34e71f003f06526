"""Bounded readiness polling with tick-indexed escalation callbacks."""

import time

from xbdeploy.state import ReadinessResult, ReadinessState


def await_condition(probe, *, interval, max_attempts, escalations=None, sleep=time.sleep, on_tick=None):
    """Poll ``probe`` up to ``max_attempts`` ticks and return a ReadinessResult.

    ``escalations`` maps a 1-based tick number to a callback that runs when the
    probe failed on that tick. A callback returning True satisfies the
    condition; any other return value is treated as diagnostics only.
    """
    escalations = dict(escalations or {})
    max_attempts = max(1, int(max_attempts))
    for tick in range(1, max_attempts + 1):
        if probe():
            return ReadinessResult(ReadinessState.READY, tick)
        callback = escalations.get(tick)
        if callback is not None and callback() is True:
            return ReadinessResult(ReadinessState.READY, tick)
        if on_tick is not None:
            on_tick(tick)
        if tick < max_attempts:
            sleep(interval)
    return ReadinessResult(ReadinessState.FAILED, max_attempts)


class DatabaseReadiness:
    """Wait for the appliance database to answer pings, self-healing on the way."""

    def __init__(self, ctx, prober, manual_starter):
        self.ctx = ctx
        self.prober = prober
        self.manual_starter = manual_starter
        self.state = ReadinessState.WAITING
        self.last_snapshot = {}

    def _manual_start(self):
        cfg = self.ctx.config
        self.ctx.console.warn(
            f"Database not answering after {cfg.manual_start_at_tick} checks; attempting manual start."
        )
        self.ctx.log_action("readiness-escalate", command=f"tick={cfg.manual_start_at_tick} manual-start")
        return self.manual_starter.attempt()

    def _diagnostics(self):
        cfg = self.ctx.config
        self.last_snapshot = self.collect_diagnostics()
        self.ctx.console.warn(f"Database still not answering after {cfg.diagnostics_at_tick} checks; diagnostics:")
        self._print_snapshot(self.last_snapshot)
        self.ctx.log_action("readiness-diagnostics", command=f"tick={cfg.diagnostics_at_tick}")
        return False

    def _print_snapshot(self, snapshot):
        for key, value in snapshot.items():
            self.ctx.console.line(f"--- {key} ---")
            if isinstance(value, (list, tuple)):
                for item in value:
                    self.ctx.console.line(f"  {item}")
            else:
                self.ctx.console.line(str(value).rstrip())

    def collect_diagnostics(self):
        """Return process list, listeners, binary search, and service status."""
        snapshot = self.prober.snapshot()
        snapshot["database_process_alive"] = self.prober.database_process_alive()
        snapshot["binary_search"] = self.manual_starter.discover_binaries() or ["(no database binary found)"]
        snapshot["service_manager_status"] = self.manual_starter.service_manager_status()
        return snapshot

    def wait(self):
        """Block until READY or FAILED; FAILED carries a diagnostics snapshot."""
        cfg = self.ctx.config
        self.state = ReadinessState.WAITING
        self.ctx.console.step("Waiting for the database to accept connections...")
        escalations = {
            cfg.manual_start_at_tick: self._manual_start,
            cfg.diagnostics_at_tick: self._diagnostics,
        }
        if cfg.manual_start_at_tick == cfg.diagnostics_at_tick:
            def _combined():
                if self._manual_start():
                    return True
                return self._diagnostics()
            escalations = {cfg.manual_start_at_tick: _combined}

        result = await_condition(
            self.prober.ping_database,
            interval=cfg.readiness_interval_seconds,
            max_attempts=cfg.readiness_max_ticks,
            escalations=escalations,
            sleep=self.ctx.sleep,
        )
        self.state = result.state
        if result.ready:
            self.ctx.console.info(f"Database ready (check {result.ticks}/{cfg.readiness_max_ticks}).")
            self.ctx.log_action("readiness-ready", command=f"ticks={result.ticks}")
            return result

        result.diagnostics = self.collect_diagnostics()
        self.ctx.console.error(
            f"Database did not become ready within {cfg.readiness_max_ticks} checks; "
            "the container is left running for manual inspection."
        )
        self._print_snapshot(result.diagnostics)
        self.ctx.log_action(
            "readiness-failed",
            command=f"ticks={result.ticks}",
            rejection_message="database ping never succeeded",
        )
        return result
