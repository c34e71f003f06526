from dataclasses import replace
from pathlib import Path
from unittest.mock import Mock

from xbdeploy.state import ApplianceConfig, ApplianceContext, ExecResult

MISSING = ExecResult(127, "OCI runtime exec failed: executable file not found in $PATH")


class FakeRuntime:
    """Scripted container runtime: exec responses matched by command prefix."""

    def __init__(self, *, exists=True, running=True):
        self.handlers = []
        self.calls = []
        self.interactive_calls = []
        self.interactive_code = 0
        self.container_exists = exists
        self.container_running = running
        self.run_calls = []
        self.removed = []
        self.started = []
        self.stopped = []
        self.restarted = []
        self.processes = None

    def on(self, prefix, response):
        """Register a response (ExecResult or callable(cmd)) for a command prefix."""
        self.handlers.append((tuple(prefix), response))
        return self

    def commands(self):
        return [" ".join(cmd) for cmd in self.calls]

    def exec(self, name, cmd, *, user=None, detach=False):
        self.calls.append(list(cmd))
        for prefix, response in self.handlers:
            if tuple(cmd[:len(prefix)]) == prefix:
                return response(cmd) if callable(response) else response
        return MISSING

    def exec_interactive(self, name, cmd):
        self.interactive_calls.append(list(cmd))
        return self.interactive_code

    def available(self):
        return True

    def exists(self, name):
        return self.container_exists

    def is_running(self, name):
        return self.container_exists and self.container_running

    def run(self, name, image, *, command, ports, volumes, restart_policy="unless-stopped"):
        self.run_calls.append({"name": name, "image": image, "ports": ports, "volumes": volumes})
        self.container_exists = True
        self.container_running = True

    def start(self, name):
        self.started.append(name)
        self.container_running = True
        return True

    def stop(self, name, timeout=10):
        self.stopped.append(name)
        self.container_running = False
        return True

    def restart(self, name, timeout=10):
        self.restarted.append(name)
        self.container_running = True
        return True

    def remove(self, name):
        self.removed.append(name)
        self.container_exists = False
        self.container_running = False
        return True

    def list_processes(self, name):
        return self.processes

    def logs(self, name, tail=200):
        return "fake logs"

    def stream_logs(self, name, follow=True):
        return 0

    def describe(self, name):
        if not self.container_exists:
            return None
        return {"name": name, "status": "running" if self.container_running else "exited", "ports": {}}


def make_config(root, **overrides):
    root = Path(root)
    base = ApplianceConfig(
        container_name="xboard-test",
        image_name="xboard-distro:test",
        data_root=root / "data",
        backup_dir=root / "backups",
        log_dir=root / "logs",
        web_port=19999,
        reality_port=29443,
        hy2_port=29444,
        db_schema="xboard",
        key_table="users",
        readiness_interval_seconds=2.0,
        readiness_max_ticks=90,
        manual_start_at_tick=15,
        diagnostics_at_tick=30,
        manual_start_wait_seconds=5.0,
        manual_start_strategies=("service_manager", "direct_binary", "supervisor"),
        container_settle_seconds=8.0,
        service_settle_seconds=5.0,
        quiesce_seconds=3.0,
        backup_retention_days=7,
        pre_restore_snapshot=True,
        public_host="203.0.113.10",
    )
    return replace(base, **overrides)


def make_ctx(config, runtime=None, prompt_answer=""):
    return ApplianceContext(
        config=config,
        runtime=runtime or FakeRuntime(),
        console=Mock(),
        log_action=Mock(),
        log_exception=Mock(),
        sleep=Mock(),
        prompt=Mock(return_value=prompt_answer),
    )


def schema_sql_response(table_count, user_count=0):
    """Build a ``mysql -N -e`` handler answering schema and row-count queries."""

    def respond(cmd):
        sql = cmd[-1]
        if "information_schema" in sql:
            return ExecResult(0, f"{table_count}\n")
        if "COUNT(*)" in sql:
            return ExecResult(0, f"{user_count}\n")
        return ExecResult(0, "")

    return respond


def healthy_runtime(table_count=1, user_count=3, **kwargs):
    """A runtime whose database answers pings and schema queries."""
    runtime = FakeRuntime(**kwargs)
    runtime.on(["mysqladmin", "ping"], ExecResult(0, "mysqld is alive"))
    runtime.on(["mysql", "-N", "-e"], schema_sql_response(table_count, user_count))
    runtime.on(["php", "service", "start"], ExecResult(0, "started"))
    runtime.on(["php", "service", "stop"], ExecResult(0, "stopped"))
    runtime.on(["ps", "aux"], ExecResult(0, "USER PID COMMAND\nmysql 10 /usr/sbin/mysqld\nroot 11 caddy run\n"))
    return runtime
