"""Manual database start attempts used as readiness escalation."""

from xbdeploy.core.filesystem_utils import directory_has_entries

DATABASE_DATA_DIR = "/var/lib/mysql"
DATABASE_RUN_DIR = "/run/mysqld"
DATABASE_LOG_DIR = "/var/log/mysql"
DATABASE_ACCOUNT = "mysql"
DATABASE_SERVICE_NAMES = ("mysql", "mariadb")

# Preference order: OpenRC (alpine images), systemd, then SysV ``service``.
SERVICE_MANAGERS = (
    ("openrc", "rc-service"),
    ("systemd", "systemctl"),
    ("sysv", "service"),
)

DATABASE_BINARY_CANDIDATES = (
    "/usr/sbin/mysqld",
    "/usr/bin/mysqld",
    "/usr/local/mysql/bin/mysqld",
    "/usr/sbin/mariadbd",
    "/usr/bin/mariadbd",
)


def _manager_command(tool, service, action):
    if tool == "systemctl":
        return [tool, action, service]
    return [tool, service, action]


class ManualStarter:
    """Repair permissions, then try each configured start strategy in order."""

    def __init__(self, ctx, prober):
        self.ctx = ctx
        self.prober = prober
        self.container_name = ctx.config.container_name
        self.strategies = {
            "service_manager": self.start_with_service_manager,
            "direct_binary": self.start_direct_binary,
            "supervisor": self.start_with_supervisor,
        }

    def _exec(self, cmd, **kwargs):
        return self.ctx.runtime.exec(self.container_name, cmd, **kwargs)

    def _has_command(self, name):
        return self._exec(["sh", "-c", f"command -v {name}"]).ok

    def repair_ownership(self):
        """Ensure database data/run/log dirs exist and belong to the service account."""
        dirs = " ".join((DATABASE_DATA_DIR, DATABASE_RUN_DIR, DATABASE_LOG_DIR))
        script = (
            f"mkdir -p {dirs} && "
            f"chown -R {DATABASE_ACCOUNT}:{DATABASE_ACCOUNT} {dirs} && "
            f"chmod 755 {dirs}"
        )
        result = self._exec(["sh", "-c", script], user="root")
        if not result.ok:
            self.ctx.console.warn(f"Could not repair database directory ownership: {result.output.strip()[:200]}")
            self.ctx.log_action("manual-start", command="repair-ownership", rejection_message=result.output[:300])
        return result.ok

    def present_service_managers(self):
        """Return the service-manager tools available in the container, in preference order."""
        return [tool for _name, tool in SERVICE_MANAGERS if self._has_command(tool)]

    def discover_binaries(self):
        """Return well-known database daemon paths that are executable in the container."""
        return [path for path in DATABASE_BINARY_CANDIDATES if self._exec(["test", "-x", path]).ok]

    def service_manager_status(self):
        """Return status text from each present service manager for diagnostics."""
        lines = []
        for tool in self.present_service_managers():
            for service in DATABASE_SERVICE_NAMES:
                result = self._exec(_manager_command(tool, service, "status"))
                text = " ".join(result.output.split())[:200] or "(no output)"
                lines.append(f"{tool} {service}: exit={result.exit_code} {text}")
        return lines or ["(no service manager found)"]

    def start_with_service_manager(self):
        for tool in self.present_service_managers():
            for service in DATABASE_SERVICE_NAMES:
                result = self._exec(_manager_command(tool, service, "start"))
                if result.ok:
                    self.ctx.console.info(f"Started database via {tool} ({service}).")
                    return True
        return False

    def start_direct_binary(self):
        binaries = self.discover_binaries()
        if not binaries:
            self.ctx.console.warn("No database daemon binary found in well-known paths.")
            return False
        binary = binaries[0]
        if not directory_has_entries(self.ctx.config.data_root / "mysql"):
            self.ctx.console.info("Database data directory empty; running --initialize-insecure first.")
            init_result = self._exec(
                [binary, "--initialize-insecure", f"--user={DATABASE_ACCOUNT}", f"--datadir={DATABASE_DATA_DIR}"],
                user="root",
            )
            if not init_result.ok:
                self.ctx.log_action("manual-start", command=f"{binary} --initialize-insecure", rejection_message=init_result.output[:300])
        result = self._exec(
            [binary, f"--user={DATABASE_ACCOUNT}", f"--datadir={DATABASE_DATA_DIR}"],
            user="root",
            detach=True,
        )
        return result.ok

    def start_with_supervisor(self):
        if not self._has_command("mysqld_safe"):
            return False
        result = self._exec(
            ["mysqld_safe", f"--user={DATABASE_ACCOUNT}", f"--datadir={DATABASE_DATA_DIR}"],
            user="root",
            detach=True,
        )
        return result.ok

    def attempt(self):
        """Run the manual start escalation; return True once the database answers."""
        cfg = self.ctx.config
        self.repair_ownership()
        for name in cfg.manual_start_strategies:
            strategy = self.strategies.get(name)
            if strategy is None:
                self.ctx.console.warn(f"Unknown manual start strategy skipped: {name}")
                continue
            self.ctx.console.step(f"Manual database start: {name}")
            try:
                issued = strategy()
            except Exception as exc:
                self.ctx.log_exception(f"manual_start/{name}", exc)
                issued = False
            self.ctx.log_action("manual-start", command=f"strategy={name} issued={issued}")
            self.ctx.sleep(cfg.manual_start_wait_seconds)
            if self.prober.ping_database():
                self.ctx.console.info(f"Database answering after manual start ({name}).")
                return True
        return False
