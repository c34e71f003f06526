"""Container process, port-listener, and database liveness probes."""

from xbdeploy.state import CONTAINER_WEB_PORT, DATABASE_PORT

DATABASE_PROCESS_NAMES = ("mysqld", "mariadbd")
PROXY_PROCESS_NAMES = ("caddy",)
SERVICE_PROCESS_PATTERN = ("caddy", "mysqld", "mariadbd", "XrayR")

DATABASE_PING_CMD = ["mysqladmin", "ping", "-h", "localhost", "--silent"]


def _tool_output(result):
    """Return exec output when the tool ran cleanly, or None to try the next source.

    Missing tools (126/127), busybox applets rejecting an option, and exec
    errors all exit non-zero; their error text is never a usable table.
    """
    if result.exit_code != 0:
        return None
    return result.output or ""


def table_mentions(table_text, name):
    """Return whether any non-header process row mentions ``name``."""
    lines = (table_text or "").splitlines()
    for line in lines[1:]:
        if name in line and "grep" not in line:
            return True
    return False


def listener_has_port(listener_text, port, proto="tcp"):
    """Return whether ss/netstat listener text shows ``port`` bound for ``proto``."""
    suffix = f":{int(port)}"
    for line in (listener_text or "").splitlines():
        tokens = line.split()
        if not tokens or not tokens[0].lower().startswith(proto):
            continue
        if any(token.endswith(suffix) for token in tokens[1:]):
            return True
    return False


class ProcessProber:
    """Answer liveness questions about one running appliance container."""

    def __init__(self, runtime, container_name, *, database_ping_cmd=None):
        self.runtime = runtime
        self.container_name = container_name
        self.database_ping_cmd = list(database_ping_cmd or DATABASE_PING_CMD)

    def process_table(self):
        """Return process-table text from the first available source."""
        for cmd in (["ps", "aux"], ["ps", "-ef"]):
            text = _tool_output(self.runtime.exec(self.container_name, cmd))
            if text is not None:
                return text
        return self.runtime.list_processes(self.container_name)

    def listener_table(self):
        """Return listening-socket text from ss, falling back to netstat."""
        for cmd in (["ss", "-tuln"], ["netstat", "-tuln"]):
            text = _tool_output(self.runtime.exec(self.container_name, cmd))
            if text is not None:
                return text
        return None

    def is_process_alive(self, name):
        """Return True/False from the process table, or None when unknown."""
        table = self.process_table()
        if table is None:
            return None
        return table_mentions(table, name)

    def is_port_bound(self, port, proto="tcp"):
        """Return True/False from listener text, or None when unknown."""
        listeners = self.listener_table()
        if listeners is None:
            return None
        return listener_has_port(listeners, port, proto)

    def _alive_by_evidence(self, names, port):
        table = self.process_table()
        if table is not None:
            if any(table_mentions(table, name) for name in names):
                return True
        port_bound = self.is_port_bound(port)
        if port_bound:
            return True
        return False

    def database_process_alive(self):
        """Process-table or listener evidence that the database daemon runs."""
        return self._alive_by_evidence(DATABASE_PROCESS_NAMES, DATABASE_PORT)

    def proxy_process_alive(self):
        """Process-table or listener evidence that the reverse proxy runs."""
        return self._alive_by_evidence(PROXY_PROCESS_NAMES, CONTAINER_WEB_PORT)

    def ping_database(self):
        """Authoritative liveness signal: an administrative database ping."""
        return self.runtime.exec(self.container_name, self.database_ping_cmd).ok

    def service_processes(self):
        """Return process-table rows for the appliance's known services."""
        table = self.process_table()
        if table is None:
            return []
        rows = []
        for line in table.splitlines()[1:]:
            if "grep" in line:
                continue
            if any(pattern in line for pattern in SERVICE_PROCESS_PATTERN):
                rows.append(line.strip())
        return rows

    def snapshot(self):
        """Collect a diagnostics mapping for operator visibility."""
        return {
            "process_table": self.process_table() or "(unavailable)",
            "listeners": self.listener_table() or "(unavailable)",
        }
