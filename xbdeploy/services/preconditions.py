"""Precondition checks run before any mutation, plus the data-root lock."""

from contextlib import contextmanager
import fcntl
import os
import shutil
import socket

from xbdeploy.core.filesystem_utils import is_within
from xbdeploy.services.bootstrap import failed


def check_root(geteuid=None):
    """Fail unless running with root privileges."""
    if (geteuid or os.geteuid)() != 0:
        return failed("Please run with root privileges.", error="precondition_failed")
    return None


def check_layout(ctx):
    """Fail when BACKUP_DIR lies inside DATA_ROOT, where restore would wipe it."""
    cfg = ctx.config
    if is_within(cfg.backup_dir, cfg.data_root):
        return failed(
            f"BACKUP_DIR {cfg.backup_dir} is inside DATA_ROOT {cfg.data_root}; "
            "a restore would delete the backups. Point BACKUP_DIR outside the data root.",
            error="precondition_failed",
        )
    return None


def check_runtime(ctx):
    """Fail unless the docker CLI is installed and the daemon answers."""
    if shutil.which("docker") is None:
        return failed("Docker is not installed; install Docker first.", error="precondition_failed")
    if not ctx.runtime.available():
        return failed("Docker daemon is not reachable.", error="precondition_failed")
    ctx.console.info("Docker is available.")
    return None


def port_in_use(port, proto="tcp", host="0.0.0.0"):
    """Return True when binding ``port`` on ``host`` fails."""
    kind = socket.SOCK_STREAM if proto == "tcp" else socket.SOCK_DGRAM
    sock = socket.socket(socket.AF_INET, kind)
    try:
        if proto == "tcp":
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, int(port)))
    except OSError:
        return True
    finally:
        sock.close()
    return False


def owned_host_ports(ctx):
    """Return ``{(port, proto)}`` already published by the appliance's own container."""
    owned = set()
    described = ctx.runtime.describe(ctx.config.container_name)
    if not described:
        return owned
    for container_port, bindings in (described.get("ports") or {}).items():
        proto = container_port.split("/", 1)[1] if "/" in container_port else "tcp"
        for binding in bindings or []:
            host_port = str(binding.get("HostPort") or "")
            if host_port.isdigit():
                owned.add((int(host_port), proto))
    return owned


def check_ports(ctx, in_use=None):
    """Fail when any configured host port is taken by something else."""
    in_use = in_use or port_in_use
    cfg = ctx.config
    ctx.console.step("Checking port availability...")
    owned = owned_host_ports(ctx)
    wanted = [(cfg.web_port, "tcp"), (cfg.reality_port, "tcp"), (cfg.hy2_port, "udp")]
    occupied = []
    for port, proto in wanted:
        if (port, proto) in owned:
            ctx.console.info(f"Port {port}/{proto} is held by {cfg.container_name} (will be released on redeploy)")
            continue
        if in_use(port, proto):
            ctx.console.warn(f"Port {port}/{proto} is already in use")
            occupied.append(f"{port}/{proto}")
        else:
            ctx.console.info(f"Port {port}/{proto} is available")
    if occupied:
        return failed(
            f"Port conflict on {', '.join(occupied)}; change the port settings or stop the conflicting service.",
            error="precondition_failed",
        )
    return None


def run_preconditions(ctx, *, root=True, runtime=True, ports=False):
    """Run the requested checks in order and return the first failure or None."""
    checks = [lambda: check_layout(ctx)]
    if root:
        checks.append(check_root)
    if runtime:
        checks.append(lambda: check_runtime(ctx))
    if ports:
        checks.append(lambda: check_ports(ctx))
    for check in checks:
        result = check()
        if result is not None:
            ctx.log_action("precondition", rejection_message=result["message"])
            return result
    return None


@contextmanager
def operation_lock(config):
    """Hold an exclusive non-blocking lock over the data root; yields acquired flag."""
    path = config.lock_path
    path.parent.mkdir(parents=True, exist_ok=True)
    handle = open(path, "a+", encoding="utf-8")
    try:
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            yield False
            return
        try:
            handle.seek(0)
            handle.truncate()
            handle.write(f"{os.getpid()}\n")
            handle.flush()
            yield True
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
    finally:
        handle.close()
