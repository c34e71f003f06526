"""Container, application-service, and backup operations for the appliance."""

from datetime import datetime
from pathlib import Path
import os
import tarfile
import time

from xbdeploy.core.filesystem_utils import list_archive_files
from xbdeploy.services import preconditions
from xbdeploy.services.bootstrap import failed
from xbdeploy.state import (
    CONTAINER_HY2_PORT,
    CONTAINER_REALITY_PORT,
    CONTAINER_WEB_PORT,
)

APP_SERVICE_CMD = ["php", "service"]
CONTAINER_COMMAND = "/sbin/init"
ARCHIVE_PREFIX = "xboard-"
ARCHIVE_PATTERN = "xboard-*.tar.gz"


# ── Container ─────────────────────────────────────────────────────────────────

def port_bindings(config):
    """Return Docker port map: container port/proto -> host port."""
    return {
        f"{CONTAINER_WEB_PORT}/tcp": config.web_port,
        f"{CONTAINER_REALITY_PORT}/tcp": config.reality_port,
        f"{CONTAINER_HY2_PORT}/udp": config.hy2_port,
    }


def format_published_ports(ports):
    """Render a Docker ``NetworkSettings.Ports`` map as ``host->container/proto`` pairs."""
    pairs = []
    for container_port, bindings in sorted((ports or {}).items()):
        for binding in bindings or []:
            host_port = binding.get("HostPort")
            if host_port:
                pairs.append(f"{host_port}->{container_port}")
    return ", ".join(dict.fromkeys(pairs)) or "(no published ports)"


def volume_bindings(config):
    """Return Docker bind-mount map for every data volume."""
    return {
        str(host_dir): {"bind": target, "mode": "rw"}
        for host_dir, target in config.volume_dirs()
    }


def create_data_dirs(ctx):
    """Create the data root and one directory per volume category."""
    ctx.console.step("Creating persistent data directories...")
    for host_dir, _target in ctx.config.volume_dirs():
        host_dir.mkdir(parents=True, exist_ok=True)
    os.chmod(ctx.config.data_root, 0o755)
    ctx.console.info(f"Data directories ready: {ctx.config.data_root}")
    return {"ok": True, "data_root": str(ctx.config.data_root)}


def remove_old_container(ctx):
    """Stop and remove an existing appliance container; volumes are kept."""
    name = ctx.config.container_name
    if not ctx.runtime.exists(name):
        ctx.console.info("No previous container found.")
        return {"ok": True, "removed": False}
    ctx.console.step("Previous container found; stopping and removing it (data volumes are kept)...")
    try:
        ctx.runtime.stop(name)
    except Exception as exc:
        ctx.log_exception("remove_old_container/stop", exc)
    ctx.runtime.remove(name)
    ctx.log_action("container-remove", command=name)
    ctx.console.info("Previous container removed.")
    return {"ok": True, "removed": True}


def launch_container(ctx):
    """Create the appliance container and confirm it is still running after settling."""
    cfg = ctx.config
    ctx.console.step(f"Starting container {cfg.container_name} from {cfg.image_name}...")
    ctx.runtime.run(
        cfg.container_name,
        cfg.image_name,
        command=CONTAINER_COMMAND,
        ports=port_bindings(cfg),
        volumes=volume_bindings(cfg),
    )
    ctx.log_action("container-run", command=f"{cfg.container_name} image={cfg.image_name}")
    ctx.console.info("Container created; waiting for system services to initialize...")
    ctx.sleep(cfg.container_settle_seconds)
    if ctx.runtime.is_running(cfg.container_name):
        ctx.console.info("Container is running.")
        return {"ok": True}
    ctx.console.error("Container failed to stay up; recent logs:")
    ctx.console.line(ctx.runtime.logs(cfg.container_name))
    return failed("Container exited shortly after start.", error="container_start_failed")


def require_container(ctx, running=True):
    """Return None when the container exists (and runs), else a failure payload."""
    name = ctx.config.container_name
    if not ctx.runtime.exists(name):
        return failed(f"Container {name} does not exist; run 'deploy' first.", error="container_missing")
    if running and not ctx.runtime.is_running(name):
        return failed(f"Container {name} is not running; run 'start' first.", error="container_not_running")
    return None


# ── Application service (opaque remote commands) ─────────────────────────────

def run_service_command(ctx, action):
    """Run ``php service <action>`` inside the container and capture output."""
    return ctx.runtime.exec(ctx.config.container_name, APP_SERVICE_CMD + [action])


def start_application_service(ctx):
    """Start the panel services; failure is propagated as the run's error."""
    ctx.console.step("Starting application services...")
    result = run_service_command(ctx, "start")
    if not result.ok:
        detail = (result.output or "").strip()[:400]
        ctx.log_action("service-start", rejection_message=detail or f"exit={result.exit_code}")
        message = "Application service start failed."
        if detail:
            message = f"{message} {detail}"
        return failed(message, error="remote_command_failed", exit_code=result.exit_code)
    ctx.log_action("service-start")
    return {"ok": True}


def stop_application_service(ctx):
    """Stop the panel services best-effort; an already-stopped service is fine."""
    result = run_service_command(ctx, "stop")
    ctx.log_action("service-stop", command=f"exit={result.exit_code}")
    return result.ok


def init_application_service(ctx):
    """Run the one-time interactive setup; its output is shown, never captured."""
    code = ctx.runtime.exec_interactive(ctx.config.container_name, APP_SERVICE_CMD + ["init"])
    if code != 0:
        ctx.log_action("service-init", rejection_message=f"exit={code}")
        return failed("Application initialization command failed.", error="remote_command_failed", exit_code=code)
    ctx.log_action("service-init")
    return {"ok": True}


def verify_services(ctx, prober):
    """Post-action check that proxy and database processes are up (warnings only)."""
    ctx.console.info("Waiting for services to settle...")
    ctx.sleep(ctx.config.service_settle_seconds)
    checks = {
        "caddy": prober.proxy_process_alive(),
        "mysql": prober.database_process_alive(),
    }
    for name, alive in checks.items():
        if alive:
            ctx.console.info(f"✓ {name} is running")
        else:
            ctx.console.warn(f"✗ {name} may not be running")
    return {"ok": True, "services": checks}


# ── Backup ────────────────────────────────────────────────────────────────────

def new_archive_path(backup_dir, now=None, suffix=""):
    """Return a not-yet-existing timestamped archive path."""
    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    base = f"{ARCHIVE_PREFIX}{stamp}{suffix}"
    candidate = Path(backup_dir) / f"{base}.tar.gz"
    index = 1
    while candidate.exists():
        candidate = Path(backup_dir) / f"{base}_{index}.tar.gz"
        index += 1
    return candidate


def pack_data_root(data_root, archive_path):
    """Pack the full data root into a gzip tarball, written atomically."""
    archive_path = Path(archive_path)
    archive_path.parent.mkdir(parents=True, exist_ok=True)
    tmp = archive_path.with_name(f".{archive_path.name}.partial")
    try:
        with tarfile.open(tmp, "w:gz") as tar:
            tar.add(str(data_root), arcname=".")
        os.replace(tmp, archive_path)
    finally:
        if tmp.exists():
            tmp.unlink()
    return archive_path


def prune_old_backups(backup_dir, retention_days, now=None):
    """Delete archives older than ``retention_days``; return removed names."""
    cutoff = (now if now is not None else time.time()) - retention_days * 86400
    removed = []
    for item in list_archive_files(backup_dir, ARCHIVE_PATTERN):
        if item["mtime"] >= cutoff:
            continue
        try:
            item["path"].unlink()
        except OSError:
            continue
        removed.append(item["name"])
    return removed


def backup_data(ctx, now=None):
    """Quiesce the panel, archive all volumes, resume, and prune old archives."""
    cfg = ctx.config
    misplaced = preconditions.check_layout(ctx)
    if misplaced is not None:
        return misplaced
    archive_path = new_archive_path(cfg.backup_dir, now)
    ctx.console.step(f"Backing up data to {archive_path}...")

    running = ctx.runtime.is_running(cfg.container_name)
    if running:
        ctx.console.info("Stopping services for a consistent snapshot...")
        stop_application_service(ctx)
        ctx.sleep(cfg.quiesce_seconds)

    pack_error = None
    resume = {"ok": True}
    try:
        ctx.console.info("Packing data...")
        pack_data_root(cfg.data_root, archive_path)
    except (OSError, tarfile.TarError) as exc:
        ctx.log_exception("backup_data/pack", exc)
        pack_error = exc
    finally:
        if running:
            ctx.console.info("Restarting services...")
            resume = start_application_service(ctx)

    if pack_error is not None:
        return failed(f"Backup failed: {pack_error}", error="backup_failed")

    created = list_archive_files(cfg.backup_dir, archive_path.name)
    ctx.log_action("backup", command=archive_path.name)
    ctx.console.info(f"Backup complete: {archive_path}")
    if created:
        ctx.console.info(f"Backup size: {created[0]['size_text']}")

    removed = prune_old_backups(cfg.backup_dir, cfg.backup_retention_days)
    for name in removed:
        ctx.log_action("backup-prune", command=name)

    ctx.console.line()
    ctx.console.line("Existing backups:")
    archives = list_archive_files(cfg.backup_dir, ARCHIVE_PATTERN)
    for item in archives:
        ctx.console.line(f"  {item['name']}  {item['size_text']}  {item['modified']}")
    if not archives:
        ctx.console.line("  (none)")

    if not resume.get("ok"):
        resume["archive"] = str(archive_path)
        return resume
    return {"ok": True, "archive": str(archive_path), "pruned": removed}
