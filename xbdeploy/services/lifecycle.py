"""Lifecycle coordinator: deploy, start/stop, status, and verification flows."""

from xbdeploy.core.filesystem_utils import count_files, directory_size, format_file_size
from xbdeploy.services import control_plane
from xbdeploy.services import init_gatekeeper
from xbdeploy.services.bootstrap import failed, run_steps
from xbdeploy.services.manual_start import ManualStarter
from xbdeploy.services.process_prober import ProcessProber
from xbdeploy.services.readiness import DatabaseReadiness
from xbdeploy.state import (
    CONTAINER_HY2_PORT,
    CONTAINER_REALITY_PORT,
    CONTAINER_WEB_PORT,
    ApplianceState,
    InitDecision,
)

VERIFY_TABLES = ("users", "orders", "plans", "servers", "nodes")
SHELL_CMD = ["/bin/ash"]


def build_prober(ctx):
    return ProcessProber(ctx.runtime, ctx.config.container_name)


def wait_for_database(ctx, prober=None):
    """Run the readiness state machine; FAILED aborts the calling flow."""
    prober = prober or build_prober(ctx)
    readiness = DatabaseReadiness(ctx, prober, ManualStarter(ctx, prober))
    result = readiness.wait()
    if not result.ready:
        return failed(
            "Database did not become ready; initialization aborted. The container was left running for inspection.",
            error="readiness_timeout",
            ticks=result.ticks,
            diagnostics=result.diagnostics,
        )
    return {"ok": True, "ticks": result.ticks}


def initialize_or_start(ctx, allow_init=True):
    """Consult the gatekeeper, then issue exactly one of ``service init`` / ``service start``."""
    gate = init_gatekeeper.evaluate(ctx)
    decision = gate.decision
    message = gate.message
    if decision is InitDecision.INIT and not allow_init:
        decision = InitDecision.WARN
        message = "Database schema is missing after restore; the archive may be incomplete. Services are started without initialization."

    if decision is InitDecision.INIT:
        ctx.console.step("First deployment; initializing the panel...")
        ctx.console.banner("Administrator credentials follow. SAVE THEM NOW!", color="yellow")
        ctx.sleep(2)
        result = control_plane.init_application_service(ctx)
        if not result.get("ok"):
            return result
        marker = init_gatekeeper.write_marker(ctx.config)
        ctx.log_action("init-marker", command=f"timestamp={marker.timestamp}")
        ctx.console.info("Initialization complete. Keep the credentials shown above safe!")
        return {"ok": True, "decision": InitDecision.INIT.value, "marker": marker.to_dict()}

    if decision is InitDecision.WARN:
        ctx.console.banner("WARNING", color="yellow")
        ctx.console.warn(message)
        ctx.console.warn("To recover, restore a backup: restore <archive.tar.gz>")
    else:
        ctx.console.info(message)
        ctx.console.info("Existing data is protected; initialization is skipped.")
        if gate.marker is not None and gate.marker.timestamp:
            ctx.console.info(f"Database initialized at: {gate.marker.timestamp}")

    result = control_plane.start_application_service(ctx)
    if not result.get("ok"):
        return result
    user_count = init_gatekeeper.count_rows(ctx, ctx.config.key_table) if gate.schema_present else 0
    ctx.console.info(f"Existing users in database: {user_count}")
    payload = {"ok": True, "decision": decision.value, "user_count": user_count}
    if decision is InitDecision.WARN:
        payload["warning"] = message
    return payload


def show_access_info(ctx):
    cfg = ctx.config
    host = cfg.public_host
    console = ctx.console
    console.line()
    console.banner("XBoard-Distro deployment complete", color="green")
    console.line("Access:")
    console.line(f"  Panel:       https://{host}:{cfg.web_port}")
    console.line(f"  OAuth login: https://{host}:{cfg.web_port}/oauth_auto_login")
    console.line(f"  Admin:       https://{host}:{cfg.web_port}/{{admin_path}}")
    console.line("Port mapping:")
    console.line(f"  {cfg.web_port} -> {CONTAINER_WEB_PORT}    (panel)")
    console.line(f"  {cfg.reality_port} -> {CONTAINER_REALITY_PORT}  (REALITY)")
    console.line(f"  {cfg.hy2_port} -> {CONTAINER_HY2_PORT}/udp (Hysteria2)")
    console.line(f"Persistent data: {cfg.data_root}")
    for host_dir, target in cfg.volume_dirs():
        console.line(f"  {host_dir.name:<8} {host_dir} -> {target}")
    console.line("Removing the container never deletes data; use 'redeploy' to rebuild it.")
    console.line()
    return {"ok": True}


def deploy(ctx):
    """Fresh deployment: volumes, container, readiness, gatekeeper, verification."""
    prober = build_prober(ctx)
    outcome = {}

    def _gate_step():
        result = initialize_or_start(ctx)
        outcome.update(result)
        return result

    result = run_steps(ctx, "deploy", [
        ("create_data_dirs", lambda: control_plane.create_data_dirs(ctx)),
        ("remove_old_container", lambda: control_plane.remove_old_container(ctx)),
        ("launch_container", lambda: control_plane.launch_container(ctx)),
        ("wait_for_database", lambda: wait_for_database(ctx, prober)),
        ("initialize_or_start", _gate_step),
        ("verify_services", lambda: control_plane.verify_services(ctx, prober)),
        ("show_access_info", lambda: show_access_info(ctx)),
    ])
    if not result.get("ok"):
        return result
    result.update({key: outcome[key] for key in ("decision", "user_count", "warning", "marker") if key in outcome})
    return result


def redeploy(ctx):
    """Recreate the container on existing volumes; gatekeeper normally resolves to SKIP."""
    ctx.console.warn("This removes the container but keeps all data.")
    ctx.console.info("Initialization is skipped automatically when a database already exists.")
    return deploy(ctx)


def start(ctx):
    missing = control_plane.require_container(ctx, running=False)
    if missing:
        return missing
    ctx.console.info("Starting container...")
    ctx.runtime.start(ctx.config.container_name)
    ctx.sleep(ctx.config.service_settle_seconds)
    result = control_plane.start_application_service(ctx)
    if not result.get("ok"):
        return result
    ctx.console.info("Container started.")
    return show_access_info(ctx)


def stop(ctx):
    missing = control_plane.require_container(ctx, running=False)
    if missing:
        return missing
    ctx.console.info("Stopping container...")
    if ctx.runtime.is_running(ctx.config.container_name):
        control_plane.stop_application_service(ctx)
        ctx.sleep(2)
    ctx.runtime.stop(ctx.config.container_name)
    ctx.log_action("container-stop", command=ctx.config.container_name)
    ctx.console.info("Container stopped.")
    return {"ok": True}


def restart(ctx):
    missing = control_plane.require_container(ctx, running=False)
    if missing:
        return missing
    ctx.console.info("Restarting container...")
    if ctx.runtime.is_running(ctx.config.container_name):
        control_plane.stop_application_service(ctx)
        ctx.sleep(2)
    ctx.runtime.restart(ctx.config.container_name)
    ctx.sleep(ctx.config.service_settle_seconds)
    result = control_plane.start_application_service(ctx)
    if not result.get("ok"):
        return result
    ctx.log_action("container-restart", command=ctx.config.container_name)
    ctx.console.info("Container restarted.")
    return {"ok": True}


def collect_appliance_state(ctx, prober=None):
    """Derive a fresh ApplianceState from the runtime and persisted evidence."""
    state = ApplianceState()
    name = ctx.config.container_name
    state.container_present = ctx.runtime.exists(name)
    state.container_running = state.container_present and ctx.runtime.is_running(name)
    state.data_initialized = init_gatekeeper.data_present(ctx)
    if state.container_running:
        prober = prober or build_prober(ctx)
        state.database_reachable = prober.ping_database()
        if state.database_reachable:
            state.schema_present = init_gatekeeper.schema_present(ctx) is True
    return state


def status(ctx):
    """Print container, service, database, and persisted-data status."""
    cfg = ctx.config
    console = ctx.console
    prober = build_prober(ctx)
    state = collect_appliance_state(ctx, prober)
    report = {"ok": True, "state": state}

    console.banner("XBoard-Distro status")
    if state.container_running:
        console.info("Container: running")
        described = ctx.runtime.describe(cfg.container_name) or {}
        console.line(f"  {described.get('name', cfg.container_name)}  {described.get('status', '')}  {control_plane.format_published_ports(described.get('ports'))}")
        console.line("Services:")
        rows = prober.service_processes()
        for row in rows:
            console.line(f"  {row}")
        if not rows:
            console.line("  (unable to read service processes)")
        if state.database_reachable:
            console.info("MySQL connection: OK")
            counts = {
                "users": init_gatekeeper.count_rows(ctx, "users", "id > 0"),
                "admins": init_gatekeeper.count_rows(ctx, "users", "is_admin = 1"),
                "orders": init_gatekeeper.count_rows(ctx, "orders"),
            }
            report["counts"] = counts
            console.line(f"  Users:  {counts['users']}")
            console.line(f"  Admins: {counts['admins']}")
            console.line(f"  Orders: {counts['orders']}")
        else:
            console.error("MySQL connection: FAILED")
    elif state.container_present:
        console.error("Container: stopped (use 'start')")
    else:
        console.error("Container: not found (use 'deploy')")

    console.banner("Persistent data")
    if not cfg.data_root.is_dir():
        console.error("Data root does not exist")
        return report
    console.line(f"Data root: {cfg.data_root}")
    for host_dir, _target in cfg.volume_dirs():
        if host_dir.is_dir():
            console.line(f"  {host_dir.name + ':':<10} {format_file_size(directory_size(host_dir))}")
    if cfg.database_data_dir.is_dir():
        console.info("Database files: present")
        console.line(f"  Database size: {format_file_size(directory_size(cfg.data_root / 'mysql'))}")
        console.line(f"  Table files:   {count_files(cfg.database_data_dir, '*.ibd')}")
    else:
        console.warn("Database files: missing")
    marker = init_gatekeeper.read_marker(cfg)
    if marker is not None:
        report["marker"] = marker.to_dict()
        console.line("Initialization:")
        console.line(f"  timestamp: {marker.timestamp}")
        for key, value in sorted(marker.ports_at_init.items()):
            console.line(f"  {key} port: {value}")
    return report


def verify(ctx):
    """Check key tables and admin accounts in the live database."""
    console = ctx.console
    console.step("Verifying data integrity...")
    missing = control_plane.require_container(ctx)
    if missing:
        return missing
    prober = build_prober(ctx)
    if not prober.ping_database():
        return failed("MySQL is not running or not reachable.", error="database_unreachable")
    console.info("Database connection OK")
    tables = {}
    console.line("Tables:")
    for table in VERIFY_TABLES:
        exists = init_gatekeeper.table_exists(ctx, table)
        if exists:
            count = init_gatekeeper.count_rows(ctx, table)
            tables[table] = count
            console.line(f"  ✓ {table}: {count} rows")
        elif exists is None:
            tables[table] = None
            console.line(f"  ? {table}: lookup failed")
        else:
            tables[table] = None
            console.line(f"  ✗ {table}: missing")
    console.line("Administrators:")
    schema = init_gatekeeper.safe_identifier(ctx.config.db_schema)
    result = ctx.runtime.exec(
        ctx.config.container_name,
        ["mysql", "-N", "-e", f"SELECT id, email FROM {schema}.users WHERE is_admin = 1 LIMIT 5;"],
    )
    admins = []
    if result.ok:
        for line in result.output.splitlines():
            parts = line.split()
            if len(parts) >= 2:
                admins.append({"id": parts[0], "email": parts[1]})
                console.line(f"  ID: {parts[0]}, Email: {parts[1]}")
    console.info("Verification finished")
    return {"ok": True, "tables": tables, "admins": admins}


def reset_admin(ctx):
    """Reset administrator credentials without touching user data."""
    console = ctx.console
    missing = control_plane.require_container(ctx)
    if missing:
        return missing
    console.banner("Reset administrator account", color="yellow")
    console.warn("This resets the admin password and admin path; users, subscriptions and nodes are untouched.")
    answer = ctx.prompt("Confirm admin reset? (type yes to continue)")
    if (answer or "").strip() != "yes":
        console.info("Admin reset cancelled")
        return {"ok": True, "cancelled": True}
    help_result = control_plane.run_service_command(ctx, "--help")
    if "reset-admin" in (help_result.output or ""):
        code = ctx.runtime.exec_interactive(ctx.config.container_name, control_plane.APP_SERVICE_CMD + ["reset-admin"])
        ctx.log_action("reset-admin", command=f"exit={code}")
        if code != 0:
            return failed("Admin reset command failed.", error="remote_command_failed", exit_code=code)
        return {"ok": True}
    name = ctx.config.container_name
    console.warn("The panel does not provide a reset-admin command.")
    console.line("Reset manually, either:")
    console.line(f"  docker exec -it {name} /bin/ash  then: cd /www/xboard && php artisan admin:reset")
    console.line(f"  docker exec -it {name} mysql {ctx.config.db_schema}")
    return {"ok": True, "manual": True}


def logs(ctx):
    code = ctx.runtime.stream_logs(ctx.config.container_name, follow=True)
    if code:
        return failed("Could not stream container logs.", error="logs_failed")
    return {"ok": True}


def shell(ctx):
    missing = control_plane.require_container(ctx)
    if missing:
        return missing
    ctx.console.info("Entering container shell...")
    code = ctx.runtime.exec_interactive(ctx.config.container_name, SHELL_CMD)
    return {"ok": code == 0, "exit_code": code, "message": "" if code == 0 else "Shell exited with an error."}
