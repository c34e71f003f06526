"""Command-line entrypoint for managing the XBoard-Distro appliance.

Commands:
- deploy / redeploy: bring the appliance up, initializing only on first run
- start / stop / restart / logs / shell: day-to-day container control
- backup / restore: archive and replace all persisted data
- status / verify / reset-admin: inspection and admin maintenance
"""

import logging
import sys
import time

import click

from xbdeploy.core.config import load_appliance_config
from xbdeploy.core.logging_setup import Console, build_loggers
from xbdeploy.services import control_plane
from xbdeploy.services import lifecycle
from xbdeploy.services import preconditions
from xbdeploy.services import restore_workflow
from xbdeploy.services.container_runtime import DockerRuntime
from xbdeploy.state import ApplianceContext


def _prompt(text):
    return click.prompt(text, default="", show_default=False)


def build_context(config_path=None):
    """Wire config, runtime, console, and loggers into one ApplianceContext."""
    config = load_appliance_config(config_path)
    log_action, log_exception = build_loggers(config.log_dir)
    return ApplianceContext(
        config=config,
        runtime=DockerRuntime(),
        console=Console(),
        log_action=log_action,
        log_exception=log_exception,
        sleep=time.sleep,
        prompt=_prompt,
    )


def _finish(ctx, result):
    """Report a workflow payload and exit non-zero on failure."""
    if result is None:
        return
    if not result.get("ok"):
        ctx.console.error(result.get("message") or "Operation failed.")
        sys.exit(1)
    if result.get("warning"):
        ctx.console.warn(result["warning"])


def _guarded(ctx, operation, func, *, ports=False, root=True):
    """Run preconditions, then ``func`` under the data-root operation lock."""
    failure = preconditions.run_preconditions(ctx, root=root, runtime=True, ports=ports)
    if failure is not None:
        _finish(ctx, failure)
        return
    with preconditions.operation_lock(ctx.config) as acquired:
        if not acquired:
            _finish(ctx, {"ok": False, "error": "operation_locked",
                          "message": f"Another {ctx.config.container_name} operation is already in progress."})
            return
        try:
            result = func()
        except Exception as exc:
            ctx.log_exception(operation, exc)
            result = {"ok": False, "error": f"{operation}_failed", "message": f"{operation} failed: {exc}"}
    _finish(ctx, result)


@click.group()
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None,
              help="KEY=VALUE config file (default: $XBDEPLOY_CONFIG or /etc/xbdeploy.env).")
@click.option("-v", "--verbose", is_flag=True, help="Show runtime debug logging.")
@click.pass_context
def cli(click_ctx, config_path, verbose):
    """XBoard-Distro persistent deployment manager."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="[%(asctime)s] %(levelname)-8s %(name)s  %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if click_ctx.obj is None:
        click_ctx.obj = build_context(config_path)


@cli.command()
@click.pass_obj
def deploy(ctx):
    """Full deployment (initializes only when no data exists)."""
    ctx.console.banner("XBoard-Distro deployment")
    _guarded(ctx, "deploy", lambda: lifecycle.deploy(ctx), ports=True)


@cli.command()
@click.option("-y", "--yes", is_flag=True, help="Do not ask for confirmation.")
@click.pass_obj
def redeploy(ctx, yes):
    """Recreate the container, keeping all existing data."""
    ctx.console.banner("XBoard-Distro redeployment")
    if not yes:
        click.confirm("The container will be recreated; data is kept. Continue?", default=True, abort=True)
    _guarded(ctx, "redeploy", lambda: lifecycle.redeploy(ctx), ports=True)


@cli.command()
@click.pass_obj
def backup(ctx):
    """Back up all persisted data."""
    _guarded(ctx, "backup", lambda: control_plane.backup_data(ctx))


@cli.command()
@click.argument("archive", required=False)
@click.pass_obj
def restore(ctx, archive):
    """Restore all data from ARCHIVE (destructive)."""
    if not archive:
        _finish(ctx, restore_workflow.validate_archive(ctx, archive))
        return
    _guarded(ctx, "restore", lambda: restore_workflow.restore_data(ctx, archive))


@cli.command()
@click.pass_obj
def status(ctx):
    """Show container, service, and data status."""
    failure = preconditions.run_preconditions(ctx, root=False, runtime=True)
    _finish(ctx, failure or lifecycle.status(ctx))


@cli.command()
@click.pass_obj
def verify(ctx):
    """Verify key tables and admin accounts."""
    failure = preconditions.run_preconditions(ctx, root=False, runtime=True)
    _finish(ctx, failure or lifecycle.verify(ctx))


@cli.command()
@click.pass_obj
def start(ctx):
    """Start the container and panel services."""
    _guarded(ctx, "start", lambda: lifecycle.start(ctx))


@cli.command()
@click.pass_obj
def stop(ctx):
    """Stop the panel services and the container."""
    _guarded(ctx, "stop", lambda: lifecycle.stop(ctx))


@cli.command()
@click.pass_obj
def restart(ctx):
    """Restart the container and panel services."""
    _guarded(ctx, "restart", lambda: lifecycle.restart(ctx))


@cli.command(name="reset-admin")
@click.pass_obj
def reset_admin(ctx):
    """Reset the administrator account only."""
    failure = preconditions.run_preconditions(ctx, root=True, runtime=True)
    _finish(ctx, failure or lifecycle.reset_admin(ctx))


@cli.command()
@click.pass_obj
def logs(ctx):
    """Follow container logs."""
    failure = preconditions.run_preconditions(ctx, root=False, runtime=True)
    _finish(ctx, failure or lifecycle.logs(ctx))


@cli.command()
@click.pass_obj
def shell(ctx):
    """Open a shell inside the container."""
    failure = preconditions.run_preconditions(ctx, root=False, runtime=True)
    _finish(ctx, failure or lifecycle.shell(ctx))


def main():
    cli()


if __name__ == "__main__":
    main()
