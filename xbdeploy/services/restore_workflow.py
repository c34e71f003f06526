"""Restore operations: destroy and replace all data volumes from an archive."""

from pathlib import Path
import tarfile

from xbdeploy.core.filesystem_utils import clear_directory, directory_has_entries, is_within, list_archive_files
from xbdeploy.services import control_plane
from xbdeploy.services import lifecycle
from xbdeploy.services import preconditions
from xbdeploy.services.bootstrap import failed, run_steps

CONFIRM_TOKEN = "YES"


def _restore_failed(message, error="restore_failed"):
    """Return normalized restore failure payload."""
    return failed(message, error=error)


def _print_available_archives(ctx):
    ctx.console.line("Available backups:")
    archives = list_archive_files(ctx.config.backup_dir, control_plane.ARCHIVE_PATTERN)
    for item in archives:
        ctx.console.line(f"  {item['path']}  {item['size_text']}")
    if not archives:
        ctx.console.line("  (none)")


def validate_archive(ctx, archive_path):
    """Return the archive Path, or a failure payload when it cannot be restored."""
    if not archive_path:
        ctx.console.error("A backup archive path is required: restore /path/to/backup.tar.gz")
        _print_available_archives(ctx)
        return _restore_failed("Backup archive path is required.", error="precondition_failed")
    path = Path(archive_path)
    if not path.is_file():
        return _restore_failed(f"Backup archive not found: {path}", error="precondition_failed")
    if is_within(path, ctx.config.data_root):
        # The data root is wiped before extraction; the archive would go with it.
        return _restore_failed(
            f"Backup archive {path} lies inside the data root {ctx.config.data_root}; move it elsewhere first.",
            error="precondition_failed",
        )
    if not tarfile.is_tarfile(path):
        return _restore_failed("Backup archive is invalid or corrupted.", error="precondition_failed")
    return path


def confirm_restore(ctx):
    """Require the operator to type YES; anything else cancels."""
    ctx.console.banner("DATA RESTORE", color="yellow")
    ctx.console.warn("Restoring will OVERWRITE ALL existing data!")
    ctx.console.warn("This includes users, subscriptions, and node configuration.")
    answer = ctx.prompt(f"Continue? (type {CONFIRM_TOKEN} to continue)")
    return (answer or "").strip() == CONFIRM_TOKEN


def take_pre_restore_snapshot(ctx):
    """Archive the current data root before it is destroyed."""
    cfg = ctx.config
    if not cfg.pre_restore_snapshot or not directory_has_entries(cfg.data_root):
        return {"ok": True, "snapshot": None}
    snapshot = control_plane.new_archive_path(cfg.backup_dir, suffix="-pre-restore")
    ctx.console.step(f"Saving pre-restore snapshot: {snapshot.name}")
    try:
        control_plane.pack_data_root(cfg.data_root, snapshot)
    except (OSError, tarfile.TarError) as exc:
        ctx.log_exception("restore/pre_restore_snapshot", exc)
        return _restore_failed(
            f"Failed to create pre-restore snapshot; restore cancelled and data left untouched (run redeploy to bring the appliance back). {exc}",
            error="pre_restore_snapshot_failed",
        )
    ctx.log_action("restore-snapshot", command=snapshot.name)
    return {"ok": True, "snapshot": str(snapshot)}


def unpack_archive(data_root, archive_path):
    """Replace the entire data root with the archive's contents."""
    clear_directory(data_root)
    with tarfile.open(archive_path, "r:*") as tar:
        tar.extractall(path=str(data_root), filter="tar")


def replace_data(ctx, archive_path):
    ctx.console.step("Restoring data...")
    try:
        unpack_archive(ctx.config.data_root, archive_path)
    except (OSError, tarfile.TarError) as exc:
        ctx.log_exception("restore/unpack", exc)
        return _restore_failed(f"Restore extraction failed: {exc}")
    ctx.console.info("Data restored; starting container...")
    return {"ok": True}


def restore_data(ctx, archive_path):
    """Validate, confirm, then destroy and replace all volumes and restart the appliance."""
    misplaced = preconditions.check_layout(ctx)
    if misplaced is not None:
        return misplaced
    checked = validate_archive(ctx, archive_path)
    if isinstance(checked, dict):
        return checked
    if not confirm_restore(ctx):
        ctx.console.info("Restore cancelled")
        ctx.log_action("restore", command=checked.name, rejection_message="operator did not confirm")
        return {"ok": True, "cancelled": True, "message": "Restore cancelled."}

    prober = lifecycle.build_prober(ctx)
    outcome = {}

    def _start_step():
        result = lifecycle.initialize_or_start(ctx, allow_init=False)
        outcome.update(result)
        return result

    def _snapshot_step():
        result = take_pre_restore_snapshot(ctx)
        outcome["pre_restore_snapshot"] = result.get("snapshot")
        return result

    result = run_steps(ctx, "restore", [
        ("remove_old_container", lambda: control_plane.remove_old_container(ctx)),
        ("pre_restore_snapshot", _snapshot_step),
        ("replace_data", lambda: replace_data(ctx, checked)),
        ("launch_container", lambda: control_plane.launch_container(ctx)),
        ("wait_for_database", lambda: lifecycle.wait_for_database(ctx, prober)),
        ("start_services", _start_step),
        ("verify_services", lambda: control_plane.verify_services(ctx, prober)),
        ("show_access_info", lambda: lifecycle.show_access_info(ctx)),
    ])
    if not result.get("ok"):
        result.setdefault("pre_restore_snapshot", outcome.get("pre_restore_snapshot"))
        return result
    result.update({
        "archive": str(checked),
        "pre_restore_snapshot": outcome.get("pre_restore_snapshot"),
        "decision": outcome.get("decision"),
    })
    if outcome.get("warning"):
        result["warning"] = outcome["warning"]
    return result
