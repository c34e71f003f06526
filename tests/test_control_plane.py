import os
import shutil
import tarfile
import tempfile
import time
import unittest
from datetime import datetime
from pathlib import Path
from unittest.mock import patch

from tests.support import FakeRuntime, healthy_runtime, make_config, make_ctx
from xbdeploy.services import control_plane
from xbdeploy.services import restore_workflow
from xbdeploy.state import ExecResult


def _seed_data_root(config):
    for host_dir, _target in config.volume_dirs():
        host_dir.mkdir(parents=True, exist_ok=True)
    config.database_data_dir.mkdir(parents=True, exist_ok=True)
    (config.database_data_dir / "users.ibd").write_bytes(b"\x00users-v1\xff")
    (config.data_root / "caddy" / "Caddyfile").write_text(":16443 {\n}\n", encoding="utf-8")
    config.marker_path.write_text('{"initialized": true}\n', encoding="utf-8")


def _snapshot_tree(root):
    return {
        str(path.relative_to(root)): path.read_bytes()
        for path in sorted(Path(root).rglob("*"))
        if path.is_file()
    }


class ContainerTests(unittest.TestCase):
    def test_port_and_volume_bindings(self):
        with tempfile.TemporaryDirectory() as tmp:
            config = make_config(tmp)
            ports = control_plane.port_bindings(config)
            self.assertEqual(ports, {"16443/tcp": 19999, "443/tcp": 29443, "4443/udp": 29444})
            volumes = control_plane.volume_bindings(config)
            self.assertEqual(volumes[str(config.data_root / "mysql")], {"bind": "/var/lib/mysql", "mode": "rw"})
            self.assertEqual(len(volumes), 8)

    def test_format_published_ports(self):
        ports = {
            "443/tcp": [{"HostIp": "0.0.0.0", "HostPort": "29443"}, {"HostIp": "::", "HostPort": "29443"}],
            "16443/tcp": [{"HostIp": "0.0.0.0", "HostPort": "19999"}],
            "4443/udp": None,
        }
        self.assertEqual(control_plane.format_published_ports(ports), "19999->16443/tcp, 29443->443/tcp")
        self.assertEqual(control_plane.format_published_ports(None), "(no published ports)")

    def test_launch_failure_reports_logs(self):
        with tempfile.TemporaryDirectory() as tmp:
            runtime = FakeRuntime(exists=False)
            ctx = make_ctx(make_config(tmp), runtime)
            with patch.object(runtime, "is_running", return_value=False):
                result = control_plane.launch_container(ctx)
        self.assertFalse(result["ok"])
        self.assertEqual(result["error"], "container_start_failed")
        ctx.console.line.assert_any_call("fake logs")
        ctx.sleep.assert_called_once_with(8.0)

    def test_remove_old_container_keeps_missing_container_case_quiet(self):
        with tempfile.TemporaryDirectory() as tmp:
            runtime = FakeRuntime(exists=False)
            ctx = make_ctx(make_config(tmp), runtime)
            self.assertEqual(control_plane.remove_old_container(ctx), {"ok": True, "removed": False})
            self.assertEqual(runtime.removed, [])

    def test_require_container(self):
        with tempfile.TemporaryDirectory() as tmp:
            ctx = make_ctx(make_config(tmp), FakeRuntime(running=False))
            self.assertEqual(control_plane.require_container(ctx)["error"], "container_not_running")
            self.assertIsNone(control_plane.require_container(ctx, running=False))


class BackupTests(unittest.TestCase):
    def test_backup_quiesces_then_resumes_services(self):
        with tempfile.TemporaryDirectory() as tmp:
            config = make_config(tmp)
            _seed_data_root(config)
            events = []
            runtime = FakeRuntime()
            runtime.on(["php", "service", "stop"], lambda cmd: events.append("stop") or ExecResult(0, ""))
            runtime.on(["php", "service", "start"], lambda cmd: events.append("start") or ExecResult(0, ""))
            ctx = make_ctx(config, runtime)
            real_pack = control_plane.pack_data_root

            def _pack(data_root, archive_path):
                events.append("pack")
                return real_pack(data_root, archive_path)

            with patch.object(control_plane, "pack_data_root", side_effect=_pack):
                result = control_plane.backup_data(ctx, now=datetime(2026, 5, 1, 3, 0, 0))
            self.assertTrue(result["ok"])
            self.assertEqual(events, ["stop", "pack", "start"])
            ctx.sleep.assert_called_once_with(3.0)
            archive = Path(result["archive"])
            self.assertEqual(archive.name, "xboard-20260501-030000.tar.gz")
            self.assertTrue(tarfile.is_tarfile(archive))

    def test_backup_of_stopped_container_does_not_touch_services(self):
        with tempfile.TemporaryDirectory() as tmp:
            config = make_config(tmp)
            _seed_data_root(config)
            runtime = FakeRuntime(running=False)
            ctx = make_ctx(config, runtime)
            result = control_plane.backup_data(ctx)
            self.assertTrue(result["ok"])
            self.assertEqual(runtime.calls, [])
            ctx.sleep.assert_not_called()

    def test_pack_failure_still_resumes_services(self):
        with tempfile.TemporaryDirectory() as tmp:
            config = make_config(tmp)
            runtime = healthy_runtime()
            ctx = make_ctx(config, runtime)
            with patch.object(control_plane, "pack_data_root", side_effect=OSError("disk full")):
                result = control_plane.backup_data(ctx)
        self.assertFalse(result["ok"])
        self.assertEqual(result["error"], "backup_failed")
        self.assertEqual(runtime.commands()[-1], "php service start")

    def test_resume_failure_is_reported_with_archive(self):
        with tempfile.TemporaryDirectory() as tmp:
            config = make_config(tmp)
            _seed_data_root(config)
            runtime = FakeRuntime()
            runtime.on(["php", "service", "stop"], ExecResult(0, ""))
            runtime.on(["php", "service", "start"], ExecResult(1, "failed to start"))
            ctx = make_ctx(config, runtime)
            result = control_plane.backup_data(ctx)
            self.assertFalse(result["ok"])
            self.assertEqual(result["error"], "remote_command_failed")
            self.assertTrue(Path(result["archive"]).is_file())

    def test_new_archive_path_avoids_collisions(self):
        with tempfile.TemporaryDirectory() as tmp:
            now = datetime(2026, 5, 1, 3, 0, 0)
            first = control_plane.new_archive_path(tmp, now)
            first.write_bytes(b"")
            second = control_plane.new_archive_path(tmp, now)
            self.assertEqual(second.name, "xboard-20260501-030000_1.tar.gz")

    def test_prune_old_backups(self):
        with tempfile.TemporaryDirectory() as tmp:
            base = Path(tmp)
            now = time.time()
            old = base / "xboard-20260101-000000.tar.gz"
            fresh = base / "xboard-20260110-000000.tar.gz"
            other = base / "keep-me.tar.gz"
            for path in (old, fresh, other):
                path.write_bytes(b"x")
            os.utime(old, (now - 8 * 86400, now - 8 * 86400))
            os.utime(other, (now - 30 * 86400, now - 30 * 86400))
            removed = control_plane.prune_old_backups(base, 7, now=now)
            self.assertEqual(removed, [old.name])
            self.assertTrue(fresh.exists())
            self.assertTrue(other.exists())


class RestoreTests(unittest.TestCase):
    def test_backup_then_restore_reproduces_bytes(self):
        with tempfile.TemporaryDirectory() as tmp:
            config = make_config(tmp)
            _seed_data_root(config)
            original = _snapshot_tree(config.data_root)
            runtime = healthy_runtime(running=False)
            ctx = make_ctx(config, runtime, prompt_answer="YES")
            backup = control_plane.backup_data(ctx)
            self.assertTrue(backup["ok"])

            (config.database_data_dir / "users.ibd").write_bytes(b"changed")
            (config.data_root / "xboard" / "stray.env").write_text("x", encoding="utf-8")

            result = restore_workflow.restore_data(ctx, backup["archive"])
            self.assertTrue(result["ok"], result)
            self.assertEqual(_snapshot_tree(config.data_root), original)
            self.assertEqual(result["decision"], "skip")
            self.assertEqual(runtime.interactive_calls, [])
            self.assertEqual(len(runtime.run_calls), 1)

            snapshot = Path(result["pre_restore_snapshot"])
            self.assertTrue(snapshot.name.endswith("-pre-restore.tar.gz"))
            with tarfile.open(snapshot, "r:gz") as tar:
                names = tar.getnames()
            self.assertIn("./xboard/stray.env", names)

    def test_restore_requires_exact_confirmation(self):
        with tempfile.TemporaryDirectory() as tmp:
            config = make_config(tmp)
            _seed_data_root(config)
            runtime = FakeRuntime(running=False)
            ctx = make_ctx(config, runtime, prompt_answer="yes")
            archive = control_plane.pack_data_root(config.data_root, config.backup_dir / "xboard-manual.tar.gz")
            (config.data_root / "xboard" / "keep.txt").write_text("x", encoding="utf-8")
            result = restore_workflow.restore_data(ctx, archive)
            self.assertTrue(result["ok"])
            self.assertTrue(result["cancelled"])
            self.assertTrue((config.data_root / "xboard" / "keep.txt").exists())
            self.assertEqual(runtime.removed, [])

    def test_restore_without_archive_fails_and_lists_backups(self):
        with tempfile.TemporaryDirectory() as tmp:
            ctx = make_ctx(make_config(tmp))
            result = restore_workflow.restore_data(ctx, None)
        self.assertFalse(result["ok"])
        self.assertEqual(result["error"], "precondition_failed")
        ctx.console.line.assert_any_call("Available backups:")
        ctx.prompt.assert_not_called()

    def test_restore_rejects_non_archive(self):
        with tempfile.TemporaryDirectory() as tmp:
            bogus = Path(tmp) / "not-a-backup.tar.gz"
            bogus.write_text("plain text", encoding="utf-8")
            ctx = make_ctx(make_config(tmp))
            result = restore_workflow.restore_data(ctx, bogus)
        self.assertFalse(result["ok"])
        self.assertIn("invalid", result["message"])

    def test_restore_refuses_archive_inside_data_root(self):
        with tempfile.TemporaryDirectory() as tmp:
            config = make_config(tmp)
            _seed_data_root(config)
            outside = control_plane.pack_data_root(config.data_root, config.backup_dir / "xboard-manual.tar.gz")
            inside = config.data_root / "xboard" / "xboard-manual.tar.gz"
            shutil.copyfile(outside, inside)
            original = _snapshot_tree(config.data_root)
            runtime = healthy_runtime()
            ctx = make_ctx(config, runtime, prompt_answer="YES")
            result = restore_workflow.restore_data(ctx, inside)
            self.assertFalse(result["ok"])
            self.assertEqual(result["error"], "precondition_failed")
            self.assertIn("inside the data root", result["message"])
            self.assertEqual(_snapshot_tree(config.data_root), original)
            ctx.prompt.assert_not_called()
            self.assertEqual(runtime.removed, [])

    def test_backup_dir_inside_data_root_is_refused(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            config = make_config(tmp, backup_dir=root / "data" / "backups")
            _seed_data_root(config)
            original = _snapshot_tree(config.data_root)
            runtime = healthy_runtime()
            ctx = make_ctx(config, runtime, prompt_answer="YES")

            backup = control_plane.backup_data(ctx)
            self.assertFalse(backup["ok"])
            self.assertEqual(backup["error"], "precondition_failed")
            self.assertFalse(config.backup_dir.exists())
            self.assertEqual(runtime.calls, [])

            elsewhere = control_plane.pack_data_root(config.data_root, root / "manual" / "xboard-manual.tar.gz")
            restored = restore_workflow.restore_data(ctx, elsewhere)
            self.assertFalse(restored["ok"])
            self.assertIn("BACKUP_DIR", restored["message"])
            self.assertEqual(_snapshot_tree(config.data_root), original)
            ctx.prompt.assert_not_called()

    def test_restore_never_initializes(self):
        with tempfile.TemporaryDirectory() as tmp:
            config = make_config(tmp, pre_restore_snapshot=False)
            config.data_root.mkdir(parents=True)
            archive = control_plane.pack_data_root(config.data_root, config.backup_dir / "xboard-empty.tar.gz")
            runtime = healthy_runtime(table_count=0, running=False)
            ctx = make_ctx(config, runtime, prompt_answer="YES")
            result = restore_workflow.restore_data(ctx, archive)
        self.assertTrue(result["ok"])
        self.assertEqual(result["decision"], "warn")
        self.assertIsNone(result["pre_restore_snapshot"])
        self.assertEqual(runtime.interactive_calls, [])


if __name__ == "__main__":
    unittest.main()
