import tempfile
import unittest
from pathlib import Path

from xbdeploy.core.config import load_appliance_config, resolve_config_path
from xbdeploy.core.env_config import EnvConfig


class EnvConfigTests(unittest.TestCase):
    def test_reads_basic_values(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            conf = root / "xbdeploy.env"
            conf.write_text(
                "\n".join(
                    [
                        "# appliance settings",
                        "CONTAINER_NAME=xboard-distro",
                        "export WEB_PORT=8443",
                        "READINESS_INTERVAL_SECONDS=0.5",
                        "BACKUP_DIR='./backups'",
                    ]
                ),
                encoding="utf-8",
            )
            cfg = EnvConfig(conf, root, environ={})
            self.assertEqual(cfg.get_str("CONTAINER_NAME", "x"), "xboard-distro")
            self.assertEqual(cfg.get_int("WEB_PORT", 0), 8443)
            self.assertEqual(cfg.get_float("READINESS_INTERVAL_SECONDS", 0.0), 0.5)
            self.assertEqual(cfg.get_path("BACKUP_DIR", root / "none"), root / "backups")

    def test_environment_overrides_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            conf = root / "xbdeploy.env"
            conf.write_text("WEB_PORT=8443\n", encoding="utf-8")
            cfg = EnvConfig(conf, root, environ={"WEB_PORT": "9000"})
            self.assertEqual(cfg.get_int("WEB_PORT", 0), 9000)

    def test_lists_bools_and_bad_numbers(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            conf = root / "xbdeploy.env"
            conf.write_text(
                "STRATEGIES=direct_binary, ,supervisor\nFLAG=off\nTICKS=abc\nLOW=-4\n",
                encoding="utf-8",
            )
            cfg = EnvConfig(conf, root, environ={})
            self.assertEqual(cfg.get_list("STRATEGIES", ["x"]), ["direct_binary", "supervisor"])
            self.assertFalse(cfg.get_bool("FLAG", True))
            self.assertTrue(cfg.get_bool("MISSING", True))
            self.assertEqual(cfg.get_int("TICKS", 90), 90)
            self.assertEqual(cfg.get_int("LOW", 5, minimum=1), 1)

    def test_missing_file_yields_defaults(self):
        cfg = EnvConfig(Path("/nonexistent/xbdeploy.env"), Path("/nonexistent"), environ={})
        self.assertEqual(cfg.get_str("CONTAINER_NAME", "fallback"), "fallback")


class ApplianceConfigTests(unittest.TestCase):
    def test_defaults_match_appliance_layout(self):
        config = load_appliance_config("/nonexistent/xbdeploy.env", environ={})
        self.assertEqual(config.container_name, "xboard-distro")
        self.assertEqual(config.data_root, Path("/opt/xboard-distro"))
        self.assertEqual((config.web_port, config.reality_port, config.hy2_port), (19999, 29443, 29444))
        self.assertEqual(config.readiness_max_ticks, 90)
        self.assertEqual(config.manual_start_at_tick, 15)
        self.assertEqual(config.diagnostics_at_tick, 30)
        self.assertEqual(config.manual_start_strategies, ("service_manager", "direct_binary", "supervisor"))
        self.assertEqual(config.marker_path, Path("/opt/xboard-distro/.initialized"))
        self.assertEqual(config.database_data_dir, Path("/opt/xboard-distro/mysql/xboard"))
        self.assertEqual(config.lock_path, Path("/opt/.xboard-distro.lock"))
        self.assertEqual(len(config.volume_dirs()), 8)

    def test_file_and_env_settings(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            conf = root / "xbdeploy.env"
            conf.write_text(
                "DATA_ROOT=data\nMANUAL_START_STRATEGIES=supervisor\nPRE_RESTORE_SNAPSHOT=no\n",
                encoding="utf-8",
            )
            config = load_appliance_config(conf, environ={"HY2_PORT": "30444"})
            self.assertEqual(config.data_root, root / "data")
            self.assertEqual(config.manual_start_strategies, ("supervisor",))
            self.assertFalse(config.pre_restore_snapshot)
            self.assertEqual(config.hy2_port, 30444)

    def test_resolve_config_path_order(self):
        self.assertEqual(resolve_config_path("/tmp/a.env", {"XBDEPLOY_CONFIG": "/tmp/b.env"}), Path("/tmp/a.env"))
        self.assertEqual(resolve_config_path(None, {"XBDEPLOY_CONFIG": "/tmp/b.env"}), Path("/tmp/b.env"))
        self.assertEqual(resolve_config_path(None, {}), Path("/etc/xbdeploy.env"))


if __name__ == "__main__":
    unittest.main()
