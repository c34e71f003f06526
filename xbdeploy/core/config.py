"""Runtime configuration helpers for xbdeploy."""

import os
from pathlib import Path

from xbdeploy.core.env_config import EnvConfig
from xbdeploy.state import ApplianceConfig

DEFAULT_CONFIG_PATH = Path("/etc/xbdeploy.env")
DEFAULT_STRATEGIES = ("service_manager", "direct_binary", "supervisor")


def resolve_config_path(explicit_path=None, environ=None):
    """Resolve config file path from CLI option, env, then default location."""
    if explicit_path:
        return Path(explicit_path)
    env = os.environ if environ is None else environ
    configured = (env.get("XBDEPLOY_CONFIG") or "").strip()
    if configured:
        return Path(configured)
    return DEFAULT_CONFIG_PATH


def load_appliance_config(config_path=None, environ=None):
    """Build an immutable ApplianceConfig from file values and env overrides."""
    path = resolve_config_path(config_path, environ)
    cfg = EnvConfig(path, path.parent, environ=environ)

    data_root = cfg.get_path("DATA_ROOT", Path("/opt/xboard-distro"))
    max_ticks = cfg.get_int("READINESS_MAX_TICKS", 90, minimum=1)
    return ApplianceConfig(
        container_name=cfg.get_str("CONTAINER_NAME", "xboard-distro"),
        image_name=cfg.get_str("IMAGE_NAME", "xboard-distro:v1"),
        data_root=data_root,
        backup_dir=cfg.get_path("BACKUP_DIR", Path("/opt/xboard-backups")),
        log_dir=cfg.get_path("LOG_DIR", Path("/var/log/xbdeploy")),
        web_port=cfg.get_int("WEB_PORT", 19999, minimum=1),
        reality_port=cfg.get_int("REALITY_PORT", 29443, minimum=1),
        hy2_port=cfg.get_int("HY2_PORT", 29444, minimum=1),
        db_schema=cfg.get_str("DB_SCHEMA", "xboard"),
        key_table=cfg.get_str("KEY_TABLE", "users"),
        readiness_interval_seconds=cfg.get_float("READINESS_INTERVAL_SECONDS", 2.0, minimum=0.0),
        readiness_max_ticks=max_ticks,
        manual_start_at_tick=cfg.get_int("MANUAL_START_AT_TICK", 15, minimum=1),
        diagnostics_at_tick=cfg.get_int("DIAGNOSTICS_AT_TICK", 30, minimum=1),
        manual_start_wait_seconds=cfg.get_float("MANUAL_START_WAIT_SECONDS", 5.0, minimum=0.0),
        manual_start_strategies=tuple(cfg.get_list("MANUAL_START_STRATEGIES", DEFAULT_STRATEGIES)),
        container_settle_seconds=cfg.get_float("CONTAINER_SETTLE_SECONDS", 8.0, minimum=0.0),
        service_settle_seconds=cfg.get_float("SERVICE_SETTLE_SECONDS", 5.0, minimum=0.0),
        quiesce_seconds=cfg.get_float("QUIESCE_SECONDS", 3.0, minimum=0.0),
        backup_retention_days=cfg.get_int("BACKUP_RETENTION_DAYS", 7, minimum=1),
        pre_restore_snapshot=cfg.get_bool("PRE_RESTORE_SNAPSHOT", True),
        public_host=cfg.get_str("PUBLIC_HOST", "YOUR_SERVER_IP"),
    )
