"""Typed appliance configuration, runtime context, and state records."""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable


# Host subdirectory -> container mount point. Volumes outlive the container.
VOLUME_LAYOUT = (
    ("mysql", "/var/lib/mysql"),
    ("xboard", "/www/xboard"),
    ("xrayr", "/etc/XrayR"),
    ("caddy", "/etc/caddy"),
    ("oauth2", "/home/oauth2"),
    ("certs", "/root/.caddy"),
    ("logs", "/var/log"),
    ("config", "/opt/config"),
)

# Fixed container-internal ports of the appliance image.
CONTAINER_WEB_PORT = 16443
CONTAINER_REALITY_PORT = 443
CONTAINER_HY2_PORT = 4443
DATABASE_PORT = 3306

MARKER_FILENAME = ".initialized"


@dataclass(frozen=True)
class ApplianceConfig:
    """Immutable settings for one managed appliance."""
    container_name: str
    image_name: str
    data_root: Path
    backup_dir: Path
    log_dir: Path
    web_port: int
    reality_port: int
    hy2_port: int
    db_schema: str
    key_table: str
    readiness_interval_seconds: float
    readiness_max_ticks: int
    manual_start_at_tick: int
    diagnostics_at_tick: int
    manual_start_wait_seconds: float
    manual_start_strategies: tuple
    container_settle_seconds: float
    service_settle_seconds: float
    quiesce_seconds: float
    backup_retention_days: int
    pre_restore_snapshot: bool
    public_host: str

    @property
    def marker_path(self) -> Path:
        return self.data_root / MARKER_FILENAME

    @property
    def database_data_dir(self) -> Path:
        """Host directory holding the application schema's table files."""
        return self.data_root / "mysql" / self.db_schema

    @property
    def lock_path(self) -> Path:
        return self.data_root.parent / f".{self.data_root.name}.lock"

    def volume_dirs(self):
        """Return ``(host_dir, container_path)`` pairs for every data volume."""
        return [(self.data_root / name, target) for name, target in VOLUME_LAYOUT]

    def host_ports(self):
        """Return ``{"web", "reality", "hy2"}`` host port mapping."""
        return {"web": self.web_port, "reality": self.reality_port, "hy2": self.hy2_port}


@dataclass
class ApplianceContext:
    """Explicit dependencies threaded through every lifecycle operation."""
    config: ApplianceConfig
    runtime: Any
    console: Any
    log_action: Callable
    log_exception: Callable
    sleep: Callable
    prompt: Callable


@dataclass
class ApplianceState:
    """Run-time belief about the managed appliance; never persisted."""
    container_present: bool = False
    container_running: bool = False
    database_reachable: bool = False
    data_initialized: bool = False
    schema_present: bool = False


@dataclass
class InitMarker:
    """Persisted evidence that one-time setup previously completed."""
    timestamp: str
    ports_at_init: dict
    initialized: bool = True

    def to_dict(self):
        return {
            "timestamp": self.timestamp,
            "ports_at_init": dict(self.ports_at_init),
            "initialized": bool(self.initialized),
        }

    @classmethod
    def from_dict(cls, payload):
        ports = payload.get("ports_at_init")
        return cls(
            timestamp=str(payload.get("timestamp") or ""),
            ports_at_init=dict(ports) if isinstance(ports, dict) else {},
            initialized=bool(payload.get("initialized")),
        )


class ReadinessState(Enum):
    WAITING = "waiting"
    READY = "ready"
    FAILED = "failed"


@dataclass
class ReadinessResult:
    """Terminal outcome of one readiness wait."""
    state: ReadinessState
    ticks: int
    diagnostics: dict = field(default_factory=dict)

    @property
    def ready(self):
        return self.state is ReadinessState.READY


class InitDecision(Enum):
    INIT = "init"
    SKIP = "skip"
    WARN = "warn"


@dataclass
class GateResult:
    """Gatekeeper evidence and the startup path it selected."""
    decision: InitDecision
    data_present: bool
    schema_present: bool
    marker: Any = None
    message: str = ""


@dataclass
class ExecResult:
    """Outcome of one command executed inside the container."""
    exit_code: Any
    output: str = ""

    @property
    def ok(self):
        return self.exit_code == 0
