"""Configuration system for procdash."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit

DEFAULT_BACKGROUND_MARKERS = ["svc", "service", "daemon", "agent", "helper", "system"]


@dataclass
class StreamConfig:
    """Streaming publisher configuration."""

    interval: float = 5.0  # Seconds between pushes to each subscribed client
    max_clients: int = 0  # Maximum concurrent socket connections (0 = unlimited)


@dataclass
class SamplingConfig:
    """Background/foreground classification rules.

    A process is background if its lowercased name contains any marker,
    starts with background_prefix, or does not end with executable_suffix.
    """

    background_markers: list[str] = field(
        default_factory=lambda: list(DEFAULT_BACKGROUND_MARKERS)
    )
    background_prefix: str = "com."
    executable_suffix: str = ".exe"


@dataclass
class SystemConfig:
    """Daemon housekeeping configuration."""

    heartbeat_interval: float = 60.0  # Seconds between heartbeat log lines
    # Log file rotation
    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    stream: StreamConfig = field(default_factory=StreamConfig)
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    system: SystemConfig = field(default_factory=SystemConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "procdash"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "procdash"

    @property
    def runtime_dir(self) -> Path:
        """Runtime directory for ephemeral files (PID, socket).

        Stored in /tmp/ so it's cleared on reboot, avoiding stale file issues.
        """
        return Path("/tmp/procdash")

    @property
    def log_path(self) -> Path:
        """Daemon log path."""
        return self.state_dir / "daemon.log"

    @property
    def pid_path(self) -> Path:
        """PID file path."""
        return self.runtime_dir / "daemon.pid"

    @property
    def socket_path(self) -> Path:
        """Unix socket path for daemon IPC."""
        return self.runtime_dir / "daemon.sock"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("stream", "sampling", "system"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions, so Config() and
        Config.load() on a missing file are identical.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            stream=_load_stream_config(data.get("stream", {})),
            sampling=_load_sampling_config(data.get("sampling", {})),
            system=_load_system_config(data.get("system", {})),
        )


def _number(data: dict, key: str, default: float, section: str) -> float:
    """Read a numeric field, rejecting strings and booleans."""
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{section}.{key} must be a number, got {value!r}")
    return value


def _integer(data: dict, key: str, default: int, section: str) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{section}.{key} must be an integer, got {value!r}")
    return int(value)


def _load_stream_config(data: dict) -> StreamConfig:
    """Load stream config from TOML data, using dataclass defaults for missing fields."""
    defaults = StreamConfig()

    interval = _number(data, "interval", defaults.interval, "stream")
    max_clients = _integer(data, "max_clients", defaults.max_clients, "stream")

    if interval <= 0:
        raise ValueError(f"stream.interval must be > 0, got {interval}")
    if max_clients < 0:
        raise ValueError(f"stream.max_clients must be >= 0, got {max_clients}")

    return StreamConfig(interval=float(interval), max_clients=max_clients)


def _load_sampling_config(data: dict) -> SamplingConfig:
    """Load sampling config from TOML data."""
    d = SamplingConfig()
    markers = data.get("background_markers", d.background_markers)
    if not isinstance(markers, list):
        raise ValueError(f"sampling.background_markers must be a list, got {markers!r}")
    return SamplingConfig(
        background_markers=[str(m).lower() for m in markers],
        background_prefix=str(data.get("background_prefix", d.background_prefix)),
        executable_suffix=str(data.get("executable_suffix", d.executable_suffix)),
    )


def _load_system_config(data: dict) -> SystemConfig:
    """Load system config from TOML data."""
    d = SystemConfig()

    heartbeat_interval = _number(data, "heartbeat_interval", d.heartbeat_interval, "system")
    log_max_bytes = _integer(data, "log_max_bytes", d.log_max_bytes, "system")
    log_backup_count = _integer(data, "log_backup_count", d.log_backup_count, "system")

    if heartbeat_interval <= 0:
        raise ValueError(f"system.heartbeat_interval must be > 0, got {heartbeat_interval}")
    if log_max_bytes <= 0:
        raise ValueError(f"system.log_max_bytes must be > 0, got {log_max_bytes}")
    if log_backup_count < 0:
        raise ValueError(f"system.log_backup_count must be >= 0, got {log_backup_count}")

    return SystemConfig(
        heartbeat_interval=float(heartbeat_interval),
        log_max_bytes=log_max_bytes,
        log_backup_count=log_backup_count,
    )
