"""
Configuration Module

Architectural Intent:
- Centralized configuration loading from a JSON file
- Provides typed access to every orchestrator setting
- Falls back to sensible defaults when the config file is absent
- Environment variables override file-based config

Design Decisions:
- Config is a frozen dataclass, built once and injected at construction time
  into the gateway, publisher and orchestrator (no process-wide globals)
- Nested config sections map to sub-dataclasses
- The region table is a mapping in the file and a tuple of RegionConfig in memory
"""

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import dataclasses
import json
import logging
import os

from anywhere.domain.errors import InvalidRegionError
from anywhere.domain.value_objects.region import Region

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServerConfig:
    """REST API listener configuration."""
    host: str = "127.0.0.1"
    port: int = 8080


@dataclass(frozen=True)
class DatabaseConfig:
    """Inventory store configuration."""
    path: str = "anywhere.db"


@dataclass(frozen=True)
class RegionConfig:
    """One provisionable region and the launch template used there."""
    code: str
    name: str = ""
    template_id: str = ""

    def to_region(self) -> Region:
        return Region(self.code, self.name, self.template_id)


@dataclass(frozen=True)
class AWSConfig:
    """Cloud credentials and the static region table."""
    access_key: str = ""
    secret_key: str = ""
    regions: tuple[RegionConfig, ...] = ()


@dataclass(frozen=True)
class ProxyConfig:
    """Local V2Ray daemon and endpoint settings."""
    local_config_path: str = "/usr/local/etc/v2ray/config.json"
    port: int = 10086
    relay_host: str = ""
    restart_command: str = "sudo systemctl restart v2ray"


@dataclass(frozen=True)
class SchedulerConfig:
    """Reconciliation cadence and workflow polling bounds (seconds)."""
    instance_sync_interval: float = 60
    instance_wait_timeout: float = 300
    poll_interval: float = 5
    shutdown_grace: float = 30


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    format: str = "json"  # "json" or "dev"
    log_dir: str = ""


@dataclass(frozen=True)
class TelemetryConfig:
    """OpenTelemetry configuration."""
    endpoint: str = ""
    insecure: bool = False


@dataclass(frozen=True)
class AnywhereConfig:
    """Root configuration for the orchestrator."""
    server: ServerConfig = field(default_factory=ServerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    aws: AWSConfig = field(default_factory=AWSConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    simulate: bool = False

    @property
    def region_codes(self) -> tuple[str, ...]:
        return tuple(r.code for r in self.aws.regions)

    def region(self, code: str) -> Region:
        """Look up a configured region. Raises InvalidRegionError."""
        for r in self.aws.regions:
            if r.code == code:
                return r.to_region()
        raise InvalidRegionError(code)

    def has_region(self, code: str) -> bool:
        return code in self.region_codes


def _env_override(data: dict, prefix: str = "ANYWHERE") -> dict:
    """Override config values with environment variables.

    Environment variables follow the pattern ANYWHERE_SECTION_KEY.
    For example: ANYWHERE_SERVER_PORT=9090, ANYWHERE_SCHEDULER_POLL_INTERVAL=1
    """
    for key, value in os.environ.items():
        if not key.startswith(f"{prefix}_"):
            continue
        parts = key[len(prefix) + 1:].lower().split("_", 1)
        if len(parts) == 2 and parts[0] in _SECTIONS:
            section, field_name = parts
            if not isinstance(data.get(section), dict):
                data[section] = {}
            data[section][field_name] = value
        else:
            data[key[len(prefix) + 1:].lower()] = value
    return data


def _parse_config_file(path: Path) -> dict:
    """Parse a JSON config file. Returns empty dict on failure."""
    try:
        with open(path) as f:
            return json.load(f)
    except FileNotFoundError:
        logger.debug("Config file not found: %s", path)
        return {}
    except json.JSONDecodeError as e:
        logger.warning("Invalid config file %s: %s", path, e)
        return {}


def _parse_bool(value) -> bool:
    if isinstance(value, str):
        return value.lower() in ("true", "1", "yes")
    return bool(value)


def _build_sub_config(cls, data: dict):
    """Build a sub-config dataclass from a dict, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}

    # Convert string numbers to int/float/bool
    for f in dataclasses.fields(cls):
        if f.name in filtered and isinstance(filtered[f.name], str):
            if f.type == "int":
                filtered[f.name] = int(filtered[f.name])
            elif f.type == "float":
                filtered[f.name] = float(filtered[f.name])
            elif f.type == "bool":
                filtered[f.name] = _parse_bool(filtered[f.name])

    return cls(**filtered)


def _build_regions(raw) -> tuple[RegionConfig, ...]:
    """Accept a {code: {name, template_id}} mapping or "code[:template],..."."""
    if isinstance(raw, str):
        regions = []
        for item in raw.split(","):
            item = item.strip()
            if not item:
                continue
            code, _, template_id = item.partition(":")
            regions.append(RegionConfig(code=code, template_id=template_id))
        return tuple(regions)
    if isinstance(raw, dict):
        return tuple(
            RegionConfig(
                code=code,
                name=(entry or {}).get("name", ""),
                template_id=(entry or {}).get("template_id", ""),
            )
            for code, entry in raw.items()
        )
    return ()


def _build_aws_config(data: dict) -> AWSConfig:
    data = dict(data)
    regions = _build_regions(data.pop("regions", {}))
    base = _build_sub_config(AWSConfig, data)
    return dataclasses.replace(base, regions=regions)


_SECTIONS = {
    "server",
    "database",
    "aws",
    "proxy",
    "scheduler",
    "logging",
    "telemetry",
}


def load_config(
    path: Optional[str] = None,
    env_prefix: str = "ANYWHERE",
) -> AnywhereConfig:
    """Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (ANYWHERE_SECTION_KEY)
    2. Config file values
    3. Defaults

    Args:
        path: Path to config file (JSON). Defaults to anywhere.json in CWD.
        env_prefix: Environment variable prefix. Defaults to ANYWHERE.
    """
    config_path = Path(path) if path else Path("anywhere.json")
    data = _parse_config_file(config_path)
    data = _env_override(data, env_prefix)

    config = AnywhereConfig(
        server=_build_sub_config(ServerConfig, data.get("server", {})),
        database=_build_sub_config(DatabaseConfig, data.get("database", {})),
        aws=_build_aws_config(data.get("aws", {})),
        proxy=_build_sub_config(ProxyConfig, data.get("proxy", {})),
        scheduler=_build_sub_config(SchedulerConfig, data.get("scheduler", {})),
        logging=_build_sub_config(LoggingConfig, data.get("logging", {})),
        telemetry=_build_sub_config(TelemetryConfig, data.get("telemetry", {})),
        simulate=_parse_bool(data.get("simulate", False)),
    )
    if not config.aws.regions:
        logger.warning("No regions configured in %s", config_path)
    return config
