"""Configuration loading and merging for registrar."""

import math
import os
import sys
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Mapping, Optional

import yaml


DEFAULT_EUREKA_URL = "http://172.25.136.15:8761/eureka"
DEFAULT_APP_NAME = "POCKETBASE-SERVER"
DEFAULT_PORT = 8090
DEFAULT_HEARTBEAT_INTERVAL = 300  # every 5 minutes


@dataclass
class RegistrarConfig:
    # Registry
    eureka_url: str = DEFAULT_EUREKA_URL
    registry_timeout: float = 10.0

    # Advertised instance
    app_name: str = DEFAULT_APP_NAME
    port: int = DEFAULT_PORT
    vip_address: Optional[str] = None
    data_center: str = "MyOwn"
    host_name: Optional[str] = None
    ip_address: Optional[str] = None

    # Address used to discover the outbound interface (no traffic is sent)
    identity_target: str = "8.8.8.8"

    # Heartbeat cadence and lease length (seconds); lease defaults to 3 beats
    heartbeat_interval: int = DEFAULT_HEARTBEAT_INTERVAL
    lease_duration: Optional[int] = None

    # Reachability sweep
    probe_timeout: float = 10.0
    probe_workers: int = 8

    @property
    def effective_lease_duration(self) -> int:
        return self.lease_duration or 3 * self.heartbeat_interval


# Environment variable -> (field name, converter)
ENV_VARS = {
    "EUREKA_URL": ("eureka_url", str),
    "EUREKA_APP": ("app_name", str),
    "PORT": ("port", int),
    "EUREKA_VIP": ("vip_address", str),
    "EUREKA_HOSTNAME": ("host_name", str),
    "EUREKA_IP": ("ip_address", str),
    "EUREKA_HEARTBEAT_INTERVAL": ("heartbeat_interval", int),
    "EUREKA_PROBE_TIMEOUT": ("probe_timeout", float),
}


# Fields that only make sense as positive numbers
POSITIVE_FIELDS = (
    "heartbeat_interval",
    "lease_duration",
    "probe_timeout",
    "probe_workers",
    "registry_timeout",
)


def _is_positive(value) -> bool:
    return (
        isinstance(value, (int, float)) and not isinstance(value, bool)
        and math.isfinite(value) and value > 0
    )


def _accept(config: RegistrarConfig, name: str, value, source: str) -> bool:
    """Return False (after reporting it) for a value *name* cannot take."""
    if name not in POSITIVE_FIELDS or _is_positive(value):
        return True
    if value is None and getattr(config, name) is None:
        return True
    print(
        f"[config] ignoring {source}: {name} must be positive,"
        f" keeping {getattr(config, name)!r}",
        file=sys.stderr,
    )
    return False


def load_config(path: str | Path) -> RegistrarConfig:
    """Load a RegistrarConfig from a YAML file."""
    path = Path(path)
    with open(path) as f:
        data = yaml.safe_load(f) or {}

    valid_fields = {f.name for f in fields(RegistrarConfig)}
    config = RegistrarConfig()
    for key, value in data.items():
        if key in valid_fields and _accept(config, key, value, f"{key}: {value!r} in {path.name}"):
            setattr(config, key, value)
    return config


def apply_env(config: RegistrarConfig,
              environ: Optional[Mapping[str, str]] = None) -> RegistrarConfig:
    """Overlay environment variables onto *config*.

    Unset or empty variables leave the current value alone. Values that do
    not parse, or are out of range, are reported and ignored.
    """
    environ = os.environ if environ is None else environ
    for var, (name, convert) in ENV_VARS.items():
        raw = environ.get(var, "").strip()
        if not raw:
            continue
        try:
            value = convert(raw)
        except ValueError:
            print(
                f"[config] ignoring {var}={raw!r}: expected {convert.__name__},"
                f" keeping {getattr(config, name)!r}",
                file=sys.stderr,
            )
            continue
        if _accept(config, name, value, f"{var}={raw!r}"):
            setattr(config, name, value)
    return config


def merge_cli_args(config: RegistrarConfig, args) -> RegistrarConfig:
    """Overlay CLI arguments onto an existing config. CLI values take precedence."""
    for f in fields(RegistrarConfig):
        cli_val = getattr(args, f.name, None)
        if cli_val is not None and _accept(config, f.name, cli_val, f"--{f.name.replace('_', '-')} {cli_val!r}"):
            setattr(config, f.name, cli_val)
    return config


def config_to_yaml(config: RegistrarConfig) -> str:
    """Serialize a RegistrarConfig to YAML, omitting unset optional fields."""
    data: dict = {}
    for f in fields(RegistrarConfig):
        value = getattr(config, f.name)
        if value is not None:
            data[f.name] = value
    return yaml.dump(data, default_flow_style=False, sort_keys=False)
