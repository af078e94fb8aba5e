"""
rpcsnoop Configuration Management
=================================
Defaults, the optional YAML config file, environment overrides and the
suppression-rule grammar shared by the config file and the CLI.
"""

from __future__ import annotations

import os
import urllib.parse
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import yaml
from platformdirs import user_config_dir

from rpcsnoop.errors import ConfigError

APP_NAME = "rpcsnoop"

# ── paths ────────────────────────────────────────────────────────────────────

CONFIG_DIR = Path(user_config_dir(APP_NAME))
CONFIG_FILE = CONFIG_DIR / "config.yaml"


# ── default config ───────────────────────────────────────────────────────────

DEFAULT_RPC_MODULES = ["eth", "net", "web3"]

DEFAULT_CONFIG: Dict[str, Any] = {
    "endpoint": "",
    "bind_address": "127.0.0.1",
    "port": 3000,
    "log_headers": False,
    "color": True,
    "suppress_methods": [],
    "suppress_paths": [],
    "rpc_modules_override": None,
    "drop_request_rate": 0,
    "drop_response_rate": 0,
    "drop_delay": 12.0,
    "seed": None,
    "timeout": None,
    "verbose": False,
}

SUPPRESS_HELP = """
LINES=n specifies the degree of suppression:
    n < 0 Ignore message completely and log nothing [default]
    n = 0 Log that message occurred, but don't print any JSON
    n > 0 Log at most n lines of JSON
TYPE is one of:
    REQUEST:  Suppress request log
    RESPONSE: Suppress response log
    ALL:      Suppress both logs [default]"""


# ── suppression rules ────────────────────────────────────────────────────────

class SuppressScope(str, Enum):
    REQUEST = "REQUEST"
    RESPONSE = "RESPONSE"
    ALL = "ALL"

    @classmethod
    def from_str(cls, value: str) -> "SuppressScope":
        try:
            return cls(value.strip().upper())
        except ValueError:
            raise ConfigError(
                f"invalid suppression type {value!r} (expected REQUEST, RESPONSE or ALL)"
            ) from None


@dataclass(frozen=True)
class SuppressRule:
    lines: int = -1
    scope: SuppressScope = SuppressScope.ALL


def parse_suppress(value: str) -> Tuple[str, SuppressRule]:
    """Parse ``NAME[:LINES][:TYPE]`` into ``(name, rule)``.

    A single trailing field is LINES when it is an integer, TYPE otherwise.
    """
    parts = value.split(":")
    if len(parts) > 3:
        raise ConfigError(f"too many ':' separated fields in {value!r}")
    name = parts[0]
    if not name:
        raise ConfigError(f"missing method or path in {value!r}")

    lines = -1
    scope = SuppressScope.ALL
    if len(parts) == 2 and parts[1]:
        try:
            lines = int(parts[1])
        except ValueError:
            scope = SuppressScope.from_str(parts[1])
    elif len(parts) == 3:
        if parts[1]:
            try:
                lines = int(parts[1])
            except ValueError:
                raise ConfigError(f"LINES must be an integer in {value!r}") from None
        if parts[2]:
            scope = SuppressScope.from_str(parts[2])

    return name, SuppressRule(lines=lines, scope=scope)


def parse_suppress_list(values: Iterable[str]) -> Dict[str, SuppressRule]:
    """Parse several suppress values; later entries win for the same name."""
    rules: Dict[str, SuppressRule] = {}
    for value in values:
        name, rule = parse_suppress(value)
        rules[name] = rule
    return rules


def parse_endpoint(uri: str) -> str:
    """Validate an upstream endpoint URI and return it unchanged."""
    parsed = urllib.parse.urlsplit(uri)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ConfigError(f"RPC endpoint must be an http(s) URI, got {uri!r}")
    try:
        parsed.port
    except ValueError as e:
        raise ConfigError(f"invalid port in RPC endpoint {uri!r}: {e}") from None
    return uri


# ── runtime config ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ProxyConfig:
    """Immutable startup configuration shared by every exchange."""
    endpoint: str
    bind_address: str = "127.0.0.1"
    port: int = 3000
    suppress_methods: Mapping[str, SuppressRule] = field(default_factory=dict)
    suppress_paths: Mapping[str, SuppressRule] = field(default_factory=dict)
    rpc_modules_override: Optional[Tuple[str, ...]] = None
    drop_request_rate: float = 0.0
    drop_response_rate: float = 0.0
    drop_delay: float = 12.0
    log_headers: bool = False
    color: bool = True
    seed: Optional[int] = None
    timeout: Optional[float] = None
    verbose: bool = False

    def __post_init__(self):
        for name in ("drop_request_rate", "drop_response_rate"):
            rate = getattr(self, name)
            if not 0.0 <= rate <= 1.0:
                raise ConfigError(f"{name} must be within [0, 1], got {rate}")
        if self.drop_delay < 0:
            raise ConfigError(f"drop_delay must not be negative, got {self.drop_delay}")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout}")
        # Freeze the rule tables as well as the attributes.
        object.__setattr__(self, "suppress_methods", MappingProxyType(dict(self.suppress_methods)))
        object.__setattr__(self, "suppress_paths", MappingProxyType(dict(self.suppress_paths)))
        if self.rpc_modules_override is not None:
            object.__setattr__(self, "rpc_modules_override", tuple(self.rpc_modules_override))


def load_config(
    config_file: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> ProxyConfig:
    """Load configuration from defaults, disk, env vars and CLI overrides.

    ``overrides`` entries whose value is ``None`` are ignored so that unset
    CLI options fall through to the file and environment.
    """
    path = config_file or CONFIG_FILE
    raw: Dict[str, Any] = {}

    if path.exists():
        with open(path) as f:
            try:
                raw = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"cannot parse {path}: {e}") from None
        if not isinstance(raw, dict):
            raise ConfigError(f"{path} must contain a mapping")
    elif config_file is not None:
        raise ConfigError(f"config file {path} does not exist")

    merged = _deep_merge(DEFAULT_CONFIG, raw)

    # Env-var overrides
    if os.environ.get("RPCSNOOP_ENDPOINT"):
        merged["endpoint"] = os.environ["RPCSNOOP_ENDPOINT"]
    if os.environ.get("RPCSNOOP_BIND_ADDRESS"):
        merged["bind_address"] = os.environ["RPCSNOOP_BIND_ADDRESS"]
    if os.environ.get("RPCSNOOP_PORT"):
        merged["port"] = os.environ["RPCSNOOP_PORT"]
    if os.environ.get("RPCSNOOP_DROP_DELAY"):
        merged["drop_delay"] = os.environ["RPCSNOOP_DROP_DELAY"]
    if env_disables_color():
        merged["color"] = False

    for key, value in (overrides or {}).items():
        if value is not None:
            merged[key] = value

    return build_config(merged)


def env_disables_color() -> bool:
    """``RPCSNOOP_NO_COLOR`` or the conventional ``NO_COLOR`` is set."""
    return bool(os.environ.get("RPCSNOOP_NO_COLOR") or os.environ.get("NO_COLOR"))


def build_config(merged: Dict[str, Any]) -> ProxyConfig:
    """Convert a merged settings dict into a :class:`ProxyConfig`."""
    if not merged.get("endpoint"):
        raise ConfigError("no RPC endpoint given")

    try:
        port = int(merged["port"])
        drop_delay = float(merged["drop_delay"])
        timeout = float(merged["timeout"]) if merged.get("timeout") is not None else None
        seed = int(merged["seed"]) if merged.get("seed") is not None else None
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid numeric setting: {e}") from None

    modules = merged.get("rpc_modules_override")
    return ProxyConfig(
        endpoint=parse_endpoint(str(merged["endpoint"])),
        bind_address=str(merged["bind_address"]),
        port=port,
        suppress_methods=parse_suppress_list(_as_list(merged.get("suppress_methods"))),
        suppress_paths=parse_suppress_list(_as_list(merged.get("suppress_paths"))),
        rpc_modules_override=tuple(_as_list(modules)) if modules is not None else None,
        drop_request_rate=_percent(merged.get("drop_request_rate"), "drop_request_rate"),
        drop_response_rate=_percent(merged.get("drop_response_rate"), "drop_response_rate"),
        drop_delay=drop_delay,
        log_headers=bool(merged.get("log_headers")),
        color=bool(merged.get("color", True)),
        seed=seed,
        timeout=timeout,
        verbose=bool(merged.get("verbose")),
    )


def _percent(value: Any, name: str) -> float:
    """Integer percent (0-100) to a probability."""
    try:
        percent = int(value or 0)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer percentage, got {value!r}") from None
    if not 0 <= percent <= 100:
        raise ConfigError(f"{name} must be within 0..100, got {percent}")
    return percent / 100.0


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v) for v in value]


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    result = base.copy()
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result
