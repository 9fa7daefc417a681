"""Configuration loading from CLI args, env vars, and optional YAML file.

Priority (lowest to highest): dataclass defaults, YAML file, environment
variables, CLI arguments.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable
from urllib.parse import urlsplit, urlunsplit

import yaml

from logsync.filters import Filter

logger = logging.getLogger(__name__)

OUTPUT_FORMATS = ("text", "json", "color")


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


def _parse_list(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


@dataclass(frozen=True)
class Config:
    base_url: str = "http://localhost:8080"
    ws_path: str = "/ws/logs"
    capacity: int = 10_000
    reconnect_delay: float = 2.0
    request_timeout: float = 10.0
    status_interval: float = 0.0   # 0 = no periodic status polling
    log_level: str = "INFO"
    output: str = "text"
    search: str = ""
    regex: bool = False
    levels: tuple[str, ...] = field(default_factory=tuple)
    sources: tuple[str, ...] = field(default_factory=tuple)

    @property
    def ws_url(self) -> str:
        """WebSocket endpoint derived from base_url (http→ws, https→wss)."""
        parts = urlsplit(self.base_url)
        scheme = "wss" if parts.scheme == "https" else "ws"
        path = parts.path.rstrip("/") + self.ws_path
        return urlunsplit((scheme, parts.netloc, path, "", ""))

    @property
    def initial_filter(self) -> Filter:
        return Filter.build(
            search=self.search,
            regex=self.regex,
            levels=self.levels,
            sources=self.sources,
        )


_DEFAULTS = Config()


def load_yaml_config(path: str | None) -> dict:
    """Load settings from a YAML file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    if not isinstance(data, dict):
        logger.warning("Config file %s is not a mapping, ignoring it", path)
        return {}
    logger.info("Loaded YAML config from %s", path)
    return data


def _flatten_yaml(yaml_data: dict) -> dict[str, Any]:
    """Map the sectioned YAML layout onto Config field names."""
    server = yaml_data.get("server") or {}
    engine = yaml_data.get("engine") or {}
    stream = yaml_data.get("stream") or {}
    flt = yaml_data.get("filter") or {}
    flat = {
        "base_url": server.get("url"),
        "ws_path": server.get("ws_path"),
        "request_timeout": server.get("timeout"),
        "status_interval": server.get("status_interval"),
        "capacity": engine.get("max_logs"),
        "reconnect_delay": stream.get("reconnect_delay"),
        "search": flt.get("search"),
        "regex": flt.get("regex"),
        "levels": flt.get("levels"),
        "sources": flt.get("sources"),
        "output": yaml_data.get("output"),
        "log_level": yaml_data.get("log_level"),
    }
    return {k: v for k, v in flat.items() if v is not None}


def _resolve(
    name: str,
    cli_value: Any,
    env_var: str,
    yaml_values: dict[str, Any],
    cast: Callable[[Any], Any],
) -> Any:
    if cli_value is not None:
        return cast(cli_value)
    env_value = os.environ.get(env_var)
    if env_value is not None:
        return cast(env_value)
    if name in yaml_values:
        return cast(yaml_values[name])
    return getattr(_DEFAULTS, name)


def _as_tuple(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return tuple(_parse_list(value))
    return tuple(str(v) for v in value)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return _parse_bool(value)
    return bool(value)


def load_config(cli_args=None, yaml_data: dict | None = None) -> Config:
    """Build Config from parsed CLI args, env vars, and parsed YAML data."""
    yaml_values = _flatten_yaml(yaml_data or {})

    def cli(name: str):
        return getattr(cli_args, name, None) if cli_args is not None else None

    regex_cli = True if cli("regex") else None

    config = Config(
        base_url=_resolve("base_url", cli("url"), "LOGSYNC_URL", yaml_values, str),
        ws_path=_resolve("ws_path", cli("ws_path"), "LOGSYNC_WS_PATH", yaml_values, str),
        capacity=_resolve("capacity", cli("max_logs"), "MAX_LOGS", yaml_values, int),
        reconnect_delay=_resolve(
            "reconnect_delay", cli("reconnect_delay"), "RECONNECT_DELAY", yaml_values, float,
        ),
        request_timeout=_resolve(
            "request_timeout", cli("timeout"), "REQUEST_TIMEOUT", yaml_values, float,
        ),
        status_interval=_resolve(
            "status_interval", cli("status_interval"), "STATUS_INTERVAL", yaml_values, float,
        ),
        log_level=_resolve("log_level", cli("log_level"), "LOG_LEVEL", yaml_values, str).upper(),
        output=_resolve("output", cli("output"), "OUTPUT_FORMAT", yaml_values, str).lower(),
        search=_resolve("search", cli("search"), "LOG_SEARCH", yaml_values, str),
        regex=_resolve("regex", regex_cli, "LOG_REGEX", yaml_values, _as_bool),
        levels=_resolve("levels", cli("levels"), "LOG_LEVELS", yaml_values, _as_tuple),
        sources=_resolve("sources", cli("sources"), "LOG_SOURCES", yaml_values, _as_tuple),
    )

    if config.capacity <= 0:
        raise ValueError(f"max logs must be positive, got {config.capacity}")
    if config.output not in OUTPUT_FORMATS:
        raise ValueError(f"output must be one of {OUTPUT_FORMATS}, got {config.output!r}")
    return config
