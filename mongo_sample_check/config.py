from __future__ import annotations

import copy
import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from mongo_sample_check.sampling import MODES, SKIP


@dataclass(frozen=True)
class ClusterConfig:
    uri: str


@dataclass(frozen=True)
class SamplingConfig:
    count: int = 100
    rate: float = 0.1
    mode: str = SKIP  # skip | sample | sampleRate | rand
    seed: Optional[int] = None
    timeout_ms: int = 60_000


@dataclass(frozen=True)
class CheckConfig:
    indexes: bool = False
    continue_not_exist: bool = False


@dataclass(frozen=True)
class LoggingConfig:
    main_log: Optional[str] = None
    output_dir: Optional[str] = None


@dataclass(frozen=True)
class AppConfig:
    source: ClusterConfig
    destination: ClusterConfig
    database: str
    collection: Optional[str] = None
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    checks: CheckConfig = field(default_factory=CheckConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


class ConfigError(ValueError):
    pass


_ENV_VAR_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

# Environment variables that replace a value from the config file.
_ENV_OVERRIDES = {
    "SOURCE_MONGODB_URI": ("source", "uri"),
    "TARGET_MONGODB_URI": ("destination", "uri"),
    "MONGODB_DATABASE": ("database",),
}


def _env_nonempty(name: str) -> Optional[str]:
    value = os.environ.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _expand_env(value: str, where: str) -> str:
    def repl(match: re.Match[str]) -> str:
        var = match.group(1)
        env_val = _env_nonempty(var)
        if env_val is None:
            raise ConfigError(f"Missing environment variable {var} referenced at {where}")
        return env_val

    return _ENV_VAR_RE.sub(repl, value)


def _expand_env_in_obj(obj: Any, where: str) -> Any:
    if isinstance(obj, str):
        return _expand_env(obj, where) if "${" in obj else obj
    if isinstance(obj, list):
        return [_expand_env_in_obj(v, f"{where}[{i}]") for i, v in enumerate(obj)]
    if isinstance(obj, dict):
        return {k: _expand_env_in_obj(v, f"{where}.{k}") for k, v in obj.items()}
    return obj


def _set_path(raw: dict[str, Any], path: tuple[str, ...], value: Any) -> None:
    node = raw
    for part in path[:-1]:
        child = node.get(part)
        if child is None:
            child = {}
            node[part] = child
        if not isinstance(child, dict):
            raise ConfigError(f"Expected object/map at {'.'.join(path[:-1])}")
        node = child
    node[path[-1]] = value


def _require(mapping: Mapping[str, Any], key: str, where: str) -> Any:
    if key not in mapping or mapping[key] is None:
        raise ConfigError(f"Missing required config key: {where}.{key}")
    return mapping[key]


def _as_str(value: Any, where: str) -> str:
    if not isinstance(value, str) or not value:
        raise ConfigError(f"Expected non-empty string at {where}")
    return value


def _as_int(value: Any, where: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"Expected integer at {where}")
    return value


def _as_float(value: Any, where: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"Expected number at {where}")
    return float(value)


def _as_bool(value: Any, where: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"Expected boolean at {where}")
    return value


def _as_mapping(value: Any, where: str) -> Mapping[str, Any]:
    if not isinstance(value, dict):
        raise ConfigError(f"Expected object/map at {where}")
    return value


def _optional_section(raw: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = raw.get(key, None)
    if value is None:
        return {}
    return _as_mapping(value, key)


def load_config(path: Optional[str] = None, overrides: Optional[Mapping[str, Any]] = None) -> AppConfig:
    """
    Build the run configuration.

    Precedence, highest first: `overrides` (dotted keys such as "sampling.rate", usually
    from the command line), environment variables, the config file at `path`.
    """
    raw = _expand_env_in_obj(_load_raw_config(path), "root") if path else {}
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be an object/map.")
    raw = copy.deepcopy(raw)

    for env_name, key_path in _ENV_OVERRIDES.items():
        env_val = _env_nonempty(env_name)
        if env_val is not None:
            _set_path(raw, key_path, env_val)

    for dotted, value in (overrides or {}).items():
        if value is not None:
            _set_path(raw, tuple(dotted.split(".")), value)

    return build_config(raw)


def build_config(raw: Mapping[str, Any]) -> AppConfig:
    source_raw = _as_mapping(_require(raw, "source", "root"), "source")
    destination_raw = _as_mapping(_require(raw, "destination", "root"), "destination")
    sampling_raw = _optional_section(raw, "sampling")
    checks_raw = _optional_section(raw, "checks")
    logging_raw = _optional_section(raw, "logging")

    database = _as_str(_require(raw, "database", "root"), "database")
    collection_raw = raw.get("collection")
    collection = _as_str(collection_raw, "collection") if collection_raw is not None else None

    defaults = SamplingConfig()
    count = _as_int(sampling_raw.get("count", defaults.count), "sampling.count")
    if count <= 0:
        raise ConfigError("sampling.count must be >0.")

    rate = _as_float(sampling_raw.get("rate", defaults.rate), "sampling.rate")
    if rate <= 0 or rate > 1:
        raise ConfigError("sampling.rate must be >0 and <=1.")

    mode = _as_str(sampling_raw.get("mode", defaults.mode), "sampling.mode")
    if mode not in MODES:
        raise ConfigError(f"sampling.mode must be one of: {', '.join(MODES)}.")

    seed = sampling_raw.get("seed")
    if seed is not None:
        seed = _as_int(seed, "sampling.seed")

    timeout_ms = _as_int(sampling_raw.get("timeout_ms", defaults.timeout_ms), "sampling.timeout_ms")
    if timeout_ms <= 0:
        raise ConfigError("sampling.timeout_ms must be >0.")

    main_log_raw = logging_raw.get("main_log")
    output_dir_raw = logging_raw.get("output_dir")

    return AppConfig(
        source=ClusterConfig(uri=_as_str(_require(source_raw, "uri", "source"), "source.uri")),
        destination=ClusterConfig(
            uri=_as_str(_require(destination_raw, "uri", "destination"), "destination.uri"),
        ),
        database=database,
        collection=collection,
        sampling=SamplingConfig(count=count, rate=rate, mode=mode, seed=seed, timeout_ms=timeout_ms),
        checks=CheckConfig(
            indexes=_as_bool(checks_raw.get("indexes", False), "checks.indexes"),
            continue_not_exist=_as_bool(checks_raw.get("continue_not_exist", False), "checks.continue_not_exist"),
        ),
        logging=LoggingConfig(
            main_log=_as_str(main_log_raw, "logging.main_log") if main_log_raw is not None else None,
            output_dir=_as_str(output_dir_raw, "logging.output_dir") if output_dir_raw is not None else None,
        ),
    )


def _load_raw_config(path: str) -> Any:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Config file not found: {path}")
    data = p.read_text(encoding="utf-8")
    try:
        if p.suffix.lower() == ".json":
            return json.loads(data)
        return yaml.safe_load(data) or {}
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
