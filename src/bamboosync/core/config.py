from __future__ import annotations

import os
import uuid
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import find_dotenv, load_dotenv

from .errors import ConfigError


@dataclass
class AppSection:
    run_id: Optional[str] = None
    dry_run: bool = False


@dataclass
class BambooSection:
    base_url: str = ""
    token: str = ""          # secret, never logged in clear text
    verify_tls: bool = True
    timeout_sec: int = 30
    retries: int = 3


@dataclass
class EngineSection:
    legacy_priority_collisions: bool = False
    validate_principals: bool = True


@dataclass
class LoggingSection:
    base_dir: str = "logs"
    console_level: str = "INFO"
    file_level: str = "DEBUG"


@dataclass
class InputsSection:
    desired_path: str = "./permissions.yml"
    state_path: str = "./.bamboosync/state.yml"


@dataclass
class AppConfig:
    """Settings for one `bsync` invocation, see `load_config`."""
    app: AppSection
    bamboo: BambooSection
    engine: EngineSection
    logging: LoggingSection
    inputs: InputsSection

    @property
    def run_id(self) -> str:
        """Short hex id tying log lines of one run together; fixed once read."""
        if not self.app.run_id:
            self.app.run_id = uuid.uuid4().hex[:12]
        return self.app.run_id

    @property
    def strict_priorities(self) -> bool:
        return not self.engine.legacy_priority_collisions


_SECTIONS: Dict[str, Any] = {
    "app": AppSection,
    "bamboo": BambooSection,
    "engine": EngineSection,
    "logging": LoggingSection,
    "inputs": InputsSection,
}

_DEFAULT_FILES: Tuple[str, ...] = (
    "./bamboosync.yml",
    os.path.expanduser("~/.config/bamboosync/config.yml"),
    "/etc/bamboosync/config.yml",
)

_TRUE = {"1", "true", "yes", "y", "on"}


def _overlay(base: Dict[str, Dict[str, Any]], layer: Optional[Dict[str, Any]]) -> None:
    """Copy section values from ``layer`` over ``base`` in place."""
    for section, values in (layer or {}).items():
        if isinstance(values, dict):
            base.setdefault(section, {}).update(values)
        else:
            base[section] = values


def _file_layer(files: Tuple[str, ...]) -> Dict[str, Any]:
    path = next((p for p in files if os.path.exists(p)), None)
    if path is None:
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level YAML must be a mapping: {path}")
    return data


def _env_layer(prefix: str) -> Dict[str, Any]:
    """BSYNC_BAMBOO__TOKEN=x becomes {"bamboo": {"token": "x"}}."""
    out: Dict[str, Any] = {}
    for key, val in os.environ.items():
        if not key.startswith(prefix) or "__" not in key:
            continue
        section, _, name = key[len(prefix):].lower().partition("__")
        out.setdefault(section, {})[name] = val
    return out


def _expand(value: Any) -> Any:
    if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
        return os.environ.get(value[2:-1], "")
    return value


def _convert(section: str, name: str, kind: str, value: Any) -> Any:
    # annotations are strings under `from __future__ import annotations`
    if kind == "bool":
        return str(value).strip().lower() in _TRUE
    if kind == "int":
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"{section}.{name} must be an integer, got {value!r}") from exc
    return value


def _build_section(name: str, raw: Any) -> Any:
    cls = _SECTIONS[name]
    raw = raw or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Section '{name}' must be a mapping")
    types = {f.name: f.type for f in fields(cls)}
    unknown = sorted(set(raw) - set(types))
    if unknown:
        raise ConfigError(f"Unknown key(s) in '{name}': {', '.join(unknown)}")
    return cls(**{k: _convert(name, k, types[k], _expand(v)) for k, v in raw.items()})


def load_config(
    cli_overrides: Optional[Dict[str, Any]] = None,
    files: Tuple[str, ...] = _DEFAULT_FILES,
    env_prefix: str = "BSYNC_",
    dotenv: bool = True,
) -> AppConfig:
    """
    Layers, lowest first: dataclass defaults, the first YAML file of ``files``
    that exists, ``BSYNC_SECTION__KEY`` variables (after ``.env`` from the
    working directory), then ``cli_overrides``. Values written ``${VAR}`` are
    read from the environment. Sections other than the five known ones are
    ignored; unknown keys inside them are not.

    Raises ConfigError when ``bamboo.base_url`` or ``bamboo.token`` is missing
    outside dry-run.
    """
    if dotenv:
        env_file = find_dotenv(usecwd=True)
        if env_file:
            load_dotenv(env_file, override=False)

    raw: Dict[str, Any] = {}
    for layer in (_file_layer(files), _env_layer(env_prefix), cli_overrides):
        _overlay(raw, layer)

    cfg = AppConfig(**{name: _build_section(name, raw.get(name)) for name in _SECTIONS})

    if not cfg.app.dry_run:
        missing = [
            f"bamboo.{key}" for key in ("base_url", "token") if not getattr(cfg.bamboo, key)
        ]
        if missing:
            raise ConfigError("Missing required configuration for non-dry run: " + ", ".join(missing))
    return cfg
