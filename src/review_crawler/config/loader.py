"""
Settings loading: defaults, then a YAML file, then the environment.

Environment overrides are named REVIEW_CRAWLER__<SECTION>__<KEY> and may
go as deep as the settings do:

    REVIEW_CRAWLER__CRAWLER__MAX_CONSECUTIVE_SKIP_PAGES=5
    REVIEW_CRAWLER__CRAWLER__SOURCES__AMAZON__DAILY_PAGE_LIMIT=50
    REVIEW_CRAWLER__CRAWLER__VOLATILE_PARAMS=ref,qid

REVIEW_CRAWLER_CONFIG names a config file to use when no path is given.
"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from review_crawler.config.settings import Settings
from review_crawler.core.exceptions import ConfigurationError


DEFAULT_ENV_PREFIX = "REVIEW_CRAWLER"
CONFIG_PATH_ENV = "REVIEW_CRAWLER_CONFIG"

_settings_instance: Settings | None = None


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _parse_env_value(raw: str) -> Any:
    """
    Read an environment value as a YAML scalar.

    "none" and the empty string mean None, and a comma-separated value
    becomes a list of strings.
    """
    value = raw.strip()
    if value.lower() in ("", "none"):
        return None
    if "," in value:
        return [part.strip() for part in value.split(",") if part.strip()]
    try:
        parsed = yaml.safe_load(value)
    except yaml.YAMLError:
        return value
    return parsed if isinstance(parsed, (str, int, float, bool)) or parsed is None else value


def _env_overrides(prefix: str) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    marker = f"{prefix}__"

    for name, raw in os.environ.items():
        if not name.startswith(marker):
            continue
        path = name[len(marker):].lower().split("__")
        if len(path) < 2 or not all(path):
            continue

        node = overrides
        for part in path[:-1]:
            node = node.setdefault(part, {})
        node[path[-1]] = _parse_env_value(raw)

    return overrides


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise ConfigurationError("Configuration file not found", {"path": str(path)})

    try:
        content = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file: {e}", {"path": str(path)}) from e

    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ConfigurationError(
            f"Configuration file must contain a mapping, got {type(content).__name__}",
            {"path": str(path)},
        )
    return content


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
) -> Settings:
    """
    Build validated Settings.

    Args:
        config_path: YAML file to read; defaults only when None
        env_prefix: Prefix of the override variables

    Raises:
        ConfigurationError: The file is missing or malformed, or a value
            fails validation (details["errors"] lists each problem)
    """
    data = _read_yaml(Path(config_path)) if config_path is not None else {}
    data = _merge(data, _env_overrides(env_prefix))

    try:
        return Settings(**data)
    except ValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise ConfigurationError("Invalid configuration", {"errors": errors}) from e


def get_settings(config_path: Path | str | None = None, reload: bool = False) -> Settings:
    """Process-wide Settings, loaded on first use."""
    global _settings_instance

    if _settings_instance is None or reload:
        _settings_instance = load_config(config_path or get_default_config_path())
    return _settings_instance


def reset_settings() -> None:
    global _settings_instance
    _settings_instance = None


def get_default_config_path() -> Path | None:
    """
    First config file found, or None.

    Looks at $REVIEW_CRAWLER_CONFIG, then ./config.yaml,
    ./config/config.yaml and ~/.review_crawler/config.yaml.
    """
    explicit = os.environ.get(CONFIG_PATH_ENV)
    if explicit:
        return Path(explicit)

    for candidate in (
        Path.cwd() / "config.yaml",
        Path.cwd() / "config" / "config.yaml",
        Path.home() / ".review_crawler" / "config.yaml",
    ):
        if candidate.is_file():
            return candidate
    return None
