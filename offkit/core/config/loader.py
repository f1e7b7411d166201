"""
Configuration loader — reads config.toml into a validated KitConfig.

The kit config is a small TOML subset: flat tables, string/bool/int
scalars and single-level string arrays. The file is parsed with
``tomllib`` and then held to that subset, so a document that only
works because of full TOML features is rejected up front. A YAML
rendition of the same schema (config.yaml) is accepted too.
"""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from offkit.core.errors import ConfigError
from offkit.core.models.kit import KitConfig

logger = logging.getLogger(__name__)

# Default config filenames, in lookup order
CONFIG_FILENAMES = ("config.toml", "config.yaml", "config.yml")

_TABLE_KEYS = frozenset({"platforms", "versions"})


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Return the first config file found directly in ``start_dir`` (default: cwd)."""
    base = (start_dir or Path.cwd()).resolve()
    for name in CONFIG_FILENAMES:
        candidate = base / name
        if candidate.is_file():
            return candidate
    return None


def load_config(path: Path) -> KitConfig:
    """Load and validate a kit configuration file.

    Args:
        path: Path to config.toml (or config.yaml / config.yml).

    Returns:
        Validated, immutable KitConfig.

    Raises:
        ConfigError: If the file is missing, outside the supported
            subset, or fails schema validation.
    """
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading kit config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    if path.suffix.lower() in (".yaml", ".yml"):
        data = _parse_yaml(raw, path)
    else:
        data = parse_toml_subset(raw, source=str(path))

    config = validate_config(data, source=str(path))
    logger.info(
        "Loaded kit config: %d platform(s), %d package(s)",
        len(config.enabled_platforms),
        len(config.packages),
    )
    return config


def parse_toml_subset(text: str, source: str = "<string>") -> dict[str, Any]:
    """Parse TOML text and enforce the kit's subset.

    Raises:
        ConfigError: On TOML syntax errors or unsupported constructs.
    """
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {source}: {e}") from e
    check_subset(data, source)
    return data


def check_subset(data: dict[str, Any], source: str = "<config>") -> None:
    """Reject anything beyond flat tables, scalars, and string arrays."""
    for key, value in data.items():
        if isinstance(value, dict):
            if key not in _TABLE_KEYS:
                raise ConfigError(f"{source}: unexpected table [{key}]")
            for sub_key, sub_value in value.items():
                _check_value(f"{key}.{sub_key}", sub_value, source)
        else:
            _check_value(key, value, source)


def validate_config(data: Any, source: str = "<config>") -> KitConfig:
    """Validate a parsed mapping against the KitConfig schema.

    Raises:
        ConfigError: With one line per validation problem.
    """
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping in {source}, got {type(data).__name__}")
    if "schema_version" not in data:
        raise ConfigError(f"{source}: missing required key 'schema_version'")

    try:
        return KitConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid kit config {source}: {_format_errors(e)}") from e


def resolve_output_dir(config: KitConfig, config_path: Path) -> Path | None:
    """Resolve ``output_dir`` from the config relative to the config file."""
    if not config.output_dir:
        return None
    out = Path(config.output_dir).expanduser()
    if not out.is_absolute():
        out = config_path.parent / out
    return out.resolve()


# ── Private helpers ───────────────────────────────────────


def _parse_yaml(raw: str, path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")
    check_subset(data, str(path))
    return data


def _check_value(key: str, value: Any, source: str) -> None:
    if isinstance(value, (str, bool, int)):
        return
    if value is None:
        # YAML null; treated as "absent" by the schema
        return
    if isinstance(value, list):
        for item in value:
            if not isinstance(item, str):
                raise ConfigError(
                    f"{source}: '{key}' must be an array of strings "
                    f"(found {type(item).__name__})"
                )
        return
    if isinstance(value, dict):
        raise ConfigError(f"{source}: nested table '{key}' is not supported")
    raise ConfigError(
        f"{source}: unsupported value type {type(value).__name__} for '{key}'"
    )


def _format_errors(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        msg = err.get("msg", "").removeprefix("Value error, ")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)
