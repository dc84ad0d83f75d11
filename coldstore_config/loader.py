"""
Configuration Loader (``coldstore_config.loader``).

Responsibility
--------------
Loads the engine settings YAML file, applies ``COLDSTORE_*`` environment
overrides and parses the result into a typed ``EngineSettings``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Top-level YAML that is not a mapping -> ``ValueError``.
* Unknown keys or invalid values -> ``ValueError`` from the schema.
"""

from __future__ import annotations

import hashlib
import json
import os
from dataclasses import fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from coldstore_config.schema import EngineSettings

ENV_PREFIX = "COLDSTORE_"

# DATABASE_URL is honoured without the prefix, as most deploy tooling sets it
_UNPREFIXED_ENV = {"DATABASE_URL": "database_url"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at top level")
    # Allow settings to be nested under an "engine" section
    if set(data) == {"engine"} and isinstance(data["engine"], dict):
        data = data["engine"]
    return data


def _coerce(raw: str, target: type) -> Any:
    if target is bool:
        lowered = raw.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ValueError(f"Cannot parse boolean from {raw!r}")
    if target is int:
        return int(raw)
    if target is float:
        return float(raw)
    return raw


def env_overrides(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Collect typed overrides from ``COLDSTORE_<FIELD>`` variables."""
    environ = os.environ if environ is None else environ
    types = {f.name: f.type for f in fields(EngineSettings)}
    py_types = {"str": str, "bool": bool, "int": int, "float": float}
    overrides: dict[str, Any] = {}

    for env_name, field_name in _UNPREFIXED_ENV.items():
        if env_name in environ:
            overrides[field_name] = environ[env_name]

    for name, type_name in types.items():
        env_name = f"{ENV_PREFIX}{name.upper()}"
        if env_name in environ:
            target = py_types.get(str(type_name), str)
            try:
                overrides[name] = _coerce(environ[env_name], target)
            except ValueError as e:
                raise ValueError(f"Invalid value for {env_name}: {e}") from e
    return overrides


def load_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> EngineSettings:
    """YAML file (optional) overlaid with environment overrides."""
    data: dict[str, Any] = {}
    if path is not None:
        data.update(load_yaml_file(Path(path)))
    data.update(env_overrides(environ))
    return EngineSettings.from_dict(data)


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of canonical JSON; identical settings give identical checksums."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
