"""
Configuration Loader (``cost_config.loader``).

Responsibility
--------------
Reads YAML files, merges them in source order and parses the result into
a frozen ``CostControlConfig``.

Source order (later wins)
-------------------------
1. packaged ``defaults.yaml``
2. the file named by ``COST_CONTROL_CONFIG`` (if set)
3. ``COST_CONTROL_DATABASE_URL`` / ``COST_CONTROL_LOG_LEVEL``

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys, float percentages, invalid decimals, unknown seal
  algorithm  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import os
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from cost_config.schema import CostControlConfig

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

CONFIG_PATH_ENV = "COST_CONTROL_CONFIG"
DATABASE_URL_ENV = "COST_CONTROL_DATABASE_URL"
LOG_LEVEL_ENV = "COST_CONTROL_LOG_LEVEL"

_DECIMAL_FIELDS = ("variance_threshold_pct", "max_progress_pct", "default_indirect_pct")
_KNOWN_FIELDS = frozenset({"database_url", "log_level", "seal_algorithm", *_DECIMAL_FIELDS})


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
        raise ValueError(f"{path}: expected a mapping at top level, got {type(data).__name__}")
    return data


def parse_decimal(name: str, value: Any) -> Decimal:
    """Parse a percentage from YAML; strings and ints only, never floats."""
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError(f"{name} must be quoted as a decimal string, got {value!r}")
    if isinstance(value, Decimal):
        return value
    try:
        result = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError(f"{name}: invalid decimal {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"{name}: invalid decimal {value!r}")
    return result


def parse_config(data: Mapping[str, Any], source: str = "defaults") -> CostControlConfig:
    """
    Build a ``CostControlConfig`` from a merged mapping.

    Raises:
        ValueError: unknown keys or invalid values.
    """
    unknown = set(data) - _KNOWN_FIELDS
    if unknown:
        raise ValueError(f"unknown configuration keys: {sorted(unknown)}")

    algorithm = str(data.get("seal_algorithm", "sha256")).lower()
    if algorithm not in hashlib.algorithms_available:
        raise ValueError(f"unsupported seal_algorithm {algorithm!r}")

    kwargs: dict[str, Any] = {
        "database_url": str(data.get("database_url", "")),
        "log_level": str(data.get("log_level", "INFO")).upper(),
        "seal_algorithm": algorithm,
        "source": source,
    }
    for name in _DECIMAL_FIELDS:
        if name in data:
            kwargs[name] = parse_decimal(name, data[name])
    return CostControlConfig(**kwargs)


def load_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> CostControlConfig:
    """
    Load the configuration from defaults, an optional file and the environment.

    ``path`` takes precedence over ``COST_CONTROL_CONFIG``.
    """
    env = os.environ if environ is None else environ
    data = load_yaml_file(DEFAULTS_PATH)
    sources = ["defaults"]

    override_path = path if path is not None else env.get(CONFIG_PATH_ENV)
    if override_path:
        data.update(load_yaml_file(Path(override_path)))
        sources.append(str(override_path))

    if env.get(DATABASE_URL_ENV):
        data["database_url"] = env[DATABASE_URL_ENV]
        sources.append(DATABASE_URL_ENV)
    if env.get(LOG_LEVEL_ENV):
        data["log_level"] = env[LOG_LEVEL_ENV]
        sources.append(LOG_LEVEL_ENV)

    return parse_config(data, source="+".join(sources))


def compute_checksum(config: CostControlConfig) -> str:
    """
    SHA-256 of the canonical JSON form of ``config``.

    Identical settings always give identical checksums; the ``source``
    label does not take part.
    """
    canonical = json.dumps(config.to_dict(), sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
