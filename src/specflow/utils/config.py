"""
Configuration file helpers.
===========================

Pipeline settings are plain dataclasses (see :mod:`specflow.qc.config`).
This module moves them to and from YAML/JSON files:

* read a YAML/JSON mapping and apply dotted overrides from the CLI
* cast the mapping into a dataclass schema, rejecting unknown keys
* write a resolved configuration back to disk as YAML

Example
-------
>>> from specflow.qc.config import PipelineConfig
>>> from specflow.utils.config import load_config
>>> cfg = load_config("project.yaml", schema=PipelineConfig, overrides={"md.steps": 1000})
>>> cfg.md.steps
1000
"""

from __future__ import annotations

import json
from dataclasses import MISSING, asdict, fields, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Optional, Type, TypeVar, Union, get_type_hints

import yaml

__all__ = [
    "read_mapping",
    "load_config",
    "apply_overrides",
    "save_config",
    "dataclass_from_dict",
    "to_plain",
]

T = TypeVar("T")


def _deep_merge(base: MutableMapping[str, Any], incoming: Mapping[str, Any]) -> MutableMapping[str, Any]:
    for key, value in incoming.items():
        if key in base and isinstance(base[key], MutableMapping) and isinstance(value, Mapping):
            _deep_merge(base[key], value)  # type: ignore[arg-type]
        else:
            base[key] = value  # type: ignore[index]
    return base


def apply_overrides(cfg: Mapping[str, Any], overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Merge ``overrides`` (dotted keys allowed) into a copy of ``cfg``."""
    data = json.loads(json.dumps(cfg, default=str))
    if not overrides:
        return data
    nested: Dict[str, Any] = {}
    for key, value in overrides.items():
        current = nested
        parts = key.split(".")
        for part in parts[:-1]:
            current = current.setdefault(part, {})
        current[parts[-1]] = value
    _deep_merge(data, nested)
    return data


def read_mapping(path: Union[str, Path]) -> Dict[str, Any]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")
    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    if suffix in {".yaml", ".yml"}:
        data = yaml.safe_load(text) or {}
    elif suffix == ".json":
        data = json.loads(text)
    else:
        raise ValueError(f"Unsupported config format '{suffix}' for path {path}")
    if not isinstance(data, Mapping):
        raise ValueError(f"Configuration root in {path} must be a mapping, got {type(data).__name__}")
    return dict(data)


def load_config(
    path: Union[str, Path],
    *,
    schema: Type[T],
    overrides: Optional[Mapping[str, Any]] = None,
) -> T:
    """Load a YAML/JSON file into ``schema``.

    Parameters
    ----------
    path:
        Location of the configuration file.
    schema:
        Dataclass type the mapping is cast into.
    overrides:
        Values replacing those in the file. Keys may use dotted notation,
        e.g. ``{"md.steps": 1000}``.
    """

    data = apply_overrides(read_mapping(path), overrides)
    return dataclass_from_dict(schema, data)


def dataclass_from_dict(schema: Type[T], data: Mapping[str, Any]) -> T:
    """Instantiate dataclass ``schema`` from ``data``, recursing into nested dataclasses."""

    if not is_dataclass(schema):
        raise TypeError(f"Schema {schema} must be a dataclass type.")

    hints = get_type_hints(schema)
    allowed = {f.name for f in fields(schema)}
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise KeyError(f"Unexpected key(s) {unknown} for schema {schema.__name__}")

    kwargs: Dict[str, Any] = {}
    for f in fields(schema):
        if f.name not in data:
            if f.default is MISSING and f.default_factory is MISSING:  # type: ignore[misc]
                raise KeyError(f"Missing required key '{f.name}' for schema {schema.__name__}")
            continue
        value = data[f.name]
        target = hints.get(f.name)
        if is_dataclass(target) and isinstance(value, Mapping):
            value = dataclass_from_dict(target, value)  # type: ignore[arg-type]
        kwargs[f.name] = value
    return schema(**kwargs)  # type: ignore[call-arg]


def to_plain(value: Any) -> Any:
    """Convert dataclasses, paths, enums and tuples into YAML-safe primitives."""
    if is_dataclass(value) and not isinstance(value, type):
        return to_plain(asdict(value))
    if isinstance(value, Mapping):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


def save_config(cfg: Any, path: Union[str, Path]) -> Path:
    """Persist a dataclass or mapping to YAML and return the written path."""

    path = Path(path)
    if not (is_dataclass(cfg) or isinstance(cfg, Mapping)):
        raise TypeError(f"Unsupported config type {type(cfg)}")
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        yaml.safe_dump(to_plain(cfg), fh, sort_keys=False)
    return path
