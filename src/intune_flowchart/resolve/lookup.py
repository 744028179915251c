from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Protocol, runtime_checkable

import yaml

from ..util.errors import ConfigError, UnresolvedReferenceError


@runtime_checkable
class DirectoryLookup(Protocol):
    """Name lookups supplied by whatever talks to the directory service."""

    def has_connectivity(self) -> bool: ...

    def resolve_group(self, group_id: str) -> Optional[str]: ...

    def resolve_filter(self, filter_id: str) -> Optional[str]: ...


class OfflineLookup:
    """No directory available: every id is echoed back as its own label."""

    def has_connectivity(self) -> bool:
        return False

    def resolve_group(self, group_id: str) -> Optional[str]:
        return None

    def resolve_filter(self, filter_id: str) -> Optional[str]:
        return None


@dataclass
class StaticDirectoryLookup:
    groups: Dict[str, str] = field(default_factory=dict)
    filters: Dict[str, str] = field(default_factory=dict)

    def has_connectivity(self) -> bool:
        return True

    def resolve_group(self, group_id: str) -> Optional[str]:
        try:
            return self.groups[group_id]
        except KeyError:
            raise UnresolvedReferenceError(f"Group not found: {group_id}") from None

    def resolve_filter(self, filter_id: str) -> Optional[str]:
        try:
            return self.filters[filter_id]
        except KeyError:
            raise UnresolvedReferenceError(f"Assignment filter not found: {filter_id}") from None


def _name_section(data: Mapping[str, Any], key: str, path: Path) -> Dict[str, str]:
    section = data.get(key) or {}
    if isinstance(section, list):
        # Also accept exported [{"id": ..., "displayName": ...}] lists.
        out: Dict[str, str] = {}
        for item in section:
            if not isinstance(item, Mapping):
                raise ConfigError(f"Name map '{key}' entries must be objects: {path}")
            ident = str(item.get("id") or "").strip()
            name = str(item.get("displayName") or item.get("name") or "").strip()
            if ident and name:
                out[ident] = name
        return out
    if not isinstance(section, Mapping):
        raise ConfigError(f"Name map '{key}' must be a mapping of id to name: {path}")
    return {str(k): str(v) for k, v in section.items() if v is not None}


def load_name_map(path: Path) -> StaticDirectoryLookup:
    """
    Load {groups: {id: name}, filters: {id: name}} from a YAML or JSON file.
    """
    if not path.exists():
        raise ConfigError(f"Name map file not found: {path}")
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text) or {}
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to parse name map {path}: {e}") from e
    if not isinstance(data, Mapping):
        raise ConfigError(f"Top-level name map must be an object: {path}")
    return StaticDirectoryLookup(
        groups=_name_section(data, "groups", path),
        filters=_name_section(data, "filters", path),
    )
