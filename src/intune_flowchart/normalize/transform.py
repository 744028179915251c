from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterator, List, Mapping, Optional, Sequence, Tuple

from ..compile.classify import classify_assignment, field_value
from ..util.errors import MalformedInputError
from ..util.serialization import to_plain
from .catalog import (
    DEVICE_CONFIGURATION_TYPE,
    FAMILY_KEYS,
    GROUP_POLICY_TYPE,
    OS_PATTERNS,
    PLATFORM_PATTERNS,
    SETTINGS_CATALOG_TYPE,
    WINDOWS_DEFAULT_TYPES,
    strip_graph_prefix,
    type_label,
)
from .schema import OperatingSystem, Resource, ResourceKind

LOG = logging.getLogger(__name__)

_SCALARS = (str, bytes, int, float, bool)
_ALL_FAMILY_KEYS = frozenset(k for keys in FAMILY_KEYS.values() for k in keys)
_SETTINGS_CATALOG_MARKERS = ("platforms", "templateReference", "technologies")

# Keyed-bag sub-sequences that imply a discriminator when records omit one.
_FAMILY_TYPE_HINTS: Mapping[str, str] = {
    "configurationPolicies": SETTINGS_CATALOG_TYPE,
    "groupPolicyConfigurations": GROUP_POLICY_TYPE,
    "deviceConfigurations": DEVICE_CONFIGURATION_TYPE,
}


@dataclass
class NormalizeStats:
    records: int = 0
    resources: int = 0
    skipped_malformed: int = 0
    dropped_unassigned: int = 0
    dropped_assignments: int = 0


def _iter_records(raw: Any, kind: ResourceKind, hint: Optional[str] = None) -> Iterator[Tuple[Any, Optional[str]]]:
    if raw is None or isinstance(raw, _SCALARS):
        raise MalformedInputError(f"Unreadable {kind.value.lower()} input of type {type(raw).__name__}")
    plain = to_plain(raw)
    if isinstance(plain, (list, tuple)):
        for item in plain:
            if item is not None:
                yield item, hint
        return
    if not isinstance(plain, Mapping):
        raise MalformedInputError(f"Unreadable {kind.value.lower()} input of type {type(raw).__name__}")

    value = plain.get("value")
    if isinstance(value, (list, tuple)):
        yield from _iter_records(value, kind, hint)
        return

    if _ALL_FAMILY_KEYS.intersection(plain.keys()):
        for key in FAMILY_KEYS[kind]:
            sub = plain.get(key)
            if sub is None:
                continue
            yield from _iter_records(sub, kind, _FAMILY_TYPE_HINTS.get(key, hint))
        return

    yield plain, hint


def iter_raw_records(raw: Any, kind: ResourceKind) -> Iterator[Any]:
    """
    Yield raw records of one family from any accepted input shape: a sequence,
    a paginated envelope ("value"), a keyed bag of per-family sequences, or a
    single bare record.
    """
    for record, _ in _iter_records(raw, kind):
        yield record


def _is_settings_catalog(record: Mapping[str, Any]) -> bool:
    return any(record.get(marker) is not None for marker in _SETTINGS_CATALOG_MARKERS)


def _type_key(record: Mapping[str, Any], kind: ResourceKind, hint: Optional[str]) -> str:
    value = field_value(record, "@odata.type", "odataType", "typeKey", "type_key", "type")
    key = strip_graph_prefix(str(value or ""))
    if key:
        return key
    if kind is ResourceKind.PROFILE:
        if _is_settings_catalog(record):
            return SETTINGS_CATALOG_TYPE
        return hint or DEVICE_CONFIGURATION_TYPE
    return hint or ""


def _platform_os(platform: Any) -> OperatingSystem:
    p = str(platform or "").strip().lower()
    if not p or p == "none" or "," in p:
        return OperatingSystem.WINDOWS
    for tokens, os_value in PLATFORM_PATTERNS:
        if any(t in p for t in tokens):
            return os_value
    return OperatingSystem.OTHER


def derive_operating_system(type_key: str, platform: Any = None) -> OperatingSystem:
    """
    Map a discriminator (or a template record's platform string) onto an OS
    bucket. Ambiguous and template cases default to Windows; discriminators
    naming no recognized platform family are Other.
    """
    if platform is not None:
        return _platform_os(platform)
    key = strip_graph_prefix(type_key).lower()
    if not key:
        return OperatingSystem.WINDOWS
    for tokens, os_value in OS_PATTERNS:
        if any(t in key for t in tokens):
            return os_value
    if key in WINDOWS_DEFAULT_TYPES:
        return OperatingSystem.WINDOWS
    return OperatingSystem.OTHER


def _template_name(record: Mapping[str, Any]) -> str:
    ref = to_plain(record.get("templateReference"))
    if not isinstance(ref, Mapping):
        return ""
    return str(ref.get("templateDisplayName") or "").strip()


def _assignment_list(record: Mapping[str, Any]) -> Sequence[Any]:
    raw = to_plain(record.get("assignments"))
    if isinstance(raw, Mapping):
        raw = raw.get("value")
    if isinstance(raw, (list, tuple)):
        return [a for a in raw if a is not None]
    return []


def _icon(record: Mapping[str, Any]) -> Optional[str]:
    large = to_plain(record.get("largeIcon"))
    if isinstance(large, Mapping) and isinstance(large.get("value"), str) and large["value"]:
        return large["value"]
    return None


def _superseded(record: Mapping[str, Any]) -> bool:
    try:
        return int(record.get("supersedingAppCount") or 0) > 0
    except (TypeError, ValueError):
        return False


def normalize_record(
    raw: Any,
    kind: ResourceKind,
    *,
    hint: Optional[str] = None,
    append_version: bool = False,
    stats: Optional[NormalizeStats] = None,
) -> Optional[Resource]:
    stats = stats if stats is not None else NormalizeStats()
    record = to_plain(raw)
    if not isinstance(record, Mapping):
        stats.skipped_malformed += 1
        LOG.debug("Skipping non-object record", extra={"kind": kind.value})
        return None

    rid = str(field_value(record, "id") or "").strip()
    name = str(field_value(record, "displayName", "display_name", "name") or "").strip()
    if not rid or not name:
        stats.skipped_malformed += 1
        LOG.debug("Skipping record without id or display name", extra={"kind": kind.value, "record_id": rid})
        return None

    raw_assignments = _assignment_list(record)
    if not raw_assignments:
        stats.dropped_unassigned += 1
        return None

    assignments = tuple(a for a in (classify_assignment(r) for r in raw_assignments) if a is not None)
    stats.dropped_assignments += len(raw_assignments) - len(assignments)

    type_key = _type_key(record, kind, hint)
    label = (_template_name(record) if type_key == SETTINGS_CATALOG_TYPE else "") or type_label(kind, type_key)

    explicit_os = OperatingSystem.parse(field_value(record, "operatingSystem", "os"))
    if explicit_os is not None:
        operating_system = explicit_os
    elif type_key == SETTINGS_CATALOG_TYPE:
        operating_system = derive_operating_system(type_key, record.get("platforms") or "")
    else:
        operating_system = derive_operating_system(type_key)

    version = field_value(record, "displayVersion", "version")
    version = str(version).strip() if version is not None else None
    display_name = f"{name} {version}" if append_version and version else name

    return Resource(
        id=rid,
        display_name=display_name,
        kind=kind,
        type_key=type_key,
        type_label=label,
        operating_system=operating_system,
        assignments=assignments,
        version=version or None,
        superseded=_superseded(record),
        icon=_icon(record),
    )


def normalize_records(
    raw: Any,
    kind: ResourceKind,
    *,
    append_version: bool = False,
    stats: Optional[NormalizeStats] = None,
) -> List[Resource]:
    """
    Convert one raw collection into Resources. Records missing an id or name
    are skipped, records with no assignment are dropped, and unrecognized
    assignment targets are removed from their resource.
    """
    stats = stats if stats is not None else NormalizeStats()
    out: List[Resource] = []
    for record, hint in _iter_records(raw, kind):
        stats.records += 1
        resource = normalize_record(record, kind, hint=hint, append_version=append_version, stats=stats)
        if resource is not None:
            out.append(resource)
    stats.resources += len(out)
    LOG.debug(
        "Normalized records",
        extra={
            "kind": kind.value,
            "records": stats.records,
            "resources": len(out),
            "skipped_malformed": stats.skipped_malformed,
            "dropped_unassigned": stats.dropped_unassigned,
        },
    )
    return out
