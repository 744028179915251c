from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from ..normalize.catalog import strip_graph_prefix
from ..normalize.schema import (
    Assignment,
    Audience,
    AudienceKind,
    FilterMode,
    Intent,
    Target,
    TargetMode,
)

LOG = logging.getLogger(__name__)

EMPTY_FILTER_ID = "00000000-0000-0000-0000-000000000000"

_TARGET_SUFFIX = "assignmenttarget"

# Normalized discriminator -> (mode, audience kind)
_TARGET_TABLE: Mapping[str, tuple[TargetMode, AudienceKind]] = {
    "alldevices": (TargetMode.INCLUDED, AudienceKind.ALL_DEVICES),
    "alllicensedusers": (TargetMode.INCLUDED, AudienceKind.ALL_USERS),
    "allusers": (TargetMode.INCLUDED, AudienceKind.ALL_USERS),
    "group": (TargetMode.INCLUDED, AudienceKind.GROUP),
    "exclusiongroup": (TargetMode.EXCLUDED, AudienceKind.GROUP),
}

_INTENTS: Mapping[str, Intent] = {i.value: i for i in Intent if i is not Intent.OTHER}


def field_value(obj: Any, *keys: str) -> Any:
    """First present key of a mapping, or attribute of an object."""
    for k in keys:
        if isinstance(obj, Mapping):
            if k in obj and obj[k] is not None:
                return obj[k]
        else:
            value = getattr(obj, k, None)
            if value is not None:
                return value
    return None


def _target_discriminator(raw_target: Any) -> str:
    value = field_value(raw_target, "@odata.type", "odataType", "odata_type", "kind", "type")
    key = strip_graph_prefix(str(value or "")).lower()
    if key.endswith(_TARGET_SUFFIX):
        key = key[: -len(_TARGET_SUFFIX)]
    return key


def _filter_parts(raw_target: Any) -> tuple[Optional[str], Optional[FilterMode]]:
    filter_id = field_value(
        raw_target,
        "deviceAndAppManagementAssignmentFilterId",
        "device_and_app_management_assignment_filter_id",
        "filterId",
    )
    filter_id = str(filter_id).strip() if filter_id is not None else ""
    if not filter_id or filter_id == EMPTY_FILTER_ID:
        return None, None
    raw_mode = field_value(
        raw_target,
        "deviceAndAppManagementAssignmentFilterType",
        "device_and_app_management_assignment_filter_type",
        "filterType",
        "filterMode",
    )
    raw_mode = str(raw_mode or "").strip().lower()
    mode = FilterMode(raw_mode) if raw_mode in (FilterMode.INCLUDE.value, FilterMode.EXCLUDE.value) else None
    return filter_id, mode


def classify_target(raw_target: Any) -> Optional[Target]:
    """
    Decide mode and audience for one raw assignment target.

    Returns None for unrecognized shapes; callers drop the assignment.
    """
    if raw_target is None:
        return None
    entry = _TARGET_TABLE.get(_target_discriminator(raw_target))
    if entry is None:
        return None
    mode, kind = entry
    group_id: Optional[str] = None
    if kind is AudienceKind.GROUP:
        group_id = str(field_value(raw_target, "groupId", "group_id") or "").strip()
        if not group_id:
            return None
    filter_id, filter_mode = _filter_parts(raw_target)
    return Target(
        mode=mode,
        audience=Audience(kind=kind, group_id=group_id),
        filter_id=filter_id,
        filter_mode=filter_mode,
    )


def parse_intent(value: Any) -> tuple[Intent, str]:
    raw = str(value or "").strip()
    return _INTENTS.get(raw.lower(), Intent.OTHER), raw


def classify_assignment(raw: Any) -> Optional[Assignment]:
    target = classify_target(field_value(raw, "target"))
    if target is None:
        LOG.debug("Dropping assignment with unrecognized target", extra={"assignment_id": field_value(raw, "id")})
        return None
    intent, intent_raw = parse_intent(field_value(raw, "intent"))
    return Assignment(intent=intent, target=target, intent_raw=intent_raw)
