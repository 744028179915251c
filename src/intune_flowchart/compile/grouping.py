from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Sequence

from ..normalize.schema import (
    OS_ORDER,
    Assignment,
    AudienceKind,
    GroupBy,
    OperatingSystem,
    Resource,
    ResourceNode,
    Target,
    TargetMode,
    TreeNode,
)
from ..resolve.cache import NameResolutionCache, Namespace
from .options import CompileConfig

LOG = logging.getLogger(__name__)

LEVEL_ROOT = "root"
LEVEL_OS = "os"
LEVEL_TYPE = "type"
LEVEL_ASSIGNMENT = "assignment"

ALL_USERS_LABEL = "All Users"
ALL_DEVICES_LABEL = "All Devices"
EXCLUDED_PREFIX = "Excluded: "
SIGNATURE_SEPARATOR = "|"


def audience_label(target: Target, cache: NameResolutionCache) -> str:
    audience = target.audience
    if audience.kind is AudienceKind.ALL_USERS:
        return ALL_USERS_LABEL
    if audience.kind is AudienceKind.ALL_DEVICES:
        return ALL_DEVICES_LABEL
    return cache.resolve(Namespace.GROUP, audience.group_id)


def assignment_signature(assignments: Sequence[Assignment], cache: NameResolutionCache) -> str:
    """Pipe-joined audience labels, in order; excluded groups carry a prefix."""
    parts: List[str] = []
    for assignment in assignments:
        label = audience_label(assignment.target, cache)
        if assignment.target.mode is TargetMode.EXCLUDED:
            label = f"{EXCLUDED_PREFIX}{label}"
        parts.append(label)
    return SIGNATURE_SEPARATOR.join(parts)


def _display_key(resource: Resource) -> str:
    return resource.display_name or ""


def explode_by_assignment(resources: Iterable[Resource]) -> List[Resource]:
    """One value copy per assignment; resources without assignments vanish."""
    out: List[Resource] = []
    for resource in resources:
        for assignment in resource.assignments:
            out.append(replace(resource, assignments=(assignment,)))
    return out


def apply_prefilters(resources: Iterable[Resource], config: CompileConfig) -> List[Resource]:
    wanted_types = None
    if config.type_labels is not None:
        wanted_types = {t.casefold() for t in config.type_labels}
    out: List[Resource] = []
    for resource in resources:
        if resource.operating_system not in config.operating_systems:
            continue
        if wanted_types is not None and not (
            (resource.type_label or "").casefold() in wanted_types or (resource.type_key or "").casefold() in wanted_types
        ):
            continue
        if config.exclude_superseded and resource.superseded:
            continue
        out.append(resource)
    return out


def _add_child(parent: TreeNode, label: str, level: str) -> TreeNode:
    child = TreeNode(label=label or "", path=parent.path + (len(parent.children),), level=level)
    parent.children.append(child)
    return child


def _add_leaf(parent: TreeNode, resource: Resource) -> None:
    parent.children.append(
        ResourceNode(
            resource=resource,
            assignments=tuple(resource.assignments),
            path=parent.path + (len(parent.children),),
        )
    )


def _bucket(items: Iterable[Resource], key) -> Dict[str, List[Resource]]:
    # dict preserves first-appearance order of keys
    buckets: Dict[str, List[Resource]] = {}
    for item in items:
        buckets.setdefault(key(item) or "", []).append(item)
    return buckets


def group_resources(
    resources: Iterable[Resource],
    mode: GroupBy,
    os_filter: Iterable[OperatingSystem],
    cache: NameResolutionCache,
) -> TreeNode:
    """
    Build the tree root -> OS -> type -> [assignment signature ->] resource.

    ByAssignment explodes resources into single-assignment copies sorted by
    display name and adds the signature level. ByName keeps resources whole
    and in source order.
    """
    mode = GroupBy(mode)
    wanted = {OperatingSystem.parse(o) for o in os_filter}
    items = list(resources)
    if mode is GroupBy.ASSIGNMENT:
        items = sorted(explode_by_assignment(items), key=_display_key)

    root = TreeNode(label="", path=(), level=LEVEL_ROOT)
    for os_value in OS_ORDER:
        if os_value not in wanted:
            continue
        members = [r for r in items if r.operating_system is os_value]
        if not members:
            continue
        os_node = _add_child(root, os_value.value, LEVEL_OS)
        for type_label, typed in _bucket(members, lambda r: r.type_label).items():
            type_node = _add_child(os_node, type_label, LEVEL_TYPE)
            if mode is GroupBy.NAME:
                for resource in typed:
                    _add_leaf(type_node, resource)
                continue
            for signature, grouped in _bucket(typed, lambda r: assignment_signature(r.assignments, cache)).items():
                signature_node = _add_child(type_node, signature, LEVEL_ASSIGNMENT)
                for resource in grouped:
                    _add_leaf(signature_node, resource)

    LOG.debug(
        "Grouped resources",
        extra={"mode": mode.value, "resources": len(items), "os_nodes": len(root.children)},
    )
    return root
