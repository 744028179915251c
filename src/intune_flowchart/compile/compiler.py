from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, List, Optional

from ..export.mermaid import check_flowchart, emit, empty_flowchart
from ..normalize.schema import AudienceKind, Resource, ResourceKind
from ..normalize.transform import NormalizeStats, normalize_records
from ..resolve.cache import NameResolutionCache, Namespace
from ..resolve.lookup import DirectoryLookup
from ..util.errors import ConfigurationError
from .grouping import apply_prefilters, group_resources
from .options import CompileConfig, safe_direction, validate_compile_config

LOG = logging.getLogger(__name__)

IconProvider = Callable[[Resource], Optional[str]]


@dataclass(frozen=True)
class CompileResult:
    text: str
    resources: int = 0
    leaves: int = 0
    edges: int = 0
    lookups: int = 0
    skipped_records: int = 0
    empty_reason: Optional[str] = None


def _attach_icons(resources: List[Resource], icon_provider: Optional[IconProvider]) -> List[Resource]:
    if icon_provider is None:
        return resources
    out: List[Resource] = []
    for resource in resources:
        icon = icon_provider(resource) if resource.kind is ResourceKind.APPLICATION else None
        out.append(replace(resource, icon=icon) if icon else resource)
    return out


def _prefetch_names(resources: List[Resource], cache: NameResolutionCache) -> int:
    group_ids: List[Optional[str]] = []
    filter_ids: List[Optional[str]] = []
    for resource in resources:
        for assignment in resource.assignments:
            target = assignment.target
            if target.audience.kind is AudienceKind.GROUP:
                group_ids.append(target.audience.group_id)
            filter_ids.append(target.filter_id)
    return cache.prefetch(Namespace.GROUP, group_ids) + cache.prefetch(Namespace.FILTER, filter_ids)


def compile_flowchart(
    config: CompileConfig,
    *,
    apps: Any = None,
    profiles: Any = None,
    lookup: Optional[DirectoryLookup] = None,
    icon_provider: Optional[IconProvider] = None,
) -> CompileResult:
    """
    Compile raw application and/or profile collections into flowchart text.

    A fresh name cache is built for every call. Contradictory parameters
    yield a header-only diagram; unreadable top-level input raises
    MalformedInputError.
    """
    try:
        config = validate_compile_config(config)
    except ConfigurationError as e:
        LOG.warning("Compile parameters yield an empty diagram", extra={"reason": str(e)})
        return CompileResult(text=empty_flowchart(safe_direction(config.direction)), empty_reason=str(e))

    stats = NormalizeStats()
    resources: List[Resource] = []
    if apps is not None:
        resources.extend(
            normalize_records(apps, ResourceKind.APPLICATION, append_version=config.append_version, stats=stats)
        )
    if profiles is not None:
        resources.extend(normalize_records(profiles, ResourceKind.PROFILE, stats=stats))

    resources = apply_prefilters(resources, config)
    resources = _attach_icons(resources, icon_provider if config.include_icons else None)

    cache = NameResolutionCache(lookup, max_workers=config.resolve_workers)
    lookups = _prefetch_names(resources, cache)

    root = group_resources(resources, config.group_by, config.operating_systems, cache)
    text = emit(root, config.direction, cache, include_icons=config.include_icons)
    leaves = sum(1 for _ in root.iter_leaves())
    shape = check_flowchart(text)

    LOG.info(
        "Compiled flowchart",
        extra={
            "resources": len(resources),
            "leaves": leaves,
            "edges": shape["edges"],
            "lookups": lookups,
            "skipped_records": stats.skipped_malformed,
            "group_by": config.group_by.value,
        },
    )
    return CompileResult(
        text=text,
        resources=len(resources),
        leaves=leaves,
        edges=shape["edges"],
        lookups=cache.lookup_count,
        skipped_records=stats.skipped_malformed,
    )


def compile_text(config: CompileConfig, **kwargs: Any) -> str:
    return compile_flowchart(config, **kwargs).text
