from __future__ import annotations

from dataclasses import dataclass, replace
from typing import FrozenSet, Iterable, Optional

from ..normalize.schema import OS_ORDER, Direction, GroupBy, OperatingSystem
from ..util.concurrency import MAX_WORKERS_CAP
from ..util.errors import ConfigurationError

DEFAULT_OPERATING_SYSTEMS: FrozenSet[OperatingSystem] = frozenset(OS_ORDER)


@dataclass(frozen=True)
class CompileConfig:
    """
    All compile parameters in one record. Fields that only matter for one
    mode keep their defaults otherwise (e.g. append_version only affects apps).
    """

    operating_systems: FrozenSet[OperatingSystem] = DEFAULT_OPERATING_SYSTEMS
    type_labels: Optional[FrozenSet[str]] = None  # None means every type
    group_by: GroupBy = GroupBy.NAME
    direction: Direction = Direction.LR
    append_version: bool = False
    exclude_superseded: bool = False
    include_icons: bool = False
    resolve_workers: int = MAX_WORKERS_CAP


def parse_operating_systems(values: Iterable[object]) -> FrozenSet[OperatingSystem]:
    out = set()
    for value in values:
        parsed = OperatingSystem.parse(value)
        if parsed is None:
            raise ConfigurationError(f"Unknown operating system: {value}")
        out.add(parsed)
    return frozenset(out)


def safe_direction(value: object) -> Direction:
    """The configured direction, or the default when it is not a valid token."""
    try:
        return Direction(value)
    except ValueError:
        return Direction.LR


def validate_compile_config(config: CompileConfig) -> CompileConfig:
    """
    Coerce enum-valued fields given as their string values and raise
    ConfigurationError for parameter sets that can only yield an empty diagram.
    """
    try:
        group_by = GroupBy(config.group_by)
    except ValueError:
        raise ConfigurationError(f"Unknown group-by mode: {config.group_by}") from None
    try:
        direction = Direction(config.direction)
    except ValueError:
        raise ConfigurationError(f"Unknown direction: {config.direction}") from None
    operating_systems = parse_operating_systems(config.operating_systems)
    if not operating_systems:
        raise ConfigurationError("At least one operating system must be selected")
    if config.type_labels is not None and not config.type_labels:
        raise ConfigurationError("Type filter is empty")
    if config.resolve_workers < 1:
        raise ConfigurationError("resolve_workers must be >= 1")
    return replace(config, group_by=group_by, direction=direction, operating_systems=operating_systems)
