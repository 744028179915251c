from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple, Union


class ResourceKind(str, Enum):
    APPLICATION = "Application"
    PROFILE = "Profile"


class OperatingSystem(str, Enum):
    WINDOWS = "Windows"
    MACOS = "macOS"
    IOS = "iOS"
    ANDROID = "Android"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: object) -> Optional["OperatingSystem"]:
        """Case-insensitive lookup by value or member name; None when unknown."""
        if isinstance(value, OperatingSystem):
            return value
        raw = str(value or "").strip().lower()
        if not raw:
            return None
        for member in cls:
            if raw in (member.value.lower(), member.name.lower()):
                return member
        return None


# Emission order for OS-level subgraphs.
OS_ORDER: Tuple[OperatingSystem, ...] = tuple(OperatingSystem)


class Intent(str, Enum):
    REQUIRED = "required"
    AVAILABLE = "available"
    UNINSTALL = "uninstall"
    OTHER = "other"


class TargetMode(str, Enum):
    INCLUDED = "Included"
    EXCLUDED = "Excluded"


class AudienceKind(str, Enum):
    ALL_USERS = "AllUsers"
    ALL_DEVICES = "AllDevices"
    GROUP = "Group"


class FilterMode(str, Enum):
    INCLUDE = "include"
    EXCLUDE = "exclude"


class GroupBy(str, Enum):
    NAME = "name"
    ASSIGNMENT = "assignment"


class Direction(str, Enum):
    TB = "TB"
    TD = "TD"
    BT = "BT"
    RL = "RL"
    LR = "LR"


@dataclass(frozen=True)
class Audience:
    kind: AudienceKind
    group_id: Optional[str] = None


@dataclass(frozen=True)
class Target:
    mode: TargetMode
    audience: Audience
    filter_id: Optional[str] = None
    filter_mode: Optional[FilterMode] = None


@dataclass(frozen=True)
class Assignment:
    intent: Intent
    target: Target
    intent_raw: str = ""

    @property
    def intent_label(self) -> str:
        if self.intent is not Intent.OTHER:
            return self.intent.value
        return self.intent_raw or "assigned"


@dataclass(frozen=True)
class Resource:
    id: str
    display_name: str
    kind: ResourceKind
    type_key: str
    type_label: str
    operating_system: OperatingSystem
    assignments: Tuple[Assignment, ...] = ()
    version: Optional[str] = None
    superseded: bool = False
    icon: Optional[str] = None


@dataclass
class NameCacheEntry:
    key: str
    resolved_name: str
    resolved: bool = True


@dataclass
class ResourceNode:
    """Leaf of the grouping tree: one resource and the assignments drawn for it."""

    resource: Resource
    assignments: Tuple[Assignment, ...]
    path: Tuple[int, ...]


@dataclass
class TreeNode:
    label: str
    path: Tuple[int, ...]
    level: str
    children: List[Union["TreeNode", ResourceNode]] = field(default_factory=list)

    def iter_leaves(self):
        for child in self.children:
            if isinstance(child, ResourceNode):
                yield child
            else:
                yield from child.iter_leaves()
