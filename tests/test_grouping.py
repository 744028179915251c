from __future__ import annotations

from typing import Tuple

from intune_flowchart.compile.grouping import (
    apply_prefilters,
    assignment_signature,
    explode_by_assignment,
    group_resources,
)
from intune_flowchart.compile.options import CompileConfig
from intune_flowchart.normalize.schema import (
    Assignment,
    Audience,
    AudienceKind,
    GroupBy,
    Intent,
    OperatingSystem,
    Resource,
    ResourceKind,
    ResourceNode,
    Target,
    TargetMode,
    TreeNode,
)
from intune_flowchart.resolve.cache import NameResolutionCache
from intune_flowchart.resolve.lookup import StaticDirectoryLookup

ALL_OS = frozenset(OperatingSystem)


def _assign(kind: AudienceKind = AudienceKind.ALL_DEVICES, group_id=None, *, excluded: bool = False) -> Assignment:
    mode = TargetMode.EXCLUDED if excluded else TargetMode.INCLUDED
    return Assignment(intent=Intent.REQUIRED, target=Target(mode=mode, audience=Audience(kind, group_id)))


def _resource(
    rid: str,
    name: str,
    *,
    os_value: OperatingSystem = OperatingSystem.WINDOWS,
    type_label: str = "Windows app (Win32)",
    assignments: Tuple[Assignment, ...] = (),
    superseded: bool = False,
) -> Resource:
    return Resource(
        id=rid,
        display_name=name,
        kind=ResourceKind.APPLICATION,
        type_key="win32LobApp",
        type_label=type_label,
        operating_system=os_value,
        assignments=assignments,
        superseded=superseded,
    )


def _labels(node: TreeNode) -> list:
    return [c.label for c in node.children if isinstance(c, TreeNode)]


def test_by_name_builds_three_levels_in_source_order() -> None:
    resources = [
        _resource("b", "Bravo", assignments=(_assign(),)),
        _resource("m", "Mac App", os_value=OperatingSystem.MACOS, type_label="macOS app (DMG)", assignments=(_assign(),)),
        _resource("a", "Alpha", assignments=(_assign(), _assign(AudienceKind.ALL_USERS))),
        _resource("s", "Store", type_label="Microsoft Store app (new)", assignments=(_assign(),)),
    ]
    root = group_resources(resources, GroupBy.NAME, ALL_OS, NameResolutionCache())

    assert _labels(root) == ["Windows", "macOS"]
    windows = root.children[0]
    assert isinstance(windows, TreeNode)
    assert windows.path == (0,)
    assert _labels(windows) == ["Windows app (Win32)", "Microsoft Store app (new)"]
    win32 = windows.children[0]
    leaves = [c for c in win32.children if isinstance(c, ResourceNode)]
    assert [leaf.resource.id for leaf in leaves] == ["b", "a"]
    assert [leaf.path for leaf in leaves] == [(0, 0, 0), (0, 0, 1)]
    assert len(leaves[1].assignments) == 2


def test_os_filter_drops_buckets_without_gaps_in_indices() -> None:
    resources = [
        _resource("w", "Win", assignments=(_assign(),)),
        _resource("i", "Phone", os_value=OperatingSystem.IOS, type_label="iOS store app", assignments=(_assign(),)),
    ]
    root = group_resources(resources, GroupBy.NAME, {OperatingSystem.IOS}, NameResolutionCache())

    assert _labels(root) == ["iOS"]
    assert root.children[0].path == (0,)
    assert [leaf.resource.id for leaf in root.iter_leaves()] == ["i"]


def test_by_assignment_explodes_sorts_and_groups_by_signature() -> None:
    cache = NameResolutionCache(StaticDirectoryLookup(groups={"g1": "Pilot"}))
    resources = [
        _resource("z", "Zulu", assignments=(_assign(AudienceKind.GROUP, "g1"), _assign())),
        _resource("a", "Alpha", assignments=(_assign(),)),
        _resource("n", "Nothing"),
    ]
    root = group_resources(resources, GroupBy.ASSIGNMENT, ALL_OS, cache)

    win32 = root.children[0].children[0]
    assert isinstance(win32, TreeNode)
    assert _labels(win32) == ["All Devices", "Pilot"]
    all_devices, pilot = win32.children
    assert [leaf.resource.id for leaf in all_devices.children] == ["a", "z"]
    assert [leaf.resource.id for leaf in pilot.children] == ["z"]
    assert all(len(leaf.assignments) == 1 for leaf in root.iter_leaves())
    assert [leaf.path for leaf in all_devices.children] == [(0, 0, 0, 0), (0, 0, 0, 1)]


def test_same_name_and_signature_stay_distinct_leaves() -> None:
    resources = [
        _resource("r1", "Same", assignments=(_assign(),)),
        _resource("r2", "Same", assignments=(_assign(),)),
    ]
    root = group_resources(resources, GroupBy.ASSIGNMENT, ALL_OS, NameResolutionCache())

    signature_node = root.children[0].children[0].children[0]
    assert signature_node.label == "All Devices"
    assert [leaf.resource.id for leaf in signature_node.children] == ["r1", "r2"]


def test_unassigned_resources_kept_by_name_but_skipped_by_assignment() -> None:
    resources = [_resource("n", "Nothing")]
    by_name = group_resources(resources, GroupBy.NAME, ALL_OS, NameResolutionCache())
    by_assignment = group_resources(resources, GroupBy.ASSIGNMENT, ALL_OS, NameResolutionCache())

    assert [leaf.resource.id for leaf in by_name.iter_leaves()] == ["n"]
    assert by_assignment.children == []


def test_exploded_copies_are_values_not_references() -> None:
    original = _resource("r", "R", assignments=(_assign(), _assign(AudienceKind.ALL_USERS)))
    copies = explode_by_assignment([original])

    assert len(copies) == 2
    assert all(c is not original for c in copies)
    assert copies[0].assignments == (original.assignments[0],)
    assert copies[1].assignments == (original.assignments[1],)
    assert len(original.assignments) == 2


def test_signature_marks_excluded_groups() -> None:
    cache = NameResolutionCache()
    signature = assignment_signature(
        [_assign(AudienceKind.GROUP, "g1", excluded=True), _assign(AudienceKind.ALL_USERS)], cache
    )
    assert signature == "Excluded: g1|All Users"


def test_prefilters_types_os_and_superseded() -> None:
    resources = [
        _resource("w", "Win", assignments=(_assign(),)),
        _resource("old", "Old", assignments=(_assign(),), superseded=True),
        _resource("s", "Store", type_label="Microsoft Store app (new)", assignments=(_assign(),)),
        _resource("m", "Mac", os_value=OperatingSystem.MACOS, assignments=(_assign(),)),
    ]
    config = CompileConfig(
        operating_systems=frozenset({OperatingSystem.WINDOWS}),
        type_labels=frozenset({"windows app (win32)"}),
        exclude_superseded=True,
    )
    assert [r.id for r in apply_prefilters(resources, config)] == ["w"]
    assert [r.id for r in apply_prefilters(resources, CompileConfig())] == ["w", "old", "s", "m"]
