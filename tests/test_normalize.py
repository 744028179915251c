from __future__ import annotations

from types import SimpleNamespace

import pytest

from intune_flowchart.normalize.schema import OperatingSystem, ResourceKind
from intune_flowchart.normalize.transform import (
    NormalizeStats,
    derive_operating_system,
    iter_raw_records,
    normalize_records,
)
from intune_flowchart.util.errors import MalformedInputError

ALL_DEVICES = {"@odata.type": "#microsoft.graph.allDevicesAssignmentTarget"}


def _app(rid: str, name: str, odata_type: str = "#microsoft.graph.win32LobApp", **extra) -> dict:
    record = {
        "id": rid,
        "displayName": name,
        "@odata.type": odata_type,
        "assignments": [{"intent": "required", "target": dict(ALL_DEVICES)}],
    }
    record.update(extra)
    return record


def test_accepts_sequence_envelope_bag_and_single_record() -> None:
    a1, a2 = _app("a1", "One"), _app("a2", "Two")
    profile = {"id": "p1", "displayName": "Prof", "assignments": [{"target": dict(ALL_DEVICES)}]}

    assert [r["id"] for r in iter_raw_records([a1, a2], ResourceKind.APPLICATION)] == ["a1", "a2"]
    assert [r["id"] for r in iter_raw_records({"value": [a1, a2]}, ResourceKind.APPLICATION)] == ["a1", "a2"]
    assert [r["id"] for r in iter_raw_records(SimpleNamespace(value=[a2]), ResourceKind.APPLICATION)] == ["a2"]
    assert [r["id"] for r in iter_raw_records(a1, ResourceKind.APPLICATION)] == ["a1"]

    bag = {"apps": {"value": [a1]}, "profiles": [profile]}
    assert [r["id"] for r in iter_raw_records(bag, ResourceKind.APPLICATION)] == ["a1"]
    assert [r["id"] for r in iter_raw_records(bag, ResourceKind.PROFILE)] == ["p1"]


@pytest.mark.parametrize("raw", [None, "not json", 42, b"bytes"])
def test_unreadable_top_level_input_is_rejected(raw) -> None:
    with pytest.raises(MalformedInputError):
        normalize_records(raw, ResourceKind.APPLICATION)


def test_malformed_and_unassigned_records_are_skipped() -> None:
    stats = NormalizeStats()
    raw = [
        _app("a1", "Good"),
        {"displayName": "No id", "assignments": [{"target": ALL_DEVICES}]},
        {"id": "a3", "assignments": [{"target": ALL_DEVICES}]},
        {"id": "a4", "displayName": "No assignments", "assignments": []},
        "garbage",
    ]
    resources = normalize_records(raw, ResourceKind.APPLICATION, stats=stats)

    assert [r.id for r in resources] == ["a1"]
    assert stats.records == 5
    assert stats.skipped_malformed == 3
    assert stats.dropped_unassigned == 1


def test_unrecognized_targets_drop_the_assignment_not_the_resource() -> None:
    raw = _app("a1", "App")
    raw["assignments"] = [
        {"intent": "required", "target": {"@odata.type": "#microsoft.graph.unknownTarget"}},
        {"intent": "available", "target": {"@odata.type": "#microsoft.graph.groupAssignmentTarget", "groupId": "g"}},
    ]
    only_unknown = _app("a2", "Other")
    only_unknown["assignments"] = [{"intent": "required", "target": {"kind": "bogus"}}]

    resources = normalize_records([raw, only_unknown], ResourceKind.APPLICATION)

    assert [r.id for r in resources] == ["a1", "a2"]
    assert [a.intent_label for a in resources[0].assignments] == ["available"]
    assert resources[1].assignments == ()


def test_type_labels_and_unknown_passthrough() -> None:
    resources = normalize_records(
        [_app("a1", "Win32"), _app("a2", "Mystery", "#microsoft.graph.fancyNewApp")],
        ResourceKind.APPLICATION,
    )
    assert resources[0].type_key == "win32LobApp"
    assert resources[0].type_label == "Windows app (Win32)"
    assert resources[1].type_label == "fancyNewApp"
    assert resources[1].operating_system is OperatingSystem.OTHER


@pytest.mark.parametrize(
    "type_key, expected",
    [
        ("#microsoft.graph.win32LobApp", OperatingSystem.WINDOWS),
        ("windowsMobileMSI", OperatingSystem.WINDOWS),
        ("officeSuiteApp", OperatingSystem.WINDOWS),
        ("webApp", OperatingSystem.WINDOWS),
        ("macOSDmgApp", OperatingSystem.MACOS),
        ("macOSOfficeSuiteApp", OperatingSystem.MACOS),
        ("iosVppApp", OperatingSystem.IOS),
        ("managedIOSLobApp", OperatingSystem.IOS),
        ("androidManagedStoreApp", OperatingSystem.ANDROID),
        ("iosGeneralDeviceConfiguration", OperatingSystem.IOS),
        ("windowsKioskConfiguration", OperatingSystem.WINDOWS),
        ("#microsoft.graph.windowsIdentityProtectionConfiguration", OperatingSystem.WINDOWS),
        ("somethingElse", OperatingSystem.OTHER),
        ("", OperatingSystem.WINDOWS),
    ],
)
def test_operating_system_from_discriminator(type_key: str, expected: OperatingSystem) -> None:
    assert derive_operating_system(type_key) is expected


@pytest.mark.parametrize(
    "platform, expected",
    [
        ("windows10", OperatingSystem.WINDOWS),
        ("macOS", OperatingSystem.MACOS),
        ("iOS", OperatingSystem.IOS),
        ("androidEnterprise", OperatingSystem.ANDROID),
        ("", OperatingSystem.WINDOWS),
        ("none", OperatingSystem.WINDOWS),
        ("linux", OperatingSystem.OTHER),
    ],
)
def test_operating_system_from_template_platform(platform: str, expected: OperatingSystem) -> None:
    assert derive_operating_system("configurationPolicy", platform) is expected


def test_settings_catalog_records_use_platform_and_template_name() -> None:
    raw = {
        "configurationPolicies": [
            {
                "id": "c1",
                "name": "Mac baseline",
                "platforms": "macOS",
                "technologies": "mdm,appleRemoteManagement",
                "templateReference": {"templateDisplayName": "Endpoint security antivirus"},
                "assignments": [{"target": ALL_DEVICES}],
            },
            {
                "id": "c2",
                "name": "Plain catalog",
                "platforms": "windows10",
                "templateReference": {"templateDisplayName": ""},
                "assignments": [{"target": ALL_DEVICES}],
            },
        ],
        "groupPolicyConfigurations": [
            {"id": "g1", "displayName": "ADMX", "assignments": [{"target": ALL_DEVICES}]},
        ],
    }
    resources = normalize_records(raw, ResourceKind.PROFILE)

    assert [(r.id, r.type_label, r.operating_system) for r in resources] == [
        ("c1", "Endpoint security antivirus", OperatingSystem.MACOS),
        ("c2", "Settings catalog", OperatingSystem.WINDOWS),
        ("g1", "Administrative templates", OperatingSystem.WINDOWS),
    ]
    assert resources[0].display_name == "Mac baseline"


def test_explicit_os_and_type_key_fields() -> None:
    raw = {
        "id": "r1",
        "displayName": "App A",
        "typeKey": "win32LobApp",
        "os": "macOS",
        "assignments": [{"intent": "required", "target": {"kind": "allDevices"}}],
    }
    (resource,) = normalize_records(raw, ResourceKind.APPLICATION)
    assert resource.operating_system is OperatingSystem.MACOS
    assert resource.type_label == "Windows app (Win32)"


def test_version_superseded_and_icon_fields() -> None:
    raw = _app(
        "a1",
        "7-Zip",
        displayVersion="23.01",
        supersedingAppCount=1,
        largeIcon={"type": "image/png", "value": "iVBORw0KGgo="},
    )
    (plain,) = normalize_records([raw], ResourceKind.APPLICATION)
    (versioned,) = normalize_records([raw], ResourceKind.APPLICATION, append_version=True)

    assert plain.display_name == "7-Zip"
    assert plain.version == "23.01"
    assert plain.superseded is True
    assert plain.icon == "iVBORw0KGgo="
    assert versioned.display_name == "7-Zip 23.01"
