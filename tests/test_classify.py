from __future__ import annotations

from types import SimpleNamespace

import pytest

from intune_flowchart.compile.classify import classify_assignment, classify_target, parse_intent
from intune_flowchart.normalize.schema import AudienceKind, FilterMode, Intent, TargetMode


@pytest.mark.parametrize(
    "odata_type, kind",
    [
        ("#microsoft.graph.allDevicesAssignmentTarget", AudienceKind.ALL_DEVICES),
        ("#microsoft.graph.allLicensedUsersAssignmentTarget", AudienceKind.ALL_USERS),
        ("allDevices", AudienceKind.ALL_DEVICES),
        ("allUsers", AudienceKind.ALL_USERS),
    ],
)
def test_special_audiences_are_included(odata_type: str, kind: AudienceKind) -> None:
    target = classify_target({"@odata.type": odata_type})
    assert target is not None
    assert target.mode is TargetMode.INCLUDED
    assert target.audience.kind is kind
    assert target.audience.group_id is None


def test_group_and_exclusion_group() -> None:
    included = classify_target({"@odata.type": "#microsoft.graph.groupAssignmentTarget", "groupId": "g1"})
    excluded = classify_target({"@odata.type": "#microsoft.graph.exclusionGroupAssignmentTarget", "groupId": "g2"})

    assert included is not None and excluded is not None
    assert included.mode is TargetMode.INCLUDED
    assert included.audience.group_id == "g1"
    assert excluded.mode is TargetMode.EXCLUDED
    assert excluded.audience.kind is AudienceKind.GROUP
    assert excluded.audience.group_id == "g2"


def test_unrecognized_or_incomplete_targets_are_dropped() -> None:
    assert classify_target({"@odata.type": "#microsoft.graph.configurationManagerCollectionAssignmentTarget"}) is None
    assert classify_target({"@odata.type": "#microsoft.graph.groupAssignmentTarget"}) is None
    assert classify_target({}) is None
    assert classify_target(None) is None


def test_filter_is_attached_regardless_of_mode() -> None:
    target = classify_target(
        {
            "@odata.type": "#microsoft.graph.exclusionGroupAssignmentTarget",
            "groupId": "g1",
            "deviceAndAppManagementAssignmentFilterId": "f1",
            "deviceAndAppManagementAssignmentFilterType": "include",
        }
    )
    assert target is not None
    assert target.mode is TargetMode.EXCLUDED
    assert target.filter_id == "f1"
    assert target.filter_mode is FilterMode.INCLUDE


def test_filter_type_none_and_empty_filter_ids() -> None:
    no_mode = classify_target({"kind": "allDevices", "filterId": "f1", "filterType": "none"})
    zero = classify_target(
        {
            "@odata.type": "#microsoft.graph.allDevicesAssignmentTarget",
            "deviceAndAppManagementAssignmentFilterId": "00000000-0000-0000-0000-000000000000",
            "deviceAndAppManagementAssignmentFilterType": "exclude",
        }
    )
    assert no_mode is not None and no_mode.filter_id == "f1" and no_mode.filter_mode is None
    assert zero is not None and zero.filter_id is None and zero.filter_mode is None


def test_attribute_style_targets() -> None:
    target = classify_target(SimpleNamespace(odata_type="#microsoft.graph.groupAssignmentTarget", group_id="g9"))
    assert target is not None
    assert target.audience.group_id == "g9"


def test_intent_parsing_keeps_unknown_text() -> None:
    assert parse_intent("Required") == (Intent.REQUIRED, "Required")
    assert parse_intent("availableWithoutEnrollment") == (Intent.OTHER, "availableWithoutEnrollment")
    assert parse_intent(None) == (Intent.OTHER, "")


def test_classify_assignment_labels() -> None:
    app = classify_assignment({"intent": "uninstall", "target": {"kind": "allUsers"}})
    profile = classify_assignment({"target": {"kind": "allDevices"}})
    dropped = classify_assignment({"intent": "required", "target": {"kind": "somethingElse"}})

    assert app is not None and app.intent_label == "uninstall"
    assert profile is not None and profile.intent is Intent.OTHER and profile.intent_label == "assigned"
    assert dropped is None
