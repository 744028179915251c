from __future__ import annotations

from typing import Dict, Mapping, Tuple

from .schema import OperatingSystem, ResourceKind

GRAPH_TYPE_PREFIX = "#microsoft.graph."

SETTINGS_CATALOG_TYPE = "configurationPolicy"
DEVICE_CONFIGURATION_TYPE = "deviceConfiguration"
GROUP_POLICY_TYPE = "groupPolicyConfiguration"

APP_TYPE_LABELS: Mapping[str, str] = {
    # Windows
    "win32LobApp": "Windows app (Win32)",
    "win32CatalogApp": "Enterprise App Catalog app",
    "windowsMobileMSI": "Windows MSI line-of-business app",
    "winGetApp": "Microsoft Store app (new)",
    "windowsStoreApp": "Microsoft Store app (legacy)",
    "microsoftStoreForBusinessApp": "Microsoft Store for Business app",
    "officeSuiteApp": "Microsoft 365 Apps (Windows 10 and later)",
    "windowsMicrosoftEdgeApp": "Microsoft Edge (Windows 10 and later)",
    "windowsWebApp": "Windows web link",
    "windowsUniversalAppX": "Windows universal line-of-business app",
    "windowsAppX": "Windows AppX line-of-business app",
    "webApp": "Web link",
    # macOS
    "macOSLobApp": "macOS line-of-business app",
    "macOSDmgApp": "macOS app (DMG)",
    "macOSPkgApp": "macOS app (PKG)",
    "macOSMicrosoftEdgeApp": "Microsoft Edge (macOS)",
    "macOSMicrosoftDefenderApp": "Microsoft Defender for Endpoint (macOS)",
    "macOSOfficeSuiteApp": "Microsoft 365 Apps (macOS)",
    "macOsVppApp": "macOS volume purchase program app",
    "macOSWebClip": "macOS web clip",
    # iOS / iPadOS
    "iosStoreApp": "iOS store app",
    "iosVppApp": "iOS volume purchase program app",
    "iosLobApp": "iOS line-of-business app",
    "managedIOSStoreApp": "Managed iOS store app",
    "managedIOSLobApp": "Managed iOS line-of-business app",
    "iosiPadOSWebClip": "iOS/iPadOS web clip",
    # Android
    "androidStoreApp": "Android store app",
    "androidManagedStoreApp": "Managed Google Play store app",
    "androidManagedStoreWebApp": "Managed Google Play web link",
    "managedAndroidStoreApp": "Managed Android store app",
    "androidLobApp": "Android line-of-business app",
    "managedAndroidLobApp": "Managed Android line-of-business app",
    "androidForWorkApp": "Android Enterprise system app",
}

PROFILE_TYPE_LABELS: Mapping[str, str] = {
    SETTINGS_CATALOG_TYPE: "Settings catalog",
    DEVICE_CONFIGURATION_TYPE: "Device configuration",
    GROUP_POLICY_TYPE: "Administrative templates",
    # Windows
    "windows10GeneralConfiguration": "Device restrictions (Windows 10)",
    "windows10CustomConfiguration": "Custom (Windows 10)",
    "windows10EndpointProtectionConfiguration": "Endpoint protection (Windows 10)",
    "windows10VpnConfiguration": "VPN (Windows 10)",
    "windowsWifiConfiguration": "Wi-Fi (Windows)",
    "windowsHealthMonitoringConfiguration": "Windows health monitoring",
    "windowsUpdateForBusinessConfiguration": "Windows Update for Business",
    "windowsDeliveryOptimizationConfiguration": "Delivery optimization",
    "windowsIdentityProtectionConfiguration": "Identity protection",
    "windowsKioskConfiguration": "Kiosk",
    "windows81TrustedRootCertificate": "Trusted certificate (Windows)",
    "sharedPCConfiguration": "Shared multi-user device",
    "editionUpgradeConfiguration": "Edition upgrade and mode switch",
    # macOS
    "macOSGeneralDeviceConfiguration": "Device restrictions (macOS)",
    "macOSCustomConfiguration": "Custom (macOS)",
    "macOSDeviceFeaturesConfiguration": "Device features (macOS)",
    "macOSEndpointProtectionConfiguration": "Endpoint protection (macOS)",
    "macOSExtensionsConfiguration": "Extensions (macOS)",
    # iOS / iPadOS
    "iosGeneralDeviceConfiguration": "Device restrictions (iOS/iPadOS)",
    "iosCustomConfiguration": "Custom (iOS/iPadOS)",
    "iosDeviceFeaturesConfiguration": "Device features (iOS/iPadOS)",
    "iosUpdateConfiguration": "Update policy (iOS/iPadOS)",
    # Android
    "androidWorkProfileGeneralDeviceConfiguration": "Device restrictions (Android work profile)",
    "androidDeviceOwnerGeneralDeviceConfiguration": "Device restrictions (Android Enterprise)",
    "androidGeneralDeviceConfiguration": "Device restrictions (Android device administrator)",
    "androidCustomConfiguration": "Custom (Android)",
}

TYPE_LABELS: Mapping[ResourceKind, Mapping[str, str]] = {
    ResourceKind.APPLICATION: APP_TYPE_LABELS,
    ResourceKind.PROFILE: PROFILE_TYPE_LABELS,
}

# Keys under which a keyed-bag document holds each family.
FAMILY_KEYS: Mapping[ResourceKind, Tuple[str, ...]] = {
    ResourceKind.APPLICATION: ("apps", "applications", "mobileApps"),
    ResourceKind.PROFILE: (
        "profiles",
        "configurations",
        "deviceConfigurations",
        "configurationPolicies",
        "groupPolicyConfigurations",
    ),
}

# Ordered (pattern, OS) buckets matched against the lowercased discriminator.
# Windows first: "windowsKiosk..." contains "ios".
OS_PATTERNS: Tuple[Tuple[Tuple[str, ...], OperatingSystem], ...] = (
    (("windows", "win32", "win10", "msi", "appx"), OperatingSystem.WINDOWS),
    (("android",), OperatingSystem.ANDROID),
    (("ios", "ipad"), OperatingSystem.IOS),
    (("macos",), OperatingSystem.MACOS),
)

# Discriminators without a platform token that only ship on Windows.
WINDOWS_DEFAULT_TYPES = frozenset(
    {
        "officesuiteapp",
        "webapp",
        "wingetapp",
        "microsoftstoreforbusinessapp",
        SETTINGS_CATALOG_TYPE.lower(),
        DEVICE_CONFIGURATION_TYPE.lower(),
        GROUP_POLICY_TYPE.lower(),
        "sharedpcconfiguration",
        "editionupgradeconfiguration",
    }
)

# Platform strings carried by settings catalog / template records.
PLATFORM_PATTERNS: Tuple[Tuple[Tuple[str, ...], OperatingSystem], ...] = (
    (("android", "aosp"), OperatingSystem.ANDROID),
    (("ios", "ipad"), OperatingSystem.IOS),
    (("macos", "mac"), OperatingSystem.MACOS),
    (("windows", "win"), OperatingSystem.WINDOWS),
)

_LOWER_LABELS: Dict[ResourceKind, Dict[str, str]] = {
    kind: {k.lower(): v for k, v in table.items()} for kind, table in TYPE_LABELS.items()
}


def strip_graph_prefix(discriminator: str) -> str:
    value = (discriminator or "").strip()
    if value.lower().startswith(GRAPH_TYPE_PREFIX):
        value = value[len(GRAPH_TYPE_PREFIX):]
    return value.lstrip("#")


def type_label(kind: ResourceKind, type_key: str) -> str:
    """Human label for a discriminator; unknown discriminators pass through verbatim."""
    key = strip_graph_prefix(type_key)
    label = _LOWER_LABELS.get(kind, {}).get(key.lower())
    if label:
        return label
    # Families overlap on the wire occasionally (web links listed as profiles).
    for other in _LOWER_LABELS.values():
        if key.lower() in other:
            return other[key.lower()]
    return key
