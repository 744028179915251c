from __future__ import annotations

import argparse
import json
import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .compile.options import CompileConfig, parse_operating_systems
from .normalize.schema import OS_ORDER, Direction, GroupBy
from .util.concurrency import MAX_WORKERS_CAP
from .util.errors import ConfigError, ConfigurationError

# --------
# Defaults
# --------
DEFAULT_OPERATING_SYSTEMS: List[str] = [o.value for o in OS_ORDER]
DEFAULT_GROUP_BY = GroupBy.NAME.value
DEFAULT_DIRECTION = Direction.LR.value
DEFAULT_RESOLVE_WORKERS = MAX_WORKERS_CAP
COMMANDS = ("render", "summary", "validate")
ALLOWED_CONFIG_KEYS = {
    "apps",
    "profiles",
    "names",
    "out",
    "operating_systems",
    "types",
    "group_by",
    "direction",
    "append_version",
    "exclude_superseded",
    "include_icons",
    "resolve_workers",
    "mmdc",
    "json_logs",
    "log_level",
    "log_file",
}
BOOL_CONFIG_KEYS = {"append_version", "exclude_superseded", "include_icons", "mmdc", "json_logs"}
INT_CONFIG_KEYS = {"resolve_workers"}
PATH_CONFIG_KEYS = {"apps", "profiles", "names", "out", "log_file"}
LIST_CONFIG_KEYS = {"operating_systems", "types"}
STR_CONFIG_KEYS = {"group_by", "direction", "log_level"}


@dataclass(frozen=True)
class RunConfig:
    # Inputs / outputs
    apps: Optional[Path] = None
    profiles: Optional[Path] = None
    names: Optional[Path] = None
    out: Optional[Path] = None
    inputs: List[Path] = field(default_factory=list)  # validate command

    # Compile parameters
    operating_systems: List[str] = field(default_factory=lambda: list(DEFAULT_OPERATING_SYSTEMS))
    types: Optional[List[str]] = None
    group_by: str = DEFAULT_GROUP_BY
    direction: str = DEFAULT_DIRECTION
    append_version: bool = False
    exclude_superseded: bool = False
    include_icons: bool = False
    resolve_workers: int = DEFAULT_RESOLVE_WORKERS

    # Validation / logging
    mmdc: bool = False
    json_logs: bool = False
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    def compile_config(self) -> CompileConfig:
        try:
            operating_systems = parse_operating_systems(self.operating_systems)
        except ConfigurationError as e:
            raise ConfigError(str(e)) from e
        return CompileConfig(
            operating_systems=operating_systems,
            type_labels=frozenset(self.types) if self.types is not None else None,
            group_by=GroupBy(self.group_by),
            direction=Direction(self.direction),
            append_version=self.append_version,
            exclude_superseded=self.exclude_superseded,
            include_icons=self.include_icons,
            resolve_workers=self.resolve_workers,
        )


def _parse_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text) or {}
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ValueError(f"Failed to parse config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Top-level config must be an object")
    return data


def _env_str(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip()
    if not raw:
        return None
    return raw


def _env_bool(name: str) -> Optional[bool]:
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip().lower()
    if not raw:
        return None
    return raw in {"1", "true", "yes", "on"}


def _env_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        raw = value.strip().lower()
        if raw in {"1", "true", "yes", "on"}:
            return True
        if raw in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Config field '{key}' must be a boolean")


def _coerce_int(key: str, value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return int(value)
        except ValueError:
            pass
    raise ValueError(f"Config field '{key}' must be an integer")


def _split_list(value: Any, key: str) -> List[str]:
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return [v.strip() for v in value if v.strip()]
    raise ValueError(f"Config field '{key}' must be a list of strings or comma-separated string")


def _normalize_config_file(data: Dict[str, Any]) -> Dict[str, Any]:
    unknown = sorted(set(data.keys()) - ALLOWED_CONFIG_KEYS)
    if unknown:
        warnings.warn(f"Unknown config keys ignored: {', '.join(unknown)}")
    normalized: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in ALLOWED_CONFIG_KEYS:
            continue
        if value is None:
            normalized[key] = None
        elif key in LIST_CONFIG_KEYS:
            normalized[key] = _split_list(value, key)
        elif key in BOOL_CONFIG_KEYS:
            normalized[key] = _coerce_bool(key, value)
        elif key in INT_CONFIG_KEYS:
            normalized[key] = _coerce_int(key, value)
        elif key in PATH_CONFIG_KEYS:
            if not isinstance(value, (str, Path)):
                raise ValueError(f"Config field '{key}' must be a string path")
            normalized[key] = value
        elif key in STR_CONFIG_KEYS:
            if not isinstance(value, str):
                raise ValueError(f"Config field '{key}' must be a string")
            normalized[key] = value
    return _compact_dict(normalized)


def _compact_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Drop keys with None values so they don't override lower-precedence config.
    """
    return {k: v for k, v in data.items() if v is not None}


def _merge_dicts(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    """
    Shallow merge: values in b override a.
    """
    merged = dict(a)
    merged.update(b)
    return merged


def _choice(key: str, value: Any, allowed: Tuple[str, ...]) -> str:
    for option in allowed:
        if str(value).strip().lower() == option.lower():
            return option
    raise ValueError(f"Config field '{key}' must be one of: {', '.join(allowed)}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="intune-flowchart",
        description="Compile Intune app/profile assignments into Mermaid flowcharts",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", type=Path, help="Optional YAML/JSON config file")
        p.add_argument(
            "--json-logs",
            action=argparse.BooleanOptionalAction,
            default=None,
            help="Enable JSON logs",
        )
        p.add_argument("--log-level", default=None, help="Log level (INFO, DEBUG, ...)")
        p.add_argument("--log-file", type=Path, default=None, help="Also write logs to this file")

    def add_inputs(p: argparse.ArgumentParser) -> None:
        p.add_argument("--apps", type=Path, default=None, help="Exported mobile apps JSON")
        p.add_argument("--profiles", type=Path, default=None, help="Exported configuration profiles JSON")
        p.add_argument(
            "--os",
            dest="operating_systems",
            default=None,
            help=f"Comma-separated operating systems (default: {','.join(DEFAULT_OPERATING_SYSTEMS)})",
        )
        p.add_argument("--types", default=None, help="Comma-separated type labels to keep (default: all)")
        p.add_argument(
            "--append-version",
            action=argparse.BooleanOptionalAction,
            default=None,
            help="Append the app version to display names",
        )
        p.add_argument(
            "--exclude-superseded",
            action=argparse.BooleanOptionalAction,
            default=None,
            help="Skip apps superseded by another app",
        )

    # render
    p_render = subparsers.add_parser("render", help="Compile inputs into a Mermaid flowchart")
    add_common(p_render)
    add_inputs(p_render)
    p_render.add_argument("--names", type=Path, default=None, help="YAML/JSON map of group and filter names")
    p_render.add_argument("--out", type=Path, default=None, help="Output .mmd file (default: stdout)")
    p_render.add_argument(
        "--group-by",
        default=None,
        choices=[g.value for g in GroupBy],
        help=f"Grouping mode (default {DEFAULT_GROUP_BY})",
    )
    p_render.add_argument(
        "--direction",
        default=None,
        choices=[d.value for d in Direction],
        help=f"Flowchart direction (default {DEFAULT_DIRECTION})",
    )
    p_render.add_argument(
        "--icons",
        dest="include_icons",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Embed app icons in node labels",
    )
    p_render.add_argument(
        "--resolve-workers",
        type=int,
        default=None,
        help=f"Max parallel name lookups (default {DEFAULT_RESOLVE_WORKERS})",
    )
    p_render.add_argument(
        "--mmdc",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Render the output with Mermaid CLI as a syntax check",
    )

    # summary
    p_summary = subparsers.add_parser("summary", help="Print resource counts per OS and type")
    add_common(p_summary)
    add_inputs(p_summary)

    # validate
    p_validate = subparsers.add_parser("validate", help="Check .mmd files for structural errors")
    add_common(p_validate)
    p_validate.add_argument("inputs", type=Path, nargs="+", help="Flowchart files to check")
    p_validate.add_argument(
        "--mmdc",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Also render with Mermaid CLI",
    )
    return parser


def load_run_config(
    args: Optional[argparse.Namespace] = None,
    argv: Optional[list[str]] = None,
) -> Tuple[str, RunConfig]:
    """
    Build RunConfig by merging defaults, optional config file, env vars, and CLI args.
    Precedence (low -> high): defaults < config file < env < CLI.

    Returns:
      (command, RunConfig) where command is one of: render|summary|validate
    """
    ns = args if args is not None else build_parser().parse_args(argv)
    command = ns.command

    base: Dict[str, Any] = {
        "operating_systems": list(DEFAULT_OPERATING_SYSTEMS),
        "types": None,
        "group_by": DEFAULT_GROUP_BY,
        "direction": DEFAULT_DIRECTION,
        "append_version": False,
        "exclude_superseded": False,
        "include_icons": False,
        "resolve_workers": DEFAULT_RESOLVE_WORKERS,
        "mmdc": False,
        "json_logs": False,
        "log_level": "INFO",
    }

    file_cfg: Dict[str, Any] = {}
    if getattr(ns, "config", None):
        file_cfg = _normalize_config_file(_parse_config_file(Path(ns.config)))

    env_cfg: Dict[str, Any] = _compact_dict(
        {
            "apps": _env_str("INTUNE_FC_APPS"),
            "profiles": _env_str("INTUNE_FC_PROFILES"),
            "names": _env_str("INTUNE_FC_NAMES"),
            "operating_systems": _env_str("INTUNE_FC_OS"),
            "types": _env_str("INTUNE_FC_TYPES"),
            "group_by": _env_str("INTUNE_FC_GROUP_BY"),
            "direction": _env_str("INTUNE_FC_DIRECTION"),
            "append_version": _env_bool("INTUNE_FC_APPEND_VERSION"),
            "exclude_superseded": _env_bool("INTUNE_FC_EXCLUDE_SUPERSEDED"),
            "include_icons": _env_bool("INTUNE_FC_ICONS"),
            "resolve_workers": _env_int("INTUNE_FC_RESOLVE_WORKERS"),
            "json_logs": _env_bool("INTUNE_FC_JSON_LOGS"),
            "log_level": _env_str("INTUNE_FC_LOG_LEVEL"),
        }
    )

    cli_cfg: Dict[str, Any] = _compact_dict(
        {
            "apps": getattr(ns, "apps", None),
            "profiles": getattr(ns, "profiles", None),
            "names": getattr(ns, "names", None),
            "out": getattr(ns, "out", None),
            "operating_systems": getattr(ns, "operating_systems", None),
            "types": getattr(ns, "types", None),
            "group_by": getattr(ns, "group_by", None),
            "direction": getattr(ns, "direction", None),
            "append_version": getattr(ns, "append_version", None),
            "exclude_superseded": getattr(ns, "exclude_superseded", None),
            "include_icons": getattr(ns, "include_icons", None),
            "resolve_workers": getattr(ns, "resolve_workers", None),
            "mmdc": getattr(ns, "mmdc", None),
            "json_logs": getattr(ns, "json_logs", None),
            "log_level": getattr(ns, "log_level", None),
            "log_file": getattr(ns, "log_file", None),
        }
    )

    merged = _merge_dicts(base, _merge_dicts(file_cfg, _merge_dicts(env_cfg, cli_cfg)))

    operating_systems = _split_list(merged["operating_systems"], "operating_systems")
    types_raw = merged.get("types")
    types = _split_list(types_raw, "types") if types_raw is not None else None

    workers_raw = merged.get("resolve_workers")
    resolve_workers = int(workers_raw) if workers_raw is not None else DEFAULT_RESOLVE_WORKERS
    if resolve_workers < 1:
        raise ValueError("resolve_workers must be >= 1")

    def _path(key: str) -> Optional[Path]:
        return Path(merged[key]) if merged.get(key) else None

    cfg = RunConfig(
        apps=_path("apps"),
        profiles=_path("profiles"),
        names=_path("names"),
        out=_path("out"),
        inputs=[Path(p) for p in (getattr(ns, "inputs", None) or [])],
        operating_systems=operating_systems,
        types=types,
        group_by=_choice("group_by", merged["group_by"], tuple(g.value for g in GroupBy)),
        direction=_choice("direction", merged["direction"], tuple(d.value for d in Direction)),
        append_version=bool(merged["append_version"]),
        exclude_superseded=bool(merged["exclude_superseded"]),
        include_icons=bool(merged["include_icons"]),
        resolve_workers=min(resolve_workers, MAX_WORKERS_CAP),
        mmdc=bool(merged["mmdc"]),
        json_logs=bool(merged["json_logs"]),
        log_level=str(merged.get("log_level") or "INFO").upper(),
        log_file=_path("log_file"),
    )
    return command, cfg


def dump_config(cfg: RunConfig) -> Dict[str, Any]:
    return {
        "apps": str(cfg.apps) if cfg.apps else None,
        "profiles": str(cfg.profiles) if cfg.profiles else None,
        "names": str(cfg.names) if cfg.names else None,
        "out": str(cfg.out) if cfg.out else None,
        "operating_systems": list(cfg.operating_systems),
        "types": list(cfg.types) if cfg.types is not None else None,
        "group_by": cfg.group_by,
        "direction": cfg.direction,
        "append_version": cfg.append_version,
        "exclude_superseded": cfg.exclude_superseded,
        "include_icons": cfg.include_icons,
        "resolve_workers": cfg.resolve_workers,
        "mmdc": cfg.mmdc,
        "json_logs": cfg.json_logs,
        "log_level": cfg.log_level,
        "log_file": str(cfg.log_file) if cfg.log_file else None,
    }
