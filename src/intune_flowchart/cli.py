from __future__ import annotations

import logging
import sys
from collections import Counter
from pathlib import Path
from time import perf_counter
from typing import Any, Dict, List, Optional, Tuple

from rich.console import Console
from rich.table import Table

from .compile.compiler import compile_flowchart
from .compile.grouping import apply_prefilters
from .config import RunConfig, dump_config, load_run_config
from .export.mermaid import check_flowchart, validate_with_mmdc, write_flowchart
from .logging import LogConfig, add_run_log_file, get_logger, setup_logging
from .normalize.schema import OS_ORDER, Resource, ResourceKind
from .normalize.transform import normalize_records
from .resolve.lookup import DirectoryLookup, OfflineLookup, load_name_map
from .util.errors import ConfigError, ExportError, as_exit_code
from .util.serialization import load_json_document

LOG = get_logger(__name__)


class _StepTimers:
    def __init__(self) -> None:
        self._starts: Dict[str, float] = {}

    def start(self, key: str) -> None:
        self._starts[key] = perf_counter()

    def finish(self, key: str) -> Optional[int]:
        started = self._starts.pop(key, None)
        if started is None:
            return None
        return int((perf_counter() - started) * 1000)


def _log_event(
    logger: Any,
    level: int,
    message: str,
    *,
    step: str,
    phase: str,
    timers: Optional[_StepTimers] = None,
    timer_key: Optional[str] = None,
    **extra: Any,
) -> None:
    key = timer_key or step
    duration_ms = None
    if timers is not None:
        if phase == "start":
            timers.start(key)
        elif phase in {"complete", "error", "validated", "skipped"}:
            duration_ms = timers.finish(key)
    payload: Dict[str, Any] = {"step": step, "phase": phase, "event": f"{step}.{phase}"}
    if duration_ms is not None:
        payload["duration_ms"] = duration_ms
    payload.update(extra)
    logger.log(level, message, extra=payload)


def _load_inputs(cfg: RunConfig) -> Tuple[Any, Any]:
    if cfg.apps is None and cfg.profiles is None:
        raise ConfigError("At least one of --apps or --profiles must be provided")
    apps = load_json_document(cfg.apps) if cfg.apps else None
    profiles = load_json_document(cfg.profiles) if cfg.profiles else None
    return apps, profiles


def _resolve_lookup(cfg: RunConfig) -> DirectoryLookup:
    if cfg.names is None:
        return OfflineLookup()
    return load_name_map(cfg.names)


def cmd_render(cfg: RunConfig) -> int:
    if cfg.mmdc and cfg.out is None:
        raise ConfigError("--mmdc requires --out")
    timers = _StepTimers()
    compile_config = cfg.compile_config()
    apps, profiles = _load_inputs(cfg)
    lookup = _resolve_lookup(cfg)

    _log_event(LOG, logging.INFO, "Compile started", step="compile", phase="start", timers=timers)
    result = compile_flowchart(compile_config, apps=apps, profiles=profiles, lookup=lookup)
    _log_event(
        LOG,
        logging.INFO,
        "Compile complete",
        step="compile",
        phase="complete",
        timers=timers,
        resources=result.resources,
        leaves=result.leaves,
        edges=result.edges,
        lookups=result.lookups,
    )
    if result.empty_reason:
        _log_event(LOG, logging.WARNING, "Empty diagram", step="compile", phase="skipped", reason=result.empty_reason)

    if cfg.out is None:
        sys.stdout.write(result.text)
        return 0

    write_flowchart(cfg.out, result.text)
    _log_event(LOG, logging.INFO, "Flowchart written", step="export", phase="complete", path=str(cfg.out))
    if cfg.mmdc:
        _log_event(LOG, logging.INFO, "Mermaid validation started", step="mmdc", phase="start", timers=timers)
        validate_with_mmdc([cfg.out])
        _log_event(LOG, logging.INFO, "Mermaid validation passed", step="mmdc", phase="validated", timers=timers)
    return 0


def _summary_rows(resources: List[Resource]) -> List[Tuple[str, str, int, int]]:
    counts: Counter = Counter()
    assignments: Counter = Counter()
    for resource in resources:
        key = (resource.operating_system.value, resource.type_label)
        counts[key] += 1
        assignments[key] += len(resource.assignments)
    os_rank = {o.value: i for i, o in enumerate(OS_ORDER)}
    keys = sorted(counts, key=lambda k: (os_rank.get(k[0], len(os_rank)), k[1].lower()))
    return [(os_name, label, counts[(os_name, label)], assignments[(os_name, label)]) for os_name, label in keys]


def cmd_summary(cfg: RunConfig, console: Optional[Console] = None) -> int:
    compile_config = cfg.compile_config()
    apps, profiles = _load_inputs(cfg)
    resources: List[Resource] = []
    if apps is not None:
        resources.extend(normalize_records(apps, ResourceKind.APPLICATION, append_version=cfg.append_version))
    if profiles is not None:
        resources.extend(normalize_records(profiles, ResourceKind.PROFILE))
    resources = apply_prefilters(resources, compile_config)

    table = Table(title="Assigned resources")
    table.add_column("OS")
    table.add_column("Type")
    table.add_column("Resources", justify="right")
    table.add_column("Assignments", justify="right")
    for os_name, label, count, assigned in _summary_rows(resources):
        table.add_row(os_name, label, str(count), str(assigned))
    (console or Console()).print(table)
    return 0


def cmd_validate(cfg: RunConfig) -> int:
    if not cfg.inputs:
        raise ConfigError("No flowchart files given")
    failures = 0
    for path in cfg.inputs:
        try:
            stats = check_flowchart(Path(path).read_text(encoding="utf-8"))
        except (OSError, ExportError) as e:
            failures += 1
            _log_event(LOG, logging.ERROR, "Flowchart invalid", step="validate", phase="error", path=str(path), error=str(e))
            continue
        _log_event(LOG, logging.INFO, "Flowchart valid", step="validate", phase="validated", path=str(path), **stats)
    if failures:
        raise ExportError(f"{failures} flowchart(s) failed validation")
    if cfg.mmdc:
        validate_with_mmdc(cfg.inputs)
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    try:
        command, cfg = load_run_config(argv=argv)
        setup_logging(LogConfig(level=cfg.log_level, json_logs=cfg.json_logs))
        if cfg.log_file:
            add_run_log_file(cfg.log_file)
        LOG.debug("Resolved run config", extra={"command": command, "config": dump_config(cfg)})

        if command == "render":
            code = cmd_render(cfg)
        elif command == "summary":
            code = cmd_summary(cfg)
        elif command == "validate":
            code = cmd_validate(cfg)
        else:
            raise ConfigError(f"Unknown command: {command}")

        sys.exit(code)
    except SystemExit:
        raise
    except BrokenPipeError:
        # Common when users pipe to `head` or similar tools.
        sys.exit(0)
    except Exception as e:
        setup_logging(LogConfig())
        LOG.error("Execution failed", extra={"error": str(e)})
        sys.exit(as_exit_code(e))


if __name__ == "__main__":
    main()
