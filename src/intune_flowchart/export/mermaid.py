from __future__ import annotations

import logging
import re
import subprocess
import tempfile
from pathlib import Path
from shutil import which
from typing import Dict, List, Sequence, Set, Union

from ..compile.grouping import audience_label
from ..compile.identifiers import allocate, audience_id, filter_node_id, intent_id
from ..normalize.schema import Assignment, Direction, Resource, ResourceNode, TargetMode, TreeNode
from ..resolve.cache import NameResolutionCache, Namespace
from ..util.errors import ExportError

LOG = logging.getLogger(__name__)

AUDIENCE_ICON = "fa:fa-users"
FILTER_ICON = "fa:fa-filter"
ICON_WIDTH = 32
INDENT = "  "
FALLBACK_LABEL = "Unknown"

_BASE64_UNSAFE = re.compile(r"[^A-Za-z0-9+/=]")
_DIRECTIONS = {d.value for d in Direction}


def sanitize_label(text: str) -> str:
    safe = str(text or "").replace('"', "'")
    for ch in ("\n", "\r", "\t"):
        safe = safe.replace(ch, " ")
    return " ".join(safe.split())


def resource_label(resource: Resource, *, include_icons: bool = False) -> str:
    name = sanitize_label(resource.display_name) or FALLBACK_LABEL
    icon = _BASE64_UNSAFE.sub("", resource.icon or "") if include_icons else ""
    if icon:
        return f"<img src='data:image/png;base64,{icon}' width='{ICON_WIDTH}' /><br>{name}"
    return name


class _ScopedLines:
    """Accumulates output lines; edge dedup is checked against the innermost subgraph only."""

    def __init__(self, header: str) -> None:
        self.lines: List[str] = [header]
        self._scopes: List[Set[str]] = [set()]
        self.edges = 0
        self.collapsed = 0

    def open(self, depth: int, node_id: str, label: str) -> None:
        self.lines.append(f'{INDENT * depth}subgraph {node_id}["{label}"]')
        self._scopes.append(set())

    def close(self, depth: int) -> None:
        self.lines.append(f"{INDENT * depth}end")
        self._scopes.pop()

    def node(self, depth: int, text: str) -> None:
        self.lines.append(f"{INDENT * depth}{text}")

    def edge(self, depth: int, text: str) -> bool:
        scope = self._scopes[-1]
        if text in scope:
            self.collapsed += 1
            return False
        scope.add(text)
        self.lines.append(f"{INDENT * depth}{text}")
        self.edges += 1
        return True


def _edge_label(assignment: Assignment) -> str:
    return "excluded" if assignment.target.mode is TargetMode.EXCLUDED else "included"


def _emit_leaf(
    out: _ScopedLines,
    leaf: ResourceNode,
    depth: int,
    cache: NameResolutionCache,
    include_icons: bool,
) -> None:
    leaf_id = allocate(leaf)
    out.node(depth, f'{leaf_id}["{resource_label(leaf.resource, include_icons=include_icons)}"]')
    for index, assignment in enumerate(leaf.assignments):
        i_id = intent_id(leaf_id, assignment, index)
        out.edge(depth, f'{leaf_id} --> {i_id}["{sanitize_label(assignment.intent_label)}"]')

        a_id = audience_id(leaf_id, index)
        audience = sanitize_label(audience_label(assignment.target, cache)) or FALLBACK_LABEL
        out.edge(depth, f'{i_id} -->|{_edge_label(assignment)}| {a_id}["{AUDIENCE_ICON} {audience}"]')

        target = assignment.target
        if target.filter_id:
            f_id = filter_node_id(leaf_id, index)
            name = sanitize_label(cache.resolve(Namespace.FILTER, target.filter_id)) or FALLBACK_LABEL
            label = f"{target.filter_mode.value} filter" if target.filter_mode else "filter"
            out.edge(depth, f'{a_id} -->|{label}| {f_id}["{FILTER_ICON} {name}"]')


def _emit_node(
    out: _ScopedLines,
    node: Union[TreeNode, ResourceNode],
    depth: int,
    cache: NameResolutionCache,
    include_icons: bool,
) -> None:
    if isinstance(node, ResourceNode):
        _emit_leaf(out, node, depth, cache, include_icons)
        return
    out.open(depth, allocate(node), sanitize_label(node.label) or FALLBACK_LABEL)
    for child in node.children:
        _emit_node(out, child, depth + 1, cache, include_icons)
    out.close(depth)


def empty_flowchart(direction: Direction) -> str:
    return f"flowchart {Direction(direction).value}\n"


def emit(
    root: TreeNode,
    direction: Direction,
    cache: NameResolutionCache,
    *,
    include_icons: bool = False,
) -> str:
    """
    Serialize the grouping tree depth-first into Mermaid flowchart text: one
    subgraph per non-leaf node, one declaration per resource leaf, and
    resource -> intent -> audience [-> filter] edges per assignment.
    """
    out = _ScopedLines(f"flowchart {Direction(direction).value}")
    for child in root.children:
        _emit_node(out, child, 1, cache, include_icons)
    if out.collapsed:
        LOG.debug("Collapsed duplicate edges", extra={"collapsed": out.collapsed})
    return "\n".join(out.lines) + "\n"


def _brackets_balanced(line: str) -> bool:
    depth = 0
    in_quotes = False
    for ch in line:
        if ch == '"':
            in_quotes = not in_quotes
        elif in_quotes:
            continue
        elif ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0 and not in_quotes


def check_flowchart(text: str) -> Dict[str, int]:
    """
    Structural check of flowchart text: header line, one `end` per
    `subgraph`, balanced brackets and quotes per line. Raises ExportError.
    """
    lines = [line.strip() for line in (text or "").splitlines()]
    if not lines:
        raise ExportError("Flowchart is empty")
    header = lines[0].split()
    if len(header) != 2 or header[0] != "flowchart" or header[1] not in _DIRECTIONS:
        raise ExportError(f"Invalid flowchart header: {lines[0]!r}")
    open_subgraphs = 0
    subgraphs = 0
    edges = 0
    for number, line in enumerate(lines[1:], start=2):
        if not line:
            continue
        if line.startswith("subgraph "):
            open_subgraphs += 1
            subgraphs += 1
        elif line == "end":
            open_subgraphs -= 1
            if open_subgraphs < 0:
                raise ExportError(f"Unmatched 'end' on line {number}")
        elif "-->" in line:
            edges += 1
        if not _brackets_balanced(line):
            raise ExportError(f"Unbalanced brackets or quotes on line {number}: {line!r}")
    if open_subgraphs:
        raise ExportError(f"{open_subgraphs} subgraph(s) not closed")
    return {"subgraphs": subgraphs, "edges": edges}


def write_flowchart(path: Path, text: str) -> Path:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    except OSError as e:
        raise ExportError(f"Failed to write flowchart {path}: {e}") from e
    return path


def is_mmdc_available() -> bool:
    return which("mmdc") is not None


def validate_with_mmdc(paths: Sequence[Path]) -> List[Path]:
    """Validate flowcharts by rendering each one with `mmdc`.

    Mermaid CLI doesn't provide a parse-only mode; rendering is used as the
    syntax check. Returns the validated paths (sorted).
    """
    mmdc = which("mmdc")
    if not mmdc:
        raise ExportError(
            "Mermaid validation requested but 'mmdc' was not found on PATH. "
            "Install Mermaid CLI and retry: npm install -g @mermaid-js/mermaid-cli"
        )

    ordered = sorted(p for p in paths if p.is_file())
    with tempfile.TemporaryDirectory(prefix="intune-fc-mmdc-") as td:
        tmp_dir = Path(td)
        for p in ordered:
            out_svg = tmp_dir / f"{p.stem}.svg"
            proc = subprocess.run(
                [mmdc, "-i", str(p), "-o", str(out_svg)],
                text=True,
                capture_output=True,
            )
            if proc.returncode != 0:
                stderr = (proc.stderr or "").strip()
                stdout = (proc.stdout or "").strip()
                detail = stderr or stdout or f"mmdc exited with code {proc.returncode}"
                raise ExportError(f"Mermaid validation failed for {p.name}: {detail}")
    return ordered
