from __future__ import annotations

import re
from typing import Sequence, Union

from ..normalize.schema import Assignment, Intent, ResourceNode, TreeNode

_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9_]")


def sanitize_id(value: str) -> str:
    cleaned = _UNSAFE_ID_CHARS.sub("_", (value or "").strip())
    return cleaned or "x"


def path_token(path: Sequence[int]) -> str:
    """Underscore-joined zero-based sibling indices from the root."""
    if not path:
        return "root"
    return "_".join(str(int(i)) for i in path)


def allocate(node: Union[TreeNode, ResourceNode]) -> str:
    """
    Id for a tree node derived only from its coordinates (plus the resource id
    for leaves), so equal labels in different places never collide.
    """
    if isinstance(node, ResourceNode):
        return f"{sanitize_id(node.resource.id)}_{path_token(node.path)}"
    return f"sg_{path_token(node.path)}"


def intent_id(leaf_id: str, assignment: Assignment, index: int) -> str:
    """Known intents and the no-intent label share one node per leaf; free-text intents get one per assignment."""
    if assignment.intent is not Intent.OTHER:
        return f"{leaf_id}_i_{assignment.intent.value}"
    if not assignment.intent_raw:
        return f"{leaf_id}_i_assigned"
    return f"{leaf_id}_i{index}"


def audience_id(leaf_id: str, index: int) -> str:
    return f"{leaf_id}_t{index}"


def filter_node_id(leaf_id: str, index: int) -> str:
    return f"{leaf_id}_t{index}_f"
