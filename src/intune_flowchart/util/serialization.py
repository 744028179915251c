from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

from .errors import MalformedInputError


def to_plain(value: Any) -> Any:
    """
    Convert SDK-style model objects into plain dicts/lists so records can be
    read uniformly. Mappings and scalars are returned unchanged.
    """
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.decode("utf-8", "replace")
    if isinstance(value, (dict, list, tuple, str, int, float, bool)) or value is None:
        return value
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        try:
            return to_dict()
        except Exception:
            return str(value)
    if hasattr(value, "__dict__"):
        return {k: v for k, v in vars(value).items() if not k.startswith("_")}
    return value


def load_json_document(path: Path) -> Any:
    """
    Read one exported JSON document (a list, an envelope with "value", a keyed
    bag, or a single record). Anything that cannot be parsed is fatal.
    """
    if not path.exists():
        raise MalformedInputError(f"Input file not found: {path}")
    try:
        text = path.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError as e:
        raise MalformedInputError(f"Input file is not valid UTF-8 {path}: {e}") from e
    if not text.strip():
        raise MalformedInputError(f"Input file is empty: {path}")
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedInputError(f"Failed to parse JSON input {path}: {e}") from e
