from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    OK = 0
    CONFIG_ERROR = 2
    INPUT_ERROR = 3
    RUNTIME_ERROR = 5


class FlowchartError(Exception):
    """Base error for the flowchart compiler."""


class ConfigError(FlowchartError):
    """Raised for configuration or argument issues."""


class ConfigurationError(ConfigError):
    """Raised when compile parameters are contradictory or empty."""


class MalformedInputError(FlowchartError):
    """Raised when a top-level input document cannot be read at all."""


class UnresolvedReferenceError(FlowchartError):
    """Raised by directory lookups when an id cannot be resolved."""


class ExportError(FlowchartError):
    """Raised when writing or validating diagrams fails."""


def as_exit_code(exc: BaseException) -> int:
    if isinstance(exc, (ConfigError, ValueError)):
        return int(ExitCode.CONFIG_ERROR)
    if isinstance(exc, MalformedInputError):
        return int(ExitCode.INPUT_ERROR)
    if isinstance(exc, (ExportError, FlowchartError)):
        return int(ExitCode.RUNTIME_ERROR)
    return 1
