"""Custom exceptions for codemap."""


class CodemapError(Exception):
    """Base exception for all codemap errors."""


class ConfigError(CodemapError):
    """Configuration-related errors."""


class GraphFormatError(CodemapError, ValueError):
    """A graph, component or layout document has the wrong shape."""


class LayoutFileError(CodemapError):
    """A persisted layout file could not be read or written."""


class RenderSurfaceError(CodemapError):
    """The render target is missing or cannot be written."""

    def __init__(self, target: str, reason: str):
        super().__init__(f"Cannot render to '{target}': {reason}")
        self.target = target
        self.reason = reason
