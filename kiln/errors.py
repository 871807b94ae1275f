"""Error taxonomy for Kiln.

Errors fall into three tiers:

- ConfigurationError: fatal for the whole session (bad config, unreadable
  site root, cyclic templates). Raised before anything is written.
- GraphError: fatal for one site (for example two content items resolving
  to the same output path).
- NodeError: recoverable. Fails (or skips) a single node and its dependents
  and is collected into the build report.
"""

from __future__ import annotations

from pathlib import Path


class KilnError(Exception):
    """Base class for all Kiln errors.

    Attributes:
        message: Human-readable error message.
        source_path: Source file the error is about, when there is one.
        original_error: The underlying exception, if this wraps one.
    """

    def __init__(
        self,
        message: str,
        source_path: Path | None = None,
        original_error: Exception | None = None,
    ):
        self.message = message
        self.source_path = source_path
        self.original_error = original_error
        if source_path is not None:
            super().__init__(f"{source_path}: {message}")
        else:
            super().__init__(message)


class ConfigurationError(KilnError):
    """The session cannot start: configuration or site layout is unusable."""


class TemplateCycleError(ConfigurationError):
    """A template extends or includes itself, directly or transitively."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__("template cycle: " + " -> ".join(cycle))


class GraphError(KilnError):
    """The build graph of one site is inconsistent."""


class NodeError(KilnError):
    """A single node could not be built.

    Subclasses set ``label``, which prefixes the reason recorded in the
    build report (``"front-matter parse error: ..."``).
    """

    label = "build error"

    @property
    def reason(self) -> str:
        return f"{self.label}: {self.message}"


class FrontMatterError(NodeError):
    label = "front-matter parse error"


class TemplateNotFoundError(NodeError):
    label = "missing template"


class RenderError(NodeError):
    label = "render error"


class ValidationFailed(NodeError):
    """Front matter does not satisfy the site's metadata schema."""

    label = "schema validation failed"

    def __init__(self, errors: list[str], source_path: Path | None = None):
        self.errors = errors
        super().__init__("; ".join(errors), source_path)


class StyleCompileError(NodeError):
    label = "style compile error"


class SourceReadError(NodeError):
    label = "source read error"


class OutputWriteError(NodeError):
    label = "output write error"
