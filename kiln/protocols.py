"""Protocol definitions for Kiln.

The build core reaches markdown/template rendering, style compilation,
feed serialization, front-matter validation and asset processing only
through these interfaces. The default implementations live in
``renderers``, ``styles``, ``feeds``, ``validation`` and
``asset_processors``; tests substitute small fakes.
"""

from __future__ import annotations

from abc import abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .content import FrontMatter
    from .feeds import FeedFormat, FeedSnapshot


@runtime_checkable
class PageRenderer(Protocol):
    """Renders a content body through its template chain."""

    @abstractmethod
    def render(
        self,
        body: str,
        front_matter: FrontMatter,
        template_chain: list[str],
        context: dict[str, Any],
    ) -> str:
        """Render content to a complete HTML document.

        Args:
            body: Raw Markdown body.
            front_matter: Resolved front matter.
            template_chain: Template names, most specific first.
            context: Additional template variables.

        Returns:
            Rendered HTML.

        Raises:
            RenderError: If rendering fails.
        """
        ...


@runtime_checkable
class StyleCompiler(Protocol):
    """Compiles a style entry point to CSS."""

    @abstractmethod
    def compile(self, entry: Path) -> tuple[bytes, list[Path]]:
        """Compile an entry point.

        Returns:
            Tuple of (CSS bytes, discovered dependency paths).

        Raises:
            StyleCompileError: If compilation fails.
        """
        ...


@runtime_checkable
class FeedSerializer(Protocol):
    @abstractmethod
    def serialize(self, snapshot: FeedSnapshot, fmt: FeedFormat) -> bytes:
        ...


@runtime_checkable
class MetadataValidator(Protocol):
    @abstractmethod
    def validate(self, front_matter: FrontMatter) -> list[str]:
        """Return validation errors; empty when the front matter is valid."""
        ...


@runtime_checkable
class AssetProcessor(Protocol):
    """Produces the published bytes for a static asset."""

    @abstractmethod
    def transform(self, source: Path) -> bytes:
        ...
