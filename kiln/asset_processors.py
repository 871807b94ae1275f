"""Asset processors for Kiln.

Each processor turns one static source file into the bytes published for
it. Writing is left to the build node, which stages and atomically
replaces the output file.

Key classes:
- ImageProcessor: Re-encodes images with Pillow's optimizer.
- JSProcessor: Minifies JavaScript with rjsmin.
- StaticAssetProcessor: Publishes the file unchanged.
- AssetProcessorRegistry: Picks a processor by priority.
"""

from __future__ import annotations

import io
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from PIL import Image
from rjsmin import jsmin

from .errors import NodeError

logger = logging.getLogger(__name__)


class BaseAssetProcessor(ABC):
    """Base class for asset processors."""

    @property
    @abstractmethod
    def priority(self) -> int:
        """Return processor priority (higher = checked first)."""
        ...

    @abstractmethod
    def can_process(self, path: Path) -> bool:
        ...

    @abstractmethod
    def transform(self, source: Path) -> bytes:
        """Produce the published bytes for a source file.

        Args:
            source: Source asset path.

        Returns:
            Output file content.
        """
        ...


class ImageProcessor(BaseAssetProcessor):
    """Optimizes image files using Pillow.

    Supports PNG, JPG, JPEG, and WebP formats. Files Pillow cannot decode
    are published unchanged.
    """

    SUPPORTED_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp"}

    @property
    def priority(self) -> int:
        return 100

    def can_process(self, path: Path) -> bool:
        return path.suffix.lower() in self.SUPPORTED_EXTENSIONS

    def transform(self, source: Path) -> bytes:
        raw = source.read_bytes()
        try:
            with Image.open(io.BytesIO(raw)) as img:
                buffer = io.BytesIO()
                img.save(buffer, format=img.format, optimize=True)
        except OSError as exc:
            logger.debug("copying %s unoptimized: %s", source, exc)
            return raw
        optimized = buffer.getvalue()
        # keep the original when re-encoding made it larger
        return optimized if len(optimized) < len(raw) else raw


class JSProcessor(BaseAssetProcessor):
    """Minifies JavaScript files; ``*.min.js`` is left alone."""

    @property
    def priority(self) -> int:
        return 80

    def can_process(self, path: Path) -> bool:
        return path.suffix.lower() == ".js" and not path.name.endswith(".min.js")

    def transform(self, source: Path) -> bytes:
        text = source.read_text(encoding="utf-8")
        return jsmin(text).encode("utf-8")


class StaticAssetProcessor(BaseAssetProcessor):
    """Fallback processor for assets that need no processing (fonts, SVGs, CSS)."""

    @property
    def priority(self) -> int:
        return 0

    def can_process(self, path: Path) -> bool:
        return True

    def transform(self, source: Path) -> bytes:
        return source.read_bytes()


class AssetProcessorRegistry:
    """Registry for asset processors, checked highest priority first."""

    def __init__(self):
        self._processors: list[BaseAssetProcessor] = []

    def register(self, processor: BaseAssetProcessor) -> None:
        self._processors.append(processor)
        self._processors.sort(key=lambda p: p.priority, reverse=True)

    def get_processor(self, path: Path) -> BaseAssetProcessor | None:
        for processor in self._processors:
            if processor.can_process(path):
                return processor
        return None

    def transform(self, source: Path) -> bytes:
        """Process an asset with the first processor that accepts it.

        Raises:
            NodeError: If no registered processor accepts the file.
        """
        processor = self.get_processor(source)
        if processor is None:
            raise NodeError("no asset processor accepts this file", source)
        return processor.transform(source)


def create_default_registry() -> AssetProcessorRegistry:
    registry = AssetProcessorRegistry()
    registry.register(ImageProcessor())
    registry.register(JSProcessor())
    registry.register(StaticAssetProcessor())
    return registry
