"""Collaborator services a build graph and its nodes call into."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from .asset_processors import AssetProcessorRegistry, create_default_registry
from .feeds import create_default_feed_registry
from .renderers import MarkdownRenderer, PageRenderer
from .styles import StyleCompiler
from .templates import TemplateEngine
from .validation import SchemaValidator

if TYPE_CHECKING:
    from .config import Site
    from .protocols import FeedSerializer, MetadataValidator
    from .protocols import PageRenderer as PageRendererProtocol
    from .protocols import StyleCompiler as StyleCompilerProtocol


@dataclass
class BuildServices:
    """Per-site services.

    Attributes:
        engine: Template engine; also used for static template inspection.
        renderer: Renders content items.
        markdown: Renders bodies for feed entries.
        styles: Compiles style bundles.
        feeds: Serializes feed snapshots.
        assets: Transforms static files.
        validator: Validates resolved front matter.
    """

    engine: TemplateEngine
    renderer: PageRendererProtocol
    markdown: MarkdownRenderer
    styles: StyleCompilerProtocol
    feeds: FeedSerializer
    assets: AssetProcessorRegistry
    validator: MetadataValidator

    @classmethod
    def for_site(cls, site: Site) -> BuildServices:
        engine = TemplateEngine(site)
        markdown = MarkdownRenderer()
        return cls(
            engine=engine,
            renderer=PageRenderer(engine, markdown),
            markdown=markdown,
            styles=StyleCompiler(site.styles_root, site.root),
            feeds=create_default_feed_registry(),
            assets=create_default_registry(),
            validator=SchemaValidator(site.schema),
        )
