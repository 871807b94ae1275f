"""Content renderers for Kiln.

Key classes:
- MarkdownRenderer: Renders Markdown to HTML with heading ids and syntax highlighting.
- PageRenderer: Markdown plus template rendering for one content item.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import mistune
from markupsafe import Markup
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

if TYPE_CHECKING:
    from .content import FrontMatter
    from .templates import TemplateEngine

HIGHLIGHT_CSS_CLASS = "highlight"


@dataclass
class Heading:
    """A heading extracted from markdown content for TOC generation.

    Attributes:
        id: Anchor ID for the heading (URL-friendly slug).
        text: The text content of the heading.
        level: Heading level (1-6).
    """

    id: str
    text: str
    level: int


def _generate_heading_id(text: str) -> str:
    slug = re.sub(r"<[^>]+>", "", text).lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[-\s]+", "-", slug)
    return slug.strip("-") or "section"


class _HighlightRenderer(mistune.HTMLRenderer):
    """Markdown renderer with heading anchors and Pygments highlighting.

    Attributes:
        headings: Headings seen during rendering, in document order.
    """

    def __init__(self):
        super().__init__(escape=False)
        self.headings: list[Heading] = []
        self._heading_id_counts: dict[str, int] = {}

    def heading(self, text: str, level: int, **attrs) -> str:
        base_id = _generate_heading_id(text)

        if base_id in self._heading_id_counts:
            self._heading_id_counts[base_id] += 1
            heading_id = f"{base_id}-{self._heading_id_counts[base_id]}"
        else:
            self._heading_id_counts[base_id] = 0
            heading_id = base_id

        self.headings.append(Heading(id=heading_id, text=text, level=level))
        return f'<h{level} id="{heading_id}">{text}</h{level}>\n'

    def block_code(self, code: str, info: str | None = None) -> str:
        """Render a code block, highlighted when the language is known."""
        lang = info.split()[0] if info else None
        if lang:
            try:
                lexer = get_lexer_by_name(lang, stripall=True)
            except ClassNotFound:
                lexer = None
            if lexer is not None:
                formatter = HtmlFormatter(cssclass=HIGHLIGHT_CSS_CLASS)
                return highlight(code, lexer, formatter)
        escaped = code.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
        lang_class = f' class="language-{lang}"' if lang else ""
        return f"<pre><code{lang_class}>{escaped}</code></pre>\n"


class MarkdownRenderer:
    """Renders Markdown content to HTML."""

    plugins = ["strikethrough", "footnotes", "table", "url"]

    def render(self, body: str) -> tuple[str, list[Heading]]:
        """Render Markdown content to HTML.

        Args:
            body: Markdown source content.

        Returns:
            Tuple of (rendered HTML, list of Heading objects).
        """
        renderer = _HighlightRenderer()
        markdown = mistune.create_markdown(renderer=renderer, plugins=self.plugins)
        html = markdown(body)
        return html, renderer.headings


def pygments_css(style: str = "default") -> str:
    """Stylesheet for highlighted code blocks."""
    return HtmlFormatter(style=style, cssclass=HIGHLIGHT_CSS_CLASS).get_style_defs(
        f".{HIGHLIGHT_CSS_CLASS}"
    )


class PageRenderer:
    """Renders a content item: Markdown body first, then its template chain.

    Attributes:
        engine: Template engine holding the site's templates.
        markdown: Markdown renderer for item bodies.
    """

    def __init__(self, engine: TemplateEngine, markdown: MarkdownRenderer | None = None):
        self.engine = engine
        self.markdown = markdown or MarkdownRenderer()

    def render(
        self,
        body: str,
        front_matter: FrontMatter,
        template_chain: list[str],
        context: dict[str, Any],
    ) -> str:
        """Render an item to a complete HTML document.

        Args:
            body: Markdown body.
            front_matter: Resolved front matter.
            template_chain: Template names from the item's own template up
                to the root of its ``extends`` chain.
            context: Extra template variables (page, collections, ...).

        Returns:
            The rendered HTML.

        Raises:
            RenderError: If the template fails to render.
        """
        html, headings = self.markdown.render(body)
        variables = dict(context)
        variables.update(
            content=Markup(html),
            toc=headings,
            meta=front_matter.as_dict(),
            title=context.get("title") or front_matter.title,
        )
        return self.engine.render(template_chain[0], variables)
