"""Template engine for Kiln.

Templates live under the site's templates root and are addressed by their
POSIX path relative to it (``post.html``, ``partials/nav.html``). Content
items name a template without its extension; :func:`template_candidates`
lists the file names tried for such a name.

Besides rendering, the engine inspects templates statically so the build
graph can record ``extends``/``include``/``import`` edges and reject cycles
before anything is rendered.

Key class:
- TemplateEngine: Jinja2 environment for one site plus static inspection.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from jinja2 import (
    Environment,
    FileSystemLoader,
    TemplateError,
    TemplateNotFound,
    TemplateSyntaxError,
    meta,
    nodes,
    select_autoescape,
)
from markupsafe import Markup

from .errors import RenderError, TemplateNotFoundError
from .renderers import Heading, pygments_css
from .utils import join_root_url

if TYPE_CHECKING:
    from .config import Site


def template_candidates(name: str) -> list[str]:
    """File names tried, in order, for a template name from front matter."""
    return [f"{name}.html", f"{name}.html.jinja", f"{name}.jinja", name]


def render_toc(headings: list[Heading]) -> Markup:
    """Render a list of headings as a nested ``<ul>`` table of contents."""
    if not headings:
        return Markup("")

    html_parts: list[str] = []
    level_stack: list[int] = []

    for heading in headings:
        level = heading.level

        # Close nested lists if going to a shallower level
        while level_stack and level_stack[-1] > level:
            level_stack.pop()
            html_parts.append("</li></ul>")

        if level_stack and level_stack[-1] == level:
            html_parts.append("</li>")
        else:
            html_parts.append("<ul>")
            level_stack.append(level)

        html_parts.append(
            Markup('<li><a href="#{}">{}</a>').format(heading.id, Markup(heading.text).striptags())
        )

    while level_stack:
        level_stack.pop()
        html_parts.append("</li></ul>")

    return Markup("".join(html_parts))


@dataclass
class TemplateInfo:
    """Static facts about one template source.

    Attributes:
        name: Template name (path relative to the templates root).
        parent: Template named by ``{% extends %}``, if literal.
        references: Every literal extends/include/import target.
        digest: sha256 of the source, used to detect real edits.
        error: Syntax error message, when the source does not parse.
    """

    name: str
    parent: str | None = None
    references: frozenset[str] = field(default_factory=frozenset)
    digest: str = ""
    error: str | None = None


class TemplateEngine:
    """Template rendering engine using Jinja2.

    Attributes:
        site: Site whose templates are loaded.
        env: Jinja2 environment.
    """

    def __init__(self, site: Site):
        self.site = site
        self.env = Environment(
            loader=FileSystemLoader(str(site.templates_root)),
            autoescape=select_autoescape(["html", "xml"]),
            enable_async=False,
        )
        self._install_globals()

    def _install_globals(self) -> None:
        self.env.globals["site"] = self.site
        self.env.globals["url_for"] = self.url_for
        self.env.globals["absolute_url"] = self.absolute_url
        self.env.globals["pygments_css"] = pygments_css
        self.env.globals["render_toc"] = render_toc

    def url_for(self, path: str) -> str:
        """Site-relative URL for an output path, honouring the base URL's path."""
        if path.startswith(("http://", "https://", "//")):
            return path
        suffix = path if path.startswith("/") else f"/{path}"
        return f"{self.site.base_path}{suffix}"

    def absolute_url(self, path: str) -> str:
        return join_root_url(self.site.url, path)

    def inspect(self, name: str) -> TemplateInfo:
        """Parse a template without rendering it and collect its references.

        Args:
            name: Template name relative to the templates root.

        Returns:
            TemplateInfo; ``error`` is set when the source does not parse.
        """
        path = self.site.templates_root / name
        source = path.read_text(encoding="utf-8")
        digest = hashlib.sha256(source.encode("utf-8")).hexdigest()
        try:
            ast = self.env.parse(source, name, str(path))
        except TemplateSyntaxError as exc:
            return TemplateInfo(name=name, digest=digest, error=f"line {exc.lineno}: {exc.message}")

        references = frozenset(
            ref for ref in meta.find_referenced_templates(ast) if ref is not None
        )
        parent = None
        for node in ast.find_all(nodes.Extends):
            if isinstance(node.template, nodes.Const):
                parent = node.template.value
                break
        return TemplateInfo(name=name, parent=parent, references=references, digest=digest)

    def check(self, name: str) -> None:
        """Compile a template, raising a node error if it cannot be loaded."""
        try:
            self.env.get_template(name)
        except TemplateNotFound as exc:
            raise TemplateNotFoundError(f"'{exc.name}'", self.site.templates_root / name) from exc
        except TemplateError as exc:
            raise RenderError(str(exc), self.site.templates_root / name, exc) from exc

    def render(self, name: str, context: dict[str, Any]) -> str:
        """Render a template by name.

        Raises:
            TemplateNotFoundError: If the template or one it references is missing.
            RenderError: If rendering fails for any other reason, including
                errors raised by template expressions.
        """
        try:
            template = self.env.get_template(name)
            return template.render(**context)
        except TemplateNotFound as exc:
            raise TemplateNotFoundError(f"'{exc.name}'", original_error=exc) from exc
        except Exception as exc:
            raise RenderError(f"{name}: {exc}", original_error=exc) from exc

    def clear_cache(self) -> None:
        """Drop compiled templates after sources changed."""
        self.env.cache.clear()


def find_cycle(edges: dict[str, set[str]]) -> list[str] | None:
    """Find a cycle in a directed graph of template references.

    Iterative depth-first search, so deep chains cannot exhaust the stack.

    Args:
        edges: Mapping of template name to the names it references.

    Returns:
        The cycle as a path that starts and ends at the same name, or None.
    """
    white, grey, black = 0, 1, 2
    colour = {name: white for name in edges}
    for start in sorted(edges):
        if colour[start] != white:
            continue
        stack: list[tuple[str, list[str]]] = [(start, sorted(edges.get(start, ())))]
        path = [start]
        colour[start] = grey
        while stack:
            node, pending = stack[-1]
            if not pending:
                colour[node] = black
                stack.pop()
                path.pop()
                continue
            nxt = pending.pop(0)
            state = colour.get(nxt, white)
            if state == grey:
                return path[path.index(nxt) :] + [nxt]
            if state == white and nxt in edges:
                colour[nxt] = grey
                path.append(nxt)
                stack.append((nxt, sorted(edges.get(nxt, ()))))
    return None
