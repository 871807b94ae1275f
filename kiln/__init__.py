"""Kiln static site builder.

Kiln turns a tree of Markdown content with YAML front matter, Jinja2
templates, style sources and static assets into a published website, and can
serve it locally with incremental rebuilds and live reload.

The build is organised around a dependency graph:

- Source tree reader: classifies files and parses content items.
- Build graph: nodes for content, templates, assets, style bundles and feeds.
- Scheduler: recomputes the dirty closure of the graph on a worker pool.
- Change watcher: coalesces file-system events into change-sets.
- Dev server: serves the output tree and pushes reload messages.
- Build session: wires the pieces together for one-shot and watch modes.
"""

__all__ = ["__version__"]
__version__ = "0.3.0"
