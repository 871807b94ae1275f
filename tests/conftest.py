from __future__ import annotations

from pathlib import Path

import pytest

DEFAULT_CONFIG = """\
title: Test Site
url: https://example.com
collections:
  posts:
    directory: posts
feeds:
  - collection: posts
"""

DEFAULT_FILES = {
    "templates/base.html": (
        "<html><head><title>{{ title }}</title></head>"
        "<body>{% block body %}{% endblock %}</body></html>\n"
    ),
    "templates/page.html": "<html><body><h1>{{ title }}</h1>{{ content }}</body></html>\n",
    "templates/post.html": (
        '{% extends "base.html" %}{% block body %}<article>{{ content }}</article>{% endblock %}\n'
    ),
    "templates/list.html": (
        '{% extends "base.html" %}{% block body %}<ul>'
        "{% for p in collections.posts %}"
        '<li><a href="{{ url_for(p.url) }}">{{ p.title }}</a></li>'
        "{% endfor %}</ul>{% endblock %}\n"
    ),
    "content/index.md": "---\ntitle: Home\ntemplate: list\ncollections: [posts]\n---\nWelcome\n",
    "content/about.md": "---\ntitle: About\n---\nAbout us.\n",
    "content/posts/_data.yaml": "template: post\n",
    "content/posts/2024-01-01-a.md": "---\ntitle: A\n---\nPost A\n",
    "content/posts/2024-01-02-b.md": "---\ntitle: B\n---\nPost B\n",
    "styles/main.css": "body { color: red; }\n",
    "static/js/app.min.js": "var a=1;\n",
    "static/robots.txt": "User-agent: *\n",
}


def write_files(root: Path, files: dict[str, str | None]) -> None:
    """Write (or, for a None value, delete) files below ``root``."""
    for rel, text in files.items():
        path = root / rel
        if text is None:
            if path.exists():
                path.unlink()
            continue
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")


@pytest.fixture
def create_site(tmp_path):
    """Return a helper that lays out a small site and returns its root.

    The default site has a ``posts`` collection with two dated posts, a
    listing page, an about page, a plain CSS bundle, two static files and
    Atom plus JSON feeds over the posts.
    """

    def _create(files: dict[str, str | None] | None = None, config: str | None = DEFAULT_CONFIG, name: str = "site") -> Path:
        root = tmp_path / name
        root.mkdir(parents=True, exist_ok=True)
        if config is not None:
            (root / "kiln.yaml").write_text(config, encoding="utf-8")
        merged = dict(DEFAULT_FILES)
        merged.update(files or {})
        write_files(root, merged)
        return root

    return _create
