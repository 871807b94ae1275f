from datetime import datetime, timezone

import pytest

from kiln.config import load_sites
from kiln.content import FrontMatter, output_for, parse_content
from kiln.errors import ConfigurationError, FrontMatterError, ValidationFailed
from kiln.frontmatter import DataCascade, coerce_datetime, split_front_matter
from kiln.validation import SchemaValidator


def test_split_front_matter():
    data, body = split_front_matter("---\ntitle: Hi\ntags: [a, b]\n---\n# Body\n")
    assert data == {"title": "Hi", "tags": ["a", "b"]}
    assert body == "# Body\n"

    assert split_front_matter("no front matter") == ({}, "no front matter")
    assert split_front_matter("---\n---\nbody") == ({}, "body")
    assert split_front_matter("\ufeff---\ntitle: x\n---\n")[0] == {"title": "x"}


def test_split_front_matter_only_closes_on_fence_line():
    data, body = split_front_matter("---\ntitle: a --- b\n---\ntext\n")
    assert data == {"title": "a --- b"}
    assert body == "text\n"


@pytest.mark.parametrize(
    "text,message",
    [
        ("---\ntitle: x\n", "unterminated"),
        ("---\ntitle: [oops\n---\n", "invalid YAML"),
        ("---\n- a\n- b\n---\n", "mapping"),
    ],
)
def test_split_front_matter_errors(tmp_path, text, message):
    path = tmp_path / "bad.md"
    with pytest.raises(FrontMatterError) as excinfo:
        split_front_matter(text, path)
    assert message in excinfo.value.message
    assert excinfo.value.source_path == path
    assert excinfo.value.reason.startswith("front-matter parse error")


def test_coerce_datetime():
    utc = timezone.utc
    assert coerce_datetime(None) is None
    assert coerce_datetime("2024-03-01") == datetime(2024, 3, 1, tzinfo=utc)
    assert coerce_datetime("2024-03-01T10:00:00Z") == datetime(2024, 3, 1, 10, tzinfo=utc)
    assert coerce_datetime(datetime(2024, 3, 1).date()) == datetime(2024, 3, 1, tzinfo=utc)
    with pytest.raises(FrontMatterError):
        coerce_datetime("yesterday")
    with pytest.raises(FrontMatterError):
        coerce_datetime(12)


@pytest.mark.parametrize(
    "rel,permalink,expected",
    [
        ("index.md", None, ("index.html", "/")),
        ("about.md", None, ("about.html", "/about.html")),
        ("posts/2024-01-02-Hello World.md", None, ("posts/hello-world.html", "/posts/hello-world.html")),
        ("docs/index.md", None, ("docs/index.html", "/docs/")),
        ("_draft.md", None, ("draft.html", "/draft.html")),
        ("a.md", "/custom/", ("custom/index.html", "/custom/")),
        ("a.md", "custom/page", ("custom/page.html", "/custom/page.html")),
        ("a.md", "feed.html", ("feed.html", "/feed.html")),
        ("a.md", "/", ("index.html", "/")),
    ],
)
def test_output_for(rel, permalink, expected):
    assert output_for(rel, permalink) == expected


def test_data_cascade(tmp_path):
    content = tmp_path / "content"
    (content / "posts" / "2024").mkdir(parents=True)
    (content / "_data.yaml").write_text("author: root\nlayout: base\n", encoding="utf-8")
    (content / "posts" / "_data.yaml").write_text("author: posts\n", encoding="utf-8")
    cascade = DataCascade.load(content, [content / "_data.yaml", content / "posts" / "_data.yaml"])

    assert cascade.resolve("about.md") == {"author": "root", "layout": "base"}
    assert cascade.resolve("posts/2024/x.md") == {"author": "posts", "layout": "base"}

    copy = cascade.copy()
    assert copy.remove_layer(content / "posts" / "_data.yaml") == "posts"
    assert copy.resolve("posts/x.md")["author"] == "root"
    assert cascade.resolve("posts/x.md")["author"] == "posts"


def test_data_cascade_rejects_non_mapping(tmp_path):
    (tmp_path / "_data.yaml").write_text("- 1\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        DataCascade.load(tmp_path, [tmp_path / "_data.yaml"])


def test_data_cascade_wraps_read_errors(tmp_path):
    (tmp_path / "_data.yaml").mkdir()
    with pytest.raises(ConfigurationError, match="cannot read data file"):
        DataCascade.load(tmp_path, [tmp_path / "_data.yaml"])


def test_parse_content_applies_cascade(create_site):
    root = create_site()
    [site] = load_sites(root)
    cascade = DataCascade.load(site.content_root, [site.content_root / "posts" / "_data.yaml"])
    item = parse_content(site, site.content_root / "posts" / "2024-01-01-a.md", cascade, SchemaValidator())

    assert item.rel_path == "posts/2024-01-01-a.md"
    assert item.front_matter.template == "post"
    assert item.title == "A"
    assert item.date == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert item.output_path == "posts/a.html"
    assert item.url == "/posts/a.html"
    assert item.body == "Post A\n"
    assert item.summary == "Post A"


def test_fingerprint_covers_resolved_front_matter(create_site):
    root = create_site()
    [site] = load_sites(root)
    path = site.content_root / "posts" / "2024-01-01-a.md"
    plain = parse_content(site, path, DataCascade(site.content_root))
    cascaded = parse_content(
        site, path, DataCascade.load(site.content_root, [site.content_root / "posts" / "_data.yaml"])
    )
    again = parse_content(site, path, DataCascade(site.content_root))
    assert plain.fingerprint == again.fingerprint
    assert plain.fingerprint != cascaded.fingerprint


def test_parse_content_requires_title_or_date(create_site):
    root = create_site({"content/notes/untitled.md": "just text\n"})
    [site] = load_sites(root)
    with pytest.raises(ValidationFailed) as excinfo:
        parse_content(site, site.content_root / "notes" / "untitled.md", DataCascade(site.content_root), SchemaValidator())
    assert excinfo.value.reason == "schema validation failed: either 'title' or 'date' is required"


def test_parse_content_rejects_invalid_utf8(create_site):
    root = create_site()
    [site] = load_sites(root)
    path = site.content_root / "binary.md"
    path.write_bytes(b"\xff\xfe\x00")
    with pytest.raises(FrontMatterError):
        parse_content(site, path, DataCascade(site.content_root))


def test_front_matter_extra_and_lists():
    fm = FrontMatter.from_mapping({"title": "T", "tags": "a, b", "featured": True})
    assert fm.tags == ("a", "b")
    assert fm.extra == {"featured": True}
    meta = fm.as_dict()
    assert meta["featured"] is True
    assert meta["tags"] == ["a", "b"]
    with pytest.raises(FrontMatterError):
        FrontMatter.from_mapping({"tags": 3})
