import pytest

from conftest import write_files
from kiln.config import load_sites
from kiln.errors import GraphError, TemplateCycleError
from kiln.graph import NodeKind, apply_changes, construct
from kiln.scheduler import Scheduler
from kiln.services import BuildServices
from kiln.watcher import ChangeKind

A = "content:posts/2024-01-01-a.md"
B = "content:posts/2024-01-02-b.md"
INDEX = "content:index.md"
ABOUT = "content:about.md"
FEEDS = {"feed:feeds/posts.xml", "feed:feeds/posts.json"}


def build_graph(root):
    [site] = load_sites(root)
    return site, construct(site, BuildServices.for_site(site))


def change(site, rel, kind=ChangeKind.MODIFIED):
    return {site.root / rel: kind}


def test_construct_nodes_and_edges(create_site):
    site, graph = build_graph(create_site())

    assert set(graph.nodes) == {
        A,
        B,
        INDEX,
        ABOUT,
        "template:base.html",
        "template:page.html",
        "template:post.html",
        "template:list.html",
        "style:main.css",
        "asset:js/app.min.js",
        "asset:robots.txt",
        *FEEDS,
    }
    assert graph.nodes[A].dependencies == {"template:post.html"}
    assert graph.nodes[ABOUT].dependencies == {"template:page.html"}
    assert graph.nodes[INDEX].dependencies == {"template:list.html", A, B}
    assert graph.nodes["template:post.html"].dependencies == {"template:base.html"}
    for feed in FEEDS:
        assert graph.nodes[feed].dependencies == {A, B}
    assert graph.nodes["style:main.css"].output == "css/main.css"
    assert graph.outputs()["posts/a.html"] == A
    assert graph.template_chain("post.html") == ["post.html", "base.html"]
    assert [i.title for i in graph.collection("posts")] == ["B", "A"]


def test_closure_follows_reverse_edges(create_site):
    _site, graph = build_graph(create_site())
    assert graph.closure({ABOUT}) == {ABOUT}
    assert graph.closure({"template:base.html"}) == {
        "template:base.html",
        "template:post.html",
        "template:list.html",
        A,
        B,
        INDEX,
        *FEEDS,
    }


def test_untouched_file_is_not_dirty(create_site):
    site, graph = build_graph(create_site())
    updated, dirty = apply_changes(graph, change(site, "content/about.md"))
    assert dirty == set()
    updated, dirty = apply_changes(graph, change(site, "static/robots.txt"))
    assert dirty == set()


def test_body_edit_dirties_only_the_item(create_site):
    root = create_site()
    site, graph = build_graph(root)
    write_files(root, {"content/about.md": "---\ntitle: About\n---\nChanged.\n"})
    updated, dirty = apply_changes(graph, change(site, "content/about.md"))
    assert dirty == {ABOUT}
    assert updated is not graph
    assert graph.nodes[ABOUT].item.body == "About us.\n"
    assert updated.nodes[ABOUT].item.body == "Changed.\n"


def test_member_edit_dirties_listing_and_feeds(create_site):
    root = create_site()
    site, graph = build_graph(root)
    write_files(root, {"content/posts/2024-01-01-a.md": "---\ntitle: A2\n---\nPost A\n"})
    _updated, dirty = apply_changes(graph, change(site, "content/posts/2024-01-01-a.md"))
    assert dirty == {A, INDEX, *FEEDS}


def test_template_edit_rebuilds_only_its_users(create_site):
    root = create_site()
    site, graph = build_graph(root)
    write_files(root, {"templates/post.html": '{% extends "base.html" %}{% block body %}<main>{{ content }}</main>{% endblock %}\n'})
    _updated, dirty = apply_changes(graph, change(site, "templates/post.html"))
    assert "template:post.html" in dirty
    assert {A, B} <= dirty
    assert ABOUT not in dirty
    assert "template:page.html" not in dirty
    assert "style:main.css" not in dirty


def test_delete_queues_removal_and_updates_collection(create_site):
    root = create_site()
    site, graph = build_graph(root)
    write_files(root, {"content/posts/2024-01-02-b.md": None})
    updated, dirty = apply_changes(graph, change(site, "content/posts/2024-01-02-b.md", ChangeKind.DELETED))
    assert B not in updated
    assert dirty == {INDEX, *FEEDS}
    assert updated.pending_removals == {"posts/b.html"}
    assert [i.title for i in updated.collection("posts")] == ["A"]
    assert B in graph


def test_create_adds_member(create_site):
    root = create_site()
    site, graph = build_graph(root)
    write_files(root, {"content/posts/2024-02-01-c.md": "---\ntitle: C\n---\nNew\n"})
    updated, dirty = apply_changes(graph, change(site, "content/posts/2024-02-01-c.md", ChangeKind.CREATED))
    c = "content:posts/2024-02-01-c.md"
    assert dirty == {c, INDEX, *FEEDS}
    assert updated.nodes[INDEX].dependencies == {"template:list.html", A, B, c}


def test_directory_delete_removes_everything_below(create_site):
    root = create_site()
    site, graph = build_graph(root)
    for rel in ("content/posts/2024-01-01-a.md", "content/posts/2024-01-02-b.md", "content/posts/_data.yaml"):
        (root / rel).unlink()
    (root / "content" / "posts").rmdir()
    updated, dirty = apply_changes(graph, change(site, "content/posts", ChangeKind.DELETED))
    assert A not in updated and B not in updated
    assert updated.pending_removals == {"posts/a.html", "posts/b.html"}
    assert dirty == {INDEX, *FEEDS}


def test_data_file_change_reparses_scope(create_site):
    root = create_site()
    site, graph = build_graph(root)
    write_files(root, {"content/posts/_data.yaml": "template: page\n"})
    updated, dirty = apply_changes(graph, change(site, "content/posts/_data.yaml"))
    assert {A, B} <= dirty
    assert ABOUT not in dirty
    assert updated.nodes[A].template == "page.html"
    assert updated.nodes[A].dependencies == {"template:page.html"}


def test_style_change_dirties_every_bundle(create_site):
    root = create_site({"styles/print.css": "a {}\n", "styles/_vars.scss": "$x: 1;\n"})
    site, graph = build_graph(root)
    assert {n.id for n in graph.nodes_of(NodeKind.STYLE)} == {"style:main.css", "style:print.css"}
    _updated, dirty = apply_changes(graph, change(site, "styles/_vars.scss"))
    assert dirty == {"style:main.css", "style:print.css"}


def test_duplicate_output_is_a_graph_error(create_site):
    root = create_site({"content/clash.md": "---\ntitle: Clash\npermalink: about.html\n---\n"})
    [site] = load_sites(root)
    with pytest.raises(GraphError):
        construct(site, BuildServices.for_site(site))


def test_duplicate_output_after_change_keeps_old_graph(create_site):
    root = create_site()
    site, graph = build_graph(root)
    write_files(root, {"content/clash.md": "---\ntitle: Clash\npermalink: about.html\n---\n"})
    with pytest.raises(GraphError):
        apply_changes(graph, change(site, "content/clash.md", ChangeKind.CREATED))
    assert "content:clash.md" not in graph


def test_template_cycle_is_rejected(create_site):
    root = create_site({"templates/a.html": '{% include "b.html" %}', "templates/b.html": '{% include "a.html" %}'})
    [site] = load_sites(root)
    with pytest.raises(TemplateCycleError) as excinfo:
        construct(site, BuildServices.for_site(site))
    assert excinfo.value.cycle == ["a.html", "b.html", "a.html"]


def test_missing_template_fails_only_that_node(create_site):
    root = create_site({"content/odd.md": "---\ntitle: Odd\ntemplate: nowhere\n---\n"})
    _site, graph = build_graph(root)
    node = graph.nodes["content:odd.md"]
    assert node.error.reason == "missing template: 'nowhere'"


def test_cold_parse_failure_leaves_item_out_of_collections(create_site):
    root = create_site({"content/posts/2024-01-02-b.md": "---\ntitle: [broken\n---\n"})
    _site, graph = build_graph(root)
    node = graph.nodes[B]
    assert node.item is None
    assert node.output == "posts/b.html"
    assert node.error.reason.startswith("front-matter parse error")
    assert [i.title for i in graph.collection("posts")] == ["A"]
    assert B not in graph.nodes[INDEX].dependencies


def test_incremental_parse_failure_keeps_last_good_item(create_site):
    root = create_site()
    site, graph = build_graph(root)
    Scheduler(max_workers=2).run(graph, set(graph.nodes))
    write_files(root, {"content/posts/2024-01-02-b.md": "---\ntitle: [broken\n---\n"})
    updated, dirty = apply_changes(graph, change(site, "content/posts/2024-01-02-b.md"))
    node = updated.nodes[B]
    assert node.stale
    assert node.item.title == "B"
    assert dirty == {B, INDEX, *FEEDS}

    report = Scheduler(max_workers=2).run(updated, dirty)
    assert [r.node_id for r in report.failed] == [B]
    assert {r.node_id for r in report.skipped} == {INDEX, *FEEDS}
    assert (site.output_root / "posts" / "b.html").exists()
