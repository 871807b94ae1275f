import logging

from click.testing import CliRunner

from kiln import __version__
from kiln.cli import cli, main


def test_version():
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_build_command(create_site, tmp_path):
    root = create_site()
    out = tmp_path / "public"
    result = CliRunner().invoke(cli, ["build", str(root), "--output", str(out), "-j", "2"])
    assert result.exit_code == 0, result.output
    assert "site: 9 written" in result.output
    assert (out / "posts" / "a.html").exists()


def test_build_command_reports_failures(create_site):
    root = create_site({"content/posts/2024-01-02-b.md": "---\ntitle: [broken\n---\n"})
    result = CliRunner().invoke(cli, ["build", str(root)])
    assert result.exit_code == 1
    assert "content:posts/2024-01-02-b.md" in result.output
    assert "front-matter parse error" in result.output
    assert "1 failed" in result.output
    assert (root / "output" / "posts" / "a.html").exists()


def test_build_command_configuration_error(create_site):
    root = create_site(config="feeds:\n  - collection: nope\n")
    result = CliRunner().invoke(cli, ["build", str(root)])
    assert result.exit_code == 1
    assert "Build failed:" in result.output
    assert "unknown collection" in result.output


def test_build_command_drafts(create_site):
    root = create_site({"content/_wip.md": "---\ntitle: WIP\n---\n"})
    result = CliRunner().invoke(cli, ["build", str(root), "--drafts"])
    assert result.exit_code == 0, result.output
    assert (root / "output" / "wip.html").exists()


def test_verbose_enables_debug(create_site):
    root = create_site()
    result = CliRunner().invoke(cli, ["--verbose", "build", str(root)])
    assert result.exit_code == 0
    assert logging.getLogger("kiln").level == logging.DEBUG


def test_serve_command(monkeypatch, create_site):
    root = create_site()
    calls = {}

    def fake_watch(self, site_name, host="127.0.0.1", port=None, ws_port=None):
        calls.update(site=site_name, host=host, port=port, ws_port=ws_port, reload=self.reload_sites)

    monkeypatch.setattr("kiln.session.BuildSession.watch", fake_watch)
    result = CliRunner().invoke(cli, ["serve", str(root), "--port", "5000", "--ws-port", "5002"])
    assert result.exit_code == 0, result.output
    assert calls["site"] == "site"
    assert calls["port"] == 5000
    assert calls["ws_port"] == 5002
    [site] = calls["reload"]()
    assert site.name == "site"


def test_serve_unknown_site(create_site):
    root = create_site()
    result = CliRunner().invoke(cli, ["serve", str(root), "--site", "nope"])
    assert result.exit_code != 0
    assert "Unknown site 'nope'" in result.output


def test_module_main_entrypoint(monkeypatch):
    import kiln.__main__  # noqa: F401

    called = {}
    monkeypatch.setattr("kiln.cli.cli", lambda: called.setdefault("ran", True))
    main()
    assert called["ran"]


def test_serve_help_explains_single_site():
    result = CliRunner().invoke(cli, ["serve", "--help"])
    assert result.exit_code == 0
    text = " ".join(result.output.split())
    assert "one site per process" in text
    assert "(default: the first)" in text
