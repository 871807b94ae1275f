import io
import subprocess
from pathlib import Path

import pytest
from PIL import Image

from kiln.asset_processors import (
    AssetProcessorRegistry,
    ImageProcessor,
    JSProcessor,
    StaticAssetProcessor,
    create_default_registry,
)
from kiln.errors import NodeError, StyleCompileError
from kiln.protocols import AssetProcessor, StyleCompiler as StyleCompilerProtocol
from kiln.styles import StyleCompiler, find_executable, is_style_entry


# --- Asset Processor Tests ---


def test_image_processor(tmp_path):
    processor = ImageProcessor()
    assert processor.can_process(Path("photo.PNG"))
    assert processor.can_process(Path("photo.webp"))
    assert not processor.can_process(Path("notes.txt"))
    assert processor.priority == 100

    source = tmp_path / "red.png"
    Image.new("RGB", (32, 32), color="red").save(source)
    data = processor.transform(source)
    assert len(data) <= source.stat().st_size
    with Image.open(io.BytesIO(data)) as img:
        assert img.size == (32, 32)


def test_image_processor_passes_undecodable_files_through(tmp_path):
    source = tmp_path / "fake.png"
    source.write_bytes(b"not an image")
    assert ImageProcessor().transform(source) == b"not an image"


def test_js_processor_minifies(tmp_path):
    processor = JSProcessor()
    assert processor.can_process(Path("app.js"))
    assert not processor.can_process(Path("vendor.min.js"))
    assert processor.priority == 80

    source = tmp_path / "app.js"
    source.write_text("function test() {\n  // comment\n  return 1;\n}\n", encoding="utf-8")
    minified = processor.transform(source).decode("utf-8")
    assert "comment" not in minified
    assert "return 1" in minified
    assert len(minified) < len(source.read_text(encoding="utf-8"))


def test_static_asset_processor(tmp_path):
    processor = StaticAssetProcessor()
    assert processor.can_process(Path("font.woff2"))
    assert processor.priority == 0
    source = tmp_path / "robots.txt"
    source.write_bytes(b"User-agent: *\n")
    assert processor.transform(source) == b"User-agent: *\n"


def test_registry_picks_highest_priority(tmp_path):
    registry = create_default_registry()
    assert isinstance(registry.get_processor(Path("a.png")), ImageProcessor)
    assert isinstance(registry.get_processor(Path("a.js")), JSProcessor)
    assert isinstance(registry.get_processor(Path("a.min.js")), StaticAssetProcessor)
    assert isinstance(registry.get_processor(Path("a.svg")), StaticAssetProcessor)
    assert isinstance(registry, AssetProcessor)

    source = tmp_path / "vendor.min.js"
    source.write_text("var a=1;", encoding="utf-8")
    assert registry.transform(source) == b"var a=1;"


def test_empty_registry_rejects_files(tmp_path):
    with pytest.raises(NodeError) as excinfo:
        AssetProcessorRegistry().transform(tmp_path / "a.txt")
    assert excinfo.value.reason == "build error: no asset processor accepts this file"


# --- Style Tests ---


def test_is_style_entry():
    assert is_style_entry(Path("main.scss"))
    assert is_style_entry(Path("print.css"))
    assert not is_style_entry(Path("_vars.scss"))
    assert not is_style_entry(Path("logo.svg"))


def test_find_executable_prefers_path(monkeypatch, tmp_path):
    monkeypatch.setattr("shutil.which", lambda name: f"/usr/bin/{name}")
    assert find_executable("sass", tmp_path) == "/usr/bin/sass"


def test_find_executable_falls_back_to_node_modules(monkeypatch, tmp_path):
    monkeypatch.setattr("shutil.which", lambda name: None)
    assert find_executable("sass", tmp_path) is None
    local = tmp_path / "node_modules" / ".bin" / "sass"
    local.parent.mkdir(parents=True)
    local.write_text("#!/bin/sh\n", encoding="utf-8")
    assert find_executable("sass", tmp_path) == str(local)
    assert find_executable("sass") is None


def test_plain_css_passes_through_with_dependencies(tmp_path):
    styles = tmp_path / "styles"
    (styles / "base").mkdir(parents=True)
    (styles / "base" / "_reset.css").write_text("* { margin: 0; }", encoding="utf-8")
    entry = styles / "main.css"
    entry.write_text('@import "base/reset.css";\n@import "https://fonts.example/x.css";\nbody {}\n', encoding="utf-8")

    compiler = StyleCompiler(styles)
    assert isinstance(compiler, StyleCompilerProtocol)
    css, deps = compiler.compile(entry)
    assert css == entry.read_bytes()
    assert deps == [styles / "base" / "_reset.css"]


def test_sass_entry_runs_compiler(monkeypatch, tmp_path):
    styles = tmp_path / "styles"
    styles.mkdir()
    (styles / "_vars.scss").write_text("$c: red;", encoding="utf-8")
    entry = styles / "main.scss"
    entry.write_text('@use "vars";\nbody { color: vars.$c; }\n', encoding="utf-8")
    calls = []

    def fake_run(cmd, capture_output, check):
        calls.append(cmd)
        return subprocess.CompletedProcess(cmd, 0, stdout=b"body{color:red}", stderr=b"")

    monkeypatch.setattr("kiln.styles.find_executable", lambda name, root: "/bin/sass")
    monkeypatch.setattr("kiln.styles.subprocess.run", fake_run)
    css, deps = StyleCompiler(styles, tmp_path).compile(entry)
    assert css == b"body{color:red}"
    assert deps == [styles / "_vars.scss"]
    assert calls == [["/bin/sass", "--no-source-map", f"--load-path={styles}", str(entry)]]


def test_sass_failure_is_a_style_error(monkeypatch, tmp_path):
    entry = tmp_path / "main.scss"
    entry.write_text("body {", encoding="utf-8")
    monkeypatch.setattr("kiln.styles.find_executable", lambda name, root: "/bin/sass")
    monkeypatch.setattr(
        "kiln.styles.subprocess.run",
        lambda cmd, capture_output, check: subprocess.CompletedProcess(cmd, 65, stdout=b"", stderr=b"expected \"}\""),
    )
    with pytest.raises(StyleCompileError) as excinfo:
        StyleCompiler(tmp_path).compile(entry)
    assert excinfo.value.reason == 'style compile error: expected "}"'


def test_missing_sass_is_a_style_error(monkeypatch, tmp_path):
    entry = tmp_path / "main.scss"
    entry.write_text("body {}", encoding="utf-8")
    monkeypatch.setattr("kiln.styles.find_executable", lambda name, root: None)
    with pytest.raises(StyleCompileError, match="sass executable not found"):
        StyleCompiler(tmp_path).compile(entry)
