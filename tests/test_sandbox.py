import pytest

from siteforge.errors import SandboxError
from siteforge.sandbox import (
    PREVIEW_APP_PATH,
    LocalSandboxProvider,
    SandboxRegistry,
    apply_site,
    build_preview_app,
)

CONFIG = {
    "components": {
        "Hero": {
            "label": "Hero",
            "fields": {},
            "render": "({ title }) => React.createElement('h1', { style: { color: 'red' } }, title)",
        }
    }
}
DATA = {"content": [{"type": "Hero", "props": {"title": "Hi"}}], "root": {"props": {"theme": "dark"}}}


def test_preview_app_embeds_config_and_data():
    app = build_preview_app(DATA, CONFIG)
    assert "const config = {" in app
    assert '"render": ({ title }) => React.createElement(' in app
    assert '"title": "Hi"' in app
    assert "'data-theme': \"dark\"" in app
    assert "export const config" not in app
    assert "Error: Component ${item.type} not found" in app
    assert app.rstrip().endswith("export default App;")


def test_preview_app_accepts_module_source():
    app = build_preview_app(DATA, "export const config = {\n  components: {}\n};")
    assert "const config = {\n  components: {}\n};" in app


def test_provider_lifecycle(tmp_path):
    provider = LocalSandboxProvider(str(tmp_path), "demo")
    assert provider.get_sandbox_info() is None
    info = provider.create_sandbox()
    assert info.sandbox_id == "demo"
    assert info.to_dict()["url"].startswith("file://")
    provider.setup_app()
    provider.write_file("src/extra.js", "export const x = 1;\n")
    assert provider.read_file("/src/extra.js") == "export const x = 1;\n"
    files = provider.list_files()
    assert {"package.json", "vite.config.js", "src/main.jsx", "src/extra.js"} <= set(files)
    assert "index.html" not in files


def test_list_files_skips_excluded_and_large(tmp_path):
    provider = LocalSandboxProvider(str(tmp_path), "big")
    provider.create_sandbox()
    provider.write_file("node_modules/react/index.js", "module.exports = {}")
    provider.write_file("huge.js", "x" * 200_000)
    provider.write_file("ok.css", "body {}")
    assert provider.list_files() == {"ok.css": "body {}"}


def test_paths_cannot_escape(tmp_path):
    provider = LocalSandboxProvider(str(tmp_path), "safe")
    provider.create_sandbox()
    with pytest.raises(SandboxError):
        provider.write_file("../outside.txt", "nope")
    assert not (tmp_path / "outside.txt").exists()


@pytest.mark.parametrize("bad", ["../x", "a/b", "", "x" * 65])
def test_invalid_sandbox_ids(tmp_path, bad):
    with pytest.raises(SandboxError):
        LocalSandboxProvider(str(tmp_path), bad)


def test_uncreated_sandbox_has_no_workdir(tmp_path):
    with pytest.raises(SandboxError):
        LocalSandboxProvider(str(tmp_path)).read_file("x")


def test_run_command(tmp_path):
    provider = LocalSandboxProvider(str(tmp_path), "cmd")
    provider.create_sandbox()
    provider.write_file("hello.txt", "hi")
    out = provider.run_command("ls")
    assert out["exitCode"] == 0
    assert "hello.txt" in out["stdout"]
    with pytest.raises(SandboxError):
        provider.run_command("definitely-not-a-real-binary-xyz")


def test_registry_tracks_active(tmp_path):
    registry = SandboxRegistry(str(tmp_path))
    assert registry.active() is None
    first = registry.get_or_create("one")
    second = registry.get_or_create("two")
    assert registry.active() is second
    assert registry.get_or_create() is second
    assert registry.get_or_create("one") is first
    registry.remove("two")
    assert registry.active() is first


def test_existing_directory_is_reused(tmp_path):
    (tmp_path / "kept").mkdir()
    registry = SandboxRegistry(str(tmp_path))
    provider = registry.create("kept")
    assert provider.get_sandbox_info().sandbox_id == "kept"
    assert not (tmp_path / "kept" / "package.json").exists()


def test_apply_site_writes_app(tmp_path):
    registry = SandboxRegistry(str(tmp_path))
    out = apply_site(registry, DATA, CONFIG, "site1")
    assert out["success"] is True
    assert out["sandboxId"] == "site1"
    assert out["filesCreated"] == [PREVIEW_APP_PATH]
    written = (tmp_path / "site1" / "src" / "App.jsx").read_text(encoding="utf-8")
    assert written == build_preview_app(DATA, CONFIG)


def test_apply_site_detects_short_write(tmp_path):
    registry = SandboxRegistry(str(tmp_path))
    provider = registry.create("short")
    provider.read_file = lambda path: "truncated"
    with pytest.raises(SandboxError, match="verification failed"):
        apply_site(registry, DATA, CONFIG, "short")
