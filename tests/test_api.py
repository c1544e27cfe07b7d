import pytest
from fastapi.testclient import TestClient

from siteforge import auth, llm_client
from siteforge.main import app
from siteforge.sandbox import SandboxRegistry
from siteforge.serializer import serialize

client = TestClient(app)

API_HEADERS = {"x-api-key": "demo_123"}

CONFIG = {
    "components": {
        "Hero": {
            "label": "Hero",
            "fields": {"title": {"type": "text", "label": "Title"}},
            "render": "({ title }) => React.createElement('h1', { className: 'hero' }, title)",
        }
    }
}
DATA = {"content": [{"type": "Hero", "props": {"title": "Hello"}}], "root": {"props": {"title": "Acme"}}}


@pytest.fixture
def sandboxes(tmp_path, monkeypatch):
    registry = SandboxRegistry(str(tmp_path))
    monkeypatch.setattr(app.state, "sandboxes", registry)
    return registry


@pytest.fixture
def fake_llm(monkeypatch):
    monkeypatch.setattr(llm_client, "ANTHROPIC_API_KEY", "sk-test")

    def generate(system, prompt, schema=None):
        return {"data": {"content": [{"type": "Hero", "props": {"title": "Generated"}}]}, "config": CONFIG}

    monkeypatch.setattr(llm_client, "generate", generate)


def test_health():
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_llm_status_shape():
    r = client.get("/llm/status")
    assert r.status_code == 200
    body = r.json()
    assert body.get("provider") in ("anthropic", None)
    assert "using" in body
    assert "has_token" in body


def test_generate_site(fake_llm):
    r = client.post("/generate-site", json={"prompt": "a bakery"}, headers=API_HEADERS)
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    puck = body["puck"]
    assert puck["data"]["content"][0]["props"]["title"] == "Generated"
    assert puck["configJs"].startswith("export const config = {")
    assert puck["config"]["components"]["Hero"]["label"] == "Hero"


def test_create_site_alias(fake_llm):
    r = client.post("/create-site", json={"prompt": "a bakery"}, headers=API_HEADERS)
    assert r.status_code == 200
    assert r.json()["success"] is True


def test_generate_site_without_model(monkeypatch):
    monkeypatch.setattr(llm_client, "ANTHROPIC_API_KEY", "")
    monkeypatch.delenv("ALLOW_OFFLINE_GENERATION", raising=False)
    r = client.post("/generate-site", json={"prompt": "a bakery"}, headers=API_HEADERS)
    assert r.status_code == 503
    assert r.json() == {"success": False, "error": "Model or token not configured"}


def test_generate_site_unparseable_output(monkeypatch):
    monkeypatch.setattr(llm_client, "ANTHROPIC_API_KEY", "sk-test")
    monkeypatch.setattr(llm_client, "complete", lambda *a, **k: "sorry, I cannot do that")
    r = client.post("/generate-site", json={"prompt": "x"}, headers=API_HEADERS)
    assert r.status_code == 500
    assert r.json()["error"].startswith("Failed to parse AI response")


def test_generate_site_bad_envelope(monkeypatch):
    monkeypatch.setattr(llm_client, "ANTHROPIC_API_KEY", "sk-test")
    monkeypatch.setattr(llm_client, "generate", lambda *a, **k: {"data": {"content": []}})
    r = client.post("/generate-site", json={"prompt": "x"}, headers=API_HEADERS)
    assert r.status_code == 500
    body = r.json()
    assert body["error"] == "Invalid response structure from AI"
    assert body["errors"]


def test_generate_site_rejects_empty_prompt():
    r = client.post("/generate-site", json={"prompt": ""}, headers=API_HEADERS)
    assert r.status_code == 422


def test_api_key_is_enforced_when_configured(monkeypatch, fake_llm):
    monkeypatch.setattr(auth, "API_KEYS", {"demo_123"})
    assert client.post("/generate-site", json={"prompt": "x"}).status_code == 401
    assert client.post("/generate-site", json={"prompt": "x"}, headers=API_HEADERS).status_code == 200


def test_api_keys_parse_and_match(monkeypatch):
    assert auth.load_api_keys(" demo_123, ,other ") == {"demo_123", "other"}
    monkeypatch.setenv("API_KEYS", "env_key")
    assert auth.load_api_keys() == {"env_key"}
    monkeypatch.setattr(auth, "API_KEYS", {"demo_123", "other"})
    assert auth.check_api_key("other")
    assert not auth.check_api_key("demo_12")
    assert not auth.check_api_key("démo")
    assert not auth.check_api_key("")
    assert not auth.check_api_key(None)
    monkeypatch.setattr(auth, "API_KEYS", set())
    assert auth.check_api_key(None)


def test_update_site(fake_llm):
    r = client.post(
        "/update-site",
        json={"prompt": "rename", "currentData": DATA, "currentConfig": serialize(CONFIG)},
        headers=API_HEADERS,
    )
    assert r.status_code == 200
    assert r.json()["puck"]["data"]["content"][0]["props"]["title"] == "Generated"


def test_update_site_with_broken_config(fake_llm):
    r = client.post(
        "/update-site",
        json={"prompt": "rename", "currentData": DATA, "currentConfig": "export const config = { components: {"},
        headers=API_HEADERS,
    )
    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    assert body["location"] == "config"


def test_apply_site_and_list_files(sandboxes):
    r = client.post("/apply-site", json={"puckData": DATA, "puckConfig": CONFIG, "sandboxId": "s1"}, headers=API_HEADERS)
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["sandboxId"] == "s1"
    assert body["filesCreated"] == ["src/App.jsx"]

    r = client.get("/sandbox/s1/files")
    assert r.status_code == 200
    listing = r.json()
    assert listing["success"] is True
    assert "src/App.jsx" in listing["files"]
    assert listing["fileCount"] == len(listing["files"])
    assert listing["sandbox"]["sandboxId"] == "s1"


def test_apply_site_rejects_bad_sandbox_id(sandboxes):
    r = client.post("/apply-site", json={"puckData": DATA, "puckConfig": CONFIG, "sandboxId": "../etc"}, headers=API_HEADERS)
    assert r.status_code == 500
    assert r.json()["success"] is False


def test_unknown_sandbox_is_404(sandboxes):
    r = client.get("/sandbox/nope/files")
    assert r.status_code == 404
    assert r.json()["success"] is False


def test_render_html():
    r = client.post("/render", json={"data": DATA, "configJs": serialize(CONFIG)})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/html")
    assert '<h1 class="hero">Hello</h1>' in r.text
    assert "<title>Acme</title>" in r.text


def test_render_json_isolates_failures():
    data = {"content": [{"type": "Ghost", "props": {}}, {"type": "Hero", "props": {"title": "Still here"}}]}
    r = client.post("/render?format=json", json={"data": data, "configJs": CONFIG})
    assert r.status_code == 200
    body = r.json()
    assert body["errors"] == [{"index": 0, "component": "Ghost", "message": "Error: Component Ghost not found"}]
    assert body["content"][1]["children"] == ["Still here"]


def test_render_bad_config_reports_location():
    bad = serialize(CONFIG).replace("title)", "title +)")
    r = client.post("/render", json={"data": DATA, "configJs": bad})
    assert r.status_code == 422
    body = r.json()
    assert body["success"] is False
    assert body["location"] == "Hero"


def test_render_rejects_unknown_format():
    r = client.post("/render?format=pdf", json={"data": DATA, "configJs": CONFIG})
    assert r.status_code == 422


def test_validate_success():
    r = client.post("/validate", json={"data": DATA, "config": serialize(CONFIG)})
    assert r.status_code == 200
    assert r.json() == {"detail": {"valid": True}}


def test_validate_failure_on_missing_props():
    r = client.post("/validate", json={"data": {"content": [{"type": "Hero"}]}})
    assert r.status_code == 422
    detail = r.json()["detail"]
    assert detail["valid"] is False
    messages = [e["message"] for e in detail["errors"]]
    assert any("required" in m.lower() for m in messages)


def test_validate_reports_undefined_components():
    data = {"content": [{"type": "Ghost", "props": {}}]}
    r = client.post("/validate", json={"data": data, "config": CONFIG})
    assert r.status_code == 422
    messages = [e["message"] for e in r.json()["detail"]["errors"]]
    assert "component 'Ghost' is not defined in config" in messages


def test_validate_bad_config_source():
    r = client.post("/validate", json={"data": DATA, "config": "export const config = {"})
    assert r.status_code == 422
    errors = r.json()["detail"]["errors"]
    assert errors[0]["path"] == "config"
