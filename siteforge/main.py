import logging
import os
import time
import uuid
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse

from siteforge import llm_client, pipeline
from siteforge.auth import require_api_key
from siteforge.errors import (
    ConfigEvaluationError,
    GenerationParseError,
    InvalidGenerationError,
    LLMRequestError,
    LLMUnavailableError,
    SandboxError,
)
from siteforge.evaluator import evaluate
from siteforge.models import (
    ApplySiteRequest,
    GenerateSiteRequest,
    RenderRequest,
    UpdateSiteRequest,
    ValidateRequest,
)
from siteforge.render import render_page_html, render_page_json
from siteforge.sandbox import SandboxRegistry, apply_site
from siteforge.serializer import to_plain_config
from siteforge.validators import collect_errors

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

log = logging.getLogger(__name__)

app = FastAPI(title="siteforge")
app.state.sandboxes = SandboxRegistry()

allow_origins = [o.strip() for o in os.getenv("ALLOW_ORIGINS", "*").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = str(uuid.uuid4())
    start = time.time()
    request.state.request_id = rid
    response = None
    try:
        response = await call_next(request)
        return response
    finally:
        dur_ms = int((time.time() - start) * 1000)
        log.info(
            "rid=%s method=%s path=%s status=%s dur_ms=%d",
            rid, request.method, request.url.path, getattr(response, "status_code", "?"), dur_ms,
        )


def get_registry(request: Request) -> SandboxRegistry:
    return request.app.state.sandboxes


def _failure(status_code: int, error: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error, **extra})


def _generation_failure(route: str, exc: Exception) -> JSONResponse:
    if isinstance(exc, LLMUnavailableError):
        return _failure(503, str(exc))
    if isinstance(exc, GenerationParseError):
        log.warning("%s: unparseable model output (%d chars)", route, len(exc.raw_text))
        return _failure(500, str(exc))
    if isinstance(exc, InvalidGenerationError):
        return _failure(500, str(exc), errors=exc.errors)
    if isinstance(exc, ConfigEvaluationError):
        return _failure(400, str(exc), location=exc.location)
    log.warning("%s: %s", route, exc)
    return _failure(500, str(exc))


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/llm/status")
def llm_status_endpoint() -> Dict[str, Any]:
    return llm_client.status()


@app.post("/generate-site")
@app.post("/create-site")
def generate_site_endpoint(req: GenerateSiteRequest, api_key: Optional[str] = Depends(require_api_key)):
    try:
        site = pipeline.generate_site(req.prompt, req.context)
    except (LLMUnavailableError, LLMRequestError, GenerationParseError, InvalidGenerationError) as exc:
        return _generation_failure("generate_site", exc)
    log.info("generate_site: %d sections, %d components", len(site.data["content"]), len(site.config["components"]))
    return {"success": True, "puck": site.to_response()}


@app.post("/update-site")
def update_site_endpoint(req: UpdateSiteRequest, api_key: Optional[str] = Depends(require_api_key)):
    try:
        site = pipeline.update_site(req.prompt, req.currentData, req.currentConfig)
    except (
        LLMUnavailableError,
        LLMRequestError,
        GenerationParseError,
        InvalidGenerationError,
        ConfigEvaluationError,
    ) as exc:
        return _generation_failure("update_site", exc)
    return {"success": True, "puck": site.to_response()}


@app.post("/apply-site")
def apply_site_endpoint(
    req: ApplySiteRequest,
    registry: SandboxRegistry = Depends(get_registry),
    api_key: Optional[str] = Depends(require_api_key),
):
    try:
        return apply_site(registry, req.puckData, req.puckConfig, req.sandboxId)
    except SandboxError as exc:
        log.warning("apply_site: %s", exc)
        return _failure(500, str(exc))


@app.post("/render")
def render_endpoint(req: RenderRequest, format: str = Query("html", pattern="^(html|json)$")):
    """
    Evaluate `configJs` and render `data` with per-section error isolation.
    Returns HTML by default or the rendered node tree with ?format=json.
    """
    try:
        live = evaluate(req.configJs)
    except ConfigEvaluationError as exc:
        return _failure(422, str(exc), location=exc.location)
    if format == "json":
        return render_page_json(req.data, live)
    return HTMLResponse(render_page_html(req.data, live))


@app.post("/validate")
def validate_endpoint(req: ValidateRequest):
    """
    Check a page document against its config.
    Returns 200 and {"detail":{"valid":true}} on success,
            422 and {"detail":{"valid":false,"errors":[...]}} on failure.
    """
    config = None
    if req.config is not None:
        try:
            config = to_plain_config(evaluate(req.config))
        except ConfigEvaluationError as exc:
            detail = {"valid": False, "errors": [{"path": exc.location, "message": str(exc)}]}
            return JSONResponse(status_code=422, content={"detail": detail})
    errors = collect_errors(req.data, config)
    detail: Dict[str, Any] = {"valid": not errors}
    if errors:
        detail["errors"] = errors
        return JSONResponse(status_code=422, content={"detail": detail})
    return {"detail": detail}


@app.get("/sandbox/{sandbox_id}/files")
def sandbox_files(sandbox_id: str, registry: SandboxRegistry = Depends(get_registry)):
    provider = registry.get(sandbox_id)
    if provider is None:
        return _failure(404, f"No sandbox {sandbox_id}")
    try:
        files = provider.list_files()
    except SandboxError as exc:
        return _failure(500, str(exc))
    info = provider.get_sandbox_info()
    return {
        "success": True,
        "sandbox": info.to_dict() if info else None,
        "files": files,
        "fileCount": len(files),
    }
