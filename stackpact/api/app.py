"""FastAPI application exposing render and validate over HTTP.

Applying is deliberately not offered here; the HTTP surface never reaches a
runtime adapter.
"""

import logging
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .. import __version__
from ..config import Settings
from ..errors import StackpactError
from ..inventory import snapshot_from_data
from ..orchestrator import DeploymentRequest, Orchestrator, prepare
from ..policy import default_registry
from ..templates import RUNTIMES, ArtifactTemplate, load_templates

logger = logging.getLogger(__name__)


# Pydantic models
class TemplateIn(BaseModel):
    name: str
    runtime: str = "compose"
    text: str


class StackRequest(BaseModel):
    environment: str = "dev"
    inputs: Dict[str, str] = Field(default_factory=dict)
    project_name: Optional[str] = None
    templates: List[TemplateIn] = Field(default_factory=list)
    templates_dir: Optional[str] = None
    runtime: str = "compose"


class ValidateRequest(StackRequest):
    inventory: Optional[List[Dict[str, Any]]] = None


class ArtifactOut(BaseModel):
    name: str
    runtime: str
    sha256: str
    text: str


class RenderResponse(BaseModel):
    stack: str
    environment: str
    app_host: str
    artifacts: List[ArtifactOut]


app = FastAPI(
    title="Stackpact API",
    description="Render and validate stack artifacts",
    version=__version__,
)


def _error(status: int, code: str, message: str, hint: str = "") -> HTTPException:
    return HTTPException(status_code=status, detail={"code": code, "message": message, "hint": hint})


def _templates(body: StackRequest, settings: Settings) -> List[ArtifactTemplate]:
    if body.templates_dir:
        root = settings.templates_root.resolve()
        directory = (root / body.templates_dir).resolve()
        if directory != root and root not in directory.parents:
            raise _error(400, "templates_outside_root", f"templates_dir must be inside {root}",
                         "Pass a path relative to the stackpact templates directory")
        try:
            return load_templates(directory, body.runtime)
        except (ValueError, FileNotFoundError) as e:
            raise _error(400, "templates_not_found", str(e), "Check templates_dir and runtime")

    templates = []
    for t in body.templates:
        if t.runtime not in RUNTIMES:
            raise _error(400, "unknown_runtime", f"Unknown runtime {t.runtime!r}", f"Expected one of: {', '.join(RUNTIMES)}")
        templates.append(ArtifactTemplate(name=t.name, runtime=t.runtime, text=t.text))
    if not templates:
        raise _error(400, "no_templates", "No templates supplied", "Send templates or templates_dir")
    return templates


def _request(body: StackRequest, settings: Settings, inventory=None) -> DeploymentRequest:
    return DeploymentRequest(
        inputs=body.inputs,
        environment=body.environment,
        templates=tuple(_templates(body, settings)),
        project_name=body.project_name,
        inventory=inventory,
    )


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"message": "Stackpact API is running", "version": __version__}


@app.get("/rules")
async def list_rules():
    """Policy rules in effect."""
    registry = default_registry(Settings.from_env())
    return {"rules": [rule.describe() for rule in registry.rules()]}


@app.post("/render", response_model=RenderResponse)
async def render_endpoint(body: StackRequest):
    """Resolve the identity and render every template."""
    try:
        identity, _, rendered = prepare(_request(body, Settings.from_env()))
    except StackpactError as e:
        raise HTTPException(status_code=422, detail=e.to_dict())

    return RenderResponse(
        stack=identity.stack,
        environment=identity.environment.value,
        app_host=identity.app_host,
        artifacts=[ArtifactOut(name=a.name, runtime=a.runtime, sha256=a.digest, text=a.text) for a in rendered],
    )


@app.post("/validate")
async def validate_endpoint(body: ValidateRequest):
    """Render and validate; the run state is reported in the body."""
    inventory = None
    if body.inventory is not None:
        try:
            inventory = snapshot_from_data(body.inventory, source="api")
        except ValueError as e:
            raise _error(400, "invalid_inventory", str(e), "Each resource needs at least a name")

    settings = Settings.from_env()
    result = Orchestrator(settings=settings).run(_request(body, settings, inventory))
    return result.to_dict()


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Wrap errors as {"error": {code, message, hint}}."""
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_error",
                "message": "An unexpected error occurred",
                "hint": "Check the server log",
            }
        },
    )


if __name__ == "__main__":
    import os
    port = int(os.getenv("PORT", 8080))
    uvicorn.run(app, host="0.0.0.0", port=port)
