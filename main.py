# FILE: main.py
"""
codeagent - FastAPI Application
Version: 0.4.0

Endpoints:
- GET  /health          provider / model / workspace configuration
- POST /scripts/run     run a script (file, inline text, or a bare task)
                        against a workspace and return the execution result

v0.4.0 Changes:
- Script runs go through the turn interpreter (pipelines included)
- Per-request provider/model overrides
"""
import logging
import os
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field
from dotenv import load_dotenv

# Load .env FIRST before any other imports that might need env vars
load_dotenv()

from config.agent_settings import AgentSettings, LOG_LEVEL
from codeagent import __version__
from codeagent.engine import RunContext, run_script
from codeagent.errors import AgentError, ScriptNotFoundError, ScriptParseError
from codeagent.llm.backends import create_backend
from codeagent.script import default_task_script, parse_script

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="codeagent",
    version=__version__,
    description="Scripted code-generation agent over a local workspace",
)


# ====== SCHEMAS ======

class RunScriptRequest(BaseModel):
    workspace: str
    script_path: Optional[str] = None
    script_text: Optional[str] = None
    task: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)
    provider: Optional[str] = None
    model: Optional[str] = None


# ====== ENDPOINTS ======

@app.get("/health")
def health() -> Dict[str, Any]:
    settings = AgentSettings.from_env()
    return {
        "status": "ok",
        "version": __version__,
        "provider": settings.default_provider,
        "model": settings.default_model,
        "pipelines_enabled": settings.pipelines_enabled,
    }


@app.post("/scripts/run")
async def run_script_endpoint(req: RunScriptRequest) -> Dict[str, Any]:
    if not os.path.isdir(req.workspace):
        raise HTTPException(status_code=400, detail=f"Workspace does not exist: {req.workspace}")

    settings = AgentSettings.from_env()
    provider = req.provider or settings.default_provider
    try:
        backend = create_backend(provider, req.model or settings.default_model)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    ctx = RunContext.create(backend, req.workspace, settings=settings)
    params = dict(req.params)

    try:
        if req.script_path:
            script = ctx.loader.load(req.script_path)
        elif req.script_text:
            script = parse_script(req.script_text, name="inline")
        elif req.task:
            script = default_task_script()
            params.setdefault("task", req.task)
        else:
            raise HTTPException(status_code=400, detail="One of script_path, script_text or task is required")
    except ScriptNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ScriptParseError as e:
        raise HTTPException(status_code=422, detail=str(e))

    logger.info(f"[api] run {script.name} provider={provider} workspace={req.workspace}")
    try:
        result = await run_script(ctx, script, params)
    except AgentError as e:
        logger.error(f"[api] run failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return result.to_dict()
