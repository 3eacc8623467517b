# api/index.py
from functools import lru_cache

from fastapi import Depends, FastAPI
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from data_class import Fragment, Outcome
from game_engine import GameEngine, build_engine
from sandbox import SANDBOX_PERMISSIONS, sandbox_headers
from settings import configure_logging, load_settings

_settings = load_settings()
configure_logging(_settings.log_level)

app = FastAPI(title="AIGameEngine")

if _settings.storage_backend == "local":
    # generated images for the file-backed store
    app.mount("/assets", StaticFiles(directory=_settings.site_dir / "assets", check_dir=False), name="assets")


@lru_cache(maxsize=1)
def get_engine() -> GameEngine:
    return build_engine(_settings)


class PlanReq(BaseModel):
    prompt: str
    session_id: str | None = None


class CycleReq(BaseModel):
    instruction: str | None = None
    error_report: str | None = None


class ErrorReq(BaseModel):
    error: str


class AssembleReq(BaseModel):
    html_code: str = ""
    css_code: str = ""
    js_code: str = ""


def _respond(outcome: Outcome):
    if outcome.ok:
        return outcome.data
    return JSONResponse(status_code=outcome.status_code, content=outcome.error_payload())


@app.post("/api/sessions")
def create_or_update_plan(req: PlanReq, engine: GameEngine = Depends(get_engine)):
    return _respond(engine.create_or_update_plan(req.prompt, req.session_id))


@app.get("/api/sessions/{session_id}")
def get_session(session_id: str, engine: GameEngine = Depends(get_engine)):
    return _respond(engine.get_session(session_id))


@app.post("/api/sessions/{session_id}/cycle")
def run_cycle(session_id: str, req: CycleReq, engine: GameEngine = Depends(get_engine)):
    return _respond(engine.run_orchestration_cycle(session_id, req.instruction, req.error_report))


@app.post("/api/sessions/{session_id}/errors")
def report_error(session_id: str, req: ErrorReq, engine: GameEngine = Depends(get_engine)):
    return _respond(engine.report_error(session_id, req.error))


@app.get("/api/sessions/{session_id}/preview")
def preview(session_id: str, engine: GameEngine = Depends(get_engine)):
    outcome = engine.preview(session_id)
    if not outcome.ok:
        return _respond(outcome)
    doc = outcome.data
    headers = {**sandbox_headers(), "X-Sandbox-Diagnostics": str(len(doc.diagnostics))}
    return HTMLResponse(doc.document, headers=headers)


@app.post("/api/assemble")
def assemble(req: AssembleReq):
    doc = GameEngine.assemble({
        Fragment.STRUCTURE: req.html_code,
        Fragment.STYLE: req.css_code,
        Fragment.BEHAVIOR: req.js_code,
    })
    return {"document": doc.document, "diagnostics": doc.diagnostics, "sandbox": SANDBOX_PERMISSIONS}
