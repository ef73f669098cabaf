#!/usr/bin/env python3
"""
ShapeForge Web Server: JSON API for turning design prompts into FreeCAD models.

Start with:
    python cli/server.py
    # API docs at http://localhost:8000/docs

Routes:
    GET  /health            → Health check
    POST /design            → Full pipeline, returns the PipelineResult dict
    POST /design/stream     → SSE stream of stage updates + final result
    POST /compile           → StructuredDesign JSON → FreeCAD script (no engine)
    POST /check             → Safety gate on arbitrary script text
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

# Ensure src/ is importable
_SCRIPT_DIR = Path(__file__).resolve().parent
_SRC_DIR = _SCRIPT_DIR.parent / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from design_compiler import compile_design, count_statements  # noqa: E402
from design_schema import DesignIntent, GenerationError, StructuredDesign  # noqa: E402
from orchestrator import Orchestrator, setup_failure_result  # noqa: E402
from script_safety import find_unsafe_patterns  # noqa: E402

log = logging.getLogger(__name__)

app = FastAPI(title="ShapeForge", version="0.1.0")

# One orchestrator per process, built on first use so that importing this
# module (and the test client) doesn't read config or touch the engine.
_orchestrator: Orchestrator | None = None


def get_orchestrator() -> Orchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = Orchestrator()
    return _orchestrator


def set_orchestrator(orchestrator: Orchestrator | None) -> None:
    global _orchestrator
    _orchestrator = orchestrator


# ── Request Models ─────────────────────────────────────────────────────


class ConstraintModel(BaseModel):
    type: str
    parameter: str
    value: Any
    unit: str | None = None


class DesignRequest(BaseModel):
    prompt: str
    contextId: str = ""
    constraints: list[ConstraintModel] = []


class CompileRequest(BaseModel):
    design: dict[str, Any]


class CheckRequest(BaseModel):
    code: str


def _to_intent(req: DesignRequest) -> DesignIntent:
    return DesignIntent.from_dict(
        {
            "prompt": req.prompt,
            "contextId": req.contextId,
            "constraints": [c.model_dump() for c in req.constraints],
        }
    )


def _run_pipeline(intent: DesignIntent, on_stage=None):
    try:
        orch = get_orchestrator()
    except Exception as e:
        log.exception("Could not set up the pipeline")
        return setup_failure_result(e)
    return orch.process(intent, on_stage_update=on_stage)


# ── Routes ─────────────────────────────────────────────────────────────


@app.get("/health")
async def health():
    return {"status": "ok", "service": "shapeforge"}


@app.post("/design")
async def design(req: DesignRequest):
    """Run the whole pipeline for one prompt."""
    try:
        intent = _to_intent(req)
    except (GenerationError, KeyError) as e:
        raise HTTPException(status_code=422, detail=str(e))

    result = await asyncio.get_event_loop().run_in_executor(None, _run_pipeline, intent)
    return JSONResponse(result.to_dict())


@app.post("/design/stream")
async def design_stream(req: DesignRequest):
    """Run the pipeline, streaming stage updates as Server-Sent Events."""
    try:
        intent = _to_intent(req)
    except (GenerationError, KeyError) as e:
        raise HTTPException(status_code=422, detail=str(e))

    async def event_stream():
        queue: asyncio.Queue = asyncio.Queue()
        loop = asyncio.get_event_loop()

        def on_stage(stage_result):
            # Called from the executor thread
            loop.call_soon_threadsafe(queue.put_nowait, stage_result)

        task = loop.run_in_executor(None, _run_pipeline, intent, on_stage)

        while not task.done():
            try:
                stage = await asyncio.wait_for(queue.get(), timeout=0.2)
                yield f"data: {json.dumps({'type': 'stage', **asdict(stage)})}\n\n"
            except asyncio.TimeoutError:
                continue

        result = await task

        # Drain remaining stage events
        while not queue.empty():
            stage = queue.get_nowait()
            yield f"data: {json.dumps({'type': 'stage', **asdict(stage)})}\n\n"

        yield f"data: {json.dumps({'type': 'result', **result.to_dict()})}\n\n"

    return StreamingResponse(event_stream(), media_type="text/event-stream")


@app.post("/compile")
async def compile_structured(req: CompileRequest):
    """Compile a StructuredDesign to a FreeCAD script without running it."""
    try:
        design = StructuredDesign.from_dict(req.design)
        script = compile_design(design)
    except (GenerationError, KeyError, TypeError) as e:
        raise HTTPException(status_code=422, detail=f"Invalid design: {e}")

    unsafe = find_unsafe_patterns(script)
    return {
        "script": script.to_dict(),
        "counts": count_statements(script.code),
        "safe": not unsafe,
        "unsafePatterns": unsafe,
    }


@app.post("/check")
async def check_script(req: CheckRequest):
    """Run the denylist scan on arbitrary script text."""
    unsafe = find_unsafe_patterns(req.code)
    return {"safe": not unsafe, "unsafePatterns": unsafe}


# ── Startup ────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    port = int(os.environ.get("PORT", 8000))
    print(f"\n  ShapeForge server starting on http://localhost:{port}")
    print(f"  API docs at http://localhost:{port}/docs\n")
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")
