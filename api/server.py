"""
LOR Ledger — API Server

FastAPI application serving:
  GET  /health                          — liveness
  GET  /v1/connection                   — connection phase, account, last error
  POST /v1/connection/connect           — run one connection attempt
  POST /v1/connection/reset             — discard the session / failure
  POST /v1/students                     — register (and by default request)
  GET  /v1/students/count               — number of registered students
  GET  /v1/students/{id}                — full student record
  POST /v1/students/{id}/request        — request a recommendation
  POST /v1/students/{id}/approve        — approve a requested recommendation

Usage:
    uvicorn api.server:app --host 127.0.0.1 --port 8080

    # or
    python -m ledger.cli serve --port 8080

Requires: pip install fastapi uvicorn
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any

logger = logging.getLogger("lor_ledger.api")


def create_app(settings: Any = None, runtime: Any = None) -> Any:
    """
    Create and configure the FastAPI application.

    Returns the app instance. Separated from module-level creation
    so tests can create fresh instances with their own runtime.
    """
    from fastapi import FastAPI, HTTPException, Request
    from fastapi.responses import JSONResponse

    from api.models import ErrorResponse, StudentIdPath, StudentSubmission, http_status_for
    from connector.config import load_config, load_settings
    from connector.errors import LorError
    from connector.orchestrator import Phase
    from ledger.runtime import create_runtime

    _state: dict[str, Any] = {"runtime": runtime}

    @asynccontextmanager
    async def lifespan(app):
        yield
        if _state["runtime"] is not None:
            await _state["runtime"].aclose()

    app = FastAPI(
        title="LOR Ledger API",
        version="0.1.0",
        description="Letter-of-recommendation ledger client",
        lifespan=lifespan,
    )

    def get_runtime():
        if _state["runtime"] is None:
            _state["runtime"] = create_runtime(settings or load_settings(load_config()))
        return _state["runtime"]

    def error_response(error: LorError) -> Any:
        logger.info("Request failed: %s", error.kind.value)
        body = ErrorResponse.from_error(error)
        return JSONResponse(status_code=http_status_for(error.kind), content=body.to_dict())

    def parse_id(student_id: str) -> int:
        path = StudentIdPath(student_id)
        errors = path.validate()
        if errors:
            raise HTTPException(status_code=422, detail=errors[0])
        return path.value

    # ── Connection ────────────────────────────────────────────

    @app.get("/v1/connection")
    async def get_connection():
        return JSONResponse(content=get_runtime().orchestrator.snapshot())

    @app.post("/v1/connection/connect")
    async def connect():
        orch = get_runtime().orchestrator
        phase = await orch.connect()
        snapshot = orch.snapshot()
        if phase == Phase.FAILED and orch.state.last_error is not None:
            code = http_status_for(orch.state.last_error.kind)
            return JSONResponse(status_code=code, content=snapshot)
        return JSONResponse(content=snapshot)

    @app.post("/v1/connection/reset")
    async def reset():
        orch = get_runtime().orchestrator
        orch.reset()
        return JSONResponse(content=orch.snapshot())

    # ── Students ──────────────────────────────────────────────

    @app.post("/v1/students")
    async def submit_student(request: Request):
        body = await request.json()
        if not isinstance(body, dict):
            return JSONResponse(status_code=422, content={"errors": ["body must be an object"]})
        submission = StudentSubmission.from_body(body)
        errors = submission.validate()
        if errors:
            return JSONResponse(status_code=422, content={"errors": errors})

        client = get_runtime().client
        try:
            if submission.request:
                confirmation = await client.submit_request(
                    submission.name, submission.course, submission.email)
            else:
                confirmation = await client.add_student(
                    submission.name, submission.course, submission.email)
        except LorError as e:
            return error_response(e)
        return JSONResponse(status_code=201, content=confirmation.to_dict())

    @app.get("/v1/students/count")
    async def student_count():
        try:
            count = await get_runtime().client.student_count()
        except LorError as e:
            return error_response(e)
        return JSONResponse(content={"count": count})

    @app.get("/v1/students/{student_id}")
    async def get_student(student_id: str):
        sid = parse_id(student_id)
        try:
            student = await get_runtime().client.get_student(sid)
        except LorError as e:
            return error_response(e)
        return JSONResponse(content=student.to_dict())

    @app.post("/v1/students/{student_id}/request")
    async def request_recommendation(student_id: str):
        sid = parse_id(student_id)
        try:
            confirmation = await get_runtime().client.request_recommendation(sid)
        except LorError as e:
            return error_response(e)
        return JSONResponse(content=confirmation.to_dict())

    @app.post("/v1/students/{student_id}/approve")
    async def approve_recommendation(student_id: str):
        sid = parse_id(student_id)
        try:
            confirmation = await get_runtime().client.approve_recommendation(sid)
        except LorError as e:
            return error_response(e)
        return JSONResponse(content=confirmation.to_dict())

    # ── Health ────────────────────────────────────────────────

    @app.get("/health")
    async def health():
        orch = get_runtime().orchestrator
        return JSONResponse(content={
            "status": "ok",
            "connected": orch.is_connected,
            "phase": orch.phase.value,
            "timestamp": time.time(),
        })

    return app


# ── Module-level app for uvicorn ──────────────────────────────

try:
    app = create_app()
except ImportError:
    # FastAPI not installed — app creation deferred
    app = None
