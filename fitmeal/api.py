# -*- coding: utf-8 -*-
"""
FitMeal protocol engine API

Specialized health protocol generation, reusable protocol plans and
customer protocol instances.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .app_db import init_app_db
from .config import settings
from .protocols.api import router as protocols_router
from .protocols.conditions import knowledge_base_version
from .protocols.errors import ProtocolError

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="FitMeal Protocol Engine",
    description="Specialized health protocol generation for trainers and their customers",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def _startup_init_db() -> None:
    init_app_db(settings.app_db_path)


# Ensure the app DB exists even when lifespan events are not triggered (e.g. some test clients).
init_app_db(settings.app_db_path)


@app.exception_handler(ProtocolError)
async def _protocol_error_handler(request: Request, exc: ProtocolError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


app.include_router(protocols_router)


@app.get("/api/health")
def health_check():
    return {
        "status": "ok",
        "version": "1.0.0",
        "knowledge_base": knowledge_base_version(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def run() -> None:
    """Console entry point (used by pyproject [project.scripts])."""
    import uvicorn

    host = os.environ.get("FITMEAL_HOST") or os.environ.get("HOST") or "127.0.0.1"
    port_raw = os.environ.get("FITMEAL_PORT") or os.environ.get("PORT") or "8000"
    try:
        port = int(port_raw)
    except ValueError:
        port = 8000

    uvicorn.run("fitmeal.api:app", host=host, port=port, reload=False)
