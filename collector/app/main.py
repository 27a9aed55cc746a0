"""FastAPI application entrypoint for the tracker ingestion API."""
from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import schemas
from .auth import get_settings, verify_ingest_credentials
from .config import Settings
from .database import build_engine, build_session_factory
from .errors import IngestError, InvalidPayloadError
from .models import Base
from .persistence import check_connection
from .pipeline import IngestionPipeline

logger = logging.getLogger(__name__)

INGEST_PATH = "/api/ingest"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
}


def get_db(request: Request) -> Session:
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


async def handle_ingest_error(request: Request, exc: IngestError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Ingestion failed with %s: %s", type(exc).__name__, exc.message)
    return JSONResponse({"error": exc.message}, status_code=exc.status_code, headers=CORS_HEADERS)


async def ingest_events(
    request: Request,
    settings: Settings = Depends(verify_ingest_credentials),
    db: Session = Depends(get_db),
) -> JSONResponse:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InvalidPayloadError("Invalid JSON") from exc

    pipeline = IngestionPipeline(settings, db)
    result = await asyncio.to_thread(pipeline.ingest, body)
    response = schemas.IngestResponse(count=result.count, dropped=result.dropped, results=result.results)
    return JSONResponse(response.model_dump(), headers=CORS_HEADERS)


async def preflight() -> JSONResponse:
    return JSONResponse({}, headers=CORS_HEADERS)


def diagnostics(
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
) -> schemas.DiagnosticResponse:
    if not settings.diagnostics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")
    connection_status, connection_error = check_connection(db)
    return schemas.DiagnosticResponse(
        env=settings.presence_report(),
        resolution_policy=settings.resolution_policy.value,
        processing_mode=settings.processing_mode.value,
        connection_test=schemas.ConnectionTest(status=connection_status, error=connection_error),
        timestamp=datetime.now(timezone.utc),
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    engine = build_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)

    app = FastAPI(
        title="Tracker Ingestion API",
        description="Receives pageview, checkout and purchase events from site trackers.",
        version="0.1.0",
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    app.add_exception_handler(IngestError, handle_ingest_error)

    app.add_api_route(INGEST_PATH, ingest_events, methods=["POST"], response_model=schemas.IngestResponse)
    app.add_api_route(INGEST_PATH, preflight, methods=["OPTIONS"])
    app.add_api_route(INGEST_PATH, diagnostics, methods=["GET"], response_model=schemas.DiagnosticResponse)
    return app


app = create_app()
