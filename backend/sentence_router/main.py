"""
Sentence Router FastAPI Application - sentence to endpoint dispatch.

This is the main entry point for the Sentence Router API.
It delegates every analysis to the SentenceService.

DESIGN PRINCIPLE:
- main.py is a THIN HTTP LAYER
- All business logic lives in the service and the pipeline
- main.py only handles: HTTP concerns, SSE framing, status codes
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import colorlog
from fastapi import FastAPI, Header, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from sentence_router.config import load_settings
from sentence_router.models.endpoint import ErrorEnvelope, SentenceRequest
from sentence_router.services.catalog_source import CatalogSource, RemoteCatalogClient
from sentence_router.services.llm_service import create_model
from sentence_router.services.pipeline_errors import PipelineError
from sentence_router.services.prompt_store import PromptStore
from sentence_router.services.sentence_service import SentenceService, error_envelope

# =============================================================================
# CONFIGURATION
# =============================================================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
SHUTDOWN_DRAIN_SECONDS = 30.0

# Configure logging

def setup_global_color_logging(level: str = LOG_LEVEL):
    # Configure root logger
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO))
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(colorlog.ColoredFormatter(
        "%(log_color)s%(levelname)-8s%(reset)s %(name)s: %(message)s",
        log_colors={
            'DEBUG': 'cyan',
            'INFO': 'green',
            'WARNING': 'yellow',
            'ERROR': 'red',
            'CRITICAL': 'bold_red',
        }
    ))
    root_logger.addHandler(handler)

setup_global_color_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION STATE
# =============================================================================

class AppState:
    """Application state container for dependencies."""
    service: Optional[SentenceService] = None


app_state = AppState()


def build_service(config_path: Optional[str] = None) -> SentenceService:
    """Wire settings, model adapter, catalog source and prompts into a service."""
    settings = load_settings(config_path)

    remote = None
    if settings.endpoint_service_url:
        remote = RemoteCatalogClient(
            settings.endpoint_service_url,
            timeout_seconds=settings.endpoint_service_timeout_seconds,
        )

    return SentenceService(
        settings=settings,
        model=create_model(settings),
        catalog_source=CatalogSource(settings.endpoints_path, remote=remote),
        prompts=PromptStore.from_file(settings.prompts_path),
    )


# =============================================================================
# LIFESPAN (Startup/Shutdown)
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize services on startup, drain in-flight requests on shutdown."""
    logger.info("Starting Sentence Router API...")

    if app_state.service is None:
        app_state.service = build_service()

    if not await app_state.service.catalog_source.verify():
        logger.warning("No endpoint configuration available, requests will fail until one is provided")

    logger.info("Sentence Router API started successfully")

    yield

    logger.info("Shutting down Sentence Router API...")
    service = app_state.service
    service.begin_shutdown()
    await service.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
    await service.aclose()


# =============================================================================
# FASTAPI APP
# =============================================================================

app = FastAPI(
    title="Sentence Router API",
    description="Maps free-text sentences to catalog endpoints and their parameters",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# HELPERS
# =============================================================================

def _get_service() -> SentenceService:
    if app_state.service is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not initialized")
    return app_state.service


def _http_error(error: PipelineError) -> HTTPException:
    envelope = error_envelope(error)
    return HTTPException(status_code=envelope.code, detail=envelope.model_dump())


def _sse(event: str, payload: BaseModel) -> str:
    return f"event: {event}\ndata: {payload.model_dump_json()}\n\n"


def _sse_headers() -> dict:
    return {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }


# =============================================================================
# ENDPOINTS
# =============================================================================

@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint."""
    service = app_state.service
    return {
        "status": "healthy" if service is None or service.accepting else "draining",
        "service": "sentence-router",
        "in_flight": service.in_flight if service else 0,
    }


@app.post(
    "/analyze-sentence",
    tags=["Analysis"],
    summary="Analyze a sentence",
    description="Match a sentence to a catalog endpoint and resolve its parameters. "
                "Streams exactly one event: 'response' or 'error'.",
)
async def analyze_sentence(
    request: SentenceRequest,
    email: Optional[str] = Header(default=None),
    client_id: Optional[str] = Header(default=None),
):
    """
    Caller problems (identity, empty sentence, shutdown) are rejected with an
    HTTP error before the stream opens. Pipeline outcomes arrive as the single
    stream event.
    """
    service = _get_service()

    try:
        task = service.submit(request.sentence, email, client_id)
    except PipelineError as e:
        logger.warning(f"Rejected request from client_id={client_id or 'unknown'}: {e}")
        raise _http_error(e)

    async def event_stream():
        async for message in service.wait_for_result(task):
            if isinstance(message, ErrorEnvelope):
                yield _sse("error", message)
            else:
                yield _sse("response", message)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers=_sse_headers(),
    )


@app.get("/catalog/endpoints", tags=["Catalog"])
async def list_endpoints(email: Optional[str] = Header(default=None)):
    """List the endpoints the pipeline would match against for this caller."""
    service = _get_service()
    try:
        endpoints = await service.list_endpoints(email)
    except PipelineError as e:
        raise _http_error(e)

    return {
        "endpoints": [
            {
                "id": e.id,
                "text": e.text,
                "description": e.description,
                "parameters": [
                    {"name": p.name, "required": p.required, "alternatives": p.alternatives}
                    for p in e.parameters
                ],
            }
            for e in endpoints
        ]
    }


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

def run_server(host: Optional[str] = None, port: Optional[int] = None):
    import uvicorn

    host = host or os.getenv("API_HOST", "0.0.0.0")
    port = port or int(os.getenv("API_PORT", "8000"))

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
