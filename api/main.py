"""
Prachar Engine API - FastAPI application for campaign content generation.

=============================================================================
HOW TO RUN
=============================================================================

Local Development:
    uvicorn api.main:app --reload --host 0.0.0.0 --port 8000

Production:
    uvicorn api.main:app --host 0.0.0.0 --port 8000 --workers 4

With Gunicorn (recommended for prod):
    gunicorn api.main:app -w 4 -k uvicorn.workers.UvicornWorker --bind 0.0.0.0:8000

Local CLI Test (without server):
    python -m api.main --local-test

=============================================================================
ENVIRONMENT VARIABLES
=============================================================================

PUBLIC_BASE_URL              - Base URL for asset URLs (default: http://localhost:8000)
OUTPUT_DIR                   - Path to output folder (default: ./output)
FONT_PATH                    - Path to font file (default: ./fonts/tiktok-sans-scm.ttf)
GENERATION_DEADLINE_SECONDS  - Shared generation budget (default: 30)
STORAGE_BACKEND              - "local" or "s3" (default: local)
TEXT_BACKEND                 - "simulated" or "bedrock" (default: simulated)
VIDEO_FORMAT                 - "mp4" or "gif" (default: mp4)

=============================================================================
API ENDPOINTS
=============================================================================

GET  /health    - Health check
POST /generate  - Generate images, videos and captions for one prompt

=============================================================================
EXAMPLE REQUESTS
=============================================================================

Health Check:
    curl http://localhost:8000/health

Generate Campaign:
    curl -X POST http://localhost:8000/generate \\
      -H "Content-Type: application/json" \\
      -d '{
        "prompt": "Diwali Sale",
        "user_id": "shop-42",
        "platforms": ["instagram"],
        "business_type": "Retail"
      }'

=============================================================================
"""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field

# Add parent directory to path for imports when running directly
sys.path.insert(0, str(Path(__file__).parent.parent))

from prachar_engine.config import Config, ConfigError, get_config, init_config
from prachar_engine.errors import ErrorCode, ValidationError
from prachar_engine.orchestrator import Orchestrator, build_orchestrator
from prachar_engine.storage import InMemoryMetadataStore, ObjectStore, create_object_store

# =============================================================================
# Logging Configuration
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("prachar_engine.api")


# =============================================================================
# Pydantic Models
# =============================================================================

class GenerateRequest(BaseModel):
    """Request body for /generate endpoint."""
    prompt: str = Field(..., description="Campaign topic, e.g. 'Diwali Sale'")
    user_id: str = Field(..., description="Owner of the generated project")
    platforms: List[str] = Field(
        ..., description="Target platforms: instagram, linkedin"
    )
    business_type: Optional[Literal["Retail", "Restaurant", "Service"]] = Field(
        default=None, description="Flavors the generated copy"
    )


class GenerationErrorItem(BaseModel):
    component: Literal["image", "video", "text"]
    errorCode: str
    errorMessage: str
    timestamp: str


class GenerateResponse(BaseModel):
    """Response body for /generate endpoint."""
    projectId: str
    status: Literal["complete", "partial", "failed"]
    images: List[Dict[str, Any]]
    videos: List[Dict[str, Any]]
    captions: Dict[str, List[Dict[str, Any]]]
    hashtags: Dict[str, Dict[str, Any]]
    errors: List[GenerationErrorItem]


class HealthResponse(BaseModel):
    """Response body for /health endpoint."""
    status: str


class ErrorResponse(BaseModel):
    """Error response body."""
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None
    retryable: bool
    timestamp: str


# =============================================================================
# Dependencies
# =============================================================================

_orchestrator: Optional[Orchestrator] = None
_object_store: Optional[ObjectStore] = None


def get_orchestrator() -> Orchestrator:
    """Shared orchestrator, built from configuration on first use."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator(get_config())
    return _orchestrator


def get_object_store() -> ObjectStore:
    """Object store used to sign asset URLs."""
    global _object_store
    if _object_store is None:
        _object_store = create_object_store(get_config())
    return _object_store


def attach_urls(body: Dict[str, Any], store: ObjectStore, ttl_seconds: int) -> Dict[str, Any]:
    """Add presigned `url` (and `thumbnailUrl`) to every stored asset."""
    for asset in body["images"]:
        asset["url"] = store.presigned_url(asset["storageKey"], ttl_seconds)
        asset["thumbnailUrl"] = store.presigned_url(asset["thumbnailKey"], ttl_seconds)
    for asset in body["videos"]:
        asset["url"] = store.presigned_url(asset["storageKey"], ttl_seconds)
    return body


# =============================================================================
# Lifespan - Startup/Shutdown Events
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Validate configuration and mount static files on startup."""
    config = get_config()

    # Validate configuration
    try:
        config.validate()
        logger.info("Configuration validated successfully")
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        # Don't fail startup - allow /health to report issues

    config.ensure_output_dir()

    # Mount output directory as static files
    # This makes locally stored assets accessible at /output/...
    if config.storage_backend == "local" and config.output_dir.is_dir():
        app.mount(
            "/output",
            StaticFiles(directory=str(config.output_dir)),
            name="output"
        )
        logger.info(f"Mounted static files at /output -> {config.output_dir}")

    yield  # Application runs here

    logger.info("Shutting down Prachar Engine API")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="Prachar Engine API",
    description="Campaign image, video and caption generation",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# =============================================================================
# Exception Handlers
# =============================================================================

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    """Reject invalid generation requests."""
    logger.info(f"Rejected request: {exc.message}")
    return JSONResponse(status_code=400, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """Report malformed bodies with the same taxonomy as engine validation."""
    error = ValidationError(
        "Malformed request body",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(status_code=400, content=error.to_dict())


@app.exception_handler(ConfigError)
async def config_error_handler(request: Request, exc: ConfigError):
    """Handle configuration errors."""
    logger.error(f"Configuration error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "code": ErrorCode.SYSTEM_ERROR.value,
            "message": "Service is misconfigured",
            "retryable": False,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


# =============================================================================
# API Endpoints
# =============================================================================

@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns {"status": "ok"} when the service is running.
    """
    return {"status": "ok"}


@app.post(
    "/generate",
    response_model=GenerateResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid request"},
        500: {"model": ErrorResponse, "description": "Server error"},
    },
    tags=["Generation"],
)
async def generate_campaign(
    request: GenerateRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
    store: ObjectStore = Depends(get_object_store),
):
    """
    Generate images, videos, captions and hashtags for one prompt.

    Partial failures still return 200; check `status` and `errors`.
    """
    config = get_config()

    logger.info(
        f"Generate request: user={request.user_id}, "
        f"platforms={request.platforms}, business_type={request.business_type}"
    )

    try:
        body = await orchestrator.generate(
            request.prompt,
            request.user_id,
            request.platforms,
            business_type=request.business_type,
        )
        return attach_urls(body, store, config.presigned_url_ttl_seconds)

    except ValidationError:
        # Re-raise to be handled by exception handler
        raise

    except Exception as e:
        logger.error(f"Unexpected error: {e}\n{traceback.format_exc()}")
        return JSONResponse(
            status_code=500,
            content={
                "code": ErrorCode.SYSTEM_ERROR.value,
                "message": "Internal server error",
                "retryable": False,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )


# =============================================================================
# CLI Entry Point
# =============================================================================

def run_local_test(prompt: str, platforms: List[str], business_type: Optional[str]):
    """Run one simulated generation without starting the server."""
    print("=" * 60)
    print("Prachar Engine - Local Test Mode")
    print("=" * 60)

    config = init_config(
        base_dir=Path(__file__).parent.parent,
        storage_backend="local",
        text_backend="simulated",
        video_format="gif",
    )

    print(f"OUTPUT_DIR: {config.output_dir}")
    print(f"FONT_PATH: {config.font_path}")
    print()

    try:
        config.validate()
        print("Configuration: OK")
    except ConfigError as e:
        print(f"Configuration Error: {e}")
        sys.exit(1)

    config.ensure_output_dir()
    orchestrator = build_orchestrator(config, metadata_store=InMemoryMetadataStore())

    print()
    print(f"Generating campaign for '{prompt}' on {', '.join(platforms)}...")
    print()

    try:
        result = asyncio.run(
            orchestrator.generate(prompt, "local-test", platforms, business_type)
        )
    except ValidationError as e:
        print(f"Error: {e.message}")
        sys.exit(1)

    print("=" * 60)
    print(f"Status: {result['status']}")
    print("=" * 60)
    for image in result["images"]:
        print(f"  image  {config.output_dir / image['storageKey']}")
    for video in result["videos"]:
        print(f"  video  {config.output_dir / video['storageKey']}")
    for platform, captions in result["captions"].items():
        print(f"  {platform}: {len(captions)} captions")
    for platform, hashtags in result["hashtags"].items():
        print(f"  {platform}: {' '.join(hashtags['tags'])}")
    if result["errors"]:
        print(json.dumps(result["errors"], indent=2))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Prachar Engine API")
    parser.add_argument(
        "--local-test",
        action="store_true",
        help="Run local test without starting server"
    )
    parser.add_argument("--prompt", default="Diwali Sale", help="Campaign topic")
    parser.add_argument(
        "--platform",
        action="append",
        choices=Config.available_platforms(),
        help="Target platform (repeatable, default: instagram)",
    )
    parser.add_argument(
        "--business-type",
        choices=["Retail", "Restaurant", "Service"],
        default="Retail",
    )

    args = parser.parse_args()

    if args.local_test:
        run_local_test(args.prompt, args.platform or ["instagram"], args.business_type)
    else:
        # Print usage hint
        print("Usage:")
        print("  Start server: uvicorn api.main:app --reload")
        print("  Local test:   python -m api.main --local-test")
