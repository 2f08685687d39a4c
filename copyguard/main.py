import os
import asyncio
import time
from typing import List, Set
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, UploadFile, File, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

# Load environment variables
from dotenv import load_dotenv
load_dotenv()

from copyguard import __version__, config
from copyguard.core.collection import ImageCollection
from copyguard.core.indexer import CollectionIndexer
from copyguard.core.orchestrator import AssessmentOrchestrator
from copyguard.core.utils import format_file_size, guess_image_mime_type, sanitize_filename
from copyguard.errors import AssessmentInProgressError, NoTargetError
from copyguard.models.assessment import AssessmentRun, AssessmentStatus, HistoryRecord
from copyguard.models.image import ImageRecord
from copyguard.models.responses import (
    ErrorResponse, HealthResponse, IndexPassResponse, RefineRequest, RefineResponse,
)
from copyguard.services.oracles import (
    create_embedding_oracle, create_remediation_oracle, create_verification_oracle,
)

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

# Application state, created in lifespan
collection: ImageCollection = None
indexer: CollectionIndexer = None
orchestrator: AssessmentOrchestrator = None
remediation_oracle = None

# Strong references to fire-and-forget assessment tasks
_background_tasks: Set[asyncio.Task] = set()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    global collection, indexer, orchestrator, remediation_oracle

    # Startup
    logger.info("Starting CopyGuard API", embedding_provider=config.EMBEDDING_PROVIDER)
    try:
        embedding_oracle = create_embedding_oracle()
        collection = ImageCollection()
        indexer = CollectionIndexer(collection, embedding_oracle)
        orchestrator = AssessmentOrchestrator(collection, embedding_oracle, create_verification_oracle())
        remediation_oracle = create_remediation_oracle()

        if not config.DOUBAO_API_KEY:
            logger.warning("DOUBAO_API_KEY is not set, oracle calls will fail open")

        indexer.start()
    except Exception as e:
        logger.error("Failed to initialize application", error=str(e))
        raise

    yield

    # Shutdown
    logger.info("Shutting down CopyGuard API")
    await indexer.stop()
    for task in list(_background_tasks):
        task.cancel()


# Create FastAPI application
app = FastAPI(
    title="CopyGuard API",
    description="Copyright-risk screening of generated images against a protected collection",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    responses={
        422: {"model": ErrorResponse, "description": "Validation Error"},
        500: {"model": ErrorResponse, "description": "Internal Server Error"},
    }
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

SUPPORTED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp", "image/bmp"}


async def read_image_upload(file: UploadFile) -> tuple[str, str, bytes]:
    """Validate an uploaded image and return its sanitized name, content type and bytes."""
    if not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Filename is required"
        )

    content_type = file.content_type
    if not content_type or content_type == "application/octet-stream":
        content_type = guess_image_mime_type(file.filename)
    if content_type not in SUPPORTED_IMAGE_TYPES:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail=f"Unsupported media type: {content_type}. Supported types: {', '.join(sorted(SUPPORTED_IMAGE_TYPES))}"
        )

    data = await file.read()
    if len(data) > config.MAX_FILE_SIZE:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File size exceeds maximum allowed size of {format_file_size(config.MAX_FILE_SIZE)}"
        )
    if not data:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="File is empty"
        )

    return sanitize_filename(file.filename), content_type, data


def _start_in_background() -> None:
    task = asyncio.create_task(_run_assessment_quietly())
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


async def _run_assessment_quietly() -> None:
    try:
        await orchestrator.run_assessment()
    except (AssessmentInProgressError, NoTargetError) as e:
        logger.warning("Background assessment not started", error=str(e))
    except Exception as e:
        logger.error("Background assessment failed", error=str(e), exc_info=True)


@app.get("/", response_model=dict)
async def root():
    """Root endpoint with API information."""
    return {
        "name": "CopyGuard API",
        "version": __version__,
        "description": "Copyright-risk screening for generated images",
        "docs_url": "/docs",
        "health_url": "/health",
        "embedding_provider": config.EMBEDDING_PROVIDER,
    }


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint with component status."""
    components = {
        "collection": "healthy" if collection is not None else "not_initialized",
        "indexer": "healthy" if indexer is not None and indexer.running else "stopped",
        "oracle_credentials": "configured" if config.DOUBAO_API_KEY else "missing",
    }
    if collection is None or indexer is None:
        overall_status = "unhealthy"
    elif components["indexer"] == "healthy" and config.DOUBAO_API_KEY:
        overall_status = "healthy"
    else:
        overall_status = "degraded"

    return HealthResponse(status=overall_status, version=__version__, components=components)


@app.get("/stats", response_model=dict)
async def get_system_stats():
    """Collection and assessment statistics."""
    return {
        "collection": collection.stats(),
        "assessment": {
            "status": orchestrator.run.status.value,
            "generation": orchestrator.generation,
            "history": len(orchestrator.history),
        },
        "api_version": __version__,
        "timestamp": time.time(),
    }


@app.post("/collection", response_model=List[ImageRecord], status_code=status.HTTP_201_CREATED)
async def upload_collection_images(
    files: List[UploadFile] = File(..., description="Reference images to protect")
):
    """
    Add reference images to the protected collection.

    Fingerprints and embeddings are computed by the background indexer;
    the returned records are not indexed yet.
    """
    uploads = [await read_image_upload(f) for f in files]
    records = [collection.add(name, data, mime_type) for name, mime_type, data in uploads]
    indexer.notify()
    return records


@app.get("/collection", response_model=List[ImageRecord])
async def list_collection():
    return collection.records()


@app.delete("/collection/{image_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_collection_image(image_id: str):
    if not collection.remove(image_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Image {image_id} not found")


@app.post("/collection/index", response_model=IndexPassResponse)
async def index_collection():
    """Run one indexing pass now instead of waiting for the background worker."""
    counts = await indexer.run_pending()
    return IndexPassResponse(**counts)


@app.post("/assessments", response_model=AssessmentRun, status_code=status.HTTP_202_ACCEPTED)
async def submit_assessment(
    file: UploadFile = File(..., description="Generated image to screen"),
    wait: bool = Query(False, description="Run the assessment before responding"),
):
    """
    Submit a target image and start its assessment.

    Any assessment still in flight for a previous target is abandoned.
    With ``wait=true`` the response holds the completed run.
    """
    name, mime_type, data = await read_image_upload(file)
    run = orchestrator.set_target(data, mime_type, name)

    if wait:
        return await orchestrator.run_assessment()

    _start_in_background()
    return run


@app.get("/assessments/current", response_model=AssessmentRun)
async def get_current_assessment():
    return orchestrator.run


@app.delete("/assessments/current", response_model=AssessmentRun)
async def reset_current_assessment():
    """Abandon the current run. The target is kept so it can be run again."""
    return orchestrator.reset()


@app.post("/assessments/current/run", response_model=AssessmentRun)
async def rerun_current_assessment(wait: bool = Query(False)):
    run = orchestrator.run
    if run.target is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="No target image submitted")
    if run.status not in (AssessmentStatus.IDLE, AssessmentStatus.COMPLETE):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT,
                            detail=f"Assessment is already {run.status.value}")

    try:
        if wait:
            return await orchestrator.run_assessment()
        if run.status == AssessmentStatus.COMPLETE:
            run = orchestrator.reset()
        _start_in_background()
        return run
    except (AssessmentInProgressError, NoTargetError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@app.get("/history", response_model=List[HistoryRecord])
async def get_history():
    return orchestrator.history


@app.post("/remediation", response_model=RefineResponse)
async def refine_suggestion(request: RefineRequest):
    """Turn a modification suggestion into a regeneration prompt. An empty prompt means the oracle failed."""
    prompt = await asyncio.to_thread(remediation_oracle.refine, request.suggestion)
    if not prompt:
        logger.warning("Remediation returned no prompt", suggestion_length=len(request.suggestion))
    return RefineResponse(prompt=prompt)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error("Unhandled exception",
                 url=str(request.url), method=request.method, error=str(exc), exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "internal_server_error", "message": "An unexpected error occurred"}
    )


if __name__ == "__main__":
    uvicorn.run(
        "copyguard.main:app",
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", 8000)),
        reload=os.getenv("DEBUG", "false").lower() == "true",
        log_config=None,  # We handle logging with structlog
    )
