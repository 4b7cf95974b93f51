import logging
import structlog
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, UploadFile, File, Form, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
import uvicorn

# Load environment variables
from dotenv import load_dotenv
load_dotenv()

from truthchain import config, __version__
from truthchain.core.errors import AttestationError, GuardBlockedError, MediaValidationError, UpstreamUnavailableError
from truthchain.core.ledger import create_ledger_client
from truthchain.core.storage import create_blob_store
from truthchain.models.api import (
    CreatorResponse, ErrorResponse, HealthResponse, RegisterRequest, RegisterResponse,
    ReputationResponse, SearchResponse, StatsResponse, VerifyRequest, VerifyResponse,
)
from truthchain.models.attestation import MediaType, SearchFilters
from truthchain.services.attestation import AttestationService
from truthchain.services.indexing import AttestationIndex
from truthchain.services.normalizer import ContentNormalizer
from truthchain.services.proofs import create_proof_strategy
from truthchain.services.reputation import ReputationTracker
from truthchain.services.similarity import SimilarityGuard

logging.basicConfig(level=config.LOG_LEVEL.upper(), format="%(message)s")

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


def build_service() -> AttestationService:
    """Wire the pipeline from configuration."""
    return AttestationService(
        normalizer=ContentNormalizer(),
        proof_strategy=create_proof_strategy(),
        blob_store=create_blob_store(),
        ledger=create_ledger_client(),
        index=AttestationIndex(),
        similarity_guard=SimilarityGuard(
            block_threshold=config.SIMILARITY_BLOCK_THRESHOLD,
            warn_threshold=config.SIMILARITY_WARN_THRESHOLD,
        ),
        reputation=ReputationTracker(block_floor=config.REPUTATION_BLOCK_FLOOR),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    # Startup
    logger.info("Starting TruthChain API")
    try:
        # tests install their own service before startup
        if getattr(app.state, "service", None) is None:
            app.state.service = build_service()
        service = app.state.service
        logger.info("Attestation service initialized",
                    ledger_backend=service.ledger.backend.name,
                    blob_backend=service.blob_store.name,
                    proof_strategy=service.proof_strategy.name)

        if config.INDEX_REPLAY_ON_STARTUP:
            indexed = service.rebuild_index(config.INDEX_REPLAY_LIMIT)
            logger.info("Index replayed from ledger", indexed=indexed)

    except Exception as e:
        logger.error("Failed to initialize application", error=str(e))
        raise

    yield

    # Shutdown
    logger.info("Shutting down TruthChain API")

# Create FastAPI application
app = FastAPI(
    title="TruthChain API",
    description="Content-addressed media attestation on Sui with Walrus-backed integrity proofs",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    responses={
        400: {"model": ErrorResponse, "description": "Validation Error"},
        500: {"model": ErrorResponse, "description": "Internal Server Error"},
    }
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_service(request: Request) -> AttestationService:
    return request.app.state.service


async def read_upload(file: UploadFile) -> bytes:
    """Read an upload, enforcing MAX_FILE_SIZE."""
    if not file.filename:
        raise MediaValidationError("Filename is required")
    if file.size and file.size > config.MAX_FILE_SIZE:
        raise MediaValidationError(f"File size exceeds maximum allowed size of {config.MAX_FILE_SIZE} bytes")

    data = await file.read()
    if len(data) > config.MAX_FILE_SIZE:
        raise MediaValidationError(f"File size exceeds maximum allowed size of {config.MAX_FILE_SIZE} bytes")
    return data


@app.get("/", response_model=dict)
def root():
    """Root endpoint with API information."""
    return {
        "name": "TruthChain API",
        "version": __version__,
        "description": "Content-addressed media attestation",
        "docs_url": "/docs",
        "health_url": "/health",
        "endpoints": {
            "register": "POST /v1/register",
            "registerUpload": "POST /v1/register/upload",
            "verify": "POST /v1/verify",
            "verifyUpload": "POST /v1/verify/upload",
            "search": "GET /v1/search",
            "stats": "GET /v1/stats",
            "creator": "GET /v1/creator/{creator}",
            "reputation": "GET /v1/reputation/{address}",
            "info": "GET /v1/info",
        },
    }


@app.get("/health", response_model=HealthResponse)
def health_check(request: Request):
    """Health check endpoint with ledger, blob store and index status."""
    service = get_service(request)
    try:
        ledger_health = service.ledger.health_check()
        storage_health = service.blob_store.health_check()

        components = {
            "ledger": "healthy" if ledger_health.get("available") else "unhealthy",
            "storage": "healthy" if storage_health.get("available") else "unhealthy",
        }
        overall_status = "healthy" if all(s == "healthy" for s in components.values()) else "degraded"

        return HealthResponse(
            status=overall_status,
            version=__version__,
            components={
                **components,
                "ledger_health": ledger_health,
                "storage_health": storage_health,
                "index_size": service.index.size(),
            }
        )
    except Exception as e:
        logger.error("Health check failed", error=str(e))
        return HealthResponse(status="unhealthy", version=__version__, components={"error": str(e)})


@app.get("/v1/info", response_model=dict)
def info(request: Request):
    """Deployment configuration, without secrets."""
    service = get_service(request)
    return {
        "name": "TruthChain",
        "version": __version__,
        "network": config.SUI_NETWORK,
        "ledgerBackend": service.ledger.backend.name,
        "blobBackend": service.blob_store.name,
        "proofStrategy": service.proof_strategy.name,
        "packageId": config.PACKAGE_ID or None,
        "registryObjectId": config.REGISTRY_OBJECT_ID or None,
        "mediaTypes": [m.value for m in MediaType],
        "maxFileSize": config.MAX_FILE_SIZE,
    }


@app.post("/v1/register", response_model=RegisterResponse, response_model_exclude_none=True)
def register(body: RegisterRequest, request: Request):
    """Register a client-computed content hash."""
    return get_service(request).register(body)


@app.post("/v1/register/upload", response_model=RegisterResponse, response_model_exclude_none=True)
async def register_upload(
    request: Request,
    file: UploadFile = File(..., description="Media file to normalize, hash and register"),
    source: str = Form(...),
    media_type: Optional[str] = Form(None, alias="mediaType"),
    is_ai_generated: bool = Form(False, alias="isAiGenerated"),
    metadata: str = Form("{}"),
    creator: Optional[str] = Form(None),
):
    """
    Register an uploaded file.

    The file is normalized and hashed server-side; the integrity proof covers
    the normalized bytes.
    """
    data = await read_upload(file)
    logger.info("Processing registration upload",
                filename=file.filename, content_type=file.content_type, size=len(data))
    return await run_in_threadpool(
        get_service(request).register_media,
        data,
        filename=file.filename,
        content_type=file.content_type,
        source=source,
        media_type=media_type,
        is_ai_generated=is_ai_generated,
        metadata=metadata,
        creator=creator,
    )


@app.post("/v1/verify", response_model=VerifyResponse, response_model_exclude_none=True)
def verify(body: VerifyRequest, request: Request):
    return get_service(request).verify(body.hash)


@app.post("/v1/verify/upload", response_model=VerifyResponse, response_model_exclude_none=True)
async def verify_upload(
    request: Request,
    file: UploadFile = File(..., description="Media file to verify"),
):
    data = await read_upload(file)
    return await run_in_threadpool(
        get_service(request).verify_media, data, filename=file.filename, content_type=file.content_type
    )


@app.get("/v1/search", response_model=SearchResponse)
def search(
    request: Request,
    creator: Optional[str] = Query(None),
    source: Optional[str] = Query(None),
    date_from: Optional[int] = Query(None, alias="dateFrom", description="Inclusive lower bound, ms since epoch"),
    date_to: Optional[int] = Query(None, alias="dateTo", description="Inclusive upper bound, ms since epoch"),
    media_type: Optional[MediaType] = Query(None, alias="mediaType"),
    is_ai_generated: Optional[bool] = Query(None, alias="isAiGenerated"),
):
    """Search indexed attestations; all given filters must match."""
    filters = SearchFilters(
        creator=creator,
        source=source,
        date_from=date_from,
        date_to=date_to,
        media_type=media_type,
        is_ai_generated=is_ai_generated,
    )
    results = get_service(request).search(filters)
    return SearchResponse(count=len(results), results=results)


@app.get("/v1/stats", response_model=StatsResponse)
def stats(request: Request, limit: int = Query(default=10, ge=1, le=100)):
    index_stats, index_size = get_service(request).stats(limit)
    return StatsResponse(stats=index_stats, index_size=index_size)


@app.get("/v1/creator/{creator}", response_model=CreatorResponse)
def creator_attestations(creator: str, request: Request):
    """All indexed attestations of one creator, with their reputation."""
    service = get_service(request)
    attestations = service.by_creator(creator)
    reputation = service.reputation.get(creator).to_dict() if service.reputation else {}
    return CreatorResponse(creator=creator, count=len(attestations), attestations=attestations, reputation=reputation)


@app.get("/v1/reputation/{address}", response_model=ReputationResponse)
def reputation(address: str, request: Request):
    service = get_service(request)
    if service.reputation is None:
        return ReputationResponse(reputation={})
    return ReputationResponse(reputation=service.reputation.get(address).to_dict())


def _error_response(status_code: int, error: ErrorResponse) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error.model_dump(by_alias=True, exclude_none=True))


@app.exception_handler(AttestationError)
async def attestation_exception_handler(request, exc: AttestationError):
    error = ErrorResponse(error=exc.error, message=exc.message, details=exc.details or None)
    if isinstance(exc, UpstreamUnavailableError):
        error.stage = exc.stage
    if isinstance(exc, GuardBlockedError):
        error.reason = exc.reason
        error.warnings = exc.warnings
        error.stage = exc.details.get("stage")

    logger.warning("Request failed",
                   url=str(request.url), error=exc.error, message=exc.message, status_code=exc.status_code)
    return _error_response(exc.status_code, error)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc: RequestValidationError):
    errors = [
        {"loc": [str(part) for part in e.get("loc", ())], "msg": e.get("msg", "")}
        for e in exc.errors()
    ]
    message = errors[0]["msg"] if errors else "Invalid request"
    return _error_response(
        status.HTTP_400_BAD_REQUEST,
        ErrorResponse(error="validation_error", message=message, details={"errors": errors}),
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error("Unhandled exception",
                 url=str(request.url), method=request.method, error=str(exc), exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": "internal_server_error", "message": "An unexpected error occurred"}
    )

if __name__ == "__main__":
    uvicorn.run(
        "truthchain.main:app",
        host=config.API_HOST,
        port=config.API_PORT,
        reload=config.DEBUG,
        log_config=None,  # We handle logging with structlog
    )
