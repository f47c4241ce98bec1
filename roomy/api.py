"""
Roomy API - Compatibility ranking and Roomy AI chat
===================================================

Flow (chat):
1. Receive {message, userId, sessionId}
2. ChatService runs the turn (sanitize, rate limit, memory, ranking, AI)
3. Return {response, sessionId, hasContext, ...} or {error}

Endpoints:
  POST /api/roomy-chat         - One chat turn
  POST /api/matches/roommates  - Rank roommate candidates
  POST /api/matches/dorms      - Rank dorm listings for a student
  GET  /api/health             - Health check
  GET  /api/errors/recent      - Recent audit-logged errors
"""

# Load environment variables first
from dotenv import load_dotenv
load_dotenv()

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from roomy import __version__
from roomy.config import get_config
from roomy.errors import RoomyError, RateLimitedError, StoreUnavailableError
from roomy.chat_schema import ChatRequest
from roomy.profile_schema import RankingRequest, RankingResponse
from roomy.ranking_service import RankingService
from roomy.chat_service import ChatService, get_chat_service
from roomy.session_store import DuckDBSessionStore, get_database, close_database
from roomy.api_enhancements import RequestLoggingMiddleware, get_client_id, get_error_logger

# Logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

GENERIC_ERROR = "An error occurred. Please try again."


# =============================================================================
# FASTAPI APP
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    config = get_config()
    logger.info("=" * 60)
    logger.info("  ROOMY MATCHING API")
    logger.info("=" * 60)
    logger.info(f"DuckDB: {config.duckdb_path}")
    logger.info(f"Environment: {config.env}")
    logger.info("=" * 60)

    try:
        DuckDBSessionStore(get_database()).purge_expired()
    except StoreUnavailableError:
        logger.warning("Database unavailable at startup; chat will run without memory")

    yield

    logger.info("Shutting down...")
    close_database()


app = FastAPI(
    title="Roomy Matching API",
    description="Roommate/dorm compatibility ranking and the Roomy AI chat assistant",
    version=__version__,
    lifespan=lifespan
)

app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(RoomyError)
async def roomy_error_handler(request: Request, exc: RoomyError):
    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(int(exc.retry_after) + 1)}
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message}, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid input", "details": jsonable_encoder(exc.errors())},
    )


# =============================================================================
# ENDPOINTS
# =============================================================================

@app.get("/api/health")
async def health():
    """Health check endpoint"""
    return {"status": "healthy", "version": __version__}


@app.post("/api/roomy-chat")
async def roomy_chat(
    body: ChatRequest,
    request: Request,
    service: ChatService = Depends(get_chat_service)
):
    """
    One chat turn.

    Errors come back as {"error": ...}: 400 invalid message, 429 rate
    limited, 402 gateway payment required, 500 anything unexpected.
    """
    try:
        response = await run_in_threadpool(service.handle_turn, body, get_client_id(request))
    except RoomyError:
        raise
    except Exception as e:
        get_error_logger().log_error(
            e, context={"session_id": body.session_id}, request=request, source="roomy-chat"
        )
        return JSONResponse(status_code=500, content={"error": GENERIC_ERROR})
    return JSONResponse(content=response.to_body())


@app.post("/api/matches/roommates", response_model=RankingResponse)
async def rank_roommates(body: RankingRequest):
    """Rank roommate candidates for the requester (roommate rubric)"""
    return RankingService("roommate").rank_response(
        body.requester, body.candidates, body.filters, body.limit
    )


@app.post("/api/matches/dorms", response_model=RankingResponse)
async def rank_dorms(body: RankingRequest):
    """Rank dorm listings for the requester (dorm rubric)"""
    return RankingService("dorm").rank_response(
        body.requester, body.candidates, body.filters, body.limit
    )


@app.get("/api/errors/recent")
async def recent_errors_endpoint(limit: int = 20):
    """Get recent errors for debugging"""
    error_logger = get_error_logger()
    return {
        "stats": error_logger.get_stats(),
        "recent_errors": error_logger.get_recent_errors(limit)
    }


if __name__ == "__main__":
    import uvicorn

    config = get_config()

    print("=" * 62)
    print("  ROOMY MATCHING API")
    print("=" * 62)
    print(f"  DuckDB: {config.duckdb_path[:45]}")
    print(f"  Env:    {config.env}")
    print("=" * 62)
    print("  Endpoints:")
    print("    POST /api/roomy-chat          Roomy AI chat turn")
    print("    POST /api/matches/roommates   Roommate ranking")
    print("    POST /api/matches/dorms       Dorm ranking")
    print("    GET  /api/health              Health check")
    print("=" * 62)

    uvicorn.run(app, host="0.0.0.0", port=8001)
