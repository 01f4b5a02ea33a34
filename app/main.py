# Plant Analysis API v1.0.0
import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.config import OPENAI_API_KEY, PLANTID_API_KEY
from app.dependencies import plantid_http_client, settings, supabase_client
from app.errors import (
    AnalysisError,
    analysis_error_handler,
    request_validation_handler,
    unhandled_error_handler,
)
from app.routers import analyze, health

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# ============================================================================#
# Lifespan Events
# ============================================================================#

@asynccontextmanager
async def lifespan(app_instance: FastAPI):
    # Startup
    logger.info("=" * 60)
    logger.info("Starting Plant Analysis API")
    logger.info(f"Plant.id API: {'✓' if PLANTID_API_KEY else '✗'}")
    logger.info(f"OpenAI API: {'✓' if OPENAI_API_KEY else '✗'}")
    logger.info(f"Supabase: {'✓' if supabase_client else '✗'}")
    logger.info(f"Image pre-check: {'on' if settings.image_validation_enabled else 'off'}")
    logger.info(f"AI advice: {'on' if settings.advisory_enabled else 'off'}")
    logger.info("=" * 60)

    yield

    # Shutdown
    logger.info("Shutting down gracefully...")
    await plantid_http_client.aclose()


# Initialize FastAPI app
app = FastAPI(
    title="Plant Analysis API",
    description="Plant identification, disease detection and treatment advice",
    version="1.0.0",
    lifespan=lifespan
)

# Rate Limiter (shared with the analyze router)
app.state.limiter = analyze.limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Error responses: {"statusCode", "message"}
app.add_exception_handler(AnalysisError, analysis_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_error_handler)

# CORS for browser clients (SSE)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(analyze.router)


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run("app.main:app", host="0.0.0.0", port=port)
