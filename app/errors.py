"""
Error taxonomy for the analysis pipeline.

Only InputError and RecognitionFailure ever reach the caller. Enrichment
failures (translation, treatment sources, advisory, care) are absorbed where
they happen, and PersistenceFailure is caught by the orchestrator.
"""

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

UNHANDLED_ERROR_MESSAGE = "Image analysis failed"


class AnalysisError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"statusCode": self.status_code, "message": self.message}


class InputError(AnalysisError):
    """Request shape is invalid; raised before any external call."""
    status_code = 400


class RecognitionFailure(AnalysisError):
    """Identification service unreachable, timed out or returned garbage."""
    status_code = 502


class PersistenceFailure(AnalysisError):
    """Result store write failed. Logged only."""
    status_code = 500


async def analysis_error_handler(request: Request, exc: AnalysisError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request data") if errors else "Invalid request data"
    return JSONResponse(status_code=400, content={"statusCode": 400, "message": message})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"❌ Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"statusCode": 500, "message": UNHANDLED_ERROR_MESSAGE})
