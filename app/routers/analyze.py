import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.config import ANALYZE_RATE_LIMIT
from app.dependencies import get_image_validator, get_orchestrator
from app.models import AnalyzeBody, ValidateImageBody
from app.services.analysis import AnalysisRequest
from app.services.analysis.image_validation import ImageValidator
from app.services.analysis.orchestrator import AnalysisOrchestrator
from app.services.analysis.progress import ProgressChannel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/analyze")
limiter = Limiter(key_func=get_remote_address)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

# Streaming pipelines outlive their response when the client disconnects
_background_tasks = set()


def _caller_id(request: Request) -> Optional[str]:
    """User id set by an upstream auth layer, if any"""
    return getattr(request.state, "user_id", None)


@router.post("")
@limiter.limit(ANALYZE_RATE_LIMIT)
async def analyze(
    request: Request,
    body: AnalyzeBody,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    analysis_request = AnalysisRequest(
        image=body.image_ref,
        text=body.text,
        latitude=body.latitude,
        longitude=body.longitude,
        user_id=_caller_id(request),
    )
    result = await orchestrator.analyze(analysis_request)
    return result.to_dict()


@router.get("/stream")
@limiter.limit(ANALYZE_RATE_LIMIT)
async def analyze_stream(
    request: Request,
    image: Optional[str] = None,
    text: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    analysis_request = AnalysisRequest(
        image=image,
        text=text,
        latitude=latitude,
        longitude=longitude,
        user_id=_caller_id(request),
    )
    channel = ProgressChannel()
    logger.info(f"📡 SSE analysis started: source={analysis_request.source}")

    task = asyncio.create_task(orchestrator.analyze_streaming(analysis_request, channel))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)

    async def event_stream():
        try:
            async for frame in channel.stream():
                yield frame
        finally:
            channel.close()

    return StreamingResponse(event_stream(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/validate-image")
@limiter.limit(ANALYZE_RATE_LIMIT)
async def validate_image(
    request: Request,
    body: ValidateImageBody,
    validator: ImageValidator = Depends(get_image_validator),
):
    return await validator.validate(body.imageUrl)
