import logging
from fastapi import APIRouter

from app.dependencies import openai_client, supabase_client, settings
from app.config import PLANTID_API_KEY

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/")
async def root():
    return {
        "status": "online",
        "service": "Plant Analysis API",
        "version": "1.0.0",
        "features": [
            "Plant.id Image Identification",
            "Text Description Identification",
            "Treatment Aggregation (Chemical / Biological / Cultural)",
            "AI Treatment Advice",
            "Streaming Progress (SSE)"
        ]
    }


@router.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "version": "1.0.0",
        "services": {
            "plantid": bool(PLANTID_API_KEY),
            "openai": bool(openai_client),
            "supabase": bool(supabase_client)
        },
        "image_validation_enabled": settings.image_validation_enabled,
        "advisory_enabled": settings.advisory_enabled
    }
