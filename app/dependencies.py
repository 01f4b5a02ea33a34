import logging
from typing import Optional

import httpx
from supabase import create_client, Client

from app.config import (
    OPENAI_API_KEY,
    PLANTID_API_KEY,
    SUPABASE_URL,
    SUPABASE_KEY,
    RECOGNITION_TIMEOUT,
    AnalysisSettings,
)
from app.services.analysis.advisor import AdvisoryGenerator
from app.services.analysis.care import PlantCareService
from app.services.analysis.image_validation import ImageValidator
from app.services.analysis.localization import LocalizationFormatter
from app.services.analysis.orchestrator import AnalysisOrchestrator
from app.services.analysis.recognition import RecognitionGateway
from app.services.analysis.store import AnalysisStore
from app.services.analysis.treatments import TreatmentAggregator, TreatmentKnowledgeBase

logger = logging.getLogger(__name__)

# Initialize OpenAI (advisory, translation, text identification)
openai_client = None
if OPENAI_API_KEY:
    from openai import AsyncOpenAI
    # One attempt per call; every call site has its own timeout
    openai_client = AsyncOpenAI(api_key=OPENAI_API_KEY, max_retries=0)
    logger.info("OpenAI initialized successfully")

# Initialize Supabase (knowledge base, care info, result store)
supabase_client: Client = None
if SUPABASE_URL and SUPABASE_KEY:
    try:
        supabase_client = create_client(SUPABASE_URL, SUPABASE_KEY)
        logger.info("Supabase initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize Supabase: {e}")

# HTTP client for Plant.id and remote image downloads
plantid_http_client = httpx.AsyncClient(timeout=httpx.Timeout(RECOGNITION_TIMEOUT, connect=10.0))
if not PLANTID_API_KEY:
    logger.warning("PLANTID_API_KEY not set, image analysis is unavailable")

settings = AnalysisSettings.from_env()

_orchestrator_instance: Optional[AnalysisOrchestrator] = None
_image_validator_instance: Optional[ImageValidator] = None


def _build_gateway() -> RecognitionGateway:
    return RecognitionGateway(
        http_client=plantid_http_client,
        openai_client=openai_client,
        api_key=PLANTID_API_KEY,
        timeout=settings.recognition_timeout,
        reliable_threshold=settings.reliable_threshold,
        max_diseases=settings.max_diseases,
    )


def get_orchestrator() -> AnalysisOrchestrator:
    """Get or create the global AnalysisOrchestrator instance"""
    global _orchestrator_instance
    if _orchestrator_instance is None:
        _orchestrator_instance = AnalysisOrchestrator(
            gateway=_build_gateway(),
            formatter=LocalizationFormatter(openai_client, timeout=settings.translation_timeout),
            aggregator=TreatmentAggregator(
                TreatmentKnowledgeBase(supabase_client),
                timeout=settings.treatment_timeout,
            ),
            advisor=AdvisoryGenerator(openai_client, timeout=settings.advisory_timeout),
            care_service=PlantCareService(supabase_client, timeout=settings.care_timeout),
            store=AnalysisStore(supabase_client, timeout=settings.persistence_timeout),
            settings=settings,
        )
    return _orchestrator_instance


def get_image_validator() -> ImageValidator:
    """Get or create the global ImageValidator instance"""
    global _image_validator_instance
    if _image_validator_instance is None:
        _image_validator_instance = ImageValidator(_build_gateway(), settings)
    return _image_validator_instance
