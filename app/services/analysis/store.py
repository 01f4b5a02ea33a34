"""
Result Store adapter

Appends the composed AnalysisResult to the Supabase `analyses` table.
Failures surface as PersistenceFailure; the orchestrator only logs them.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from app.config import PERSISTENCE_TIMEOUT
from app.errors import PersistenceFailure
from app.services.analysis import AnalysisRequest, AnalysisResult

logger = logging.getLogger(__name__)


def build_analysis_record(result: AnalysisResult, request: AnalysisRequest) -> Dict[str, Any]:
    data = result.to_dict()

    result_top = None
    if result.plant and result.plant.common_name:
        summary = "Cây khỏe mạnh" if result.is_healthy else f"Phát hiện {len(result.diseases)} bệnh"
        result_top = {
            "plant": {
                "commonName": result.plant.common_name or "",
                "scientificName": result.plant.scientific_name or "",
            },
            "confidence": result.plant.confidence or 0,
            "summary": summary,
        }

    return {
        "user_id": request.user_id,
        "source": request.source,
        "input_images": [{"url": result.image_url}] if result.image_url else [],
        "input_text": result.input_text,
        "result_top": result_top,
        "raw": {
            "plant": data["plant"],
            "diseases": data["diseases"],
            "isHealthy": data["isHealthy"],
            "treatments": data["treatments"],
            "aiAdvice": data["aiAdvice"],
            "care": data["care"],
            "analyzedAt": data["analyzedAt"],
        },
        "created_at": datetime.now(timezone.utc).isoformat(),
    }


class AnalysisStore:

    def __init__(self, supabase_client=None, timeout: float = PERSISTENCE_TIMEOUT):
        self.supabase = supabase_client
        self.timeout = timeout

    async def save(self, result: AnalysisResult, request: AnalysisRequest) -> Optional[str]:
        """Insert the record and return its id."""
        if not self.supabase:
            raise PersistenceFailure("Result store not configured")

        record = build_analysis_record(result, request)

        def _insert():
            return self.supabase.table('analyses').insert(record).execute()

        try:
            response = await asyncio.wait_for(asyncio.to_thread(_insert), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise PersistenceFailure(f"Result store write timed out after {self.timeout}s")
        except Exception as e:
            raise PersistenceFailure(f"Failed to save analysis: {e}")

        if not response.data:
            raise PersistenceFailure("Result store returned no row")

        analysis_id = response.data[0].get("id")
        logger.info(
            f"💾 Analysis saved: id={analysis_id}, user={request.user_id or 'anonymous'}, "
            f"diseases={len(result.diseases)}"
        )
        return str(analysis_id) if analysis_id is not None else None
