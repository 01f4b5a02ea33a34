"""
Image pre-check

Quick "is this a usable plant photo?" gate in front of the full analysis.
Switchable: when disabled it answers valid without spending a vendor call.
"""

import logging
from typing import Any, Dict, List

from app.config import AnalysisSettings
from app.errors import InputError, RecognitionFailure
from app.services.analysis.recognition import (
    RecognitionGateway,
    coerce_probability,
    plantid_disease_suggestions,
    plantid_suggestions,
)

logger = logging.getLogger(__name__)

DISEASE_ACCEPT_CONFIDENCE = 0.3
MIN_TOP_CONFIDENCE = 0.3
LOW_CONFIDENCE = 0.2
MAX_LOW_CONFIDENCE_SUGGESTIONS = 3
GENERIC_TOP_CONFIDENCE = 0.5

MSG_READY = "Hình ảnh đã sẵn sàng để phân tích"
MSG_NOT_PLANT = "Hình ảnh không phải là cây trồng. Vui lòng upload ảnh cây."
MSG_TOO_GENERIC = "Hình ảnh quá chung hoặc không rõ ràng. Vui lòng upload ảnh cây rõ ràng hơn."
MSG_HAS_DISEASE = "Hình ảnh hợp lệ. Phát hiện dấu hiệu bệnh trên cây."
MSG_VALID = "Hình ảnh hợp lệ. Bạn có thể bắt đầu phân tích."
MSG_UNCHECKED = "Không thể kiểm tra hình ảnh. Bạn vẫn có thể thử phân tích."


def _top_plant_name(suggestions: List[Dict[str, Any]]) -> str:
    top = suggestions[0]
    common_names = (top.get("details") or {}).get("common_names") or []
    return common_names[0] if common_names else (top.get("name") or "Cây trồng")


def _unchecked() -> Dict[str, Any]:
    return {"isValid": True, "isPlant": None, "confidence": 0, "message": MSG_UNCHECKED, "warning": True}


def assess_identification(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Turn a raw Plant.id payload into a pre-check verdict.
    Raises ValueError when the payload is malformed.
    """
    suggestions = plantid_suggestions(payload)
    if not suggestions:
        return {"isValid": False, "isPlant": False, "confidence": 0, "message": MSG_NOT_PLANT}

    top_confidence = coerce_probability(suggestions[0].get("probability"))
    diseases = plantid_disease_suggestions(payload)

    # A clearly visible disease wins over a weak plant match
    if any(coerce_probability(d.get("probability")) >= DISEASE_ACCEPT_CONFIDENCE for d in diseases):
        return {
            "isValid": True,
            "isPlant": True,
            "confidence": top_confidence,
            "plantName": _top_plant_name(suggestions),
            "message": MSG_HAS_DISEASE,
            "hasDisease": True,
        }

    if not diseases:
        if top_confidence < MIN_TOP_CONFIDENCE:
            return {"isValid": False, "isPlant": True, "confidence": top_confidence, "message": MSG_TOO_GENERIC}

        low_count = sum(1 for s in suggestions if coerce_probability(s.get("probability")) < LOW_CONFIDENCE)
        if low_count > MAX_LOW_CONFIDENCE_SUGGESTIONS and top_confidence < GENERIC_TOP_CONFIDENCE:
            return {"isValid": False, "isPlant": True, "confidence": top_confidence, "message": MSG_TOO_GENERIC}

    return {
        "isValid": True,
        "isPlant": True,
        "confidence": top_confidence,
        "plantName": _top_plant_name(suggestions),
        "message": MSG_VALID,
    }


class ImageValidator:

    def __init__(self, gateway: RecognitionGateway, settings: AnalysisSettings = None):
        self.gateway = gateway
        self.settings = settings or AnalysisSettings()

    @property
    def enabled(self) -> bool:
        return self.settings.image_validation_enabled

    async def validate(self, image_url: str) -> Dict[str, Any]:
        if not image_url:
            raise InputError("imageUrl is required")

        if not self.enabled:
            logger.info("🔍 Image pre-check disabled, accepting image")
            return {"isValid": True, "isPlant": True, "confidence": 1, "message": MSG_READY}

        try:
            payload = await self.gateway.fetch_identification(image_url)
        except RecognitionFailure as e:
            # Never block the user on a vendor problem
            logger.warning(f"⚠️ Image pre-check could not reach Plant.id: {e.message}")
            return _unchecked()

        try:
            verdict = assess_identification(payload)
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"⚠️ Image pre-check got an unusable Plant.id payload: {e}")
            return _unchecked()

        logger.info(f"🔍 Image pre-check: valid={verdict['isValid']}, confidence={verdict['confidence']}")
        return verdict
