"""
Recognition Gateway

Calls the external identification service and normalizes its payload into a
RecognitionResult:
- images go to Plant.id v3 (health assessment included)
- free-text descriptions go to the LLM, which answers in the same JSON shape

A vendor answer without any plant suggestion is a valid (degraded) result.
Anything else that goes wrong here is a RecognitionFailure.
"""

import asyncio
import base64
import logging
from typing import Any, Dict, List, Optional, Union

import httpx

from app.config import (
    PLANTID_API_KEY,
    PLANTID_BASE_URL,
    LLM_MODEL_TEXT_IDENTIFICATION,
    IMAGE_FETCH_TIMEOUT,
    RECOGNITION_TIMEOUT,
    RELIABLE_CONFIDENCE_THRESHOLD,
    MAX_PLANT_SUGGESTIONS,
    MAX_DISEASE_SUGGESTIONS,
)
from app.errors import InputError, RecognitionFailure
from app.services.analysis import (
    AnalysisRequest,
    Disease,
    PlantIdentification,
    RecognitionResult,
)
from app.utils.text_processing import parse_llm_json

logger = logging.getLogger(__name__)

PLANTID_DETAILS = "common_names,description,treatment"

# Confidences above this are read as 0-100 percentages
PERCENT_SCALE_BOUND = 1.5


def coerce_probability(value: Any) -> float:
    """Coerce vendor/LLM confidence to [0, 1]; accepts 0-100 percentages."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number > PERCENT_SCALE_BOUND:
        number = number / 100.0
    return max(0.0, min(1.0, number))


def _as_dict(value: Any, field: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"'{field}' is not an object")
    return value


def _dict_entries(value: Any, field: str) -> List[Dict[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{field}' is not a list")
    if any(not isinstance(entry, dict) for entry in value):
        raise ValueError(f"'{field}' has a non-object entry")
    return list(value)


def normalize_plantid_payload(
    payload: Dict[str, Any],
    reliable_threshold: float = RELIABLE_CONFIDENCE_THRESHOLD,
    max_diseases: int = MAX_DISEASE_SUGGESTIONS,
) -> RecognitionResult:
    """
    Map a Plant.id v3 identification payload to a RecognitionResult.
    Raises ValueError when the payload does not look like an identification.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("result"), dict):
        raise ValueError("Plant.id payload has no 'result' object")

    result = payload["result"]
    is_plant = bool(_as_dict(result.get("is_plant"), "is_plant").get("binary", True))
    suggestions = plantid_suggestions(payload)[:MAX_PLANT_SUGGESTIONS]

    raw_diseases = plantid_disease_suggestions(payload)
    health = _as_dict(result.get("is_healthy"), "is_healthy")
    if "binary" in health:
        is_healthy = bool(health["binary"])
    else:
        is_healthy = not raw_diseases

    diseases: List[Disease] = []
    if not is_healthy:
        for suggestion in raw_diseases[:max_diseases]:
            name = suggestion.get("name")
            if not name:
                continue
            details = _as_dict(suggestion.get("details"), "disease.details")
            diseases.append(Disease(
                name=str(name),
                original_name=str(name),
                confidence=coerce_probability(suggestion.get("probability")),
                description=details.get("description") or None,
            ))

    if not suggestions:
        # Vendor answered but saw no plant
        return RecognitionResult(
            plant=None,
            diseases=tuple(diseases),
            is_healthy=is_healthy or not diseases,
            confidence=0.0,
            is_plant=is_plant,
        )

    top = suggestions[0]
    details = _as_dict(top.get("details"), "classification.details")
    common_names = details.get("common_names") or []
    if not isinstance(common_names, list):
        raise ValueError("'common_names' is not a list")
    confidence = coerce_probability(top.get("probability"))
    plant = PlantIdentification(
        common_name=str(common_names[0]) if common_names else top.get("name"),
        scientific_name=top.get("name"),
        confidence=confidence,
        reliable=confidence >= reliable_threshold,
    )
    return RecognitionResult(
        plant=plant,
        diseases=tuple(diseases),
        is_healthy=is_healthy or not diseases,
        confidence=confidence,
        is_plant=is_plant,
    )


def _plantid_result(payload: Any) -> Dict[str, Any]:
    return _as_dict(_as_dict(payload, "payload").get("result"), "result")


def plantid_suggestions(payload: Any) -> List[Dict[str, Any]]:
    """Plant suggestions; raises ValueError on a malformed payload."""
    classification = _as_dict(_plantid_result(payload).get("classification"), "classification")
    return _dict_entries(classification.get("suggestions"), "classification.suggestions")


def plantid_disease_suggestions(payload: Any) -> List[Dict[str, Any]]:
    disease = _as_dict(_plantid_result(payload).get("disease"), "disease")
    return _dict_entries(disease.get("suggestions"), "disease.suggestions")


class RecognitionGateway:
    """Identification client for both image and free-text requests"""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        openai_client=None,
        api_key: Optional[str] = PLANTID_API_KEY,
        base_url: str = PLANTID_BASE_URL,
        timeout: float = RECOGNITION_TIMEOUT,
        reliable_threshold: float = RELIABLE_CONFIDENCE_THRESHOLD,
        max_diseases: int = MAX_DISEASE_SUGGESTIONS,
    ):
        self.http_client = http_client
        self.openai_client = openai_client
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.reliable_threshold = reliable_threshold
        self.max_diseases = max_diseases

    async def identify(self, request: AnalysisRequest) -> RecognitionResult:
        if request.image:
            payload = await self.fetch_identification(
                request.image, latitude=request.latitude, longitude=request.longitude
            )
            try:
                return normalize_plantid_payload(payload, self.reliable_threshold, self.max_diseases)
            except (ValueError, TypeError, AttributeError) as e:
                logger.error(f"Plant.id returned an unusable payload: {e}")
                raise RecognitionFailure("Plant identification failed: unusable response")
        return await self.identify_text(request.text)

    # ------------------------------------------------------------------
    # Plant.id (image)
    # ------------------------------------------------------------------

    async def fetch_identification(
        self,
        image: Union[str, bytes],
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Raw Plant.id identification payload (bounded by self.timeout)."""
        if not self.api_key or not self.http_client:
            logger.error("Plant.id API key not configured")
            raise RecognitionFailure("Plant identification service not configured", status_code=503)

        try:
            return await asyncio.wait_for(
                self._call_plantid(image, latitude, longitude),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Plant.id timeout after {self.timeout} seconds")
            raise RecognitionFailure("Plant identification timed out", status_code=504)
        except httpx.TimeoutException as e:
            logger.error(f"Plant.id HTTP timeout: {e}")
            raise RecognitionFailure("Plant identification timed out", status_code=504)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"Plant.id API error: {status} - {e.response.text[:200]}")
            if status == 401:
                raise RecognitionFailure("Invalid Plant.id API key")
            if status == 429:
                raise RecognitionFailure("Plant.id API rate limit exceeded", status_code=503)
            raise RecognitionFailure(f"Plant identification failed: HTTP {status}")
        except httpx.HTTPError as e:
            logger.error(f"Plant.id connection error: {e}")
            raise RecognitionFailure(f"Plant identification failed: {e}")
        except ValueError as e:
            logger.error(f"Plant.id response is not JSON: {e}")
            raise RecognitionFailure("Plant identification failed: malformed response")

    async def _call_plantid(self, image, latitude, longitude) -> Dict[str, Any]:
        data_url = await self.to_data_url(image)
        body: Dict[str, Any] = {
            "images": [data_url],
            "health": "all",
            "similar_images": False,
        }
        if latitude is not None and longitude is not None:
            body["latitude"] = latitude
            body["longitude"] = longitude

        logger.info("🌿 Calling Plant.id API for plant identification...")
        response = await self.http_client.post(
            f"{self.base_url}/identification",
            params={"details": PLANTID_DETAILS},
            json=body,
            headers={"Api-Key": self.api_key, "Content-Type": "application/json"},
        )
        response.raise_for_status()
        logger.info("✅ Plant.id API response received")
        return response.json()

    async def to_data_url(self, image: Union[str, bytes]) -> str:
        """Inline bytes/data URLs as-is, download http(s) images."""
        if isinstance(image, (bytes, bytearray)):
            return "data:image/jpeg;base64," + base64.b64encode(bytes(image)).decode("utf-8")
        if image.startswith("data:image"):
            return image
        if image.startswith("blob:"):
            raise InputError("Blob URLs cannot be processed server-side. Please upload the image first.")

        logger.info(f"📥 Fetching image from URL: {image[:80]}")
        try:
            response = await self.http_client.get(image, timeout=IMAGE_FETCH_TIMEOUT)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to load image from URL: {e}")
            raise RecognitionFailure(f"Failed to load image from URL: {e}")

        content_type = response.headers.get("content-type", "image/jpeg").split(";")[0]
        encoded = base64.b64encode(response.content).decode("utf-8")
        return f"data:{content_type};base64,{encoded}"

    # ------------------------------------------------------------------
    # LLM (free text)
    # ------------------------------------------------------------------

    async def identify_text(self, text: str) -> RecognitionResult:
        if not self.openai_client:
            logger.error("OpenAI API key not configured for text identification")
            raise RecognitionFailure("Text identification service not configured", status_code=503)

        prompt = f"""Người dùng mô tả tình trạng cây trồng như sau:
"{text}"

Hãy xác định loại cây và các bệnh có thể gặp. Trả lời CHỈ bằng JSON (không markdown):
{{
    "plant": {{"commonName": "<tên tiếng Việt>", "scientificName": "<tên khoa học>", "confidence": <0-1>}} hoặc null,
    "isHealthy": <true/false>,
    "diseases": [
        {{"name": "<tên bệnh tiếng Việt>", "confidence": <0-1>, "description": "<mô tả ngắn>"}}
    ]
}}

Quy tắc:
- Tối đa {self.max_diseases} bệnh, sắp xếp theo khả năng giảm dần
- Nếu mô tả không đề cập cây trồng, trả về "plant": null
- Không bịa đặt, giảm confidence khi không chắc chắn"""

        try:
            response = await asyncio.wait_for(
                self.openai_client.chat.completions.create(
                    model=LLM_MODEL_TEXT_IDENTIFICATION,
                    messages=[
                        {"role": "system", "content": "Bạn là chuyên gia bảo vệ thực vật. Chỉ trả lời JSON."},
                        {"role": "user", "content": prompt},
                    ],
                    temperature=0.0,
                    max_completion_tokens=600,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Text identification timeout after {self.timeout} seconds")
            raise RecognitionFailure("Plant identification timed out", status_code=504)
        except Exception as e:
            logger.error(f"Text identification failed: {e}", exc_info=True)
            raise RecognitionFailure(f"Plant identification failed: {e}")

        try:
            raw_text = response.choices[0].message.content or ""
        except (IndexError, AttributeError, TypeError) as e:
            logger.error(f"Text identification returned no choices: {e}")
            raise RecognitionFailure("Plant identification failed: unusable response")

        logger.info(f"Text identification raw response: {raw_text[:200]}...")
        try:
            data = parse_llm_json(raw_text)
            return self._normalize_text_answer(data)
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Failed to parse text identification JSON: {e}")
            raise RecognitionFailure("Plant identification failed: unusable response")

    def _normalize_text_answer(self, data: Dict[str, Any]) -> RecognitionResult:
        if not isinstance(data, dict):
            raise ValueError("text identification answer is not an object")
        plant = None
        raw_plant = data.get("plant")
        if isinstance(raw_plant, dict) and (raw_plant.get("commonName") or raw_plant.get("scientificName")):
            confidence = coerce_probability(raw_plant.get("confidence"))
            plant = PlantIdentification(
                common_name=raw_plant.get("commonName") or raw_plant.get("scientificName"),
                scientific_name=raw_plant.get("scientificName"),
                confidence=confidence,
                reliable=confidence >= self.reliable_threshold,
            )

        diseases = []
        for item in (data.get("diseases") or [])[:self.max_diseases]:
            if not isinstance(item, dict) or not item.get("name"):
                continue
            diseases.append(Disease(
                name=item["name"],
                original_name=item["name"],
                confidence=coerce_probability(item.get("confidence")),
                description=item.get("description") or None,
            ))

        is_healthy = bool(data.get("isHealthy", not diseases)) or not diseases
        return RecognitionResult(
            plant=plant,
            diseases=tuple(diseases),
            is_healthy=is_healthy,
            confidence=plant.confidence if plant else 0.0,
            is_plant=plant is not None,
        )
