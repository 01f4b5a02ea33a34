"""
Plant analysis pipeline

Stages (leaves first):
1. RecognitionGateway - Plant.id (image) or LLM (free text) identification
2. LocalizationFormatter - Vietnamese display names, translate only when needed
3. TreatmentAggregator - chemical / biological / cultural lookups in parallel
4. AdvisoryGenerator - optional LLM advice per disease
5. ProgressChannel - ordered SSE events for the streaming endpoint
6. AnalysisOrchestrator - drives 1-5, care lookup and the result store
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class TreatmentKind(str, Enum):
    """Treatment recommendation groups"""
    CHEMICAL = "chemical"        # Thuốc hóa học
    BIOLOGICAL = "biological"    # Phương pháp sinh học
    CULTURAL = "cultural"        # Biện pháp canh tác


TREATMENT_TITLES = {
    TreatmentKind.CHEMICAL: "Thuốc Hóa học",
    TreatmentKind.BIOLOGICAL: "Phương pháp Sinh học",
    TreatmentKind.CULTURAL: "Biện Pháp Canh tác",
}


@dataclass(frozen=True)
class AnalysisRequest:
    """One analysis call. Exactly one of image/text is expected."""
    image: Optional[Union[str, bytes]] = None  # http(s) URL, data URL or raw bytes
    text: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    user_id: Optional[str] = None  # None = anonymous

    @property
    def source(self) -> str:
        return "plantid" if self.image else "text"

    @property
    def image_url(self) -> Optional[str]:
        """Image reference worth echoing back (inline images are not)"""
        if isinstance(self.image, str) and self.image.startswith(("http://", "https://")):
            return self.image
        return None


@dataclass(frozen=True)
class PlantIdentification:
    common_name: Optional[str]
    scientific_name: Optional[str]
    confidence: float
    reliable: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "commonName": self.common_name,
            "scientificName": self.scientific_name,
            "confidence": self.confidence,
            "reliable": self.reliable,
        }


@dataclass(frozen=True)
class Disease:
    name: str  # display (localized) name
    original_name: str  # vendor name
    confidence: float
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "originalName": self.original_name,
            "confidence": self.confidence,
            "description": self.description,
        }


@dataclass(frozen=True)
class RecognitionResult:
    """Canonical identification output, vendor independent"""
    plant: Optional[PlantIdentification]
    diseases: Tuple[Disease, ...] = ()
    is_healthy: bool = True
    confidence: float = 0.0
    is_plant: bool = True

    @property
    def has_plant(self) -> bool:
        return self.plant is not None


@dataclass(frozen=True)
class TreatmentGroup:
    kind: TreatmentKind
    title: str
    items: Tuple[Dict[str, Any], ...]

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "title": self.title, "items": list(self.items)}


@dataclass
class AnalysisResult:
    """Unit returned to the caller and written to the result store"""
    plant: Optional[PlantIdentification]
    is_healthy: bool
    diseases: List[Disease]
    analyzed_at: datetime
    treatments: Dict[str, List[TreatmentGroup]] = field(default_factory=dict)
    additional_info: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    ai_advice: Dict[str, Optional[str]] = field(default_factory=dict)
    care: Optional[Dict[str, Any]] = None
    image_url: Optional[str] = None
    input_text: Optional[str] = None
    analysis_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "plant": self.plant.to_dict() if self.plant else None,
            "isHealthy": self.is_healthy,
            "diseases": [d.to_dict() for d in self.diseases],
            "treatments": {
                name: [g.to_dict() for g in groups]
                for name, groups in self.treatments.items()
            },
            "additionalInfo": self.additional_info,
            "aiAdvice": self.ai_advice,
            "care": self.care,
            "analyzedAt": self.analyzed_at.isoformat(),
            "imageUrl": self.image_url,
            "inputText": self.input_text,
        }
        if self.analysis_id:
            data["analysisId"] = self.analysis_id
        return data


# Export all components
__all__ = [
    "TreatmentKind",
    "TREATMENT_TITLES",
    "AnalysisRequest",
    "PlantIdentification",
    "Disease",
    "RecognitionResult",
    "TreatmentGroup",
    "AnalysisResult",
]
