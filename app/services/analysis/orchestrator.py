"""
Analysis Orchestrator

Main entry point for the plant analysis pipeline:
1. Validation (no external call before this passes)
2. Recognition (hard failure aborts the request)
3. Localization (never fails)
4. Per disease, sequentially: treatments (3 sources in parallel) -> advice
5. Care info for healthy plants
6. Result store write (logged only on failure)

Both endpoint shapes run the same pipeline; only the progress sink differs.

Usage:
    orchestrator = AnalysisOrchestrator(gateway, formatter, aggregator, advisor, care, store)
    result = await orchestrator.analyze(AnalysisRequest(text="Lá cà chua có đốm nâu"))

    channel = ProgressChannel()
    await orchestrator.analyze_streaming(request, channel)
"""

import asyncio
import logging
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from app.config import AnalysisSettings
from app.errors import AnalysisError, InputError, PersistenceFailure
from app.services.analysis import AnalysisRequest, AnalysisResult, Disease, TreatmentKind
from app.services.analysis.advisor import AdvisoryGenerator
from app.services.analysis.care import PlantCareService
from app.services.analysis.localization import LocalizationFormatter
from app.services.analysis.progress import NullProgress, ProgressChannel
from app.services.analysis.recognition import RecognitionGateway
from app.services.analysis.store import AnalysisStore
from app.services.analysis.treatments import TreatmentAggregator, build_additional_info

logger = logging.getLogger(__name__)

MSG_NOT_A_PLANT = "Hình ảnh không phải là cây trồng"

_GROUP_MESSAGES = {
    TreatmentKind.CHEMICAL: "Đã tìm thấy {count} thuốc hóa học",
    TreatmentKind.BIOLOGICAL: "Đã tìm thấy {count} phương pháp sinh học",
    TreatmentKind.CULTURAL: "Đã tìm thấy {count} biện pháp canh tác",
}


class AnalysisOrchestrator:

    def __init__(
        self,
        gateway: RecognitionGateway,
        formatter: LocalizationFormatter,
        aggregator: TreatmentAggregator,
        advisor: AdvisoryGenerator,
        care_service: PlantCareService,
        store: AnalysisStore,
        settings: Optional[AnalysisSettings] = None,
    ):
        self.gateway = gateway
        self.formatter = formatter
        self.aggregator = aggregator
        self.advisor = advisor
        self.care_service = care_service
        self.store = store
        self.settings = settings or AnalysisSettings()

    # =================================================================
    # Output adapters
    # =================================================================

    async def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        """Synchronous shape: raises InputError / RecognitionFailure."""
        return await self._run(request, NullProgress())

    async def analyze_streaming(self, request: AnalysisRequest, channel: ProgressChannel) -> Optional[AnalysisResult]:
        """Streaming shape: every outcome ends in exactly one terminal event."""
        try:
            result = await self._run(request, channel)
        except AnalysisError as e:
            logger.warning(f"❌ Streaming analysis failed: {e.message}")
            channel.fail(e.message, e.status_code)
            return None
        except Exception as e:
            logger.error(f"❌ Streaming analysis error: {e}", exc_info=True)
            channel.fail("Image analysis failed", 500)
            return None

        if not channel.is_open:
            logger.info(f"📴 Client disconnected before completion, analysis_id={result.analysis_id}")
        channel.complete(result.to_dict())
        return result

    # =================================================================
    # Validation
    # =================================================================

    def validate(self, request: AnalysisRequest) -> AnalysisRequest:
        image = request.image
        if isinstance(image, str):
            image = image.strip() or None
        text = request.text.strip() if isinstance(request.text, str) else None

        if not image and not text:
            raise InputError("Either image or text is required")
        if image and text:
            raise InputError("Provide either an image or a text description, not both")

        if text is not None:
            if len(text) < self.settings.text_min_length:
                raise InputError(f"Text query must be at least {self.settings.text_min_length} characters long")
            if len(text) > self.settings.text_max_length:
                raise InputError(f"Text must be {self.settings.text_max_length} characters or less")

        if isinstance(image, str):
            if image.startswith("blob:"):
                raise InputError("Blob URLs cannot be processed server-side. Please upload the image first.")
            if not image.startswith(("http://", "https://", "data:image")):
                raise InputError("Image must be an http(s) URL or a data:image URL")

        if (request.latitude is None) != (request.longitude is None):
            raise InputError("latitude and longitude must be provided together")
        if request.latitude is not None:
            if not -90 <= request.latitude <= 90 or not -180 <= request.longitude <= 180:
                raise InputError("Invalid geolocation")

        return replace(request, image=image, text=text)

    # =================================================================
    # Pipeline
    # =================================================================

    async def _run(self, request: AnalysisRequest, progress) -> AnalysisResult:
        start_time = time.time()

        # Stage 1: Validation
        progress.emit("validation", {"type": "input", "message": "Đang kiểm tra dữ liệu đầu vào..."})
        request = self.validate(request)
        progress.emit("validation", {"type": "validated", "message": "Dữ liệu hợp lệ"})
        if request.image:
            progress.emit("upload", {"type": "complete", "message": "Đã upload hình ảnh"})

        logger.info(
            f"🔬 Starting analysis: source={request.source}, user={request.user_id or 'anonymous'}"
        )

        # Stage 2: Recognition
        progress.emit("plant_id", {"type": "calling", "message": "Đang nhận diện cây trồng..."})
        recognition = await self.gateway.identify(request)
        progress.emit("plant_id", {"type": "processing", "message": "Đang xử lý kết quả nhận diện..."})

        # Stage 3: Localization
        recognition = await self.formatter.localize(recognition)

        plant = recognition.plant
        diseases = list(recognition.diseases)
        is_healthy = recognition.is_healthy or not diseases
        logger.info(
            f"🌿 Recognition: plant={plant.common_name if plant else None}, "
            f"diseases={len(diseases)}, healthy={is_healthy}"
        )

        if recognition.has_plant:
            progress.emit("plant_identified", {
                "plant": plant.to_dict(),
                "message": f"Đã nhận diện: {plant.common_name or 'Cây trồng'}",
            })
        else:
            message = "Không nhận diện được cây trồng" if recognition.is_plant else MSG_NOT_A_PLANT
            progress.emit("plant_id", {"type": "no_plant", "message": message})

        result = AnalysisResult(
            plant=plant,
            is_healthy=is_healthy,
            diseases=diseases,
            analyzed_at=datetime.now(timezone.utc),
            image_url=request.image_url,
            input_text=request.text,
        )

        # Stage 4: Diseases, one at a time
        progress.emit("disease_check", {"type": "checking", "message": "Đang kiểm tra bệnh..."})
        if diseases:
            plant_name = plant.common_name if plant else None
            for index, disease in enumerate(diseases):
                await self._enrich_disease(result, disease, index, len(diseases), plant_name, progress)
        else:
            progress.emit("disease_check", {"type": "healthy", "message": "Không phát hiện bệnh. Cây đang khỏe mạnh!"})

        # Stage 5: Care info (healthy plants only)
        if recognition.has_plant and is_healthy:
            progress.emit("care", {"type": "fetching", "message": "Đang lấy thông tin chăm sóc cây..."})
            result.care = await self.care_service.get_care_info(plant.scientific_name or plant.common_name)
            progress.emit("care", {"type": "complete", "care": result.care, "message": "Đã lấy thông tin chăm sóc"})

        # Stage 6: Persistence
        progress.emit("saving", {"type": "saving", "message": "Đang lưu kết quả phân tích..."})
        saved = await self._persist(result, request)
        progress.emit("saving", {
            "type": "complete" if saved else "failed",
            "message": "Đã lưu kết quả phân tích" if saved else "Không thể lưu kết quả phân tích",
        })

        elapsed_ms = (time.time() - start_time) * 1000
        logger.info(
            f"✅ Analysis complete in {elapsed_ms:.0f}ms: plant={plant.common_name if plant else None}, "
            f"diseases={len(diseases)}, treatments={sum(1 for g in result.treatments.values() if g)}"
        )
        return result

    async def _enrich_disease(
        self,
        result: AnalysisResult,
        disease: Disease,
        index: int,
        total: int,
        plant_name: Optional[str],
        progress,
    ):
        name = disease.name
        progress.emit("disease_found", {
            "disease": disease.to_dict(),
            "index": index,
            "total": total,
            "message": f"Phát hiện bệnh: {name} ({round(disease.confidence * 100)}%)",
        })

        # Treatments: three sources in parallel, each group reported when ready
        progress.emit("treatments", {
            "type": "searching",
            "disease": name,
            "message": f"Đang tìm phương pháp điều trị cho: {name}...",
        })

        def on_group(group):
            count = len(group.items)
            progress.emit(f"treatments_{group.kind.value}", {
                "disease": name,
                "treatments": list(group.items),
                "count": count,
                "message": _GROUP_MESSAGES[group.kind].format(count=count),
            })

        groups = await self.aggregator.aggregate(name, plant_name, on_group=on_group)
        self._record(result.treatments, name, groups)
        self._record(result.additional_info, name, build_additional_info(groups))
        progress.emit("treatments", {
            "type": "complete",
            "disease": name,
            "count": len(groups),
            "message": f"Đã tìm thấy {len(groups)} nhóm phương pháp điều trị",
        })

        # Advice (optional); skipped entirely when no LLM is configured
        if not (self.settings.advisory_enabled and self.advisor.available):
            return
        progress.emit("ai_advice", {
            "type": "generating",
            "disease": name,
            "message": f"Đang tạo lời khuyên AI cho: {name}...",
        })
        advice = await self.advisor.generate(name, disease.confidence, plant_name, groups)
        self._record(result.ai_advice, name, advice)
        if advice is not None:
            progress.emit("ai_advice", {
                "type": "complete",
                "disease": name,
                "advice": advice,
                "message": f"Đã tạo lời khuyên AI cho: {name}",
            })
        else:
            progress.emit("ai_advice", {
                "type": "failed",
                "disease": name,
                "message": f"Không thể tạo lời khuyên AI cho: {name}",
            })

    async def _persist(self, result: AnalysisResult, request: AnalysisRequest) -> bool:
        # shield: a dropped client must not abort a write already in flight
        try:
            result.analysis_id = await asyncio.shield(self.store.save(result, request))
        except PersistenceFailure as e:
            logger.error(f"❌ Failed to save analysis: {e.message}")
            return False
        except Exception as e:
            logger.error(f"❌ Unexpected error saving analysis: {e}", exc_info=True)
            return False
        return True

    @staticmethod
    def _record(mapping: Dict[str, Any], key: str, value: Any):
        """Write-once map entry; a repeated display name keeps its first value."""
        if key in mapping:
            logger.warning(f"Duplicate disease name '{key}', keeping first result")
            return
        mapping[key] = value
