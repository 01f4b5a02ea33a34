"""
Localization Formatter

Normalizes plant/disease names from the recognition vendor to the Vietnamese
display locale. Names already localized are left alone (see
``needs_vietnamese_translation``); the rest go through the LLM. A failed
translation keeps the vendor name.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Callable

from app.config import LLM_MODEL_TRANSLATION, TRANSLATION_TIMEOUT
from app.services.analysis import RecognitionResult
from app.utils.text_processing import clean_generated_text, needs_vietnamese_translation

logger = logging.getLogger(__name__)

_KIND_HINTS = {
    "plant": "tên cây trồng",
    "disease": "tên bệnh cây",
}


class LocalizationFormatter:

    def __init__(
        self,
        openai_client=None,
        needs_translation: Callable[[str], bool] = needs_vietnamese_translation,
        timeout: float = TRANSLATION_TIMEOUT,
        model: str = LLM_MODEL_TRANSLATION,
    ):
        self.openai_client = openai_client
        self.needs_translation = needs_translation
        self.timeout = timeout
        self.model = model

    async def localize(self, recognition: RecognitionResult) -> RecognitionResult:
        """Same shape back, display names localized. Never raises for translation."""
        plant_task = None
        if recognition.plant and recognition.plant.common_name:
            plant_task = self.translate_name(recognition.plant.common_name, "plant")

        disease_tasks = [self.translate_name(d.name, "disease") for d in recognition.diseases]
        tasks = ([plant_task] if plant_task else []) + disease_tasks
        translated = await asyncio.gather(*tasks) if tasks else []

        plant = recognition.plant
        if plant_task:
            plant = replace(plant, common_name=translated[0])
            translated = translated[1:]

        diseases = tuple(
            replace(disease, name=name)
            for disease, name in zip(recognition.diseases, translated)
        )
        return replace(recognition, plant=plant, diseases=diseases)

    async def translate_name(self, name: str, kind: str) -> str:
        if not self.needs_translation(name):
            return name
        if not self.openai_client:
            logger.warning(f"⚠️ Translation unavailable, keeping {kind} name '{name}'")
            return name

        try:
            translated = await asyncio.wait_for(self._translate(name, kind), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"⚠️ Translation timeout for {kind} '{name}', keeping original")
            return name
        except Exception as e:
            logger.warning(f"⚠️ Failed to translate {kind} '{name}': {e}")
            return name

        if not translated:
            logger.warning(f"⚠️ Empty translation for {kind} '{name}', keeping original")
            return name
        logger.info(f"🌐 Translated {kind}: '{name}' → '{translated}'")
        return translated

    async def _translate(self, name: str, kind: str) -> str:
        hint = _KIND_HINTS.get(kind, "tên")
        response = await self.openai_client.chat.completions.create(
            model=self.model,
            messages=[
                {
                    "role": "system",
                    "content": "Bạn là chuyên gia nông nghiệp. Dịch sang tiếng Việt, chỉ trả về tên, không giải thích.",
                },
                {"role": "user", "content": f"Dịch {hint} sau sang tiếng Việt thông dụng: {name}"},
            ],
            temperature=0.0,
            max_completion_tokens=60,
        )
        text = clean_generated_text(response.choices[0].message.content)
        return text.strip().strip('"').strip("'").rstrip(".")
