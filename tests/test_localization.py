"""
Tests for the Localization Formatter
Verifies: translate-only-when-needed, idempotence, failures keep vendor names
"""
import asyncio
import sys
import os
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from app.services.analysis import Disease, PlantIdentification, RecognitionResult
from app.services.analysis.localization import LocalizationFormatter

TRANSLATIONS = {
    "Tomato": "Cà chua",
    "Early blight": "Bệnh mốc sương sớm",
    "Leaf mold": "Bệnh mốc lá",
}


def make_completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def translating_client():
    async def create(**kwargs):
        prompt = kwargs["messages"][-1]["content"]
        name = prompt.rsplit(": ", 1)[-1]
        return make_completion(TRANSLATIONS[name])

    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=create)
    return client


def vendor_recognition():
    return RecognitionResult(
        plant=PlantIdentification("Tomato", "Solanum lycopersicum", 0.9, True),
        diseases=(
            Disease("Early blight", "Early blight", 0.7),
            Disease("Leaf mold", "Leaf mold", 0.3),
        ),
        is_healthy=False,
        confidence=0.9,
    )


class TestLocalize:
    def test_names_translated(self):
        formatter = LocalizationFormatter(translating_client())

        result = asyncio.run(formatter.localize(vendor_recognition()))

        assert result.plant.common_name == "Cà chua"
        assert result.plant.scientific_name == "Solanum lycopersicum"
        assert [d.name for d in result.diseases] == ["Bệnh mốc sương sớm", "Bệnh mốc lá"]
        # vendor names survive next to the display names
        assert [d.original_name for d in result.diseases] == ["Early blight", "Leaf mold"]

    def test_second_pass_makes_no_calls(self):
        client = translating_client()
        formatter = LocalizationFormatter(client)

        once = asyncio.run(formatter.localize(vendor_recognition()))
        calls_after_first = client.chat.completions.create.await_count
        twice = asyncio.run(formatter.localize(once))

        assert calls_after_first == 3
        assert client.chat.completions.create.await_count == calls_after_first
        assert twice == once

    def test_localized_names_untouched(self):
        client = translating_client()
        formatter = LocalizationFormatter(client)
        recognition = RecognitionResult(
            plant=PlantIdentification("Lúa", "Oryza sativa", 0.8, True),
            diseases=(Disease("Bệnh đạo ôn", "Bệnh đạo ôn", 0.6),),
            is_healthy=False,
        )

        result = asyncio.run(formatter.localize(recognition))

        assert result == recognition
        client.chat.completions.create.assert_not_awaited()

    def test_failure_keeps_vendor_name(self):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(side_effect=RuntimeError("LLM down"))
        formatter = LocalizationFormatter(client)

        result = asyncio.run(formatter.localize(vendor_recognition()))

        assert result.plant.common_name == "Tomato"
        assert [d.name for d in result.diseases] == ["Early blight", "Leaf mold"]

    def test_timeout_keeps_vendor_name(self):
        async def slow(**kwargs):
            await asyncio.sleep(1)

        client = MagicMock()
        client.chat.completions.create = AsyncMock(side_effect=slow)
        formatter = LocalizationFormatter(client, timeout=0.01)

        assert asyncio.run(formatter.translate_name("Tomato", "plant")) == "Tomato"

    def test_empty_translation_keeps_vendor_name(self):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=make_completion("   "))
        formatter = LocalizationFormatter(client)

        assert asyncio.run(formatter.translate_name("Tomato", "plant")) == "Tomato"

    def test_without_llm(self):
        formatter = LocalizationFormatter(None)

        result = asyncio.run(formatter.localize(vendor_recognition()))

        assert result == vendor_recognition()

    def test_no_plant(self):
        formatter = LocalizationFormatter(translating_client())
        recognition = RecognitionResult(plant=None)

        result = asyncio.run(formatter.localize(recognition))

        assert result.plant is None
        assert result.diseases == ()

    def test_custom_predicate(self):
        client = translating_client()
        formatter = LocalizationFormatter(client, needs_translation=lambda name: False)

        result = asyncio.run(formatter.localize(vendor_recognition()))

        assert result.plant.common_name == "Tomato"
        client.chat.completions.create.assert_not_awaited()
