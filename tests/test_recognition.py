"""
Tests for the Recognition Gateway
Verifies: Plant.id payload normalization, vendor failure mapping, text identification
"""
import asyncio
import pytest
import sys
import os
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from app.errors import InputError, RecognitionFailure
from app.services.analysis import AnalysisRequest
from app.services.analysis.recognition import RecognitionGateway, coerce_probability, normalize_plantid_payload

PLANTID_URL = "https://plant.id/api/v3/identification"
DATA_URL = "data:image/jpeg;base64,/9j/4AAQSkZJRg=="


def plantid_payload(diseases=None, is_healthy=None, suggestions=None):
    if suggestions is None:
        suggestions = [
            {
                "name": "Solanum lycopersicum",
                "probability": 0.92,
                "details": {"common_names": ["Tomato", "Garden tomato"]},
            },
            {"name": "Solanum melongena", "probability": 0.04},
        ]
    result = {
        "is_plant": {"binary": True, "probability": 0.99},
        "classification": {"suggestions": suggestions},
        "disease": {"suggestions": diseases or []},
    }
    if is_healthy is not None:
        result["is_healthy"] = {"binary": is_healthy, "probability": 0.5}
    return {"access_token": "abc", "result": result}


def make_response(status_code, json_body=None, text=None):
    request = httpx.Request("POST", PLANTID_URL)
    if json_body is not None:
        return httpx.Response(status_code, json=json_body, request=request)
    return httpx.Response(status_code, text=text or "", request=request)


def make_gateway(post=None, openai_client=None, timeout=5):
    http_client = MagicMock()
    http_client.post = post or AsyncMock(return_value=make_response(200, plantid_payload()))
    return RecognitionGateway(
        http_client=http_client,
        openai_client=openai_client,
        api_key="test-key",
        base_url="https://plant.id/api/v3",
        timeout=timeout,
    )


def make_completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


# =============================================================================
# Payload normalization
# =============================================================================
class TestNormalizePlantIdPayload:
    def test_top_suggestion_becomes_plant(self):
        result = normalize_plantid_payload(plantid_payload(is_healthy=True))
        assert result.plant.common_name == "Tomato"
        assert result.plant.scientific_name == "Solanum lycopersicum"
        assert result.plant.confidence == pytest.approx(0.92)
        assert result.plant.reliable is True
        assert result.is_healthy is True
        assert result.diseases == ()

    def test_diseases_keep_vendor_order(self):
        diseases = [
            {"name": "Early blight", "probability": 0.7},
            {"name": "Leaf mold", "probability": 0.2},
            {"name": "Septoria leaf spot", "probability": 0.5},
        ]
        result = normalize_plantid_payload(plantid_payload(diseases=diseases, is_healthy=False))
        assert [d.name for d in result.diseases] == ["Early blight", "Leaf mold", "Septoria leaf spot"]
        assert [d.original_name for d in result.diseases] == ["Early blight", "Leaf mold", "Septoria leaf spot"]
        assert result.is_healthy is False

    def test_disease_cap(self):
        diseases = [{"name": f"Disease {i}", "probability": 0.5} for i in range(6)]
        result = normalize_plantid_payload(plantid_payload(diseases=diseases, is_healthy=False), max_diseases=3)
        assert len(result.diseases) == 3

    def test_healthy_plant_drops_disease_suggestions(self):
        diseases = [{"name": "Early blight", "probability": 0.05}]
        result = normalize_plantid_payload(plantid_payload(diseases=diseases, is_healthy=True))
        assert result.diseases == ()

    def test_no_suggestions_is_a_valid_result(self):
        result = normalize_plantid_payload(plantid_payload(suggestions=[]))
        assert result.plant is None
        assert result.has_plant is False

    def test_low_confidence_is_not_reliable(self):
        suggestions = [{"name": "Oryza sativa", "probability": 0.31}]
        result = normalize_plantid_payload(plantid_payload(suggestions=suggestions))
        assert result.plant.reliable is False
        # no common name: fall back to the scientific name
        assert result.plant.common_name == "Oryza sativa"

    def test_missing_result_raises(self):
        with pytest.raises(ValueError):
            normalize_plantid_payload({"status": "ok"})

    @pytest.mark.parametrize("result", [
        {"classification": {"suggestions": [None]}},
        {"classification": {"suggestions": "Solanum"}},
        {"is_plant": True, "classification": {"suggestions": []}},
        {"is_healthy": {"binary": False}, "disease": {"suggestions": ["x"]}},
        {"is_healthy": "no"},
    ])
    def test_malformed_entries_raise_value_error(self, result):
        with pytest.raises(ValueError):
            normalize_plantid_payload({"result": result})

    def test_percentage_confidence(self):
        suggestions = [{"name": "Oryza sativa", "probability": 85}]
        result = normalize_plantid_payload(plantid_payload(suggestions=suggestions))
        assert result.plant.confidence == pytest.approx(0.85)


class TestCoerceProbability:
    def test_fraction_kept(self):
        assert coerce_probability(0.42) == pytest.approx(0.42)

    def test_rounding_noise_is_clamped_not_rescaled(self):
        assert coerce_probability(1.0000001) == 1.0
        assert coerce_probability(1.4) == 1.0

    def test_percentage_rescaled(self):
        assert coerce_probability(85) == pytest.approx(0.85)
        assert coerce_probability("92") == pytest.approx(0.92)

    def test_unusable_values(self):
        assert coerce_probability(None) == 0.0
        assert coerce_probability("n/a") == 0.0
        assert coerce_probability(-0.3) == 0.0


# =============================================================================
# Plant.id calls
# =============================================================================
class TestImageIdentification:
    def test_successful_call(self):
        post = AsyncMock(return_value=make_response(200, plantid_payload(is_healthy=True)))
        gateway = make_gateway(post=post)

        result = asyncio.run(gateway.identify(AnalysisRequest(image=DATA_URL, latitude=10.8, longitude=106.6)))

        assert result.plant.common_name == "Tomato"
        kwargs = post.await_args.kwargs
        assert kwargs["headers"]["Api-Key"] == "test-key"
        assert kwargs["params"] == {"details": "common_names,description,treatment"}
        assert kwargs["json"]["images"] == [DATA_URL]
        assert kwargs["json"]["health"] == "all"
        assert kwargs["json"]["latitude"] == 10.8

    def test_raw_bytes_are_inlined(self):
        post = AsyncMock(return_value=make_response(200, plantid_payload()))
        gateway = make_gateway(post=post)

        asyncio.run(gateway.identify(AnalysisRequest(image=b"\xff\xd8\xff")))

        assert post.await_args.kwargs["json"]["images"][0].startswith("data:image/jpeg;base64,")

    def test_http_timeout_is_504(self):
        post = AsyncMock(side_effect=httpx.ReadTimeout("read timed out"))
        gateway = make_gateway(post=post)

        with pytest.raises(RecognitionFailure) as exc_info:
            asyncio.run(gateway.identify(AnalysisRequest(image=DATA_URL)))
        assert exc_info.value.status_code == 504

    def test_overall_timeout_is_504(self):
        async def slow_post(*args, **kwargs):
            await asyncio.sleep(1)

        gateway = make_gateway(post=AsyncMock(side_effect=slow_post), timeout=0.01)

        with pytest.raises(RecognitionFailure) as exc_info:
            asyncio.run(gateway.identify(AnalysisRequest(image=DATA_URL)))
        assert exc_info.value.status_code == 504

    def test_invalid_key(self):
        gateway = make_gateway(post=AsyncMock(return_value=make_response(401, text="unauthorized")))

        with pytest.raises(RecognitionFailure) as exc_info:
            asyncio.run(gateway.identify(AnalysisRequest(image=DATA_URL)))
        assert "API key" in exc_info.value.message

    def test_rate_limited_is_503(self):
        gateway = make_gateway(post=AsyncMock(return_value=make_response(429, text="slow down")))

        with pytest.raises(RecognitionFailure) as exc_info:
            asyncio.run(gateway.identify(AnalysisRequest(image=DATA_URL)))
        assert exc_info.value.status_code == 503

    def test_unusable_payload(self):
        gateway = make_gateway(post=AsyncMock(return_value=make_response(200, {"unexpected": True})))

        with pytest.raises(RecognitionFailure):
            asyncio.run(gateway.identify(AnalysisRequest(image=DATA_URL)))

    @pytest.mark.parametrize("body", [
        {"result": {"classification": {"suggestions": [None]}}},
        {"result": {"is_plant": True, "classification": {"suggestions": []}}},
        {"result": {"is_healthy": {"binary": False}, "disease": {"suggestions": ["x"]}}},
    ])
    def test_malformed_payload_is_recognition_failure(self, body):
        gateway = make_gateway(post=AsyncMock(return_value=make_response(200, body)))

        with pytest.raises(RecognitionFailure) as exc_info:
            asyncio.run(gateway.identify(AnalysisRequest(image=DATA_URL)))
        assert exc_info.value.message == "Plant identification failed: unusable response"
        assert exc_info.value.status_code == 502

    def test_missing_api_key(self):
        gateway = make_gateway()
        gateway.api_key = None

        with pytest.raises(RecognitionFailure) as exc_info:
            asyncio.run(gateway.identify(AnalysisRequest(image=DATA_URL)))
        assert exc_info.value.status_code == 503
        gateway.http_client.post.assert_not_awaited()

    def test_blob_url_rejected(self):
        gateway = make_gateway()

        with pytest.raises(InputError):
            asyncio.run(gateway.identify(AnalysisRequest(image="blob:https://example.com/1234")))
        gateway.http_client.post.assert_not_awaited()


# =============================================================================
# Free-text identification
# =============================================================================
class TestTextIdentification:
    def _openai(self, content=None, error=None):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(
            return_value=make_completion(content),
            side_effect=error,
        )
        return client

    def test_text_answer_normalized(self):
        content = """```json
{"plant": {"commonName": "Cà chua", "scientificName": "Solanum lycopersicum", "confidence": 85},
 "isHealthy": false,
 "diseases": [{"name": "Bệnh đốm lá", "confidence": 0.7, "description": "Đốm nâu trên lá"}]}
```"""
        gateway = make_gateway(openai_client=self._openai(content))

        result = asyncio.run(gateway.identify(AnalysisRequest(text="Lá cà chua có đốm nâu")))

        assert result.plant.common_name == "Cà chua"
        assert result.plant.confidence == pytest.approx(0.85)
        assert [d.name for d in result.diseases] == ["Bệnh đốm lá"]
        assert result.is_healthy is False
        gateway.http_client.post.assert_not_awaited()

    def test_no_plant_in_text(self):
        gateway = make_gateway(openai_client=self._openai('{"plant": null, "isHealthy": true, "diseases": []}'))

        result = asyncio.run(gateway.identify(AnalysisRequest(text="hôm nay trời đẹp")))

        assert result.plant is None
        assert result.is_healthy is True

    def test_unparseable_answer(self):
        gateway = make_gateway(openai_client=self._openai("Xin lỗi, tôi không biết."))

        with pytest.raises(RecognitionFailure):
            asyncio.run(gateway.identify(AnalysisRequest(text="Lá vàng")))

    def test_llm_error(self):
        gateway = make_gateway(openai_client=self._openai(error=RuntimeError("connection reset")))

        with pytest.raises(RecognitionFailure):
            asyncio.run(gateway.identify(AnalysisRequest(text="Lá vàng")))

    def test_no_llm_configured(self):
        gateway = make_gateway(openai_client=None)

        with pytest.raises(RecognitionFailure) as exc_info:
            asyncio.run(gateway.identify(AnalysisRequest(text="Lá vàng")))
        assert exc_info.value.status_code == 503

    def test_empty_choices(self):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(choices=[]))
        gateway = make_gateway(openai_client=client)

        with pytest.raises(RecognitionFailure) as exc_info:
            asyncio.run(gateway.identify(AnalysisRequest(text="Lá vàng")))
        assert exc_info.value.message == "Plant identification failed: unusable response"

    def test_malformed_disease_list(self):
        gateway = make_gateway(openai_client=self._openai('{"plant": null, "isHealthy": false, "diseases": 7}'))

        with pytest.raises(RecognitionFailure):
            asyncio.run(gateway.identify(AnalysisRequest(text="Lá vàng")))
