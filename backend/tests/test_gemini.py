"""
Tests for the Gemini client, using httpx.MockTransport instead of the network.
"""

import asyncio
import json

import httpx
import pytest

from conftest import model_reply
from pedal_identifier.core import gemini
from pedal_identifier.core.config import settings
from pedal_identifier.core.gemini import (
    GeminiRateLimitError,
    GeminiRequestError,
    _extract_json_best_effort,
    _pick_model_from_list,
    parse_identification,
)


def gemini_body(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


class Recorder:
    """MockTransport handler that answers from a queue and records requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def run_identify(uri, recorder):
    return asyncio.run(gemini.identify(uri, transport=httpx.MockTransport(recorder)))


class TestIdentify:
    def test_success(self, gemini_key, jpeg_data_uri):
        recorder = Recorder(httpx.Response(200, json=gemini_body(json.dumps(model_reply()))))

        result = run_identify(jpeg_data_uri, recorder)

        assert len(result.pedal_identifications) == 3
        assert result.overall_assessment.startswith("A sensible budget board")

        (request,) = recorder.requests
        assert request.url.path.endswith("/models/gemini-2.5-flash:generateContent")
        assert request.url.params["key"] == "test-key"
        payload = json.loads(request.content)
        inline = payload["contents"][0]["parts"][1]["inline_data"]
        assert inline["mime_type"] == "image/jpeg"
        assert jpeg_data_uri.endswith(inline["data"])
        schema = payload["generationConfig"]["response_json_schema"]
        assert schema["properties"]["pedalIdentifications"]["items"]["properties"]["advice"]["enum"] == [
            "Keep",
            "Sell",
            "Buy If Cheap",
            "Consider Selling",
        ]

    def test_unknown_model_falls_back_to_list_models(self, gemini_key, jpeg_data_uri):
        models = {
            "models": [
                {"name": "models/embedding-001", "supportedGenerationMethods": ["embedContent"]},
                {"name": "models/gemini-pro", "supportedGenerationMethods": ["generateContent"]},
                {"name": "models/gemini-2.0-flash", "supportedGenerationMethods": ["generateContent"]},
            ]
        }
        recorder = Recorder(
            httpx.Response(404, json={"error": {"message": "not found"}}),
            httpx.Response(200, json=models),
            httpx.Response(200, json=gemini_body(json.dumps(model_reply()))),
        )

        result = run_identify(jpeg_data_uri, recorder)

        assert len(result.pedal_identifications) == 3
        assert recorder.requests[1].method == "GET"
        assert recorder.requests[2].url.path.endswith("/models/gemini-2.0-flash:generateContent")

    def test_rate_limit_is_not_retried(self, gemini_key, jpeg_data_uri):
        recorder = Recorder(httpx.Response(429, headers={"Retry-After": "7"}, json={"error": "quota"}))

        with pytest.raises(GeminiRateLimitError) as exc_info:
            run_identify(jpeg_data_uri, recorder)

        assert exc_info.value.retry_after_seconds == 7
        assert exc_info.value.status_code == 429
        assert len(recorder.requests) == 1

    def test_upstream_error_redacts_key(self, gemini_key, jpeg_data_uri):
        recorder = Recorder(httpx.Response(500, text="boom for key=test-key"))

        with pytest.raises(GeminiRequestError) as exc_info:
            run_identify(jpeg_data_uri, recorder)

        err = exc_info.value
        assert err.status_code == 500
        assert "test-key" not in err.message
        assert "test-key" not in err.body
        assert "REDACTED" in err.body

    def test_network_error(self, gemini_key, jpeg_data_uri):
        recorder = Recorder(httpx.ConnectError("connection refused"))

        with pytest.raises(GeminiRequestError, match="connection refused"):
            run_identify(jpeg_data_uri, recorder)

    def test_unexpected_shape(self, gemini_key, jpeg_data_uri):
        recorder = Recorder(httpx.Response(200, json={"candidates": []}))

        with pytest.raises(GeminiRequestError, match="Unexpected Gemini response shape"):
            run_identify(jpeg_data_uri, recorder)

    def test_missing_api_key(self, monkeypatch, jpeg_data_uri):
        monkeypatch.setattr(settings, "GEMINI_API_KEY", "")
        recorder = Recorder()

        with pytest.raises(GeminiRequestError, match="GEMINI_API_KEY"):
            run_identify(jpeg_data_uri, recorder)
        assert recorder.requests == []

    def test_prose_around_json_is_tolerated(self, gemini_key, jpeg_data_uri):
        text = "Sure! Here you go:\n" + json.dumps(model_reply()) + "\nEnjoy."
        recorder = Recorder(httpx.Response(200, json=gemini_body(text)))

        result = run_identify(jpeg_data_uri, recorder)

        assert [p.make for p in result.pedal_identifications] == ["Boss", "Electro-Harmonix", ""]


class TestParsing:
    def test_fenced_block(self):
        text = "```json\n" + json.dumps(model_reply()) + "\n```"
        assert len(parse_identification(text).pedal_identifications) == 3

    def test_outer_object_wins_over_inner(self):
        text = 'Result: {"pedalIdentifications": [{"make": "A"}, {"make": "B"}]} done'
        assert [p["make"] for p in _extract_json_best_effort(text)["pedalIdentifications"]] == ["A", "B"]

    def test_garbage_raises(self):
        with pytest.raises(ValueError):
            parse_identification("I could not see any pedals, sorry.")

    def test_v1_reply(self):
        result = parse_identification('{"pedalIdentification": {"make": "Boss", "model": "DS-1"}}')
        assert [p.model for p in result.pedal_identifications] == ["DS-1"]


class TestPickModel:
    def test_prefers_flash(self):
        payload = {
            "models": [
                {"name": "models/gemini-pro", "supportedGenerationMethods": ["generateContent"]},
                {"name": "models/gemini-2.5-flash", "supportedGenerationMethods": ["generateContent"]},
            ]
        }
        assert _pick_model_from_list(payload) == "models/gemini-2.5-flash"

    def test_none_usable(self):
        with pytest.raises(GeminiRequestError):
            _pick_model_from_list({"models": [{"name": "models/x", "supportedGenerationMethods": []}]})
