"""
Shared fixtures. Nothing here talks to the real Gemini API.
"""

import json

import pytest
from fastapi.testclient import TestClient

from pedal_identifier.core import gemini
from pedal_identifier.core.config import settings
from pedal_identifier.core.datauri import encode_data_uri
from pedal_identifier.schemas.identify import IdentificationResult, PedalIdentification

JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"fake-jpeg-body" * 8


def make_pedal(make="Boss", model="DS-1", price=None, **extra):
    return PedalIdentification(make=make, model=model, estimated_used_price=price, **extra)


def model_reply(**overrides):
    """A realistic current-schema reply from the model."""
    reply = {
        "pedalIdentifications": [
            {
                "make": "Boss",
                "model": "DS-1",
                "confidence": 0.92,
                "estimatedUsedPrice": 62.5,
                "advice": "Keep",
                "reasoning": "Cheap, bulletproof, and every board needs one.",
            },
            {
                "make": "Electro-Harmonix",
                "model": "Big Muff Pi",
                "confidence": 0.6,
                "estimatedUsedPrice": 100,
                "advice": "Buy If Cheap",
                "reasoning": "Fuzz wall for days; the market is flooded with them.",
            },
            {
                "make": "",
                "model": "",
                "estimatedUsedPrice": None,
                "advice": "Consider Selling",
                "reasoning": "Unlabeled enclosure, could be a clone.",
            },
        ],
        "overallAssessment": "A sensible budget board. Nothing here will fund your retirement.",
    }
    reply.update(overrides)
    return reply


@pytest.fixture
def jpeg_data_uri():
    return encode_data_uri(JPEG_BYTES, "image/jpeg")


@pytest.fixture
def sample_result():
    return IdentificationResult.model_validate(model_reply())


@pytest.fixture
def gemini_key(monkeypatch):
    monkeypatch.setattr(settings, "GEMINI_API_KEY", "test-key")
    monkeypatch.setattr(settings, "GEMINI_MODEL", "gemini-2.5-flash")
    return "test-key"


@pytest.fixture
def fake_gemini(monkeypatch, gemini_key):
    """
    Replace the outbound call. Set `.reply` to a dict/str, or `.error` to an
    exception instance, before making requests.
    """

    class FakeGemini:
        reply = model_reply()
        error = None
        calls = []

        async def __call__(self, photo_data_uri, **kwargs):
            self.calls.append(photo_data_uri)
            if self.error is not None:
                raise self.error
            if isinstance(self.reply, str):
                return self.reply
            return json.dumps(self.reply)

    fake = FakeGemini()
    fake.calls = []
    monkeypatch.setattr(gemini, "identify_pedals", fake)
    return fake


@pytest.fixture
def api_client(fake_gemini):
    from pedal_identifier.main import create_app

    with TestClient(create_app()) as client:
        yield client
