import json
import logging
import re
from typing import Any, Dict, Optional

import httpx

from pedal_identifier.core.config import settings
from pedal_identifier.core.datauri import parse_data_uri
from pedal_identifier.schemas.identify import Advice, IdentificationResult

logger = logging.getLogger(__name__)

# Service endpoint for Gemini API (v1beta)
API_BASE = "https://generativelanguage.googleapis.com/v1beta"

PROMPT = (
    "You are a seasoned guitar-shop owner who has bought and sold effects pedals for decades. "
    "You are blunt, a little sardonic, and you know the used market cold.\n"
    "\n"
    "You will be given a photo that may contain one or more guitar effects pedals. For EVERY pedal you can see:\n"
    "- identify the make (manufacturer) and model\n"
    "- give a confidence between 0 and 1 (omit it if you are guessing)\n"
    "- estimate the current used price in USD as a number, or null if you honestly cannot\n"
    "- give advice: exactly one of " + ", ".join(f'"{a.value}"' for a in Advice) + "\n"
    "- explain your reasoning in one or two sentences; each pedal gets its own reasoning, never repeat yourself\n"
    "\n"
    "Then write overallAssessment: a short verdict on the whole board, in your own voice.\n"
    "If there are no pedals in the photo, return an empty pedalIdentifications list.\n"
    "\n"
    "Return ONLY valid JSON matching the provided schema.\n"
    "No markdown. No code fences. No extra text.\n"
)


class GeminiRequestError(Exception):
    """Upstream, configuration or response-shape failure talking to Gemini."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body


class GeminiRateLimitError(GeminiRequestError):
    """Gemini answered 429. Not retried here; the caller decides."""

    def __init__(self, message: str, retry_after_seconds: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message, status_code=429, body=body)
        self.retry_after_seconds = retry_after_seconds


def _redact_key(s: str) -> str:
    """
    Redact 'key=...' in URLs or text so we never leak API keys in logs/responses.
    """
    if not s:
        return s
    # Replace key=XXXXX (until & or whitespace)
    return re.sub(r"(key=)([^&\s\"']+)", r"\1REDACTED", s)


def _identification_schema() -> Dict[str, Any]:
    """
    JSON Schema for IdentificationResult (current schema version).
    Used by Gemini Structured Output.
    """
    pedal = {
        "type": "object",
        "properties": {
            "make": {"type": "string"},
            "model": {"type": "string"},
            "confidence": {"type": "number"},
            "estimatedUsedPrice": {"type": ["number", "null"]},
            "advice": {"type": "string", "enum": [a.value for a in Advice]},
            "reasoning": {"type": "string"},
        },
        "required": ["make", "model", "estimatedUsedPrice", "advice", "reasoning"],
        "additionalProperties": False,
    }

    return {
        "type": "object",
        "properties": {
            "pedalIdentifications": {"type": "array", "items": pedal},
            "overallAssessment": {"type": "string"},
        },
        "required": ["pedalIdentifications"],
        "additionalProperties": False,
    }


def _extract_json_best_effort(text: str) -> Dict[str, Any]:
    """
    Robust JSON extraction (handles fenced blocks, extra text, etc.).
    Returns the first valid JSON object found.
    """
    # 1) Prefer fenced ```json ... ```
    fenced = re.search(r"```(?:json)?\s*(\{.*\})\s*```", text, re.DOTALL | re.IGNORECASE)
    if fenced:
        try:
            return json.loads(fenced.group(1).strip())
        except json.JSONDecodeError:
            pass

    # 2) Greedy: outermost braces
    m = re.search(r"\{.*\}", text, re.DOTALL)
    if not m:
        raise ValueError("No JSON object found in model output")
    try:
        return json.loads(m.group(0))
    except json.JSONDecodeError:
        pass

    # 3) First object that decodes from any opening brace
    decoder = json.JSONDecoder()
    for start in (i for i, ch in enumerate(text) if ch == "{"):
        try:
            obj, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            return obj

    raise ValueError("No valid JSON object found in model output")


def _retry_after_seconds(resp: httpx.Response) -> Optional[int]:
    retry_after = resp.headers.get("retry-after")
    if not retry_after:
        return None
    try:
        return max(0, int(float(retry_after)))
    except ValueError:
        return None


def _normalize_model_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        return ""
    return name if name.startswith("models/") else f"models/{name}"


def _raise_for_status(resp: httpx.Response, what: str) -> None:
    if resp.status_code < 400:
        return

    safe_url = _redact_key(str(resp.request.url))
    safe_body = _redact_key(resp.text)[:2000]

    if resp.status_code == 429:
        raise GeminiRateLimitError(
            f"{what} rate limited by Gemini",
            retry_after_seconds=_retry_after_seconds(resp),
            body=safe_body,
        )

    raise GeminiRequestError(
        f"{what} failed: {resp.status_code}\nURL:\n{safe_url}",
        status_code=resp.status_code,
        body=safe_body,
    )


async def _list_models(client: httpx.AsyncClient, api_key: str) -> Dict[str, Any]:
    """
    Calls GET /v1beta/models (ListModels).
    """
    r = await client.get(f"{API_BASE}/models", params={"key": api_key})
    _raise_for_status(r, "Gemini ListModels")
    return r.json()


def _pick_model_from_list(models_payload: Dict[str, Any]) -> str:
    """
    Picks a model name (e.g. 'models/xxx') that supports generateContent.
    Preference:
      1) Flash models (contains 'flash')
      2) Any model that supports generateContent
    """
    models = models_payload.get("models", []) or []

    def supports_generate(m: Dict[str, Any]) -> bool:
        methods = m.get("supportedGenerationMethods") or []
        return any(str(x).lower() == "generatecontent" for x in methods)

    candidates = [m for m in models if supports_generate(m)]
    if not candidates:
        raise GeminiRequestError("No models found that support generateContent (ListModels returned none)")

    flash = [m for m in candidates if "flash" in (m.get("name", "").lower())]
    chosen = (flash[0] if flash else candidates[0]).get("name")
    if not chosen:
        raise GeminiRequestError("ListModels returned a model entry without a name")
    return chosen  # e.g. "models/gemini-2.5-flash"


def _build_payload(photo_data_uri: str) -> Dict[str, Any]:
    photo = parse_data_uri(photo_data_uri)
    return {
        "contents": [
            {
                "role": "user",
                "parts": [
                    {"text": PROMPT},
                    {
                        "inline_data": {
                            "mime_type": photo.mime_type,
                            "data": photo.base64,
                        }
                    },
                ],
            }
        ],
        "generationConfig": {
            "response_mime_type": "application/json",
            "response_json_schema": _identification_schema(),
            "temperature": settings.GEMINI_TEMPERATURE,
        },
    }


def _response_text(data: Dict[str, Any]) -> str:
    try:
        return data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        raise GeminiRequestError(f"Unexpected Gemini response shape; raw={json.dumps(data)[:2000]}")


async def identify_pedals(
    photo_data_uri: str,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """
    Sends the photo to Gemini and returns a CLEAN JSON STRING.

    - Uses Structured Output (response_mime_type + response_json_schema)
    - Falls back to ListModels if the configured model answers 404
    - 429 raises GeminiRateLimitError (no automatic retry)
    - Redacts API key from any raised errors
    """
    api_key = (settings.GEMINI_API_KEY or "").strip()
    if not api_key:
        raise GeminiRequestError("GEMINI_API_KEY is not set")

    payload = _build_payload(photo_data_uri)
    model_name = _normalize_model_name(settings.GEMINI_MODEL)

    async with httpx.AsyncClient(timeout=settings.GEMINI_TIMEOUT_SECONDS, transport=transport) as client:
        if not model_name:
            model_name = _pick_model_from_list(await _list_models(client, api_key))

        logger.info("Identifying pedals with %s", model_name)
        try:
            r = await client.post(f"{API_BASE}/{model_name}:generateContent", params={"key": api_key}, json=payload)

            # Configured model unknown to this key: pick one from ListModels and try once more
            if r.status_code == 404:
                fallback = _pick_model_from_list(await _list_models(client, api_key))
                logger.warning("Model %s not found, falling back to %s", model_name, fallback)
                model_name = fallback
                r = await client.post(f"{API_BASE}/{model_name}:generateContent", params={"key": api_key}, json=payload)
        except httpx.HTTPError as e:
            raise GeminiRequestError(f"Gemini request failed: {_redact_key(str(e)) or type(e).__name__}")

        _raise_for_status(r, "Gemini request")
        data = r.json()

    text = _response_text(data)

    # 1) Strict JSON parse first
    try:
        obj = json.loads(text)
    except json.JSONDecodeError:
        # 2) Best-effort extraction
        obj = _extract_json_best_effort(text)

    return json.dumps(obj, ensure_ascii=False)


def parse_identification(raw_text: str) -> IdentificationResult:
    """
    Model text -> IdentificationResult.
    Older single-pedal replies are migrated by the schema itself.
    """
    try:
        obj = json.loads(raw_text)
    except json.JSONDecodeError:
        obj = _extract_json_best_effort(raw_text)

    if not isinstance(obj, dict):
        raise ValueError("Model output is not a JSON object")

    return IdentificationResult.model_validate(obj)


async def identify(
    photo_data_uri: str,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> IdentificationResult:
    """Call + parse. Any failure raises; there is never a partial result."""
    raw_text = await identify_pedals(photo_data_uri, transport=transport)
    result = parse_identification(raw_text)
    logger.info("Gemini identified %d pedal(s)", len(result.pedal_identifications))
    return result
