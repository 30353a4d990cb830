import logging

from fastapi import APIRouter, File, HTTPException, UploadFile

from pedal_identifier.core import gemini
from pedal_identifier.core.aggregator import summarize
from pedal_identifier.core.datauri import DataUriError, data_uri_from_upload, parse_data_uri
from pedal_identifier.core.gemini import GeminiRateLimitError, GeminiRequestError
from pedal_identifier.schemas.identify import IdentifyRequest, IdentifyResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["identify"])


async def _identify_data_uri(photo_data_uri: str) -> IdentifyResponse:
    raw_text = ""

    try:
        parse_data_uri(photo_data_uri)
        raw_text = await gemini.identify_pedals(photo_data_uri)
        result = gemini.parse_identification(raw_text)
        return IdentifyResponse(result=result, summary=summarize(result), raw_model_output=raw_text)

    except DataUriError as e:
        raise HTTPException(status_code=400, detail={"error": "invalid_image", "message": str(e)})

    except GeminiRateLimitError as e:
        logger.warning("Gemini rate limited (retry_after=%s)", e.retry_after_seconds)
        detail = {
            "error": "rate_limited",
            "message": e.message,
            "retry_after_seconds": e.retry_after_seconds,
        }
        headers = {}
        if e.retry_after_seconds is not None:
            headers["Retry-After"] = str(e.retry_after_seconds)
        raise HTTPException(status_code=429, detail=detail, headers=headers)

    except GeminiRequestError as e:
        logger.error("Gemini request failed: %s", e.message)
        raise HTTPException(
            status_code=502,
            detail={
                "error": "gemini_error",
                "message": e.message,
                "status_code": e.status_code,
                "body": e.body,
            },
        )

    except Exception as e:
        # Malformed model output and anything unexpected: no partial result
        logger.exception("Identification failed")
        raise HTTPException(
            status_code=502,
            detail={"error": "identification_failed", "message": str(e), "raw_model_output": raw_text},
        )


@router.post("/identify", response_model=IdentifyResponse)
async def identify(body: IdentifyRequest):
    return await _identify_data_uri(body.photo_data_uri)


@router.post("/identify/upload", response_model=IdentifyResponse)
async def identify_upload(image: UploadFile = File(...)):
    img_bytes = await image.read()
    try:
        photo_data_uri = data_uri_from_upload(image.filename, image.content_type, img_bytes)
    except DataUriError as e:
        raise HTTPException(status_code=400, detail={"error": "invalid_image", "message": str(e)})
    return await _identify_data_uri(photo_data_uri)
