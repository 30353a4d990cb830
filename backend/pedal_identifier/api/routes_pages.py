import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, File, Form, Request, UploadFile
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from pedal_identifier.core import display, gemini
from pedal_identifier.core.aggregator import PALETTE_SIZE, format_price
from pedal_identifier.core.datauri import DataUriError, data_uri_from_upload
from pedal_identifier.core.session import IdentifySession, InputMode

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
templates.env.filters["price"] = format_price
templates.env.filters["confidence_label"] = display.confidence_label
templates.env.filters["confidence_percent"] = display.confidence_percent
templates.env.filters["confidence_tone"] = display.confidence_tone
templates.env.filters["advice_tone"] = display.advice_tone
templates.env.filters["advice_label"] = display.advice_label
templates.env.globals["palette_size"] = PALETTE_SIZE

router = APIRouter(tags=["pages"])


def _mode(value: Optional[str]) -> InputMode:
    try:
        return InputMode((value or "").strip().lower())
    except ValueError:
        return InputMode.CAMERA


@router.get("/", response_class=HTMLResponse)
async def index(request: Request):
    return templates.TemplateResponse(request, "index.html", {"mode": InputMode.CAMERA.value, "notices": []})


@router.post("/identify", response_class=HTMLResponse)
async def identify_page(
    request: Request,
    mode: Optional[str] = Form(None),
    photo_data_uri: Optional[str] = Form(None),
    photo: Optional[UploadFile] = File(None),
):
    """
    Form target for both tabs: the upload tab posts `photo`, the camera tab
    posts the captured frame as `photo_data_uri`.
    """
    input_mode = _mode(mode)
    # Camera frames were captured in the browser; the server never holds a device
    session = IdentifySession(camera=None, mode=input_mode)

    data_uri = (photo_data_uri or "").strip() or None
    if photo is not None:
        img_bytes = await photo.read()
        if img_bytes:
            try:
                data_uri = data_uri_from_upload(photo.filename, photo.content_type, img_bytes)
            except DataUriError as e:
                session.notify("Invalid Image", str(e), destructive=True)
                data_uri = None

    if data_uri is not None:
        session.upload(data_uri)
    if not session.notices:
        await session.identify(gemini.identify)

    return templates.TemplateResponse(
        request,
        "results.html",
        {
            "mode": input_mode.value,
            "image_data_uri": session.image_data_uri,
            "result": session.result,
            "summary": session.summary,
            "notices": session.drain_notices(),
        },
    )
