import base64
import binascii
import mimetypes
import re
from dataclasses import dataclass
from typing import Optional

from pedal_identifier.core.config import settings

# data:<mimetype>[;param=...];base64,<payload>
_DATA_URI_RE = re.compile(
    r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)(?P<params>(?:;[\w.+-]+=[\w.+-]+)*);base64,(?P<data>.*)$",
    re.DOTALL | re.IGNORECASE,
)


class DataUriError(ValueError):
    """The string is not a usable base64 image data URI."""


@dataclass(frozen=True)
class DataUri:
    mime_type: str
    data: bytes

    @property
    def base64(self) -> str:
        return base64.b64encode(self.data).decode("utf-8")


def encode_data_uri(data: bytes, mime_type: str) -> str:
    if not data:
        raise DataUriError("Image is empty")
    mime_type = (mime_type or "").strip().lower()
    if not mime_type.startswith("image/"):
        raise DataUriError(f"Unsupported MIME type: {mime_type or 'unknown'}")
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('utf-8')}"


def parse_data_uri(uri: str) -> DataUri:
    """
    Validate and decode `data:<mimetype>;base64,<payload>`.
    Only image/* payloads are accepted.
    """
    if not isinstance(uri, str) or not uri.strip():
        raise DataUriError("Photo data URI is empty")

    m = _DATA_URI_RE.match(uri.strip())
    if not m:
        raise DataUriError("Expected format: 'data:<mimetype>;base64,<encoded_data>'")

    mime_type = m.group("mime").lower()
    if not mime_type.startswith("image/"):
        raise DataUriError(f"Unsupported MIME type: {mime_type}")

    # Browsers may wrap long payloads; whitespace is not part of base64
    payload = re.sub(r"\s+", "", m.group("data"))
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise DataUriError("Photo payload is not valid base64")

    if not data:
        raise DataUriError("Photo payload is empty")
    if len(data) > settings.MAX_UPLOAD_BYTES:
        raise DataUriError(f"Photo is larger than {settings.MAX_UPLOAD_BYTES} bytes")

    return DataUri(mime_type=mime_type, data=data)


def data_uri_from_upload(filename: Optional[str], content_type: Optional[str], data: bytes) -> str:
    """
    Turn a file-picker upload into a data URI.
    Falls back to guessing the MIME type from the filename when the browser
    sends a generic one (application/octet-stream).
    """
    if not data:
        raise DataUriError("Uploaded file is empty")
    if len(data) > settings.MAX_UPLOAD_BYTES:
        raise DataUriError(f"Uploaded file is larger than {settings.MAX_UPLOAD_BYTES} bytes")

    mime_type = (content_type or "").split(";")[0].strip().lower()
    if not mime_type.startswith("image/"):
        guessed = mimetypes.guess_type(filename or "")[0]
        if guessed:
            mime_type = guessed

    return encode_data_uri(data, mime_type)
