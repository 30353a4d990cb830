"""
One capture -> identify -> display cycle as an explicit state machine.

    IDLE --start_camera--> REQUESTING_PERMISSION --> STREAMING | IDLE (denied)
    STREAMING --capture--> CAPTURED            (camera released)
    IDLE/STREAMING --upload--> CAPTURED
    CAPTURED/RESULTED/FAILED --identify--> IDENTIFYING --> RESULTED | FAILED
    any --clear / switch_mode--> IDLE (or STREAMING again in camera mode)

The camera is a scoped resource: capture, clear, switch_mode and close all
release it, and at most one stream is held at a time. Capture problems never
raise out of the session; they become notices for the UI.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Protocol, Tuple

from pedal_identifier.core.aggregator import summarize
from pedal_identifier.core.datauri import DataUriError, encode_data_uri, parse_data_uri
from pedal_identifier.core.display import pluralize
from pedal_identifier.schemas.identify import IdentificationResult, ResultSummary

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    REQUESTING_PERMISSION = "requesting_permission"
    STREAMING = "streaming"
    CAPTURED = "captured"
    IDENTIFYING = "identifying"
    RESULTED = "resulted"
    FAILED = "failed"


class InputMode(str, Enum):
    CAMERA = "camera"
    UPLOAD = "upload"


class CaptureError(Exception):
    """Could not get an image out of the camera."""


class CameraPermissionError(CaptureError):
    """The user (or browser policy) refused camera access."""


class CameraUnavailableError(CaptureError):
    """No camera, or the device is busy."""


class CameraStream(Protocol):
    def capture_frame(self) -> Tuple[bytes, str]:
        """Return (image bytes, mime type) for the current frame."""

    def stop(self) -> None:
        """Stop every track of the stream."""


class CameraDevice(Protocol):
    def open(self) -> CameraStream:
        """Acquire a stream; raises CameraPermissionError / CameraUnavailableError."""


@dataclass(frozen=True)
class Notice:
    title: str
    description: str
    destructive: bool = False


IdentifyFn = Callable[[str], Awaitable[IdentificationResult]]


class IdentifySession:
    def __init__(self, camera: Optional[CameraDevice] = None, mode: InputMode = InputMode.CAMERA):
        self.camera = camera
        self.mode = mode
        self.state = SessionState.IDLE
        self.has_camera_permission: Optional[bool] = None
        self.stream: Optional[CameraStream] = None
        self.image_data_uri: Optional[str] = None
        self.result: Optional[IdentificationResult] = None
        self.summary: Optional[ResultSummary] = None
        self.error: Optional[str] = None
        self.notices: List[Notice] = []
        self._sequence = 0

    def __enter__(self) -> "IdentifySession":
        if self.mode == InputMode.CAMERA:
            self.start_camera()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def is_busy(self) -> bool:
        return self.state == SessionState.IDENTIFYING

    def notify(self, title: str, description: str, destructive: bool = False) -> None:
        self.notices.append(Notice(title=title, description=description, destructive=destructive))

    def drain_notices(self) -> List[Notice]:
        notices, self.notices = self.notices, []
        return notices

    def _clear_result(self) -> None:
        # Any in-flight identify() started before this point is now stale
        self._sequence += 1
        self.result = None
        self.summary = None
        self.error = None

    # ------------------------------------------------------------------
    # Camera
    # ------------------------------------------------------------------

    def start_camera(self) -> bool:
        if self.mode != InputMode.CAMERA:
            return False
        if self.stream is not None:
            self.has_camera_permission = True
            return True

        self.state = SessionState.REQUESTING_PERMISSION
        try:
            if self.camera is None:
                raise CameraUnavailableError("no camera device")
            stream = self.camera.open()
        except CameraPermissionError:
            logger.warning("Camera permission denied")
            self._camera_failed("Please enable camera permissions in your browser settings.")
            return False
        except Exception as e:
            logger.warning("Error accessing camera: %s", e, exc_info=True)
            self._camera_failed(f"Could not access camera: {e}")
            return False

        self.stream = stream
        self.has_camera_permission = True
        self.state = SessionState.STREAMING
        return True

    def _camera_failed(self, description: str) -> None:
        self.stream = None
        self.has_camera_permission = False
        self.state = SessionState.IDLE
        self.notify("Camera Access Denied", description, destructive=True)

    def stop_camera(self) -> None:
        stream, self.stream = self.stream, None
        if self.state in (SessionState.STREAMING, SessionState.REQUESTING_PERMISSION):
            self.state = SessionState.IDLE
        if stream is not None:
            stream.stop()

    def capture(self) -> bool:
        if self.stream is None or self.is_busy:
            return False

        try:
            data, mime_type = self.stream.capture_frame()
            data_uri = encode_data_uri(data, mime_type)
        except (CaptureError, DataUriError, OSError) as e:
            logger.warning("Could not capture frame: %s", e)
            self.notify("Capture Failed", "Could not capture image from camera.", destructive=True)
            return False

        self.stop_camera()
        self._clear_result()
        self.image_data_uri = data_uri
        self.state = SessionState.CAPTURED
        return True

    # ------------------------------------------------------------------
    # Upload / clear / mode
    # ------------------------------------------------------------------

    def upload(self, data_uri: str) -> bool:
        if self.is_busy:
            return False
        try:
            parse_data_uri(data_uri)
        except DataUriError as e:
            self.notify("Invalid Image", str(e), destructive=True)
            return False

        self.stop_camera()
        self._clear_result()
        self.image_data_uri = data_uri
        self.state = SessionState.CAPTURED
        return True

    def clear(self) -> None:
        self.image_data_uri = None
        self._clear_result()
        self.state = SessionState.STREAMING if self.stream is not None else SessionState.IDLE
        if self.mode == InputMode.CAMERA and self.stream is None and self.has_camera_permission is True:
            self.start_camera()

    def switch_mode(self, mode: InputMode) -> None:
        if mode == self.mode:
            return
        self.stop_camera()
        self.mode = mode
        self._clear_result()
        self.state = SessionState.IDLE
        if mode == InputMode.CAMERA:
            self.image_data_uri = None
            self.start_camera()

    def close(self) -> None:
        self.stop_camera()

    # ------------------------------------------------------------------
    # Identify
    # ------------------------------------------------------------------

    async def identify(self, identify_fn: IdentifyFn) -> Optional[IdentificationResult]:
        if not self.image_data_uri:
            hint = "Please upload an image first." if self.mode == InputMode.UPLOAD else "Please capture a photo first."
            self.notify("No Image Available", hint, destructive=True)
            return None
        if self.is_busy:
            return None

        self._clear_result()
        sequence = self._sequence
        self.state = SessionState.IDENTIFYING

        try:
            result = await identify_fn(self.image_data_uri)
            summary = summarize(result)
        except Exception as e:
            if sequence != self._sequence:
                logger.info("Ignoring failure of superseded identification #%d", sequence)
                return None
            logger.warning("Error identifying pedals: %s", e, exc_info=True)
            self.error = str(e)
            self.state = SessionState.FAILED
            self.notify(
                "Identification Failed",
                "Could not identify pedals. Please try another image.",
                destructive=True,
            )
            return None

        if sequence != self._sequence:
            logger.info("Dropping late result of superseded identification #%d", sequence)
            return None

        self.result = result
        self.summary = summary
        self.state = SessionState.RESULTED

        count = len(result.pedal_identifications)
        self.notify(
            "Identification Complete",
            f"Identified {pluralize(count, 'pedal')}." if count else "No pedals identified in the image.",
        )
        return result
