"""
Media Capture Adapter

Turns a camera frame, an uploaded file, or a crop of either into one
normalized encoding: a base64 data URI with a MIME prefix
(data:image/jpeg;base64,...). Only one image is active at a time.
"""

import base64
import binascii
import io
import logging
import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Literal, Optional, Tuple, Union

import cv2
from PIL import Image, UnidentifiedImageError

from config import settings

logger = logging.getLogger(__name__)

DATA_URI_PATTERN = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.*)$", re.DOTALL)


class InvalidImageError(ValueError):
    """The input is not a decodable image or data URI."""


class CameraAccessError(RuntimeError):
    """The camera could not be opened or did not deliver a frame."""


# ============================================================================
# DATA URIS
# ============================================================================

def encode_data_uri(data: bytes, mime: str) -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def parse_data_uri(data_uri: str) -> Tuple[str, bytes]:
    """Split a data URI into (mime, raw bytes)."""
    match = DATA_URI_PATTERN.match(data_uri or "")
    if not match:
        raise InvalidImageError("Expected a data URI like 'data:<mimetype>;base64,<data>'")
    try:
        data = base64.b64decode(match.group("data"), validate=True)
    except (binascii.Error, ValueError):
        raise InvalidImageError("Invalid base64 encoding") from None
    return match.group("mime"), data


def _open_image(data: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidImageError(f"Not a readable image: {e}") from e
    return image


def _jpeg_data_uri(image: Image.Image, quality: int) -> str:
    buffer = io.BytesIO()
    image.convert("RGB").save(buffer, format="JPEG", quality=quality)
    return encode_data_uri(buffer.getvalue(), "image/jpeg")


# ============================================================================
# FILE PATH
# ============================================================================

def encode_image_file(source: Union[str, os.PathLike, bytes]) -> str:
    """Read an image file (or its bytes) and return it as a data URI."""
    data = source if isinstance(source, bytes) else Path(source).read_bytes()
    image = _open_image(data)
    mime = Image.MIME.get(image.format or "")
    if mime is None:
        raise InvalidImageError(f"Unsupported image format: {image.format}")
    logger.info(f"[Media] Encoded {image.format} file ({image.width}x{image.height})")
    return encode_data_uri(data, mime)


# ============================================================================
# CAMERA PATH
# ============================================================================

class CameraPermission(str, Enum):
    UNKNOWN = "unknown"
    GRANTED = "granted"
    DENIED = "denied"


class CameraCapture:
    """
    Scoped camera acquisition.

        with CameraCapture() as camera:
            data_uri = camera.capture()

    The device is released when the block exits, however it exits.
    """

    def __init__(self, camera_index: Optional[int] = None, jpeg_quality: Optional[int] = None):
        self.camera_index = settings.camera_index if camera_index is None else camera_index
        self.jpeg_quality = jpeg_quality or settings.jpeg_quality
        self.permission = CameraPermission.UNKNOWN
        self._capture = None

    def open(self) -> None:
        self._capture = cv2.VideoCapture(self.camera_index)
        if not self._capture.isOpened():
            self.permission = CameraPermission.DENIED
            self.release()
            logger.warning(f"[Media] Could not open camera {self.camera_index}")
            raise CameraAccessError(
                "Camera Access Denied: please enable camera permissions to use this feature."
            )
        self.permission = CameraPermission.GRANTED
        logger.info(f"[Media] Camera {self.camera_index} opened")

    def capture(self) -> str:
        """Grab the current frame and encode it as a JPEG data URI."""
        if self._capture is None:
            raise CameraAccessError("Camera is not open")
        ok, frame = self._capture.read()
        if not ok or frame is None:
            raise CameraAccessError("Failed to grab frame from camera")
        ok, buffer = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), self.jpeg_quality])
        if not ok:
            raise CameraAccessError("Failed to encode camera frame")
        return encode_data_uri(buffer.tobytes(), "image/jpeg")

    def release(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None

    def __enter__(self) -> "CameraCapture":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


# ============================================================================
# CROP PATH
# ============================================================================

@dataclass
class CropRegion:
    """
    Rectangular selection. With unit "px" the bounds are in display
    coordinates (the size the image was shown at); with "%" they are
    percentages of the image.
    """
    x: float
    y: float
    width: float
    height: float
    unit: Literal["px", "%"] = "px"


def crop_image(
    data_uri: str,
    region: CropRegion,
    display_size: Optional[Tuple[float, float]] = None,
    jpeg_quality: Optional[int] = None,
) -> str:
    """
    Crop `data_uri` to `region`, scaled to the image's native resolution.

    A selection with zero width or height returns `data_uri` unchanged.
    """
    _, data = parse_data_uri(data_uri)
    image = _open_image(data)
    natural_width, natural_height = image.size

    if region.unit == "%":
        scale_x, scale_y = natural_width / 100, natural_height / 100
    elif display_size is not None:
        display_width, display_height = display_size
        if display_width <= 0 or display_height <= 0:
            raise InvalidImageError("Display size must be positive")
        scale_x, scale_y = natural_width / display_width, natural_height / display_height
    else:
        scale_x = scale_y = 1.0

    crop_width = region.width * scale_x
    crop_height = region.height * scale_y
    if crop_width <= 0 or crop_height <= 0:
        logger.info("[Media] Empty crop selection, keeping original image")
        return data_uri

    left = max(0, round(region.x * scale_x))
    top = max(0, round(region.y * scale_y))
    right = min(natural_width, round(region.x * scale_x + crop_width))
    bottom = min(natural_height, round(region.y * scale_y + crop_height))
    if right <= left or bottom <= top:
        logger.info("[Media] Crop selection lies outside the image, keeping original image")
        return data_uri

    cropped = image.crop((left, top, right, bottom))
    logger.info(f"[Media] Cropped {natural_width}x{natural_height} to {cropped.width}x{cropped.height}")
    return _jpeg_data_uri(cropped, jpeg_quality or settings.jpeg_quality)


# ============================================================================
# ATTACHMENT STATE
# ============================================================================

class ImageAttachment:
    """
    Transient capture/crop state for one session.

    `pending` holds a freshly captured or selected image waiting for the crop
    step; `image` is the single active image handed to the next problem.
    """

    def __init__(self):
        self.pending: Optional[str] = None
        self.image: Optional[str] = None

    def set_pending(self, data_uri: str) -> None:
        parse_data_uri(data_uri)
        self.pending = data_uri

    def crop_and_use(
        self,
        region: Optional[CropRegion] = None,
        display_size: Optional[Tuple[float, float]] = None,
    ) -> str:
        if self.pending is None:
            raise InvalidImageError("No image is waiting to be cropped")
        if region is None:
            data_uri = self.pending
        else:
            data_uri = crop_image(self.pending, region, display_size)
        self.image = data_uri
        self.pending = None
        return data_uri

    def cancel_crop(self) -> None:
        self.pending = None

    def attach(self, data_uri: str) -> None:
        parse_data_uri(data_uri)
        self.image = data_uri
        self.pending = None

    def clear(self) -> None:
        self.image = None
        self.pending = None
