import base64
import binascii
import logging

import cv2
import numpy as np

logger = logging.getLogger(__name__)

DATA_URL_PREFIX = "data:image/"


class ImageError(ValueError):
    pass


def is_image_data_url(value) -> bool:
    return isinstance(value, str) and value.startswith(DATA_URL_PREFIX)


def decode_data_url(data_url: str) -> bytes:
    if not is_image_data_url(data_url):
        raise ImageError("Not an image data URL")
    header, sep, payload = data_url.partition(",")
    if not sep or ";base64" not in header:
        raise ImageError("Image data URL is not base64 encoded")
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ImageError("Image data URL has an invalid base64 payload") from exc
    if not data:
        raise ImageError("Image data URL is empty")
    return data


def to_data_url(data: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def decode_image(data: bytes) -> np.ndarray:
    buffer = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR) if buffer.size else None
    if image is None or image.size == 0:
        raise ImageError("Unable to decode image")
    return image


def encode_png(image: np.ndarray) -> bytes:
    ok, encoded = cv2.imencode(".png", image)
    if not ok:
        raise ImageError("Unable to encode image")
    return encoded.tobytes()


def image_size(data: bytes) -> tuple[int, int]:
    """Pixel (width, height) of an encoded image, or (1, 1) when it cannot be decoded."""
    try:
        image = decode_image(data)
    except ImageError as exc:
        logger.warning("Image size lookup failed, using 1x1: %s", exc)
        return 1, 1
    height, width = image.shape[:2]
    return int(width), int(height)


def crop_image(image: np.ndarray, box: tuple[int, int, int, int]) -> np.ndarray:
    """Cut ``box`` (x, y, width, height in pixels) out of ``image``.

    The result always has exactly the requested size: a box that runs past the
    frame edge after rounding is clipped and stretched back to it.
    """
    x, y, width, height = box
    frame_h, frame_w = image.shape[:2]
    x0 = max(0, min(frame_w - 1, x))
    y0 = max(0, min(frame_h - 1, y))
    x1 = max(x0 + 1, min(frame_w, x + width))
    y1 = max(y0 + 1, min(frame_h, y + height))
    region = image[y0:y1, x0:x1]
    if region.shape[1] != width or region.shape[0] != height:
        region = cv2.resize(region, (width, height), interpolation=cv2.INTER_LINEAR)
    return np.ascontiguousarray(region)
