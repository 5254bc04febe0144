"""
Image loading helpers.

An image source is either raw bytes or a string locator:
- ``data:image/jpeg;base64,...`` - embedded image
- ``http://`` / ``https://`` - fetched with requests
- anything else - a local file path
"""

import base64
import binascii
from pathlib import Path

import cv2
import numpy as np
import requests

from .config import Config
from .domain import ImageSource


def is_data_url(source: str) -> bool:
    return source.startswith("data:")


def _data_url_payload(source: str) -> str:
    header, sep, payload = source.partition(",")
    if not sep or ";base64" not in header:
        raise ValueError("Only base64 data URLs are supported")
    return payload


def read_image_bytes(source: ImageSource, timeout: float = Config.IMAGE_FETCH_TIMEOUT_SECONDS) -> bytes:
    """
    Resolve an image source to raw bytes.

    Raises:
        ValueError: for a malformed data URL
        requests.RequestException: when a URL cannot be fetched
        OSError: when a file cannot be read
    """
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)

    if is_data_url(source):
        try:
            return base64.b64decode(_data_url_payload(source), validate=True)
        except binascii.Error as e:
            raise ValueError(f"Invalid base64 data URL: {e}") from e

    if source.startswith(("http://", "https://")):
        response = requests.get(source, timeout=timeout)
        response.raise_for_status()
        return response.content

    return Path(source).read_bytes()


def decode_image(image_bytes: bytes) -> np.ndarray:
    """
    Decode image bytes into a BGR array.

    IMREAD_COLOR applies the EXIF orientation of phone pictures.
    """
    nparr = np.frombuffer(image_bytes, np.uint8)
    image = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
    if image is None:
        raise ValueError("Failed to decode image")
    return image


def load_image(source: ImageSource) -> np.ndarray:
    """Fetch and decode an image source."""
    return decode_image(read_image_bytes(source))


def to_base64(source: ImageSource) -> str:
    """
    Base64 text of an image source, for JSON payloads.

    Base64 data URLs are not re-encoded: their payload is returned as is.
    """
    if isinstance(source, str) and is_data_url(source):
        return _data_url_payload(source)
    return base64.b64encode(read_image_bytes(source)).decode("ascii")
