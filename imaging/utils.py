from __future__ import annotations

import base64
import io
import json
import math
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Union

import cv2
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from verification.errors import DecodeError

MIME_BY_FORMAT = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "BMP": "image/bmp",
    "TIFF": "image/tiff",
}


def open_image(data: bytes) -> Image.Image:
    """Open encoded image bytes with Pillow, raising DecodeError on failure."""
    if not data:
        raise DecodeError("Empty image buffer")
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise DecodeError(f"Cannot decode image: {exc}") from exc
    return img


def load_rgb(data: bytes, apply_exif: bool = False) -> np.ndarray:
    """Decode image bytes to an RGB uint8 array."""
    img = open_image(data)
    if apply_exif:
        img = ImageOps.exif_transpose(img)
    return np.array(img.convert("RGB"), dtype=np.uint8)


def to_gray_u8(rgb: np.ndarray) -> np.ndarray:
    if rgb.ndim == 2:
        return rgb.astype(np.uint8, copy=False)
    return cv2.cvtColor(rgb, cv2.COLOR_RGB2GRAY)


def detect_mime(data: bytes) -> str:
    try:
        fmt = open_image(data).format or ""
    except DecodeError:
        return "application/octet-stream"
    return MIME_BY_FORMAT.get(fmt.upper(), "image/jpeg")


def to_data_url(data: bytes, mime: str | None = None) -> str:
    """Inline-encode image bytes as a ``data:`` URL for the vision model."""
    mime = mime or detect_mime(data)
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def encode_jpeg(arr: np.ndarray, quality: int) -> bytes:
    """Compress a gray or RGB array to JPEG bytes in-memory."""
    img = Image.fromarray(arr.astype(np.uint8))
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=int(quality), optimize=True)
    return buf.getvalue()


def encode_png(arr: np.ndarray) -> bytes:
    img = Image.fromarray(arr.astype(np.uint8))
    buf = io.BytesIO()
    img.save(buf, format="PNG", optimize=True)
    return buf.getvalue()


def json_sanitize(obj: Any) -> Any:
    """Convert numpy types + Path + dataclasses to JSON-safe Python types."""
    if obj is None:
        return None
    if isinstance(obj, Path):
        return str(obj)
    if hasattr(obj, "to_dict"):
        return json_sanitize(obj.to_dict())
    if hasattr(obj, "__dataclass_fields__"):
        return {k: json_sanitize(v) for k, v in asdict(obj).items()}
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.ndarray):
        return json_sanitize(obj.tolist())
    if isinstance(obj, (list, tuple)):
        return [json_sanitize(x) for x in obj]
    if isinstance(obj, dict):
        return {str(k): json_sanitize(v) for k, v in obj.items()}
    if isinstance(obj, (int, float, str, bool)):
        # normalize NaN/inf
        if isinstance(obj, float) and (math.isnan(obj) or math.isinf(obj)):
            return None
        return obj
    return str(obj)


def save_json(data: Dict[str, Any], out_path: Union[str, Path]) -> str:
    out_path = str(out_path)
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(json_sanitize(data), f, ensure_ascii=False, indent=2)
    return out_path
